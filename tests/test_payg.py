import math
from dataclasses import replace

import numpy as np
import pytest

from pension.payg import (
    IndexationState,
    PaygSnapshot,
    PensionRules,
    average_wage,
    calculate_balance,
    calculate_benefits,
    calculate_contributions,
    calculate_dependency_ratio,
    calculate_required_rate,
    calculate_wage_bill,
    count_pensioners,
    count_workers,
    erase_wage_gap,
    find_required_contrib_rate,
    find_required_pension_ratio,
    find_required_retirement_age,
    find_threshold,
    index_pension,
    initial_pension,
)


@pytest.fixture
def snapshot(dataset):
    return PaygSnapshot(
        population=dataset.population,
        employment=dataset.employment,
        wage_rel=dataset.wage_rel,
        avg_wage=100_000.0,
        avg_pension=45_000.0,
        contrib_rate=0.2,
        ret_age=18,
    )


RULES = PensionRules(
    basic_amount_ratio=0.10,
    percentage_amount_ratio=0.30,
    real_wage_index_share=1 / 3,
    min_pension_ratio=0.20,
    pensioner_cpi=0.02,
)


class TestAccountingKernel:

    def test_worked_example(self):
        contributions = calculate_contributions(1_272_825_000, 0.20)
        benefits = calculate_benefits(8_500, 45_000)
        assert contributions == pytest.approx(254_565_000)
        assert benefits == pytest.approx(382_500_000)
        assert calculate_balance(contributions, benefits) == pytest.approx(-127_935_000)

    def test_dataset_reproduces_baseline(self, dataset, snapshot):
        acc = snapshot.evaluate()
        bt = dataset.baseline
        assert acc.wage_bill == pytest.approx(bt.wage_bill0)
        assert acc.workers == pytest.approx(bt.workers0)
        assert acc.pensioners == pytest.approx(bt.pensioners0)
        assert acc.contributions == pytest.approx(bt.contrib_revenue0)
        assert acc.benefits == pytest.approx(bt.benefit_spending0)
        assert acc.balance == pytest.approx(-127_935_000)

    def test_wage_bill_zero_without_workers(self):
        pop = np.ones((2, 3))
        assert calculate_wage_bill(pop, np.zeros((2, 3)), np.ones((2, 3)), 1000) == 0.0

    def test_count_pensioners_inclusive(self):
        pop = np.array([[1.0, 2.0, 3.0], [10.0, 20.0, 30.0]])
        assert count_pensioners(pop, 1) == 55.0
        assert count_pensioners(pop, 0) == 66.0
        assert count_pensioners(pop, 3) == 0.0

    def test_count_pensioners_rejects_negative_age(self):
        with pytest.raises(ValueError):
            count_pensioners(np.ones((2, 3)), -1)

    def test_count_workers(self):
        pop = np.full((2, 2), 100.0)
        emp = np.array([[0.5, 1.0], [0.0, 0.25]])
        assert count_workers(pop, emp) == pytest.approx(175.0)

    def test_required_rate_policy(self):
        assert calculate_required_rate(0, 12345) == 0
        assert calculate_required_rate(0, 0) == 0
        assert calculate_required_rate(100, 0) == math.inf
        assert calculate_required_rate(50, 200) == 0.25

    def test_dependency_ratio_policy(self):
        assert calculate_dependency_ratio(0, 0) == 0
        assert calculate_dependency_ratio(10, 0) == math.inf
        assert calculate_dependency_ratio(10, 40) == 0.25

    def test_average_wage(self):
        assert average_wage(100, 0.02, 0) == 100
        assert average_wage(100, 0.02, 2) == pytest.approx(104.04)
        assert average_wage(100, -0.01, 1) == pytest.approx(99.0)

    def test_workers_per_pensioner(self, snapshot):
        acc = snapshot.evaluate()
        assert acc.workers_per_pensioner == pytest.approx(15800 / 8500)
        assert acc.dependency_ratio == pytest.approx(8500 / 15800)

    def test_empty_population_has_no_nan(self, snapshot):
        acc = replace(snapshot, population=np.zeros((2, 21))).evaluate()
        assert acc.required_rate == 0
        assert acc.dependency_ratio == 0
        assert acc.workers_per_pensioner == 0


class TestCzechIndexation:

    def test_initial_pension(self):
        state = initial_pension(600_000, RULES)
        c = state.components
        assert c.basic_amount == pytest.approx(60_000)
        assert c.percentage_amount == pytest.approx(180_000)
        assert c.total_pension == pytest.approx(240_000)
        assert not c.minimum_applied
        assert state.cumulative_wage_gap == 0.0

    def test_initial_minimum_floor(self):
        rules = replace(RULES, percentage_amount_ratio=0.05)
        c = initial_pension(600_000, rules).components
        assert c.minimum_applied
        assert c.total_pension == pytest.approx(120_000)

    def test_basic_amount_tracks_wage(self):
        state = initial_pension(600_000, RULES)
        # Whatever the gap or prior level, basic = wage * ratio
        state = replace(state, cumulative_wage_gap=-0.2)
        new = index_pension(state, RULES, avg_wage=620_000, real_wage_growth=0.0333)
        assert new.components.basic_amount == 62_000

    def test_percentage_indexed_by_cpi_and_wage_share(self):
        state = initial_pension(600_000, RULES)
        new = index_pension(state, RULES, avg_wage=618_000, real_wage_growth=0.03)
        expected = 180_000 * (1 + 0.02 + 0.03 / 3)
        assert new.components.percentage_amount == pytest.approx(expected)
        assert new.effective_wage_growth == pytest.approx(0.03)

    def test_negative_growth_banked(self):
        state = initial_pension(600_000, RULES)
        new = index_pension(state, RULES, avg_wage=570_000, real_wage_growth=-0.05)
        assert new.cumulative_wage_gap == pytest.approx(-0.05)
        assert new.effective_wage_growth == 0.0
        # Only CPI indexation: nominal value is never given back
        assert new.components.percentage_amount == pytest.approx(180_000 * 1.02)

    def test_drop_then_recovery_erases_gap(self):
        state = initial_pension(600_000, RULES)
        year1 = index_pension(state, RULES, avg_wage=570_000, real_wage_growth=-0.05)
        year2 = index_pension(year1, RULES, avg_wage=615_600, real_wage_growth=0.08)
        assert year2.cumulative_wage_gap == 0.0
        assert year2.effective_wage_growth == pytest.approx(0.03)
        expected = year1.components.percentage_amount * (1 + 0.02 + 0.03 / 3)
        assert year2.components.percentage_amount == pytest.approx(expected)

    def test_partial_recovery_leaves_gap(self):
        effective, gap = erase_wage_gap(-0.05, 0.03)
        assert effective == 0.0
        assert gap == pytest.approx(-0.02)

    def test_growth_without_gap_passes_through(self):
        assert erase_wage_gap(0.0, 0.04) == (0.04, 0.0)

    def test_floor_reapplied_each_year(self):
        rules = replace(RULES, min_pension_ratio=0.5)
        state = initial_pension(100_000, rules)
        assert state.components.minimum_applied
        new = index_pension(state, rules, avg_wage=110_000, real_wage_growth=0.1)
        assert new.components.minimum_applied
        assert new.components.total_pension == pytest.approx(55_000)

    def test_state_is_immutable(self):
        state = initial_pension(100_000, RULES)
        with pytest.raises(AttributeError):
            state.cumulative_wage_gap = -1.0
        assert isinstance(index_pension(state, RULES, 100_000, 0.0), IndexationState)


class TestFindThreshold:

    def test_integer_smallest(self):
        assert find_threshold(lambda x: x - 7, 0, 20, integer=True) == 7

    def test_low_bound_already_satisfied(self):
        assert find_threshold(lambda x: 1.0, 3, 9, integer=True) == 3

    def test_unreachable(self):
        assert find_threshold(lambda x: -1.0, 0.0, 1.0) is None

    def test_continuous(self):
        root = find_threshold(lambda x: x * x - 2.0, 0.0, 2.0)
        assert root == pytest.approx(math.sqrt(2.0), abs=1e-8)


class TestEquilibrium:

    def test_required_retirement_age(self, snapshot):
        # Contributions 254.565M cover at most 5,657 pensioners at 45,000;
        # 8,500 are 18+, 4,900 are 19+
        assert find_required_retirement_age(snapshot, 15, 20) == 19

    def test_retirement_age_min_bound_when_balanced(self, snapshot):
        cheap = replace(snapshot, avg_pension=10_000.0)
        assert find_required_retirement_age(cheap, 15, 20) == 15

    def test_retirement_age_unreachable(self, snapshot):
        poor = replace(snapshot, contrib_rate=0.01)
        assert find_required_retirement_age(poor, 15, 20) is None

    def test_retirement_age_does_not_mutate(self, snapshot):
        find_required_retirement_age(snapshot, 15, 20)
        assert snapshot.ret_age == 18
        assert find_required_retirement_age(snapshot, 15, 20) == 19

    def test_required_pension_ratio(self, snapshot):
        ratio = find_required_pension_ratio(snapshot)
        assert ratio == pytest.approx(254_565_000 / (8_500 * 100_000), rel=1e-8)
        balanced = replace(snapshot, avg_pension=ratio * snapshot.avg_wage).evaluate()
        assert balanced.balance == pytest.approx(0.0, abs=1.0)

    def test_pension_ratio_without_pensioners(self, snapshot):
        young = np.array(snapshot.population)
        young[:, 18:] = 0.0
        assert find_required_pension_ratio(replace(snapshot, population=young)) == 0.0

    def test_pension_ratio_unrealistic(self, snapshot):
        assert find_required_pension_ratio(replace(snapshot, contrib_rate=5.0)) is None

    def test_required_contrib_rate(self, snapshot):
        rate = find_required_contrib_rate(snapshot)
        assert rate == pytest.approx(382_500_000 / 1_272_825_000)
        balanced = replace(snapshot, contrib_rate=rate).evaluate()
        assert balanced.balance == pytest.approx(0.0, abs=1e-3)
