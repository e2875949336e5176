"""
Pay-as-you-go pension accounting.

Wage bill, contributions, benefits and balance for one population snapshot;
the Czech two-component pension ("dvouslozkovy duchod") and its yearly
indexation; and the inverse solves for the retirement age, pension ratio
and contribution rate that would balance the system.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Optional

import numpy as np

logger = logging.getLogger(__name__)


# ============================================================
# ACCOUNTING KERNEL
# ============================================================

def calculate_wage_bill(population, employment, wage_rel, avg_wage: float) -> float:
    """Sum over sex and age of population * employment rate * relative wage * average wage."""
    return float(np.sum(np.asarray(population) * employment * wage_rel) * avg_wage)


def calculate_contributions(wage_bill: float, contrib_rate: float) -> float:
    return wage_bill * contrib_rate


def count_pensioners(population, ret_age: int) -> float:
    """Population at or above the retirement age, both sexes."""
    if ret_age < 0:
        raise ValueError(f"retirement age must be non-negative, got {ret_age}")
    return float(np.asarray(population)[:, int(ret_age):].sum())


def count_workers(population, employment) -> float:
    """Effective (employment-weighted) workers, not headcount."""
    return float(np.sum(np.asarray(population) * employment))


def calculate_benefits(pensioners: float, avg_pension: float) -> float:
    return pensioners * avg_pension


def calculate_balance(contributions: float, benefits: float) -> float:
    return contributions - benefits


def _safe_ratio(numerator: float, denominator: float) -> float:
    # 0 when there is nothing to finance, inf when there is no base to finance it
    if numerator == 0:
        return 0.0
    if denominator == 0:
        return math.inf
    return numerator / denominator


def calculate_required_rate(benefits: float, wage_bill: float) -> float:
    """Contribution rate that would exactly cover benefits."""
    return _safe_ratio(benefits, wage_bill)


def calculate_dependency_ratio(pensioners: float, workers: float) -> float:
    return _safe_ratio(pensioners, workers)


def average_wage(avg_wage0: float, wage_growth_real: float, t: int) -> float:
    """Average wage after t years of constant real growth; t may be an array of years."""
    return avg_wage0 * (1.0 + wage_growth_real) ** t


@dataclass(frozen=True)
class PaygAccounts:
    wage_bill: float
    contributions: float
    pensioners: float
    workers: float
    benefits: float
    balance: float
    required_rate: float
    dependency_ratio: float
    workers_per_pensioner: float


@dataclass(frozen=True)
class PaygSnapshot:
    """
    Everything the PAYG kernel needs for one year. Equilibrium solvers
    perturb a single field with ``dataclasses.replace`` and re-evaluate.
    """

    population: np.ndarray
    employment: np.ndarray
    wage_rel: np.ndarray
    avg_wage: float
    avg_pension: float
    contrib_rate: float
    ret_age: int

    def evaluate(self) -> PaygAccounts:
        wage_bill = calculate_wage_bill(self.population, self.employment, self.wage_rel, self.avg_wage)
        contributions = calculate_contributions(wage_bill, self.contrib_rate)
        pensioners = count_pensioners(self.population, self.ret_age)
        workers = count_workers(self.population, self.employment)
        benefits = calculate_benefits(pensioners, self.avg_pension)
        return PaygAccounts(
            wage_bill=wage_bill,
            contributions=contributions,
            pensioners=pensioners,
            workers=workers,
            benefits=benefits,
            balance=calculate_balance(contributions, benefits),
            required_rate=calculate_required_rate(benefits, wage_bill),
            dependency_ratio=calculate_dependency_ratio(pensioners, workers),
            workers_per_pensioner=_safe_ratio(workers, pensioners),
        )


# ============================================================
# CZECH TWO-COMPONENT PENSION
# ============================================================

@dataclass(frozen=True)
class PensionRules:
    basic_amount_ratio: float  # "zakladni vymera" as share of average wage
    percentage_amount_ratio: float  # initial "procentni vymera"
    real_wage_index_share: float  # 1/3 under the 2024 law
    min_pension_ratio: float
    pensioner_cpi: float


@dataclass(frozen=True)
class PensionComponents:
    basic_amount: float
    percentage_amount: float
    total_pension: float
    minimum_applied: bool


@dataclass(frozen=True)
class IndexationState:
    components: PensionComponents
    cumulative_wage_gap: float = 0.0  # <= 0: real wage losses not yet made up
    effective_wage_growth: float = 0.0  # growth that reached indexation this year


def _with_floor(basic: float, percentage: float, avg_wage: float, min_ratio: float) -> PensionComponents:
    total = basic + percentage
    floor = avg_wage * min_ratio
    minimum_applied = total < floor
    return PensionComponents(
        basic_amount=basic,
        percentage_amount=percentage,
        total_pension=floor if minimum_applied else total,
        minimum_applied=minimum_applied,
    )


def initial_pension(avg_wage0: float, rules: PensionRules) -> IndexationState:
    components = _with_floor(
        avg_wage0 * rules.basic_amount_ratio,
        avg_wage0 * rules.percentage_amount_ratio,
        avg_wage0,
        rules.min_pension_ratio,
    )
    return IndexationState(components=components)


def erase_wage_gap(cumulative_gap: float, real_wage_growth: float):
    """
    Split this year's real wage growth into (effective growth, new gap).

    A fall is banked in the gap and indexes nothing. A rise first makes up
    the banked shortfall; only the remainder is effective growth.
    """
    if real_wage_growth < 0:
        return 0.0, cumulative_gap + real_wage_growth
    combined = cumulative_gap + real_wage_growth
    if combined <= 0:
        return 0.0, combined
    return combined, 0.0


def index_pension(
    state: IndexationState,
    rules: PensionRules,
    avg_wage: float,
    real_wage_growth: float,
) -> IndexationState:
    """Advance the pension one year under the post-2024 Czech indexation rules."""
    basic = avg_wage * rules.basic_amount_ratio

    effective, new_gap = erase_wage_gap(state.cumulative_wage_gap, real_wage_growth)

    index_rate = rules.pensioner_cpi + rules.real_wage_index_share * effective
    percentage = state.components.percentage_amount * (1.0 + index_rate)

    return IndexationState(
        components=_with_floor(basic, percentage, avg_wage, rules.min_pension_ratio),
        cumulative_wage_gap=new_gap,
        effective_wage_growth=effective,
    )


# ============================================================
# EQUILIBRIUM SOLVERS
# ============================================================

def find_threshold(
    evaluate: Callable[[float], float],
    low: float,
    high: float,
    integer: bool = False,
    tolerance: float = 1e-10,
    max_iterations: int = 200,
):
    """
    Smallest x in [low, high] with evaluate(x) >= 0, for a non-decreasing
    ``evaluate``. Returns ``low`` if it already qualifies and None if even
    ``high`` does not. Integer mode returns an exact integer; continuous
    mode returns a point within ``tolerance`` of the threshold.
    """
    if evaluate(low) >= 0:
        return low
    if evaluate(high) < 0:
        return None

    if integer:
        low, high = int(low), int(high)
        while high - low > 1:
            mid = (low + high) // 2
            if evaluate(mid) >= 0:
                high = mid
            else:
                low = mid
        return high

    for _ in range(max_iterations):
        if high - low <= tolerance:
            break
        mid = 0.5 * (low + high)
        if evaluate(mid) >= 0:
            high = mid
        else:
            low = mid
    return high


def find_required_retirement_age(
    snapshot: PaygSnapshot,
    min_age: int = 50,
    max_age: int = 80,
) -> Optional[int]:
    """
    Lowest whole retirement age at which contributions cover benefits.

    Assumes the balance does not fall as the retirement age rises, which
    holds while the wage bill is independent of the retirement age.
    """
    def balance_at(age):
        return replace(snapshot, ret_age=int(age)).evaluate().balance

    age = find_threshold(balance_at, min_age, max_age, integer=True)
    if age is None:
        logger.debug("No retirement age in [%d, %d] balances the system", min_age, max_age)
    return age


def find_required_pension_ratio(
    snapshot: PaygSnapshot,
    max_ratio: float = 2.0,
) -> Optional[float]:
    """
    Average pension, as a share of the current average wage, that spends
    exactly the contributions at the current retirement age. None when it
    would exceed ``max_ratio`` of the wage.
    """
    if count_pensioners(snapshot.population, snapshot.ret_age) == 0:
        return 0.0

    def deficit_at(ratio):
        return -replace(snapshot, avg_pension=ratio * snapshot.avg_wage).evaluate().balance

    return find_threshold(deficit_at, 0.0, max_ratio)


def find_required_contrib_rate(snapshot: PaygSnapshot) -> float:
    accounts = snapshot.evaluate()
    return calculate_required_rate(accounts.benefits, accounts.wage_bill)
