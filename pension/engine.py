"""
Pension projection engine.

Runs the cohort-component population model forward year by year and
evaluates the Czech PAYG pension system on each year's population:

1. Preparation (once per run)
   Mortality curves are calibrated to the target life expectancies,
   employment is rescaled to the target unemployment rate, and the
   fertility shape is expanded to a full age-specific schedule.

2. Population step
   Mortality -> aging -> migration (proportional to current population)
   -> births.

3. Pension indexation
   The basic amount tracks the average wage; the percentage amount is
   indexed by pensioner CPI plus a share of real wage growth, after past
   real wage losses have been made up.

4. PAYG accounts
   Wage bill, contributions, benefits, balance and ratios. In equilibrium
   mode, also the retirement age and pension ratio that would balance the
   year.
"""

import logging
from dataclasses import asdict, dataclass, replace
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import BaselineTotals, PensionDataset, ProjectionParams, Sex, year_labels
from .demography import (
    calibrate_mortality,
    calculate_asfr,
    employment_multiplier,
    expand_age_schedule,
    mx_to_qx,
    scale_employment,
    step_population,
)
from .payg import (
    IndexationState,
    PaygSnapshot,
    PensionComponents,
    PensionRules,
    average_wage,
    find_required_pension_ratio,
    find_required_retirement_age,
    index_pension,
    initial_pension,
)

logger = logging.getLogger(__name__)

# Relative deviation from the published base-year totals worth flagging
BASELINE_TOLERANCE = 0.01


@dataclass(frozen=True)
class YearPoint:
    """One year's accounting snapshot."""

    year: int
    total_pop: float
    births: float
    deaths: float
    net_migration: float
    pensioners: float
    workers: float

    wage_bill: float
    contributions: float
    benefits: float
    balance: float

    required_rate: float
    dependency_ratio: float
    workers_per_pensioner: float
    avg_wage: float
    avg_pension: float

    pension_components: PensionComponents
    cumulative_wage_gap: float

    # Equilibrium mode only
    required_ret_age: Optional[int] = None
    required_pension_ratio: Optional[float] = None


@dataclass(frozen=True)
class PopulationPyramids:
    """Population by year index and age: male[year_index, age]."""

    male: np.ndarray
    female: np.ndarray
    max_age: int


@dataclass(frozen=True)
class ScenarioResult:
    """All output of one projection run."""

    dataset_id: str
    base_year: int
    horizon_years: int
    points: Tuple[YearPoint, ...]
    pyramids: PopulationPyramids
    achieved_e0_male: float
    achieved_e0_female: float
    mortality_factor_male: float
    mortality_factor_female: float

    @property
    def labels(self) -> List[str]:
        return year_labels(self.horizon_years, self.base_year)

    def pyramid(self, year: int) -> Tuple[np.ndarray, np.ndarray]:
        """(male, female) population by age for a calendar year."""
        idx = year - self.base_year
        if not 0 <= idx <= self.horizon_years:
            raise KeyError(
                f"year {year} outside projection {self.base_year}-{self.base_year + self.horizon_years}"
            )
        return self.pyramids.male[idx], self.pyramids.female[idx]

    def to_frame(self) -> pd.DataFrame:
        """Year points as a DataFrame indexed by year, pension components flattened."""
        rows = []
        for point in self.points:
            row = asdict(point)
            row.update(row.pop("pension_components"))
            rows.append(row)
        return pd.DataFrame(rows).set_index("year")


@dataclass(frozen=True)
class PreparedInputs:
    """Per-age arrays derived once per run from the dataset and parameters."""

    qx: np.ndarray  # (2, n_ages)
    asfr: np.ndarray  # (n_ages,)
    employment: np.ndarray  # (2, n_ages), rescaled to target unemployment
    wage_rel: np.ndarray
    migration_shape: np.ndarray
    avg_wage: np.ndarray  # (horizon + 1,)
    real_wage_growth: np.ndarray  # (horizon + 1,), entry 0 unused
    achieved_e0: Tuple[float, float]
    mortality_factors: Tuple[float, float]


def prepare_inputs(dataset: PensionDataset, params: ProjectionParams) -> PreparedInputs:
    meta = dataset.meta
    horizon = params.horizon_years

    # --- Mortality calibrated to target e0 per sex ---
    cal_m = calibrate_mortality(dataset.mortality_mx[Sex.MALE], params.e0_male)
    cal_f = calibrate_mortality(dataset.mortality_mx[Sex.FEMALE], params.e0_female)
    qx = np.vstack([mx_to_qx(cal_m.scaled_mx), mx_to_qx(cal_f.scaled_mx)])
    logger.debug(
        "Mortality factors M=%.4f (e0 %.2f), F=%.4f (e0 %.2f)",
        cal_m.scaling_factor, cal_m.achieved_e0, cal_f.scaling_factor, cal_f.achieved_e0,
    )

    # --- Fertility ---
    shape = expand_age_schedule(dataset.fertility_ages, dataset.fertility_shape, meta.max_age)
    asfr = calculate_asfr(params.tfr, shape)

    # --- Employment at the target unemployment rate ---
    mult = employment_multiplier(params.unemployment_rate, dataset.payg.baseline_unemployment_rate)
    employment = scale_employment(dataset.employment, mult)

    # --- Average wage path ---
    t = np.arange(horizon + 1)
    if params.wage_growth_path is None:
        growth = np.full(horizon + 1, params.wage_growth_real)
        avg_wage = average_wage(dataset.payg.avg_wage0, params.wage_growth_real, t)
    else:
        growth = np.concatenate([[0.0], np.asarray(params.wage_growth_path[:horizon], dtype=float)])
        avg_wage = dataset.payg.avg_wage0 * np.cumprod(1.0 + growth)
    growth[0] = 0.0

    return PreparedInputs(
        qx=qx,
        asfr=asfr,
        employment=employment,
        wage_rel=np.array(dataset.wage_rel),
        migration_shape=np.array(dataset.migration_shape),
        avg_wage=avg_wage,
        real_wage_growth=growth,
        achieved_e0=(cal_m.achieved_e0, cal_f.achieved_e0),
        mortality_factors=(cal_m.scaling_factor, cal_f.scaling_factor),
    )


def baseline_deviation(point: YearPoint, baseline: BaselineTotals) -> Dict[str, float]:
    """Relative deviation of a base-year point from published totals."""
    pairs = {
        "total_pop": (point.total_pop, baseline.total_pop0),
        "wage_bill": (point.wage_bill, baseline.wage_bill0),
        "workers": (point.workers, baseline.workers0),
        "pensioners": (point.pensioners, baseline.pensioners0),
        "contributions": (point.contributions, baseline.contrib_revenue0),
        "benefits": (point.benefits, baseline.benefit_spending0),
    }
    return {
        name: (model - published) / published
        for name, (model, published) in pairs.items()
        if published
    }


class PensionProjector:
    """Cohort-component population projection with PAYG pension accounts."""

    def __init__(
        self,
        dataset: PensionDataset,
        params: ProjectionParams = None,
    ):
        self.dataset = dataset
        self.params = params or ProjectionParams.from_dataset(dataset)
        self.params.validate(dataset.param_ranges)

    def _rules(self) -> PensionRules:
        p = self.params
        return PensionRules(
            basic_amount_ratio=p.basic_amount_ratio,
            percentage_amount_ratio=p.percentage_amount_ratio,
            real_wage_index_share=p.real_wage_index_share,
            min_pension_ratio=p.min_pension_ratio,
            pensioner_cpi=self.dataset.payg.pensioner_cpi,
        )

    def _year_point(
        self,
        pop: np.ndarray,
        prep: PreparedInputs,
        t: int,
        births: float,
        deaths: float,
        net_migration: float,
        pension: IndexationState,
    ) -> YearPoint:
        p = self.params
        snapshot = PaygSnapshot(
            population=pop,
            employment=prep.employment,
            wage_rel=prep.wage_rel,
            avg_wage=float(prep.avg_wage[t]),
            avg_pension=pension.components.total_pension,
            contrib_rate=p.contrib_rate,
            ret_age=p.ret_age,
        )
        acc = snapshot.evaluate()

        required_ret_age = None
        required_pension_ratio = None
        if p.mode == "equilibrium":
            max_age = self.dataset.meta.max_age
            lo, hi = (min(a, max_age) for a in p.ret_age_search)
            required_ret_age = find_required_retirement_age(snapshot, lo, hi)
            required_pension_ratio = find_required_pension_ratio(snapshot)

        return YearPoint(
            year=self.dataset.meta.base_year + t,
            total_pop=float(pop.sum()),
            births=births,
            deaths=deaths,
            net_migration=net_migration,
            pensioners=acc.pensioners,
            workers=acc.workers,
            wage_bill=acc.wage_bill,
            contributions=acc.contributions,
            benefits=acc.benefits,
            balance=acc.balance,
            required_rate=acc.required_rate,
            dependency_ratio=acc.dependency_ratio,
            workers_per_pensioner=acc.workers_per_pensioner,
            avg_wage=snapshot.avg_wage,
            avg_pension=snapshot.avg_pension,
            pension_components=pension.components,
            cumulative_wage_gap=pension.cumulative_wage_gap,
            required_ret_age=required_ret_age,
            required_pension_ratio=required_pension_ratio,
        )

    def run(self) -> ScenarioResult:
        p = self.params
        ds = self.dataset
        n = p.horizon_years + 1

        prep = prepare_inputs(ds, p)
        rules = self._rules()

        # --- Allocate arrays ---
        pyr_m = np.zeros((n, ds.n_ages))
        pyr_f = np.zeros((n, ds.n_ages))
        points: List[YearPoint] = []

        # --- Base year: no stepping ---
        pop = np.array(ds.population)
        pension = initial_pension(ds.payg.avg_wage0, rules)

        points.append(self._year_point(pop, prep, 0, 0.0, 0.0, 0.0, pension))
        pyr_m[0], pyr_f[0] = pop[Sex.MALE], pop[Sex.FEMALE]

        if ds.baseline is not None:
            deviation = baseline_deviation(points[0], ds.baseline)
            logger.debug("Base-year deviation from published totals: %s", deviation)
            if abs(deviation.get("total_pop", 0.0)) > BASELINE_TOLERANCE:
                logger.warning(
                    "Base population %.0f differs from published total %.0f by %.1f%%",
                    points[0].total_pop, ds.baseline.total_pop0,
                    100 * deviation["total_pop"],
                )

        # --- Projection loop ---
        for t in range(1, n):
            step = step_population(
                pop,
                prep.qx,
                prep.asfr,
                prep.migration_shape,
                p.net_mig_per_1000,
                ds.meta.srb,
            )
            pop = step.population

            pension = index_pension(
                pension,
                rules,
                float(prep.avg_wage[t]),
                float(prep.real_wage_growth[t]),
            )

            points.append(
                self._year_point(pop, prep, t, step.births, step.deaths, step.net_migration, pension)
            )
            pyr_m[t], pyr_f[t] = pop[Sex.MALE], pop[Sex.FEMALE]

        pyr_m.setflags(write=False)
        pyr_f.setflags(write=False)

        last = points[-1]
        logger.info(
            "Projected %s %d-%d: population %.0f -> %.0f, balance %.0f -> %.0f",
            ds.meta.dataset_id, points[0].year, last.year,
            points[0].total_pop, last.total_pop, points[0].balance, last.balance,
        )

        return ScenarioResult(
            dataset_id=ds.meta.dataset_id,
            base_year=ds.meta.base_year,
            horizon_years=p.horizon_years,
            points=tuple(points),
            pyramids=PopulationPyramids(male=pyr_m, female=pyr_f, max_age=ds.meta.max_age),
            achieved_e0_male=prep.achieved_e0[0],
            achieved_e0_female=prep.achieved_e0[1],
            mortality_factor_male=prep.mortality_factors[0],
            mortality_factor_female=prep.mortality_factors[1],
        )


def run_projection(
    dataset: PensionDataset,
    params: ProjectionParams = None,
    horizon_years: int = None,
) -> ScenarioResult:
    """Run one scenario; ``horizon_years`` overrides the parameter value."""
    params = params or ProjectionParams.from_dataset(dataset)
    if horizon_years is not None:
        params = replace(params, horizon_years=horizon_years)
    return PensionProjector(dataset, params).run()
