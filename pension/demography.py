"""
Cohort-component demography.

Life tables from central death rates, calibration of a mortality curve to a
target life expectancy, and the one-year population step:

1. Mortality    survivors = pop * (1 - qx)
2. Aging        everyone moves up one year; the last age is an open interval
3. Migration    net migrants as a rate of the post-aging population
4. Births       age-specific fertility applied to post-migration women

Populations are arrays of shape (2, max_age + 1) indexed by ``Sex``.
"""

import logging
from dataclasses import dataclass

import numpy as np

from .config import Sex

logger = logging.getLogger(__name__)

LIFE_TABLE_RADIX = 100_000.0

# Bisection bracket for the mortality scaling factor:
# lower factor = lower mortality = higher e0
CALIBRATION_LOW = 0.05
CALIBRATION_HIGH = 5.0


# ============================================================
# LIFE TABLE
# ============================================================

def mx_to_qx(mx) -> np.ndarray:
    """Annual death probability from the central death rate, qx = 1 - exp(-mx)."""
    mx = np.asarray(mx, dtype=float)
    qx = -np.expm1(-np.maximum(mx, 0.0))
    return np.clip(qx, 0.0, 1.0)


def scale_mortality(mx, factor: float) -> np.ndarray:
    return np.asarray(mx, dtype=float) * factor


@dataclass(frozen=True)
class LifeTable:
    """Period life table columns, indexed by age."""

    qx: np.ndarray
    lx: np.ndarray
    dx: np.ndarray
    Lx: np.ndarray
    Tx: np.ndarray
    ex: np.ndarray
    radix: float = LIFE_TABLE_RADIX

    @property
    def e0(self) -> float:
        return float(self.Tx[0] / self.radix)


def build_life_table(mx, radix: float = LIFE_TABLE_RADIX) -> LifeTable:
    mx = np.asarray(mx, dtype=float)
    if mx.ndim != 1 or len(mx) < 1:
        raise ValueError(f"mx must be a non-empty 1-d array, got shape {mx.shape}")
    max_age = len(mx) - 1
    qx = mx_to_qx(mx)

    lx = np.empty(max_age + 1)
    lx[0] = radix
    lx[1:] = radix * np.cumprod(1.0 - qx[:-1])

    dx = np.empty(max_age + 1)
    dx[:-1] = lx[:-1] - lx[1:]
    dx[-1] = lx[-1]  # everyone in the open interval eventually dies

    Lx = np.empty(max_age + 1)
    Lx[:-1] = 0.5 * (lx[:-1] + lx[1:])
    # Open interval: lx / mx, guarded against zero terminal mortality
    Lx[-1] = lx[-1] / mx[-1] if mx[-1] > 0 else lx[-1]

    Tx = np.cumsum(Lx[::-1])[::-1]

    ex = np.zeros(max_age + 1)
    alive = lx > 0
    ex[alive] = Tx[alive] / lx[alive]

    return LifeTable(qx=qx, lx=lx, dx=dx, Lx=Lx, Tx=Tx, ex=ex, radix=radix)


def life_expectancy(mx) -> float:
    """Life expectancy at birth (e0) for a mortality curve."""
    return build_life_table(mx).e0


# ============================================================
# MORTALITY CALIBRATION
# ============================================================

@dataclass(frozen=True)
class CalibrationResult:
    scaled_mx: np.ndarray
    achieved_e0: float
    scaling_factor: float


def calibrate_mortality(
    base_mx,
    target_e0: float,
    max_iterations: int = 50,
    tolerance: float = 0.01,
) -> CalibrationResult:
    """
    Find k such that e0(k * base_mx) is within ``tolerance`` years of
    ``target_e0``, by bisection over k in [0.05, 5.0].

    e0 falls as k rises, so a result above target moves the lower bound up.
    Targets outside the bracket are clamped to the nearest bound.
    """
    base_mx = np.asarray(base_mx, dtype=float)
    low, high = CALIBRATION_LOW, CALIBRATION_HIGH

    e0_low = life_expectancy(scale_mortality(base_mx, low))
    e0_high = life_expectancy(scale_mortality(base_mx, high))

    if target_e0 >= e0_low:
        logger.warning(
            "Target e0 %.2f unreachable (max %.2f at factor %.2f); clamping",
            target_e0, e0_low, low,
        )
        return CalibrationResult(scale_mortality(base_mx, low), e0_low, low)
    if target_e0 <= e0_high:
        logger.warning(
            "Target e0 %.2f unreachable (min %.2f at factor %.2f); clamping",
            target_e0, e0_high, high,
        )
        return CalibrationResult(scale_mortality(base_mx, high), e0_high, high)

    mid = 1.0
    scaled = base_mx
    mid_e0 = life_expectancy(base_mx)
    for i in range(max_iterations):
        mid = 0.5 * (low + high)
        scaled = scale_mortality(base_mx, mid)
        mid_e0 = life_expectancy(scaled)

        if abs(mid_e0 - target_e0) < tolerance:
            logger.debug(
                "Calibrated e0 %.3f (target %.3f) with factor %.4f after %d iterations",
                mid_e0, target_e0, mid, i + 1,
            )
            break

        if mid_e0 > target_e0:
            low = mid  # too long-lived -> more mortality
        else:
            high = mid

    return CalibrationResult(scaled, mid_e0, mid)


# ============================================================
# AGE SCHEDULES
# ============================================================

def expand_age_schedule(ages, values, max_age: int) -> np.ndarray:
    """Full 0..max_age array from sparse (age, value) pairs; missing ages are 0."""
    ages = np.asarray(ages, dtype=int)
    values = np.asarray(values, dtype=float)
    if ages.shape != values.shape:
        raise ValueError(f"{len(ages)} ages but {len(values)} values")
    if len(ages) and (ages.min() < 0 or ages.max() > max_age):
        raise ValueError(f"ages must lie in [0, {max_age}]")
    full = np.zeros(max_age + 1)
    full[ages] = values
    return full


def calculate_asfr(tfr: float, shape) -> np.ndarray:
    return tfr * np.asarray(shape, dtype=float)


def scale_employment(base_emp, multiplier: float) -> np.ndarray:
    return np.clip(np.asarray(base_emp, dtype=float) * multiplier, 0.0, 1.0)


def employment_multiplier(unemployment_rate: float, baseline_unemployment_rate: float) -> float:
    """Employment scaling that moves the dataset's baseline unemployment to the target."""
    return (1.0 - unemployment_rate) / (1.0 - baseline_unemployment_rate)


# ============================================================
# COHORT-COMPONENT STEP
# ============================================================

def calculate_survivors(population, qx) -> np.ndarray:
    qx = np.clip(np.asarray(qx, dtype=float), 0.0, 1.0)
    return np.asarray(population, dtype=float) * (1.0 - qx)


def count_deaths(population, qx) -> float:
    qx = np.clip(np.asarray(qx, dtype=float), 0.0, 1.0)
    return float(np.sum(np.asarray(population, dtype=float) * qx))


def age_cohorts(survivors) -> np.ndarray:
    """Shift every cohort up one year along the last axis; the final age accumulates."""
    survivors = np.asarray(survivors, dtype=float)
    aged = np.zeros_like(survivors)
    aged[..., 1:] = survivors[..., :-1]
    aged[..., -1] += survivors[..., -1]
    return aged


def distribute_migration(total_net_migrants: float, shape) -> np.ndarray:
    return total_net_migrants * np.asarray(shape, dtype=float)


def apply_migration(population, net_migration) -> np.ndarray:
    """Add net migrants per cell, clamping emptied cells at zero."""
    return np.maximum(0.0, np.asarray(population, dtype=float) + net_migration)


@dataclass(frozen=True)
class BirthResult:
    total: float
    male: float
    female: float


def calculate_births(female_population, asfr, srb: float) -> BirthResult:
    total = float(np.dot(np.asarray(female_population, dtype=float), asfr))
    p_male = srb / (1.0 + srb)
    return BirthResult(total=total, male=total * p_male, female=total * (1.0 - p_male))


@dataclass(frozen=True)
class StepResult:
    population: np.ndarray
    births: float
    deaths: float
    net_migration: float  # after clamping, so totals reconcile exactly


def step_population(
    population,
    qx,
    asfr,
    migration_shape,
    net_mig_per_1000: float,
    srb: float,
) -> StepResult:
    """Advance a (2, max_age + 1) population by one year."""
    population = np.asarray(population, dtype=float)
    qx = np.asarray(qx, dtype=float)
    if population.ndim != 2 or population.shape[0] != len(Sex):
        raise ValueError(f"population must have shape (2, n_ages), got {population.shape}")
    for name, arr in (("qx", qx), ("migration_shape", np.asarray(migration_shape))):
        if arr.shape != population.shape:
            raise ValueError(f"{name} shape {arr.shape} does not match population {population.shape}")
    if np.shape(asfr) != (population.shape[1],):
        raise ValueError(f"asfr must have {population.shape[1]} ages, got {np.shape(asfr)}")

    # 1. Mortality
    survivors = calculate_survivors(population, qx)
    deaths = count_deaths(population, qx)

    # 2. Aging
    aged = age_cohorts(survivors)

    # 3. Migration, proportional to the current (post-aging) population
    pre_migration_total = aged.sum()
    total_net_migrants = (net_mig_per_1000 / 1000.0) * pre_migration_total
    aged = apply_migration(aged, distribute_migration(total_net_migrants, migration_shape))
    net_migration = float(aged.sum() - pre_migration_total)

    # 4. Births from post-migration women
    births = calculate_births(aged[Sex.FEMALE], asfr, srb)
    aged[Sex.MALE, 0] += births.male
    aged[Sex.FEMALE, 0] += births.female

    return StepResult(
        population=aged,
        births=births.total,
        deaths=deaths,
        net_migration=net_migration,
    )
