"""
Configuration for the pension projection engine.

Defines the input dataset (base population and structural age curves),
the user-adjustable projection parameters with their allowed ranges, and
scenario presets for the Czech PAYG pension system.
"""

from dataclasses import dataclass, field, fields, replace
from enum import IntEnum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np


class Sex(IntEnum):
    """Row index of the two-sex population arrays."""

    MALE = 0
    FEMALE = 1


SEX_KEYS = {Sex.MALE: "M", Sex.FEMALE: "F"}


class DatasetError(ValueError):
    """Raised when a dataset is malformed (wrong shapes, ages out of bounds)."""


@dataclass(frozen=True)
class DatasetMeta:
    """Dataset metadata: age bounds, base year and sex ratio at birth."""

    dataset_id: str
    base_year: int
    max_age: int
    srb: float  # males per female at birth
    country: str = ""
    currency: str = ""
    age_min_fert: int = 15
    age_max_fert: int = 49
    age_min_work: int = 15
    age_max_work: int = 74


@dataclass(frozen=True)
class PaygParameters:
    """Pension system parameters shipped with a dataset (annual amounts)."""

    contrib_rate: float
    avg_wage0: float
    pensioner_cpi: float  # "duchodcovska inflace", usually above general CPI
    baseline_unemployment_rate: float
    cpi_assumed: float = 0.02
    # Czech two-component pension, as ratios of the average wage
    basic_amount_ratio: float = 0.10
    percentage_amount_ratio: float = 0.30
    real_wage_index_share: float = 1.0 / 3.0
    min_pension_ratio: float = 0.20


@dataclass(frozen=True)
class BaselineTotals:
    """Published base-year aggregates the dataset was built to reproduce."""

    total_pop0: float
    wage_bill0: float
    workers0: float
    pensioners0: float
    contrib_revenue0: float
    benefit_spending0: float


def _as_sex_array(name: str, value, n_ages: int) -> np.ndarray:
    try:
        arr = np.array(value, dtype=float)
    except ValueError as e:
        raise DatasetError(f"{name}: both sexes need {n_ages} numeric ages ({e})") from e
    if arr.shape != (2, n_ages):
        raise DatasetError(
            f"{name}: expected shape (2, {n_ages}) (male, female by age 0..{n_ages - 1}), "
            f"got {arr.shape}"
        )
    if not np.all(np.isfinite(arr)):
        raise DatasetError(f"{name}: contains non-finite values")
    return arr


@dataclass(frozen=True)
class PensionDataset:
    """
    Read-only input dataset.

    All per-age curves are arrays of shape (2, max_age + 1) indexed by
    ``Sex``; the fertility schedule is a sparse (ages, shape) pair.
    """

    meta: DatasetMeta
    population: np.ndarray
    fertility_ages: np.ndarray
    fertility_shape: np.ndarray
    mortality_mx: np.ndarray
    employment: np.ndarray
    wage_rel: np.ndarray
    migration_shape: np.ndarray
    payg: PaygParameters
    baseline: Optional[BaselineTotals] = None
    param_ranges: Dict[str, Tuple[float, float]] = field(default_factory=dict)
    # Scenario defaults shipped with the data, keyed by ProjectionParams field
    defaults: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        if self.meta.max_age < 1:
            raise DatasetError(f"max_age must be at least 1, got {self.meta.max_age}")
        if self.meta.srb <= 0:
            raise DatasetError(f"srb must be positive, got {self.meta.srb}")
        n = self.n_ages

        # Frozen dataclass: normalise through object.__setattr__
        for name in ("population", "mortality_mx", "employment", "wage_rel", "migration_shape"):
            object.__setattr__(self, name, _as_sex_array(name, getattr(self, name), n))

        if np.any(self.population < 0):
            raise DatasetError("population: values must be non-negative")
        if np.any(self.mortality_mx < 0):
            raise DatasetError("mortality_mx: hazard rates must be non-negative")
        if np.any((self.employment < 0) | (self.employment > 1)):
            raise DatasetError("employment: rates must lie in [0, 1]")

        ages = np.array(self.fertility_ages)
        shape = np.array(self.fertility_shape, dtype=float)
        if ages.ndim != 1 or shape.ndim != 1 or len(ages) != len(shape):
            raise DatasetError(
                f"fertility: {len(np.atleast_1d(ages))} ages but "
                f"{len(np.atleast_1d(shape))} shape values"
            )
        if len(ages) and (ages.min() < 0 or ages.max() > self.meta.max_age):
            raise DatasetError(
                f"fertility: ages must lie in [0, {self.meta.max_age}], "
                f"got [{ages.min()}, {ages.max()}]"
            )
        if np.any(shape < 0):
            raise DatasetError("fertility: shape values must be non-negative")
        object.__setattr__(self, "fertility_ages", ages.astype(int))
        object.__setattr__(self, "fertility_shape", shape)

        for arr in (self.population, self.fertility_ages, self.fertility_shape,
                    self.mortality_mx, self.employment, self.wage_rel,
                    self.migration_shape):
            arr.setflags(write=False)

    @property
    def n_ages(self) -> int:
        return self.meta.max_age + 1

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PensionDataset":
        """
        Build a dataset from the nested camelCase layout used by the
        published JSON data files (``meta``, ``basePopulation``, ...).
        """
        try:
            m = data["meta"]
            meta = DatasetMeta(
                dataset_id=m["datasetId"],
                base_year=int(m["baseYear"]),
                max_age=int(m["maxAge"]),
                srb=float(m["srb"]),
                country=m.get("country", ""),
                currency=m.get("currency", ""),
                age_min_fert=int(m.get("ageMinFert", 15)),
                age_max_fert=int(m.get("ageMaxFert", 49)),
                age_min_work=int(m.get("ageMinWork", 15)),
                age_max_work=int(m.get("ageMaxWork", 74)),
            )

            def by_sex(block):
                return [block["M"], block["F"]]

            mort = data["mortalityCurves"]
            if mort.get("mx") is not None:
                mx = by_sex(mort["mx"])
            else:
                # qx given instead of mx: invert qx = 1 - exp(-mx)
                qx = _as_sex_array("mortality_qx", by_sex(mort["qx"]), meta.max_age + 1)
                qx = np.clip(qx, 0.0, 1.0 - 1e-12)
                mx = -np.log1p(-qx)

            pp = data["pensionParams"]
            payg = PaygParameters(
                contrib_rate=pp["contribRate"],
                avg_wage0=pp["avgWage0"],
                pensioner_cpi=pp.get("pensionerCPI", pp.get("cpiAssumed", 0.02)),
                baseline_unemployment_rate=pp["baselineUnemploymentRate"],
                cpi_assumed=pp.get("cpiAssumed", 0.02),
                **_ratio_overrides(m.get("defaults", {})),
            )

            baseline = None
            if data.get("baselineTotals"):
                bt = data["baselineTotals"]
                baseline = BaselineTotals(
                    total_pop0=bt["totalPop0"],
                    wage_bill0=bt["wageBill0"],
                    workers0=bt["workers0"],
                    pensioners0=bt["pensioners0"],
                    contrib_revenue0=bt["contribRevenue0"],
                    benefit_spending0=bt["benefitSpending0"],
                )

            ranges = {
                CAMEL_TO_PARAM[k]: (float(lo), float(hi))
                for k, (lo, hi) in m.get("sliderRanges", {}).items()
                if k in CAMEL_TO_PARAM
            }

            return cls(
                meta=meta,
                population=by_sex(data["basePopulation"]["population"]),
                fertility_ages=data["fertilityCurve"]["ages"],
                fertility_shape=data["fertilityCurve"]["shape"],
                mortality_mx=mx,
                employment=by_sex(data["laborParticipation"]["emp"]),
                wage_rel=by_sex(data["wageProfile"]["wRel"]),
                migration_shape=by_sex(data["migrationShape"]["shape"]),
                payg=payg,
                baseline=baseline,
                param_ranges=ranges,
                defaults=_param_defaults(m.get("defaults", {})),
            )
        except KeyError as e:
            raise DatasetError(f"missing dataset field: {e.args[0]}") from e


# Slider names in the published data files -> ProjectionParams fields
CAMEL_TO_PARAM = {
    "horizonYears": "horizon_years",
    "tfr": "tfr",
    "e0_M": "e0_male",
    "e0_F": "e0_female",
    "netMigPer1000": "net_mig_per_1000",
    "wageGrowthReal": "wage_growth_real",
    "unemploymentRate": "unemployment_rate",
    "contribRate": "contrib_rate",
    "retAge": "ret_age",
    "basicAmountRatio": "basic_amount_ratio",
    "percentageAmountRatio": "percentage_amount_ratio",
    "realWageIndexShare": "real_wage_index_share",
    "minPensionRatio": "min_pension_ratio",
}

_RATIO_FIELDS = ("basic_amount_ratio", "percentage_amount_ratio",
                 "real_wage_index_share", "min_pension_ratio")


_INT_FIELDS = ("horizon_years", "ret_age")


def _param_defaults(defaults: Dict[str, Any]) -> Dict[str, float]:
    out = {}
    for camel, value in defaults.items():
        name = CAMEL_TO_PARAM.get(camel)
        if name is not None:
            out[name] = int(value) if name in _INT_FIELDS else float(value)
    return out


def _ratio_overrides(defaults: Dict[str, Any]) -> Dict[str, float]:
    out = {}
    for camel, name in CAMEL_TO_PARAM.items():
        if name in _RATIO_FIELDS and camel in defaults:
            out[name] = float(defaults[camel])
    return out


@dataclass
class ProjectionParams:
    """All user-adjustable parameters for a projection run."""

    # --- Horizon ---
    horizon_years: int = 50

    # --- Demography ---
    tfr: float = 1.6
    e0_male: float = 76.5  # CZSO 2023: ~76.1 years
    e0_female: float = 82.5  # CZSO 2023: ~82.0 years
    net_mig_per_1000: float = 2.0

    # --- Labour market ---
    wage_growth_real: float = 0.01
    unemployment_rate: float = 0.04
    # Per-year real wage growth; overrides wage_growth_real when given
    wage_growth_path: Optional[Sequence[float]] = None

    # --- PAYG system ---
    contrib_rate: float = 0.28  # 21.5% employer + 6.5% employee
    ret_age: int = 65

    # --- Czech pension components (ratios of the average wage) ---
    basic_amount_ratio: float = 0.10
    percentage_amount_ratio: float = 0.30
    real_wage_index_share: float = 1.0 / 3.0  # law since 2024
    min_pension_ratio: float = 0.20

    # --- Equilibrium ---
    # "balance" reports the balance only; "equilibrium" also solves for the
    # retirement age and pension ratio that would balance each year
    mode: str = "balance"
    ret_age_search: Tuple[int, int] = (50, 80)

    @classmethod
    def from_dataset(cls, dataset: PensionDataset, **overrides) -> "ProjectionParams":
        """
        Parameters seeded from the dataset: its pension settings first, then
        the scenario defaults it ships, then ``overrides``.
        """
        p = dataset.payg
        seeded = dict(
            contrib_rate=p.contrib_rate,
            unemployment_rate=p.baseline_unemployment_rate,
            basic_amount_ratio=p.basic_amount_ratio,
            percentage_amount_ratio=p.percentage_amount_ratio,
            real_wage_index_share=p.real_wage_index_share,
            min_pension_ratio=p.min_pension_ratio,
        )
        seeded.update(dataset.defaults)
        seeded.update(overrides)
        return cls(**seeded)

    def validate(self, ranges: Optional[Dict[str, Tuple[float, float]]] = None) -> None:
        """Raise ValueError listing every parameter outside its allowed range."""
        bounds = dict(DEFAULT_PARAM_RANGES)
        bounds.update(ranges or {})
        problems: List[str] = []
        for name, (lo, hi) in bounds.items():
            value = getattr(self, name)
            if not lo <= value <= hi:
                problems.append(f"{name}={value} outside [{lo}, {hi}]")
        if self.mode not in ("balance", "equilibrium"):
            problems.append(f"mode={self.mode!r} must be 'balance' or 'equilibrium'")
        lo_age, hi_age = self.ret_age_search
        if lo_age > hi_age:
            problems.append(f"ret_age_search={self.ret_age_search} is empty")
        if self.wage_growth_path is not None and len(self.wage_growth_path) < self.horizon_years:
            problems.append(
                f"wage_growth_path has {len(self.wage_growth_path)} years, "
                f"horizon needs {self.horizon_years}"
            )
        if self.wage_growth_path is not None:
            lo, hi = bounds["wage_growth_real"]
            for year, growth in enumerate(self.wage_growth_path, start=1):
                if not lo <= growth <= hi:
                    problems.append(f"wage_growth_path[year {year}]={growth} outside [{lo}, {hi}]")
        if problems:
            raise ValueError("Invalid projection parameters: " + "; ".join(problems))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


# Allowed [min, max] per bounded parameter; datasets may narrow or widen these
DEFAULT_PARAM_RANGES: Dict[str, Tuple[float, float]] = {
    "horizon_years": (1, 100),
    "tfr": (0.0, 4.0),
    "e0_male": (40.0, 100.0),
    "e0_female": (40.0, 100.0),
    "net_mig_per_1000": (-20.0, 30.0),
    "wage_growth_real": (-0.10, 0.10),
    "unemployment_rate": (0.0, 0.50),
    "contrib_rate": (0.0, 1.0),
    "ret_age": (40, 90),
    "basic_amount_ratio": (0.0, 0.5),
    "percentage_amount_ratio": (0.0, 1.0),
    "real_wage_index_share": (0.0, 1.0),
    "min_pension_ratio": (0.0, 1.0),
}


# Named scenario presets
SCENARIO_PRESETS: Dict[str, ProjectionParams] = {
    "Current Law": ProjectionParams(),
    "Low Fertility": ProjectionParams(tfr=1.3, net_mig_per_1000=1.0),
    "Higher Retirement Age": ProjectionParams(ret_age=68),
    "Stagnant Wages": ProjectionParams(
        wage_growth_real=0.0,
        unemployment_rate=0.06,
    ),
    "High Migration": ProjectionParams(net_mig_per_1000=6.0, tfr=1.7),
    "Full Wage Indexation": ProjectionParams(real_wage_index_share=1.0),
    "Reform Package": ProjectionParams(
        ret_age=67,
        contrib_rate=0.30,
        real_wage_index_share=0.25,
        mode="equilibrium",
    ),
}


def preset(name: str, **overrides) -> ProjectionParams:
    """Copy of a named preset with individual fields overridden."""
    return replace(SCENARIO_PRESETS[name], **overrides)


def year_labels(horizon_years: int, base_year: int) -> List[str]:
    """Generate year labels like '2024', '2025', ... through base + horizon."""
    return [str(base_year + t) for t in range(horizon_years + 1)]
