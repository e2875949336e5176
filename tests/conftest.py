import copy

import pytest

from pension.config import PensionDataset, ProjectionParams

# Miniature dataset: ages 0-20, 20 is the open interval
MINI_DATA = {
    "meta": {
        "datasetId": "TEST_2024",
        "country": "TEST",
        "baseYear": 2024,
        "maxAge": 20,
        "currency": "TST",
        "ageMinFert": 15,
        "ageMaxFert": 20,
        "ageMinWork": 15,
        "ageMaxWork": 20,
        "srb": 1.055,
        "defaults": {
            "basicAmountRatio": 0.10,
            "percentageAmountRatio": 0.35,
            "realWageIndexShare": 1 / 3,
            "minPensionRatio": 0.20,
        },
        "sliderRanges": {
            "horizonYears": [1, 100],
            "tfr": [0.0, 3.0],
            "e0_M": [15, 35],
            "e0_F": [15, 35],
            "netMigPer1000": [-10, 20],
            "wageGrowthReal": [-0.05, 0.05],
            "unemploymentRate": [0.01, 0.2],
            "retAge": [15, 20],
        },
    },
    "basePopulation": {
        "unit": "persons",
        "population": {
            "M": [5000, 4900, 4800, 4700, 4600, 4500, 4400, 4300, 4200, 4100,
                  4000, 3800, 3600, 3300, 3000, 2700, 2300, 1900, 1500, 1100, 800],
            "F": [4800, 4700, 4600, 4500, 4400, 4300, 4200, 4100, 4000, 3900,
                  3800, 3700, 3600, 3500, 3400, 3200, 2900, 2500, 2100, 1700, 1300],
        },
    },
    "fertilityCurve": {
        "ages": [15, 16, 17, 18, 19, 20],
        "shape": [0.05, 0.15, 0.3, 0.25, 0.15, 0.1],
    },
    "mortalityCurves": {
        "type": "mx",
        "mx": {
            "M": [0.0036, 0.00123, 0.00132, 0.00147, 0.00168, 0.00195, 0.00228, 0.00267,
                  0.00312, 0.00363, 0.0042, 0.00483, 0.00552, 0.00627, 0.00708, 0.00795,
                  0.00888, 0.00987, 0.01092, 0.01203, 0.2],
            "F": [0.003, 0.001025, 0.0011, 0.001225, 0.0014, 0.001625, 0.0019, 0.002225,
                  0.0026, 0.003025, 0.0035, 0.004025, 0.0046, 0.005225, 0.0059, 0.006625,
                  0.0074, 0.008225, 0.0091, 0.010025, 0.2],
        },
    },
    "laborParticipation": {
        "emp": {
            "M": [0] * 15 + [0.7, 0.7, 0.7, 0.7, 0.7, 0.55],
            "F": [0] * 15 + [0.65, 0.65, 0.65, 0.65, 0.65, 0.5],
        },
    },
    "wageProfile": {
        "wRel": {
            "M": [0] * 15 + [0.55, 0.75, 0.95, 1.1, 1.05, 0.85],
            "F": [0] * 15 + [0.5, 0.7, 0.9, 1.05, 1.0, 0.8],
        },
    },
    "pensionParams": {
        "contribRate": 0.2,
        "avgWage0": 100000,
        "cpiAssumed": 0.02,
        "pensionerCPI": 0.025,
        "baselineUnemploymentRate": 0.04,
    },
    "migrationShape": {
        "shape": {
            "M": [0] * 18 + [0.125, 0.25, 0.125],
            "F": [0] * 18 + [0.125, 0.25, 0.125],
        },
    },
    "baselineTotals": {
        "totalPop0": 148700,
        "wageBill0": 1272825000,
        "workers0": 15800,
        "pensioners0": 8500,
        "contribRevenue0": 254565000,
        "benefitSpending0": 382500000,
    },
}


@pytest.fixture
def mini_data():
    return copy.deepcopy(MINI_DATA)


@pytest.fixture
def dataset(mini_data):
    return PensionDataset.from_dict(mini_data)


@pytest.fixture
def params(dataset):
    return ProjectionParams.from_dataset(
        dataset,
        horizon_years=10,
        tfr=1.8,
        e0_male=23.0,
        e0_female=25.0,
        net_mig_per_1000=2.0,
        ret_age=18,
        ret_age_search=(15, 20),
    )
