from calerr.stats.bootstrap import BootstrapCI, bootstrap_ci, summary
from calerr.stats.tests import (
    AsymptoticBlockSKCETest,
    AsymptoticSKCETest,
    CalibrationTestResult,
    ConsistencyTest,
    DistributionFreeSKCETest,
    calibration_test,
    uniform_bound,
)

__all__ = [
    "bootstrap_ci", "summary", "BootstrapCI",
    "AsymptoticSKCETest", "AsymptoticBlockSKCETest",
    "DistributionFreeSKCETest", "ConsistencyTest",
    "CalibrationTestResult", "calibration_test", "uniform_bound",
]
