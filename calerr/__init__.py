"""
calerr: Calibration errors and calibration tests for probabilistic models.

A model is calibrated if its predictions are consistent with the outcomes
they predict. This library estimates how far a model is from that and tests
whether the gap is real or sampling noise.
"""

from calerr.core.distributions import GaussianPredictions, MvNormal, Normal
from calerr.core.errors import (
    CalerrError,
    DimensionMismatchError,
    InsufficientSamplesError,
    InvalidParameterError,
    NotFittedError,
    NumericalError,
    SparseBinsWarning,
)
from calerr.core.sample import make_sample

# Distances and kernels
from calerr.kernels.distances import (
    Cityblock, Euclidean, SqEuclidean, TotalVariation, Wasserstein, get_distance,
)
from calerr.kernels.kernels import (
    ExponentialKernel, GaussianKernel, Matern32Kernel, Matern52Kernel,
    SqExponentialKernel, TensorProductKernel, WassersteinExponentialKernel,
    WhiteKernel, get_kernel, tensor,
)

# Estimators
from calerr.calibration.binning import EqualMass, EqualSize, compute_bins, get_binning
from calerr.calibration.ece import ECE, compute_ece, compute_mce, reliability_curve
from calerr.calibration.reliability import consistency_bars
from calerr.calibration.skce import SKCE, skce_kernel_matrix

# Tests and intervals
from calerr.stats.bootstrap import bootstrap_ci, summary
from calerr.stats.tests import (
    AsymptoticBlockSKCETest,
    AsymptoticSKCETest,
    CalibrationTestResult,
    ConsistencyTest,
    DistributionFreeSKCETest,
    calibration_test,
)

__version__ = "0.1.0"
__all__ = [
    # Core
    "make_sample", "Normal", "MvNormal", "GaussianPredictions",
    # Errors
    "CalerrError", "InvalidParameterError", "DimensionMismatchError",
    "InsufficientSamplesError", "NumericalError", "NotFittedError",
    "SparseBinsWarning",
    # Distances
    "Euclidean", "SqEuclidean", "Cityblock", "TotalVariation", "Wasserstein",
    "get_distance",
    # Kernels
    "ExponentialKernel", "SqExponentialKernel", "GaussianKernel",
    "Matern32Kernel", "Matern52Kernel", "WassersteinExponentialKernel",
    "WhiteKernel", "TensorProductKernel", "tensor", "get_kernel",
    # Estimators
    "EqualSize", "EqualMass", "get_binning", "compute_bins",
    "ECE", "compute_ece", "compute_mce", "reliability_curve", "consistency_bars",
    "SKCE", "skce_kernel_matrix",
    # Tests and intervals
    "AsymptoticSKCETest", "AsymptoticBlockSKCETest", "DistributionFreeSKCETest",
    "ConsistencyTest", "CalibrationTestResult", "calibration_test",
    "bootstrap_ci", "summary",
]
