"""
calerr.calibration — calibration error estimators.

Public API
----------
EqualSize, EqualMass : binning policies
compute_bins         : per-bin statistics of a sample (Bins)
ECE                  : binned expected calibration error estimator
compute_ece          : ECE for a single (predictions, outcomes) pair
compute_mce          : maximum calibration error over bins
reliability_curve    : reliability diagram data for binary confidences
consistency_bars     : consistency bars for a reliability diagram
SKCE                 : squared kernel calibration error estimator
skce_kernel_matrix   : full matrix of the SKCE h-statistic
"""

from calerr.calibration.binning import (
    Binning, Bins, EqualMass, EqualSize, UniformBinning, compute_bins, get_binning,
)
from calerr.calibration.ece import ECE, compute_ece, compute_mce, reliability_curve
from calerr.calibration.reliability import ConsistencyBars, consistency_bars
from calerr.calibration.skce import SKCE, skce_kernel_matrix

__all__ = [
    "Binning", "EqualSize", "EqualMass", "UniformBinning", "get_binning",
    "Bins", "compute_bins",
    "ECE", "compute_ece", "compute_mce", "reliability_curve",
    "ConsistencyBars", "consistency_bars",
    "SKCE", "skce_kernel_matrix",
]
