"""
calerr.core — samples, Gaussian predictions and the error taxonomy.

Public API
----------
make_sample         : validate (predictions, outcomes) into a sample container
CategoricalSample   : probability vectors (or binary confidences) and labels
GaussianSample      : Gaussian predictions and real-valued targets
Normal, MvNormal    : single Gaussian predictions
GaussianPredictions : batch of Gaussian predictions
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
from calerr.core.sample import CategoricalSample, GaussianSample, make_sample

__all__ = [
    "make_sample", "CategoricalSample", "GaussianSample",
    "Normal", "MvNormal", "GaussianPredictions",
    "CalerrError", "InvalidParameterError", "DimensionMismatchError",
    "InsufficientSamplesError", "NumericalError", "NotFittedError",
    "SparseBinsWarning",
]
