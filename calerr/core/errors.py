"""
Error taxonomy for calerr.

Every exception derives from CalerrError and from the builtin exception a
caller would naturally catch for that situation, so `except ValueError`
keeps working for configuration and data problems.
"""

from __future__ import annotations


class CalerrError(Exception):
    """Base class for all calerr errors."""


class InvalidParameterError(CalerrError, ValueError):
    """A configuration parameter is out of range (raised at construction)."""


class DimensionMismatchError(CalerrError, ValueError):
    """Predictions and outcomes (or probability vectors) do not line up."""


class InsufficientSamplesError(CalerrError, ValueError):
    """The sample is too small for the requested estimator or test."""


class NumericalError(CalerrError, ArithmeticError):
    """A kernel, distance or statistic evaluated to NaN or Inf."""


class NotFittedError(CalerrError, RuntimeError):
    """A calibration test was queried before it consumed a sample."""


class SparseBinsWarning(UserWarning):
    """More bins were requested than there are samples to fill them."""
