"""
Samples of (prediction, outcome) pairs: the only input calerr consumes.

Three kinds of samples are supported:

  - binary confidence samples: a 1-D array of confidences in [0, 1] with
    boolean outcomes ("the predicted class was correct")
  - categorical samples: an (N, K) array of probability vectors with integer
    class labels in 0..K-1
  - Gaussian samples: a batch of Normal / MvNormal predictions with real
    valued targets

`make_sample` validates raw user input and returns one of the frozen sample
containers below. Estimators never mutate a sample.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

import numpy as np

from calerr.core.distributions import GaussianPredictions, MvNormal, Normal
from calerr.core.errors import DimensionMismatchError, InvalidParameterError

_SIMPLEX_TOL = 1e-6


@dataclass(frozen=True)
class CategoricalSample:
    """
    Probability vectors and class labels.

    Attributes
    ----------
    probs : np.ndarray, shape (N, K)
    labels : np.ndarray of int, shape (N,)
    confidence : np.ndarray, shape (N,)
        The 1-D statistic used for binning: the raw confidence for binary
        samples, the top-class probability otherwise.
    binary : bool
        True if the sample was built from 1-D confidences.
    """

    probs: np.ndarray
    labels: np.ndarray
    confidence: np.ndarray
    binary: bool = False

    def __len__(self) -> int:
        return self.labels.shape[0]

    @property
    def n_classes(self) -> int:
        return self.probs.shape[1]

    def subset(self, idx) -> "CategoricalSample":
        idx = np.asarray(idx)
        return CategoricalSample(
            probs=self.probs[idx],
            labels=self.labels[idx],
            confidence=self.confidence[idx],
            binary=self.binary,
        )

    def resample_outcomes(self, rng: np.random.Generator) -> "CategoricalSample":
        """Redraw every label from its own prediction."""
        u = rng.random(len(self))
        cdf = np.cumsum(self.probs, axis=1)
        labels = (cdf < u[:, np.newaxis]).sum(axis=1)
        labels = np.minimum(labels, self.n_classes - 1)
        return CategoricalSample(
            probs=self.probs,
            labels=labels,
            confidence=self.confidence,
            binary=self.binary,
        )


@dataclass(frozen=True)
class GaussianSample:
    """Gaussian predictions with real-valued targets of shape (N, d)."""

    predictions: GaussianPredictions
    targets: np.ndarray

    def __len__(self) -> int:
        return self.targets.shape[0]

    @property
    def dim(self) -> int:
        return self.targets.shape[1]

    def subset(self, idx) -> "GaussianSample":
        idx = np.asarray(idx)
        return GaussianSample(self.predictions[idx], self.targets[idx])

    def resample_outcomes(self, rng: np.random.Generator) -> "GaussianSample":
        return GaussianSample(self.predictions, self.predictions.sample(rng))


Sample = Union[CategoricalSample, GaussianSample]


def _is_gaussian(predictions) -> bool:
    if isinstance(predictions, GaussianPredictions):
        return True
    if isinstance(predictions, (Normal, MvNormal)):
        return True
    if isinstance(predictions, (list, tuple)) and predictions:
        return isinstance(predictions[0], (Normal, MvNormal))
    return False


def _as_labels(outcomes: np.ndarray, owner: str) -> np.ndarray:
    if outcomes.dtype == bool:
        return outcomes.astype(int)
    if np.issubdtype(outcomes.dtype, np.integer):
        return outcomes.astype(int)
    if np.issubdtype(outcomes.dtype, np.floating) and np.all(np.mod(outcomes, 1) == 0):
        return outcomes.astype(int)
    raise InvalidParameterError(
        f"{owner}: outcomes of categorical predictions must be integer class "
        f"labels, got dtype {outcomes.dtype}."
    )


def _gaussian_sample(predictions, outcomes, owner: str) -> GaussianSample:
    if isinstance(predictions, (Normal, MvNormal)):
        predictions = [predictions]
    if not isinstance(predictions, GaussianPredictions):
        try:
            predictions = GaussianPredictions.from_distributions(predictions)
        except DimensionMismatchError as exc:
            raise DimensionMismatchError(f"{owner}: {exc}") from exc

    targets = np.asarray(outcomes, dtype=float)
    if targets.ndim == 1:
        targets = targets[:, np.newaxis] if predictions.dim == 1 else targets[np.newaxis, :]
    if targets.ndim != 2 or targets.shape[0] != len(predictions):
        raise DimensionMismatchError(
            f"{owner}: got {len(predictions)} predictions but outcomes of shape "
            f"{np.shape(outcomes)}."
        )
    if targets.shape[1] != predictions.dim:
        raise DimensionMismatchError(
            f"{owner}: predictions have dimension {predictions.dim} but outcomes "
            f"have dimension {targets.shape[1]}."
        )
    return GaussianSample(predictions, targets)


def make_sample(predictions, outcomes, owner: str = "sample") -> Sample:
    """
    Validate raw predictions and outcomes and wrap them in a sample container.

    Parameters
    ----------
    predictions : array-like or GaussianPredictions or sequence of Normal / MvNormal
        1-D confidences, an (N, K) matrix of probability vectors (a list of
        vectors is accepted), or Gaussian predictions.
    outcomes : array-like
        Booleans for confidences, class labels for probability vectors, real
        values for Gaussian predictions.
    owner : str
        Name of the estimator or test asking, used in error messages.

    Returns
    -------
    CategoricalSample or GaussianSample

    Raises
    ------
    DimensionMismatchError
        If lengths differ or probability vectors have inconsistent sizes.
    InvalidParameterError
        If probabilities are off the simplex or labels are out of range.
    """
    if _is_gaussian(predictions):
        return _gaussian_sample(predictions, outcomes, owner)

    try:
        probs = np.asarray(predictions, dtype=float)
    except ValueError as exc:
        raise DimensionMismatchError(
            f"{owner}: probability vectors have inconsistent dimensions."
        ) from exc
    outcomes = np.asarray(outcomes)

    if outcomes.ndim != 1:
        raise DimensionMismatchError(
            f"{owner}: outcomes must be 1-D, got shape {outcomes.shape}."
        )
    if probs.shape[0] != outcomes.shape[0]:
        raise DimensionMismatchError(
            f"{owner}: got {probs.shape[0]} predictions but {outcomes.shape[0]} outcomes."
        )
    if not np.all(np.isfinite(probs)):
        raise InvalidParameterError(f"{owner}: predictions contain NaN or Inf.")

    labels = _as_labels(outcomes, owner)

    if probs.ndim == 1:
        if np.any((probs < 0) | (probs > 1)):
            raise InvalidParameterError(
                f"{owner}: confidences must lie in [0, 1]."
            )
        if np.any((labels != 0) & (labels != 1)):
            raise InvalidParameterError(
                f"{owner}: outcomes of confidence predictions must be boolean."
            )
        return CategoricalSample(
            probs=np.column_stack([1.0 - probs, probs]),
            labels=labels,
            confidence=probs,
            binary=True,
        )

    if probs.ndim != 2:
        raise DimensionMismatchError(
            f"{owner}: predictions must be 1-D or 2-D, got shape {probs.shape}."
        )
    if np.any(probs < -_SIMPLEX_TOL) or np.any(np.abs(probs.sum(axis=1) - 1.0) > _SIMPLEX_TOL):
        raise InvalidParameterError(
            f"{owner}: every prediction must be a probability vector "
            "(non-negative entries summing to 1)."
        )
    n_classes = probs.shape[1]
    if labels.size and (labels.min() < 0 or labels.max() >= n_classes):
        raise InvalidParameterError(
            f"{owner}: class labels must lie in 0..{n_classes - 1}."
        )
    return CategoricalSample(
        probs=probs,
        labels=labels,
        confidence=probs.max(axis=1) if probs.size else np.empty(0),
        binary=False,
    )
