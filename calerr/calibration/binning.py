"""
Binning schemes for ECE estimation and reliability diagrams.

Both policies partition a sample by a 1-D confidence statistic: the raw
confidence for binary samples, the top-class probability for multi-class
probability vectors.

EqualSize(n)
    n bins of equal width. By default the edges span the observed range
    [min, max] of the confidences; pass bounds=(0.0, 1.0) for edges at i/n.
    Bins are closed on the right: a value exactly on an interior edge belongs
    to the lower bin, and the minimum belongs to the first bin.

EqualMass(n)
    Sort the confidences (stable, so ties keep their sample order) and cut
    them into n groups whose sizes differ by at most one; the first N mod n
    bins receive the extra sample. With n > N the trailing bins are empty.

Each bin reports its mean confidence (not its centre), the mean prediction,
the empirical outcome frequencies and its member count, which is exactly the
data a reliability-diagram renderer needs.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from calerr.core.errors import (
    InsufficientSamplesError,
    InvalidParameterError,
    SparseBinsWarning,
)
from calerr.core.sample import CategoricalSample


class Binning:
    """Base class of binning policies."""

    def __init__(self, n: int):
        if isinstance(n, bool) or not isinstance(n, (int, np.integer)) or n <= 0:
            raise InvalidParameterError(
                f"{type(self).__name__}: number of bins n must be a positive integer, got {n!r}."
            )
        self.n = int(n)

    def assign(self, values) -> np.ndarray:
        """Bin index in 0..n-1 of every value."""
        values = np.asarray(values, dtype=float)
        if values.size == 0:
            raise InsufficientSamplesError(
                f"{self!r}: cannot bin an empty sample."
            )
        return self._assign(values)

    def edges(self, values) -> np.ndarray:
        """Bin edges, shape (n + 1,)."""
        raise NotImplementedError

    def _assign(self, values: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class EqualSize(Binning):
    """Bins of equal width, closed on the right."""

    def __init__(self, n: int = 10, bounds: Optional[Tuple[float, float]] = None):
        super().__init__(n)
        if bounds is not None:
            lo, hi = map(float, bounds)
            if not lo < hi:
                raise InvalidParameterError(
                    f"EqualSize: bounds must satisfy lower < upper, got {bounds}."
                )
            bounds = (lo, hi)
        self.bounds = bounds

    def _range(self, values) -> Tuple[float, float]:
        if self.bounds is not None:
            return self.bounds
        values = np.asarray(values, dtype=float)
        return float(values.min()), float(values.max())

    def edges(self, values) -> np.ndarray:
        lo, hi = self._range(values)
        return np.linspace(lo, hi, self.n + 1)

    def _assign(self, values):
        lo, hi = self._range(values)
        if hi == lo:
            return np.zeros(values.size, dtype=int)
        # bin of c is ceil(c * n) - 1 on the unit range; positions within
        # round-off of an edge are snapped onto it so the edge stays in the lower bin
        position = (values - lo) / (hi - lo) * self.n
        nearest = np.rint(position)
        position = np.where(
            np.abs(position - nearest) <= 1e-12 * np.maximum(nearest, 1.0),
            nearest,
            position,
        )
        return np.clip(np.ceil(position) - 1, 0, self.n - 1).astype(int)

    def __repr__(self) -> str:
        if self.bounds is None:
            return f"EqualSize(n={self.n})"
        return f"EqualSize(n={self.n}, bounds={self.bounds})"


class EqualMass(Binning):
    """Bins with (as close as possible to) equal membership."""

    def __init__(self, n: int = 10):
        super().__init__(n)

    def _sizes(self, n_samples: int) -> np.ndarray:
        base, extra = divmod(n_samples, self.n)
        sizes = np.full(self.n, base, dtype=int)
        sizes[:extra] += 1
        return sizes

    def _assign(self, values):
        n_samples = values.size
        if self.n > n_samples:
            warnings.warn(
                f"{self!r} on {n_samples} samples: {self.n - n_samples} bins will be empty.",
                SparseBinsWarning,
                stacklevel=3,
            )
        order = np.argsort(values, kind="stable")
        assignments = np.empty(n_samples, dtype=int)
        assignments[order] = np.repeat(np.arange(self.n), self._sizes(n_samples))
        return assignments

    def edges(self, values) -> np.ndarray:
        values = np.sort(np.asarray(values, dtype=float), kind="stable")
        ends = np.cumsum(self._sizes(values.size))
        edges = np.empty(self.n + 1)
        edges[0] = values[0]
        for b, end in enumerate(ends):
            edges[b + 1] = values[end - 1] if end > 0 else values[0]
        return edges

    def __repr__(self) -> str:
        return f"EqualMass(n={self.n})"


UniformBinning = EqualSize


def get_binning(name: str, n: int = 10) -> Binning:
    """Build a binning policy from its name: "size" / "equal_size" or "mass" / "equal_mass"."""
    key = name.lower().replace("_", "").replace("-", "").replace(" ", "")
    if key in ("size", "equalsize", "uniform"):
        return EqualSize(n)
    if key in ("mass", "equalmass", "quantile"):
        return EqualMass(n)
    raise InvalidParameterError(
        f"Unknown binning '{name}'. Choose from ['equal_mass', 'equal_size']."
    )


# -------------------------------------------------------------------------
# Per-bin statistics
# -------------------------------------------------------------------------

@dataclass
class Bins:
    """
    A partition of a sample into bins, with per-bin statistics.

    Attributes
    ----------
    assignments : np.ndarray of int, shape (n_samples,)
        Bin index of every sample.
    edges : np.ndarray, shape (n_bins + 1,)
    count : np.ndarray of int, shape (n_bins,)
    confidence : np.ndarray, shape (n_bins,)
        Mean confidence per bin. NaN if the bin is empty.
    mean_prediction : np.ndarray, shape (n_bins, D)
        Mean prediction vector per bin (D = 1 for confidences). NaN rows
        for empty bins.
    frequency : np.ndarray, shape (n_bins, D)
        Empirical outcome frequencies per bin (accuracy for confidences).
        NaN rows for empty bins.
    """

    assignments: np.ndarray
    edges: np.ndarray
    count: np.ndarray
    confidence: np.ndarray
    mean_prediction: np.ndarray
    frequency: np.ndarray

    @property
    def n_bins(self) -> int:
        return self.count.shape[0]

    @property
    def n_samples(self) -> int:
        return self.assignments.shape[0]

    @property
    def members(self) -> List[np.ndarray]:
        """Sample indices of every bin, in sample order."""
        return [np.flatnonzero(self.assignments == b) for b in range(self.n_bins)]

    @property
    def nonempty(self) -> np.ndarray:
        return self.count > 0

    def to_frame(self) -> pd.DataFrame:
        """One row per bin, ready for plotting a reliability diagram."""
        df = pd.DataFrame({
            "bin": np.arange(self.n_bins),
            "lower": self.edges[:-1],
            "upper": self.edges[1:],
            "count": self.count,
            "confidence": self.confidence,
        })
        if self.frequency.shape[1] == 1:
            df["frequency"] = self.frequency[:, 0]
        else:
            for k in range(self.frequency.shape[1]):
                df[f"prediction_{k}"] = self.mean_prediction[:, k]
                df[f"frequency_{k}"] = self.frequency[:, k]
        return df


def compute_bins(binning: Binning, sample: CategoricalSample) -> Bins:
    """Partition a categorical sample and compute per-bin statistics."""
    assignments = binning.assign(sample.confidence)
    n_bins = binning.n
    dim = 1 if sample.binary else sample.n_classes

    count = np.bincount(assignments, minlength=n_bins)
    confidence = np.full(n_bins, np.nan)
    mean_prediction = np.full((n_bins, dim), np.nan)
    frequency = np.full((n_bins, dim), np.nan)

    for b in np.flatnonzero(count):
        mask = assignments == b
        confidence[b] = sample.confidence[mask].mean()
        if sample.binary:
            mean_prediction[b, 0] = confidence[b]
            frequency[b, 0] = sample.labels[mask].mean()
        else:
            mean_prediction[b] = sample.probs[mask].mean(axis=0)
            frequency[b] = np.bincount(sample.labels[mask], minlength=dim) / count[b]

    return Bins(
        assignments=assignments,
        edges=binning.edges(sample.confidence),
        count=count,
        confidence=confidence,
        mean_prediction=mean_prediction,
        frequency=frequency,
    )
