"""
Consistency bars for reliability diagrams.

A reliability diagram plots, per bin, the empirical frequency against the
mean confidence. Even a perfectly calibrated model deviates from the
diagonal because of sampling noise; consistency bars (Bröcker & Smith,
2007) show how large that deviation may be under calibration.

The bars are obtained by consistency resampling: draw confidences with
replacement, draw an outcome for each of them from Bernoulli(confidence),
bin them with the edges of the observed sample and record the deviation
(frequency - mean confidence) of every bin. The quantiles of the deviation,
shifted by the observed mean confidence, give the bars.

This module computes the numbers only; rendering is left to the caller.

Reference
---------
Bröcker, J., & Smith, L. A. (2007). Increasing the reliability of reliability
diagrams. Weather and Forecasting, 22(3), 651-661.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from tqdm import tqdm

from calerr.calibration.binning import Binning, EqualMass, compute_bins
from calerr.core.errors import InvalidParameterError
from calerr.core.sample import CategoricalSample, make_sample


@dataclass
class ConsistencyBars:
    """
    Attributes
    ----------
    confidence : np.ndarray, shape (n_bins,)
        Observed mean confidence per bin (NaN for empty bins).
    frequency : np.ndarray, shape (n_bins,)
        Observed frequency per bin (NaN for empty bins).
    lower, upper : np.ndarray, shape (n_bins,)
        Range of frequencies consistent with calibration at the requested
        coverage.
    count : np.ndarray of int, shape (n_bins,)
    coverage : float
    n_resamples : int
    """

    confidence: np.ndarray
    frequency: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    count: np.ndarray
    coverage: float = 0.95
    n_resamples: int = 1_000

    @property
    def consistent(self) -> np.ndarray:
        """Boolean mask of bins whose observed frequency lies inside its bar."""
        with np.errstate(invalid="ignore"):
            return (self.frequency >= self.lower) & (self.frequency <= self.upper)


def consistency_bars(
    predictions,
    outcomes,
    binning: Optional[Binning] = None,
    coverage: float = 0.95,
    n_resamples: int = 1_000,
    rng=None,
    verbose: bool = False,
) -> ConsistencyBars:
    """
    Consistency bars for the reliability diagram of binary confidences.

    Parameters
    ----------
    predictions : array of float
        Confidences in [0, 1].
    outcomes : array of bool
    binning : Binning
        Default EqualMass(10).
    coverage : float
        Probability mass covered by each bar. Default 0.95.
    n_resamples : int
        Number of consistency resamples. Default 1000.
    rng : int or np.random.Generator, optional
        Source of randomness.
    verbose : bool
        Show a progress bar.

    Returns
    -------
    ConsistencyBars
    """
    if not 0 < coverage < 1:
        raise InvalidParameterError(
            f"consistency_bars: coverage must be in (0, 1), got {coverage}."
        )
    if n_resamples < 1:
        raise InvalidParameterError(
            f"consistency_bars: n_resamples must be positive, got {n_resamples}."
        )
    if binning is None:
        binning = EqualMass(10)

    sample = make_sample(predictions, outcomes, owner="consistency_bars")
    if not (isinstance(sample, CategoricalSample) and sample.binary):
        raise InvalidParameterError(
            "consistency_bars: expects 1-D confidences with boolean outcomes."
        )

    rng = np.random.default_rng(rng)
    bins = compute_bins(binning, sample)
    interior = bins.edges[1:-1]
    n = len(sample)
    n_bins = bins.n_bins

    deviations = np.full((n_resamples, n_bins), np.nan)
    for r in tqdm(range(n_resamples), disable=not verbose, desc="consistency bars"):
        conf = sample.confidence[rng.integers(0, n, size=n)]
        hits = rng.random(n) < conf
        idx = np.searchsorted(interior, conf, side="left")
        cnt = np.bincount(idx, minlength=n_bins)
        filled = cnt > 0
        dev = (
            np.bincount(idx, weights=hits, minlength=n_bins)
            - np.bincount(idx, weights=conf, minlength=n_bins)
        )
        deviations[r, filled] = dev[filled] / cnt[filled]

    alpha = 1.0 - coverage
    lower = np.full(n_bins, np.nan)
    upper = np.full(n_bins, np.nan)
    for b in np.flatnonzero(bins.nonempty):
        col = deviations[:, b]
        col = col[np.isfinite(col)]
        if col.size == 0:
            continue
        lo, hi = np.percentile(col, [100 * alpha / 2, 100 * (1 - alpha / 2)])
        lower[b] = bins.confidence[b] + lo
        upper[b] = bins.confidence[b] + hi

    return ConsistencyBars(
        confidence=bins.confidence,
        frequency=bins.frequency[:, 0],
        lower=lower,
        upper=upper,
        count=bins.count,
        coverage=coverage,
        n_resamples=n_resamples,
    )
