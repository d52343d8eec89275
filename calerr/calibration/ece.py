"""
Expected calibration error (ECE) estimation.

    ECE_d = E[ d(P_X, law(Y | P_X)) ]

is estimated by partitioning the sample into bins and summing, over the
non-empty bins b,

    (|b| / N) * d(mean prediction in b, empirical outcome frequencies in b)

The estimator is biased and depends on the binning scheme; it is reported
as is. Empty bins are skipped and contribute exactly zero.

Key references
--------------
Naeini, M. P., Cooper, G. F., & Hauskrecht, M. (2015). Obtaining Well Calibrated
Probabilities Using Bayesian Binning. AAAI.

Guo, C., Pleiss, G., Sun, Y., & Weinberger, K. Q. (2017). On Calibration of
Modern Neural Networks. ICML.

Vaicenavicius, J., Widmann, D., Andersson, C., Lindsten, F., Roll, J., &
Schön, T. B. (2019). Evaluating model calibration in classification. AISTATS.
"""

from __future__ import annotations

import math
from typing import Optional, Tuple, Union

import numpy as np

from calerr.calibration.binning import Binning, Bins, compute_bins, get_binning
from calerr.core.errors import InvalidParameterError, NumericalError
from calerr.core.sample import CategoricalSample, Sample, make_sample
from calerr.kernels.distances import Distance, TotalVariation, get_distance


class ECE:
    """
    Binned estimator of the expected calibration error.

    Parameters
    ----------
    binning : Binning
        EqualSize(n) or EqualMass(n).
    distance : Distance or str
        Distance between the mean prediction and the empirical frequencies
        of a bin. Default TotalVariation(). For 1-D confidences it compares
        Bernoulli(conf) with Bernoulli(acc), i.e. |conf - acc|; other
        distances see the one-element vectors [conf] and [acc].

    Notes
    -----
    EqualSize(n) without bounds spreads its edges over the observed range of
    the confidences, so estimates from different samples use different
    edges. Pass EqualSize(n, bounds=(0.0, 1.0)) for fixed i/n edges.

    Examples
    --------
    >>> ece = ECE(EqualSize(5), TotalVariation())
    >>> ece(probs, labels)          # (N, K) probabilities, labels in 0..K-1
    >>> ece(confidence, correct)    # 1-D confidences, boolean outcomes
    """

    def __init__(
        self,
        binning: Binning,
        distance: Union[Distance, str, None] = None,
    ):
        if not isinstance(binning, Binning):
            raise InvalidParameterError(
                f"ECE: binning must be EqualSize or EqualMass, got {type(binning).__name__}."
            )
        if distance is None:
            distance = TotalVariation()
        elif isinstance(distance, str):
            distance = get_distance(distance)
        if not isinstance(distance, Distance):
            raise InvalidParameterError(
                f"ECE: distance must be a Distance, got {type(distance).__name__}."
            )
        self.binning = binning
        self.distance = distance

    def _sample(self, predictions, outcomes) -> CategoricalSample:
        sample = make_sample(predictions, outcomes, owner=repr(self))
        return self._check(sample)

    def _check(self, sample: Sample) -> CategoricalSample:
        if not isinstance(sample, CategoricalSample):
            raise InvalidParameterError(
                f"{self!r}: ECE is only defined for confidences and probability "
                "vectors, not for Gaussian predictions."
            )
        return sample

    def bins(self, predictions, outcomes) -> Bins:
        """Per-bin statistics of the sample (for reliability diagrams)."""
        return compute_bins(self.binning, self._sample(predictions, outcomes))

    def bin_distances(self, bins: Bins) -> np.ndarray:
        """Distance between mean prediction and frequency per bin (NaN if empty)."""
        out = np.full(bins.n_bins, np.nan)
        # total variation of Bernoulli(conf) and Bernoulli(acc) is |conf - acc|
        bernoulli = bins.frequency.shape[1] == 1 and isinstance(self.distance, TotalVariation)
        for b in np.flatnonzero(bins.nonempty):
            prediction, frequency = bins.mean_prediction[b], bins.frequency[b]
            if bernoulli:
                prediction = np.array([1.0 - prediction[0], prediction[0]])
                frequency = np.array([1.0 - frequency[0], frequency[0]])
            out[b] = self.distance(prediction, frequency)
        if not np.all(np.isfinite(out[bins.nonempty])):
            raise NumericalError(f"{self!r}: distance evaluated to NaN or Inf.")
        return out

    def estimate(self, sample: Sample) -> float:
        """ECE of an already validated sample."""
        bins = compute_bins(self.binning, self._check(sample))
        distances = self.bin_distances(bins)
        nonempty = bins.nonempty
        weights = bins.count[nonempty] / bins.n_samples
        return float(math.fsum(weights * distances[nonempty]))

    def __call__(self, predictions, outcomes) -> float:
        return self.estimate(self._sample(predictions, outcomes))

    def __repr__(self) -> str:
        return f"ECE({self.binning!r}, {self.distance!r})"


# -------------------------------------------------------------------------
# Functional helpers
# -------------------------------------------------------------------------

def compute_ece(
    predictions,
    outcomes,
    n_bins: int = 10,
    strategy: str = "size",
    distance: Union[Distance, str, None] = None,
) -> float:
    """
    Expected Calibration Error (ECE).

    ECE = sum_b (|B_b| / n) * d(conf(B_b), acc(B_b))

    Parameters
    ----------
    predictions : array
        1-D confidences in [0, 1] or an (N, K) matrix of probability vectors.
    outcomes : array
        Booleans (correct / incorrect) for confidences, class labels otherwise.
    n_bins : int
        Number of bins. Default 10.
    strategy : str
        "size" (equal-width bins over the observed confidence range) or
        "mass" (equal-frequency bins).
    distance : Distance or str
        Default TotalVariation(), which is |conf - acc| for 1-D confidences.

    Returns
    -------
    float
        ECE estimate. Lower is better.
    """
    return ECE(get_binning(strategy, n_bins), distance)(predictions, outcomes)


def compute_mce(
    predictions,
    outcomes,
    n_bins: int = 10,
    strategy: str = "size",
    distance: Union[Distance, str, None] = None,
) -> float:
    """
    Maximum Calibration Error (MCE).

    The worst-case calibration gap across all non-empty bins.

    MCE = max_b d(conf(B_b), acc(B_b))
    """
    ece = ECE(get_binning(strategy, n_bins), distance)
    distances = ece.bin_distances(ece.bins(predictions, outcomes))
    return float(np.nanmax(distances))


def reliability_curve(
    predictions,
    outcomes,
    n_bins: int = 10,
    strategy: str = "size",
    binning: Optional[Binning] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Compute data for a reliability (calibration) diagram.

    Parameters
    ----------
    predictions : array
        1-D confidences in [0, 1].
    outcomes : array of bool
    n_bins : int
    strategy : str  "size" or "mass"
    binning : Binning, optional
        Overrides n_bins and strategy.

    Returns
    -------
    bin_confidence : np.ndarray, shape (n_bins,)
        Mean confidence in each bin. NaN if bin is empty.
    bin_frequency : np.ndarray, shape (n_bins,)
        Fraction of positive outcomes in each bin. NaN if bin is empty.
    bin_count : np.ndarray of int, shape (n_bins,)
        Number of samples in each bin.
    """
    if binning is None:
        binning = get_binning(strategy, n_bins)
    sample = make_sample(predictions, outcomes, owner="reliability_curve")
    if not (isinstance(sample, CategoricalSample) and sample.binary):
        raise InvalidParameterError(
            "reliability_curve: expects 1-D confidences with boolean outcomes."
        )
    bins = compute_bins(binning, sample)
    return bins.confidence, bins.frequency[:, 0], bins.count
