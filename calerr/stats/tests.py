"""
Statistical tests of the null hypothesis "the model is calibrated".

Implements:
1. AsymptoticSKCETest: unbiased quadratic SKCE with its asymptotic null
   distribution (a weighted sum of centred chi-squares)
2. AsymptoticBlockSKCETest: block SKCE, asymptotically normal, z-test
3. DistributionFreeSKCETest: finite-sample concentration bounds on the
   biased or unbiased SKCE estimator
4. ConsistencyTest: consistency resampling of any calibration estimator
   (ECE or SKCE) under the calibrated null

Every test is configured first, then fitted on a sample:

>>> test = AsymptoticSKCETest(kernel).fit(probs, labels)
>>> test.pvalue()
>>> print(test.result())

The distribution-free test holds for every sample size but is typically
much more conservative (less power) than the asymptotic tests.

References:
    Vaicenavicius, J., Widmann, D., Andersson, C., Lindsten, F., Roll, J., &
    Schön, T. B. (2019). Evaluating model calibration in classification. AISTATS.

    Widmann, D., Lindsten, F., & Zachariah, D. (2019). Calibration tests in
    multi-class classification: A unifying framework. NeurIPS.

    Arcones, M. A., & Giné, E. (1992). On the bootstrap of U and V statistics.
    The Annals of Statistics, 20(2), 655-674.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
from joblib import Parallel, delayed
from scipy import stats
from tqdm import tqdm

from calerr.calibration.binning import EqualSize
from calerr.calibration.ece import ECE
from calerr.calibration.skce import SKCE, h_block
from calerr.core.errors import (
    InsufficientSamplesError,
    InvalidParameterError,
    NotFittedError,
    NumericalError,
)
from calerr.core.sample import Sample, make_sample
from calerr.kernels.kernels import TensorProductKernel, WhiteKernel

_CHUNK = 100


@dataclass
class CalibrationTestResult:
    """
    Output of a calibration test.

    Attributes
    ----------
    method : str
        Name of the test.
    estimate : float
        Point estimate of the calibration error.
    null_value : float
        Value of the calibration error under the null hypothesis (0).
    statistic : float
        Test statistic (N * estimate, z-value, or the estimate itself).
    p_value : float
        p-value of the null hypothesis "the model is calibrated".
    n_samples : int
    alpha : float
        Significance threshold used for the conclusion.
    conclusion : str
        Human-readable conclusion.
    null_distribution : np.ndarray, optional
        Resampled statistics under the null, for resampling-based p-values.
    """

    method: str
    estimate: float
    null_value: float
    statistic: float
    p_value: float
    n_samples: int
    alpha: float
    conclusion: str
    null_distribution: Optional[np.ndarray] = None

    @property
    def rejected(self) -> bool:
        return self.p_value < self.alpha

    def __repr__(self) -> str:
        lines = [
            f"{'─'*60}",
            f"  Test       : {self.method}",
            f"  Samples    : {self.n_samples}",
            f"  Estimate   : {self.estimate:.6g}  (null value {self.null_value:g})",
            f"  Statistic  : {self.statistic:.6g}",
            f"  p-value    : {self.p_value:.4f}  (α={self.alpha})",
            f"  Conclusion : {self.conclusion}",
            f"{'─'*60}",
        ]
        return "\n".join(lines)


class _CalibrationTest:
    """Configured -> fit(predictions, outcomes) -> evaluated."""

    method = "calibration test"
    note = ""

    def __init__(self):
        self._sample: Optional[Sample] = None
        self._estimate: Optional[float] = None
        self._statistic: Optional[float] = None
        self._null_distribution: Optional[np.ndarray] = None

    @property
    def fitted(self) -> bool:
        return self._sample is not None

    def _require_fit(self, what: str) -> None:
        if not self.fitted:
            raise NotFittedError(
                f"{self!r}: call fit(predictions, outcomes) before requesting the {what}."
            )

    def fit(self, predictions, outcomes):
        sample = make_sample(predictions, outcomes, owner=repr(self))
        self._fit(sample)
        self._sample = sample
        self._null_distribution = None
        return self

    def _fit(self, sample: Sample) -> None:
        raise NotImplementedError

    @property
    def n_samples(self) -> int:
        self._require_fit("sample size")
        return len(self._sample)

    @property
    def estimate(self) -> float:
        self._require_fit("estimate")
        return self._estimate

    @property
    def statistic(self) -> float:
        self._require_fit("test statistic")
        return self._statistic

    def pvalue(self, **kwargs) -> float:
        raise NotImplementedError

    def result(self, alpha: float = 0.05, **pvalue_kwargs) -> CalibrationTestResult:
        if not 0 < alpha < 1:
            raise InvalidParameterError(f"{self!r}: alpha must be in (0, 1), got {alpha}.")
        p = self.pvalue(**pvalue_kwargs)
        if p < alpha:
            conclusion = f"Calibration rejected (p={p:.4f} < α={alpha})."
        else:
            conclusion = f"No evidence against calibration (p={p:.4f} ≥ α={alpha})."
        if self.note:
            conclusion += f" {self.note}"
        return CalibrationTestResult(
            method=self.method,
            estimate=float(self._estimate),
            null_value=0.0,
            statistic=float(self._statistic),
            p_value=float(p),
            n_samples=self.n_samples,
            alpha=alpha,
            conclusion=conclusion,
            null_distribution=self._null_distribution,
        )


# -----------------------------------------------------------------------
# Asymptotic test (quadratic)
# -----------------------------------------------------------------------

class AsymptoticSKCETest(_CalibrationTest):
    """
    Asymptotic test based on the unbiased quadratic SKCE estimator.

    Under the null, N * SKCE_u converges in distribution to
    sum_i l_i (Z_i^2 - 1) with Z_i i.i.d. standard normal, where l_i are
    the eigenvalues of the integral operator of h. They are estimated by
    the eigenvalues of the double-centred matrix of h divided by N.

    Parameters
    ----------
    kernel : TensorProductKernel
    """

    method = "Asymptotic SKCE test"

    def __init__(self, kernel: TensorProductKernel):
        super().__init__()
        self.estimator = SKCE(kernel, unbiased=True)
        self.kernel = kernel
        self._centred: Optional[np.ndarray] = None
        self._eigenvalues: Optional[np.ndarray] = None

    def _fit(self, sample):
        n = len(sample)
        if n < 2:
            raise InsufficientSamplesError(f"{self!r}: needs at least 2 samples, got {n}.")
        idx = np.arange(n)
        H = h_block(self.kernel, sample, idx, idx)
        self._estimate = (math.fsum(H.ravel()) - math.fsum(np.diag(H))) / (n * (n - 1))
        self._statistic = n * self._estimate

        row = H.mean(axis=1)
        self._centred = H - row[:, np.newaxis] - row[np.newaxis, :] + H.mean()
        # negative eigenvalues are round-off of a positive semi-definite operator
        eig = np.linalg.eigvalsh(self._centred) / n
        top = float(eig.max())
        self._eigenvalues = eig[eig > 1e-12 * top] if top > 0 else np.empty(0)

    @property
    def eigenvalues(self) -> np.ndarray:
        """Estimated weights l_i of the limiting distribution."""
        self._require_fit("eigenvalues")
        return self._eigenvalues

    def pvalue(
        self,
        method: str = "gamma",
        n_samples: int = 10_000,
        rng=None,
        verbose: bool = False,
    ) -> float:
        """
        p-value of the null hypothesis.

        Parameters
        ----------
        method : str
            "gamma" (default): closed-form two-moment gamma approximation of
            the limiting distribution. "spectral": Monte Carlo draws from the
            limiting distribution. "bootstrap": Arcones & Giné bootstrap of
            the degenerate U-statistic.
        n_samples : int
            Number of draws for "spectral" and "bootstrap".
        rng : int or np.random.Generator, optional
        verbose : bool
            Progress bar for "bootstrap".
        """
        self._require_fit("p-value")
        if method not in ("gamma", "spectral", "bootstrap"):
            raise InvalidParameterError(
                f"{self!r}: unknown p-value method '{method}'. "
                "Choose from ['gamma', 'spectral', 'bootstrap']."
            )
        if method != "gamma" and n_samples < 1:
            raise InvalidParameterError(
                f"{self!r}: n_samples must be positive, got {n_samples}."
            )

        lam = self._eigenvalues
        stat = self._statistic

        if method == "gamma":
            if lam.size == 0:
                return 1.0 if stat <= 0 else 0.0
            mean = float(lam.sum())
            var = 2.0 * float((lam ** 2).sum())
            shape, scale = mean ** 2 / var, var / mean
            return float(stats.gamma.sf(stat + mean, a=shape, scale=scale))

        rng = np.random.default_rng(rng)
        if method == "spectral":
            if lam.size == 0:
                draws = np.zeros(n_samples)
            else:
                z2 = rng.chisquare(1, size=(n_samples, lam.size))
                draws = (z2 - 1.0) @ lam
        else:
            n = self.n_samples
            draws = np.empty(n_samples)
            for b in tqdm(range(n_samples), disable=not verbose, desc="bootstrap"):
                idx = rng.integers(0, n, size=n)
                Hb = self._centred[np.ix_(idx, idx)]
                draws[b] = (Hb.sum() - np.trace(Hb)) / (n - 1)

        self._null_distribution = draws
        return float(np.mean(draws >= stat))

    def __repr__(self) -> str:
        return f"AsymptoticSKCETest({self.kernel!r})"


# -----------------------------------------------------------------------
# Asymptotic block test
# -----------------------------------------------------------------------

class AsymptoticBlockSKCETest(_CalibrationTest):
    """
    Asymptotic z-test based on the unbiased block SKCE estimator.

    The m complete blocks give i.i.d. unbiased estimates, so their mean is
    asymptotically normal. The one-sided p-value is 1 - Phi(z) with
    z = mean / (std / sqrt(m)).

    Parameters
    ----------
    kernel : TensorProductKernel
    blocksize : int or "sqrt"
        Block size. Default 2 (linear time).
    """

    method = "Asymptotic block SKCE test"

    def __init__(self, kernel: TensorProductKernel, blocksize: Union[int, str] = 2):
        super().__init__()
        self.estimator = SKCE(kernel, unbiased=True, blocksize=blocksize)
        self.kernel = kernel
        self.blocksize = blocksize
        self._block_estimates: Optional[np.ndarray] = None

    def _fit(self, sample):
        estimates, _ = self.estimator.block_estimates(sample, complete_only=True)
        m = estimates.size
        if m < 2:
            raise InsufficientSamplesError(
                f"{self!r}: needs at least 2 complete blocks, got {m} "
                f"from {len(sample)} samples."
            )
        mean = float(estimates.mean())
        std = float(estimates.std(ddof=1))
        if std > 0:
            z = mean / (std / np.sqrt(m))
        else:
            z = np.inf if mean > 0 else (-np.inf if mean < 0 else 0.0)
        self._block_estimates = estimates
        self._estimate = mean
        self._statistic = float(z)

    @property
    def block_estimates(self) -> np.ndarray:
        self._require_fit("block estimates")
        return self._block_estimates

    def pvalue(self) -> float:
        self._require_fit("p-value")
        if self._statistic == 0.0 and self._block_estimates.std() == 0:
            return 1.0
        return float(stats.norm.sf(self._statistic))

    def __repr__(self) -> str:
        return f"AsymptoticBlockSKCETest({self.kernel!r}, blocksize={self.blocksize!r})"


# -----------------------------------------------------------------------
# Distribution-free test
# -----------------------------------------------------------------------

def uniform_bound(kernel: TensorProductKernel) -> float:
    """
    Upper bound B of |h| for a tensor product kernel.

    |h| <= 2 sup k1 sup k2 for the white outcome kernel and
    4 sup k1 sup k2 for any other outcome kernel.
    """
    factor = 2.0 if isinstance(kernel.outcome_kernel, WhiteKernel) else 4.0
    return factor * kernel.upper_bound


class DistributionFreeSKCETest(_CalibrationTest):
    """
    Test based on distribution-free concentration bounds.

    Valid for every sample size, but much more conservative (wider, lower
    power) than the asymptotic tests.

      biased estimator:   p = exp(-max(0, sqrt(N * est / B) - 1)^2 / 2)
      unbiased estimator: p = exp(-floor(N / 2) * max(est, 0)^2 / (2 B^2))

    Parameters
    ----------
    estimator : SKCE
        Quadratic SKCE estimator (biased or unbiased, no block size).
    bound : float, optional
        Upper bound B of |h|. Default uniform_bound(estimator.kernel).
    """

    method = "Distribution-free SKCE test"
    note = "(Distribution-free bound: valid for all N but conservative.)"

    def __init__(self, estimator: SKCE, bound: Optional[float] = None):
        super().__init__()
        if not isinstance(estimator, SKCE):
            raise InvalidParameterError(
                f"DistributionFreeSKCETest: estimator must be an SKCE, got {type(estimator).__name__}."
            )
        if estimator.blocksize is not None:
            raise InvalidParameterError(
                "DistributionFreeSKCETest: block estimators are not supported; "
                "use SKCE(kernel) or SKCE(kernel, unbiased=False)."
            )
        if bound is None:
            bound = uniform_bound(estimator.kernel)
        bound = float(bound)
        if not (np.isfinite(bound) and bound > 0):
            raise InvalidParameterError(
                f"DistributionFreeSKCETest: bound must be positive and finite, got {bound}."
            )
        self.estimator = estimator
        self.bound = bound

    def _fit(self, sample):
        self._estimate = self.estimator.estimate(sample)
        self._statistic = self._estimate

    def pvalue(self) -> float:
        self._require_fit("p-value")
        n, est, B = self.n_samples, self._estimate, self.bound
        if self.estimator.unbiased:
            p = math.exp(-(n // 2) * max(est, 0.0) ** 2 / (2.0 * B ** 2))
        else:
            s = math.sqrt(n * max(est, 0.0) / B) - 1.0
            p = math.exp(-s ** 2 / 2.0) if s > 0 else 1.0
        return float(min(p, 1.0))

    def __repr__(self) -> str:
        return f"DistributionFreeSKCETest({self.estimator!r}, bound={self.bound:g})"


# -----------------------------------------------------------------------
# Consistency resampling
# -----------------------------------------------------------------------

def _resample_chunk(estimator, sample, seed_seq, start, stop, owner) -> np.ndarray:
    rng = np.random.default_rng(seed_seq)
    out = np.empty(stop - start)
    for k in range(start, stop):
        try:
            value = estimator.estimate(sample.resample_outcomes(rng))
        except NumericalError as exc:
            raise NumericalError(f"{owner}: resample iteration {k} failed: {exc}") from exc
        if not np.isfinite(value):
            raise NumericalError(
                f"{owner}: resample iteration {k} produced a non-finite statistic."
            )
        out[k - start] = value
    return out


class ConsistencyTest(_CalibrationTest):
    """
    Consistency resampling test.

    Outcomes are redrawn from the predictions themselves, which makes the
    resampled data calibrated by construction; the p-value is the fraction
    of resampled statistics at least as large as the observed one.

    Resampling runs in fixed chunks, each with its own SeedSequence child
    of the injected random source, so the p-value only depends on the seed,
    never on n_jobs.

    Parameters
    ----------
    estimator : ECE or SKCE
        Any estimator with an `estimate(sample)` method. Default
        ECE(EqualSize(10)).
    bootstrap_iters : int
        Default number of resamples. Default 1000.
    """

    method = "Consistency resampling test"

    def __init__(self, estimator=None, bootstrap_iters: int = 1_000):
        super().__init__()
        if estimator is None:
            estimator = ECE(EqualSize(10))
        if not hasattr(estimator, "estimate"):
            raise InvalidParameterError(
                f"ConsistencyTest: estimator must provide estimate(sample), "
                f"got {type(estimator).__name__}."
            )
        self.estimator = estimator
        self.bootstrap_iters = self._check_iters(bootstrap_iters)

    def _check_iters(self, iters) -> int:
        if isinstance(iters, bool) or not isinstance(iters, (int, np.integer)) or iters < 1:
            raise InvalidParameterError(
                f"ConsistencyTest: bootstrap_iters must be a positive integer, got {iters!r}."
            )
        return int(iters)

    def _fit(self, sample):
        estimate = self.estimator.estimate(sample)
        if not np.isfinite(estimate):
            raise NumericalError(f"{self!r}: observed statistic is not finite.")
        self._estimate = estimate
        self._statistic = estimate

    def pvalue(
        self,
        bootstrap_iters: Optional[int] = None,
        rng=None,
        n_jobs: int = 1,
        verbose: bool = False,
    ) -> float:
        """
        Parameters
        ----------
        bootstrap_iters : int, optional
            Number of resamples. Defaults to the value given at construction.
        rng : int or np.random.Generator, optional
        n_jobs : int
            joblib parallelism over resampling chunks.
        verbose : bool
            Progress bar (sequential runs only).
        """
        self._require_fit("p-value")
        iters = self.bootstrap_iters if bootstrap_iters is None else self._check_iters(bootstrap_iters)

        rng = np.random.default_rng(rng)
        root = np.random.SeedSequence(int(rng.integers(0, 2**63 - 1)))
        starts = list(range(0, iters, _CHUNK))
        children = root.spawn(len(starts))
        tasks = [
            (self.estimator, self._sample, child, s, min(s + _CHUNK, iters), repr(self))
            for child, s in zip(children, starts)
        ]

        if n_jobs == 1:
            chunks = [
                _resample_chunk(*task)
                for task in tqdm(tasks, disable=not verbose, desc="consistency resampling")
            ]
        else:
            chunks = Parallel(n_jobs=n_jobs)(delayed(_resample_chunk)(*task) for task in tasks)

        draws = np.concatenate(chunks)
        self._null_distribution = draws
        return float(np.mean(draws >= self._statistic))

    def __repr__(self) -> str:
        return f"ConsistencyTest({self.estimator!r})"


# -----------------------------------------------------------------------
# Main dispatch function
# -----------------------------------------------------------------------

def calibration_test(
    predictions,
    outcomes,
    kernel: Optional[TensorProductKernel] = None,
    method: str = "asymptotic",
    estimator=None,
    alpha: float = 0.05,
    **kwargs,
) -> CalibrationTestResult:
    """
    Test the null hypothesis that a model is calibrated.

    Parameters
    ----------
    predictions, outcomes : array-like
    kernel : TensorProductKernel
        Required for the SKCE tests unless `estimator` is given.
    method : str
        One of:
          - "asymptotic"         (default) — AsymptoticSKCETest
          - "asymptotic_block"   — AsymptoticBlockSKCETest (kwarg blocksize, default 2)
          - "distribution_free"  — DistributionFreeSKCETest (kwarg bound)
          - "consistency"        — ConsistencyTest (estimator defaults to ECE)
    estimator : SKCE or ECE, optional
        Estimator for the distribution-free and consistency tests.
    alpha : float
        Significance threshold.
    **kwargs
        Remaining keyword arguments are passed to pvalue().

    Returns
    -------
    CalibrationTestResult
    """
    if method in ("asymptotic", "asymptotic_block") or (
        method == "distribution_free" and estimator is None
    ):
        if kernel is None:
            raise InvalidParameterError(f"calibration_test: method '{method}' requires a kernel.")

    if method == "asymptotic":
        test = AsymptoticSKCETest(kernel)
    elif method == "asymptotic_block":
        test = AsymptoticBlockSKCETest(kernel, blocksize=kwargs.pop("blocksize", 2))
    elif method == "distribution_free":
        test = DistributionFreeSKCETest(
            estimator if estimator is not None else SKCE(kernel),
            bound=kwargs.pop("bound", None),
        )
    elif method == "consistency":
        if estimator is None and kernel is not None:
            estimator = SKCE(kernel)
        test = ConsistencyTest(estimator)
    else:
        methods = ["asymptotic", "asymptotic_block", "distribution_free", "consistency"]
        raise InvalidParameterError(f"Unknown method '{method}'. Choose from {methods}.")

    return test.fit(predictions, outcomes).result(alpha=alpha, **kwargs)
