"""
Bootstrap confidence intervals for calibration error estimates.

A calibration error estimate is a random variable like any other metric:
report its sampling distribution, not just the point estimate. The
(prediction, outcome) pairs are the units of resampling.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np
from tqdm import tqdm

from calerr.core.errors import InvalidParameterError
from calerr.core.sample import make_sample


@dataclass
class BootstrapCI:
    """
    Result of a bootstrap confidence interval computation.

    Attributes
    ----------
    estimate : float
        Estimate on the observed sample.
    lower : float
        Lower bound of the confidence interval.
    upper : float
        Upper bound of the confidence interval.
    confidence : float
        Confidence level (e.g. 0.95).
    n_bootstrap : int
        Number of bootstrap resamples used.
    bootstrap_distribution : np.ndarray
        Full bootstrap distribution.
    """

    estimate: float
    lower: float
    upper: float
    confidence: float = 0.95
    n_bootstrap: int = 1_000
    bootstrap_distribution: Optional[np.ndarray] = None

    @property
    def width(self) -> float:
        return self.upper - self.lower

    def __repr__(self) -> str:
        pct = int(self.confidence * 100)
        return (
            f"{self.estimate:.4f} "
            f"[{pct}% CI: {self.lower:.4f}, {self.upper:.4f}] "
            f"(width={self.width:.4f})"
        )


def bootstrap_ci(
    estimator,
    predictions,
    outcomes,
    confidence: float = 0.95,
    n_bootstrap: int = 1_000,
    seed: int = 42,
    verbose: bool = False,
) -> BootstrapCI:
    """
    Percentile bootstrap confidence interval of a calibration error estimate.

    Parameters
    ----------
    estimator : ECE or SKCE
        Any estimator with an `estimate(sample)` method.
    predictions, outcomes : array-like
    confidence : float
        Desired confidence level. Default 0.95.
    n_bootstrap : int
        Number of bootstrap resamples. Default 1000.
    seed : int
        RNG seed for reproducibility.
    verbose : bool
        Show a progress bar.

    Returns
    -------
    BootstrapCI

    Notes
    -----
    Resampling draws (prediction, outcome) pairs with replacement. Duplicate
    pairs inside a resample make unbiased SKCE estimates slightly optimistic,
    so the interval is a measure of spread rather than a calibration test;
    use calerr.stats.tests for that.
    """
    if not 0 < confidence < 1:
        raise InvalidParameterError(
            f"bootstrap_ci: confidence must be in (0, 1), got {confidence}."
        )
    if n_bootstrap < 1:
        raise InvalidParameterError(
            f"bootstrap_ci: n_bootstrap must be positive, got {n_bootstrap}."
        )

    sample = make_sample(predictions, outcomes, owner="bootstrap_ci")
    n = len(sample)
    observed = float(estimator.estimate(sample))

    rng = np.random.default_rng(seed)
    boot_stats = np.array([
        estimator.estimate(sample.subset(rng.integers(0, n, size=n)))
        for _ in tqdm(range(n_bootstrap), disable=not verbose, desc="bootstrap")
    ])

    alpha = 1.0 - confidence
    lower = float(np.percentile(boot_stats, 100 * alpha / 2))
    upper = float(np.percentile(boot_stats, 100 * (1 - alpha / 2)))

    return BootstrapCI(
        estimate=observed,
        lower=lower,
        upper=upper,
        confidence=confidence,
        n_bootstrap=n_bootstrap,
        bootstrap_distribution=boot_stats,
    )


def summary(
    estimators: Dict[str, object],
    predictions,
    outcomes,
    confidence: float = 0.95,
    n_bootstrap: int = 1_000,
    seed: int = 42,
) -> str:
    """
    Print a human-readable table of calibration error estimates.

    Parameters
    ----------
    estimators : dict
        Display name -> estimator (ECE or SKCE).
    predictions, outcomes : array-like
    confidence, n_bootstrap, seed
        Passed to bootstrap_ci.
    """
    n = len(make_sample(predictions, outcomes, owner="summary"))
    pct = int(confidence * 100)
    lines = [
        f"{'─'*60}",
        f"  Samples : {n}",
        f"{'─'*60}",
    ]
    for name, estimator in estimators.items():
        ci = bootstrap_ci(
            estimator, predictions, outcomes,
            confidence=confidence, n_bootstrap=n_bootstrap, seed=seed,
        )
        lines.append(
            f"  {name:<16}: {ci.estimate:.5f}  {pct}% CI [{ci.lower:.5f}, {ci.upper:.5f}]"
        )
    lines.append(f"{'─'*60}")

    output = "\n".join(lines)
    print(output)
    return output
