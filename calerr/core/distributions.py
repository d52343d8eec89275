"""
Gaussian predictions for probabilistic regression models.

A regression model in the calibration setting predicts a full distribution
for every input. calerr supports Gaussian predictions, either univariate
(`Normal`) or multivariate (`MvNormal`), and stores a batch of them as a
`GaussianPredictions` object with stacked means and covariances so kernels
and closed-form expectations can be evaluated without Python-level loops.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Union

import numpy as np
from scipy import stats

from calerr.core.errors import DimensionMismatchError, InvalidParameterError


@dataclass(frozen=True)
class Normal:
    """Univariate normal prediction N(mean, std^2)."""

    mean: float
    std: float

    def __post_init__(self):
        if not self.std > 0:
            raise InvalidParameterError(
                f"Normal: std must be positive, got {self.std}."
            )

    @property
    def var(self) -> float:
        return float(self.std) ** 2

    def pdf(self, x):
        return stats.norm.pdf(x, loc=self.mean, scale=self.std)

    def sample(self, rng: Optional[np.random.Generator] = None, size=None):
        rng = np.random.default_rng(rng)
        return rng.normal(self.mean, self.std, size=size)


@dataclass(frozen=True)
class MvNormal:
    """Multivariate normal prediction N(mean, cov)."""

    mean: np.ndarray
    cov: np.ndarray

    def __post_init__(self):
        mean = np.atleast_1d(np.asarray(self.mean, dtype=float))
        cov = np.atleast_2d(np.asarray(self.cov, dtype=float))
        if mean.ndim != 1:
            raise DimensionMismatchError(
                f"MvNormal: mean must be a vector, got shape {mean.shape}."
            )
        if cov.shape != (mean.size, mean.size):
            raise DimensionMismatchError(
                f"MvNormal: covariance of shape {cov.shape} does not match "
                f"mean of dimension {mean.size}."
            )
        object.__setattr__(self, "mean", mean)
        object.__setattr__(self, "cov", cov)

    @property
    def dim(self) -> int:
        return self.mean.size

    def pdf(self, x):
        return stats.multivariate_normal.pdf(x, mean=self.mean, cov=self.cov)

    def sample(self, rng: Optional[np.random.Generator] = None, size=None):
        rng = np.random.default_rng(rng)
        return rng.multivariate_normal(self.mean, self.cov, size=size)


GaussianLike = Union[Normal, MvNormal]


class GaussianPredictions:
    """
    A batch of N Gaussian predictions of dimension d.

    Parameters
    ----------
    means : array, shape (N,) or (N, d)
    covs : array, shape (N,), (N, d) or (N, d, d)
        Variances for univariate predictions, diagonal variances, or full
        covariance matrices.
    """

    def __init__(self, means, covs):
        means = np.asarray(means, dtype=float)
        covs = np.asarray(covs, dtype=float)
        if means.ndim == 1:
            means = means[:, np.newaxis]
        if means.ndim != 2:
            raise DimensionMismatchError(
                f"GaussianPredictions: means must be 1-D or 2-D, got shape {means.shape}."
            )
        n, d = means.shape

        if covs.ndim == 1 and d == 1:
            covs = covs[:, np.newaxis, np.newaxis]
        elif covs.ndim == 2 and covs.shape == (n, d):
            covs = np.einsum("ij,jk->ijk", covs, np.eye(d))
        if covs.shape != (n, d, d):
            raise DimensionMismatchError(
                f"GaussianPredictions: covariances of shape {covs.shape} do not "
                f"match {n} predictions of dimension {d}."
            )
        diag = np.diagonal(covs, axis1=1, axis2=2)
        if np.any(diag <= 0):
            raise InvalidParameterError(
                "GaussianPredictions: covariance matrices must have a positive diagonal."
            )

        self.means = means
        self.covs = covs

    @classmethod
    def from_distributions(cls, dists: Sequence[GaussianLike]) -> "GaussianPredictions":
        dists = list(dists)
        if not dists:
            return cls(np.empty((0, 1)), np.empty((0, 1, 1)))
        if all(isinstance(d, Normal) for d in dists):
            return cls(
                [d.mean for d in dists],
                [d.var for d in dists],
            )
        if not all(isinstance(d, MvNormal) for d in dists):
            raise InvalidParameterError(
                "GaussianPredictions: cannot mix Normal and MvNormal predictions."
            )
        dims = {d.dim for d in dists}
        if len(dims) != 1:
            raise DimensionMismatchError(
                f"GaussianPredictions: predictions have inconsistent dimensions {sorted(dims)}."
            )
        return cls(
            np.stack([d.mean for d in dists]),
            np.stack([d.cov for d in dists]),
        )

    def __len__(self) -> int:
        return self.means.shape[0]

    def __getitem__(self, idx) -> "GaussianPredictions":
        idx = np.atleast_1d(np.arange(len(self))[idx])
        return GaussianPredictions(self.means[idx], self.covs[idx])

    @property
    def dim(self) -> int:
        return self.means.shape[1]

    @property
    def is_diagonal(self) -> bool:
        off = self.covs - np.einsum("nii->ni", self.covs)[:, :, np.newaxis] * np.eye(self.dim)
        return bool(np.all(off == 0))

    def sample(self, rng: Optional[np.random.Generator] = None) -> np.ndarray:
        """Draw one outcome from every prediction. Shape (N, d)."""
        rng = np.random.default_rng(rng)
        chol = np.linalg.cholesky(self.covs)
        z = rng.standard_normal(self.means.shape)
        return self.means + np.einsum("nij,nj->ni", chol, z)

    def __repr__(self) -> str:
        return f"GaussianPredictions(n={len(self)}, dim={self.dim})"
