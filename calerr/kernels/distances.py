"""
(Semi-)metrics between predictions.

Vector distances act on probability vectors (or 1-element confidence
vectors) and are evaluated pairwise with scipy's cdist. `Wasserstein` acts
on Gaussian predictions and is the closed-form 2-Wasserstein distance.

Every distance exposes

    d(a, b)              -> float
    d.pairwise(X, Y)     -> np.ndarray, shape (len(X), len(Y))
"""

from __future__ import annotations

from typing import Dict, Type

import numpy as np
from scipy.linalg import sqrtm
from scipy.spatial.distance import cdist

from calerr.core.distributions import GaussianPredictions, MvNormal, Normal
from calerr.core.errors import DimensionMismatchError, InvalidParameterError


class Distance:
    """Base class for distances between predictions."""

    name = "distance"

    def __call__(self, a, b) -> float:
        a = np.atleast_1d(np.asarray(a, dtype=float))
        b = np.atleast_1d(np.asarray(b, dtype=float))
        if a.shape != b.shape:
            raise DimensionMismatchError(
                f"{type(self).__name__}: cannot compare vectors of shapes "
                f"{a.shape} and {b.shape}."
            )
        return float(self.pairwise(a[np.newaxis, :], b[np.newaxis, :])[0, 0])

    def pairwise(self, X, Y=None) -> np.ndarray:
        X = _as_rows(X)
        Y = X if Y is None else _as_rows(Y)
        if X.shape[1] != Y.shape[1]:
            raise DimensionMismatchError(
                f"{type(self).__name__}: vectors of dimension {X.shape[1]} and "
                f"{Y.shape[1]} cannot be compared."
            )
        return self._pairwise(X, Y)

    def _pairwise(self, X: np.ndarray, Y: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    def __eq__(self, other) -> bool:
        return type(self) is type(other)

    def __hash__(self) -> int:
        return hash(type(self))


def _as_rows(X) -> np.ndarray:
    if isinstance(X, (GaussianPredictions, Normal, MvNormal)):
        raise InvalidParameterError(
            "Vector distances cannot be evaluated on Gaussian predictions; "
            "use Wasserstein()."
        )
    X = np.asarray(X, dtype=float)
    if X.ndim == 1:
        X = X[:, np.newaxis]
    return X


class Euclidean(Distance):
    name = "euclidean"

    def _pairwise(self, X, Y):
        return cdist(X, Y, metric="euclidean")


class SqEuclidean(Distance):
    name = "sqeuclidean"

    def _pairwise(self, X, Y):
        return cdist(X, Y, metric="sqeuclidean")


class Cityblock(Distance):
    name = "cityblock"

    def _pairwise(self, X, Y):
        return cdist(X, Y, metric="cityblock")


class TotalVariation(Distance):
    """Total variation distance: half the L1 distance of probability vectors."""

    name = "total_variation"

    def _pairwise(self, X, Y):
        return 0.5 * cdist(X, Y, metric="cityblock")


class Wasserstein(Distance):
    """
    2-Wasserstein distance between Gaussian predictions.

        W2(N(m, S), N(m', S'))^2 = |m - m'|^2 + tr(S + S' - 2 (S'^1/2 S S'^1/2)^1/2)

    For diagonal covariances this reduces to
    |m - m'|^2 + |sqrt(diag S) - sqrt(diag S')|^2.
    """

    name = "wasserstein"

    def __call__(self, a, b) -> float:
        A, B = _as_gaussians(a), _as_gaussians(b)
        if A.dim != B.dim:
            raise DimensionMismatchError(
                f"Wasserstein: Gaussians of dimension {A.dim} and {B.dim} cannot be compared."
            )
        return float(self._pairwise(A, B)[0, 0])

    def pairwise(self, X, Y=None) -> np.ndarray:
        X = _as_gaussians(X)
        Y = X if Y is None else _as_gaussians(Y)
        if X.dim != Y.dim:
            raise DimensionMismatchError(
                f"Wasserstein: Gaussians of dimension {X.dim} and {Y.dim} cannot be compared."
            )
        return self._pairwise(X, Y)

    def _pairwise(self, X: GaussianPredictions, Y: GaussianPredictions) -> np.ndarray:
        mean_term = cdist(X.means, Y.means, metric="sqeuclidean")
        if X.is_diagonal and Y.is_diagonal:
            sx = np.sqrt(np.einsum("nii->ni", X.covs))
            sy = np.sqrt(np.einsum("nii->ni", Y.covs))
            cov_term = cdist(sx, sy, metric="sqeuclidean")
        else:
            cov_term = np.empty(mean_term.shape)
            tr_x = np.einsum("nii->n", X.covs)
            tr_y = np.einsum("nii->n", Y.covs)
            roots_y = [np.real(sqrtm(c)) for c in Y.covs]
            for i, cx in enumerate(X.covs):
                for j, ry in enumerate(roots_y):
                    cross = np.real(sqrtm(ry @ cx @ ry))
                    cov_term[i, j] = tr_x[i] + tr_y[j] - 2.0 * np.trace(cross)
        return np.sqrt(np.maximum(mean_term + cov_term, 0.0))


def _as_gaussians(X) -> GaussianPredictions:
    if isinstance(X, GaussianPredictions):
        return X
    if isinstance(X, (Normal, MvNormal)):
        return GaussianPredictions.from_distributions([X])
    if isinstance(X, (list, tuple)) and X and isinstance(X[0], (Normal, MvNormal)):
        return GaussianPredictions.from_distributions(X)
    raise InvalidParameterError(
        "Wasserstein: expected Gaussian predictions (Normal, MvNormal or "
        f"GaussianPredictions), got {type(X).__name__}."
    )


_DISTANCE_REGISTRY: Dict[str, Type[Distance]] = {
    "euclidean": Euclidean,
    "sqeuclidean": SqEuclidean,
    "cityblock": Cityblock,
    "totalvariation": TotalVariation,
    "wasserstein": Wasserstein,
}


def get_distance(name: str) -> Distance:
    """
    Look up a distance by name.

    Names are case-insensitive and ignore underscores, dashes and spaces:
    "total_variation", "TotalVariation" and "total variation" all resolve to
    TotalVariation().
    """
    key = name.lower().replace("_", "").replace("-", "").replace(" ", "")
    if key not in _DISTANCE_REGISTRY:
        raise InvalidParameterError(
            f"Unknown distance '{name}'. Choose from {sorted(_DISTANCE_REGISTRY)}."
        )
    return _DISTANCE_REGISTRY[key]()
