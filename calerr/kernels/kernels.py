"""
Reproducing kernels on predictions and outcomes.

Stationary kernels are built from a distance and a length scale,
k(a, b) = f(d(a, b) / lengthscale):

  ExponentialKernel            f(r) = exp(-r)
  SqExponentialKernel          f(r) = exp(-r^2 / 2)          (alias GaussianKernel)
  Matern32Kernel               f(r) = (1 + sqrt(3) r) exp(-sqrt(3) r)
  Matern52Kernel               f(r) = (1 + sqrt(5) r + 5 r^2 / 3) exp(-sqrt(5) r)
  WassersteinExponentialKernel exponential kernel with the Wasserstein metric,
                               for Gaussian predictions

WhiteKernel is the Kronecker delta on outcomes. A calibration kernel is the
tensor product of a prediction kernel and an outcome kernel:

>>> kernel = tensor(ExponentialKernel(metric=TotalVariation()), WhiteKernel())
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Union

import numpy as np

from calerr.core.errors import InvalidParameterError, NumericalError
from calerr.kernels.distances import Distance, Euclidean, Wasserstein, get_distance


class Kernel:
    """Base class: symmetric positive semi-definite kernels."""

    #: Supremum of the kernel over its domain.
    upper_bound: float = 1.0

    def __call__(self, a, b) -> float:
        raise NotImplementedError

    def matrix(self, X, Y=None) -> np.ndarray:
        raise NotImplementedError


def _check_finite(values: np.ndarray, owner: str) -> np.ndarray:
    if not np.all(np.isfinite(values)):
        raise NumericalError(f"{owner} evaluated to NaN or Inf.")
    return values


class StationaryKernel(Kernel):
    """
    Kernel of the form f(d(a, b) / lengthscale).

    Parameters
    ----------
    lengthscale : float
        Positive length scale. Default 1.
    metric : Distance or str
        Distance between inputs. Default Euclidean().
    """

    def __init__(
        self,
        lengthscale: float = 1.0,
        metric: Optional[Union[Distance, str]] = None,
    ):
        lengthscale = float(lengthscale)
        if not (np.isfinite(lengthscale) and lengthscale > 0):
            raise InvalidParameterError(
                f"{type(self).__name__}: lengthscale must be positive and finite, "
                f"got {lengthscale}."
            )
        if metric is None:
            metric = Euclidean()
        elif isinstance(metric, str):
            metric = get_distance(metric)
        self.lengthscale = lengthscale
        self.metric = metric

    def _profile(self, r: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def __call__(self, a, b) -> float:
        r = np.asarray(self.metric(a, b) / self.lengthscale)
        return float(_check_finite(self._profile(r), repr(self)))

    def matrix(self, X, Y=None) -> np.ndarray:
        r = self.metric.pairwise(X, Y) / self.lengthscale
        return _check_finite(self._profile(r), repr(self))

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(lengthscale={self.lengthscale:g}, "
            f"metric={self.metric!r})"
        )


class ExponentialKernel(StationaryKernel):
    def _profile(self, r):
        return np.exp(-r)


class SqExponentialKernel(StationaryKernel):
    def _profile(self, r):
        return np.exp(-0.5 * r ** 2)


GaussianKernel = SqExponentialKernel


class Matern32Kernel(StationaryKernel):
    def _profile(self, r):
        s = np.sqrt(3.0) * r
        return (1.0 + s) * np.exp(-s)


class Matern52Kernel(StationaryKernel):
    def _profile(self, r):
        s = np.sqrt(5.0) * r
        return (1.0 + s + s ** 2 / 3.0) * np.exp(-s)


class WassersteinExponentialKernel(ExponentialKernel):
    """exp(-W2(a, b) / lengthscale) for Gaussian predictions a and b."""

    def __init__(self, lengthscale: float = 1.0):
        super().__init__(lengthscale=lengthscale, metric=Wasserstein())

    def __repr__(self) -> str:
        return f"WassersteinExponentialKernel(lengthscale={self.lengthscale:g})"


class WhiteKernel(Kernel):
    """Kronecker delta: 1 if the two outcomes are equal, 0 otherwise."""

    def __call__(self, a, b) -> float:
        return float(np.array_equal(np.asarray(a), np.asarray(b)))

    def matrix(self, X, Y=None) -> np.ndarray:
        X = np.asarray(X)
        Y = X if Y is None else np.asarray(Y)
        if X.ndim == 1:
            return (X[:, np.newaxis] == Y[np.newaxis, :]).astype(float)
        return np.all(X[:, np.newaxis, :] == Y[np.newaxis, :, :], axis=-1).astype(float)

    def __repr__(self) -> str:
        return "WhiteKernel()"


class TensorProductKernel(Kernel):
    """
    k((p, y), (p', y')) = prediction_kernel(p, p') * outcome_kernel(y, y').

    The two factors are always evaluated in (prediction, outcome) order.
    """

    def __init__(self, prediction_kernel: Kernel, outcome_kernel: Kernel):
        for role, k in (("prediction", prediction_kernel), ("outcome", outcome_kernel)):
            if not isinstance(k, Kernel):
                raise InvalidParameterError(
                    f"TensorProductKernel: {role} kernel must be a Kernel, "
                    f"got {type(k).__name__}."
                )
            if isinstance(k, TensorProductKernel):
                raise InvalidParameterError(
                    f"TensorProductKernel: {role} kernel cannot itself be a tensor product."
                )
        self.prediction_kernel = prediction_kernel
        self.outcome_kernel = outcome_kernel

    @property
    def upper_bound(self) -> float:
        return self.prediction_kernel.upper_bound * self.outcome_kernel.upper_bound

    def __call__(self, a, b) -> float:
        (p, y), (q, z) = a, b
        return self.prediction_kernel(p, q) * self.outcome_kernel(y, z)

    def __repr__(self) -> str:
        return f"{self.prediction_kernel!r} ⊗ {self.outcome_kernel!r}"


def tensor(prediction_kernel: Kernel, outcome_kernel: Kernel) -> TensorProductKernel:
    """Tensor product of a prediction kernel and an outcome kernel."""
    return TensorProductKernel(prediction_kernel, outcome_kernel)


_KERNEL_REGISTRY: Dict[str, Callable[..., Kernel]] = {
    "exponential": ExponentialKernel,
    "sqexponential": SqExponentialKernel,
    "gaussian": SqExponentialKernel,
    "matern32": Matern32Kernel,
    "matern52": Matern52Kernel,
    "wassersteinexponential": WassersteinExponentialKernel,
    "white": WhiteKernel,
}


def get_kernel(name: str, **params) -> Kernel:
    """
    Build a kernel from its family name.

    Examples
    --------
    >>> get_kernel("matern32", lengthscale=0.5, metric="total_variation")
    >>> get_kernel("WassersteinExponential")
    """
    key = name.lower().replace("_", "").replace("-", "").replace(" ", "").replace("/", "")
    if key not in _KERNEL_REGISTRY:
        raise InvalidParameterError(
            f"Unknown kernel '{name}'. Choose from {sorted(_KERNEL_REGISTRY)}."
        )
    return _KERNEL_REGISTRY[key](**params)
