"""
Squared kernel calibration error (SKCE).

For a tensor product kernel k((p, y), (p', y')) = k1(p, p') k2(y, y') the
SKCE is the expectation E[h(X, X')] over two independent (prediction,
outcome) pairs of

    h((p, y), (p', y')) = k1(p, p') * ( k2(y, y')
                                      - E_{z ~ p} k2(z, y')
                                      - E_{z' ~ p'} k2(y, z')
                                      + E_{z ~ p, z' ~ p'} k2(z, z') )

The expectations over z are taken in closed form:

  - categorical predictions: finite sums over classes with the outcome
    kernel evaluated on class labels, C = k2(classes, classes),
        h = k1(p, p') (C[y, y'] - (p C)[y'] - (p' C)[y] + p C p'^T)
  - Gaussian predictions N(m, S) with a squared exponential outcome kernel
    of length scale l,
        E_{z ~ N(m, S)} k2(z, y) = det(I + S / l^2)^(-1/2)
                                   exp(-(m - y)^T (l^2 I + S)^(-1) (m - y) / 2)
    and the double expectation replaces S by S + S'.

Estimators
----------
biased      V-statistic: mean of h over all N^2 ordered pairs, diagonal
            included (h(x, x) is generally not zero).
unbiased    U-statistic: mean of h over the N (N - 1) pairs i != j.
block       U- or V-statistic within consecutive blocks of size B, averaged
            over blocks weighted by block size. B = 2 gives a linear-time
            estimator. Smaller blocks are cheaper but have higher variance;
            unbiasedness is unaffected.

Unbiased estimates can be slightly negative even though the SKCE is not;
they are never clamped.

References
----------
Widmann, D., Lindsten, F., & Zachariah, D. (2019). Calibration tests in
multi-class classification: A unifying framework. NeurIPS.

Widmann, D., Lindsten, F., & Zachariah, D. (2021). Calibration tests beyond
classification. ICLR.
"""

from __future__ import annotations

import math
from typing import List, Optional, Tuple, Union

import numpy as np
from joblib import Parallel, delayed

from calerr.core.errors import (
    InsufficientSamplesError,
    InvalidParameterError,
    NumericalError,
)
from calerr.core.sample import CategoricalSample, GaussianSample, Sample, make_sample
from calerr.kernels.distances import Euclidean
from calerr.kernels.kernels import (
    Kernel,
    SqExponentialKernel,
    TensorProductKernel,
    WhiteKernel,
)

_TILE_ROWS = 256


# -------------------------------------------------------------------------
# h-statistic
# -------------------------------------------------------------------------

def _outcome_gram(kernel: Kernel, n_classes: int) -> np.ndarray:
    if isinstance(kernel, WhiteKernel):
        return np.eye(n_classes)
    return kernel.matrix(np.arange(n_classes, dtype=float))


def _categorical_h(
    kernel: TensorProductKernel,
    sample: CategoricalSample,
    rows: np.ndarray,
    cols: np.ndarray,
) -> np.ndarray:
    P_r, P_c = sample.probs[rows], sample.probs[cols]
    y_r, y_c = sample.labels[rows], sample.labels[cols]

    K1 = kernel.prediction_kernel.matrix(P_r, P_c)
    C = _outcome_gram(kernel.outcome_kernel, sample.n_classes)
    PC_r = P_r @ C
    PC_c = P_c @ C

    outcome_term = (
        C[np.ix_(y_r, y_c)]
        - PC_r[:, y_c]
        - PC_c[:, y_r].T
        + PC_r @ P_c.T
    )
    return K1 * outcome_term


def _log_normaliser(A: np.ndarray, l2: float) -> np.ndarray:
    # log det(A / l^2) for a stack of matrices A = l^2 I + S
    _, logdet = np.linalg.slogdet(A)
    return logdet - A.shape[-1] * np.log(l2)


def _gaussian_h(
    kernel: TensorProductKernel,
    sample: GaussianSample,
    rows: np.ndarray,
    cols: np.ndarray,
) -> np.ndarray:
    outcome_kernel = kernel.outcome_kernel
    if not (
        type(outcome_kernel) is SqExponentialKernel
        and isinstance(outcome_kernel.metric, Euclidean)
    ):
        raise InvalidParameterError(
            f"SKCE: outcome kernel {outcome_kernel!r} has no closed-form expectation "
            "under Gaussian predictions; use SqExponentialKernel() with the Euclidean metric."
        )

    preds = sample.predictions
    K1 = kernel.prediction_kernel.matrix(preds[rows], preds[cols])

    l2 = outcome_kernel.lengthscale ** 2
    eye = np.eye(sample.dim)
    M_r, M_c = preds.means[rows], preds.means[cols]
    S_r, S_c = preds.covs[rows], preds.covs[cols]
    Y_r, Y_c = sample.targets[rows], sample.targets[cols]

    # k2(y, y')
    diff = Y_r[:, np.newaxis, :] - Y_c[np.newaxis, :, :]
    t_yy = np.exp(-0.5 * np.einsum("rcd,rcd->rc", diff, diff) / l2)

    # E_{z ~ P_i} k2(z, y_j)
    A_r = l2 * eye + S_r
    diff = M_r[:, np.newaxis, :] - Y_c[np.newaxis, :, :]
    quad = np.einsum("rcd,rde,rce->rc", diff, np.linalg.inv(A_r), diff)
    t_zy = np.exp(-0.5 * (_log_normaliser(A_r, l2)[:, np.newaxis] + quad))

    # E_{z' ~ P_j} k2(y_i, z')
    A_c = l2 * eye + S_c
    diff = Y_r[:, np.newaxis, :] - M_c[np.newaxis, :, :]
    quad = np.einsum("rcd,cde,rce->rc", diff, np.linalg.inv(A_c), diff)
    t_yz = np.exp(-0.5 * (_log_normaliser(A_c, l2)[np.newaxis, :] + quad))

    # E_{z ~ P_i, z' ~ P_j} k2(z, z')
    B = l2 * eye + S_r[:, np.newaxis] + S_c[np.newaxis, :]
    diff = M_r[:, np.newaxis, :] - M_c[np.newaxis, :, :]
    quad = np.einsum("rcd,rcde,rce->rc", diff, np.linalg.inv(B), diff)
    t_zz = np.exp(-0.5 * (_log_normaliser(B, l2) + quad))

    return K1 * (t_yy - t_zy - t_yz + t_zz)


def h_block(
    kernel: TensorProductKernel,
    sample: Sample,
    rows: np.ndarray,
    cols: np.ndarray,
) -> np.ndarray:
    """h evaluated on all pairs (rows[i], cols[j]); raises NumericalError on NaN/Inf."""
    if isinstance(sample, GaussianSample):
        H = _gaussian_h(kernel, sample, rows, cols)
    else:
        H = _categorical_h(kernel, sample, rows, cols)
    if not np.all(np.isfinite(H)):
        raise NumericalError(
            f"SKCE: kernel {kernel!r} produced NaN or Inf values."
        )
    return H


def skce_kernel_matrix(kernel: TensorProductKernel, predictions, outcomes) -> np.ndarray:
    """
    Full matrix H[i, j] = h((p_i, y_i), (p_j, y_j)).

    Memory is O(N^2); the estimators stream over row tiles instead.
    """
    _check_kernel(kernel, "skce_kernel_matrix")
    sample = make_sample(predictions, outcomes, owner="skce_kernel_matrix")
    idx = np.arange(len(sample))
    return h_block(kernel, sample, idx, idx)


def _check_kernel(kernel, owner: str) -> None:
    if not isinstance(kernel, TensorProductKernel):
        raise InvalidParameterError(
            f"{owner}: kernel must be a tensor product of a prediction kernel and "
            f"an outcome kernel (see calerr.tensor), got {type(kernel).__name__}."
        )


# -------------------------------------------------------------------------
# Estimator
# -------------------------------------------------------------------------

def _tile_row_sums(kernel, sample, rows, unbiased) -> np.ndarray:
    H = h_block(kernel, sample, rows, np.arange(len(sample)))
    if unbiased:
        H[np.arange(rows.size), rows] = 0.0
    return H.sum(axis=1)


def _block_estimate(kernel, sample, idx, unbiased) -> float:
    H = h_block(kernel, sample, idx, idx)
    b = idx.size
    if unbiased:
        return (math.fsum(H.ravel()) - math.fsum(np.diag(H))) / (b * (b - 1))
    return math.fsum(H.ravel()) / (b * b)


class SKCE:
    """
    Estimator of the squared kernel calibration error.

    Parameters
    ----------
    kernel : TensorProductKernel
        tensor(prediction_kernel, outcome_kernel).
    unbiased : bool
        U-statistic (True, default) or V-statistic (False).
    blocksize : None, int or "sqrt"
        None: quadratic estimator over all pairs. int >= 2: block estimator
        with blocks of that size. "sqrt": blocks of size floor(sqrt(N)).
    n_jobs : int
        joblib parallelism over row tiles / blocks. Results do not depend
        on n_jobs. Default 1.

    Examples
    --------
    >>> kernel = tensor(ExponentialKernel(metric=TotalVariation()), WhiteKernel())
    >>> SKCE(kernel)(probs, labels)
    >>> SKCE(kernel, unbiased=False)(probs, labels)
    >>> SKCE(kernel, blocksize=2)(probs, labels)      # linear time
    """

    def __init__(
        self,
        kernel: TensorProductKernel,
        unbiased: bool = True,
        blocksize: Optional[Union[int, str]] = None,
        n_jobs: int = 1,
    ):
        _check_kernel(kernel, "SKCE")
        if blocksize is not None:
            if isinstance(blocksize, str):
                if blocksize != "sqrt":
                    raise InvalidParameterError(
                        f"SKCE: blocksize must be None, an integer >= 2 or 'sqrt', got '{blocksize}'."
                    )
            elif isinstance(blocksize, bool) or not isinstance(blocksize, (int, np.integer)) or blocksize < 2:
                raise InvalidParameterError(
                    f"SKCE: blocksize must be None, an integer >= 2 or 'sqrt', got {blocksize!r}."
                )
            else:
                blocksize = int(blocksize)
        self.kernel = kernel
        self.unbiased = bool(unbiased)
        self.blocksize = blocksize
        self.n_jobs = n_jobs

    # ------------------------------------------------------------------ #

    @property
    def min_samples(self) -> int:
        return 2 if (self.unbiased or self.blocksize is not None) else 1

    def resolve_blocksize(self, n: int) -> Optional[int]:
        """Concrete block size for a sample of size n (None for the quadratic estimator)."""
        if self.blocksize is None:
            return None
        if self.blocksize == "sqrt":
            return max(2, math.isqrt(n))
        if self.blocksize > n:
            raise InvalidParameterError(
                f"{self!r}: blocksize {self.blocksize} exceeds the sample size {n}."
            )
        return self.blocksize

    def blocks(self, n: int, complete_only: bool = False) -> List[np.ndarray]:
        """
        Index blocks used by the block estimator.

        Consecutive blocks of the resolved size; a trailing remainder of two
        or more samples forms a final, smaller block unless complete_only.
        """
        size = self.resolve_blocksize(n)
        if size is None:
            return [np.arange(n)]
        blocks = [np.arange(s, s + size) for s in range(0, n - size + 1, size)]
        rest = n % size
        if not complete_only and rest >= 2:
            blocks.append(np.arange(n - rest, n))
        return blocks

    def _check_size(self, sample: Sample) -> None:
        n = len(sample)
        if n < self.min_samples:
            raise InsufficientSamplesError(
                f"{self!r}: needs at least {self.min_samples} samples, got {n}."
            )

    # ------------------------------------------------------------------ #

    def _run(self, fn, tasks):
        if self.n_jobs == 1:
            return [fn(*task) for task in tasks]
        return Parallel(n_jobs=self.n_jobs)(delayed(fn)(*task) for task in tasks)

    def block_estimates(
        self, sample: Sample, complete_only: bool = False
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Per-block estimates and block sizes of an already validated sample."""
        self._check_size(sample)
        blocks = self.blocks(len(sample), complete_only=complete_only)
        estimates = self._run(
            _block_estimate,
            [(self.kernel, sample, idx, self.unbiased) for idx in blocks],
        )
        return np.asarray(estimates, dtype=float), np.array([b.size for b in blocks])

    def _quadratic(self, sample: Sample) -> float:
        n = len(sample)
        tiles = [np.arange(s, min(s + _TILE_ROWS, n)) for s in range(0, n, _TILE_ROWS)]
        row_sums = self._run(
            _tile_row_sums,
            [(self.kernel, sample, rows, self.unbiased) for rows in tiles],
        )
        total = math.fsum(np.concatenate(row_sums))
        if self.unbiased:
            return total / (n * (n - 1))
        return total / (n * n)

    def estimate(self, sample: Sample) -> float:
        """SKCE estimate of an already validated sample."""
        self._check_size(sample)
        if self.blocksize is None:
            return float(self._quadratic(sample))
        estimates, sizes = self.block_estimates(sample)
        return float(math.fsum(estimates * sizes) / sizes.sum())

    def __call__(self, predictions, outcomes) -> float:
        sample = make_sample(predictions, outcomes, owner=repr(self))
        return self.estimate(sample)

    def __repr__(self) -> str:
        parts = [repr(self.kernel), f"unbiased={self.unbiased}"]
        if self.blocksize is not None:
            parts.append(f"blocksize={self.blocksize!r}")
        return f"SKCE({', '.join(parts)})"
