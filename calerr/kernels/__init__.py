from calerr.kernels.distances import (
    Cityblock, Distance, Euclidean, SqEuclidean, TotalVariation, Wasserstein,
    get_distance,
)
from calerr.kernels.kernels import (
    ExponentialKernel, GaussianKernel, Kernel, Matern32Kernel, Matern52Kernel,
    SqExponentialKernel, StationaryKernel, TensorProductKernel,
    WassersteinExponentialKernel, WhiteKernel, get_kernel, tensor,
)

__all__ = [
    "Distance", "Euclidean", "SqEuclidean", "Cityblock", "TotalVariation",
    "Wasserstein", "get_distance",
    "Kernel", "StationaryKernel", "ExponentialKernel", "SqExponentialKernel",
    "GaussianKernel", "Matern32Kernel", "Matern52Kernel",
    "WassersteinExponentialKernel", "WhiteKernel", "TensorProductKernel",
    "tensor", "get_kernel",
]
