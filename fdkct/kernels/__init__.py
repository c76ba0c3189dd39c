"""Compiled kernels for FDK backprojection.

This subpackage contains Numba CPU kernels that compute the per-angle
backprojection contribution in single precision.
"""

from .cone_beam import (
    _cone_3d_fdk_backward_kernel,
)

__all__ = [
    '_cone_3d_fdk_backward_kernel',
]
