"""Global constants and configuration for the fdkct package.

This module defines the data types used by the reference and the
compiled backprojection paths and the Numba JIT decorator shared by the
CPU kernels.
"""

import numpy as np
import torch
from numba import njit

# ---------------------------------------------------------------------------
# Data Types and Numerical Constants
# ---------------------------------------------------------------------------

_DTYPE = np.float32
"""Data type of the compiled (alternate) backprojection backend (numpy.float32)."""

_TORCH_DTYPE = torch.float64
"""Default working precision of the reference torch pipeline."""

_INF = float("inf")
"""Focal-spot distance of a flat detector."""

# ---------------------------------------------------------------------------
# Numba JIT Decorators
# ---------------------------------------------------------------------------

# fastmath relaxes IEEE semantics for the float32 kernels
# parallel=True distributes the prange loop over independent z slices
_PARALLEL_DECORATOR = njit(cache=True, fastmath=True, parallel=True)
"""Numba CPU JIT decorator with fastmath and parallel loops for backprojection kernels."""
