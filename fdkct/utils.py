"""Utility classes and helper functions for the fdkct package.

This module provides device management, array-to-tensor conversion,
trigonometric table generation, shape validation and FFT length helpers
shared by the pipeline stages.
"""

import torch

from .constants import _TORCH_DTYPE
from .errors import ShapeMismatch


# ============================================================================
# Device Management Utilities
# ============================================================================

class DeviceManager:
    """Utilities for managing PyTorch tensor devices."""

    @staticmethod
    def get_device(tensor):
        """Get the device of a PyTorch tensor.

        Parameters
        ----------
        tensor : torch.Tensor or numpy.ndarray
            Array whose device to determine.

        Returns
        -------
        torch.device
            Device of the tensor or CPU if unavailable.

        Examples
        --------
        >>> DeviceManager.get_device(torch.tensor([1, 2, 3]))
        device(type='cpu')
        """
        return tensor.device if isinstance(tensor, torch.Tensor) else torch.device("cpu")

    @staticmethod
    def ensure_device(tensor, device):
        """Ensure a tensor resides on a given device.

        Parameters
        ----------
        tensor : torch.Tensor
            Tensor to move.
        device : torch.device
            Desired device.

        Returns
        -------
        torch.Tensor
            Tensor on the specified device. Unchanged if already on it.
        """
        if hasattr(tensor, "to") and tensor.device != device:
            return tensor.to(device)
        return tensor


# ============================================================================
# Array Conversion
# ============================================================================

def _as_tensor(data, dtype=_TORCH_DTYPE, device=None, copy=False):
    """Convert a numpy array or tensor to a torch tensor of the working dtype.

    Parameters
    ----------
    data : array-like or torch.Tensor
        Input data.
    dtype : torch.dtype, optional
        Desired data type (default: float64).
    device : torch.device, optional
        Target device. If None, keeps the device of `data` (CPU for numpy).
    copy : bool, optional
        Always return a new tensor, even if `data` already matches.

    Returns
    -------
    torch.Tensor
        Tensor sharing memory with `data` when no conversion is needed
        and `copy` is False.
    """
    if device is None:
        device = DeviceManager.get_device(data)
    tensor = torch.as_tensor(data, dtype=dtype, device=device)
    return tensor.clone() if copy else tensor


# ============================================================================
# Trigonometric Table Generation
# ============================================================================

def _trig_tables(angles, dtype=_TORCH_DTYPE, device=None):
    """Compute cosine and sine tables for input angles.

    Parameters
    ----------
    angles : array-like or torch.Tensor
        Source angles in radians.
    dtype : torch.dtype, optional
        Desired data type for output tables. Default is float64.
    device : torch.device, optional
        Target device for output tensors. If None, uses the device of `angles`.

    Returns
    -------
    cos : torch.Tensor
        Cosine values of `angles`.
    sin : torch.Tensor
        Sine values of `angles`.

    Examples
    --------
    >>> cos, sin = _trig_tables(torch.linspace(0, torch.pi, 180))
    >>> cos.shape
    torch.Size([180])
    """
    angles = _as_tensor(angles, dtype=dtype, device=device)
    return torch.cos(angles), torch.sin(angles)


# ============================================================================
# Shape Validation
# ============================================================================

def _validate_shape(tensor, expected, name):
    """Raise ShapeMismatch unless `tensor` has exactly the `expected` shape.

    Parameters
    ----------
    tensor : torch.Tensor or numpy.ndarray
        Array to validate.
    expected : tuple of int
        Expected shape.
    name : str
        Human readable name of the array used in the error message.
    """
    shape = tuple(tensor.shape)
    if shape != tuple(expected):
        raise ShapeMismatch(
            f"{name} has shape {shape}, expected {tuple(expected)}"
        )


# ============================================================================
# FFT Helpers
# ============================================================================

def _next_pow2(n):
    """Smallest power of two greater than or equal to `n` (n >= 1)."""
    return 1 << (int(n) - 1).bit_length()
