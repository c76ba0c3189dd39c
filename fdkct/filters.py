"""Ramp filtering of cone-beam projections.

The ramp kernel is built from the analytic band-limited impulse response
of the detector topology, transformed with an FFT, apodized with a window
and scaled by the sample spacing. Every detector row is then zero-padded
to the kernel length and filtered in the frequency domain.
"""

import logging
import math

import torch

from .constants import _TORCH_DTYPE
from .errors import ConfigurationError
from .utils import _as_tensor, _next_pow2, _validate_shape

logger = logging.getLogger(__name__)


def padded_length(ns):
    """FFT length for linear convolution of `ns` samples (power of two >= 2*ns - 1)."""
    return _next_pow2(2 * ns - 1)


def fbp_ramp(topology, n, ds, dsd):
    """Sampled band-limited ramp impulse response.

    Parameters
    ----------
    topology : DetectorTopology
        Flat or arc detector.
    n : torch.Tensor
        Integer sample lags.
    ds : float
        Detector sample spacing.
    dsd : float
        Source-to-detector distance (used by the arc kernel).

    Returns
    -------
    torch.Tensor
        ``1 / (4 ds^2)`` at lag 0, zero at even lags and the topology's
        closed form at odd lags.
    """
    h = torch.zeros_like(n, dtype=_TORCH_DTYPE)
    h[n == 0] = 1.0 / (4 * ds ** 2)
    odd = (n % 2) != 0
    h[odd] = topology.ramp(n[odd].to(_TORCH_DTYPE), ds, dsd)
    return h


def filter_window(npad, window="ramp", dtype=_TORCH_DTYPE, device=None):
    """Frequency-domain apodization window in FFT order.

    Parameters
    ----------
    npad : int
        Kernel length.
    window : str or array-like
        ``'ramp'`` (no apodization), ``'hann'`` (periodic Hann window of
        length `npad`) or an array of `npad` samples over the frequencies
        ``[-npad/2, npad/2)``.

    Returns
    -------
    torch.Tensor
        Window of shape (npad,), reordered so that index 0 is zero frequency.

    Raises
    ------
    ConfigurationError
        Unknown window name or custom window of the wrong length.
    """
    if isinstance(window, str):
        if window == "ramp":
            return torch.ones(npad, dtype=dtype, device=device)
        if window == "hann":
            # periodic window: peak at index npad/2, which is zero frequency
            k = torch.arange(npad, dtype=dtype, device=device)
            values = 0.5 * (1 - torch.cos(2 * math.pi * k / npad))
        else:
            raise ConfigurationError(f"unknown window {window!r}")
    else:
        values = _as_tensor(window, dtype=dtype, device=device)
        if values.ndim != 1 or values.shape[0] != npad:
            raise ConfigurationError(
                f"custom window has shape {tuple(values.shape)}, expected ({npad},)"
            )
    return torch.fft.ifftshift(values)


def build_kernel(topology, npad, ds, dsd, window="ramp", device=None):
    """Frequency response of the windowed ramp filter.

    The analytic impulse response is sampled at lags ``-npad/2 .. npad/2-1``,
    transformed to the frequency domain and multiplied by the window. The
    factor `ds` turns the continuous convolution into its discrete
    equivalent.

    Returns
    -------
    torch.Tensor
        Real kernel of shape (npad,) in FFT order.
    """
    n = torch.arange(-(npad // 2), npad // 2, device=device)
    hn = fbp_ramp(topology, n, ds, dsd)
    kernel = torch.real(torch.fft.fft(torch.fft.ifftshift(hn)))
    kernel = kernel * filter_window(npad, window, dtype=kernel.dtype, device=kernel.device)
    logger.debug("built %s ramp kernel, npad=%d", topology.name, npad)
    return ds * kernel


def filter_projections(stack, kernel, npad=None):
    """Filter every detector row of a projection stack in place.

    Each row along the horizontal detector axis is zero-padded to `npad`,
    multiplied by `kernel` in the frequency domain, transformed back and
    truncated to its original length. Only the real part is kept; the
    kernel is real and even so the imaginary part is rounding noise.

    Parameters
    ----------
    stack : torch.Tensor
        Projections of shape (ns, nt, na), modified in place.
    kernel : torch.Tensor
        Kernel of shape (npad,) from :func:`build_kernel`.
    npad : int, optional
        Padded row length; defaults to ``len(kernel)``.

    Returns
    -------
    torch.Tensor
        `stack`, now filtered.
    """
    ns = stack.shape[0]
    if npad is None:
        npad = kernel.shape[0]
    _validate_shape(kernel, (npad,), "filter kernel")
    kernel = kernel.to(dtype=stack.dtype, device=stack.device)

    # all (t, view) rows are independent and transformed as one batch
    spectrum = torch.fft.fft(stack, n=npad, dim=0)
    spectrum *= kernel.reshape(npad, 1, 1)
    filtered = torch.real(torch.fft.ifft(spectrum, dim=0))[:ns]
    stack.copy_(filtered)
    return stack
