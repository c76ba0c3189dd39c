"""Voxel-driven FDK backprojection.

For every processed source angle each mask-active voxel is projected onto
the detector, the filtered projection is bilinearly interpolated at that
point, weighted by the topology's distance weight and accumulated. The
per-angle work is done by an :class:`AngleContribution` implementation:
:class:`TorchBackprojector` is the reference, :class:`NumbaBackprojector`
a compiled single-precision alternative with the same contract.
"""

import logging

import numpy as np
import torch

from .constants import _DTYPE
from .errors import ShapeMismatch
from .geometry import fov_mask, max_radius, source_angles, volume_axes
from .kernels import _cone_3d_fdk_backward_kernel
from .utils import DeviceManager, _as_tensor, _trig_tables, _validate_shape

logger = logging.getLogger(__name__)


# ============================================================================
# Per-Angle Contribution Backends
# ============================================================================

class AngleContribution:
    """Backprojection of a single view onto the mask-active voxels.

    Parameters
    ----------
    config : FDKConfig
        Reconstruction geometry with ``ns, nt, na`` set.
    x_active, y_active : torch.Tensor
        In-plane coordinates of the mask-active voxel columns, shape (n_active,).
    zs : torch.Tensor
        Slice coordinates, shape (nz,).

    Calling an instance with one filtered view of shape (ns, nt) and its
    source angle returns the contribution of that view, shape (n_active, nz).
    """

    def __init__(self, config, x_active, y_active, zs):
        self.config = config
        self.topology = config.topology
        self.x_active = x_active
        self.y_active = y_active
        self.zs = zs
        self.ws = (config.ns - 1) / 2 + config.offset_s
        self.wt = (config.nt - 1) / 2 + config.offset_t

    def __call__(self, view, cos_b, sin_b):
        raise NotImplementedError


class TorchBackprojector(AngleContribution):
    """Reference implementation, vectorized over voxels in the working dtype."""

    def __call__(self, view, cos_b, sin_b):
        cfg = self.config
        ns, nt = view.shape

        xb = self.x_active * cos_b + self.y_active * sin_b
        yb = -self.x_active * sin_b + self.y_active * cos_b
        d_loop = cfg.dso - yb
        mag = cfg.dsd / d_loop

        sprime = self.topology.project_to_detector(xb, d_loop, cfg.dsd, cfg.offset_source)
        tprime = mag[:, None] * self.zs[None, :]

        bh = (sprime / cfg.ds + self.ws)[:, None].expand_as(tprime)
        bv = tprime / cfg.dt + self.wt
        ih = torch.floor(bh)
        iv = torch.floor(bv)
        wr = bh - ih
        wu = bv - iv
        ih = ih.long()
        iv = iv.long()

        # out-of-range samples contribute zero
        valid = (ih >= 0) & (ih < ns - 1) & (iv >= 0) & (iv < nt - 1)
        ih = torch.where(valid, ih, torch.zeros_like(ih))
        iv = torch.where(valid, iv, torch.zeros_like(iv))
        # a single-sample axis has no upper neighbour
        ih1 = torch.clamp(ih + 1, max=ns - 1)
        iv1 = torch.clamp(iv + 1, max=nt - 1)

        val = (
            view[ih,  iv]  * (1 - wr) * (1 - wu) +
            view[ih1, iv]  * wr       * (1 - wu) +
            view[ih,  iv1] * (1 - wr) * wu +
            view[ih1, iv1] * wr       * wu
        )
        val = torch.where(valid, val, torch.zeros_like(val))

        weight = self.topology.back_weight(xb, d_loop, cfg.dsd, cfg.offset_source)
        return val * weight[:, None]


class NumbaBackprojector(AngleContribution):
    """Alternate backend running the compiled float32 kernel on the CPU.

    Views are transposed to a contiguous (nt, ns) layout and the result is
    returned in the accumulator's dtype and device.
    """

    def __init__(self, config, x_active, y_active, zs):
        super().__init__(config, x_active, y_active, zs)
        self._x = x_active.detach().cpu().numpy().astype(_DTYPE)
        self._y = y_active.detach().cpu().numpy().astype(_DTYPE)
        self._z = zs.detach().cpu().numpy().astype(_DTYPE)
        self._out = np.zeros((self._z.shape[0], self._x.shape[0]), dtype=_DTYPE)

    def __call__(self, view, cos_b, sin_b):
        cfg = self.config
        d_view = np.ascontiguousarray(view.detach().cpu().numpy().T, dtype=_DTYPE)
        _cone_3d_fdk_backward_kernel(
            d_view, self._x, self._y, self._z,
            _DTYPE(cos_b), _DTYPE(sin_b), _DTYPE(cfg.ds), _DTYPE(cfg.dt),
            _DTYPE(self.ws), _DTYPE(self.wt),
            _DTYPE(cfg.dsd), _DTYPE(cfg.dso), _DTYPE(cfg.offset_source),
            self.topology.is_arc, self._out,
        )
        contribution = torch.from_numpy(self._out.T.copy()).to(dtype=view.dtype)
        return DeviceManager.ensure_device(contribution, view.device)


def make_backend(config, x_active, y_active, zs):
    """Instantiate the backend selected by ``config.use_alternate_backend``."""
    cls = NumbaBackprojector if config.use_alternate_backend else TorchBackprojector
    return cls(config, x_active, y_active, zs)


# ============================================================================
# Accumulation
# ============================================================================

class Accumulator:
    """Running per-voxel sums of one reconstruction call.

    Holds one row per mask-active voxel column and one column per slice.
    """

    def __init__(self, n_active, nz, dtype, device=None):
        self.total = torch.zeros((n_active, nz), dtype=dtype, device=device)
        self.n_views = 0

    def add(self, contribution):
        _validate_shape(contribution, self.total.shape, "angle contribution")
        self.total += contribution
        self.n_views += 1

    def to_volume(self, mask, scale):
        """Scatter the sums into a zero volume at the active voxels and scale.

        Parameters
        ----------
        mask : torch.Tensor
            Boolean mask of shape (nx, ny) with ``n_active`` true entries.
        scale : float
            Angular quadrature factor applied once to the whole volume.

        Returns
        -------
        torch.Tensor
            Volume of shape (nx, ny, nz).
        """
        nx, ny = mask.shape
        volume = torch.zeros((nx, ny, self.total.shape[1]), dtype=self.total.dtype, device=self.total.device)
        volume[mask] = self.total
        volume *= scale
        return volume


# ============================================================================
# Backprojection Driver
# ============================================================================

def reconstruction_mask(config, mask=None, device=None):
    """Field-of-view mask of a configuration, narrowed by the detector extent.

    Parameters
    ----------
    config : FDKConfig
        Reconstruction geometry with ``ns`` set.
    mask : array-like, optional
        Boolean mask of shape (nx, ny). All voxels are candidates if omitted.

    Returns
    -------
    mask : torch.Tensor
        Boolean mask of shape (nx, ny).
    xs, ys, zs : torch.Tensor
        Voxel coordinates along each axis.

    Raises
    ------
    ShapeMismatch
        If `mask` does not have shape (nx, ny).
    """
    if mask is None:
        mask = torch.ones((config.nx, config.ny), dtype=torch.bool, device=device)
    else:
        mask = _as_tensor(mask, dtype=torch.bool, device=device)
    if mask.ndim != 2 or tuple(mask.shape) != (config.nx, config.ny):
        raise ShapeMismatch(
            f"mask has shape {tuple(mask.shape)}, volume expects ({config.nx}, {config.ny})"
        )

    xs, ys, zs = volume_axes(
        config.nx, config.ny, config.nz, config.dx, config.dy, config.dz,
        config.center_xyz, dtype=config.dtype, device=mask.device,
    )
    rmax = max_radius(config.ns, config.ds, config.offset_s, config.dsd, config.dso, config.dis_foc_src)
    logger.debug("field of view radius rmax=%g", rmax)
    return fov_mask(mask, xs, ys, rmax), xs, ys, zs


def backproject(stack, config, mask=None, reverse=False):
    """Backproject a filtered projection stack and apply the FDK scale.

    Parameters
    ----------
    stack : torch.Tensor
        Weighted and filtered projections of shape (ns, nt, na). Read only.
    config : FDKConfig
        Reconstruction geometry; ``ns, nt, na`` must match `stack`.
    mask : array-like, optional
        Boolean field-of-view mask of shape (nx, ny).
    reverse : bool, optional
        Process the views in reverse order. Accumulation is order
        independent up to rounding.

    Returns
    -------
    torch.Tensor
        Reconstructed volume of shape (nx, ny, nz); voxels outside the
        mask are exactly zero.
    """
    _validate_shape(stack, config.projection_shape, "projection stack")
    mask, xs, ys, zs = reconstruction_mask(config, mask, device=stack.device)
    return _backproject_masked(stack, config, mask, xs, ys, zs, reverse=reverse)


def _backproject_masked(stack, config, mask, xs, ys, zs, reverse=False):
    """Backprojection loop over an already narrowed mask and its voxel axes."""
    ix, iy = torch.nonzero(mask, as_tuple=True)
    backend = make_backend(config, xs[ix], ys[iy], zs)
    accumulator = Accumulator(ix.shape[0], config.nz, dtype=stack.dtype, device=stack.device)
    logger.debug(
        "backprojecting onto %d active columns x %d slices with %s",
        ix.shape[0], config.nz, type(backend).__name__,
    )

    betas = source_angles(config.orbit_rad, config.orbit_start_rad, config.na, device=stack.device)
    cos_table, sin_table = _trig_tables(betas, dtype=stack.dtype)
    cos_table, sin_table = cos_table.tolist(), sin_table.tolist()
    indices = config.angle_indices
    if reverse:
        indices = reversed(indices)
    for ia in indices:
        accumulator.add(backend(stack[:, :, ia], cos_table[ia], sin_table[ia]))

    logger.info(
        "backprojected %d of %d views onto a %s volume",
        accumulator.n_views, config.na, config.volume_shape,
    )
    return accumulator.to_volume(mask, config.scale)
