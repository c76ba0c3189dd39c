"""Detector and trajectory geometry for circular-orbit cone-beam CT.

This module provides the two supported detector topologies (flat and arc),
detector sample grids, the FDK pre-weighting map, the maximum reachable
radius, source angles, volume voxel coordinates and the field-of-view mask.

Coordinate convention: for a source angle ``beta`` a point ``(x, y)`` is
rotated into the source frame as ``xb = x cos(beta) + y sin(beta)`` and
``yb = -x sin(beta) + y cos(beta)``. The source sits at ``yb = Dso`` (and
``xb = offset_source`` for an arc detector); in world coordinates that is
``(-Dso sin(beta), Dso cos(beta), 0)``.
"""

import math
import torch

from .constants import _TORCH_DTYPE
from .errors import ConfigurationError


# ============================================================================
# Detector Topologies
# ============================================================================

class DetectorTopology:
    """Behaviour that depends on the detector sampling topology.

    A topology is selected once per reconstruction with
    :func:`detector_topology` and then used by every pipeline stage, so the
    flat/arc decision is never repeated per stage.
    """

    name = None
    is_arc = False

    def weight1(self, ss, tt, dsd, dso):
        """Per-pixel FDK pre-weight for detector coordinates `ss`, `tt`."""
        raise NotImplementedError

    def gamma_max(self, smax, dsd):
        """Largest fan angle reached by a detector half-width `smax`."""
        raise NotImplementedError

    def ramp(self, n, ds, dsd):
        """Band-limited ramp impulse response at odd integer lags `n`."""
        raise NotImplementedError

    def project_to_detector(self, xb, d_loop, dsd, offset_source=0.0):
        """Horizontal detector coordinate of a point in the source frame."""
        raise NotImplementedError

    def back_weight(self, xb, d_loop, dsd, offset_source=0.0):
        """Distance weight applied to an interpolated filtered value."""
        raise NotImplementedError

    def detector_positions(self, ss, tt, dsd, dso, offset_source=0.0):
        """Source-frame coordinates ``(xb, yb, z)`` of detector samples."""
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}()"


class FlatDetector(DetectorTopology):
    """Planar detector perpendicular to the central ray (``Dfs = inf``)."""

    name = "flat"

    def weight1(self, ss, tt, dsd, dso):
        return dso * torch.sqrt(1 + (tt / dsd) ** 2) / torch.sqrt(dsd ** 2 + ss ** 2 + tt ** 2)

    def gamma_max(self, smax, dsd):
        return math.atan(smax / dsd)

    def ramp(self, n, ds, dsd):
        return -1.0 / (math.pi * n * ds) ** 2

    def project_to_detector(self, xb, d_loop, dsd, offset_source=0.0):
        return dsd * xb / d_loop

    def back_weight(self, xb, d_loop, dsd, offset_source=0.0):
        return (dsd / d_loop) ** 2

    def detector_positions(self, ss, tt, dsd, dso, offset_source=0.0):
        yb = torch.full_like(ss, dso - dsd)
        return ss, yb, tt


class ArcDetector(DetectorTopology):
    """Detector curved about the source at constant radius ``Dsd`` (``Dfs = 0``)."""

    name = "arc"
    is_arc = True

    def weight1(self, ss, tt, dsd, dso):
        return (dso / dsd) * torch.cos(ss / (dsd * torch.sqrt(1 + (tt / dsd) ** 2)))

    def gamma_max(self, smax, dsd):
        return smax / dsd

    def ramp(self, n, ds, dsd):
        return -1.0 / (math.pi * dsd * torch.sin(n * ds / dsd)) ** 2

    def project_to_detector(self, xb, d_loop, dsd, offset_source=0.0):
        return dsd * torch.atan2(xb - offset_source, d_loop)

    def back_weight(self, xb, d_loop, dsd, offset_source=0.0):
        r_loop = xb - offset_source
        return dsd ** 2 / (r_loop ** 2 + d_loop ** 2)

    def detector_positions(self, ss, tt, dsd, dso, offset_source=0.0):
        gamma = ss / dsd
        return offset_source + dsd * torch.sin(gamma), dso - dsd * torch.cos(gamma), tt


FLAT = FlatDetector()
ARC = ArcDetector()


def detector_topology(dfs):
    """Select the detector topology for a focal-spot-to-source distance.

    Parameters
    ----------
    dfs : float
        Focal-spot-to-source distance. ``inf`` selects a flat detector and
        ``0`` an arc detector.

    Returns
    -------
    DetectorTopology
        :data:`FLAT` or :data:`ARC`.

    Raises
    ------
    ConfigurationError
        For any other value.
    """
    if dfs is None:
        raise ConfigurationError("dis_foc_src must be 0 (arc) or inf (flat), got None")
    if math.isinf(dfs) and dfs > 0:
        return FLAT
    if dfs == 0:
        return ARC
    raise ConfigurationError(
        f"dis_foc_src={dfs} is not supported; only 0 (arc) and inf (flat) detectors are implemented"
    )


# ============================================================================
# Detector Sampling and Weighting
# ============================================================================

def sample_grids(ns, nt, ds, dt, offset_s=0.0, offset_t=0.0, dtype=_TORCH_DTYPE, device=None):
    """Horizontal and vertical detector sample coordinates.

    Sample ``i`` (0-based) sits at ``ds * (i - ((ns - 1) / 2 + offset_s))``,
    i.e. the 1-based index ``(ns + 1) / 2`` maps to 0 before the sub-sample
    offset is applied.

    Parameters
    ----------
    ns, nt : int
        Number of detector columns and rows.
    ds, dt : float
        Sample spacing along the columns and rows.
    offset_s, offset_t : float, optional
        Detector center offsets in samples (fractional values allowed).
    dtype : torch.dtype, optional
        Output data type (default: float64).
    device : torch.device, optional
        Output device.

    Returns
    -------
    ss : torch.Tensor
        Shape (ns,).
    tt : torch.Tensor
        Shape (nt,).

    Examples
    --------
    >>> ss, tt = sample_grids(4, 2, 1.0, 1.0)
    >>> ss
    tensor([-1.5000, -0.5000,  0.5000,  1.5000], dtype=torch.float64)
    """
    ws = (ns - 1) / 2 + offset_s
    wt = (nt - 1) / 2 + offset_t
    ss = ds * (torch.arange(ns, dtype=dtype, device=device) - ws)
    tt = dt * (torch.arange(nt, dtype=dtype, device=device) - wt)
    return ss, tt


def weight1(ss, tt, dsd, dso, dfs):
    """FDK pre-weighting map for every detector pixel.

    Parameters
    ----------
    ss : torch.Tensor
        Horizontal sample coordinates, shape (ns,).
    tt : torch.Tensor
        Vertical sample coordinates, shape (nt,).
    dsd : float
        Source-to-detector distance.
    dso : float
        Source-to-isocenter distance.
    dfs : float
        Focal-spot-to-source distance (``inf`` or ``0``).

    Returns
    -------
    torch.Tensor
        Weight map of shape (ns, nt).

    Raises
    ------
    ConfigurationError
        If `dfs` is neither 0 nor inf.
    """
    topology = detector_topology(dfs)
    return topology.weight1(ss[:, None], tt[None, :], dsd, dso)


def max_radius(ns, ds, offset_s, dsd, dso, dfs):
    """Largest in-plane radius seen by the detector from every source angle.

    ``rmax = Dso * sin(gamma_max)`` where the half fan angle is
    ``atan(smax / Dsd)`` for a flat and ``smax / Dsd`` for an arc detector,
    with ``smax = ((ns - 1) / 2 - |offset_s|) * ds``.
    """
    topology = detector_topology(dfs)
    smax = ((ns - 1) / 2 - abs(offset_s)) * ds
    return dso * math.sin(topology.gamma_max(smax, dsd))


def source_angles(orbit, orbit_start, na, dtype=_TORCH_DTYPE, device=None):
    """Evenly spaced source angles over ``[orbit_start, orbit_start + orbit)``.

    Parameters
    ----------
    orbit : float
        Total angular sweep in radians (may be negative).
    orbit_start : float
        First angle in radians.
    na : int
        Number of views.

    Returns
    -------
    torch.Tensor
        Angles in radians, shape (na,).

    Examples
    --------
    >>> source_angles(math.pi, 0.0, 4)
    tensor([0.0000, 0.7854, 1.5708, 2.3562], dtype=torch.float64)
    """
    # Equivalent to linspace with endpoint=False
    step = orbit / na
    return orbit_start + torch.arange(na, dtype=dtype, device=device) * step


# ============================================================================
# Volume Grid and Field of View
# ============================================================================

def volume_axes(nx, ny, nz, dx, dy, dz, center_xyz=(0.0, 0.0, 0.0), dtype=_TORCH_DTYPE, device=None):
    """Voxel center coordinates along x, y and z.

    Voxel ``i`` along an axis with ``n`` voxels of size ``d`` and center
    offset ``c`` (in voxels) sits at ``d * (i - ((n - 1) / 2 + c))``.

    Returns
    -------
    xs, ys, zs : torch.Tensor
        Shapes (nx,), (ny,), (nz,).
    """
    cx, cy, cz = center_xyz
    xs = dx * (torch.arange(nx, dtype=dtype, device=device) - ((nx - 1) / 2 + cx))
    ys = dy * (torch.arange(ny, dtype=dtype, device=device) - ((ny - 1) / 2 + cy))
    zs = dz * (torch.arange(nz, dtype=dtype, device=device) - ((nz - 1) / 2 + cz))
    return xs, ys, zs


def fov_mask(mask, xs, ys, rmax):
    """Narrow a field-of-view mask to voxels within radius `rmax`.

    Parameters
    ----------
    mask : torch.Tensor
        Boolean mask of shape (nx, ny).
    xs, ys : torch.Tensor
        Voxel coordinates along x and y.
    rmax : float
        Largest reachable in-plane radius, see :func:`max_radius`.

    Returns
    -------
    torch.Tensor
        New boolean mask; a voxel is active only if it was active in
        `mask` and its radius does not exceed `rmax`.
    """
    rr = torch.sqrt(xs[:, None] ** 2 + ys[None, :] ** 2)
    return mask.to(dtype=torch.bool, device=rr.device) & (rr <= rmax)
