"""Analytic sphere phantoms for circular cone-beam geometries.

Spheres are given as rows ``(x, y, z, radius, mu)`` in the physical units
of the configuration. Projections are exact line integrals through the
spheres along the source-to-detector-sample rays of every view.
"""

import torch

from .geometry import sample_grids, source_angles, volume_axes
from .utils import _as_tensor


def _sphere_table(spheres, dtype, device):
    spheres = _as_tensor(spheres, dtype=dtype, device=device).reshape(-1, 5)
    return spheres[:, :3], spheres[:, 3], spheres[:, 4]


def sphere_projections(config, spheres):
    """Cone-beam line integrals of a set of uniform spheres.

    Parameters
    ----------
    config : FDKConfig
        Geometry with ``ns, nt, na`` set; flat and arc detectors and the
        arc source offset are honoured.
    spheres : array-like
        Sphere parameters, shape (n_spheres, 5) as ``(x, y, z, radius, mu)``.

    Returns
    -------
    torch.Tensor
        Projections of shape (ns, nt, na) in ``config.dtype``.

    Examples
    --------
    >>> cfg = FDKConfig(nx=64, nz=16, dx=1.0, ns=64, nt=32, na=180, ds=2.0,
    ...                 dis_src_det=400.0, dis_iso_det=200.0)
    >>> proj = sphere_projections(cfg, [[0, 0, 0, 6, 1]])
    >>> proj.shape
    torch.Size([64, 32, 180])
    """
    dtype, device = config.dtype, config.device
    centers, radii, mus = _sphere_table(spheres, dtype, device)

    ss, tt = sample_grids(
        config.ns, config.nt, config.ds, config.dt, config.offset_s, config.offset_t,
        dtype=dtype, device=device,
    )
    ss, tt = torch.meshgrid(ss, tt, indexing="ij")
    # detector samples and source in the rotating source frame
    px, py, pz = config.topology.detector_positions(ss, tt, config.dsd, config.dso, config.offset_source)
    src = (config.offset_source, config.dso)

    betas = source_angles(config.orbit_rad, config.orbit_start_rad, config.na, dtype=dtype, device=device)
    cos_b = torch.cos(betas)[None, None, :]
    sin_b = torch.sin(betas)[None, None, :]

    # rotate back to world coordinates: x = xb cos - yb sin, y = xb sin + yb cos
    src_x = src[0] * cos_b - src[1] * sin_b
    src_y = src[0] * sin_b + src[1] * cos_b
    det_x = px[..., None] * cos_b - py[..., None] * sin_b
    det_y = px[..., None] * sin_b + py[..., None] * cos_b

    ux = det_x - src_x
    uy = det_y - src_y
    uz = pz[..., None].expand_as(ux)
    length = torch.sqrt(ux ** 2 + uy ** 2 + uz ** 2)
    ux, uy, uz = ux / length, uy / length, uz / length

    proj = torch.zeros_like(ux)
    for (cx, cy, cz), radius, mu in zip(centers, radii, mus):
        wx, wy, wz = cx - src_x, cy - src_y, cz
        along = wx * ux + wy * uy + wz * uz
        dist2 = wx ** 2 + wy ** 2 + wz ** 2 - along ** 2
        proj += mu * 2 * torch.sqrt(torch.clamp(radius ** 2 - dist2, min=0))
    return proj


def sphere_volume(config, spheres):
    """Voxelized spheres on the reconstruction grid of `config`.

    Each voxel takes the sum of the attenuation values of the spheres that
    contain its center.

    Returns
    -------
    torch.Tensor
        Volume of shape (nx, ny, nz) in ``config.dtype``.
    """
    dtype, device = config.dtype, config.device
    centers, radii, mus = _sphere_table(spheres, dtype, device)
    xs, ys, zs = volume_axes(
        config.nx, config.ny, config.nz, config.dx, config.dy, config.dz,
        config.center_xyz, dtype=dtype, device=device,
    )
    xx, yy, zz = torch.meshgrid(xs, ys, zs, indexing="ij")

    volume = torch.zeros_like(xx)
    for (cx, cy, cz), radius, mu in zip(centers, radii, mus):
        inside = (xx - cx) ** 2 + (yy - cy) ** 2 + (zz - cz) ** 2 <= radius ** 2
        volume += mu * inside.to(dtype)
    return volume
