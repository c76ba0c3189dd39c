"""Numba kernels for 3D cone beam FDK backprojection.

This module contains the voxel-driven backprojection kernel used by the
alternate backend. It evaluates one source angle for all mask-active
voxels of every slice, in float32, on a view-major ``(nt, ns)`` detector
layout.
"""

import math
from numba import prange

from ..constants import _PARALLEL_DECORATOR


# ============================================================================
# 3D Cone Beam FDK Backprojection Kernel
# ============================================================================

@_PARALLEL_DECORATOR
def _cone_3d_fdk_backward_kernel(
    d_view, d_x, d_y, d_z,
    cos_b, sin_b, ds, dt, ws, wt,
    dsd, dso, offset_source, is_arc,
    d_out
):
    """Backproject one filtered view onto the mask-active voxels.

    Parameters
    ----------
    d_view : numpy.ndarray
        Filtered projection of one view, shape (nt, ns), float32.
    d_x : numpy.ndarray
        x coordinates of the mask-active voxel columns, shape (n_active,).
    d_y : numpy.ndarray
        y coordinates of the mask-active voxel columns, shape (n_active,).
    d_z : numpy.ndarray
        z coordinates of the slices, shape (nz,).
    cos_b : float
        Cosine of the source angle.
    sin_b : float
        Sine of the source angle.
    ds : float
        Horizontal detector spacing.
    dt : float
        Vertical detector spacing.
    ws : float
        Fractional column index of the detector center, ``(ns - 1) / 2 + offset_s``.
    wt : float
        Fractional row index of the detector center, ``(nt - 1) / 2 + offset_t``.
    dsd : float
        Source-to-detector distance.
    dso : float
        Source-to-isocenter distance.
    offset_source : float
        Lateral source offset (arc detector only).
    is_arc : bool
        True for an arc detector, False for a flat detector.
    d_out : numpy.ndarray
        Output contribution, shape (nz, n_active), overwritten.

    Notes
    -----
    Slices never share output entries, so the outer loop runs in parallel.
    A voxel whose interpolation footprint leaves the detector contributes 0.
    """
    nt, ns = d_view.shape
    n_active = d_x.shape[0]
    nz = d_z.shape[0]

    for iz in prange(nz):
        zz = d_z[iz]
        for j in range(n_active):
            # === ROTATION INTO THE SOURCE FRAME ===
            xb = d_x[j] * cos_b + d_y[j] * sin_b
            yb = -d_x[j] * sin_b + d_y[j] * cos_b
            d_loop = dso - yb
            mag = dsd / d_loop

            # === DETECTOR PROJECTION AND DISTANCE WEIGHT ===
            if is_arc:
                r_loop = xb - offset_source
                sprime = dsd * math.atan2(r_loop, d_loop)
                w = dsd * dsd / (r_loop * r_loop + d_loop * d_loop)
            else:
                sprime = mag * xb
                w = mag * mag
            tprime = mag * zz

            bh = sprime / ds + ws
            bv = tprime / dt + wt
            ih = int(math.floor(bh))
            iv = int(math.floor(bv))
            if ih < 0 or ih >= ns - 1 or iv < 0 or iv >= nt - 1:
                d_out[iz, j] = 0.0
                continue

            # === BILINEAR INTERPOLATION ===
            wr = bh - ih
            wu = bv - iv
            wl = 1.0 - wr
            wd = 1.0 - wu
            val = (
                d_view[iv,     ih]     * wl * wd +
                d_view[iv,     ih + 1] * wr * wd +
                d_view[iv + 1, ih]     * wl * wu +
                d_view[iv + 1, ih + 1] * wr * wu
            )
            d_out[iz, j] = w * val
