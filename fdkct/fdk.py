"""FDK reconstruction pipeline.

Sequences the three FDK stages on a projection stack of shape
``(ns, nt, na)``:

1. pre-weighting with the detector weight map (:mod:`fdkct.weighting`),
2. row-wise ramp filtering (:mod:`fdkct.filters`),
3. backprojection and angular scaling (:mod:`fdkct.backprojection`).

Examples
--------
>>> volume = fdk_reconstruct(
...     proj, nx=64, nz=16, dx=1.0, ds=2.0,
...     dis_src_det=400.0, dis_iso_det=200.0,
... )
>>> volume.shape
torch.Size([64, 64, 16])
"""

import logging

from .backprojection import _backproject_masked, reconstruction_mask
from .config import FDKConfig
from .errors import ConfigurationError
from .filters import build_kernel, filter_projections
from .geometry import sample_grids, weight1
from .utils import _as_tensor, _validate_shape
from .weighting import apply_weights

logger = logging.getLogger(__name__)


def _resolve_config(proj, config, options):
    if config is None:
        config = FDKConfig.from_options(**options)
    elif options:
        raise ConfigurationError(
            f"pass either a config or keyword options, not both (got {sorted(options)})"
        )
    return config.with_projection_shape(proj.shape)


def fdk_weight_filter(stack, config):
    """Weight and ramp-filter a projection stack in place.

    Parameters
    ----------
    stack : torch.Tensor
        Projections of shape (ns, nt, na).
    config : FDKConfig
        Reconstruction geometry matching `stack`.

    Returns
    -------
    torch.Tensor
        `stack`, weighted and filtered.
    """
    _validate_shape(stack, config.projection_shape, "projection stack")
    ss, tt = sample_grids(
        config.ns, config.nt, config.ds, config.dt, config.offset_s, config.offset_t,
        dtype=stack.dtype, device=stack.device,
    )
    weight_map = weight1(ss, tt, config.dsd, config.dso, config.dis_foc_src)
    apply_weights(stack, weight_map)

    kernel = build_kernel(config.topology, config.npad, config.ds, config.dsd, config.window, device=stack.device)
    filter_projections(stack, kernel, config.npad)
    return stack


def fdk_reconstruct(proj, config=None, mask=None, inplace=False, **options):
    """Reconstruct a volume from circular-orbit cone-beam projections.

    Parameters
    ----------
    proj : numpy.ndarray or torch.Tensor
        Line-integral projections of shape (ns, nt, na).
    config : FDKConfig, optional
        Reconstruction geometry. If omitted it is built from `options`.
    mask : array-like, optional
        Boolean field-of-view mask of shape (nx, ny). It is narrowed to the
        radius reachable by the detector; voxels outside are exactly zero.
    inplace : bool, optional
        Weight and filter `proj` itself instead of a copy. Only possible
        when `proj` is a tensor of the working dtype and device.
    **options
        :class:`FDKConfig` fields, e.g. ``nx, nz, dx, ds, dis_src_det,
        dis_iso_det, dis_foc_src, window, offset_st, ia_skip``.

    Returns
    -------
    torch.Tensor
        Reconstructed volume of shape (nx, ny, nz) in ``config.dtype``.

    Raises
    ------
    ConfigurationError
        Unsupported or incomplete configuration, raised before any array
        is allocated.
    ShapeMismatch
        Projection or mask dimensions inconsistent with the configuration.
    """
    config = _resolve_config(proj, config, options)
    logger.debug(
        "FDK %s detector: ns=%d nt=%d na=%d, volume %s, window=%s, npad=%d",
        config.topology.name, config.ns, config.nt, config.na,
        config.volume_shape, config.window if isinstance(config.window, str) else "custom",
        config.npad,
    )

    stack = _as_tensor(proj, dtype=config.dtype, device=config.device, copy=not inplace)
    # mask errors surface before the projections are weighted and filtered
    mask, xs, ys, zs = reconstruction_mask(config, mask, device=stack.device)

    fdk_weight_filter(stack, config)
    return _backproject_masked(stack, config, mask, xs, ys, zs)
