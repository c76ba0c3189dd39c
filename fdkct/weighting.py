"""FDK pre-weighting of cone-beam projections."""

from .utils import _validate_shape


def apply_weights(stack, weight_map):
    """Multiply every view of a projection stack by the same weight map.

    The map depends only on the detector geometry, not on the source
    position, so one map of shape (ns, nt) serves all views.

    Parameters
    ----------
    stack : torch.Tensor
        Projections of shape (ns, nt, na), modified in place.
    weight_map : torch.Tensor
        Weights of shape (ns, nt), see :func:`fdkct.geometry.weight1`.

    Returns
    -------
    torch.Tensor
        `stack`, now weighted.

    Raises
    ------
    ShapeMismatch
        If the map does not match the detector dimensions of `stack`.
    """
    _validate_shape(weight_map, stack.shape[:2], "weight map")
    stack *= weight_map.to(dtype=stack.dtype, device=stack.device).unsqueeze(-1)
    return stack
