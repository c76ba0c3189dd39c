# fdkct/__init__.py
"""fdkct - FDK cone-beam CT reconstruction.

Feldkamp-Davis-Kress filtered backprojection for circular source orbits
with flat or arc detectors, built with PyTorch and Numba.
"""

from .config import FDKConfig

from .errors import (
    FDKError,
    ConfigurationError,
    ShapeMismatch,
)

from .geometry import (
    DetectorTopology,
    FlatDetector,
    ArcDetector,
    detector_topology,
    sample_grids,
    weight1,
    max_radius,
    source_angles,
    volume_axes,
    fov_mask,
)

from .weighting import apply_weights

from .filters import (
    padded_length,
    fbp_ramp,
    filter_window,
    build_kernel,
    filter_projections,
)

from .backprojection import (
    AngleContribution,
    TorchBackprojector,
    NumbaBackprojector,
    Accumulator,
    backproject,
    reconstruction_mask,
)

from .fdk import fdk_reconstruct, fdk_weight_filter

from .phantoms import sphere_projections, sphere_volume

__version__ = '1.0.0'

__all__ = [
    'FDKConfig',
    'FDKError',
    'ConfigurationError',
    'ShapeMismatch',
    'DetectorTopology',
    'FlatDetector',
    'ArcDetector',
    'detector_topology',
    'sample_grids',
    'weight1',
    'max_radius',
    'source_angles',
    'volume_axes',
    'fov_mask',
    'apply_weights',
    'padded_length',
    'fbp_ramp',
    'filter_window',
    'build_kernel',
    'filter_projections',
    'AngleContribution',
    'TorchBackprojector',
    'NumbaBackprojector',
    'Accumulator',
    'backproject',
    'reconstruction_mask',
    'fdk_reconstruct',
    'fdk_weight_filter',
    'sphere_projections',
    'sphere_volume',
]
