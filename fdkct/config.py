"""
FDK reconstruction configuration.

Holds the recognized reconstruction options, their defaults and the
quantities derived from them. All validation happens when the
configuration is created, so no pipeline stage starts with an invalid
geometry.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple, Union

import numpy as np
import torch

from .constants import _INF, _TORCH_DTYPE
from .errors import ConfigurationError, ShapeMismatch
from .geometry import DetectorTopology, detector_topology
from .filters import padded_length

WINDOW_NAMES = ("ramp", "hann")


@dataclass
class FDKConfig:
    """Geometry and options of one FDK reconstruction.

    Angles (`orbit`, `orbit_start`) are given in degrees, offsets in
    samples/voxels and all distances in the units of `dx` and `ds`.
    """
    # Volume grid
    nx: Optional[int] = None
    ny: Optional[int] = None  # defaults to nx
    nz: Optional[int] = None
    dx: Optional[float] = None
    dy: Optional[float] = None  # defaults to dx
    dz: Optional[float] = None  # defaults to dx
    center_xyz: Tuple[float, float, float] = (0.0, 0.0, 0.0)

    # Detector
    ns: Optional[int] = None  # taken from the projection stack when omitted
    nt: Optional[int] = None
    ds: Optional[float] = None
    dt: Optional[float] = None  # defaults to ds
    offset_st: Tuple[float, float] = (0.0, 0.0)

    # Source trajectory
    na: Optional[int] = None
    orbit: float = 360.0  # degrees
    orbit_start: float = 0.0  # degrees
    dis_src_det: Optional[float] = None
    dis_iso_det: Optional[float] = None
    dis_foc_src: float = _INF
    offset_source: float = 0.0

    # Reconstruction options
    window: Union[str, np.ndarray, torch.Tensor] = "ramp"
    ia_skip: int = 1
    use_alternate_backend: bool = False
    dtype: torch.dtype = _TORCH_DTYPE
    device: Optional[Union[str, torch.device]] = None

    topology: DetectorTopology = field(init=False, repr=False)

    def __post_init__(self):
        if self.dx is None:
            raise ConfigurationError("voxel size dx is required")
        if self.ds is None:
            raise ConfigurationError("detector spacing ds is required")
        if self.dy is None:
            self.dy = self.dx
        if self.dz is None:
            self.dz = self.dx
        if self.dt is None:
            self.dt = self.ds
        for name in ("dx", "dy", "dz", "ds", "dt"):
            if not getattr(self, name) > 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")

        if self.dis_src_det is None or self.dis_iso_det is None:
            raise ConfigurationError("dis_src_det and dis_iso_det are required")
        if not self.dso > 0:
            raise ConfigurationError(
                f"source-to-isocenter distance dis_src_det - dis_iso_det must be positive, got {self.dso}"
            )

        # fails for any focal-spot distance other than 0 or inf
        self.topology = detector_topology(self.dis_foc_src)
        if self.offset_source and not self.topology.is_arc:
            raise ConfigurationError("offset_source is only supported for arc detectors (dis_foc_src=0)")

        if self.nx is None or self.nz is None:
            raise ConfigurationError("volume size nx and nz are required")
        if self.ny is None:
            self.ny = self.nx
        for name in ("nx", "ny", "nz"):
            _check_count(name, getattr(self, name))
        for name in ("ns", "nt", "na"):
            if getattr(self, name) is not None:
                _check_count(name, getattr(self, name))
        _check_count("ia_skip", self.ia_skip)

        if len(self.center_xyz) != 3:
            raise ConfigurationError(f"center_xyz needs 3 values, got {self.center_xyz!r}")
        if len(self.offset_st) != 2:
            raise ConfigurationError(f"offset_st needs 2 values, got {self.offset_st!r}")

        if isinstance(self.window, str):
            if self.window not in WINDOW_NAMES:
                raise ConfigurationError(
                    f"unknown window {self.window!r}, expected one of {WINDOW_NAMES} or an array"
                )
        elif self.ns is not None and len(self.window) != self.npad:
            raise ConfigurationError(
                f"custom window has length {len(self.window)}, expected npad={self.npad}"
            )

    @classmethod
    def from_options(cls, **options):
        """Build a configuration from keyword options, ignoring ``None`` values."""
        return cls(**{key: value for key, value in options.items() if value is not None})

    def with_projection_shape(self, shape):
        """Return a copy whose ``ns, nt, na`` match a projection stack.

        Raises
        ------
        ShapeMismatch
            If `shape` is not 3D or conflicts with counts already set.
        """
        if len(shape) != 3:
            raise ShapeMismatch(f"projection stack must be 3D (ns, nt, na), got shape {tuple(shape)}")
        counts = {}
        for name, size in zip(("ns", "nt", "na"), shape):
            current = getattr(self, name)
            if current is not None and current != size:
                raise ShapeMismatch(
                    f"projection stack has {name}={size}, configuration expects {current}"
                )
            counts[name] = int(size)
        return replace(self, **counts)

    # ------------------------------------------------------------------
    # Derived quantities
    # ------------------------------------------------------------------

    @property
    def dso(self):
        """Source-to-isocenter distance, ``Dsd - Dod``."""
        return self.dis_src_det - self.dis_iso_det

    @property
    def dsd(self):
        return self.dis_src_det

    @property
    def offset_s(self):
        return self.offset_st[0]

    @property
    def offset_t(self):
        return self.offset_st[1]

    @property
    def orbit_rad(self):
        return math.radians(self.orbit)

    @property
    def orbit_start_rad(self):
        return math.radians(self.orbit_start)

    @property
    def npad(self):
        """FFT length: smallest power of two ``>= 2 * ns - 1``."""
        return padded_length(self.ns)

    @property
    def angle_indices(self):
        """Indices of the views used by the backprojector."""
        return range(0, self.na, self.ia_skip)

    @property
    def scale(self):
        """Angular quadrature factor ``0.5 * |orbit| / (na / ia_skip)``."""
        return 0.5 * abs(self.orbit_rad) / len(self.angle_indices)

    @property
    def volume_shape(self):
        return (self.nx, self.ny, self.nz)

    @property
    def projection_shape(self):
        return (self.ns, self.nt, self.na)


def _check_count(name, value):
    if int(value) != value or value < 1:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")
