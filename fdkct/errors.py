"""Exception types raised by fdkct.

Both error kinds derive from :class:`ValueError` so callers that already
guard numeric code with ``except ValueError`` keep working.
"""


class FDKError(ValueError):
    """Base class for all fdkct errors."""


class ConfigurationError(FDKError):
    """Unsupported or incomplete reconstruction configuration.

    Raised before any array is allocated, e.g. for a focal-spot distance
    other than 0 (arc detector) or infinity (flat detector), an unknown
    filter window or a missing detector/voxel spacing.
    """


class ShapeMismatch(FDKError):
    """Array dimensions inconsistent with the configured geometry."""
