"""
Exceptions raised by the modelling pipeline.

Every stage failure is terminal for a run; callers catch ``SDMError``.
"""


class SDMError(Exception):
    """Base class for pipeline failures."""


class DataError(SDMError):
    """Malformed, missing or unreadable input data."""


class GeometryError(SDMError):
    """Layers cannot be reconciled to a common grid."""


class SamplingError(SDMError):
    """No valid raster cells to draw background points from."""


class FitError(SDMError):
    """Degenerate input to the regression or its evaluation."""
