"""Exceptions raised by the comparator.

Only input problems surface as exceptions. A missing perceptual model is
not an error for callers: the perceptual engine reports it through
PerceptualResult.error and the orchestrator falls back to pixel decisions.
"""


class VisualComparisonError(Exception):
    """Base exception for all comparator errors."""

    pass


class ImageDecodeError(VisualComparisonError, ValueError):
    """Input bytes or buffer could not be decoded into a raster image."""

    pass


class ModelLoadError(VisualComparisonError):
    """A perceptual model loader tier is unconfigured or failed.

    Raised by individual loaders and consumed by the perceptual engine,
    which moves on to the next tier.
    """

    pass
