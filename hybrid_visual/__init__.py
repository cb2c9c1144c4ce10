"""Hybrid visual comparator for UI regression tests.

A pixel comparator decides clear passes and clear failures; screenshots
whose pixel diff falls in the gray zone between the two are judged by a
perceptual (CNN embedding) comparator when one can be loaded.

Architecture layers (strict one-way dependency):
    hybrid → {pixel_engine, perceptual} → {results, raster, errors} → utils/

Key invariants:
    - Images are 8-bit RGB, (H, W, 3), top-left origin; baseline defines resolution
    - Diff fractions are in [0, 1]; similarities in [-1, 1]
    - Results are immutable; engines keep no per-call state
    - A missing perceptual model degrades to pixel-only decisions, never an exception
    - No file, environment or configuration-file reading: callers pass resolved settings
"""

__version__ = "1.0.0"

from .errors import ImageDecodeError, ModelLoadError, VisualComparisonError
from .hybrid import HybridComparator, Zone, classify_zone
from .perceptual import PerceptualEngine
from .pixel_engine import ImageEngine, dispose_backend, select_backend
from .raster import IgnoreRegion, RasterImage, as_raster
from .results import ComparisonResult, DiffRegion, HybridResult, PerceptualResult, Strategy
from .utils.validators import HybridConfig, PerceptualConfig, PixelEngineConfig, build_hybrid_config

__all__ = [
    'HybridComparator',
    'ImageEngine',
    'PerceptualEngine',
    'Zone',
    'classify_zone',
    'select_backend',
    'dispose_backend',
    'RasterImage',
    'IgnoreRegion',
    'as_raster',
    'ComparisonResult',
    'DiffRegion',
    'HybridResult',
    'PerceptualResult',
    'Strategy',
    'HybridConfig',
    'PixelEngineConfig',
    'PerceptualConfig',
    'build_hybrid_config',
    'VisualComparisonError',
    'ImageDecodeError',
    'ModelLoadError',
]
