"""Pixel comparator: differencing, region detection, diff artifacts.

Backends are chosen once per process (OpenCV when usable, numpy reference
otherwise). Regions and annotation are backend-independent.
"""

from .annotate import render_diff_artifact
from .backends import PixelBackend, dispose_backend, probe_opencv, select_backend
from .engine import ImageEngine, apply_ignore_regions
from .reference_backend import ReferenceBackend
from .regions import detect_regions, filter_noise, merge_regions, sort_regions

__all__ = [
    'ImageEngine',
    'PixelBackend',
    'ReferenceBackend',
    'select_backend',
    'dispose_backend',
    'probe_opencv',
    'apply_ignore_regions',
    'detect_regions',
    'filter_noise',
    'merge_regions',
    'sort_regions',
    'render_diff_artifact',
]
