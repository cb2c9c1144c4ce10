"""Pixel comparator.

ImageEngine.compare() flow:
    1. Normalize inputs to RasterImage (decode bytes in memory)
    2. Resample actual to baseline dimensions if they differ (bicubic)
    3. Zero ignore rectangles in both images
    4. backend.diff_mask(): luma of |baseline - actual| > pixel delta
    5. diff_percentage = set pixels / baseline pixel count
    6. Regions + annotated artifact drawn on the resampled, unmasked actual

The engine holds no per-call state; one instance serves concurrent callers.
"""

import logging
from typing import Iterable, Optional, Sequence, Tuple, Union

import numpy as np

from ..raster import IgnoreRegion, ImageSource, RasterImage, as_raster, coerce_regions, resample_bicubic
from ..results import ComparisonResult
from ..utils import profiler
from ..utils.validators import PixelEngineConfig
from .annotate import render_diff_artifact
from .backends import PixelBackend, select_backend
from .regions import detect_regions

logger = logging.getLogger(__name__)

IgnoreRegions = Optional[Iterable[Union[IgnoreRegion, Sequence[int]]]]


def apply_ignore_regions(
    baseline: np.ndarray,
    actual: np.ndarray,
    regions: Sequence[IgnoreRegion],
) -> Tuple[np.ndarray, np.ndarray]:
    """Copies of both arrays with every ignore rectangle set to black."""
    h, w = baseline.shape[:2]
    base = np.array(baseline)
    act = np.array(actual)
    for region in regions:
        window = region.clip(w, h)
        if window is None:
            logger.debug("Ignore region %s lies outside %dx%d image", region, w, h)
            continue
        base[window] = 0
        act[window] = 0
    return base, act


class ImageEngine:
    """Deterministic pixel-level comparator.

    Parameters
    ----------
    config : PixelEngineConfig, optional
        Delta threshold, region detection and backend preference
    backend : PixelBackend, optional
        Explicit backend; default is the process-wide selection for
        config.backend
    """

    def __init__(self, config: Optional[PixelEngineConfig] = None, backend: Optional[PixelBackend] = None):
        self.config = config or PixelEngineConfig()
        self.backend = backend if backend is not None else select_backend(self.config.backend)

    def compare(
        self,
        baseline: ImageSource,
        actual: ImageSource,
        tolerance: float,
        ignore_regions: IgnoreRegions = None,
        render_artifact: bool = True,
    ) -> ComparisonResult:
        """Compare two images pixel by pixel.

        Parameters
        ----------
        baseline, actual : ImageSource
            Decoded pixels or encoded bytes; baseline defines the resolution
        tolerance : float
            Maximum fraction of differing pixels for a match, in [0, 1]
        ignore_regions : iterable, optional
            (x, y, width, height) rectangles in baseline coordinates
        render_artifact : bool
            Detect regions and draw the annotated diff image

        Returns
        -------
        ComparisonResult

        Raises
        ------
        ValueError
            tolerance outside [0, 1] or malformed ignore region
        ImageDecodeError
            Input bytes cannot be decoded
        """
        if not 0.0 <= tolerance <= 1.0:
            raise ValueError(f"tolerance must be in [0, 1], got {tolerance}")
        regions = coerce_regions(ignore_regions)

        base_img = as_raster(baseline)
        act_img = as_raster(actual)

        was_scaled = base_img.size != act_img.size
        scale_factor = 1.0
        aligned = act_img
        if was_scaled:
            scale_factor = base_img.width / act_img.width
            logger.warning(
                "Image dimensions differ: baseline %dx%d, actual %dx%d. "
                "Resampling actual (scale factor %.2fx)",
                base_img.width, base_img.height, act_img.width, act_img.height, scale_factor
            )
            with profiler.timer("pixel.resample"):
                aligned = resample_bicubic(act_img, base_img.width, base_img.height)

        base_px: np.ndarray = base_img.pixels
        act_px: np.ndarray = aligned.pixels
        if regions:
            base_px, act_px = apply_ignore_regions(base_px, act_px, regions)
            logger.debug("Applied %d ignore region(s)", len(regions))

        with profiler.timer("pixel.diff_mask"):
            mask = self.backend.diff_mask(base_px, act_px, self.config.pixel_delta_threshold)

        total = base_img.pixel_count
        diff_pixels = int(np.count_nonzero(mask))
        diff_percentage = diff_pixels / total
        match = diff_percentage <= tolerance

        artifact: Optional[RasterImage] = None
        diff_regions = ()
        if render_artifact:
            with profiler.timer("pixel.artifact"):
                diff_regions = detect_regions(mask, self.backend, self.config)
                artifact = render_diff_artifact(aligned, diff_regions, self.config)

        result = ComparisonResult(
            match=match,
            diff_percentage=diff_percentage,
            diff_pixel_count=diff_pixels,
            total_pixel_count=total,
            tolerance=tolerance,
            diff_artifact=artifact,
            regions=diff_regions,
            was_scaled=was_scaled,
            scale_factor=scale_factor,
            baseline_size=base_img.size,
            actual_size=act_img.size,
            backend=self.backend.name,
        )
        logger.info("Pixel comparison: %s", result.summary())
        return result
