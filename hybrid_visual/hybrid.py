"""Hybrid comparator: pixel decision with perceptual fallback in the gray zone.

Per call:
    START → PIXEL_COMPARE → PASS_ZONE | FAIL_ZONE | GRAY_ZONE
    GRAY_ZONE → AI_COMPARE (when the perceptual engine is available) → DONE

Zone bounds on the pixel diff d, for an effective tolerance tol:
    low  = min(low_pass, tol)
    high = max(high_fail, tol)
    d <= low         → PIXEL_PASS (match)
    d >  high        → PIXEL_FAIL (no match)
    otherwise        → AI_FALLBACK (perceptual verdict) or PIXEL_ONLY (d <= tol)

With relax_scaled enabled and a resampled actual image, tol and high are
raised to scaled_tolerance / scaled_high_fail first (resampling blurs edges
and inflates the pixel diff).
"""

import enum
import logging
from typing import Optional

from .perceptual import PerceptualEngine
from .pixel_engine import ImageEngine
from .pixel_engine.engine import IgnoreRegions
from .raster import ImageSource, as_raster
from .results import HybridResult, Strategy
from .utils import profiler
from .utils.logging_config import log_context
from .utils.validators import HybridConfig

logger = logging.getLogger(__name__)


class Zone(enum.Enum):
    PASS = "pass"
    FAIL = "fail"
    GRAY = "gray"


def classify_zone(diff: float, low: float, high: float) -> Zone:
    """Zone of a pixel diff fraction for bounds low <= high."""
    if low > high:
        raise ValueError(f"low ({low}) must not exceed high ({high})")
    if diff <= low:
        return Zone.PASS
    if diff > high:
        return Zone.FAIL
    return Zone.GRAY


class HybridComparator:
    """Pixel-first visual comparator with an AI tie-breaker.

    Parameters
    ----------
    config : HybridConfig, optional
        Zone bounds, fallback policy and nested engine settings
    image_engine : ImageEngine, optional
        Defaults to ImageEngine(config.pixel)
    perceptual_engine : PerceptualEngine, optional
        Defaults to PerceptualEngine(config.perceptual) when enable_ai is set

    Examples
    --------
    >>> with HybridComparator() as comparator:
    ...     result = comparator.compare(baseline_png, screenshot_png, checkpoint="login")
    >>> result.summary()
    'Hybrid Match: True, Strategy: PIXEL_PASS, Diff: 0.0000%, Tolerance: 5.0000%, Time: 9ms'
    """

    def __init__(
        self,
        config: Optional[HybridConfig] = None,
        image_engine: Optional[ImageEngine] = None,
        perceptual_engine: Optional[PerceptualEngine] = None,
    ):
        self.config = config or HybridConfig()
        self.image_engine = image_engine or ImageEngine(self.config.pixel)
        if perceptual_engine is None and self.config.enable_ai:
            perceptual_engine = PerceptualEngine(self.config.perceptual)
        self.perceptual_engine = perceptual_engine

    def is_ai_available(self) -> bool:
        """Whether gray-zone decisions can use the perceptual engine (loads it on first call)."""
        return self.perceptual_engine is not None and self.perceptual_engine.is_available()

    def compare(
        self,
        baseline: ImageSource,
        actual: ImageSource,
        tolerance: Optional[float] = None,
        ignore_regions: IgnoreRegions = None,
        checkpoint: Optional[str] = None,
    ) -> HybridResult:
        """Compare two screenshots.

        Parameters
        ----------
        baseline, actual : ImageSource
            Decoded pixels or encoded bytes
        tolerance : float, optional
            Overrides config.tolerance for this call, in [0, 1]
        ignore_regions : iterable, optional
            (x, y, width, height) rectangles in baseline coordinates
        checkpoint : str, optional
            Name attached to every log record of this call

        Returns
        -------
        HybridResult

        Raises
        ------
        ValueError
            tolerance outside [0, 1] or malformed ignore region
        ImageDecodeError
            Input bytes cannot be decoded
        """
        tol = self.config.tolerance if tolerance is None else tolerance
        if not 0.0 <= tol <= 1.0:
            raise ValueError(f"tolerance must be in [0, 1], got {tol}")

        with log_context(checkpoint=checkpoint), profiler.timer("hybrid.compare") as sw:
            base_img = as_raster(baseline)
            act_img = as_raster(actual)

            pixel = self.image_engine.compare(base_img, act_img, tol, ignore_regions)

            high = self.config.high_fail
            relaxed = False
            if self.config.relax_scaled and pixel.was_scaled:
                tol = max(tol, self.config.scaled_tolerance)
                high = max(high, self.config.scaled_high_fail)
                relaxed = True
                logger.info(
                    "Scaled comparison (%.2fx): tolerance relaxed to %.2f%%, fail bound %.2f%%",
                    pixel.scale_factor, tol * 100, high * 100
                )

            low = min(self.config.low_pass, tol)
            high = max(high, tol)
            zone = classify_zone(pixel.diff_percentage, low, high)

            perceptual = None
            if zone is Zone.PASS:
                strategy, match = Strategy.PIXEL_PASS, True
            elif zone is Zone.FAIL:
                strategy, match = Strategy.PIXEL_FAIL, False
            elif self.is_ai_available():
                logger.info(
                    "Gray zone (%.4f%% in (%.4f%%, %.4f%%]): consulting perceptual engine",
                    pixel.diff_percentage * 100, low * 100, high * 100
                )
                perceptual = self.perceptual_engine.compare(base_img, act_img, self.config.ai_similarity)
                strategy, match = Strategy.AI_FALLBACK, perceptual.matched
            else:
                strategy, match = Strategy.PIXEL_ONLY, pixel.diff_percentage <= tol

        result = HybridResult(
            match=match,
            strategy=strategy,
            pixel=pixel,
            perceptual=perceptual,
            tolerance=tol,
            low_pass=low,
            high_fail=high,
            ai_threshold=self.config.ai_similarity,
            elapsed_ms=sw.elapsed_ms,
            scaled_relaxation=relaxed,
        )
        with log_context(checkpoint=checkpoint):
            logger.log(logging.INFO if result.match else logging.WARNING, "%s", result.summary())
        return result

    def close(self) -> None:
        """Release the perceptual model. The pixel backend is process-wide (see dispose_backend)."""
        if self.perceptual_engine is not None:
            self.perceptual_engine.close()

    def __enter__(self) -> "HybridComparator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
