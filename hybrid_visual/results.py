"""Immutable result types returned by the comparator.

All results are frozen dataclasses created once per call and never mutated:
    - DiffRegion: one merged cluster of differing pixels
    - ComparisonResult: pixel engine outcome (+ annotated diff artifact)
    - PerceptualResult: embedding similarity outcome
    - HybridResult: final decision with the strategy that produced it

summary() methods produce the one-line strings used in logs and in the
human-readable part of test reports.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional, Tuple

from .raster import RasterImage


class Strategy(str, enum.Enum):
    """Which signal decided a hybrid comparison."""

    PIXEL_PASS = "PIXEL_PASS"
    """Pixel diff at or below the low-pass bound."""
    PIXEL_FAIL = "PIXEL_FAIL"
    """Pixel diff above the high-fail bound."""
    PIXEL_ONLY = "PIXEL_ONLY"
    """Gray zone, perceptual engine unavailable: pixel tolerance decided."""
    AI_FALLBACK = "AI_FALLBACK"
    """Gray zone, perceptual similarity decided."""

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class DiffRegion:
    """Bounding box (inclusive) of a merged difference cluster."""

    min_x: int
    min_y: int
    max_x: int
    max_y: int
    pixel_count: int

    @property
    def width(self) -> int:
        return self.max_x - self.min_x + 1

    @property
    def height(self) -> int:
        return self.max_y - self.min_y + 1

    @property
    def center(self) -> Tuple[int, int]:
        return (self.min_x + self.max_x) // 2, (self.min_y + self.max_y) // 2

    def padded_overlaps(self, other: DiffRegion, padding: int) -> bool:
        """True when `other` intersects this box grown by `padding` on every side."""
        return not (
            other.max_x < self.min_x - padding
            or other.min_x > self.max_x + padding
            or other.max_y < self.min_y - padding
            or other.min_y > self.max_y + padding
        )

    def union(self, other: DiffRegion) -> DiffRegion:
        return DiffRegion(
            min(self.min_x, other.min_x),
            min(self.min_y, other.min_y),
            max(self.max_x, other.max_x),
            max(self.max_y, other.max_y),
            self.pixel_count + other.pixel_count,
        )


@dataclass(frozen=True)
class ComparisonResult:
    """Outcome of ImageEngine.compare().

    Attributes
    ----------
    match : bool
        diff_percentage <= tolerance
    diff_percentage : float
        Differing pixels / total pixels, in [0, 1]
    diff_pixel_count, total_pixel_count : int
        Counts in baseline resolution
    tolerance : float
        Tolerance the match was judged against
    diff_artifact : RasterImage, optional
        Actual image (resampled if needed) annotated with numbered regions
    regions : tuple[DiffRegion, ...]
        Merged regions, position-sorted, numbered #1.. in this order
    was_scaled : bool
        Actual was resampled to baseline dimensions
    scale_factor : float
        baseline_width / actual_width (1.0 when not scaled)
    """

    match: bool
    diff_percentage: float
    diff_pixel_count: int
    total_pixel_count: int
    tolerance: float
    diff_artifact: Optional[RasterImage] = None
    regions: Tuple[DiffRegion, ...] = ()
    was_scaled: bool = False
    scale_factor: float = 1.0
    baseline_size: Tuple[int, int] = (0, 0)
    actual_size: Tuple[int, int] = (0, 0)
    backend: str = ""

    def summary(self) -> str:
        scaling = f", Scaled: {self.scale_factor:.2f}x" if self.was_scaled else ""
        return (
            f"Match: {self.match}, Diff: {self.diff_percentage * 100:.4f}%, "
            f"Pixels: {self.diff_pixel_count}/{self.total_pixel_count}, "
            f"Tolerance: {self.tolerance * 100:.4f}%{scaling}"
        )


@dataclass(frozen=True)
class PerceptualResult:
    """Outcome of PerceptualEngine.compare().

    When the engine is unavailable or inference fails, matched is False,
    similarity is 0.0 and error explains why.
    """

    similarity: float
    matched: bool
    threshold: float
    embedding_size: int = 0
    error: Optional[str] = None

    @property
    def has_error(self) -> bool:
        return bool(self.error)

    @classmethod
    def failure(cls, threshold: float, error: str) -> PerceptualResult:
        return cls(similarity=0.0, matched=False, threshold=threshold, error=error)

    def summary(self) -> str:
        if self.has_error:
            return f"AI Match: ERROR - {self.error}"
        return (
            f"AI Match: {self.matched}, Similarity: {self.similarity:.4f}, "
            f"Threshold: {self.threshold:.4f}, Features: {self.embedding_size}"
        )


@dataclass(frozen=True)
class HybridResult:
    """Final decision of HybridComparator.compare()."""

    match: bool
    strategy: Strategy
    pixel: ComparisonResult
    perceptual: Optional[PerceptualResult]
    tolerance: float
    low_pass: float
    high_fail: float
    ai_threshold: float
    elapsed_ms: float
    scaled_relaxation: bool = False

    @property
    def used_ai(self) -> bool:
        return self.strategy is Strategy.AI_FALLBACK and self.perceptual is not None

    @property
    def diff_percentage(self) -> float:
        return self.pixel.diff_percentage

    @property
    def diff_artifact(self) -> Optional[RasterImage]:
        return self.pixel.diff_artifact

    @property
    def was_scaled(self) -> bool:
        return self.pixel.was_scaled

    @property
    def scale_factor(self) -> float:
        return self.pixel.scale_factor

    def diff_artifact_base64(self) -> Optional[str]:
        """Base64 PNG of the diff artifact, for embedding in test reports."""
        if self.pixel.diff_artifact is None:
            return None
        return self.pixel.diff_artifact.to_base64_png()

    def summary(self) -> str:
        parts = [
            f"Hybrid Match: {self.match}",
            f"Strategy: {self.strategy.value}",
            f"Diff: {self.diff_percentage * 100:.4f}%",
            f"Tolerance: {self.tolerance * 100:.4f}%",
        ]
        if self.was_scaled:
            scaled = f"Scaled: {self.scale_factor:.2f}x"
            if self.scaled_relaxation:
                scaled += " [RELAXED]"
            parts.append(scaled)
        if self.used_ai:
            parts.append(f"AI Similarity: {self.perceptual.similarity:.4f}")
        parts.append(f"Time: {self.elapsed_ms:.0f}ms")
        return ", ".join(parts)
