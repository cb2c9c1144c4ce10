"""Tests for the hybrid comparator.

Tests for hybrid_visual.hybrid:
    - classify_zone() boundaries
    - Strategy per zone with and without a perceptual engine
    - Per-call tolerance widens the effective bounds
    - Scaled relaxation
    - summary() and Base64 artifact
    - Lifecycle: context manager closes the perceptual engine

Perceptual engines use stand-in networks (constant or zero embeddings) so
the gray-zone verdict is deterministic.

Run:
    pytest tests/test_hybrid.py -v
"""

import base64

import numpy as np
import pytest
import torch
import torch.nn as nn

from hybrid_visual import (
    HybridComparator,
    HybridConfig,
    ImageEngine,
    PerceptualEngine,
    RasterImage,
    Strategy,
    Zone,
    classify_zone,
)
from hybrid_visual.perceptual import ModelLoader
from hybrid_visual.pixel_engine import ReferenceBackend
from hybrid_visual.utils.validators import PerceptualConfig, PixelEngineConfig


class ConstantEmbedding(nn.Module):
    def __init__(self, value: float):
        super().__init__()
        self.value = value

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return torch.full((x.shape[0], 16), self.value)


def solid(width, height, color):
    arr = np.zeros((height, width, 3), dtype=np.uint8)
    arr[...] = color
    return RasterImage.from_array(arr)


def with_diff_fraction(fraction, size=100):
    """Black baseline and an actual whose top rows are white, `fraction` of all pixels."""
    base = solid(size, size, (0, 0, 0))
    arr = base.writable_copy()
    n = int(round(fraction * size * size))
    arr.reshape(-1, 3)[:n] = 255
    return base, RasterImage.from_array(arr)


def perceptual_engine(value):
    cfg = PerceptualConfig(use_embedded=False, use_model_zoo=False)
    return PerceptualEngine(cfg, loaders=[ModelLoader("stub", lambda: ConstantEmbedding(value))])


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def image_engine():
    return ImageEngine(PixelEngineConfig(backend="reference"), backend=ReferenceBackend())


@pytest.fixture
def pixel_only(image_engine):
    with HybridComparator(HybridConfig(enable_ai=False), image_engine=image_engine) as comparator:
        yield comparator


@pytest.fixture
def with_ai(image_engine):
    with HybridComparator(image_engine=image_engine, perceptual_engine=perceptual_engine(1.0)) as comparator:
        yield comparator


# ============================================================================
# ZONES
# ============================================================================

@pytest.mark.parametrize("diff,zone", [
    (0.0, Zone.PASS),
    (0.001, Zone.PASS),
    (0.01, Zone.PASS),
    (0.03, Zone.GRAY),
    (0.10, Zone.GRAY),
    (0.20, Zone.GRAY),
    (0.25, Zone.FAIL),
    (1.0, Zone.FAIL),
])
def test_classify_zone(diff, zone):
    assert classify_zone(diff, 0.01, 0.20) is zone


def test_classify_zone_rejects_inverted_bounds():
    with pytest.raises(ValueError):
        classify_zone(0.1, 0.3, 0.2)


@pytest.mark.parametrize("fraction,strategy,match", [
    (0.001, Strategy.PIXEL_PASS, True),
    (0.25, Strategy.PIXEL_FAIL, False),
    (0.03, Strategy.PIXEL_ONLY, True),
    (0.10, Strategy.PIXEL_ONLY, False),
])
def test_strategy_without_ai(pixel_only, fraction, strategy, match):
    base, actual = with_diff_fraction(fraction)
    result = pixel_only.compare(base, actual)
    assert result.strategy is strategy
    assert result.match is match
    assert result.perceptual is None
    assert not result.used_ai


@pytest.mark.parametrize("fraction,strategy", [
    (0.001, Strategy.PIXEL_PASS),
    (0.25, Strategy.PIXEL_FAIL),
    (0.03, Strategy.AI_FALLBACK),
    (0.10, Strategy.AI_FALLBACK),
])
def test_strategy_with_ai(with_ai, fraction, strategy):
    base, actual = with_diff_fraction(fraction)
    result = with_ai.compare(base, actual)
    assert result.strategy is strategy
    assert result.used_ai is (strategy is Strategy.AI_FALLBACK)


# ============================================================================
# SCENARIOS
# ============================================================================

def test_identical_blue(pixel_only):
    result = pixel_only.compare(solid(200, 200, (0, 0, 255)), solid(200, 200, (0, 0, 255)))
    assert result.match
    assert result.diff_percentage == 0.0
    assert result.strategy is Strategy.PIXEL_PASS


@pytest.mark.parametrize("enable_ai", [False, True])
def test_black_vs_white(image_engine, enable_ai):
    engine = perceptual_engine(1.0) if enable_ai else None
    config = HybridConfig(enable_ai=enable_ai)
    with HybridComparator(config, image_engine=image_engine, perceptual_engine=engine) as comparator:
        result = comparator.compare(solid(100, 100, (0, 0, 0)), solid(100, 100, (255, 255, 255)), tolerance=0.01)
    assert not result.match
    assert result.diff_percentage == pytest.approx(1.0)
    assert result.strategy in (Strategy.PIXEL_FAIL, Strategy.PIXEL_ONLY)


def test_scaled_same_color(pixel_only):
    result = pixel_only.compare(solid(200, 200, (0, 120, 0)), solid(150, 150, (0, 120, 0)), tolerance=0.10)
    assert result.was_scaled
    assert result.scale_factor == pytest.approx(1.33, abs=0.01)
    assert result.match


def test_gray_zone_without_ai_uses_tolerance(pixel_only):
    base, actual = with_diff_fraction(0.10)
    result = pixel_only.compare(base, actual, tolerance=0.01)
    assert result.strategy is Strategy.PIXEL_ONLY
    assert not result.match


def test_unavailable_engine_means_pixel_only(image_engine):
    cfg = PerceptualConfig(use_embedded=False, use_model_zoo=False)
    engine = PerceptualEngine(cfg, loaders=[])
    comparator = HybridComparator(image_engine=image_engine, perceptual_engine=engine)
    base, actual = with_diff_fraction(0.10)
    assert not comparator.is_ai_available()
    result = comparator.compare(base, actual, tolerance=0.01)
    assert result.strategy is Strategy.PIXEL_ONLY
    assert not result.match


def test_corrupt_model_file_means_pixel_only(image_engine, tmp_path):
    weights = tmp_path / "resnet18.pt"
    weights.write_bytes(b"this is not a torch checkpoint")
    config = HybridConfig(perceptual=PerceptualConfig(
        model_path=str(weights), use_embedded=False, use_model_zoo=False,
    ))
    base, actual = with_diff_fraction(0.10)
    with HybridComparator(config, image_engine=image_engine) as comparator:
        assert not comparator.is_ai_available()
        first = comparator.compare(base, actual, tolerance=0.01)
        second = comparator.compare(base, actual, tolerance=0.01)

    for result in (first, second):
        assert result.strategy is Strategy.PIXEL_ONLY
        assert not result.match
        assert result.perceptual is None


def test_unexpected_loader_error_means_pixel_only(image_engine):
    calls = []

    def broken():
        calls.append(1)
        raise IndexError("pop from empty list")

    engine = PerceptualEngine(
        PerceptualConfig(use_embedded=False, use_model_zoo=False),
        loaders=[ModelLoader("broken", broken)],
    )
    comparator = HybridComparator(image_engine=image_engine, perceptual_engine=engine)
    result = comparator.compare(*with_diff_fraction(0.10), tolerance=0.01)
    comparator.compare(*with_diff_fraction(0.10), tolerance=0.01)
    assert result.strategy is Strategy.PIXEL_ONLY
    assert len(calls) == 1


def test_ai_verdict_decides_gray_zone(image_engine):
    base, actual = with_diff_fraction(0.10)
    with HybridComparator(image_engine=image_engine, perceptual_engine=perceptual_engine(1.0)) as similar:
        accepted = similar.compare(base, actual, tolerance=0.01)
    with HybridComparator(image_engine=image_engine, perceptual_engine=perceptual_engine(0.0)) as degenerate:
        rejected = degenerate.compare(base, actual, tolerance=0.01)

    assert accepted.strategy is Strategy.AI_FALLBACK
    assert accepted.match
    assert accepted.perceptual.similarity == pytest.approx(1.0)
    assert accepted.perceptual.threshold == 0.92

    assert rejected.strategy is Strategy.AI_FALLBACK
    assert not rejected.match
    assert rejected.perceptual.similarity == 0.0


def test_ai_not_consulted_outside_gray_zone(image_engine):
    calls = []

    def load():
        calls.append(1)
        return ConstantEmbedding(1.0)

    engine = PerceptualEngine(
        PerceptualConfig(use_embedded=False, use_model_zoo=False),
        loaders=[ModelLoader("counted", load)],
    )
    comparator = HybridComparator(image_engine=image_engine, perceptual_engine=engine)
    comparator.compare(*with_diff_fraction(0.0))
    comparator.compare(*with_diff_fraction(0.5))
    assert calls == []


# ============================================================================
# TOLERANCE HANDLING
# ============================================================================

def test_per_call_tolerance_above_high_fail(pixel_only):
    base, actual = with_diff_fraction(0.25)
    result = pixel_only.compare(base, actual, tolerance=0.5)
    assert result.high_fail == 0.5
    assert result.strategy is Strategy.PIXEL_ONLY
    assert result.match


def test_per_call_tolerance_below_low_pass(pixel_only):
    base, actual = with_diff_fraction(0.008)
    result = pixel_only.compare(base, actual, tolerance=0.005)
    assert result.low_pass == 0.005
    assert result.strategy is Strategy.PIXEL_ONLY
    assert not result.match


@pytest.mark.parametrize("tolerance", [-0.01, 1.5])
def test_invalid_tolerance(pixel_only, tolerance):
    with pytest.raises(ValueError, match="tolerance"):
        pixel_only.compare(solid(4, 4, (0, 0, 0)), solid(4, 4, (0, 0, 0)), tolerance=tolerance)


def test_scaled_relaxation(image_engine):
    config = HybridConfig(relax_scaled=True, enable_ai=False)
    with HybridComparator(config, image_engine=image_engine) as comparator:
        result = comparator.compare(solid(200, 200, (9, 9, 9)), solid(150, 150, (9, 9, 9)), tolerance=0.01)
        unscaled = comparator.compare(solid(200, 200, (9, 9, 9)), solid(200, 200, (9, 9, 9)), tolerance=0.01)

    assert result.scaled_relaxation
    assert result.tolerance == 0.03
    assert result.high_fail == 0.25
    assert "[RELAXED]" in result.summary()

    assert not unscaled.scaled_relaxation
    assert unscaled.tolerance == 0.01
    assert unscaled.high_fail == 0.20


def test_scaled_without_relaxation(pixel_only):
    result = pixel_only.compare(solid(200, 200, (9, 9, 9)), solid(150, 150, (9, 9, 9)), tolerance=0.01)
    assert not result.scaled_relaxation
    assert result.tolerance == 0.01
    assert "Scaled: 1.33x" in result.summary()
    assert "[RELAXED]" not in result.summary()


# ============================================================================
# REPORTING
# ============================================================================

def test_summary_pixel_pass(pixel_only):
    result = pixel_only.compare(solid(50, 50, (1, 2, 3)), solid(50, 50, (1, 2, 3)))
    summary = result.summary()
    assert summary.startswith(
        "Hybrid Match: True, Strategy: PIXEL_PASS, Diff: 0.0000%, Tolerance: 5.0000%, Time: "
    )
    assert summary.endswith("ms")
    assert result.elapsed_ms >= 0.0


def test_summary_with_ai(with_ai):
    result = with_ai.compare(*with_diff_fraction(0.10))
    assert "Strategy: AI_FALLBACK" in result.summary()
    assert "AI Similarity: 1.0000" in result.summary()


def test_diff_artifact_base64(pixel_only):
    result = pixel_only.compare(*with_diff_fraction(0.10))
    encoded = result.diff_artifact_base64()
    assert encoded is not None
    png = base64.b64decode(encoded)
    assert png.startswith(b"\x89PNG")
    decoded = RasterImage.decode(png)
    assert decoded.size == (100, 100)


def test_checkpoint_does_not_leak(pixel_only):
    from hybrid_visual.utils.logging_config import current_context

    pixel_only.compare(solid(10, 10, (0, 0, 0)), solid(10, 10, (0, 0, 0)), checkpoint="login")
    assert "checkpoint" not in current_context()


def test_encoded_inputs(pixel_only):
    base, actual = with_diff_fraction(0.001)
    result = pixel_only.compare(base.to_png_bytes(), actual.to_png_bytes())
    assert result.strategy is Strategy.PIXEL_PASS


# ============================================================================
# LIFECYCLE
# ============================================================================

def test_context_manager_closes_perceptual_engine(image_engine):
    engine = perceptual_engine(1.0)
    with HybridComparator(image_engine=image_engine, perceptual_engine=engine) as comparator:
        assert comparator.is_ai_available()
    assert not engine.is_available()


def test_disabled_ai_has_no_engine(image_engine):
    comparator = HybridComparator(HybridConfig(enable_ai=False), image_engine=image_engine)
    assert comparator.perceptual_engine is None
    assert not comparator.is_ai_available()
    comparator.close()
