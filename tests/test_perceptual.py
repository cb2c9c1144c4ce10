"""Tests for the perceptual comparator.

Tests for hybrid_visual.perceptual:
    - cosine_similarity(): bounds, zero-norm guard, length mismatch
    - Loader tiers: order, first success wins, unconfigured tiers raise ModelLoadError
    - Exhausted tiers: permanently unavailable, structured error results, no retry
    - Corrupt weight files and unexpected loader exceptions fall through to the next tier
    - Concurrent first use loads exactly once
    - ResNet-18 state dict loading from a local file (random weights, no download)
    - close() releases the model

Tiny stand-in networks keep most tests fast; the model zoo download is
marked slow.

Run:
    pytest tests/test_perceptual.py -v
    pytest tests/test_perceptual.py -m slow   # includes torchvision weights download
"""

import logging
import threading
import time

import numpy as np
import pytest
import torch
import torch.nn as nn
from torchvision.models import resnet18

from hybrid_visual.errors import ModelLoadError
from hybrid_visual.perceptual import (
    ModelLoader,
    PerceptualEngine,
    build_default_loaders,
    build_feature_extractor,
    cosine_similarity,
    embedded_loader,
    local_path_loader,
    resnet18_from_state_dict,
    url_loader,
)
from hybrid_visual.raster import RasterImage
from hybrid_visual.utils.validators import PerceptualConfig


class ConstantEmbedding(nn.Module):
    """Same vector for every input."""

    def __init__(self, value: float = 1.0, dim: int = 8):
        super().__init__()
        self.value = value
        self.dim = dim

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return torch.full((x.shape[0], self.dim), self.value)


class FailingEmbedding(nn.Module):
    def forward(self, x: torch.Tensor) -> torch.Tensor:
        raise RuntimeError("kernel exploded")


def pooled_network() -> nn.Module:
    return nn.Sequential(nn.AdaptiveAvgPool2d(4), nn.Flatten())


def unavailable(name: str) -> ModelLoader:
    def load():
        raise ModelLoadError(f"{name} not configured")
    return ModelLoader(name, load)


def solid(color, size=(64, 48)):
    w, h = size
    arr = np.zeros((h, w, 3), dtype=np.uint8)
    arr[...] = color
    return RasterImage.from_array(arr)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def config():
    return PerceptualConfig(use_embedded=False, use_model_zoo=False)


@pytest.fixture
def pooled_engine(config):
    engine = PerceptualEngine(config, loaders=[ModelLoader("pooled", pooled_network)])
    yield engine
    engine.close()


# ============================================================================
# COSINE SIMILARITY
# ============================================================================

def test_cosine_identical():
    v = np.array([1.0, 2.0, 3.0])
    assert cosine_similarity(v, v) == pytest.approx(1.0)


def test_cosine_opposite_and_orthogonal():
    assert cosine_similarity(np.array([1.0, 0.0]), np.array([-2.0, 0.0])) == pytest.approx(-1.0)
    assert cosine_similarity(np.array([1.0, 0.0]), np.array([0.0, 5.0])) == pytest.approx(0.0)


def test_cosine_zero_norm_is_zero():
    assert cosine_similarity(np.zeros(4), np.ones(4)) == 0.0
    assert cosine_similarity(np.zeros(4), np.zeros(4)) == 0.0


def test_cosine_is_clipped():
    v = np.full(512, 1e-3, dtype=np.float32)
    s = cosine_similarity(v, v * 3)
    assert -1.0 <= s <= 1.0


def test_cosine_length_mismatch():
    with pytest.raises(ValueError, match="lengths differ"):
        cosine_similarity(np.ones(3), np.ones(4))


def test_cosine_non_finite():
    with pytest.raises(ValueError, match="NaN"):
        cosine_similarity(np.array([np.nan, 1.0]), np.ones(2))


# ============================================================================
# LOADER TIERS
# ============================================================================

def test_tiers_tried_in_order_first_success_wins(config):
    calls = []

    def tier(name, result=None):
        def load():
            calls.append(name)
            if result is None:
                raise ModelLoadError(f"{name} missing")
            return result
        return ModelLoader(name, load)

    engine = PerceptualEngine(config, loaders=[
        tier("embedded"),
        tier("local", pooled_network()),
        tier("url", pooled_network()),
    ])
    assert engine.is_available()
    assert calls == ["embedded", "local"]
    assert engine.loader_name == "local"
    assert engine.init_error is None


def test_exhausted_tiers_are_permanent(config):
    calls = []

    def load():
        calls.append(1)
        raise ModelLoadError("offline")

    engine = PerceptualEngine(config, loaders=[ModelLoader("url", load), unavailable("zoo")])
    assert not engine.initialize()
    assert not engine.is_available()
    assert len(calls) == 1
    assert "url: offline" in engine.init_error
    assert "zoo: zoo not configured" in engine.init_error

    result = engine.compare(solid((0, 0, 0)), solid((0, 0, 0)))
    assert not result.matched
    assert result.similarity == 0.0
    assert result.has_error
    assert "No perceptual model available" in result.error
    assert len(calls) == 1


def test_no_loaders(config):
    engine = PerceptualEngine(config, loaders=[])
    assert not engine.is_available()
    assert "No perceptual model loaders" in engine.init_error


def test_concurrent_initialize_loads_once(config):
    calls = []
    barrier = threading.Barrier(6)

    def slow_load():
        calls.append(1)
        time.sleep(0.05)
        return pooled_network()

    engine = PerceptualEngine(config, loaders=[ModelLoader("slow", slow_load)])
    outcomes = []

    def worker():
        barrier.wait()
        outcomes.append(engine.initialize())

    threads = [threading.Thread(target=worker) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes == [True] * 6
    assert len(calls) == 1


def test_lazy_until_first_use(config):
    calls = []
    engine = PerceptualEngine(config, loaders=[ModelLoader("x", lambda: calls.append(1) or pooled_network())])
    assert calls == []
    assert engine.init_error is None
    assert engine.loader_name is None
    engine.initialize()
    assert calls == [1]


def test_default_loader_order():
    cfg = PerceptualConfig()
    assert [loader.name for loader in build_default_loaders(cfg)] == ["embedded", "local", "url", "zoo"]
    cfg = PerceptualConfig(use_embedded=False, use_model_zoo=False)
    assert [loader.name for loader in build_default_loaders(cfg)] == ["local", "url"]


def test_unconfigured_tiers_raise(config):
    with pytest.raises(ModelLoadError, match="model_path not configured"):
        local_path_loader(config).load()
    with pytest.raises(ModelLoadError, match="model_url not configured"):
        url_loader(config).load()


def test_embedded_tier_without_packaged_weights():
    with pytest.raises(ModelLoadError, match="No embedded weights"):
        embedded_loader().load()


def test_local_tier_missing_file(tmp_path):
    cfg = PerceptualConfig(model_path=str(tmp_path / "nope.pt"))
    with pytest.raises(ModelLoadError, match="not found"):
        local_path_loader(cfg).load()


def test_local_tier_rejects_non_state_dict(tmp_path):
    path = tmp_path / "weights.pt"
    torch.save([1, 2, 3], path)
    with pytest.raises(ModelLoadError, match="does not contain a state dict"):
        local_path_loader(PerceptualConfig(model_path=str(path))).load()


@pytest.mark.parametrize("payload", [
    b"this is not a torch checkpoint",
    b"",
    b"PK\x03\x04truncated",
])
def test_local_tier_corrupt_file(tmp_path, payload):
    path = tmp_path / "weights.pt"
    path.write_bytes(payload)
    with pytest.raises(ModelLoadError, match="Cannot read weights"):
        local_path_loader(PerceptualConfig(model_path=str(path))).load()


def test_corrupt_model_path_disables_engine(tmp_path):
    path = tmp_path / "weights.pt"
    path.write_bytes(b"this is not a torch checkpoint")
    cfg = PerceptualConfig(model_path=str(path), use_embedded=False, use_model_zoo=False)

    engine = PerceptualEngine(cfg)
    assert engine.is_available() is False
    assert engine.init_error is not None
    assert "local: Cannot read weights" in engine.init_error
    assert engine.is_available() is False

    result = engine.compare(solid((0, 0, 0)), solid((0, 0, 0)))
    assert result.has_error
    assert not result.matched


@pytest.mark.parametrize("exc", [
    RuntimeError("CUDA error: device-side assert"),
    IndexError("pop from empty list"),
    KeyError("conv1.weight"),
])
def test_unexpected_loader_error_falls_through(config, exc):
    def broken():
        raise exc

    engine = PerceptualEngine(config, loaders=[
        ModelLoader("broken", broken),
        ModelLoader("pooled", pooled_network),
    ])
    assert engine.is_available()
    assert engine.loader_name == "pooled"
    assert engine.init_error is None


def test_unexpected_loader_errors_exhaust_permanently(config):
    calls = []

    def broken():
        calls.append(1)
        raise IndexError("pop from empty list")

    engine = PerceptualEngine(config, loaders=[ModelLoader("broken", broken), unavailable("zoo")])
    assert not engine.is_available()
    assert not engine.initialize()
    assert engine.compare(solid((0, 0, 0)), solid((9, 9, 9))).has_error
    assert len(calls) == 1
    assert "broken: IndexError: pop from empty list" in engine.init_error
    assert "zoo: zoo not configured" in engine.init_error


# ============================================================================
# RESNET-18
# ============================================================================

def test_state_dict_without_head_is_accepted():
    torch.manual_seed(0)
    state = {k: v for k, v in resnet18(weights=None).state_dict().items() if not k.startswith("fc.")}
    model = resnet18_from_state_dict(state)
    extractor = build_feature_extractor(model)
    assert isinstance(extractor.fc, nn.Identity)
    assert not extractor.training
    assert all(not p.requires_grad for p in extractor.parameters())


def test_state_dict_with_foreign_keys_rejected():
    with pytest.raises(ModelLoadError, match="does not fit ResNet-18"):
        resnet18_from_state_dict({"encoder.weight": torch.zeros(3)})


def test_local_state_dict_end_to_end(tmp_path):
    torch.manual_seed(0)
    path = tmp_path / "resnet18.pt"
    torch.save(resnet18(weights=None).state_dict(), path)
    cfg = PerceptualConfig(model_path=str(path), use_embedded=False, use_model_zoo=False)

    engine = PerceptualEngine(cfg)
    try:
        assert engine.is_available()
        assert engine.loader_name == "local"
        rng = np.random.default_rng(1)
        img = RasterImage.from_array(rng.integers(0, 256, (100, 140, 3), dtype=np.uint8))
        result = engine.compare(img, img)
        assert result.error is None
        assert result.embedding_size == 512
        assert result.similarity == pytest.approx(1.0, abs=1e-5)
        assert result.matched
    finally:
        engine.close()


def test_local_torchscript(tmp_path):
    path = tmp_path / "pooled.pt"
    torch.jit.script(pooled_network()).save(str(path))
    cfg = PerceptualConfig(model_path=str(path), model_format="torchscript")
    engine = PerceptualEngine(cfg, loaders=[local_path_loader(cfg)])
    assert engine.is_available()
    result = engine.compare(solid((10, 200, 30)), solid((10, 200, 30)))
    assert result.embedding_size == 3 * 4 * 4


@pytest.mark.slow
def test_model_zoo_tier():
    cfg = PerceptualConfig(use_embedded=False)
    engine = PerceptualEngine(cfg)
    try:
        assert engine.is_available()
        assert engine.loader_name == "zoo"
        result = engine.compare(solid((0, 0, 255)), solid((0, 0, 255), size=(80, 60)))
        assert result.similarity > 0.99
    finally:
        engine.close()


# ============================================================================
# COMPARE
# ============================================================================

def test_compare_identical(pooled_engine):
    result = pooled_engine.compare(solid((30, 60, 90)), solid((30, 60, 90)))
    assert result.similarity == pytest.approx(1.0)
    assert result.matched
    assert result.threshold == 0.92
    assert result.embedding_size == 48


def test_compare_threshold_override(pooled_engine):
    result = pooled_engine.compare(solid((30, 60, 90)), solid((30, 60, 90)), threshold=1.0)
    assert result.threshold == 1.0
    with pytest.raises(ValueError, match="threshold"):
        pooled_engine.compare(solid((0, 0, 0)), solid((0, 0, 0)), threshold=1.5)


def test_zero_embedding_is_not_an_error(config):
    engine = PerceptualEngine(config, loaders=[ModelLoader("zeros", lambda: ConstantEmbedding(0.0))])
    result = engine.compare(solid((0, 0, 0)), solid((255, 255, 255)))
    assert result.error is None
    assert result.similarity == 0.0
    assert not result.matched


def test_inference_error_becomes_result(config):
    engine = PerceptualEngine(config, loaders=[ModelLoader("bad", FailingEmbedding)])
    assert engine.is_available()
    result = engine.compare(solid((0, 0, 0)), solid((0, 0, 0)))
    assert not result.matched
    assert "kernel exploded" in result.error
    assert result.summary().startswith("AI Match: ERROR")


def test_embed_batch_shape(pooled_engine):
    features = pooled_engine.embed([solid((1, 2, 3)), solid((4, 5, 6)), solid((7, 8, 9))])
    assert features.shape == (3, 48)
    assert features.dtype == np.float32


def test_close_releases_model(config):
    engine = PerceptualEngine(config, loaders=[ModelLoader("const", ConstantEmbedding)])
    assert engine.is_available()
    engine.close()
    engine.close()
    assert not engine.is_available()
    assert engine.init_error == "Perceptual engine is closed"
    assert engine.compare(solid((0, 0, 0)), solid((0, 0, 0))).has_error


def test_compare_logs_summary_lazily(pooled_engine, caplog):
    with caplog.at_level(logging.INFO, logger="hybrid_visual.perceptual.engine"):
        result = pooled_engine.compare(solid((30, 60, 90)), solid((30, 60, 90)))
    records = [r for r in caplog.records if r.name == "hybrid_visual.perceptual.engine" and r.msg == "%s"]
    assert len(records) == 1
    assert records[0].args == (result.summary(),)
    assert records[0].getMessage().startswith("AI Match: True")
