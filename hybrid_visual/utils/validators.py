"""Comparator settings schemas and validation.

Provides pydantic models for every tunable used by the comparator:
    - PixelEngineConfig: delta threshold, region detection, backend choice
    - PerceptualConfig: model loader tiers, preprocessing constants, threshold
    - HybridConfig: zone boundaries, per-call defaults, scaled relaxation

Settings are supplied by the caller already resolved (this package never reads
files or environment variables). Validation is fail-fast with actionable
messages so a mistyped threshold surfaces at construction, not mid-run.

Units:
    - Diff thresholds: fraction of pixels [0.0, 1.0]
    - Pixel delta: 8-bit luma of the per-channel difference [0, 255]
    - Distances/paddings: pixels in baseline coordinates

Usage:
    from hybrid_visual.utils import validators

    cfg = validators.HybridConfig(low_pass=0.01, tolerance=0.05, high_fail=0.20)
    cfg = validators.build_hybrid_config({"tolerance": 0.02, "perceptual": {"model_path": "/models/r18.pt"}})
"""

from typing import Any, Literal, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator


# Defaults differ between historical revisions (pixel delta 25 vs 50, zone
# splits 0.01/0.05/0.20 vs 0.003/0.05/0.20); these are the documented ones.
DEFAULT_PIXEL_DELTA = 50
DEFAULT_LOW_PASS = 0.01
DEFAULT_TOLERANCE = 0.05
DEFAULT_HIGH_FAIL = 0.20
DEFAULT_AI_SIMILARITY = 0.92

IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)

DEFAULT_MODEL_URL = "https://download.pytorch.org/models/resnet18-f37072fd.pth"


# ============================================================================
# PIXEL ENGINE
# ============================================================================

class PixelEngineConfig(BaseModel):
    """Pixel comparator tunables."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    pixel_delta_threshold: int = Field(
        DEFAULT_PIXEL_DELTA, ge=0, le=255,
        description="Luma of |baseline - actual| above which a pixel counts as different"
    )
    noise_floor_px: int = Field(10, ge=1, description="Components smaller than this are dropped")
    gap_radius_px: int = Field(3, ge=1, le=32, description="Chebyshev distance bridging gaps inside a component")
    merge_distance_px: int = Field(50, ge=0, description="Padding applied to boxes before the merge overlap test")
    ellipse_min_padding_px: int = Field(20, ge=0, description="Minimum padding of the highlight ellipse")
    outline_width_px: int = Field(4, ge=1, le=32, description="Stroke width of the highlight ellipse")
    backend: Literal["auto", "opencv", "reference"] = Field(
        "auto", description="Pixel backend; 'auto' probes OpenCV and falls back to the reference backend"
    )


# ============================================================================
# PERCEPTUAL ENGINE
# ============================================================================

class PerceptualConfig(BaseModel):
    """Perceptual (embedding) comparator settings.

    Loader tiers run in this order: embedded asset, model_path, model_url,
    model zoo. Tiers that are disabled or unconfigured are skipped.
    """
    model_config = ConfigDict(frozen=True, extra="forbid", protected_namespaces=())

    similarity_threshold: float = Field(DEFAULT_AI_SIMILARITY, ge=-1.0, le=1.0)
    use_embedded: bool = Field(True, description="Try the state dict packaged with hybrid_visual")
    model_path: Optional[str] = Field(None, description="Local weights file")
    model_format: Literal["state_dict", "torchscript"] = Field(
        "state_dict", description="Format of the file at model_path"
    )
    model_url: Optional[str] = Field(None, description="Direct download URL for a ResNet-18 state dict")
    model_cache_dir: Optional[str] = Field(None, description="Download cache; None uses the torch hub default")
    check_hash: bool = Field(False, description="Verify the hash prefix embedded in the model_url file name")
    use_model_zoo: bool = Field(True, description="Fall back to torchvision's published ImageNet weights")
    input_size: int = Field(224, ge=32, le=1024)
    mean: Tuple[float, float, float] = IMAGENET_MEAN
    std: Tuple[float, float, float] = IMAGENET_STD
    device: str = Field("cpu", description="Torch device for inference")

    @field_validator('std')
    @classmethod
    def validate_std(cls, v: Tuple[float, float, float]) -> Tuple[float, float, float]:
        if any(s <= 0.0 for s in v):
            raise ValueError(f"std components must be positive, got {v}")
        return v

    @field_validator('model_path', 'model_url')
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


# ============================================================================
# HYBRID ORCHESTRATOR
# ============================================================================

class HybridConfig(BaseModel):
    """Zone boundaries and fallback policy for HybridComparator.

    Zones on the pixel diff percentage d:
        d <= low_pass              → clear pass (pixel decides)
        d >  high_fail             → clear fail (pixel decides)
        low_pass < d <= high_fail  → gray zone (AI decides when available)
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    low_pass: float = Field(DEFAULT_LOW_PASS, ge=0.0, le=1.0)
    tolerance: float = Field(DEFAULT_TOLERANCE, ge=0.0, le=1.0)
    high_fail: float = Field(DEFAULT_HIGH_FAIL, ge=0.0, le=1.0)
    ai_similarity: float = Field(DEFAULT_AI_SIMILARITY, ge=-1.0, le=1.0)
    enable_ai: bool = True
    relax_scaled: bool = Field(
        False, description="Loosen tolerance and widen the gray zone when actual was resampled"
    )
    scaled_tolerance: float = Field(0.03, ge=0.0, le=1.0)
    scaled_high_fail: float = Field(0.25, ge=0.0, le=1.0)
    pixel: PixelEngineConfig = Field(default_factory=PixelEngineConfig)
    perceptual: PerceptualConfig = Field(default_factory=PerceptualConfig)

    @model_validator(mode='after')
    def validate_ordering(self) -> 'HybridConfig':
        if not (self.low_pass <= self.tolerance <= self.high_fail):
            raise ValueError(
                f"Thresholds must satisfy low_pass <= tolerance <= high_fail, got "
                f"{self.low_pass} / {self.tolerance} / {self.high_fail}"
            )
        if self.scaled_tolerance > self.scaled_high_fail:
            raise ValueError(
                f"scaled_tolerance ({self.scaled_tolerance}) must not exceed "
                f"scaled_high_fail ({self.scaled_high_fail})"
            )
        return self


def build_hybrid_config(settings: Optional[Mapping[str, Any]] = None) -> HybridConfig:
    """Build a HybridConfig from an already-resolved mapping.

    Parameters
    ----------
    settings : Mapping, optional
        Flat zone keys plus optional "pixel" and "perceptual" sub-mappings.
        The perceptual similarity threshold follows ai_similarity unless set
        explicitly.

    Returns
    -------
    HybridConfig
        Validated configuration

    Raises
    ------
    ValueError
        On unknown keys, out-of-range values or unordered thresholds
    """
    data = dict(settings or {})
    perceptual = dict(data.get('perceptual') or {})
    if 'ai_similarity' in data and 'similarity_threshold' not in perceptual:
        perceptual['similarity_threshold'] = data['ai_similarity']
    data['perceptual'] = perceptual
    try:
        return HybridConfig(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid comparator settings: {e}") from e
