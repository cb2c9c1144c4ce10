"""Model loader tiers for the perceptual engine.

Each tier is a ModelLoader(name, load). load() returns an nn.Module or
raises ModelLoadError when the tier is unconfigured or fails. The engine
walks the list in order and keeps the first success:

    1. embedded: ResNet-18 state dict at hybrid_visual/perceptual/assets/resnet18_features.pt
    2. local:    model_path (state dict or TorchScript)
    3. url:      model_url downloaded through torch.hub into model_cache_dir
    4. zoo:      torchvision ResNet-18 ImageNet weights

Loaded classifiers become feature extractors in build_feature_extractor():
the fc head is replaced by identity (512-d embedding), eval mode, frozen.

Weights are loaded with weights_only=True; arbitrary pickles are refused.
Corrupt or truncated files raise ModelLoadError like any other tier failure.

No weights ship with the package. Hosts that want the embedded tier drop a
feature-only ResNet-18 state dict at the asset path before building the
wheel (package-data picks up assets/*.pt); without it the tier raises
ModelLoadError and the engine moves on to the next one.
"""

import importlib.resources
import logging
import pickle
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Mapping

import torch
import torch.nn as nn
from torchvision.models import ResNet18_Weights, resnet18

from ..errors import ModelLoadError
from ..utils import hashing
from ..utils.validators import PerceptualConfig

logger = logging.getLogger(__name__)

EMBEDDED_PACKAGE = "hybrid_visual.perceptual"
EMBEDDED_ASSET = "assets/resnet18_features.pt"

# What torch.load and torch.jit.load raise on unreadable, corrupt or truncated files
_READ_ERRORS = (OSError, RuntimeError, ValueError, EOFError, IndexError, pickle.UnpicklingError)


@dataclass(frozen=True)
class ModelLoader:
    """One loader tier.

    Attributes
    ----------
    name : str
        Tier name used in logs and init_error
    load : Callable[[], nn.Module]
        Returns the network or raises ModelLoadError
    """

    name: str
    load: Callable[[], nn.Module]


# ============================================================================
# WEIGHT HANDLING
# ============================================================================

def resnet18_from_state_dict(state_dict: Mapping[str, Any]) -> nn.Module:
    """Build an uninitialized ResNet-18 and load `state_dict` into it.

    Feature-only state dicts (no fc.* keys) are accepted.

    Raises
    ------
    ModelLoadError
        Unexpected keys or missing backbone weights
    """
    if not isinstance(state_dict, Mapping):
        raise ModelLoadError(f"Expected a state dict, got {type(state_dict).__name__}")
    if "state_dict" in state_dict and isinstance(state_dict["state_dict"], Mapping):
        state_dict = state_dict["state_dict"]
    model = resnet18(weights=None)
    try:
        missing, unexpected = model.load_state_dict(dict(state_dict), strict=False)
    except RuntimeError as e:
        raise ModelLoadError(f"State dict does not fit ResNet-18: {e}") from e
    backbone_missing = [k for k in missing if not k.startswith("fc.")]
    if backbone_missing or unexpected:
        raise ModelLoadError(
            f"State dict does not fit ResNet-18: missing={backbone_missing[:5]}, "
            f"unexpected={list(unexpected)[:5]}"
        )
    return model


def _load_state_dict_file(path: Path) -> nn.Module:
    try:
        state_dict = torch.load(path, map_location="cpu", weights_only=True)
    except _READ_ERRORS as e:
        raise ModelLoadError(f"Cannot read weights from {path}: {e}") from e
    if not isinstance(state_dict, Mapping):
        raise ModelLoadError(f"{path} does not contain a state dict (got {type(state_dict).__name__})")
    return resnet18_from_state_dict(state_dict)


def _log_artifact(tier: str, path: Path) -> None:
    try:
        digest = hashing.sha256_file(path)
    except OSError as e:
        raise ModelLoadError(f"Cannot read model artifact {path}: {e}") from e
    logger.info("Model artifact (%s): %s sha256=%s", tier, path, hashing.short_digest(digest))


def build_feature_extractor(model: nn.Module, device: str = "cpu") -> nn.Module:
    """Turn a classifier into a frozen embedding network.

    A Linear `fc` head is replaced by identity; other modules are used as-is.
    """
    if isinstance(getattr(model, "fc", None), nn.Linear):
        model.fc = nn.Identity()
    model = model.to(device).eval()
    for param in model.parameters():
        param.requires_grad = False
    return model


# ============================================================================
# TIERS
# ============================================================================

def embedded_loader() -> ModelLoader:
    def load() -> nn.Module:
        asset = importlib.resources.files(EMBEDDED_PACKAGE).joinpath(EMBEDDED_ASSET)
        if not asset.is_file():
            raise ModelLoadError(f"No embedded weights packaged ({EMBEDDED_ASSET})")
        with importlib.resources.as_file(asset) as path:
            _log_artifact("embedded", path)
            return _load_state_dict_file(path)

    return ModelLoader("embedded", load)


def local_path_loader(config: PerceptualConfig) -> ModelLoader:
    def load() -> nn.Module:
        if not config.model_path:
            raise ModelLoadError("model_path not configured")
        path = Path(config.model_path).expanduser()
        if not path.is_file():
            raise ModelLoadError(f"Model file not found: {path}")
        _log_artifact("local", path)
        if config.model_format == "torchscript":
            try:
                return torch.jit.load(str(path), map_location="cpu")
            except _READ_ERRORS as e:
                raise ModelLoadError(f"Cannot load TorchScript model {path}: {e}") from e
        return _load_state_dict_file(path)

    return ModelLoader("local", load)


def url_loader(config: PerceptualConfig) -> ModelLoader:
    def load() -> nn.Module:
        if not config.model_url:
            raise ModelLoadError("model_url not configured")
        logger.info("Fetching model weights from %s", config.model_url)
        try:
            state_dict = torch.hub.load_state_dict_from_url(
                config.model_url,
                model_dir=config.model_cache_dir,
                map_location="cpu",
                progress=False,
                check_hash=config.check_hash,
                weights_only=True,
            )
        except _READ_ERRORS as e:
            # URLError/HTTPError are OSError subclasses
            raise ModelLoadError(f"Download from {config.model_url} failed: {e}") from e
        return resnet18_from_state_dict(state_dict)

    return ModelLoader("url", load)


def zoo_loader() -> ModelLoader:
    def load() -> nn.Module:
        try:
            return resnet18(weights=ResNet18_Weights.IMAGENET1K_V1)
        except _READ_ERRORS as e:
            raise ModelLoadError(f"torchvision model zoo unavailable: {e}") from e

    return ModelLoader("zoo", load)


def build_default_loaders(config: PerceptualConfig) -> List[ModelLoader]:
    """Loader tiers in priority order, honoring use_embedded / use_model_zoo."""
    loaders: List[ModelLoader] = []
    if config.use_embedded:
        loaders.append(embedded_loader())
    loaders.append(local_path_loader(config))
    loaders.append(url_loader(config))
    if config.use_model_zoo:
        loaders.append(zoo_loader())
    return loaders
