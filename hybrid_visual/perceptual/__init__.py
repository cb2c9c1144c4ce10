"""Perceptual comparator: ResNet-18 embeddings with tiered model loading."""

from .engine import PerceptualEngine
from .loaders import (
    ModelLoader,
    build_default_loaders,
    build_feature_extractor,
    embedded_loader,
    local_path_loader,
    resnet18_from_state_dict,
    url_loader,
    zoo_loader,
)
from .pipeline import build_transform, cosine_similarity

__all__ = [
    'PerceptualEngine',
    'ModelLoader',
    'build_default_loaders',
    'build_feature_extractor',
    'embedded_loader',
    'local_path_loader',
    'url_loader',
    'zoo_loader',
    'resnet18_from_state_dict',
    'build_transform',
    'cosine_similarity',
]
