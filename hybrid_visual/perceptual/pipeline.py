"""Preprocessing and similarity for the perceptual engine.

The transform is fixed at construction and applied identically to baseline
and actual: resize to input_size x input_size → [0, 1] CHW float →
per-channel (x - mean) / std.
"""

from typing import Sequence, Tuple

import numpy as np
import torch
import torchvision.transforms as transforms

from ..raster import RasterImage


def build_transform(
    input_size: int,
    mean: Tuple[float, float, float],
    std: Tuple[float, float, float],
) -> transforms.Compose:
    return transforms.Compose([
        transforms.Resize((input_size, input_size)),
        transforms.ToTensor(),
        transforms.Normalize(mean=list(mean), std=list(std)),
    ])


def to_batch(images: Sequence[RasterImage], transform: transforms.Compose) -> torch.Tensor:
    """Stack transformed images into a (N, 3, S, S) float32 batch."""
    return torch.stack([transform(img.to_pil()) for img in images])


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two embeddings, in [-1, 1].

    Returns 0.0 when either vector has zero norm.

    Raises
    ------
    ValueError
        Different lengths, or non-finite values
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape:
        raise ValueError(f"Embedding lengths differ: {a.size} vs {b.size}")
    if not (np.isfinite(a).all() and np.isfinite(b).all()):
        raise ValueError("Embedding contains NaN or Inf values")

    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.clip(np.dot(a, b) / (norm_a * norm_b), -1.0, 1.0))
