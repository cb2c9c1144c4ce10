"""Difference region post-processing: noise floor, merging, ordering.

Pipeline (backend-independent):
    1. backend.label_components(mask, gap_radius): raw components
    2. filter_noise(): drop components below the noise floor
    3. merge_regions(): union boxes whose padded extents overlap, repeated
       until no pair overlaps
    4. sort_regions(): top-to-bottom, then left-to-right

Merging to a fixpoint makes the result independent of component order:
every merge is forced (grown boxes only overlap more), so any order reaches
the same partition.
"""

import logging
from typing import Iterable, List, Tuple

import numpy as np

from ..results import DiffRegion
from ..utils.validators import PixelEngineConfig
from .backends import PixelBackend

logger = logging.getLogger(__name__)


def filter_noise(regions: Iterable[DiffRegion], min_pixels: int) -> List[DiffRegion]:
    return [r for r in regions if r.pixel_count >= min_pixels]


def _merge_pass(regions: List[DiffRegion], padding: int) -> Tuple[List[DiffRegion], bool]:
    merged: List[DiffRegion] = []
    used = [False] * len(regions)
    changed = False

    for i, region in enumerate(regions):
        if used[i]:
            continue
        current = region
        used[i] = True
        for j in range(i + 1, len(regions)):
            if not used[j] and current.padded_overlaps(regions[j], padding):
                current = current.union(regions[j])
                used[j] = True
                changed = True
        merged.append(current)

    return merged, changed


def merge_regions(regions: Iterable[DiffRegion], padding: int) -> List[DiffRegion]:
    """Merge regions whose boxes, grown by `padding`, overlap.

    Passes repeat until stable, so no two returned boxes overlap after padding.
    """
    current = list(regions)
    passes = 0
    while True:
        current, changed = _merge_pass(current, padding)
        passes += 1
        if not changed:
            break
    if passes > 2:
        logger.debug("Region merge converged after %d passes", passes)
    return current


def sort_regions(regions: Iterable[DiffRegion]) -> List[DiffRegion]:
    return sorted(regions, key=lambda r: (r.min_y, r.min_x, r.max_y, r.max_x))


def detect_regions(
    mask: np.ndarray,
    backend: PixelBackend,
    config: PixelEngineConfig,
) -> Tuple[DiffRegion, ...]:
    """Full region pipeline on a binary difference mask.

    Parameters
    ----------
    mask : np.ndarray
        (H, W) bool difference mask
    backend : PixelBackend
        Supplies connected-component labelling
    config : PixelEngineConfig
        noise_floor_px, gap_radius_px, merge_distance_px

    Returns
    -------
    tuple[DiffRegion, ...]
        Merged regions in reading order
    """
    if not mask.any():
        return ()
    raw = backend.label_components(mask, config.gap_radius_px)
    kept = filter_noise(raw, config.noise_floor_px)
    merged = merge_regions(kept, config.merge_distance_px)
    ordered = sort_regions(merged)
    logger.debug(
        "Regions: %d raw, %d above noise floor, %d after merge",
        len(raw), len(kept), len(ordered)
    )
    return tuple(ordered)
