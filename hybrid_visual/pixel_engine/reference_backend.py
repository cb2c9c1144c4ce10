"""Reference pixel backend: numpy arithmetic and iterative flood fill.

Used when OpenCV is unavailable, and as the ground truth the OpenCV backend
is checked against. Deterministic and dependency-light; slower on masks with
many set pixels (one small window lookup per visited pixel).

Invariants:
    - Luma uses the same 14-bit fixed-point coefficients and rounding as
      cv2.cvtColor(RGB2GRAY), so masks are bit-identical across backends
    - Flood fill is iterative (explicit stack), so large regions cannot hit
      the recursion limit
"""

import logging
from typing import List

import numpy as np

from ..results import DiffRegion
from .backends import LUMA_B, LUMA_G, LUMA_R, LUMA_SHIFT, PixelBackend

logger = logging.getLogger(__name__)


def luma_of_difference(baseline: np.ndarray, actual: np.ndarray) -> np.ndarray:
    """Per-pixel luma of |baseline - actual|, uint8 (H, W)."""
    diff = np.abs(baseline.astype(np.int32) - actual.astype(np.int32))
    luma = (
        diff[..., 0] * LUMA_R
        + diff[..., 1] * LUMA_G
        + diff[..., 2] * LUMA_B
        + (1 << (LUMA_SHIFT - 1))
    ) >> LUMA_SHIFT
    return luma.astype(np.uint8)


class ReferenceBackend(PixelBackend):
    """Pure numpy implementation of the pixel kernels."""

    name = "reference"

    def diff_mask(self, baseline: np.ndarray, actual: np.ndarray, delta_threshold: int) -> np.ndarray:
        if baseline.shape != actual.shape:
            raise ValueError(f"Shape mismatch: {baseline.shape} vs {actual.shape}")
        return luma_of_difference(baseline, actual) > delta_threshold

    def label_components(self, mask: np.ndarray, gap_radius: int) -> List[DiffRegion]:
        h, w = mask.shape
        r = max(int(gap_radius), 1)
        visited = np.zeros((h, w), dtype=bool)
        regions: List[DiffRegion] = []

        seeds_y, seeds_x = np.nonzero(mask)
        for sy, sx in zip(seeds_y.tolist(), seeds_x.tolist()):
            if visited[sy, sx]:
                continue
            visited[sy, sx] = True
            stack = [(sy, sx)]
            min_x = max_x = sx
            min_y = max_y = sy
            count = 0

            while stack:
                y, x = stack.pop()
                count += 1
                if x < min_x:
                    min_x = x
                elif x > max_x:
                    max_x = x
                if y < min_y:
                    min_y = y
                elif y > max_y:
                    max_y = y

                y0, y1 = max(y - r, 0), min(y + r + 1, h)
                x0, x1 = max(x - r, 0), min(x + r + 1, w)
                frontier = mask[y0:y1, x0:x1] & ~visited[y0:y1, x0:x1]
                ny, nx = np.nonzero(frontier)
                if ny.size:
                    ny += y0
                    nx += x0
                    visited[ny, nx] = True
                    stack.extend(zip(ny.tolist(), nx.tolist()))

            regions.append(DiffRegion(min_x, min_y, max_x, max_y, count))

        return regions
