"""OpenCV pixel backend.

diff_mask: cv2.absdiff → cvtColor(RGB2GRAY) → threshold(THRESH_BINARY).

label_components bridges gaps without a flood fill: each set pixel is
dilated into the R x R square that has it as its bottom-right corner
(kernel anchored at (0, 0)). Two such squares touch 8-connectively exactly
when their seed pixels are within Chebyshev distance R, so the components
of the dilated mask are the gap-bridged components of the original. Stats
are then gathered from the original pixels only, which keeps bounding boxes
and counts identical to the reference flood fill.

Only imported after backends.probe_opencv() succeeded.
"""

import logging
from typing import List

import cv2
import numpy as np

from ..results import DiffRegion
from .backends import PixelBackend

logger = logging.getLogger(__name__)


class OpenCVBackend(PixelBackend):
    """Vectorized kernels on top of cv2."""

    name = "opencv"

    def diff_mask(self, baseline: np.ndarray, actual: np.ndarray, delta_threshold: int) -> np.ndarray:
        if baseline.shape != actual.shape:
            raise ValueError(f"Shape mismatch: {baseline.shape} vs {actual.shape}")
        diff = cv2.absdiff(np.ascontiguousarray(baseline), np.ascontiguousarray(actual))
        gray = cv2.cvtColor(diff, cv2.COLOR_RGB2GRAY)
        _, thresholded = cv2.threshold(gray, int(delta_threshold), 255, cv2.THRESH_BINARY)
        return thresholded > 0

    def label_components(self, mask: np.ndarray, gap_radius: int) -> List[DiffRegion]:
        ys, xs = np.nonzero(mask)
        if ys.size == 0:
            return []

        seed = mask.astype(np.uint8)
        r = max(int(gap_radius), 1)
        if r > 1:
            kernel = np.ones((r, r), dtype=np.uint8)
            bridged = cv2.dilate(seed, kernel, anchor=(0, 0))
        else:
            bridged = seed

        n_labels, labels = cv2.connectedComponents(bridged, connectivity=8, ltype=cv2.CV_32S)
        owner = labels[ys, xs]

        counts = np.bincount(owner, minlength=n_labels)
        h, w = mask.shape
        min_x = np.full(n_labels, w, dtype=np.int64)
        min_y = np.full(n_labels, h, dtype=np.int64)
        max_x = np.full(n_labels, -1, dtype=np.int64)
        max_y = np.full(n_labels, -1, dtype=np.int64)
        np.minimum.at(min_x, owner, xs)
        np.minimum.at(min_y, owner, ys)
        np.maximum.at(max_x, owner, xs)
        np.maximum.at(max_y, owner, ys)

        return [
            DiffRegion(int(min_x[i]), int(min_y[i]), int(max_x[i]), int(max_y[i]), int(counts[i]))
            for i in np.flatnonzero(counts)
        ]
