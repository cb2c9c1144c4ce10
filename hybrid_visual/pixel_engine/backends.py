"""Pixel backend interface and process-wide selection.

A backend implements the two numeric kernels of the pixel comparator:
    - diff_mask(): |baseline - actual| → luma magnitude → binary mask
    - label_components(): connected components with a gap-bridging radius

Two interchangeable implementations:
    - OpenCVBackend (opencv_backend.py): cv2.absdiff / cvtColor / threshold,
      dilation + connectedComponents
    - ReferenceBackend (reference_backend.py): numpy arithmetic with the same
      fixed-point luma, iterative flood fill

Both produce identical masks and identical component lists; parity is
covered by tests/test_parity_reference_vs_opencv.py.

Selection happens once per process ("auto" probes OpenCV; a failed probe
logs a warning and selects the reference backend). Comparisons never branch
on backend exceptions: the choice is made before the first call.
dispose_backend() releases the handle at shutdown; the next engine re-probes.
"""

import abc
import importlib
import importlib.util
import logging
from typing import List, Optional

import numpy as np

from ..errors import VisualComparisonError
from ..results import DiffRegion
from ..utils.once import OnceCell

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma in 14-bit fixed point, the same rounding cv2.cvtColor uses
# for 8-bit RGB → GRAY.
LUMA_SHIFT = 14
LUMA_R = 4899
LUMA_G = 9617
LUMA_B = 1868


class PixelBackend(abc.ABC):
    """Numeric kernels used by ImageEngine."""

    name = "abstract"

    @abc.abstractmethod
    def diff_mask(self, baseline: np.ndarray, actual: np.ndarray, delta_threshold: int) -> np.ndarray:
        """Binary difference mask.

        Parameters
        ----------
        baseline, actual : np.ndarray
            (H, W, 3) uint8 RGB, same shape
        delta_threshold : int
            Luma of the absolute difference must be strictly greater than this

        Returns
        -------
        np.ndarray
            (H, W) bool
        """

    @abc.abstractmethod
    def label_components(self, mask: np.ndarray, gap_radius: int) -> List[DiffRegion]:
        """Connected components of a binary mask.

        Two set pixels belong to the same component when they are linked by
        a chain of set pixels with Chebyshev distance <= gap_radius
        (gap_radius=1 is plain 8-connectivity). Bounding boxes and pixel
        counts cover the original mask pixels only. Order is unspecified.
        """

    def close(self) -> None:
        """Release native resources. Default: nothing to release."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


def probe_opencv() -> Optional[str]:
    """Check that cv2 imports and runs. Returns None when usable, else the reason."""
    if importlib.util.find_spec("cv2") is None:
        return "cv2 module not installed"
    try:
        cv2 = importlib.import_module("cv2")
        probe = cv2.absdiff(np.zeros((2, 2, 3), np.uint8), np.full((2, 2, 3), 255, np.uint8))
        gray = cv2.cvtColor(probe, cv2.COLOR_RGB2GRAY)
        n_labels, _ = cv2.connectedComponents(gray, connectivity=8)
    except (ImportError, OSError, AttributeError) as e:
        # Broken wheels surface here, e.g. missing libGL for opencv-python.
        return f"{type(e).__name__}: {e}"
    if n_labels != 2:
        return f"cv2 smoke test returned {n_labels} labels, expected 2"
    return None


def _build(preference: str) -> PixelBackend:
    if preference == "reference":
        from .reference_backend import ReferenceBackend
        return ReferenceBackend()

    reason = probe_opencv()
    if reason is None:
        from .opencv_backend import OpenCVBackend
        backend = OpenCVBackend()
        logger.info("Pixel backend: %s", backend.name)
        return backend

    if preference == "opencv":
        raise VisualComparisonError(f"OpenCV backend requested but unavailable: {reason}")

    logger.warning("OpenCV not available (%s). Falling back to reference pixel backend.", reason)
    from .reference_backend import ReferenceBackend
    return ReferenceBackend()


_cells = {
    "auto": OnceCell(),
    "opencv": OnceCell(),
    "reference": OnceCell(),
}


def select_backend(preference: str = "auto") -> PixelBackend:
    """Return the process-wide backend for a preference.

    Parameters
    ----------
    preference : str
        "auto" (OpenCV if usable, else reference), "opencv" (required) or "reference"

    Raises
    ------
    ValueError
        Unknown preference
    VisualComparisonError
        "opencv" requested and the probe failed
    """
    cell = _cells.get(preference)
    if cell is None:
        raise ValueError(f"Unknown pixel backend: {preference}. Use 'auto', 'opencv' or 'reference'.")
    return cell.get_or_init(lambda: _build(preference))


def dispose_backend() -> None:
    """Release every selected backend (process shutdown / test isolation)."""
    for cell in _cells.values():
        backend = cell.take()
        if backend is not None:
            backend.close()
