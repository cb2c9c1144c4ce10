"""Raster inputs: decoded pixel buffers and ignore rectangles.

RasterImage is the single in-memory image type that flows through the
comparator. Everything is 8-bit RGB, row-major (H, W, 3), top-left origin:
    - numpy arrays: grayscale (H, W), RGB (H, W, 3) or RGBA (H, W, 4);
      float arrays are read as [0, 1]
    - PIL images in any mode (converted to RGB; alpha is dropped)
    - encoded bytes (PNG, JPEG, BMP, ...) decoded in memory

The pixel buffer is stored read-only so a RasterImage can be shared between
threads and cached by callers without defensive copies.

IgnoreRegion is an (x, y, width, height) rectangle in baseline coordinates.
"""

from __future__ import annotations

import base64
import io
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np
from PIL import Image

from .errors import ImageDecodeError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class RasterImage:
    """Immutable 8-bit RGB image.

    Attributes
    ----------
    pixels : np.ndarray
        (H, W, 3) uint8, read-only
    """

    pixels: np.ndarray

    def __post_init__(self) -> None:
        px = self.pixels
        if not isinstance(px, np.ndarray):
            raise TypeError(f"pixels must be a numpy array, got {type(px).__name__}")
        if px.dtype != np.uint8 or px.ndim != 3 or px.shape[2] != 3:
            raise ValueError(f"pixels must be (H, W, 3) uint8, got {px.shape} {px.dtype}")
        if px.shape[0] == 0 or px.shape[1] == 0:
            raise ValueError(f"Image must have at least one pixel, got {px.shape[1]}x{px.shape[0]}")
        if px.flags.writeable:
            px = px.copy()
            px.flags.writeable = False
            object.__setattr__(self, 'pixels', px)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        """(width, height), PIL order."""
        return self.width, self.height

    @property
    def pixel_count(self) -> int:
        return self.width * self.height

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_array(cls, arr: np.ndarray) -> RasterImage:
        """Build from a grayscale, RGB or RGBA array.

        Raises
        ------
        ImageDecodeError
            If the array shape or value range cannot be interpreted as an image
        """
        a = np.asarray(arr)
        if a.ndim == 2:
            a = a[:, :, None]
        if a.ndim != 3 or a.shape[2] not in (1, 3, 4):
            raise ImageDecodeError(f"Expected (H, W), (H, W, 3) or (H, W, 4) array, got shape {a.shape}")
        if a.shape[2] == 1:
            a = np.repeat(a, 3, axis=2)
        elif a.shape[2] == 4:
            a = a[:, :, :3]

        if a.dtype == np.uint8:
            out = a
        elif a.dtype == np.bool_:
            out = a.astype(np.uint8) * 255
        elif np.issubdtype(a.dtype, np.floating):
            if not np.isfinite(a).all():
                raise ImageDecodeError("Float image contains NaN or Inf values")
            out = np.rint(np.clip(a, 0.0, 1.0) * 255.0).astype(np.uint8)
        elif np.issubdtype(a.dtype, np.integer):
            if a.size and (a.min() < 0 or a.max() > 255):
                raise ImageDecodeError(
                    f"Integer image values must be in [0, 255], got [{a.min()}, {a.max()}]"
                )
            out = a.astype(np.uint8)
        else:
            raise ImageDecodeError(f"Unsupported pixel dtype: {a.dtype}")

        try:
            return cls(np.ascontiguousarray(out))
        except ValueError as e:
            raise ImageDecodeError(str(e)) from e

    @classmethod
    def from_pil(cls, img: Image.Image) -> RasterImage:
        rgb = img if img.mode == "RGB" else img.convert("RGB")
        return cls.from_array(np.asarray(rgb))

    @classmethod
    def decode(cls, data: bytes) -> RasterImage:
        """Decode encoded image bytes in memory.

        Raises
        ------
        ImageDecodeError
            If Pillow cannot identify or fully read the data
        """
        if not data:
            raise ImageDecodeError("Cannot decode empty image data")
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                return cls.from_pil(img)
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
            raise ImageDecodeError(f"Malformed image data ({len(data)} bytes): {e}") from e

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def to_pil(self) -> Image.Image:
        return Image.fromarray(np.array(self.pixels))

    def to_png_bytes(self) -> bytes:
        buf = io.BytesIO()
        self.to_pil().save(buf, format="PNG")
        return buf.getvalue()

    def to_base64_png(self) -> str:
        """PNG-encode and Base64 the image (for report attachments)."""
        return base64.b64encode(self.to_png_bytes()).decode("ascii")

    def writable_copy(self) -> np.ndarray:
        return np.array(self.pixels)

    def __repr__(self) -> str:
        return f"RasterImage({self.width}x{self.height})"


ImageSource = Union[RasterImage, np.ndarray, Image.Image, bytes, bytearray, memoryview]


def as_raster(source: ImageSource) -> RasterImage:
    """Normalize any accepted input into a RasterImage.

    Raises
    ------
    ImageDecodeError
        If bytes cannot be decoded or an array is not an image
    TypeError
        For unsupported input types (e.g. file paths: reading files is the caller's job)
    """
    if isinstance(source, RasterImage):
        return source
    if isinstance(source, (bytes, bytearray, memoryview)):
        return RasterImage.decode(bytes(source))
    if isinstance(source, Image.Image):
        return RasterImage.from_pil(source)
    if isinstance(source, np.ndarray):
        return RasterImage.from_array(source)
    raise TypeError(
        f"Unsupported image source: {type(source).__name__}. "
        f"Pass decoded pixels (RasterImage, numpy array, PIL image) or encoded bytes."
    )


def resample_bicubic(image: RasterImage, width: int, height: int) -> RasterImage:
    """Resize with bicubic interpolation (Pillow)."""
    if image.size == (width, height):
        return image
    resized = image.to_pil().resize((width, height), Image.Resampling.BICUBIC)
    return RasterImage.from_pil(resized)


# ============================================================================
# IGNORE REGIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class IgnoreRegion:
    """Axis-aligned rectangle excluded from differencing.

    Parameters
    ----------
    x, y : int
        Top-left corner in baseline pixels (may be negative; clipped)
    width, height : int
        Extent in pixels, must be non-negative
    """

    x: int
    y: int
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise ValueError(
                f"Ignore region extent must be non-negative, got {self.width}x{self.height}"
            )

    @classmethod
    def coerce(cls, value: Union[IgnoreRegion, Sequence[int]]) -> IgnoreRegion:
        if isinstance(value, IgnoreRegion):
            return value
        if len(value) != 4:
            raise ValueError(f"Ignore region must be (x, y, width, height), got {tuple(value)}")
        x, y, w, h = (int(v) for v in value)
        return cls(x, y, w, h)

    def clip(self, width: int, height: int) -> Optional[Tuple[slice, slice]]:
        """Row/column slices of the part inside a width x height image, None if empty."""
        x0, y0 = max(self.x, 0), max(self.y, 0)
        x1, y1 = min(self.x + self.width, width), min(self.y + self.height, height)
        if x0 >= x1 or y0 >= y1:
            return None
        return slice(y0, y1), slice(x0, x1)

    @classmethod
    def parse_many(cls, text: Optional[str]) -> List[IgnoreRegion]:
        """Parse "x,y,w,h;x,y,w,h". Malformed entries are skipped with a warning."""
        regions: List[IgnoreRegion] = []
        if not text:
            return regions
        for chunk in text.split(";"):
            chunk = chunk.strip()
            if not chunk:
                continue
            parts = [p.strip() for p in chunk.split(",")]
            if len(parts) != 4:
                logger.warning("Invalid ignore region format: %r", chunk)
                continue
            try:
                regions.append(cls(*(int(p) for p in parts)))
            except ValueError:
                logger.warning("Invalid ignore region format: %r", chunk)
        return regions


def coerce_regions(
    regions: Optional[Iterable[Union[IgnoreRegion, Sequence[int]]]]
) -> Tuple[IgnoreRegion, ...]:
    if not regions:
        return ()
    return tuple(IgnoreRegion.coerce(r) for r in regions)
