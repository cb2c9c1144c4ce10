"""Diff artifact rendering (Pillow ImageDraw).

Draws on a copy of the (resampled) actual image:
    - one red ellipse per region, padded by max(min_padding, side / 4)
    - a "#n" label above each ellipse on a translucent white plate
    - a header "DIFF: <n> regions, <m> pixels total" in the top-left corner

Regions are numbered in the order given (callers pass them position-sorted).
"""

import logging
from typing import Sequence, Tuple

from PIL import Image, ImageDraw, ImageFont

from ..raster import RasterImage
from ..results import DiffRegion
from ..utils.validators import PixelEngineConfig

logger = logging.getLogger(__name__)

OUTLINE_COLOR = (255, 0, 0)
LABEL_PLATE = (255, 255, 255, 200)
HEADER_PLATE = (255, 255, 255, 220)
LABEL_FONT_SIZE = 14
HEADER_FONT_SIZE = 16


def _font(size: int) -> ImageFont.ImageFont:
    return ImageFont.load_default(size=size)


def ellipse_box(region: DiffRegion, min_padding: int) -> Tuple[int, int, int, int]:
    """(x0, y0, x1, y1) of the padded ellipse around a region."""
    cx, cy = region.center
    pad_x = max(min_padding, region.width // 4)
    pad_y = max(min_padding, region.height // 4)
    half_w = (region.width + 2 * pad_x) // 2
    half_h = (region.height + 2 * pad_y) // 2
    return cx - half_w, cy - half_h, cx + half_w, cy + half_h


def header_text(regions: Sequence[DiffRegion]) -> str:
    total = sum(r.pixel_count for r in regions)
    return f"DIFF: {len(regions)} regions, {total} pixels total"


def render_diff_artifact(
    actual: RasterImage,
    regions: Sequence[DiffRegion],
    config: PixelEngineConfig,
) -> RasterImage:
    """Annotate `actual` with numbered region highlights.

    Returns a plain copy of `actual` when there are no regions.
    """
    canvas: Image.Image = actual.to_pil()
    if not regions:
        return RasterImage.from_pil(canvas)

    draw = ImageDraw.Draw(canvas, "RGBA")
    label_font = _font(LABEL_FONT_SIZE)

    for number, region in enumerate(regions, start=1):
        x0, y0, x1, y1 = ellipse_box(region, config.ellipse_min_padding_px)
        draw.ellipse((x0, y0, x1, y1), outline=OUTLINE_COLOR, width=config.outline_width_px)

        label = f"#{number}"
        cx, _ = region.center
        left, top, right, bottom = draw.textbbox((0, 0), label, font=label_font)
        text_w, text_h = right - left, bottom - top
        label_x = max(cx - 10, 2)
        label_y = max(y0 - 8 - text_h, 2)
        draw.rectangle(
            (label_x - 2, label_y - 2, label_x + text_w + 2, label_y + text_h + 2),
            fill=LABEL_PLATE,
        )
        draw.text((label_x, label_y - top), label, fill=OUTLINE_COLOR, font=label_font)

        logger.debug(
            "Region #%d: (%d,%d)-(%d,%d), %d px",
            number, region.min_x, region.min_y, region.max_x, region.max_y, region.pixel_count
        )

    header = header_text(regions)
    header_font = _font(HEADER_FONT_SIZE)
    left, top, right, bottom = draw.textbbox((0, 0), header, font=header_font)
    draw.rectangle((5, 5, 5 + (right - left) + 12, 5 + (bottom - top) + 10), fill=HEADER_PLATE)
    draw.text((11, 10 - top), header, fill=OUTLINE_COLOR, font=header_font)

    return RasterImage.from_pil(canvas)
