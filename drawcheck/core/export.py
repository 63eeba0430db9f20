"""
Marker compositing: burn defect boxes and numeric labels onto a page raster.

The same drawing routine serves the interactive preview (at the displayed
size) and the downloadable export (at native size). Output depends only on
the inputs: no time, randomness or locale goes into the pixels.
"""
from __future__ import annotations

import io
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional

from PIL import Image, ImageDraw, ImageFont

from ..config import EXPORT_JPEG_QUALITY
from .annotation import to_pixel_rect
from .errors import ExportPreconditionError
from .models import Defect, Page
from .utils import collapse_whitespace


MARKER_COLOR = (239, 68, 68)  # #ef4444
ACTIVE_MARKER_COLOR = (185, 28, 28)  # #b91c1c
LABEL_TEXT_COLOR = (255, 255, 255)


@dataclass(frozen=True)
class ExportArtifact:
    filename: str
    data: bytes
    mime_type: str = "image/jpeg"
    # "<id>. <description>" lines in the requested language; not drawn on the image.
    legend: tuple[str, ...] = ()


@lru_cache(maxsize=32)
def _label_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    return ImageFont.load_default(size=size)


def export_filename(page_name: str) -> str:
    return f"checked_{collapse_whitespace(page_name)}.jpg"


def draw_markers(
    img: Image.Image,
    defects: Iterable[Defect],
    active_defect_id: Optional[int] = None,
) -> Image.Image:
    """Draw every locatable defect onto `img` in place, scaled to its pixel size."""
    width, height = img.size
    draw = ImageDraw.Draw(img)
    line_w = max(2, int(round(width * 0.003)))
    font_size = max(12, int(round(width * 0.015)))
    pad = font_size / 2

    for d in defects:
        # Absent and malformed boxes have no location to mark. A well-formed
        # zero-area box (a line or point marker) is still drawn.
        if d.box is None or not d.box.is_well_formed:
            continue
        rect = to_pixel_rect(d.box, width, height)

        active = active_defect_id is not None and d.id == active_defect_id
        color = ACTIVE_MARKER_COLOR if active else MARKER_COLOR
        draw.rectangle(rect.xyxy, outline=color, width=line_w * 2 if active else line_w)

        # Label chip sits right above the box's top edge.
        text = str(d.id)
        font = _label_font(font_size)
        left, top, right, bottom = draw.textbbox((0, 0), text, font=font)
        chip_w = (right - left) + 2 * pad
        chip_h = font_size + pad
        x0, y0 = rect.x, rect.y - chip_h
        draw.rectangle((x0, y0, x0 + chip_w, rect.y), fill=color)
        text_y = y0 + (chip_h - (bottom - top)) / 2 - top
        draw.text((x0 + pad - left, text_y), text, fill=LABEL_TEXT_COLOR, font=font)
    return img


def compose(page: Page, active_defect_id: Optional[int] = None) -> Image.Image:
    """Native-size raster of the page with its markers burned in."""
    img = page.raster.open()
    return draw_markers(img, page.defects, active_defect_id=active_defect_id)


def export_page(page: Page, language: str = "en") -> ExportArtifact:
    """
    Flatten a completed page and its defects into a JPEG.

    Raises ExportPreconditionError unless the page is COMPLETED with at least
    one defect. `language` only selects the legend text, never the pixels.
    """
    if not page.is_export_eligible:
        raise ExportPreconditionError(f"Nothing to export for {page.name}")

    buf = io.BytesIO()
    compose(page).save(buf, format="JPEG", quality=EXPORT_JPEG_QUALITY)
    legend = tuple(f"{d.id}. {d.description(language)}" for d in page.defects)
    return ExportArtifact(filename=export_filename(page.name), data=buf.getvalue(), legend=legend)


def render_preview(
    page: Page,
    size: tuple[int, int],
    active_defect_id: Optional[int] = None,
) -> bytes:
    """PNG of the page resized to `size` with markers placed for that size."""
    img = page.raster.open()
    if img.size != size:
        img = img.resize(size, resample=Image.Resampling.LANCZOS)
    draw_markers(img, page.defects, active_defect_id=active_defect_id)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
