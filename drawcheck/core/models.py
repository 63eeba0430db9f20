from __future__ import annotations

import io
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional, Union

from PIL import Image


SourceKind = Literal["image", "pdf-page"]
Severity = Literal["critical", "warning", "info"]

# Detector coordinates live on a fixed 0..1000 grid, origin top-left.
BOX_SCALE = 1000

# Image formats the detectors accept as-is; anything else is re-encoded to PNG.
_TRANSPORT_MIME = ("image/png", "image/jpeg", "image/webp")


class ScanStatus(str, Enum):
    PENDING = "pending"
    SCANNING = "scanning"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ImageRaster:
    """
    Raster backed by the original uploaded image bytes.

    Decoding is deferred until a consumer calls open(); width/height are read
    from the image header at ingest time.
    """

    data: bytes = field(repr=False)
    mime_type: str
    width: int
    height: int

    def transport(self) -> tuple[bytes, str]:
        if self.mime_type in _TRANSPORT_MIME:
            return self.data, self.mime_type
        buf = io.BytesIO()
        self.open().save(buf, format="PNG")
        return buf.getvalue(), "image/png"

    def open(self) -> Image.Image:
        img = Image.open(io.BytesIO(self.data))
        img.load()
        return img.convert("RGB")


@dataclass(frozen=True)
class PdfPageRaster:
    """Eagerly rendered PDF page, held as PNG bytes."""

    png: bytes = field(repr=False)
    width: int
    height: int
    mime_type: str = "image/png"

    def transport(self) -> tuple[bytes, str]:
        return self.png, self.mime_type

    def open(self) -> Image.Image:
        img = Image.open(io.BytesIO(self.png))
        img.load()
        return img.convert("RGB")


Raster = Union[ImageRaster, PdfPageRaster]


@dataclass(frozen=True)
class NormalizedBox:
    y_min: float
    x_min: float
    y_max: float
    x_max: float

    @property
    def is_well_formed(self) -> bool:
        coords = (self.y_min, self.x_min, self.y_max, self.x_max)
        if any(c < 0 or c > BOX_SCALE for c in coords):
            return False
        return self.y_min <= self.y_max and self.x_min <= self.x_max


@dataclass(frozen=True)
class PixelRect:
    x: float
    y: float
    w: float
    h: float

    @property
    def xyxy(self) -> tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.w, self.y + self.h


@dataclass(frozen=True)
class Defect:
    id: int  # 1-based, unique within its page only
    description_en: str
    description_vn: str
    severity: Severity = "warning"
    box: Optional[NormalizedBox] = None

    def description(self, language: str) -> str:
        return self.description_vn if language == "vi" else self.description_en


@dataclass(frozen=True)
class Page:
    id: str
    name: str
    source_kind: SourceKind
    raster: Raster
    document_name: str = ""  # uploaded file this page came from
    page_index: Optional[int] = None  # 0-based, pdf-page only
    page_count: Optional[int] = None  # pdf-page only
    status: ScanStatus = ScanStatus.PENDING
    defects: tuple[Defect, ...] = ()
    last_error: Optional[str] = None

    @property
    def batch_id(self) -> str:
        if self.source_kind == "pdf-page":
            return self.id.rsplit("_", 1)[0]
        return self.id

    @property
    def is_export_eligible(self) -> bool:
        return self.status == ScanStatus.COMPLETED and bool(self.defects)
