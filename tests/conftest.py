from __future__ import annotations

import io
import threading
from typing import Any, Optional

import fitz  # PyMuPDF
import pytest
from PIL import Image

from drawcheck.core.models import ImageRaster, Page, ScanStatus


def make_png(width: int = 200, height: int = 100, color: tuple[int, int, int] = (255, 255, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buf, format="PNG")
    return buf.getvalue()


def make_pdf(page_count: int, width: float = 200, height: float = 100) -> bytes:
    doc = fitz.open()
    for i in range(page_count):
        page = doc.new_page(width=width, height=height)
        page.insert_text((20, 50), f"Sheet {i + 1}")
    data = doc.tobytes()
    doc.close()
    return data


def make_page(
    page_id: str,
    status: ScanStatus = ScanStatus.PENDING,
    *,
    width: int = 200,
    height: int = 100,
    color: tuple[int, int, int] = (255, 255, 255),
    **kwargs: Any,
) -> Page:
    raster = ImageRaster(data=make_png(width, height, color), mime_type="image/png", width=width, height=height)
    return Page(
        id=page_id,
        name=kwargs.pop("name", f"{page_id}.png"),
        source_kind="image",
        raster=raster,
        document_name=f"{page_id}.png",
        status=status,
        **kwargs,
    )


class FakeDetector:
    """
    In-process detector. Returns queued responses in call order; an Exception
    instance in the queue is raised instead. Optionally blocks on `gate`.
    """

    def __init__(self, responses: Optional[list[Any]] = None, gate: Optional[threading.Event] = None) -> None:
        self.responses = list(responses or [])
        self.gate = gate
        self.calls: list[tuple[bytes, str]] = []
        self._lock = threading.Lock()

    def detect(self, payload: bytes, mime_type: str) -> list[Any]:
        with self._lock:
            self.calls.append((payload, mime_type))
            resp = self.responses.pop(0) if self.responses else []
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if isinstance(resp, Exception):
            raise resp
        return resp


def raw_defect(i: int, box: Any = (100, 100, 200, 200), kind: str = "warning") -> dict[str, Any]:
    return {
        "id": i,
        "description_en": f"Issue {i}",
        "description_vn": f"Lỗi {i}",
        "type": kind,
        "box_2d": list(box) if box is not None else None,
    }


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def pdf_bytes() -> bytes:
    return make_pdf(3)
