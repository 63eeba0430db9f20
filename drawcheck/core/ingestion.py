"""
Upload ingestion: turn uploaded files into an ordered list of reviewable pages.

- Images become exactly one page; the raster keeps the original bytes and is
  decoded lazily.
- PDFs are rendered page by page (fixed 2x scale, for text legibility) and
  become one page per PDF page, sharing one random batch id.
- Any other media type is ignored.
"""
from __future__ import annotations

import io
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Optional

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

from ..config import PDF_RENDER_SCALE
from .errors import IngestionError
from .models import ImageRaster, Page, PdfPageRaster
from .utils import new_batch_id


PDF_MIME = "application/pdf"


@dataclass(frozen=True)
class UploadedDocument:
    name: str
    mime_type: str
    data: bytes = field(repr=False)

    @classmethod
    def from_path(
        cls,
        path: Path,
        display_name: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> "UploadedDocument":
        # Chainlit stores uploads under temporary names; keep the user-facing name.
        name = display_name or path.name
        mime = (mime_type or "").strip().lower()
        if not mime or mime == "application/octet-stream":
            mime = mimetypes.guess_type(name)[0] or mimetypes.guess_type(path.name)[0] or ""
        return cls(name=name, mime_type=mime, data=path.read_bytes())


@dataclass(frozen=True)
class IngestReport:
    pages: list[Page]
    failures: list[IngestionError] = field(default_factory=list)


def is_supported(mime_type: str) -> bool:
    mt = (mime_type or "").lower()
    return mt == PDF_MIME or mt.startswith("image/")


def rasterize_pdf(data: bytes, scale: float = PDF_RENDER_SCALE) -> Iterator[PdfPageRaster]:
    """
    Render every page of a PDF, in page order, to PNG.

    Raises whatever PyMuPDF raises; callers own the error translation.
    """
    pdf = fitz.open(stream=data, filetype="pdf")
    try:
        if pdf.needs_pass:
            raise ValueError("PDF is password protected")
        matrix = fitz.Matrix(scale, scale)
        for i in range(pdf.page_count):
            pix = pdf.load_page(i).get_pixmap(matrix=matrix, alpha=False)
            yield PdfPageRaster(png=pix.tobytes("png"), width=pix.width, height=pix.height)
    finally:
        pdf.close()


def _ingest_pdf(doc: UploadedDocument) -> list[Page]:
    try:
        # Materialize fully before emitting anything: no partial documents.
        rasters = list(rasterize_pdf(doc.data))
    except Exception as e:  # noqa: BLE001
        raise IngestionError(doc.name, f"PDF rasterization failed: {e}") from e
    if not rasters:
        raise IngestionError(doc.name, "PDF has no pages")

    batch_id = new_batch_id()
    count = len(rasters)
    return [
        Page(
            id=f"{batch_id}_{idx}",
            name=f"{doc.name} - Page {idx + 1}",
            source_kind="pdf-page",
            raster=raster,
            document_name=doc.name,
            page_index=idx,
            page_count=count,
        )
        for idx, raster in enumerate(rasters)
    ]


def _ingest_image(doc: UploadedDocument) -> list[Page]:
    try:
        # Header only; pixel data is decoded on demand.
        with Image.open(io.BytesIO(doc.data)) as img:
            width, height = img.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise IngestionError(doc.name, f"Image could not be decoded: {e}") from e

    raster = ImageRaster(data=doc.data, mime_type=doc.mime_type.lower(), width=width, height=height)
    return [
        Page(
            id=new_batch_id(),
            name=doc.name,
            source_kind="image",
            raster=raster,
            document_name=doc.name,
        )
    ]


def ingest(doc: UploadedDocument) -> list[Page]:
    """
    Convert one uploaded document into pages.

    Unsupported media types yield an empty list. Raises IngestionError when
    the document is supported but unreadable.
    """
    if not is_supported(doc.mime_type):
        return []
    if doc.mime_type.lower() == PDF_MIME:
        return _ingest_pdf(doc)
    return _ingest_image(doc)


def ingest_many(docs: Iterable[UploadedDocument]) -> IngestReport:
    """Ingest documents independently; one failing document never blocks the others."""
    pages: list[Page] = []
    failures: list[IngestionError] = []
    for doc in docs:
        try:
            pages.extend(ingest(doc))
        except IngestionError as e:
            failures.append(e)
    return IngestReport(pages=pages, failures=failures)
