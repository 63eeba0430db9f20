from __future__ import annotations

import io
from pathlib import Path

import pytest
from PIL import Image

from conftest import make_pdf, make_png
from drawcheck.core.errors import IngestionError
from drawcheck.core.ingestion import UploadedDocument, ingest, ingest_many, is_supported
from drawcheck.core.models import ImageRaster, PdfPageRaster, ScanStatus


def test_pdf_yields_one_page_per_sheet_in_order(pdf_bytes):
    pages = ingest(UploadedDocument(name="A-101.pdf", mime_type="application/pdf", data=pdf_bytes))

    assert len(pages) == 3
    assert [p.page_index for p in pages] == [0, 1, 2]
    assert all(p.page_count == 3 for p in pages)
    assert all(p.source_kind == "pdf-page" for p in pages)
    assert all(p.status == ScanStatus.PENDING and p.defects == () for p in pages)

    prefixes = {p.id.rsplit("_", 1)[0] for p in pages}
    assert len(prefixes) == 1
    (prefix,) = prefixes
    assert [p.id for p in pages] == [f"{prefix}_{i}" for i in range(3)]
    assert [p.name for p in pages] == [f"A-101.pdf - Page {i}" for i in (1, 2, 3)]


def test_pdf_pages_are_rendered_at_double_scale(pdf_bytes):
    page = ingest(UploadedDocument(name="a.pdf", mime_type="application/pdf", data=pdf_bytes))[0]

    assert isinstance(page.raster, PdfPageRaster)
    assert (page.raster.width, page.raster.height) == (400, 200)
    payload, mime = page.raster.transport()
    assert mime == "image/png"
    assert Image.open(io.BytesIO(payload)).size == (400, 200)


def test_two_uploads_of_same_pdf_get_distinct_batch_ids(pdf_bytes):
    doc = UploadedDocument(name="a.pdf", mime_type="application/pdf", data=pdf_bytes)
    first = ingest(doc)
    second = ingest(doc)
    assert first[0].batch_id != second[0].batch_id
    assert not {p.id for p in first} & {p.id for p in second}


def test_image_yields_single_lazy_page(png_bytes):
    pages = ingest(UploadedDocument(name="plan.png", mime_type="image/png", data=png_bytes))

    assert len(pages) == 1
    page = pages[0]
    assert page.source_kind == "image"
    assert page.page_index is None and page.page_count is None
    assert isinstance(page.raster, ImageRaster)
    assert page.raster.transport() == (png_bytes, "image/png")
    assert (page.raster.width, page.raster.height) == (200, 100)


def test_uncommon_image_type_is_reencoded_for_transport():
    buf = io.BytesIO()
    Image.new("RGB", (30, 20), color=(0, 128, 0)).save(buf, format="BMP")
    page = ingest(UploadedDocument(name="scan.bmp", mime_type="image/bmp", data=buf.getvalue()))[0]

    payload, mime = page.raster.transport()
    assert mime == "image/png"
    assert Image.open(io.BytesIO(payload)).size == (30, 20)


def test_unsupported_type_is_ignored():
    assert ingest(UploadedDocument(name="notes.txt", mime_type="text/plain", data=b"hello")) == []
    assert not is_supported("text/plain")
    assert is_supported("image/jpeg") and is_supported("application/pdf")


def test_corrupt_pdf_raises_ingestion_error():
    with pytest.raises(IngestionError) as exc:
        ingest(UploadedDocument(name="broken.pdf", mime_type="application/pdf", data=b"%PDF-1.4 garbage"))
    assert exc.value.document_name == "broken.pdf"


def test_one_failing_document_does_not_block_others(png_bytes):
    docs = [
        UploadedDocument(name="broken.pdf", mime_type="application/pdf", data=b"not a pdf"),
        UploadedDocument(name="plan.png", mime_type="image/png", data=png_bytes),
        UploadedDocument(name="readme.md", mime_type="text/markdown", data=b"# hi"),
        UploadedDocument(name="sheets.pdf", mime_type="application/pdf", data=make_pdf(2)),
    ]
    report = ingest_many(docs)

    assert [p.document_name for p in report.pages] == ["plan.png", "sheets.pdf", "sheets.pdf"]
    assert [f.document_name for f in report.failures] == ["broken.pdf"]


def test_from_path_guesses_media_type(tmp_path: Path):
    p = tmp_path / "upload_1234"
    p.write_bytes(make_png())
    doc = UploadedDocument.from_path(p, display_name="Level 2 plan.png")
    assert doc.name == "Level 2 plan.png"
    assert doc.mime_type == "image/png"

    doc = UploadedDocument.from_path(p, display_name="x", mime_type="IMAGE/PNG")
    assert doc.mime_type == "image/png"


def test_oversized_image_fails_alone(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    docs = [
        UploadedDocument(name="huge.png", mime_type="image/png", data=make_png(400, 400)),
        UploadedDocument(name="sheets.pdf", mime_type="application/pdf", data=make_pdf(1)),
    ]
    report = ingest_many(docs)

    assert [f.document_name for f in report.failures] == ["huge.png"]
    assert [p.document_name for p in report.pages] == ["sheets.pdf"]
