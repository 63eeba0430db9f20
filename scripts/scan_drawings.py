from __future__ import annotations

"""
Batch QA/QC scan from the command line.

Ingests every given file (PDF / PNG / JPG), scans all pages in order and writes
a marked-up JPEG for each page with at least one defect.

Examples:
  # List the pages that would be scanned (no model calls):
  python scripts/scan_drawings.py drawings/A-101.pdf --dry-run

  # Full scan (requires GEMINI_API_KEY, or DETECTOR_PROVIDER=local with Ollama):
  python scripts/scan_drawings.py drawings/*.pdf --out data/exports --lang vi
"""

import argparse
import asyncio
import sys
from pathlib import Path


def _setup_utf8() -> None:
    if hasattr(sys.stdout, "reconfigure"):
        try:
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")  # type: ignore[attr-defined]
        except Exception:
            pass


async def _run(args: argparse.Namespace) -> int:
    from drawcheck.config import load_settings
    from drawcheck.core.ingestion import UploadedDocument
    from drawcheck.core.session import ReviewSession

    settings = load_settings()
    session = ReviewSession.from_settings(settings)
    session.set_language(args.lang or settings.ui_language)

    docs = []
    for raw in args.paths:
        p = Path(raw)
        if not p.is_file():
            print(f"[SKIP] not a file: {p}")
            continue
        docs.append(UploadedDocument.from_path(p))

    report = await session.add_documents(docs)
    for err in report.failures:
        print(f"[FAIL] {err.document_name}: {err.message}")
    for i, page in enumerate(session.pages, start=1):
        print(f"[OK] {i:>3} {page.name} ({page.raster.width}x{page.raster.height}) id={page.id}")
    if args.dry_run or not session.pages:
        return 1 if report.failures else 0

    batch = await session.scan_all()
    for pid in batch.scanned:
        page = session.get_page(pid)
        if pid in batch.failed:
            print(f"[FAIL] scan {page.name}: {batch.failed[pid]}")
        else:
            print(f"[OK] scan {page.name}: defects={len(page.defects)}")

    out_dir = Path(args.out) if args.out else settings.export_dir
    out_dir.mkdir(parents=True, exist_ok=True)
    for artifact in session.export_eligible():
        target = out_dir / artifact.filename
        target.write_bytes(artifact.data)
        print(f"[OK] exported {target}")
        for line in artifact.legend:
            print(f"      {line}")

    return 1 if (report.failures or batch.failed) else 0


def main() -> int:
    _setup_utf8()
    sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

    ap = argparse.ArgumentParser()
    ap.add_argument("paths", nargs="+", help="PDF / PNG / JPG paths")
    ap.add_argument("--out", type=str, default=None, help="Export directory (default: EXPORT_DIR)")
    ap.add_argument("--lang", choices=["en", "vi"], default=None, help="Legend language")
    ap.add_argument("--dry-run", action="store_true", help="Only ingest and list pages")
    args = ap.parse_args()
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
