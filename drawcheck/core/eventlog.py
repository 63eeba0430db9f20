"""
Review audit trail: append-only JSONL records of ingest / scan / export activity.

Each record carries the page it concerns (source document, sheet number, scan
status and the defect tally per severity), so the review history of a single
drawing sheet can be read back from its own file. Off unless DRAWCHECK_LOG is set.
"""
from __future__ import annotations

import json
import os
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .models import Page


_RE_UNSAFE = re.compile(r"[\W_]+")


def _truthy(v: str) -> bool:
    return (v or "").strip().lower() in ("1", "true", "yes", "y", "on")


def sheet_key(doc_name: str, page_index: Optional[int] = None) -> str:
    """File stem for a document, or for one sheet of a multi-page PDF."""
    stem = _RE_UNSAFE.sub("_", (doc_name or "").strip()).strip("_")[:80] or "unknown"
    if page_index is None:
        return stem
    return f"{stem}__p{page_index + 1:03d}"


def page_fields(page: Page) -> dict[str, Any]:
    out: dict[str, Any] = {
        "doc_name": page.document_name,
        "page_id": page.id,
        "page_name": page.name,
        "status": page.status.value,
    }
    if page.page_index is not None:
        out["sheet"] = f"{page.page_index + 1}/{page.page_count}"
    if page.defects:
        out["defects"] = dict(Counter(d.severity for d in page.defects))
    if page.last_error:
        out["error"] = page.last_error
    return out


@dataclass
class JsonlEventLogger:
    log_dir: Path
    by_doc: bool = True
    max_error_chars: int = 4000

    def _append(self, path: Path, rec: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False) + "\n")

    def log(self, *, session_id: str, event: str, page: Optional[Page] = None, **fields: Any) -> None:
        rec: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "event": event,
        }
        if page is not None:
            rec.update(page_fields(page))
        rec.update(fields)

        # Detector / SDK messages can carry whole response bodies.
        err = rec.get("error")
        if isinstance(err, str) and len(err) > self.max_error_chars:
            rec["error"] = err[: self.max_error_chars] + "…"

        day = datetime.now(timezone.utc).strftime("%Y%m%d")
        self._append(self.log_dir / f"scan_{day}_session_{session_id}.jsonl", rec)

        doc_name = (rec.get("doc_name") or "").strip()
        if self.by_doc and doc_name:
            key = sheet_key(doc_name, page.page_index if page is not None else None)
            self._append(self.log_dir / "by_doc" / f"{key}.jsonl", rec)

    @classmethod
    def from_env(cls) -> Optional["JsonlEventLogger"]:
        if not _truthy(os.getenv("DRAWCHECK_LOG", "")):
            return None
        log_dir = Path((os.getenv("DRAWCHECK_LOG_DIR", "") or "").strip() or "./data/logs").resolve()
        by_doc = _truthy(os.getenv("DRAWCHECK_LOG_BY_DOC", "1"))
        try:
            max_chars = int((os.getenv("DRAWCHECK_LOG_MAX_TEXT_CHARS", "") or "4000").strip())
        except ValueError:
            max_chars = 4000
        return cls(log_dir=log_dir, by_doc=by_doc, max_error_chars=max(200, min(50000, max_chars)))
