"""
Review session: single entry point that wires
  upload → pages → scan lifecycle → annotation review → export

Used by:
  - Chainlit UI (app.py)
  - CLI scripts
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional
from uuid import uuid4

from ..config import Language, Settings
from .detector import Detector, build_detector
from .errors import ExportPreconditionError, PageNotFoundError
from .eventlog import JsonlEventLogger
from .export import ExportArtifact, export_page, render_preview
from .ingestion import IngestReport, UploadedDocument, ingest_many
from .models import Defect, Page
from .scanning import BatchReport, ScanCoordinator, UpdateHook
from .store import PageStore
from .viewport import Viewport


_NOTHING_TO_EXPORT = {
    "en": "No completed drawings to export.",
    "vi": "Không có bản vẽ hoàn thành để xuất.",
}


@dataclass
class ReviewSession:
    """
    Stateful review session holding every uploaded page of one user.
    """
    # Config
    detector: Detector
    batch_pause_seconds: float = 0.5
    language: Language = "en"

    # State
    _store: PageStore = field(default_factory=PageStore)
    _viewport: Viewport = field(default_factory=Viewport)
    _coordinator: Optional[ScanCoordinator] = None
    _active_defect_id: Optional[int] = None
    _session_id: str = field(default_factory=lambda: uuid4().hex)
    _logger: Optional[JsonlEventLogger] = None
    _logger_checked: bool = False

    def __post_init__(self) -> None:
        if self._coordinator is None:
            self._coordinator = ScanCoordinator(
                store=self._store,
                detector=self.detector,
                pause_seconds=self.batch_pause_seconds,
                select=self.select_page,
                on_event=self._on_scan_event,
            )

    @classmethod
    def from_settings(cls, settings: Settings, detector: Optional[Detector] = None) -> "ReviewSession":
        return cls(
            detector=detector or build_detector(settings),
            batch_pause_seconds=settings.batch_pause_seconds,
            language=settings.ui_language,
        )

    # ── Logging ──────────────────────────────────────────────────────────────

    def _get_logger(self) -> Optional[JsonlEventLogger]:
        """
        Lazy-create logger from env. Logging is OFF by default.
        """
        if not self._logger_checked:
            self._logger = self._logger or JsonlEventLogger.from_env()
            self._logger_checked = True
        return self._logger

    def _log(self, event: str, page: Optional[Page] = None, **fields: Any) -> None:
        lg = self._get_logger()
        if lg:
            lg.log(session_id=self._session_id, event=event, page=page, **fields)

    def _on_scan_event(self, event: str, payload: dict[str, Any]) -> None:
        # Attach the page as it is right now (status and defects after the transition).
        page = self._store.find(payload.get("page_id", ""))
        self._log(event, page=page, **payload)

    # ── Read side ────────────────────────────────────────────────────────────

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def coordinator(self) -> ScanCoordinator:
        assert self._coordinator is not None
        return self._coordinator

    @property
    def pages(self) -> list[Page]:
        return self._store.list()

    def get_page(self, page_id: str) -> Page:
        return self._store.get(page_id)

    def page_at(self, position: int) -> Page:
        """1-based position in the page list (as shown to the user)."""
        pages = self._store.list()
        if position < 1 or position > len(pages):
            raise PageNotFoundError(f"#{position}")
        return pages[position - 1]

    @property
    def selected_page(self) -> Optional[Page]:
        return self._store.selected

    @property
    def viewport(self) -> Viewport:
        return self._viewport

    @property
    def active_defect_id(self) -> Optional[int]:
        return self._active_defect_id

    @property
    def batch_in_progress(self) -> bool:
        return self.coordinator.batch_in_progress

    def describe(self, defect: Defect) -> str:
        return defect.description(self.language)

    def set_update_hook(self, hook: Optional[UpdateHook]) -> None:
        self.coordinator.on_update = hook

    def set_language(self, language: str) -> Language:
        self.language = "vi" if language in ("vi", "vn") else "en"
        return self.language

    # ── Pages ────────────────────────────────────────────────────────────────

    async def add_documents(self, docs: Iterable[UploadedDocument]) -> IngestReport:
        """
        Ingest uploads and append the resulting pages.

        Rasterization runs off the event loop. Failed documents are reported,
        never raised, so the rest of the upload still lands.
        """
        report = await asyncio.to_thread(ingest_many, list(docs))

        had_focus = self._store.selected_id is not None
        self._store.extend(report.pages)
        if not had_focus and self._store.selected_id is not None:
            self._on_focus_changed()

        by_doc: dict[str, int] = {}
        for p in report.pages:
            by_doc[p.document_name] = by_doc.get(p.document_name, 0) + 1
        for doc_name, count in by_doc.items():
            self._log("pages_ingested", doc_name=doc_name, page_count=count)
        for err in report.failures:
            self._log("ingest_failed", doc_name=err.document_name, error=err.message)
        return report

    def _on_focus_changed(self) -> None:
        self._viewport.reset()
        self._active_defect_id = None

    def select_page(self, page_id: Optional[str]) -> Optional[Page]:
        if self._store.select(page_id):
            self._on_focus_changed()
        return self._store.selected

    def delete_page(self, page_id: str) -> Page:
        was_selected = self._store.selected_id == page_id
        page = self._store.delete(page_id)
        if was_selected:
            self._on_focus_changed()
        self._log("page_deleted", page=page)
        return page

    # ── Scanning ─────────────────────────────────────────────────────────────

    def _require_page_id(self, page_id: Optional[str]) -> str:
        if page_id is not None:
            return page_id
        if self._store.selected_id is None:
            raise PageNotFoundError("(no page selected)")
        return self._store.selected_id

    async def scan_page(self, page_id: Optional[str] = None) -> list[Defect]:
        pid = self._require_page_id(page_id)
        defects = await self.coordinator.scan(pid)
        if pid == self._store.selected_id:
            self._active_defect_id = None
        return defects

    async def scan_all(self) -> BatchReport:
        return await self.coordinator.scan_all()

    # ── Review ───────────────────────────────────────────────────────────────

    def focus_defect(self, defect_id: Optional[int]) -> Optional[Defect]:
        """Highlight one defect of the focused page (None clears the highlight)."""
        if defect_id is None:
            self._active_defect_id = None
            return None
        page = self._store.selected
        if page is None:
            raise PageNotFoundError("(no page selected)")
        for d in page.defects:
            if d.id == defect_id:
                self._active_defect_id = defect_id
                return d
        raise KeyError(f"Defect {defect_id} not found on {page.name}")

    def render_preview(self) -> Optional[bytes]:
        """PNG of the focused page at the current zoom, markers included."""
        page = self._store.selected
        if page is None:
            return None
        size = self._viewport.display_size(page.raster.width, page.raster.height)
        return render_preview(page, size, active_defect_id=self._active_defect_id)

    # ── Export ───────────────────────────────────────────────────────────────

    def eligible_for_export(self) -> list[Page]:
        return [p for p in self._store.list() if p.is_export_eligible]

    def export_selected(self) -> ExportArtifact:
        page = self._store.selected
        if not self.eligible_for_export() or page is None or not page.is_export_eligible:
            raise ExportPreconditionError(_NOTHING_TO_EXPORT[self.language])
        artifact = export_page(page, self.language)
        self._log("exported", page=page, file_name=artifact.filename)
        return artifact

    def export_eligible(self) -> list[ExportArtifact]:
        out: list[ExportArtifact] = []
        for page in self.eligible_for_export():
            artifact = export_page(page, self.language)
            self._log("exported", page=page, file_name=artifact.filename)
            out.append(artifact)
        return out
