"""
Per-page scan lifecycle and the sequential "scan all" driver.

    PENDING -> SCANNING -> COMPLETED | FAILED
    COMPLETED / FAILED -> SCANNING (re-scan)

A page already SCANNING is never scanned a second time concurrently. All
state changes go through the PageStore as whole-page replacements.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, Sequence

from .annotation import normalize_defects
from .detector import Detector
from .errors import BatchInProgressError, DrawcheckError, ScanError, ScanInProgressError
from .models import Defect, Page, ScanStatus
from .store import PageStore


EventHook = Callable[[str, dict[str, Any]], None]
UpdateHook = Callable[[Page], Awaitable[None]]

_BATCH_ELIGIBLE = (ScanStatus.PENDING, ScanStatus.FAILED)


@dataclass
class BatchReport:
    scanned: list[str] = field(default_factory=list)  # in processing order, success or failure
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [pid for pid in self.scanned if pid not in self.failed]


def _run_detector(detector: Detector, page: Page) -> list[Defect]:
    payload, mime_type = page.raster.transport()
    return normalize_defects(detector.detect(payload, mime_type))


@dataclass
class ScanCoordinator:
    store: PageStore
    detector: Detector
    pause_seconds: float = 0.5
    # Called with a page id right before a batch scans it (keeps the view on the active page).
    select: Optional[Callable[[str], Any]] = None
    on_update: Optional[UpdateHook] = None
    on_event: Optional[EventHook] = None
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    _batch_running: bool = False

    @property
    def batch_in_progress(self) -> bool:
        return self._batch_running

    def _emit(self, event: str, payload: dict[str, Any]) -> None:
        if self.on_event:
            self.on_event(event, payload)

    async def _publish(self, page: Page) -> None:
        if self.on_update:
            await self.on_update(page)

    def _batch_eligible(self, page_id: str) -> bool:
        page = self.store.find(page_id)
        return page is not None and page.status in _BATCH_ELIGIBLE

    def _transition(self, page_id: str, **changes: Any) -> Optional[Page]:
        # The page may have been deleted while the detector was running.
        current = self.store.find(page_id)
        if current is None:
            return None
        return self.store.upsert(replace(current, **changes))

    async def scan(self, page_id: str) -> list[Defect]:
        """
        Scan one page and replace its defects wholesale.

        Raises ScanInProgressError if the page is already scanning, and
        ScanError if the detector fails (the page is then FAILED and keeps
        any defects from an earlier successful scan).
        """
        page = self.store.get(page_id)
        if page.status == ScanStatus.SCANNING:
            raise ScanInProgressError(page_id, f"{page.name} is already being scanned")

        # No await before this point: the SCANNING mark is atomic for the event loop.
        scanning = self.store.upsert(replace(page, status=ScanStatus.SCANNING, last_error=None))
        self._emit("scan_started", {"page_id": page_id, "page_name": page.name})
        await self._publish(scanning)

        try:
            defects = await asyncio.to_thread(_run_detector, self.detector, scanning)
        except Exception as e:  # noqa: BLE001
            msg = str(e) or e.__class__.__name__
            failed = self._transition(page_id, status=ScanStatus.FAILED, last_error=msg)
            self._emit("scan_failed", {"page_id": page_id, "page_name": page.name, "error": msg})
            if failed is not None:
                await self._publish(failed)
            raise ScanError(page_id, msg) from e

        done = self._transition(page_id, status=ScanStatus.COMPLETED, defects=tuple(defects))
        self._emit(
            "scan_completed",
            {"page_id": page_id, "page_name": page.name, "defect_count": len(defects)},
        )
        if done is not None:
            await self._publish(done)
        return defects

    async def scan_all(self, page_ids: Optional[Sequence[str]] = None) -> BatchReport:
        """
        Scan PENDING/FAILED pages one after another, in the given order.

        COMPLETED pages, and pages deleted or scanned elsewhere during the
        pause, are skipped. A failing page is recorded and the queue continues.
        There is no cancellation once started.
        """
        if self._batch_running:
            raise BatchInProgressError("A batch scan is already running")

        order = list(page_ids) if page_ids is not None else [p.id for p in self.store.list()]
        report = BatchReport()
        self._batch_running = True
        self._emit("batch_started", {"page_count": len(order)})
        try:
            for page_id in order:
                if not self._batch_eligible(page_id):
                    report.skipped.append(page_id)
                    continue

                if report.scanned:
                    await self.sleep(self.pause_seconds)
                    # The store may have changed during the pause.
                    if not self._batch_eligible(page_id):
                        report.skipped.append(page_id)
                        continue

                report.scanned.append(page_id)
                try:
                    if self.select:
                        self.select(page_id)
                    await self.scan(page_id)
                except ScanError as e:
                    report.failed[page_id] = e.message
                except DrawcheckError as e:
                    report.failed[page_id] = str(e)
        finally:
            self._batch_running = False
            self._emit(
                "batch_finished",
                {
                    "scanned": len(report.scanned),
                    "failed": len(report.failed),
                    "skipped": len(report.skipped),
                },
            )
        return report
