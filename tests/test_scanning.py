from __future__ import annotations

import asyncio
import threading
from dataclasses import replace

import pytest

from conftest import FakeDetector, make_page, raw_defect
from drawcheck.core.errors import BatchInProgressError, ScanError, ScanInProgressError
from drawcheck.core.models import Defect, ScanStatus
from drawcheck.core.scanning import ScanCoordinator
from drawcheck.core.store import PageStore


def _coordinator(store: PageStore, detector: FakeDetector, **kwargs) -> ScanCoordinator:
    kwargs.setdefault("pause_seconds", 0.0)
    return ScanCoordinator(store=store, detector=detector, **kwargs)


def test_successful_scan_replaces_defects_and_completes():
    store = PageStore()
    old = Defect(id=1, description_en="old", description_vn="cũ")
    store.extend([make_page("p1", ScanStatus.COMPLETED, defects=(old,))])
    detector = FakeDetector([[raw_defect(1), raw_defect(2, box=None, kind="critical")]])

    defects = asyncio.run(_coordinator(store, detector).scan("p1"))

    page = store.get("p1")
    assert page.status == ScanStatus.COMPLETED
    assert page.defects == tuple(defects)
    assert [d.description_en for d in page.defects] == ["Issue 1", "Issue 2"]
    assert page.defects[1].box is None and page.defects[1].severity == "critical"
    assert detector.calls[0][1] == "image/png"


def test_scanning_state_is_visible_before_detector_runs():
    store = PageStore()
    store.extend([make_page("p1")])
    seen: list[ScanStatus] = []

    async def on_update(page):
        seen.append(page.status)

    asyncio.run(_coordinator(store, FakeDetector([[]]), on_update=on_update).scan("p1"))
    assert seen == [ScanStatus.SCANNING, ScanStatus.COMPLETED]


def test_failed_rescan_keeps_previous_defects():
    store = PageStore()
    prior = (Defect(id=1, description_en="a", description_vn="b"),)
    store.extend([make_page("p1", ScanStatus.COMPLETED, defects=prior)])
    coord = _coordinator(store, FakeDetector([RuntimeError("quota exceeded")]))

    with pytest.raises(ScanError) as exc:
        asyncio.run(coord.scan("p1"))

    page = store.get("p1")
    assert exc.value.page_id == "p1"
    assert page.status == ScanStatus.FAILED
    assert page.last_error == "quota exceeded"
    assert page.defects == prior


def test_failed_page_can_be_rescanned():
    store = PageStore()
    store.extend([make_page("p1", ScanStatus.FAILED, last_error="boom")])

    asyncio.run(_coordinator(store, FakeDetector([[raw_defect(1)]])).scan("p1"))

    page = store.get("p1")
    assert page.status == ScanStatus.COMPLETED
    assert page.last_error is None
    assert len(page.defects) == 1


def test_page_already_scanning_is_not_scanned_twice():
    store = PageStore()
    store.extend([make_page("p1")])
    gate = threading.Event()
    detector = FakeDetector([[raw_defect(1)], [raw_defect(2)]], gate=gate)
    coord = _coordinator(store, detector)

    async def main():
        task = asyncio.create_task(coord.scan("p1"))
        for _ in range(100):
            await asyncio.sleep(0)
            if store.get("p1").status == ScanStatus.SCANNING:
                break
        assert store.get("p1").status == ScanStatus.SCANNING
        with pytest.raises(ScanInProgressError):
            await coord.scan("p1")
        gate.set()
        return await task

    defects = asyncio.run(main())
    assert len(detector.calls) == 1
    assert [d.id for d in defects] == [1]


def test_scan_all_skips_completed_and_keeps_order():
    store = PageStore()
    completed = make_page("p1", ScanStatus.COMPLETED, defects=(Defect(1, "x", "y"),))
    store.extend([make_page("p0"), completed, make_page("p2", ScanStatus.FAILED)])
    detector = FakeDetector([[raw_defect(1)], [raw_defect(1), raw_defect(2)]])
    selected: list[str] = []

    report = asyncio.run(_coordinator(store, detector, select=selected.append).scan_all())

    assert report.scanned == ["p0", "p2"]
    assert report.skipped == ["p1"]
    assert report.failed == {}
    assert selected == ["p0", "p2"]
    assert len(detector.calls) == 2
    assert store.get("p1") is completed
    assert len(store.get("p0").defects) == 1
    assert len(store.get("p2").defects) == 2


def test_scan_all_continues_after_a_failure():
    store = PageStore()
    store.extend([make_page("a"), make_page("b"), make_page("c")])
    detector = FakeDetector([[raw_defect(1)], ValueError("bad gateway"), [raw_defect(1)]])

    report = asyncio.run(_coordinator(store, detector).scan_all())

    assert report.scanned == ["a", "b", "c"]
    assert report.failed == {"b": "bad gateway"}
    assert report.succeeded == ["a", "c"]
    assert [store.get(x).status for x in "abc"] == [
        ScanStatus.COMPLETED,
        ScanStatus.FAILED,
        ScanStatus.COMPLETED,
    ]


def test_scan_all_pauses_between_pages_and_resolves_each_first():
    store = PageStore()
    store.extend([make_page("a"), make_page("b"), make_page("c")])
    log: list[str] = []

    async def fake_sleep(seconds: float) -> None:
        statuses = "".join(store.get(x).status.value[0] for x in "abc")
        log.append(f"pause {seconds} {statuses}")

    coord = _coordinator(store, FakeDetector([[], [], []]), pause_seconds=0.5, sleep=fake_sleep)
    asyncio.run(coord.scan_all())

    # c = completed, p = pending
    assert log == ["pause 0.5 cpp", "pause 0.5 ccp"]


def test_batch_flag_is_set_only_while_running():
    store = PageStore()
    store.extend([make_page("a")])
    coord = _coordinator(store, FakeDetector([[]]))
    flags: list[bool] = []

    async def on_update(page):
        flags.append(coord.batch_in_progress)

    coord.on_update = on_update
    assert not coord.batch_in_progress
    asyncio.run(coord.scan_all())
    assert flags and all(flags)
    assert not coord.batch_in_progress


def test_second_batch_is_rejected_while_first_runs():
    store = PageStore()
    store.extend([make_page("a")])
    gate = threading.Event()
    coord = _coordinator(store, FakeDetector([[]], gate=gate))

    async def main():
        first = asyncio.create_task(coord.scan_all())
        for _ in range(100):
            await asyncio.sleep(0)
            if coord.batch_in_progress:
                break
        with pytest.raises(BatchInProgressError):
            await coord.scan_all()
        gate.set()
        return await first

    report = asyncio.run(main())
    assert report.scanned == ["a"]


def test_events_are_emitted():
    store = PageStore()
    store.extend([make_page("a"), make_page("b")])
    events: list[str] = []
    coord = _coordinator(
        store,
        FakeDetector([[raw_defect(1)], RuntimeError("x")]),
        on_event=lambda name, payload: events.append(name),
    )
    asyncio.run(coord.scan_all())
    assert events == [
        "batch_started",
        "scan_started",
        "scan_completed",
        "scan_started",
        "scan_failed",
        "batch_finished",
    ]


def test_page_deleted_during_pause_is_skipped_and_batch_finishes():
    store = PageStore()
    store.extend([make_page("a"), make_page("b"), make_page("c")])

    async def deleting_sleep(seconds: float) -> None:
        if "b" in store:
            store.delete("b")

    detector = FakeDetector([[raw_defect(1)], [raw_defect(1)]])
    coord = _coordinator(store, detector, sleep=deleting_sleep)

    report = asyncio.run(coord.scan_all())

    assert report.scanned == ["a", "c"]
    assert report.skipped == ["b"]
    assert report.failed == {}
    assert store.get("c").status == ScanStatus.COMPLETED
    assert len(detector.calls) == 2
    assert not coord.batch_in_progress


def test_page_that_stops_being_eligible_during_pause_is_skipped():
    store = PageStore()
    store.extend([make_page("a"), make_page("b")])

    async def completing_sleep(seconds: float) -> None:
        store.upsert(replace(store.get("b"), status=ScanStatus.COMPLETED))

    coord = _coordinator(store, FakeDetector([[]]), sleep=completing_sleep)
    report = asyncio.run(coord.scan_all())

    assert report.scanned == ["a"]
    assert report.skipped == ["b"]
