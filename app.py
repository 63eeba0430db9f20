"""
Chainlit UI: construction drawing QA/QC review.

Upload drawings (PNG/JPG/PDF) as message attachments, scan them with the
vision model, inspect the markers and download a marked-up JPEG.

Run:
    python -m chainlit run app.py -w
"""
from __future__ import annotations

import re
from pathlib import Path

import chainlit as cl

from drawcheck.config import load_settings
from drawcheck.core.errors import (
    BatchInProgressError,
    DrawcheckError,
    ExportPreconditionError,
    ScanError,
    ScanInProgressError,
)
from drawcheck.core.ingestion import UploadedDocument
from drawcheck.core.models import Page, ScanStatus
from drawcheck.core.session import ReviewSession


# ── Helpers ──────────────────────────────────────────────────────────────────

_STATUS_LABEL = {
    "en": {
        ScanStatus.PENDING: "Pending",
        ScanStatus.SCANNING: "Scanning...",
        ScanStatus.COMPLETED: "Completed",
        ScanStatus.FAILED: "Failed",
    },
    "vi": {
        ScanStatus.PENDING: "Chờ quét",
        ScanStatus.SCANNING: "Đang quét...",
        ScanStatus.COMPLETED: "Hoàn thành",
        ScanStatus.FAILED: "Lỗi",
    },
}

_TEXT = {
    "en": {
        "no_pages": "No drawings uploaded. Attach a PDF/PNG/JPG to start.",
        "no_selection": "Select or upload a drawing to start checking (`/use <n>`).",
        "no_defects": "No errors detected yet. Run `/scan`.",
        "comments": "Review Comments",
        "batch_running": "A batch scan is already running.",
        "batch_done": "Batch scan finished",
        "critical": "CRITICAL",
    },
    "vi": {
        "no_pages": "Chưa có bản vẽ. Hãy đính kèm PDF/PNG/JPG để bắt đầu.",
        "no_selection": "Chọn hoặc tải lên bản vẽ để bắt đầu kiểm tra (`/use <n>`).",
        "no_defects": "Chưa phát hiện lỗi. Chạy `/scan`.",
        "comments": "Ghi chú rà soát",
        "batch_running": "Đang quét hàng loạt.",
        "batch_done": "Đã quét xong",
        "critical": "NGHIÊM TRỌNG",
    },
}


def _t(session: ReviewSession, key: str) -> str:
    return _TEXT[session.language][key]


def _get_session() -> ReviewSession:
    """Get or lazily create the review session stored in the user session."""
    session: ReviewSession | None = cl.user_session.get("review")
    if session is None:
        settings = load_settings()
        settings.data_dir.mkdir(parents=True, exist_ok=True)
        session = ReviewSession.from_settings(settings)
        session.set_update_hook(_on_page_update)
        cl.user_session.set("review", session)
    return session


def _extract_uploaded_file_info(elem) -> tuple[str | None, str, str | None]:
    """Uploaded elements come as Element objects or plain dicts, depending on the Chainlit version."""
    path = getattr(elem, "path", None)
    name = getattr(elem, "name", None)
    mime = getattr(elem, "mime", None)
    if isinstance(elem, dict):
        path = path or elem.get("path")
        name = name or elem.get("name")
        mime = mime or elem.get("mime")
    return path, (name or "file"), mime


def _format_standard_error(title: str, err: Exception | str) -> str:
    detail = re.sub(r"\s+", " ", str(err or "")).strip() or "Unknown error"
    if len(detail) > 320:
        detail = detail[:320] + "..."
    return (
        f"**{title}**\n"
        f"- The operation could not be completed.\n"
        f"- Detail: `{detail}`\n"
        f"- Use `Retry` to run the same request again."
    )


async def _send_standard_error(title: str, err: Exception | str, retry_payload: dict | None = None) -> None:
    actions = None
    if retry_payload:
        actions = [
            cl.Action(
                name="retry_scan",
                payload=retry_payload,
                label="Retry",
                tooltip="Run the same scan again",
                icon="refresh-cw",
            )
        ]
    await cl.Message(content=_format_standard_error(title, err), actions=actions).send()


def _page_line(session: ReviewSession, pos: int, page: Page) -> str:
    marker = "->" if session.selected_page and session.selected_page.id == page.id else "-"
    status = _STATUS_LABEL[session.language][page.status]
    count = f" ({len(page.defects)})" if page.status == ScanStatus.COMPLETED else ""
    return f"{marker} `{pos}` {page.name} — {status}{count}"


async def _update_pages_sidebar(session: ReviewSession | None = None) -> None:
    """
    Render the page list with scan status in the left sidebar.
    UI-only helper; does not affect scan state.
    """
    try:
        if session is None:
            session = cl.user_session.get("review")
        pages = session.pages if session else []

        lines = [
            f"**Language**: `{session.language if session else 'en'}`",
            f"**Batch scan**: `{'running' if session and session.batch_in_progress else 'idle'}`",
            "",
            "**Drawings**",
        ]
        if pages:
            for pos, page in enumerate(pages, start=1):
                lines.append(_page_line(session, pos, page))
        else:
            lines.append("- (none)")

        lines.extend(
            [
                "",
                "**Commands**",
                "- Select page: `/use <n>`  Delete: `/delete <n>`",
                "- Scan: `/scan`  Scan all: `/scanall`",
                "- Highlight defect: `/defect <id>`",
                "- Zoom: `/zoom in|out|reset`  Language: `/lang en|vi`",
                "- Export marked image: `/export`",
            ]
        )

        await cl.ElementSidebar.set_title("Drawing Checking")
        await cl.ElementSidebar.set_elements(
            [cl.Text(name="drawings", content="\n".join(lines), display="inline")]
        )
    except Exception:
        # Sidebar updates are best-effort and must not break the review flow.
        return


def _render_comments(session: ReviewSession, page: Page) -> str:
    lines = [f"**{page.name}** — {_STATUS_LABEL[session.language][page.status]}"]
    if page.status == ScanStatus.FAILED and page.last_error:
        lines.append(f"> {page.last_error}")
    lines.extend(["", f"**{_t(session, 'comments')}** ({len(page.defects)})"])
    if not page.defects:
        lines.append(_t(session, "no_defects"))
    for d in page.defects:
        active = "**>>**" if session.active_defect_id == d.id else ""
        tag = f" `{_t(session, 'critical')}`" if d.severity == "critical" else ""
        where = "" if d.box is not None else " _(no location)_"
        lines.append(f"- {active}`{d.id}` {session.describe(d)}{tag}{where}")
    lines.append(f"\nZoom: {session.viewport.percent}%")
    return "\n".join(lines)


def _viewer_actions() -> list[cl.Action]:
    return [
        cl.Action(name="scan_page", payload={}, label="AI Scan", icon="scan-search"),
        cl.Action(name="scan_all", payload={}, label="AI Scan All", icon="wand-sparkles"),
        cl.Action(name="zoom", payload={"op": "out"}, label="-", icon="zoom-out"),
        cl.Action(name="zoom", payload={"op": "reset"}, label="Reset", icon="maximize"),
        cl.Action(name="zoom", payload={"op": "in"}, label="+", icon="zoom-in"),
        cl.Action(name="export", payload={}, label="Export", icon="download"),
    ]


async def _show_viewer(session: ReviewSession) -> None:
    page = session.selected_page
    if page is None:
        key = "no_pages" if not session.pages else "no_selection"
        await cl.Message(content=_t(session, key)).send()
        return
    preview = await cl.make_async(session.render_preview)()
    elements = []
    if preview:
        elements.append(cl.Image(name=page.name, content=preview, display="inline", mime="image/png"))
    await cl.Message(
        content=_render_comments(session, page),
        elements=elements,
        actions=_viewer_actions(),
    ).send()


async def _on_page_update(page: Page) -> None:
    """Scan lifecycle hook: reflect status changes as soon as they happen."""
    await _update_pages_sidebar()


async def _process_uploads(session: ReviewSession, elements) -> None:
    docs: list[UploadedDocument] = []
    for elem in elements:
        file_path, file_name, mime = _extract_uploaded_file_info(elem)
        if not file_path:
            continue
        try:
            docs.append(UploadedDocument.from_path(Path(file_path), display_name=file_name, mime_type=mime))
        except OSError as e:
            await _send_standard_error(f"Could not read {file_name}", e)

    if not docs:
        await cl.Message(
            content="An upload was detected but its file path could not be read. Please attach the file again."
        ).send()
        return

    progress = cl.Message(content=f"Processing {len(docs)} file(s)...")
    await progress.send()
    report = await session.add_documents(docs)

    lines = [f"Added **{len(report.pages)}** page(s)."]
    for err in report.failures:
        lines.append(f"- **{err.document_name}**: {err.message}")
    progress.content = "\n".join(lines)
    await progress.update()


async def _scan_selected(session: ReviewSession, page_id: str | None = None) -> None:
    page = session.get_page(page_id) if page_id else session.selected_page
    if page is None:
        await cl.Message(content=_t(session, "no_selection")).send()
        return
    try:
        async with cl.Step(name=f"Scanning {page.name}"):
            await session.scan_page(page.id)
    except ScanInProgressError as e:
        await cl.Message(content=str(e)).send()
        return
    except ScanError as e:
        await _send_standard_error(
            "Failed to call the vision model. Check your network or API key.",
            e,
            retry_payload={"page_id": page.id},
        )
    await _update_pages_sidebar(session)
    await _show_viewer(session)


async def _scan_all(session: ReviewSession) -> None:
    if session.batch_in_progress:
        await cl.Message(content=_t(session, "batch_running")).send()
        return
    try:
        report = await session.scan_all()
    except BatchInProgressError:
        await cl.Message(content=_t(session, "batch_running")).send()
        return

    lines = [
        f"**{_t(session, 'batch_done')}**",
        f"- scanned: {len(report.scanned)}",
        f"- failed: {len(report.failed)}",
        f"- skipped: {len(report.skipped)}",
    ]
    for pid, msg in report.failed.items():
        page = next((p for p in session.pages if p.id == pid), None)
        lines.append(f"  - {page.name if page else pid}: `{msg[:160]}`")
    await cl.Message(content="\n".join(lines)).send()
    await _update_pages_sidebar(session)
    await _show_viewer(session)


async def _export(session: ReviewSession) -> None:
    try:
        artifact = await cl.make_async(session.export_selected)()
    except ExportPreconditionError as e:
        await cl.Message(content=str(e)).send()
        return
    legend = "\n".join(f"- {line}" for line in artifact.legend)
    await cl.Message(
        content=f"**{artifact.filename}**\n{legend}",
        elements=[cl.File(name=artifact.filename, content=artifact.data, mime=artifact.mime_type, display="inline")],
    ).send()


def _parse_position(arg: str) -> int | None:
    arg = (arg or "").strip()
    return int(arg) if arg.isdigit() else None


# ── Lifecycle hooks ──────────────────────────────────────────────────────────

@cl.on_chat_start
async def on_chat_start():
    session = _get_session()
    await _update_pages_sidebar(session)


@cl.action_callback("scan_page")
async def on_scan_page(action: cl.Action):
    await _scan_selected(_get_session())


@cl.action_callback("retry_scan")
async def on_retry_scan(action: cl.Action):
    payload = action.payload or {}
    try:
        await action.remove()
    except Exception:
        pass
    session = _get_session()
    page_id = payload.get("page_id")
    if page_id and not any(p.id == page_id for p in session.pages):
        await cl.Message(content="That drawing was removed.").send()
        return
    await _scan_selected(session, page_id)


@cl.action_callback("scan_all")
async def on_scan_all(action: cl.Action):
    await _scan_all(_get_session())


@cl.action_callback("zoom")
async def on_zoom(action: cl.Action):
    session = _get_session()
    op = (action.payload or {}).get("op")
    if op == "in":
        session.viewport.zoom_in()
    elif op == "out":
        session.viewport.zoom_out()
    else:
        session.viewport.reset()
    await _show_viewer(session)


@cl.action_callback("export")
async def on_export(action: cl.Action):
    await _export(_get_session())


@cl.on_message
async def on_message(message: cl.Message):
    session = _get_session()

    # Check for file attachments in the message
    if message.elements:
        await _process_uploads(session, message.elements)
        await _update_pages_sidebar(session)
        await _show_viewer(session)

    query = (message.content or "").strip()
    if not query:
        return
    cmd, _, arg = query.partition(" ")
    cmd = cmd.lower()

    try:
        if cmd == "/list":
            lines = [_page_line(session, i, p) for i, p in enumerate(session.pages, start=1)]
            await cl.Message(content="\n".join(lines) or _t(session, "no_pages")).send()
        elif cmd == "/use":
            pos = _parse_position(arg)
            if pos is None:
                await cl.Message(content="Usage: `/use <n>`").send()
                return
            session.select_page(session.page_at(pos).id)
            await _update_pages_sidebar(session)
            await _show_viewer(session)
        elif cmd == "/delete":
            pos = _parse_position(arg)
            if pos is None:
                await cl.Message(content="Usage: `/delete <n>`").send()
                return
            removed = session.delete_page(session.page_at(pos).id)
            await cl.Message(content=f"Removed **{removed.name}**.").send()
            await _update_pages_sidebar(session)
        elif cmd == "/scan":
            await _scan_selected(session)
        elif cmd == "/scanall":
            await _scan_all(session)
        elif cmd == "/defect":
            pos = _parse_position(arg)
            session.focus_defect(pos)
            await _show_viewer(session)
        elif cmd == "/zoom":
            op = arg.strip().lower()
            if op == "in":
                session.viewport.zoom_in()
            elif op == "out":
                session.viewport.zoom_out()
            else:
                session.viewport.reset()
            await _show_viewer(session)
        elif cmd == "/lang":
            session.set_language(arg.strip().lower())
            await _update_pages_sidebar(session)
            await _show_viewer(session)
        elif cmd == "/export":
            await _export(session)
        elif not message.elements:
            await cl.Message(
                content="Attach a drawing (PDF/PNG/JPG) or use a command: `/list`, `/scan`, `/scanall`, `/export`."
            ).send()
    except (DrawcheckError, KeyError) as e:
        await _send_standard_error("Request failed", e)
