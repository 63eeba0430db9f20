"""
Defect normalization and the normalized-coordinate contract.

Detector output is untrusted. A bad entry degrades (default fields, no box)
instead of discarding the rest of the scan, and an unparseable response is
read as "no defects".

All marker placement, in the interactive preview and in exports alike, goes
through to_pixel_rect().
"""
from __future__ import annotations

import json
import math
import re
from dataclasses import replace
from typing import Any, Iterable, Optional

from .models import BOX_SCALE, Defect, NormalizedBox, PixelRect, Severity


UNKNOWN_EN = "Unknown error"
UNKNOWN_VN = "Lỗi không xác định"
DEFAULT_SEVERITY: Severity = "warning"

_SEVERITIES = ("critical", "warning", "info")
_RE_FENCE_OPEN = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*")
_RE_FENCE_CLOSE = re.compile(r"\s*```\s*$")


def strip_code_fence(text: str) -> str:
    t = (text or "").strip()
    t = _RE_FENCE_OPEN.sub("", t, count=1)
    t = _RE_FENCE_CLOSE.sub("", t, count=1)
    return t.strip()


def extract_raw_defects(text: str) -> list[Any]:
    """
    Pull the raw `errors` array out of a detector response text.

    Returns [] when the text is not JSON, not an object, or has no `errors` array.
    """
    body = strip_code_fence(text)
    if not body:
        return []
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return []
    if not isinstance(data, dict):
        return []
    errors = data.get("errors")
    if not isinstance(errors, list):
        return []
    return errors


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool) and math.isfinite(v)


def parse_box(value: Any) -> Optional[NormalizedBox]:
    """[ymin, xmin, ymax, xmax] -> NormalizedBox; any other shape -> None."""
    if not isinstance(value, (list, tuple)) or len(value) != 4:
        return None
    if not all(_is_number(v) for v in value):
        return None
    y_min, x_min, y_max, x_max = value
    return NormalizedBox(y_min=y_min, x_min=x_min, y_max=y_max, x_max=x_max)


def _parse_id(value: Any, position: int) -> int:
    if isinstance(value, bool):
        return position
    if isinstance(value, int):
        return value if value > 0 else position
    if isinstance(value, float) and value.is_integer() and value > 0:
        return int(value)
    if isinstance(value, str) and value.strip().isdigit() and int(value.strip()) > 0:
        return int(value.strip())
    # Missing or unusable id: fall back to the entry's 1-based position.
    return position


def _parse_text(value: Any, fallback: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def _parse_severity(value: Any) -> Severity:
    if isinstance(value, str):
        low = value.strip().lower()
        if low in _SEVERITIES:
            return low  # type: ignore[return-value]
    return DEFAULT_SEVERITY


def normalize_defect(raw: Any, position: int) -> Optional[Defect]:
    """Normalize one raw entry (1-based `position` in the response). Non-objects are dropped."""
    if not isinstance(raw, dict):
        return None
    return Defect(
        id=_parse_id(raw.get("id"), position),
        description_en=_parse_text(raw.get("description_en"), UNKNOWN_EN),
        description_vn=_parse_text(raw.get("description_vn"), UNKNOWN_VN),
        severity=_parse_severity(raw.get("type")),
        box=parse_box(raw.get("box_2d")),
    )


def normalize_defects(raw_entries: Iterable[Any]) -> list[Defect]:
    """
    Normalize a whole `errors` array, keeping ids unique within the page.

    An id already taken by an earlier entry moves to the next free integer
    above it, so markers and highlights never collide.
    """
    out: list[Defect] = []
    used: set[int] = set()
    for pos, raw in enumerate(raw_entries, start=1):
        d = normalize_defect(raw, pos)
        if d is None:
            continue
        if d.id in used:
            free = d.id + 1
            while free in used:
                free += 1
            d = replace(d, id=free)
        used.add(d.id)
        out.append(d)
    return out


def parse_detector_response(text: str) -> list[Defect]:
    return normalize_defects(extract_raw_defects(text))


def to_pixel_rect(box: NormalizedBox, width: float, height: float) -> PixelRect:
    """
    Map a 0..1000 box onto a width x height raster.

    Malformed boxes (inverted, or outside 0..1000) map to a zero-size rect at
    the clamped origin, which renderers skip.
    """
    if not box.is_well_formed:
        x = min(max(box.x_min, 0), BOX_SCALE) / BOX_SCALE * width
        y = min(max(box.y_min, 0), BOX_SCALE) / BOX_SCALE * height
        return PixelRect(x=x, y=y, w=0.0, h=0.0)
    return PixelRect(
        x=box.x_min / BOX_SCALE * width,
        y=box.y_min / BOX_SCALE * height,
        w=(box.x_max - box.x_min) / BOX_SCALE * width,
        h=(box.y_max - box.y_min) / BOX_SCALE * height,
    )
