from __future__ import annotations

import re
from uuid import uuid4


def new_batch_id() -> str:
    # Short random token; pages of one upload share it as their id prefix.
    return uuid4().hex[:9]


def collapse_whitespace(text: str, repl: str = "_") -> str:
    return re.sub(r"\s+", repl, (text or "").strip())
