from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from .errors import PageNotFoundError
from .models import Page


@dataclass
class PageStore:
    """
    Owns the ordered page collection and the focused page.

    Pages are immutable; every mutation swaps in a new mapping, so a reader
    holding the previous snapshot never sees a half-updated page.
    """

    _pages: Mapping[str, Page] = field(default_factory=lambda: MappingProxyType({}))
    _selected_id: Optional[str] = None

    def list(self) -> list[Page]:
        return list(self._pages.values())

    def get(self, page_id: str) -> Page:
        page = self._pages.get(page_id)
        if page is None:
            raise PageNotFoundError(page_id)
        return page

    def find(self, page_id: str) -> Optional[Page]:
        return self._pages.get(page_id)

    def __contains__(self, page_id: object) -> bool:
        return page_id in self._pages

    def __len__(self) -> int:
        return len(self._pages)

    def upsert(self, page: Page) -> Page:
        """Replace the page with the same id in place, or append it."""
        nxt = dict(self._pages)
        nxt[page.id] = page
        self._pages = MappingProxyType(nxt)
        return page

    def extend(self, pages: Iterable[Page]) -> list[Page]:
        """Append new pages; focus the first one if nothing was focused."""
        added = list(pages)
        if not added:
            return added
        nxt = dict(self._pages)
        for p in added:
            nxt[p.id] = p
        self._pages = MappingProxyType(nxt)
        if self._selected_id is None:
            self._selected_id = added[0].id
        return added

    def delete(self, page_id: str) -> Page:
        page = self.get(page_id)
        nxt = {pid: p for pid, p in self._pages.items() if pid != page_id}
        self._pages = MappingProxyType(nxt)
        if self._selected_id == page_id:
            self._selected_id = None
        return page

    @property
    def selected_id(self) -> Optional[str]:
        return self._selected_id

    @property
    def selected(self) -> Optional[Page]:
        if self._selected_id is None:
            return None
        return self._pages.get(self._selected_id)

    def select(self, page_id: Optional[str]) -> bool:
        """Focus a page (or clear focus with None). Returns True if focus changed."""
        if page_id is not None and page_id not in self._pages:
            raise PageNotFoundError(page_id)
        changed = page_id != self._selected_id
        self._selected_id = page_id
        return changed
