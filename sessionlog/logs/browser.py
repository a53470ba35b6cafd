"""
browser.py - Reviewer-side pagination state over LogQueryEngine.

pages[i] is page i as first fetched; starts[i] is the cursor page i was
fetched from (starts[i + 1] == pages[i].end_cursor). Moving forward reuses a
cached page or fetches from the current page's end cursor; moving back only
reads the cache. Any filter change drops the cache and returns to page 0.

A fetch records the filter fingerprint it started with; if the filters have
changed by the time it completes, its result is discarded.

max_cached_pages (None = unbounded) evicts least recently used pages that are
not adjacent to the current one; an evicted page is fetched again from its
start cursor when revisited.
"""
from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional

from sessionlog.activity.catalog import ALL, category_of
from sessionlog.errors import StoreUnavailable
from sessionlog.logs.query import LogQueryEngine
from sessionlog.logs.schemas import LogCursor, LogFilters, LogPage

logger = logging.getLogger(__name__)

LOAD_ERROR = "Could not load logs."


def _normalize(changes: dict[str, Any]) -> dict[str, Any]:
    normalized = {}
    for key, value in changes.items():
        if isinstance(value, str):
            value = value.strip()
            if value == "" or value == ALL:
                value = None
        normalized[key] = value
    return normalized


class LogBrowser:
    def __init__(
        self,
        engine: LogQueryEngine,
        filters: Optional[LogFilters] = None,
        *,
        max_cached_pages: Optional[int] = None,
    ) -> None:
        if max_cached_pages is not None and max_cached_pages < 3:
            raise ValueError("max_cached_pages must keep at least the current page and its neighbours")
        self.engine = engine
        self._filters = filters or LogFilters()
        self.max_cached_pages = max_cached_pages
        self.pages: list[Optional[LogPage]] = []
        self.starts: list[Optional[LogCursor]] = []
        self.page_index = 0
        self.loading = False
        self.error: Optional[str] = None
        self._retry: Optional[Callable[[], Awaitable[Optional[LogPage]]]] = None
        self._recent: OrderedDict[int, None] = OrderedDict()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def filters(self) -> LogFilters:
        return self._filters

    @property
    def current(self) -> Optional[LogPage]:
        if self.page_index < len(self.pages):
            return self.pages[self.page_index]
        return None

    @property
    def entries(self) -> list:
        page = self.current
        return list(page.entries) if page else []

    @property
    def can_go_prev(self) -> bool:
        return self.page_index > 0

    @property
    def can_go_next(self) -> bool:
        if self.page_index + 1 < len(self.pages):
            return True
        page = self.current
        return bool(page and page.has_more and page.end_cursor)

    @property
    def cached_pages(self) -> int:
        return sum(1 for page in self.pages if page is not None)

    def seen_kinds(self) -> set[str]:
        return {entry.kind for page in self.pages if page for entry in page.entries}

    def set_filters(self, **changes: Any) -> bool:
        """
        Apply filter changes. A kind that does not belong to the (new) category
        is dropped. Returns True when the filters changed (cache reset).
        """
        updated = self._filters.model_copy(update=_normalize(changes))
        if updated.category and updated.kind and category_of(updated.kind) != updated.category:
            updated = updated.model_copy(update={"kind": None})
        if updated == self._filters:
            return False
        self._filters = updated
        self.reset()
        return True

    def reset(self) -> None:
        self.pages = []
        self.starts = []
        self.page_index = 0
        self.error = None
        self._retry = None
        self._recent.clear()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def load(self) -> Optional[LogPage]:
        """(Re)load page 0 for the current filters."""
        self.reset()
        page = await self._fetch(None, lambda: self.load())
        if page is None:
            return None
        self._store(0, None, page)
        self.page_index = 0
        return page

    async def go_next(self) -> Optional[LogPage]:
        current = self.current
        if current is None:
            return None
        target = self.page_index + 1
        if target < len(self.pages) and self.pages[target] is not None:
            self.page_index = target
            self._touch(target)
            self._evict()
            return self.pages[target]
        if not current.has_more or current.end_cursor is None:
            return None
        start = current.end_cursor
        page = await self._fetch(start, lambda: self.go_next())
        if page is None:
            return None
        self._store(target, start, page)
        self.page_index = target
        self._evict()
        return page

    async def go_prev(self) -> Optional[LogPage]:
        if self.page_index == 0:
            return None
        target = self.page_index - 1
        page = self.pages[target]
        if page is None:
            # Only reachable with max_cached_pages set
            page = await self._fetch(self.starts[target], lambda: self.go_prev())
            if page is None:
                return None
            self._store(target, self.starts[target], page)
        self.page_index = target
        self._touch(target)
        self._evict()
        return page

    async def retry(self) -> Optional[LogPage]:
        """Repeat the fetch that last failed (same cursor, same filters)."""
        if self._retry is None:
            return None
        action = self._retry
        self._retry = None
        return await action()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetch(
        self,
        cursor: Optional[LogCursor],
        retry: Callable[[], Awaitable[Optional[LogPage]]],
    ) -> Optional[LogPage]:
        filters = self._filters
        fingerprint = filters.fingerprint()
        self.loading = True
        self.error = None
        try:
            page = await self.engine.fetch_page(filters, cursor)
        except StoreUnavailable as exc:
            if self._filters.fingerprint() == fingerprint:
                logger.error("Could not load log page: %s", exc)
                self.error = LOAD_ERROR
                self._retry = retry
            return None
        finally:
            self.loading = False
        if self._filters.fingerprint() != fingerprint:
            logger.debug("Discarding log page fetched for superseded filters")
            return None
        return page

    def _store(self, index: int, start: Optional[LogCursor], page: LogPage) -> None:
        while len(self.pages) <= index:
            self.pages.append(None)
            self.starts.append(None)
        self.pages[index] = page
        self.starts[index] = start
        self._touch(index)

    def _touch(self, index: int) -> None:
        self._recent[index] = None
        self._recent.move_to_end(index)

    def _evict(self) -> None:
        if self.max_cached_pages is None:
            return
        keep = {self.page_index - 1, self.page_index, self.page_index + 1}
        for index in list(self._recent):
            if self.cached_pages <= self.max_cached_pages:
                break
            if index in keep:
                continue
            self.pages[index] = None
            del self._recent[index]
            logger.debug("Evicted cached log page index=%d", index)
