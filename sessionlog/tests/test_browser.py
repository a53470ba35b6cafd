"""
Log browser tests: page cache, navigation, filter reset, superseded fetches,
retry after a store failure, bounded cache.
"""
from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from sessionlog.errors import StoreUnavailable
from sessionlog.logs.browser import LOAD_ERROR, LogBrowser
from sessionlog.logs.query import LogQueryEngine
from sessionlog.logs.schemas import LogFilters, LogPage
from sessionlog.tests.fakes import T0, seed


@pytest_asyncio.fixture
async def engine(audit_store, clock) -> LogQueryEngine:
    """100 records alternating session / navigation kinds; 10 per page."""
    for i in range(100):
        kind = "login_success" if i % 2 else "page_view"
        await seed(audit_store, clock, T0 + timedelta(seconds=i), kind, payload={"n": i})
    return LogQueryEngine(audit_store, page_size=10, batch_size=20)


async def _open_page(browser: LogBrowser, index: int) -> None:
    await browser.load()
    for _ in range(index):
        await browser.go_next()


class TestNavigation:

    @pytest.mark.asyncio
    async def test_load_and_walk_forward(self, engine):
        browser = LogBrowser(engine)

        await _open_page(browser, 2)

        assert browser.page_index == 2
        assert [e.payload["n"] for e in browser.entries] == list(range(79, 69, -1))
        assert browser.can_go_prev and browser.can_go_next
        assert browser.starts[2] == browser.pages[1].end_cursor

    @pytest.mark.asyncio
    async def test_going_back_reads_cache_only(self, engine, audit_store):
        browser = LogBrowser(engine)
        await _open_page(browser, 3)
        queries = audit_store.queries

        await browser.go_prev()
        await browser.go_prev()
        await browser.go_next()

        assert browser.page_index == 2
        assert audit_store.queries == queries, "cached pages must not be fetched again"

    @pytest.mark.asyncio
    async def test_last_page_stops_forward_navigation(self, engine):
        browser = LogBrowser(engine)
        await _open_page(browser, 9)

        assert browser.current.has_more is False
        assert browser.can_go_next is False
        assert await browser.go_next() is None
        assert browser.page_index == 9

    @pytest.mark.asyncio
    async def test_go_prev_on_first_page(self, engine):
        browser = LogBrowser(engine)
        await browser.load()

        assert browser.can_go_prev is False
        assert await browser.go_prev() is None


class TestFilters:

    @pytest.mark.asyncio
    async def test_category_change_on_page_three_resets_cache(self, engine):
        browser = LogBrowser(engine)
        await _open_page(browser, 3)
        assert browser.cached_pages == 4

        changed = browser.set_filters(category="session")

        assert changed is True
        assert browser.page_index == 0
        assert browser.pages == []
        assert browser.cached_pages == 0

        await browser.load()
        assert {e.kind for e in browser.entries} == {"login_success"}

    @pytest.mark.asyncio
    async def test_unchanged_filters_keep_cache(self, engine):
        browser = LogBrowser(engine, LogFilters(category="session"))
        await _open_page(browser, 1)

        assert browser.set_filters(category="session") is False
        assert browser.page_index == 1

    def test_all_and_blank_mean_no_filter(self):
        browser = LogBrowser(MagicMock(), LogFilters(category="session", account="agent.smith"))

        browser.set_filters(category="all", account="  ")

        assert browser.filters.category is None
        assert browser.filters.account is None

    def test_kind_outside_category_is_dropped(self):
        browser = LogBrowser(MagicMock(), LogFilters(kind="page_view"))

        browser.set_filters(category="session")

        assert browser.filters.category == "session"
        assert browser.filters.kind is None

    @pytest.mark.asyncio
    async def test_result_for_superseded_filters_is_discarded(self):
        browser = LogBrowser(MagicMock())

        async def fetch_and_change_filters(filters, cursor):
            browser.set_filters(kind="dossier_view")
            return LogPage(entries=[], has_more=False)

        browser.engine.fetch_page = AsyncMock(side_effect=fetch_and_change_filters)

        assert await browser.load() is None
        assert browser.pages == []
        assert browser.error is None


class TestFailures:

    @pytest.mark.asyncio
    async def test_store_failure_sets_error_and_retry_recovers(self):
        page = LogPage(entries=[], has_more=False)
        engine = MagicMock()
        engine.fetch_page = AsyncMock(side_effect=[StoreUnavailable("connection refused"), page])
        browser = LogBrowser(engine)

        assert await browser.load() is None
        assert browser.error == LOAD_ERROR
        assert browser.loading is False

        assert await browser.retry() is page
        assert browser.error is None
        assert browser.current is page
        assert engine.fetch_page.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_without_failure_is_a_noop(self, engine):
        browser = LogBrowser(engine)
        await browser.load()

        assert await browser.retry() is None


class TestBoundedCache:

    def test_cache_must_hold_neighbours(self):
        with pytest.raises(ValueError):
            LogBrowser(MagicMock(), max_cached_pages=2)

    @pytest.mark.asyncio
    async def test_old_pages_are_evicted_and_refetched(self, engine, audit_store):
        browser = LogBrowser(engine, max_cached_pages=3)
        await browser.load()
        first_ids = [e.id for e in browser.entries]
        for _ in range(4):
            await browser.go_next()

        assert browser.cached_pages <= 3
        assert browser.pages[0] is None

        for _ in range(3):
            await browser.go_prev()
        queries = audit_store.queries
        await browser.go_prev()

        assert browser.page_index == 0
        assert [e.id for e in browser.entries] == first_ids
        assert audit_store.queries > queries
