"""
query.py - Log query & pagination engine.

fetch_page() builds one display page of at most page_size records in
descending time order. The store can only filter on subject and time range, so
category, kind and fuzzy account matching happen here, after fetching:

    collected = []
    loop until the page is full or the store is exhausted:
        pull one batch (batch_size > page_size) strictly after the cursor
        walk the batch, advancing the cursor over EVERY raw record
        keep the records that pass the in-memory filters
        stop walking as soon as the page is full
        a short (or empty) batch means the store is exhausted

A batch in which nothing matches never ends the loop; only a full page or an
exhausted store does. The cursor stops at the raw record that filled the page,
so the next page starts right after it and no match is ever skipped.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from sessionlog.activity.catalog import category_of
from sessionlog.activity.schemas import LogEntry
from sessionlog.config import settings
from sessionlog.logs.people import PeopleDirectory, login_candidates, normalize_login, uid_candidates
from sessionlog.logs.schemas import LogCursor, LogFilters, LogPage
from sessionlog.store import AuditLogStore

logger = logging.getLogger(__name__)

Predicate = Callable[[LogEntry], bool]


@dataclass(frozen=True)
class AccountMatch:
    """Resolved account selector: accepted uids / logins and the uid pushed to the store."""
    uids: frozenset[str]
    logins: frozenset[str]
    subject_id: Optional[str] = None

    def __call__(self, entry: LogEntry) -> bool:
        if any(uid in self.uids for uid in uid_candidates(entry)):
            return True
        return any(login in self.logins for login in login_candidates(entry))


@dataclass
class FetchStats:
    batches: int = 0
    scanned: int = 0
    cursors: list[LogCursor] = field(default_factory=list)


class LogQueryEngine:
    def __init__(
        self,
        store: AuditLogStore,
        directory: Optional[PeopleDirectory] = None,
        *,
        page_size: Optional[int] = None,
        batch_size: Optional[int] = None,
    ) -> None:
        self.store = store
        self.directory = directory or PeopleDirectory()
        self.page_size = page_size or settings.log_page_size
        self.batch_size = batch_size or settings.log_fetch_batch_size
        if self.batch_size < self.page_size:
            logger.warning(
                "Fetch batch size %d is smaller than page size %d; pages will need extra round trips",
                self.batch_size, self.page_size,
            )
        self.last_stats = FetchStats()

    def resolve_account(self, account: Optional[str]) -> Optional[AccountMatch]:
        if not account or not account.strip():
            return None
        person = self.directory.find(account.strip())
        if person is not None:
            logins = {value.lower() for value in (person.login, person.full_name) if value}
            return AccountMatch(uids=frozenset({person.uid}), logins=frozenset(logins), subject_id=person.uid)
        selector = account.strip()
        logins = {normalize_login(selector), selector.lower()}
        return AccountMatch(uids=frozenset({selector}), logins=frozenset(v for v in logins if v))

    def build_predicate(self, filters: LogFilters, account: Optional[AccountMatch]) -> Predicate:
        checks: list[Predicate] = []
        if filters.category:
            checks.append(lambda entry: category_of(entry.kind) == filters.category)
        if filters.kind:
            checks.append(lambda entry: entry.kind == filters.kind)
        if account is not None:
            checks.append(account)
        return lambda entry: all(check(entry) for check in checks)

    async def fetch_page(self, filters: LogFilters, cursor: Optional[LogCursor] = None) -> LogPage:
        """Build one page starting strictly after `cursor` (None = newest record)."""
        account = self.resolve_account(filters.account)
        matches = self.build_predicate(filters, account)
        subject_id = account.subject_id if account is not None else None

        stats = FetchStats()
        collected: list[LogEntry] = []
        last_seen = cursor
        exhausted = False
        full = False

        while not full and not exhausted:
            batch = await self.store.query_descending_by_time(
                subject_id=subject_id,
                from_time=filters.from_time,
                to_time=filters.to_time,
                after=last_seen,
                limit=self.batch_size,
            )
            stats.batches += 1
            if not batch:
                exhausted = True
                break
            for index, entry in enumerate(batch):
                last_seen = LogCursor.after(entry)
                stats.scanned += 1
                if matches(entry):
                    collected.append(entry)
                    if len(collected) >= self.page_size:
                        full = True
                        # Stopped at the batch's last record: a short batch still means nothing follows
                        exhausted = index == len(batch) - 1 and len(batch) < self.batch_size
                        break
            else:
                exhausted = len(batch) < self.batch_size
            stats.cursors.append(last_seen)

        self.last_stats = stats
        logger.debug(
            "Fetched log page entries=%d batches=%d scanned=%d exhausted=%s",
            len(collected), stats.batches, stats.scanned, exhausted,
        )
        return LogPage(
            entries=collected,
            end_cursor=last_seen,
            has_more=full and not exhausted and last_seen is not None,
        )
