"""
view.py - Display rows for the reviewer's log screen.

LogView ties a LogBrowser (filters + pages) to the people directory and the
duration ticker and turns the current page into LogRow values.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sessionlog.activity import catalog
from sessionlog.activity.lifecycle import utcnow
from sessionlog.activity.schemas import LogEntry
from sessionlog.logs.browser import LogBrowser
from sessionlog.logs.duration import DurationTicker, SessionTimeline, format_duration
from sessionlog.logs.people import PeopleDirectory


def describe_entry(entry: LogEntry) -> str:
    # Renderers for sign-in kinds read the login from the record itself
    return catalog.describe(entry.kind, {"login": entry.login, **entry.payload})


@dataclass(frozen=True)
class LogRow:
    id: str
    recorded_at: datetime
    actor: str
    login: str
    uid: str
    kind: str
    label: str
    category: str
    description: str
    session_id: str
    duration_ms: Optional[int]

    @property
    def duration(self) -> str:
        return format_duration(self.duration_ms)


class LogView:
    def __init__(
        self,
        browser: LogBrowser,
        directory: Optional[PeopleDirectory] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        tick_seconds: Optional[float] = None,
        trust_client_duration: Optional[bool] = None,
    ) -> None:
        self.browser = browser
        self.directory = directory or browser.engine.directory
        self.ticker = DurationTicker(clock=clock, interval=tick_seconds)
        self.trust_client_duration = trust_client_duration

    async def open(self) -> None:
        self.ticker.start()
        await self.browser.load()

    async def close(self) -> None:
        await self.ticker.stop()

    def kind_options(self) -> list[tuple[str, str]]:
        return catalog.kind_options(self.browser.filters.category or catalog.ALL, self.browser.seen_kinds())

    def rows(self) -> list[LogRow]:
        entries = self.browser.entries
        timeline = SessionTimeline(entries, trust_client_duration=self.trust_client_duration)
        now_ms = self.ticker.now_ms
        rows = []
        for entry in entries:
            kind = catalog.lookup(entry.kind)
            rows.append(
                LogRow(
                    id=entry.id,
                    recorded_at=entry.recorded_at,
                    actor=self.directory.actor_name(entry),
                    login=entry.login,
                    uid=entry.uid,
                    kind=entry.kind,
                    label=kind.label,
                    category=kind.category,
                    description=describe_entry(entry),
                    session_id=entry.session_id,
                    duration_ms=timeline.duration_ms(entry, now_ms),
                )
            )
        return rows
