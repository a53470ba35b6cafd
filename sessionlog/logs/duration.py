"""
duration.py - Session duration reconstruction for loaded log rows.

Durations are not stored on most rows. They are rebuilt from the
session_start / session_end / logout records present in the loaded window:

  - session closed inside the window  -> elapsed time at the row
                                         (row time - start; the end row gets end - start)
  - session still open in the window  -> live: now - start, refreshed by DurationTicker
  - start not in the window           -> client-reported durationMs if positive, else unknown

All times come from the store-assigned recorded_at. Client durationMs is only a
hint unless trust_client_duration is enabled, which restores the behaviour of
older panels where a positive client value always won.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from sessionlog.activity.schemas import LogEntry
from sessionlog.config import settings

logger = logging.getLogger(__name__)

START_KINDS = frozenset({"session_start"})
END_KINDS = frozenset({"session_end", "logout"})


def to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def client_duration(entry: LogEntry) -> Optional[int]:
    value = entry.payload.get("durationMs")
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return int(value)


def format_duration(ms: Optional[int]) -> str:
    """HH:MM:SS, or 'unknown' when there is nothing positive to show."""
    if ms is None or ms <= 0:
        return "unknown"
    total = ms // 1000
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def _chronological(entries: Iterable[LogEntry]) -> list[LogEntry]:
    return sorted(entries, key=lambda e: (to_ms(e.recorded_at), e.seq))


def session_starts(entries: Iterable[LogEntry]) -> dict[str, int]:
    """Sessions still open at the end of the window, mapped to their start time (ms)."""
    starts: dict[str, int] = {}
    for entry in _chronological(entries):
        if not entry.session_id:
            continue
        if entry.kind in START_KINDS:
            starts[entry.session_id] = to_ms(entry.recorded_at)
        elif entry.kind in END_KINDS:
            starts.pop(entry.session_id, None)
    return starts


@dataclass(frozen=True)
class _Pending:
    session_id: str
    start_ms: int
    at_ms: int


class SessionTimeline:
    """Chronological scan of one loaded window of log entries."""

    def __init__(self, entries: Iterable[LogEntry], *, trust_client_duration: Optional[bool] = None) -> None:
        self.trust_client_duration = (
            settings.trust_client_duration if trust_client_duration is None else trust_client_duration
        )
        self.open_starts: dict[str, int] = {}
        # start of the last session closed in the window; logout and session_end share one close
        self._closed_starts: dict[str, int] = {}
        self._fixed: dict[str, int] = {}
        self._pending: dict[str, _Pending] = {}

        for entry in _chronological(entries):
            sid = entry.session_id
            if not sid:
                continue
            at = to_ms(entry.recorded_at)
            if entry.kind in START_KINDS:
                self.open_starts[sid] = at
                self._pending[entry.id] = _Pending(sid, at, at)
            elif entry.kind in END_KINDS:
                start = self.open_starts.pop(sid, None)
                if start is None:
                    start = self._closed_starts.get(sid)
                else:
                    self._closed_starts[sid] = start
                if start is not None:
                    self._fixed[entry.id] = max(0, at - start)
            elif sid in self.open_starts:
                self._pending[entry.id] = _Pending(sid, self.open_starts[sid], at)

    def duration_ms(self, entry: LogEntry, now_ms: int) -> Optional[int]:
        hint = client_duration(entry)
        if hint is not None and self.trust_client_duration:
            return hint
        if entry.id in self._fixed:
            return self._fixed[entry.id]
        pending = self._pending.get(entry.id)
        if pending is not None:
            if self.open_starts.get(pending.session_id) == pending.start_ms:
                return max(0, now_ms - pending.start_ms)
            return max(0, pending.at_ms - pending.start_ms)
        return hint


class DurationTicker:
    """Refreshes `now_ms` every `interval` seconds while a log view is open."""

    def __init__(
        self,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        interval: Optional[float] = None,
        on_tick: Optional[Callable[[int], None]] = None,
    ) -> None:
        self._clock = clock
        self.interval = interval or settings.duration_tick_seconds
        self._on_tick = on_tick
        self._now_ms = to_ms(clock())
        self._task: Optional[asyncio.Task] = None

    @property
    def now_ms(self) -> int:
        return self._now_ms

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def tick(self) -> int:
        self._now_ms = to_ms(self._clock())
        if self._on_tick is not None:
            self._on_tick(self._now_ms)
        return self._now_ms

    def start(self) -> None:
        if self.running:
            return
        self.tick()
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
