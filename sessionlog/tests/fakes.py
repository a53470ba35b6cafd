"""
fakes.py - Test doubles shared across the suite.

A controllable clock, a scheduler whose timers only fire on advance(), a
transport that records what would have been sent, and seed() for writing
records into the in-memory audit log store at a chosen time.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx

from sessionlog.activity.schemas import EnrichedEvent
from sessionlog.store import MemoryAuditLogStore

T0 = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------

class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeTimer:
    def __init__(self, due: datetime, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Timers fire only when advance() moves the shared clock past their due time."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(self.clock() + timedelta(seconds=delay), callback)
        self.timers.append(timer)
        return timer

    @property
    def armed(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> int:
        self.clock.advance(seconds)
        fired = 0
        for timer in list(self.armed):
            if timer.due <= self.clock():
                timer.fired = True
                timer.callback()
                fired += 1
        return fired


class RecordingTransport:
    """Transport double: `sent` holds (mode, body) with mode in post / keepalive / beacon."""

    def __init__(self, accept_beacon: bool = True, fail: bool = False) -> None:
        self.accept_beacon = accept_beacon
        self.fail = fail
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def post(self, body: dict[str, Any], *, keepalive: bool = False) -> None:
        if self.fail:
            raise httpx.ConnectError("connection refused")
        self.sent.append(("keepalive" if keepalive else "post", body))

    def send_beacon(self, body: dict[str, Any]) -> bool:
        if not self.accept_beacon:
            return False
        self.sent.append(("beacon", body))
        return True

    def events(self) -> list[dict[str, Any]]:
        return [event for _, body in self.sent for event in body["events"]]

    def kinds(self) -> list[str]:
        return [event["kind"] for event in self.events()]


async def seed(
    store: MemoryAuditLogStore,
    clock: FakeClock,
    at: datetime,
    kind: str,
    *,
    uid: str = "u-smith",
    login: str = "agent.smith",
    session_id: str = "",
    payload: dict[str, Any] | None = None,
):
    """Append one record with recorded_at == `at`."""
    clock.now = at
    [entry] = await store.append([
        EnrichedEvent(kind=kind, uid=uid, login=login, session_id=session_id, payload=payload or {})
    ])
    return entry
