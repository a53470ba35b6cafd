"""Session duration reconstruction, formatting and the live ticker."""
from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from sessionlog.activity.schemas import LogEntry
from sessionlog.logs.duration import DurationTicker, SessionTimeline, format_duration, session_starts, to_ms
from sessionlog.tests.fakes import T0, FakeClock

_seq = iter(range(1, 10_000))


def entry(kind: str, ms: int, session_id: str = "S1", **payload) -> LogEntry:
    seq = next(_seq)
    return LogEntry(
        id=f"e-{seq}",
        seq=seq,
        kind=kind,
        uid="u-smith",
        login="agent.smith",
        session_id=session_id,
        payload=payload,
        recorded_at=T0 + timedelta(milliseconds=ms),
    )


NOW = to_ms(T0) + 3_600_000


class TestSessionTimeline:

    def test_closed_session_uses_store_timestamps(self):
        start = entry("session_start", 0)
        view = entry("page_view", 2_000)
        later = entry("dossier_view", 4_500)
        end = entry("session_end", 5_000)
        timeline = SessionTimeline([end, later, view, start], trust_client_duration=False)

        assert timeline.duration_ms(view, NOW) == 2_000
        assert timeline.duration_ms(later, NOW) == 4_500
        assert timeline.duration_ms(end, NOW) == 5_000

    def test_open_session_is_live(self):
        start = entry("session_start", 0)
        view = entry("page_view", 1_000)
        timeline = SessionTimeline([view, start], trust_client_duration=False)

        assert timeline.duration_ms(view, to_ms(T0) + 60_000) == 60_000
        assert timeline.duration_ms(view, to_ms(T0) + 61_000) == 61_000

    def test_end_without_start_in_window_uses_client_hint(self):
        end = entry("session_end", 5_000, durationMs=4_200)
        orphan = entry("session_end", 6_000, session_id="S9")
        timeline = SessionTimeline([end, orphan], trust_client_duration=False)

        assert timeline.duration_ms(end, NOW) == 4_200
        assert timeline.duration_ms(orphan, NOW) is None

    def test_client_hint_is_ignored_when_timestamps_are_available(self):
        start = entry("session_start", 0)
        end = entry("session_end", 5_000, durationMs=999_999)

        assert SessionTimeline([start, end], trust_client_duration=False).duration_ms(end, NOW) == 5_000
        assert SessionTimeline([start, end], trust_client_duration=True).duration_ms(end, NOW) == 999_999

    def test_logout_and_session_end_in_one_batch(self):
        start = entry("session_start", 0)
        logout = entry("logout", 9_000)
        end = entry("session_end", 9_000)
        timeline = SessionTimeline([start, logout, end], trust_client_duration=False)

        assert timeline.duration_ms(logout, NOW) == 9_000
        assert timeline.duration_ms(end, NOW) == 9_000
        assert "S1" not in timeline.open_starts

    def test_session_end_after_logout_ignores_skewed_client_hint(self):
        start = entry("session_start", 0)
        logout = entry("logout", 5_000, durationMs=999_999)
        end = entry("session_end", 5_000, durationMs=999_999)
        timeline = SessionTimeline([end, logout, start], trust_client_duration=False)

        assert timeline.duration_ms(logout, NOW) == 5_000
        assert timeline.duration_ms(end, NOW) == 5_000

    def test_rows_without_session_have_no_duration(self):
        row = entry("doc_sent", 100, session_id="")
        assert SessionTimeline([row], trust_client_duration=False).duration_ms(row, NOW) is None

    def test_sessions_are_tracked_independently(self):
        a_start = entry("session_start", 0, session_id="A")
        b_start = entry("session_start", 1_000, session_id="B")
        a_end = entry("session_end", 3_000, session_id="A")
        b_view = entry("page_view", 4_000, session_id="B")
        timeline = SessionTimeline([a_start, b_start, a_end, b_view], trust_client_duration=False)

        assert timeline.duration_ms(a_end, NOW) == 3_000
        assert timeline.duration_ms(b_view, to_ms(T0) + 10_000) == 9_000


def test_session_starts_lists_only_open_sessions():
    entries = [
        entry("session_end", 3_000, session_id="A"),
        entry("session_start", 0, session_id="A"),
        entry("session_start", 1_000, session_id="B"),
        entry("page_view", 2_000, session_id=""),
    ]
    assert session_starts(entries) == {"B": to_ms(T0) + 1_000}


@pytest.mark.parametrize("ms, text", [
    (None, "unknown"),
    (0, "unknown"),
    (-5, "unknown"),
    (999, "00:00:00"),
    (5_000, "00:00:05"),
    (3_723_000, "01:02:03"),
    (100 * 3_600_000, "100:00:00"),
])
def test_format_duration(ms, text):
    assert format_duration(ms) == text


class TestDurationTicker:

    def test_tick_reads_clock(self):
        clock = FakeClock()
        seen = []
        ticker = DurationTicker(clock=clock, interval=1.0, on_tick=seen.append)

        clock.advance(2)
        ticker.tick()

        assert ticker.now_ms == to_ms(T0) + 2_000
        assert seen == [to_ms(T0) + 2_000]

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        seen = []
        ticker = DurationTicker(interval=0.01, on_tick=seen.append)

        ticker.start()
        assert ticker.running
        await asyncio.sleep(0.05)
        await ticker.stop()

        assert not ticker.running
        assert len(seen) >= 2
