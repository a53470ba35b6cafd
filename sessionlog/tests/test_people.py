"""Display-name resolution and the reviewer log view rows."""
from __future__ import annotations

import json
from datetime import timedelta

import pytest

from sessionlog.activity.schemas import LogEntry
from sessionlog.logs.browser import LogBrowser
from sessionlog.logs.people import PeopleDirectory, Person, load_directory
from sessionlog.logs.query import LogQueryEngine
from sessionlog.logs.view import LogView, describe_entry
from sessionlog.tests.fakes import T0, seed


@pytest.fixture
def directory() -> PeopleDirectory:
    return PeopleDirectory([
        Person(uid="u-smith", login="agent.smith", full_name="Agent Smith"),
        Person(uid="u-doe", login="j.doe"),
    ])


def make_entry(**fields) -> LogEntry:
    base = {"id": "e-1", "seq": 1, "kind": "doc_sent", "recorded_at": T0}
    base.update(fields)
    return LogEntry(**base)


class TestActorName:

    def test_direct_name_field_wins(self, directory):
        entry = make_entry(uid="u-smith", payload={"authorFullName": "Someone Else"})
        assert directory.actor_name(entry) == "Someone Else"

    def test_uid_resolves_through_directory(self, directory):
        assert directory.actor_name(make_entry(uid="u-smith")) == "Agent Smith"

    def test_payload_author_uid(self, directory):
        entry = make_entry(payload={"author": {"uid": "u-smith"}})
        assert directory.actor_name(entry) == "Agent Smith"

    def test_login_resolves_case_insensitively(self, directory):
        assert directory.actor_name(make_entry(login="J.Doe@dps.local")) == "j.doe"

    def test_unknown_login_shown_raw(self, directory):
        assert directory.actor_name(make_entry(login="ghost")) == "ghost"

    def test_nothing_known(self, directory):
        assert directory.actor_name(make_entry()) == "Unknown user"


class TestDirectory:

    def test_find_by_uid_login_or_name(self, directory):
        assert directory.find("u-smith").login == "agent.smith"
        assert directory.find("AGENT.SMITH").uid == "u-smith"
        assert directory.find("agent smith").uid == "u-smith"
        assert directory.find("nobody") is None

    def test_resolve_display_name(self, directory):
        assert directory.resolve_display_name("u-smith") == "Agent Smith"
        assert directory.resolve_display_name("j.doe") == "j.doe"
        assert directory.resolve_display_name("ghost") is None

    def test_load_directory_from_json(self, tmp_path):
        path = tmp_path / "people.json"
        path.write_text(json.dumps([
            {"uid": "u-1", "login": "a.one", "fullName": "Alice One"},
            {"login": "no.uid"},
            "garbage",
        ]), encoding="utf-8")

        directory = load_directory(path)

        assert len(directory) == 1
        assert directory.resolve_display_name("a.one") == "Alice One"

    def test_missing_directory_file_is_empty(self, tmp_path):
        assert len(load_directory(tmp_path / "missing.json")) == 0


class TestLogView:

    def test_login_rows_describe_the_record_login(self):
        entry = make_entry(kind="login_success", login="agent.smith")
        assert describe_entry(entry) == "Signed in as agent.smith."

    @pytest.mark.asyncio
    async def test_rows_for_current_page(self, audit_store, clock, directory):
        await seed(audit_store, clock, T0, "session_start", session_id="s-1")
        await seed(audit_store, clock, T0 + timedelta(seconds=30), "page_view", session_id="s-1",
                   payload={"path": "/vehicles"})
        await seed(audit_store, clock, T0 + timedelta(seconds=90), "session_end", session_id="s-1",
                   payload={"reason": "logout", "durationMs": 90_000})
        engine = LogQueryEngine(audit_store, directory)
        view = LogView(LogBrowser(engine), clock=clock, tick_seconds=60, trust_client_duration=False)

        await view.open()
        rows = view.rows()
        await view.close()

        assert [r.kind for r in rows] == ["session_end", "page_view", "session_start"]
        end, page_view, _ = rows
        assert end.actor == "Agent Smith"
        assert end.label == "Session ended"
        assert end.category == "session"
        assert end.description == "Session ended (reason: Sign-out)."
        assert end.duration == "00:01:30"
        assert page_view.duration == "00:00:30"
        assert page_view.description == "Visited page /vehicles."

    def test_kind_options_follow_category(self, directory):
        engine = LogQueryEngine(None, directory)
        browser = LogBrowser(engine)
        browser.set_filters(category="vehicles")
        view = LogView(browser)

        kinds = {kind for kind, _ in view.kind_options()}
        assert "vehicle_update" in kinds
        assert "page_view" not in kinds
