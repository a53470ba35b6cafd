"""Event catalog: categories, labels, descriptions, selectable kinds."""
import pytest

from sessionlog.activity import catalog


class TestLookups:

    @pytest.mark.parametrize("kind, category", [
        ("session_start", "session"),
        ("logout", "session"),
        ("page_view", "navigation"),
        ("doc_sent", "documents"),
        ("archive_clear", "archive"),
        ("dossier_record_edit", "dossiers"),
        ("vehicle_note_payment", "vehicles"),
        ("stats_clear", "accounts"),
        ("something_new", "other"),
    ])
    def test_category_of(self, kind, category):
        assert catalog.category_of(kind) == category

    def test_every_catalog_category_is_known(self):
        for entry in catalog.CATALOG.values():
            assert entry.category in catalog.CATEGORIES

    def test_unknown_kind_label_falls_back_to_title_case(self):
        assert catalog.label_of("some_kind") == "Some Kind"
        assert catalog.label_of("vehicle_note-add") == "Vehicle Note Add"
        assert catalog.label_of("") == "Other event"

    def test_known_kind_label(self):
        assert catalog.label_of("session_end") == "Session ended"


class TestDescribe:

    @pytest.mark.parametrize("reason, text", [
        ("logout", "Sign-out"),
        ("window_closed", "Tab closed"),
        ("timeout", "Inactivity"),
        ("custom", "custom"),
        (None, "-"),
    ])
    def test_session_end_reason(self, reason, text):
        assert catalog.describe("session_end", {"reason": reason}) == f"Session ended (reason: {text})."

    def test_shared_renderer_uses_concrete_kind(self):
        assert catalog.describe("dossier_view", {"dossierId": "4411"}) == "Viewed dossier (CID: 4411)."
        assert catalog.describe("dossier_delete", {"dossierId": "4411"}) == "Deleted dossier (CID: 4411)."

    def test_vehicle_update_lists_changes(self):
        text = catalog.describe("vehicle_update", {
            "registration": "LS-0042",
            "changes": {"color": {"before": "red", "after": "blue"}},
        })
        assert text == "Updated vehicle LS-0042 - Colour: red → blue."

    def test_page_view_with_title(self):
        assert catalog.describe("page_view", {"path": "/dossiers", "title": "Dossiers"}) == (
            "Visited page /dossiers (Dossiers)."
        )

    def test_unknown_kind_lists_payload_without_metadata(self):
        text = catalog.describe("radio_check", {"channel": 3, "login": "agent.smith", "tags": ["a", "b"]})
        assert text == "channel: 3 • tags: a, b"

    def test_unknown_kind_without_payload(self):
        assert catalog.describe("radio_check", {}) == "No details available."
        assert catalog.describe("radio_check") == "No details available."

    def test_long_values_are_shortened(self):
        text = catalog.describe("vehicle_note_add", {"notePreview": "x" * 500})
        assert len(text) < 200
        assert text.endswith("…")


class TestKindOptions:

    def test_category_restricts_kinds(self):
        kinds = {kind for kind, _ in catalog.kind_options("session")}
        assert kinds == {"session_start", "session_end", "logout", "login_success", "login_fail"}

    def test_seen_unknown_kinds_are_offered(self):
        options = dict(catalog.kind_options(catalog.ALL, seen_kinds={"radio_check"}))
        assert options["radio_check"] == "Radio Check"
        assert "radio_check" in dict(catalog.kind_options("other", seen_kinds={"radio_check"}))
        assert "radio_check" not in dict(catalog.kind_options("vehicles", seen_kinds={"radio_check"}))

    def test_options_sorted_by_label(self):
        labels = [label.lower() for _, label in catalog.kind_options()]
        assert labels == sorted(labels)
