"""
catalog.py - Static event catalog: kind -> label, category, renderer.

Every event kind the panel emits is listed in CATALOG with a human label and a
category (used by the reviewer's category filter). describe() turns a stored
log entry into a one-line description using the renderer registered for its
kind; kinds without a renderer (or unknown kinds) fall back to listing payload
fields.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Optional

Payload = Mapping[str, Any]
Renderer = Callable[[Payload], str]

# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

CATEGORIES: dict[str, str] = {
    "session": "Sessions and sign-ins",
    "navigation": "Panel navigation",
    "documents": "Documents and reports",
    "archive": "Archive",
    "dossiers": "Dossiers",
    "vehicles": "Vehicles",
    "accounts": "Administration",
    "other": "Other actions",
}
ALL = "all"

# Keys never listed by the fallback renderer (identity / bookkeeping fields)
META_KEYS = frozenset({
    "type", "kind", "ts", "createdAt", "login", "uid", "sessionId", "session_id",
    "author", "authorUid", "authorLogin", "authorFullName", "fullName",
    "by", "byFullName", "byUid", "durationMs",
})

RECORD_TYPE_LABELS = {
    "note": "Note",
    "weapon": "Evidence - weapon",
    "drug": "Evidence - drugs",
    "explosive": "Evidence - explosives",
    "member": "Group member",
    "vehicle": "Organization vehicle",
    "group-link": "Organization link",
}

VEHICLE_FIELD_LABELS = {
    "registration": "Registration",
    "brand": "Make",
    "color": "Colour",
    "ownerName": "Owner",
    "ownerCid": "Owner CID",
}


@dataclass(frozen=True)
class EventKind:
    kind: str
    label: str
    category: str
    render: Optional[Renderer] = None


_KINDS: list[tuple[str, str, str]] = [
    ("session_start", "Session started", "session"),
    ("session_end", "Session ended", "session"),
    ("logout", "Sign-out", "session"),
    ("login_success", "Successful sign-in", "session"),
    ("login_fail", "Failed sign-in", "session"),
    ("page_view", "Page visit", "navigation"),
    ("template_view", "Template preview", "documents"),
    ("doc_sent", "Document sent", "documents"),
    ("archive_view", "Archive browsed", "archive"),
    ("archive_image_open", "Archive file opened", "archive"),
    ("archive_delete", "Archive entry deleted", "archive"),
    ("archive_clear", "Archive cleared", "archive"),
    ("archive_link", "Linked to archive", "archive"),
    ("stats_clear", "Statistics reset", "accounts"),
    ("criminal_group_open", "Group opened", "dossiers"),
    ("dossier_create", "Dossier created", "dossiers"),
    ("dossier_delete", "Dossier deleted", "dossiers"),
    ("dossier_view", "Dossier viewed", "dossiers"),
    ("dossier_link_open", "Dossier opened from link", "dossiers"),
    ("dossier_evidence_open", "Dossier evidence opened", "dossiers"),
    ("dossier_record_add", "Dossier entry added", "dossiers"),
    ("dossier_record_edit", "Dossier entry edited", "dossiers"),
    ("dossier_record_delete", "Dossier entry deleted", "dossiers"),
    ("dossier_group_link_add", "Linked to organization", "dossiers"),
    ("dossier_group_link_remove", "Organization link removed", "dossiers"),
    ("vehicle_archive_view", "Vehicle database browsed", "vehicles"),
    ("vehicle_folder_view", "Vehicle folder viewed", "vehicles"),
    ("vehicle_from_dossier_open", "Vehicle opened from dossier", "vehicles"),
    ("vehicle_create", "Vehicle folder created", "vehicles"),
    ("vehicle_update", "Vehicle data updated", "vehicles"),
    ("vehicle_delete", "Vehicle folder deleted", "vehicles"),
    ("vehicle_flag_update", "Vehicle flag changed", "vehicles"),
    ("vehicle_note_add", "Vehicle note added", "vehicles"),
    ("vehicle_note_edit", "Vehicle note edited", "vehicles"),
    ("vehicle_note_delete", "Vehicle note deleted", "vehicles"),
    ("vehicle_note_payment", "Vehicle payment updated", "vehicles"),
    ("vehicle_note_from_doc", "Vehicle note from document", "vehicles"),
    ("vehicle_group_link_add", "Vehicle linked to group", "vehicles"),
    ("vehicle_group_link_remove", "Vehicle group link removed", "vehicles"),
]

_RENDERERS: dict[str, Renderer] = {}


def renders(*kinds: str) -> Callable[[Renderer], Renderer]:
    """Register a renderer for one or more event kinds."""
    def decorator(func: Renderer) -> Renderer:
        for kind in kinds:
            _RENDERERS[kind] = func
        return func
    return decorator


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------

def fallback_label(kind: str) -> str:
    """'vehicle_note-add' -> 'Vehicle Note Add'."""
    if not kind:
        return "Other event"
    parts = [p for p in re.split(r"[_\-\s]+", kind) if p]
    return " ".join(p[:1].upper() + p[1:] for p in parts)


def shorten(value: Any, max_len: int = 160) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    if len(text) <= max_len:
        return text
    return text[: max_len - 1] + "…"


def format_list(values: Optional[Iterable[Any]], fallback: str = "-") -> str:
    if not values:
        return fallback
    cleaned = [str(v).strip() for v in values if str(v).strip()]
    return ", ".join(cleaned) if cleaned else fallback


def format_reason(reason: Optional[str]) -> str:
    return {
        "logout": "Sign-out",
        "window_closed": "Tab closed",
        "timeout": "Inactivity",
    }.get(reason or "", reason or "-")


def _or_dash(value: Any) -> str:
    return str(value) if value not in (None, "") else "-"


def _archive_summary(p: Payload) -> str:
    parts = []
    if p.get("template"):
        parts.append(str(p["template"]))
    if p.get("archiveSummary"):
        parts.append(shorten(p["archiveSummary"]))
    if p.get("dossierId"):
        parts.append(f"CID: {p['dossierId']}")
    if p.get("vehicleRegistration"):
        parts.append(f"Vehicle: {p['vehicleRegistration']}")
    return f" - {' • '.join(parts)}" if parts else ""


def _record_label(p: Payload) -> str:
    record_type = p.get("recordType") or ""
    return RECORD_TYPE_LABELS.get(record_type, record_type or "Entry")


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------

@renders("session_start")
def _session_start(p: Payload) -> str:
    return "Started a new panel session."


@renders("session_end")
def _session_end(p: Payload) -> str:
    return f"Session ended (reason: {format_reason(p.get('reason'))})."


@renders("logout")
def _logout(p: Payload) -> str:
    return f"Signed out (reason: {format_reason(p.get('reason'))})."


@renders("login_success")
def _login_success(p: Payload) -> str:
    return f"Signed in as {_or_dash(p.get('login'))}."


@renders("login_fail")
def _login_fail(p: Payload) -> str:
    error = f" • Error: {p['error']}" if isinstance(p.get("error"), str) and p["error"] else ""
    return f"Failed sign-in as {_or_dash(p.get('login'))}{error}."


@renders("page_view")
def _page_view(p: Payload) -> str:
    title = f" ({p['title']})" if p.get("title") else ""
    return f"Visited page {_or_dash(p.get('path'))}{title}."


@renders("template_view")
def _template_view(p: Payload) -> str:
    return f"Opened template {_or_dash(p.get('template') or p.get('slug'))}."


@renders("doc_sent")
def _doc_sent(p: Payload) -> str:
    officers = f" • Officers: {format_list(p.get('officers'))}" if p.get("officers") else ""
    return f"Sent document {_or_dash(p.get('template'))}{officers}."


@renders("archive_view")
def _archive_view(p: Payload) -> str:
    return "Browsed the archive."


@renders("archive_image_open")
def _archive_image_open(p: Payload) -> str:
    return f"Opened archive file{_archive_summary(p)}."


@renders("archive_delete")
def _archive_delete(p: Payload) -> str:
    return f"Deleted archive entry{_archive_summary(p)}."


@renders("archive_clear")
def _archive_clear(p: Payload) -> str:
    return f"Cleared the archive ({p.get('removed') or 0} entries)."


@renders("archive_link")
def _archive_link(p: Payload) -> str:
    return "Linked a document to the archive."


@renders("stats_clear")
def _stats_clear(p: Payload) -> str:
    return "Reset statistics counters."


@renders("dossier_create")
def _dossier_create(p: Payload) -> str:
    label = p.get("dossierTitle") or f"{p.get('first') or ''} {p.get('last') or ''}".strip() or "dossier"
    cid = f" (CID: {p['cid']})" if p.get("cid") else ""
    return f"Created dossier {label}{cid}."


@renders("dossier_delete", "dossier_view", "dossier_link_open")
def _dossier_simple(p: Payload) -> str:
    verb = {"dossier_delete": "Deleted", "dossier_view": "Viewed", "dossier_link_open": "Opened"}
    return f"{verb.get(p.get('_kind', ''), 'Opened')} dossier (CID: {_or_dash(p.get('dossierId'))})."


@renders("dossier_evidence_open")
def _dossier_evidence_open(p: Payload) -> str:
    record = f" • Entry: {p['recordId']}" if p.get("recordId") else ""
    return f"Opened evidence in dossier (CID: {_or_dash(p.get('dossierId'))}{record})."


@renders("dossier_record_add", "dossier_record_delete")
def _dossier_record(p: Payload) -> str:
    summary = f" - {shorten(p['recordSummary'])}" if p.get("recordSummary") else ""
    if p.get("_kind") == "dossier_record_delete":
        return f"Deleted entry \"{_record_label(p)}\" from dossier (CID: {_or_dash(p.get('dossierId'))}){summary}."
    return f"Added entry \"{_record_label(p)}\" to dossier (CID: {_or_dash(p.get('dossierId'))}){summary}."


@renders("dossier_record_edit")
def _dossier_record_edit(p: Payload) -> str:
    changes = []
    if p.get("previousText"):
        changes.append(f"Before: {shorten(p['previousText'])}")
    if p.get("nextText"):
        changes.append(f"After: {shorten(p['nextText'])}")
    if changes:
        summary = f" - {' • '.join(changes)}"
    elif p.get("recordSummary"):
        summary = f" - {shorten(p['recordSummary'])}"
    else:
        summary = ""
    return f"Edited entry \"{_record_label(p)}\" in dossier (CID: {_or_dash(p.get('dossierId'))}){summary}."


@renders("dossier_group_link_add", "dossier_group_link_remove")
def _dossier_group_link(p: Payload) -> str:
    member = ""
    if p.get("memberName"):
        rank = f" ({p['memberRank']})" if p.get("memberRank") else ""
        member = f" • Member: {p['memberName']}{rank}"
    if p.get("_kind") == "dossier_group_link_remove":
        return (
            f"Removed link to organization {_or_dash(p.get('groupName'))} "
            f"for dossier (CID: {_or_dash(p.get('dossierId'))}){member}."
        )
    return f"Linked dossier (CID: {_or_dash(p.get('dossierId'))}) to organization {_or_dash(p.get('groupName'))}{member}."


@renders("vehicle_archive_view")
def _vehicle_archive_view(p: Payload) -> str:
    return "Browsed the vehicle database."


@renders("vehicle_folder_view")
def _vehicle_folder_view(p: Payload) -> str:
    return f"Opened vehicle folder {_or_dash(p.get('vehicleId'))}."


@renders("vehicle_from_dossier_open")
def _vehicle_from_dossier(p: Payload) -> str:
    vehicle = f" • Vehicle: {p['vehicleId']}" if p.get("vehicleId") else ""
    return f"Opened vehicle linked to dossier (CID: {_or_dash(p.get('dossierId'))}){vehicle}."


@renders("vehicle_create")
def _vehicle_create(p: Payload) -> str:
    brand = f" ({p['brand']})" if p.get("brand") else ""
    return f"Created vehicle folder {_or_dash(p.get('registration'))}{brand}."


@renders("vehicle_update")
def _vehicle_update(p: Payload) -> str:
    changes = p.get("changes") or {}
    parts = []
    if isinstance(changes, Mapping):
        for field_name, diff in changes.items():
            diff = diff if isinstance(diff, Mapping) else {}
            label = VEHICLE_FIELD_LABELS.get(field_name, field_name)
            parts.append(f"{label}: {_or_dash(diff.get('before'))} → {_or_dash(diff.get('after'))}")
    header = f"Updated vehicle {p['registration']}" if p.get("registration") else "Updated vehicle data"
    return f"{header} - {' • '.join(parts)}." if parts else f"{header}."


@renders("vehicle_delete")
def _vehicle_delete(p: Payload) -> str:
    owner = f" • Owner: {p['ownerName']}" if p.get("ownerName") else ""
    return f"Deleted vehicle folder {_or_dash(p.get('registration'))}{owner}."


@renders("vehicle_flag_update")
def _vehicle_flag_update(p: Payload) -> str:
    state = "ACTIVE" if p.get("value") else "INACTIVE"
    vehicle = p.get("vehicleRegistration") or p.get("vehicleId")
    suffix = f" • Vehicle: {vehicle}" if vehicle else ""
    return f"Set flag \"{_or_dash(p.get('flagLabel') or p.get('flag'))}\" to {state}{suffix}."


@renders("vehicle_note_add", "vehicle_note_edit", "vehicle_note_delete")
def _vehicle_note(p: Payload) -> str:
    verb = {"vehicle_note_edit": "Edited", "vehicle_note_delete": "Deleted"}.get(p.get("_kind", ""), "Added")
    preview = f": {shorten(p['notePreview'])}" if p.get("notePreview") else "."
    return f"{verb} vehicle note{preview}"


@renders("vehicle_note_payment")
def _vehicle_note_payment(p: Payload) -> str:
    try:
        amount_value = float(p.get("amount"))
    except (TypeError, ValueError):
        amount_value = 0.0
    amount = f" • Amount: {amount_value:,.0f} $" if amount_value > 0 else ""
    status = {
        "paid": "fine marked as paid",
        "unpaid": "marked as unpaid",
    }.get(p.get("status") or "", "payment status updated")
    return f"Payment updated - {status}{amount}."


@renders("vehicle_note_from_doc")
def _vehicle_note_from_doc(p: Payload) -> str:
    return f"Created vehicle note from document {_or_dash(p.get('template'))}."


@renders("vehicle_group_link_add", "vehicle_group_link_remove")
def _vehicle_group_link(p: Payload) -> str:
    vehicle = _or_dash(p.get("vehicleRegistration") or p.get("vehicleId"))
    group = _or_dash(p.get("groupName"))
    if p.get("_kind") == "vehicle_group_link_remove":
        return f"Removed link between vehicle {vehicle} and organization {group}."
    return f"Linked vehicle {vehicle} to organization {group}."


def render_fields(payload: Payload) -> str:
    """Fallback renderer: 'key: value' pairs of every non-metadata field."""
    parts = []
    for key, value in payload.items():
        if key in META_KEYS or key.startswith("_"):
            continue
        if value is None:
            parts.append(f"{key}: -")
        elif isinstance(value, (list, tuple)):
            parts.append(f"{key}: {', '.join(str(v) for v in value)}")
        elif isinstance(value, Mapping):
            parts.append(f"{key}: {json.dumps(value, ensure_ascii=False)}")
        else:
            parts.append(f"{key}: {value}")
    return " • ".join(parts) or "No details available."


CATALOG: dict[str, EventKind] = {
    kind: EventKind(kind=kind, label=label, category=category, render=_RENDERERS.get(kind))
    for kind, label, category in _KINDS
}


# ---------------------------------------------------------------------------
# Public lookups
# ---------------------------------------------------------------------------

def lookup(kind: str) -> EventKind:
    """Catalog entry for `kind`; unknown kinds get a synthesized 'other' entry."""
    entry = CATALOG.get(kind)
    if entry is not None:
        return entry
    return EventKind(kind=kind, label=fallback_label(kind), category="other")


def category_of(kind: str) -> str:
    return lookup(kind).category


def label_of(kind: str) -> str:
    return lookup(kind).label


def describe(kind: str, payload: Optional[Payload] = None) -> str:
    payload = payload or {}
    entry = lookup(kind)
    if entry.render is None:
        return render_fields(payload)
    # Shared renderers read the concrete kind from _kind
    return entry.render({**payload, "_kind": kind})


def kind_options(category: str = ALL, seen_kinds: Iterable[str] = ()) -> list[tuple[str, str]]:
    """
    (kind, label) pairs selectable under `category`: catalog kinds plus any
    unknown kinds already seen in loaded pages, sorted by label.
    """
    options = {kind: entry for kind, entry in CATALOG.items()}
    for kind in seen_kinds:
        if kind and kind not in options:
            options[kind] = lookup(kind)
    return sorted(
        ((kind, entry.label) for kind, entry in options.items() if category == ALL or entry.category == category),
        key=lambda item: item[1].lower(),
    )
