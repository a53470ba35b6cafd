"""
routes.py - Reviewer log endpoint.

GET /api/logs  - one filtered page of the activity log, newest first

Query params: account, category, kind, from, to (ISO 8601), cursor (opaque, from
a previous response's end_cursor). Requires a bearer credential whose identity
holds one of settings.reviewer_roles.
"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from sessionlog.activity import catalog
from sessionlog.activity.identity import Identity
from sessionlog.activity.lifecycle import utcnow
from sessionlog.activity.routes import get_audit_store, get_credentials
from sessionlog.activity.schemas import LogEntry
from sessionlog.config import settings
from sessionlog.logs.duration import SessionTimeline, to_ms
from sessionlog.logs.people import PeopleDirectory
from sessionlog.logs.query import LogQueryEngine
from sessionlog.logs.schemas import LogCursor, LogFilters
from sessionlog.logs.view import describe_entry
from sessionlog.store import AuditLogStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["Logs"])


def get_directory(request: Request) -> PeopleDirectory:
    return request.app.state.directory


async def require_reviewer(
    authorization: Optional[str] = Header(default=None),
    credentials=Depends(get_credentials),
) -> Identity:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing bearer credential")
    identity = await credentials.verify(authorization[7:].strip())
    if identity is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not {role.lower() for role in identity.roles} & settings.reviewer_roles_set:
        raise HTTPException(status_code=403, detail="Activity log is restricted to reviewers")
    return identity


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip() or value.strip() == catalog.ALL:
        return None
    return value.strip()


def serialize_entry(
    entry: LogEntry,
    directory: PeopleDirectory,
    timeline: SessionTimeline,
    now_ms: int,
) -> dict:
    kind = catalog.lookup(entry.kind)
    return {
        "id": entry.id,
        "kind": entry.kind,
        "label": kind.label,
        "category": kind.category,
        "description": describe_entry(entry),
        "actor": directory.actor_name(entry),
        "uid": entry.uid,
        "login": entry.login,
        "session_id": entry.session_id,
        "payload": entry.payload,
        "recorded_at": entry.recorded_at.isoformat(),
        "duration_ms": timeline.duration_ms(entry, now_ms),
    }


@router.get("/logs")
async def list_logs(
    account: Optional[str] = Query(default=None, description="uid, login or full name"),
    category: Optional[str] = Query(default=None),
    kind: Optional[str] = Query(default=None),
    from_time: Optional[datetime] = Query(default=None, alias="from"),
    to_time: Optional[datetime] = Query(default=None, alias="to"),
    cursor: Optional[str] = Query(default=None, description="end_cursor of the previous page"),
    reviewer: Identity = Depends(require_reviewer),
    store: AuditLogStore = Depends(get_audit_store),
    directory: PeopleDirectory = Depends(get_directory),
) -> dict:
    """
    Return {entries, end_cursor, has_more}. Pass end_cursor back as `cursor`
    for the next page. A bad cursor is a 400; store failures are a 503.
    """
    filters = LogFilters(
        account=_optional(account),
        category=_optional(category),
        kind=_optional(kind),
        from_time=from_time,
        to_time=to_time,
    )
    start = LogCursor.decode(cursor) if cursor else None
    engine = LogQueryEngine(store, directory)
    page = await engine.fetch_page(filters, start)

    timeline = SessionTimeline(page.entries)
    now_ms = to_ms(utcnow())
    logger.info(
        "Log page served reviewer=%s entries=%d has_more=%s",
        reviewer.uid, len(page.entries), page.has_more,
    )
    return {
        "entries": [serialize_entry(e, directory, timeline, now_ms) for e in page.entries],
        "end_cursor": page.end_cursor.encode() if page.end_cursor else None,
        "has_more": page.has_more,
    }
