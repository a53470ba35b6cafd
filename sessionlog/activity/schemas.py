"""
schemas.py - Activity tracking Pydantic v2 data contracts.

Defines:
  - SessionInfo     (one continuous authenticated period in one browsing context)
  - ActivityEvent   (raw event recorded by the operator's client)
  - EnrichedEvent   (event carrying subject + session identity, as sent on the wire)
  - IngestRequest   (POST /api/activity-log body: {token, events})
  - LogEntry        (persisted event, with store-assigned id / seq / recorded_at)
"""
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class SessionInfo(BaseModel):
    """Immutable once minted: session_id and started_at never change."""
    model_config = ConfigDict(frozen=True)

    uid: str
    login: str = ""
    name: Optional[str] = None
    session_id: str
    started_at: datetime


class ActivityEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Max lengths match the activity_logs column widths
    kind: str = Field(min_length=1, max_length=64, description="Event kind, e.g. 'page_view'")
    payload: dict[str, Any] = Field(default_factory=dict)


class EnrichedEvent(ActivityEvent):
    """ActivityEvent stamped with the identity of the session that produced it."""

    uid: str = Field(default="", max_length=128)
    login: str = Field(default="", max_length=128)
    session_id: str = Field(default="", max_length=64)


class IngestRequest(BaseModel):
    token: str = Field(min_length=1)
    events: list[EnrichedEvent] = Field(min_length=1)


class LogEntry(BaseModel):
    """A persisted activity event as read back from the audit log store."""
    model_config = ConfigDict(frozen=True)

    id: str
    seq: int
    kind: str
    uid: str = ""
    login: str = ""
    session_id: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime

    def field(self, key: str) -> Any:
        """Look a key up on the record first, then inside the payload."""
        if key in ("uid", "login", "session_id", "kind"):
            return getattr(self, key) or None
        return self.payload.get(key)

    @property
    def recorded_ms(self) -> int:
        ts = self.recorded_at
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return int(ts.timestamp() * 1000)
