"""
schemas.py - Log review Pydantic v2 data contracts.

Defines:
  - LogCursor    (store position: keyset on (recorded_at, seq), opaque string on the wire)
  - LogFilters   (reviewer filter state; fingerprint() identifies one filter session)
  - LogPage      (one display page: entries, end_cursor, has_more)
"""
from __future__ import annotations

import base64
import hashlib
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from sessionlog.activity.schemas import LogEntry
from sessionlog.errors import InvalidCursor


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LogCursor(BaseModel):
    """Position immediately after the record (recorded_at, seq) in descending order."""
    model_config = ConfigDict(frozen=True)

    recorded_at: datetime
    seq: int

    @classmethod
    def after(cls, entry: LogEntry) -> "LogCursor":
        return cls(recorded_at=as_utc(entry.recorded_at), seq=entry.seq)

    def key(self) -> tuple[datetime, int]:
        return as_utc(self.recorded_at), self.seq

    def encode(self) -> str:
        raw = f"{as_utc(self.recorded_at).isoformat()}|{self.seq}".encode("utf-8")
        return base64.urlsafe_b64encode(raw).decode("ascii")

    @classmethod
    def decode(cls, token: str) -> "LogCursor":
        try:
            raw = base64.urlsafe_b64decode(token.encode("ascii")).decode("utf-8")
            stamp, seq = raw.rsplit("|", 1)
            return cls(recorded_at=as_utc(datetime.fromisoformat(stamp)), seq=int(seq))
        except (ValueError, UnicodeError) as exc:
            raise InvalidCursor(f"malformed log cursor: {token!r}") from exc


class LogFilters(BaseModel):
    """
    account:   uid, login or full name of the subject (None = everyone)
    category:  catalog category (None = all)
    kind:      exact event kind (None = all); must belong to `category` when both set
    from_time / to_time: inclusive bounds on recorded_at
    """
    model_config = ConfigDict(frozen=True)

    account: Optional[str] = None
    category: Optional[str] = None
    kind: Optional[str] = None
    from_time: Optional[datetime] = None
    to_time: Optional[datetime] = None

    def fingerprint(self) -> str:
        return hashlib.sha256(self.model_dump_json().encode("utf-8")).hexdigest()


class LogPage(BaseModel):
    entries: list[LogEntry] = Field(default_factory=list)
    end_cursor: Optional[LogCursor] = None
    has_more: bool = False
