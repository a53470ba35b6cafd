"""
models/activity_log.py - SQLAlchemy ORM for persisted activity events.

Table: activity_logs
Append-only: one row per enriched activity event. Rows are never updated or
deleted by this service. Ordering key is (recorded_at, seq): recorded_at is
assigned by the store at append time, seq breaks ties inside one batch so the
caller-supplied order survives.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, BigInteger, DateTime, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from sessionlog.database import Base

# SQLite only autoincrements INTEGER PRIMARY KEY columns
SeqType = BigInteger().with_variant(Integer(), "sqlite")
PayloadType = JSON().with_variant(JSONB(), "postgresql")


class ActivityLogORM(Base):
    """
    ORM model for a single persisted activity event.

    kind:       event-kind identifier - session_start, page_view, dossier_view, ...
    uid/login:  subject the event belongs to (login is the display handle).
    session_id: client-generated session token; empty for events written
                outside a tracked session.
    payload:    kind-specific data. Logged by key only, never by value.
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        Index("ix_activity_logs_recorded_at_seq", "recorded_at", "seq"),
        Index("ix_activity_logs_uid_recorded_at", "uid", "recorded_at"),
    )

    seq: Mapped[int] = mapped_column(
        SeqType,
        primary_key=True,
        autoincrement=True,
        comment="Monotonic append sequence - tie-breaker within one recorded_at",
    )
    id: Mapped[str] = mapped_column(
        String(36),
        nullable=False,
        unique=True,
        default=lambda: str(uuid.uuid4()),
        comment="Public UUID of the log record",
    )
    kind: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Event kind: session_start, session_end, logout, page_view, ...",
    )
    uid: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        default="",
        comment="Stable subject identifier",
    )
    login: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        default="",
        comment="Display login derived from the subject's e-mail",
    )
    session_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="",
        index=True,
        comment="Client session identifier - groups events by session",
    )
    payload: Mapped[dict] = mapped_column(
        PayloadType,
        nullable=False,
        default=dict,
        comment="Kind-specific event data",
    )
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
