"""
store.py - Audit log store for sessionlog.

Two layers:
  - append_activity_events / query_activity_logs: ORM-only async functions that
    take an AsyncSession (caller owns commit), mirroring the rest of the codebase
  - AuditLogStore implementations used by the ingestion route and the query
    engine: SqlAuditLogStore (PostgreSQL via SQLAlchemy) and MemoryAuditLogStore

Contract:
  - append-only: records are never updated or deleted here
  - recorded_at is assigned by the store, never taken from the client
  - queries return records ordered by (recorded_at DESC, seq DESC), natively
    filtered on subject / time range only, starting strictly after a cursor
  - backend failures surface as StoreUnavailable
  - logs only kinds / counts (never payload values)
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sessionlog.activity.schemas import EnrichedEvent, LogEntry
from sessionlog.errors import StoreUnavailable
from sessionlog.logs.schemas import LogCursor, as_utc
from sessionlog.models.activity_log import ActivityLogORM

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# ORM operations
# ---------------------------------------------------------------------------

async def append_activity_events(
    db: AsyncSession,
    events: Sequence[EnrichedEvent],
    recorded_at: datetime,
) -> list[ActivityLogORM]:
    """
    Persist one batch. All rows share recorded_at; seq (autoincrement) keeps
    the batch in caller order. Uses flush() - caller handles commit.
    """
    rows = [
        ActivityLogORM(
            id=str(uuid.uuid4()),
            kind=event.kind,
            uid=event.uid,
            login=event.login,
            session_id=event.session_id,
            payload=dict(event.payload),
            recorded_at=recorded_at,
        )
        for event in events
    ]
    for row in rows:
        # One add+flush per row so seq follows list order on every backend
        db.add(row)
        await db.flush()
    logger.info("Appended activity events count=%d kinds=%s", len(rows), ",".join(e.kind for e in events))
    return rows


async def query_activity_logs(
    db: AsyncSession,
    *,
    subject_id: Optional[str] = None,
    from_time: Optional[datetime] = None,
    to_time: Optional[datetime] = None,
    after: Optional[LogCursor] = None,
    limit: int,
) -> list[ActivityLogORM]:
    """One descending-by-time batch; empty list when nothing is left."""
    stmt = select(ActivityLogORM)
    if subject_id:
        stmt = stmt.where(ActivityLogORM.uid == subject_id)
    if from_time is not None:
        stmt = stmt.where(ActivityLogORM.recorded_at >= from_time)
    if to_time is not None:
        stmt = stmt.where(ActivityLogORM.recorded_at <= to_time)
    if after is not None:
        stamp, seq = after.key()
        stmt = stmt.where(
            or_(
                ActivityLogORM.recorded_at < stamp,
                and_(ActivityLogORM.recorded_at == stamp, ActivityLogORM.seq < seq),
            )
        )
    stmt = stmt.order_by(ActivityLogORM.recorded_at.desc(), ActivityLogORM.seq.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


def to_log_entry(row: ActivityLogORM) -> LogEntry:
    return LogEntry(
        id=row.id,
        seq=row.seq,
        kind=row.kind,
        uid=row.uid or "",
        login=row.login or "",
        session_id=row.session_id or "",
        payload=dict(row.payload or {}),
        recorded_at=as_utc(row.recorded_at),
    )


# ---------------------------------------------------------------------------
# Store implementations
# ---------------------------------------------------------------------------

class AuditLogStore(Protocol):
    async def append(self, events: Sequence[EnrichedEvent]) -> list[LogEntry]: ...

    async def query_descending_by_time(
        self,
        *,
        subject_id: Optional[str] = None,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
        after: Optional[LogCursor] = None,
        limit: int,
    ) -> list[LogEntry]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SqlAuditLogStore:
    """AuditLogStore over an async_sessionmaker; one short session per call."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def append(self, events: Sequence[EnrichedEvent]) -> list[LogEntry]:
        try:
            async with self._session_factory() as db:
                async with db.begin():
                    rows = await append_activity_events(db, events, self._clock())
                    entries = [to_log_entry(row) for row in rows]
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Audit log append failed count=%d: %s", len(events), exc)
            raise StoreUnavailable("could not append activity events") from exc
        return entries

    async def query_descending_by_time(
        self,
        *,
        subject_id: Optional[str] = None,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
        after: Optional[LogCursor] = None,
        limit: int,
    ) -> list[LogEntry]:
        try:
            async with self._session_factory() as db:
                rows = await query_activity_logs(
                    db,
                    subject_id=subject_id,
                    from_time=from_time,
                    to_time=to_time,
                    after=after,
                    limit=limit,
                )
                return [to_log_entry(row) for row in rows]
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Audit log query failed: %s", exc)
            raise StoreUnavailable("could not query activity logs") from exc


class MemoryAuditLogStore:
    """
    Process-local AuditLogStore with the same ordering and cursor semantics.
    Counts round trips in `queries` so callers can observe batching.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._entries: list[LogEntry] = []
        self._seq = 0
        self.queries = 0

    def __len__(self) -> int:
        return len(self._entries)

    async def append(self, events: Sequence[EnrichedEvent]) -> list[LogEntry]:
        recorded_at = as_utc(self._clock())
        appended = []
        for event in events:
            self._seq += 1
            entry = LogEntry(
                id=str(uuid.uuid4()),
                seq=self._seq,
                kind=event.kind,
                uid=event.uid,
                login=event.login,
                session_id=event.session_id,
                payload=dict(event.payload),
                recorded_at=recorded_at,
            )
            self._entries.append(entry)
            appended.append(entry)
        return appended

    async def query_descending_by_time(
        self,
        *,
        subject_id: Optional[str] = None,
        from_time: Optional[datetime] = None,
        to_time: Optional[datetime] = None,
        after: Optional[LogCursor] = None,
        limit: int,
    ) -> list[LogEntry]:
        self.queries += 1
        ordered = sorted(self._entries, key=lambda e: (e.recorded_at, e.seq), reverse=True)
        batch = []
        for entry in ordered:
            if subject_id and entry.uid != subject_id:
                continue
            if from_time is not None and entry.recorded_at < as_utc(from_time):
                continue
            if to_time is not None and entry.recorded_at > as_utc(to_time):
                continue
            if after is not None and (entry.recorded_at, entry.seq) >= after.key():
                continue
            batch.append(entry)
            if len(batch) >= limit:
                break
        return batch
