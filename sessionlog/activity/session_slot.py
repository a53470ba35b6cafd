"""
session_slot.py - Durable per-context session slot.

Layout (flat record, one per browsing context):
    {"uid": ..., "login": ..., "name": ..., "sessionId": ..., "startedAt": <epoch ms>}

The slot survives reloads within one context but not context loss. Absent or
malformed content always reads as "no session"; write/clear failures are logged
and swallowed because the slot only exists to resume sessions across reloads.
"""
from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from sessionlog.activity.schemas import SessionInfo
from sessionlog.cache import delete_slot, get_slot_raw, set_slot_data
from sessionlog.errors import MalformedDurableState

logger = logging.getLogger(__name__)


class SessionSlot(Protocol):
    async def read(self) -> Optional[SessionInfo]: ...

    async def write(self, session: SessionInfo) -> None: ...

    async def clear(self) -> None: ...


def to_slot_record(session: SessionInfo) -> dict[str, Any]:
    record: dict[str, Any] = {
        "uid": session.uid,
        "login": session.login,
        "sessionId": session.session_id,
        "startedAt": int(session.started_at.timestamp() * 1000),
    }
    if session.name:
        record["name"] = session.name
    return record


def parse_slot_record(raw: Optional[str]) -> Optional[SessionInfo]:
    """
    Decode a slot string. Returns None when the slot is empty.
    Raises MalformedDurableState for anything that is not a usable session record.
    """
    if not raw:
        return None
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise MalformedDurableState("slot is not valid JSON") from exc
    if not isinstance(data, dict):
        raise MalformedDurableState("slot is not an object")
    if not data.get("uid") or not data.get("sessionId") or not data.get("startedAt"):
        raise MalformedDurableState("slot is missing uid, sessionId or startedAt")
    try:
        started_ms = float(data["startedAt"])
    except (TypeError, ValueError) as exc:
        raise MalformedDurableState("startedAt is not a number") from exc
    if not math.isfinite(started_ms) or started_ms <= 0:
        raise MalformedDurableState("startedAt is out of range")
    try:
        return SessionInfo(
            uid=str(data["uid"]),
            login=str(data.get("login") or ""),
            name=data.get("name") or None,
            session_id=str(data["sessionId"]),
            started_at=datetime.fromtimestamp(started_ms / 1000, tz=timezone.utc),
        )
    except (ValueError, OverflowError, OSError, ValidationError) as exc:
        raise MalformedDurableState("slot does not hold a usable session") from exc


class MemorySessionSlot:
    """Slot held in process memory; `raw` is exposed so tests can corrupt it."""

    def __init__(self, raw: Optional[str] = None) -> None:
        self.raw = raw

    async def read(self) -> Optional[SessionInfo]:
        try:
            return parse_slot_record(self.raw)
        except MalformedDurableState as exc:
            logger.warning("Ignoring malformed session slot: %s", exc)
            return None

    async def write(self, session: SessionInfo) -> None:
        self.raw = json.dumps(to_slot_record(session))

    async def clear(self) -> None:
        self.raw = None


class RedisSessionSlot:
    """Slot stored in Redis under {session_slot_prefix}:{context_id}."""

    def __init__(self, client: aioredis.Redis, context_id: str) -> None:
        self._client = client
        self._context_id = context_id

    async def read(self) -> Optional[SessionInfo]:
        try:
            raw = await get_slot_raw(self._client, self._context_id)
            return parse_slot_record(raw)
        except MalformedDurableState as exc:
            logger.warning("Ignoring malformed session slot context_id=%s: %s", self._context_id, exc)
        except RedisError as exc:
            logger.warning("Could not read session slot context_id=%s: %s", self._context_id, exc)
        return None

    async def write(self, session: SessionInfo) -> None:
        try:
            await set_slot_data(self._client, self._context_id, to_slot_record(session))
        except RedisError as exc:
            logger.warning("Could not write session slot context_id=%s: %s", self._context_id, exc)

    async def clear(self) -> None:
        try:
            await delete_slot(self._client, self._context_id)
        except RedisError as exc:
            logger.warning("Could not clear session slot context_id=%s: %s", self._context_id, exc)
