"""
delivery.py - Event enrichment & delivery pipeline.

emit() stamps each raw event with the active session's uid / login / session_id,
resolves a delivery credential (cached, refreshed on token rotation) and posts
the batch to the log-ingestion endpoint as {"token": ..., "events": [...]}.

Two delivery modes:
  normal  - one POST with the regular request timeout
  unload  - page is closing: try the fire-and-forget beacon first, fall back to
            a POST with keepalive (short unload timeout) if the beacon is
            unavailable or rejects the payload

Delivery is best-effort: no retry queue, no persistence of undelivered events.
Every failure is logged here and never reaches the caller.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Protocol, Sequence

import httpx

from sessionlog.activity.identity import Identity, IdentityProvider
from sessionlog.activity.schemas import ActivityEvent, EnrichedEvent, SessionInfo
from sessionlog.config import settings
from sessionlog.errors import CredentialUnavailable

logger = logging.getLogger(__name__)


class Transport(Protocol):
    async def post(self, body: dict[str, Any], *, keepalive: bool = False) -> None:
        """Deliver body; raise httpx.HTTPError on failure."""
        ...

    def send_beacon(self, body: dict[str, Any]) -> bool:
        """Queue body for fire-and-forget delivery. False means not accepted."""
        ...


class HttpTransport:
    """httpx-based transport for the ingestion endpoint."""

    def __init__(
        self,
        url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
        unload_timeout: Optional[float] = None,
        beacon_max_bytes: Optional[int] = None,
    ) -> None:
        self.url = url or settings.ingest_url
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout or settings.request_timeout_seconds
        self.unload_timeout = unload_timeout or settings.unload_timeout_seconds
        self.beacon_max_bytes = beacon_max_bytes or settings.beacon_max_bytes
        self._pending: set[asyncio.Task] = set()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def post(self, body: dict[str, Any], *, keepalive: bool = False) -> None:
        response = await self._get_client().post(
            self.url,
            content=json.dumps(body),
            headers={"Content-Type": "application/json"},
            timeout=self.unload_timeout if keepalive else self.timeout,
        )
        response.raise_for_status()

    def send_beacon(self, body: dict[str, Any]) -> bool:
        data = json.dumps(body).encode("utf-8")
        if len(data) > self.beacon_max_bytes:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        task = loop.create_task(self._send_beacon(data))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def _send_beacon(self, data: bytes) -> None:
        # Beacons carry no delivery confirmation; failures are only logged.
        try:
            await self._get_client().post(
                self.url,
                content=data,
                headers={"Content-Type": "text/plain;charset=UTF-8"},
                timeout=self.unload_timeout,
            )
        except httpx.HTTPError as exc:
            logger.debug("Beacon delivery failed: %s", exc)

    async def aclose(self) -> None:
        if self._pending:
            await asyncio.wait(set(self._pending), timeout=self.unload_timeout)
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None


class EventPipeline:
    def __init__(self, identity: IdentityProvider, transport: Transport) -> None:
        self._identity = identity
        self._transport = transport
        self._credential: Optional[str] = None

    @property
    def has_credential(self) -> bool:
        return self._credential is not None

    def clear_credential(self) -> None:
        self._credential = None

    async def refresh_credential(self, identity: Optional[Identity]) -> None:
        """Re-resolve the cached credential after a token rotation or sign-in."""
        if identity is None:
            self._credential = None
            return
        self._credential = await self._resolve(identity)

    async def _resolve(self, identity: Identity) -> Optional[str]:
        try:
            return await self._identity.resolve_credential(identity)
        except CredentialUnavailable as exc:
            logger.warning("Delivery credential unavailable uid=%s: %s", identity.uid, exc)
            return None

    @staticmethod
    def enrich(session: SessionInfo, events: Sequence[ActivityEvent]) -> list[EnrichedEvent]:
        return [
            EnrichedEvent(
                kind=event.kind,
                payload=dict(event.payload),
                uid=session.uid,
                login=session.login,
                session_id=session.session_id,
            )
            for event in events
        ]

    async def emit(
        self,
        session: Optional[SessionInfo],
        events: Sequence[ActivityEvent],
        *,
        unload: bool = False,
        beacon: bool = True,
    ) -> bool:
        """
        Enrich and deliver one batch, preserving caller order.

        With unload=True the beacon is tried first (unless beacon=False) and a
        keepalive POST is the fallback.

        Returns True when the batch was handed to a transport (no delivery
        confirmation is implied), False when it was dropped.
        """
        if session is None or not events:
            return False
        enriched = self.enrich(session, events)

        token = self._credential
        if token is None:
            identity = self._identity.current_identity()
            if identity is None:
                return False
            token = await self._resolve(identity)
            if token is None:
                logger.debug("Dropping %d event(s): no credential", len(enriched))
                return False
            self._credential = token

        body = {"token": token, "events": [e.model_dump(mode="json") for e in enriched]}
        kinds = ",".join(e.kind for e in enriched)
        try:
            if unload:
                if beacon and self._transport.send_beacon(body):
                    logger.debug("Beacon queued session_id=%s kinds=%s", session.session_id, kinds)
                    return True
                await self._transport.post(body, keepalive=True)
            else:
                await self._transport.post(body)
        except httpx.HTTPError as exc:
            logger.warning(
                "Could not deliver activity events session_id=%s kinds=%s: %s",
                session.session_id, kinds, exc,
            )
            return False
        logger.debug("Delivered activity events session_id=%s kinds=%s", session.session_id, kinds)
        return True
