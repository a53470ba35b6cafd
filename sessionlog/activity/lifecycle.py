"""
lifecycle.py - Client-side session lifecycle state machine.

    NO_SESSION --sign-in--> ACTIVE --logout / timeout / unload--> ENDING --> NO_SESSION
                             ^  |
                             +--+  activity signal (re-arms the inactivity timer)

Rules:
  - A signed-in identity opens a session. If the durable slot already holds a
    session for the same uid it is resumed (same session_id / started_at, no
    session_start); otherwise a new one is minted and session_start is emitted.
  - Exactly one inactivity timer is armed at a time. Arming cancels the old one
    first, in the same synchronous step.
  - Finalization is one-shot: the first of logout / timeout / unload sets the
    guard flag before any await; later arrivals are no-ops.
  - Identity reported as signed out clears everything immediately and emits
    nothing (forced sign-out elsewhere).
"""
from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Coroutine, Optional, Protocol

from pydantic import ValidationError

from sessionlog.activity.delivery import EventPipeline
from sessionlog.activity.identity import Identity, IdentityProvider, Unsubscribe
from sessionlog.activity.schemas import ActivityEvent, SessionInfo
from sessionlog.activity.session_slot import SessionSlot
from sessionlog.config import settings

logger = logging.getLogger(__name__)

SessionCallback = Callable[[Optional[SessionInfo]], None]

# Signals that count as operator activity
ACTIVITY_SIGNALS = frozenset({"pointer", "keydown", "click", "scroll", "touch", "visible"})


class SessionState(str, enum.Enum):
    NO_SESSION = "no_session"
    ACTIVE = "active"
    ENDING = "ending"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class AsyncioScheduler:
    """Schedules callbacks on the running event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def elapsed_ms(start: datetime, end: datetime) -> int:
    return max(0, int((end - start) / timedelta(milliseconds=1)))


class SessionManager:
    """
    One instance per browsing context.

    All collaborators are injected: the identity provider, the delivery
    pipeline, the durable slot, a clock and a timer scheduler.
    """

    def __init__(
        self,
        identity: IdentityProvider,
        pipeline: EventPipeline,
        slot: SessionSlot,
        *,
        clock: Callable[[], datetime] = utcnow,
        scheduler: Optional[Scheduler] = None,
        timeout_seconds: Optional[float] = None,
        new_session_id: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._identity = identity
        self._pipeline = pipeline
        self._slot = slot
        self._clock = clock
        self._scheduler = scheduler or AsyncioScheduler()
        self.timeout_seconds = timeout_seconds or settings.inactivity_timeout_seconds
        self._new_session_id = new_session_id

        self._state = SessionState.NO_SESSION
        self._session: Optional[SessionInfo] = None
        self._ended = False
        self._last_path: Optional[str] = None
        self._timer: Optional[TimerHandle] = None
        self.deadline: Optional[datetime] = None
        self._subscribers: list[SessionCallback] = []
        self._unsubscribe: list[Unsubscribe] = []
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[SessionInfo]:
        return self._session

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    def subscribe_session(self, callback: SessionCallback) -> Unsubscribe:
        """Call `callback` with the current session now and after every transition."""
        self._subscribers.append(callback)
        callback(self._session)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self) -> None:
        for callback in list(self._subscribers):
            callback(self._session)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._unsubscribe.append(self._identity.on_identity_change(self.handle_identity))
        self._unsubscribe.append(self._identity.on_token_change(self._pipeline.refresh_credential))
        current = self._identity.current_identity()
        if current is not None:
            self._spawn(self.handle_identity(current))

    def stop(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        self._disarm()

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def handle_identity(self, identity: Optional[Identity]) -> None:
        if identity is None:
            self._disarm()
            self._session = None
            self._ended = False
            self._last_path = None
            self._state = SessionState.NO_SESSION
            self._pipeline.clear_credential()
            self._publish()
            return

        stored = await self._slot.read()
        if stored is not None and stored.uid == identity.uid:
            info = stored.model_copy(update={"login": identity.login, "name": identity.display_name or stored.name})
            resumed = True
        else:
            info = SessionInfo(
                uid=identity.uid,
                login=identity.login,
                name=identity.display_name,
                session_id=self._new_session_id(),
                started_at=self._clock(),
            )
            resumed = False

        self._session = info
        self._ended = False
        self._last_path = None
        self._state = SessionState.ACTIVE
        await self._slot.write(info)
        self._arm()
        self._publish()

        if resumed:
            logger.info("Resumed session session_id=%s uid=%s", info.session_id, info.uid)
            return
        logger.info("Started session session_id=%s uid=%s", info.session_id, info.uid)
        await self._pipeline.refresh_credential(identity)
        await self._pipeline.emit(info, [ActivityEvent(kind="session_start")])

    def touch(self, signal: str = "pointer") -> bool:
        """Register operator activity. Returns True if the inactivity timer was re-armed."""
        if signal not in ACTIVITY_SIGNALS:
            raise ValueError(f"unknown activity signal: {signal!r}")
        if self._state is not SessionState.ACTIVE:
            return False
        self._arm()
        return True

    async def end_session(self, reason: str = "logout") -> bool:
        """Explicit sign-out or inactivity. Emits logout followed by session_end."""
        if reason not in ("logout", "timeout"):
            raise ValueError(f"end_session reason must be 'logout' or 'timeout', got {reason!r}")
        begun = self._begin_finalize()
        if begun is None:
            return False
        session, duration = begun
        payload = {"reason": reason, "durationMs": duration}
        await self._slot.clear()
        await self._pipeline.emit(
            session,
            [ActivityEvent(kind="logout", payload=payload), ActivityEvent(kind="session_end", payload=payload)],
        )
        self._complete(session, reason)
        return True

    def handle_unload(self) -> bool:
        """
        Page teardown hook. Synchronous so it can run inside an unload handler.
        Returns False if the session was already finalized (or never started).
        """
        begun = self._begin_finalize()
        if begun is None:
            return False
        session, duration = begun
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop to hand the beacon to: deliver inline with the short unload timeout.
            asyncio.run(self._finish_unload(session, duration, beacon=False))
            return True
        self._spawn(self._finish_unload(session, duration))
        return True

    async def _finish_unload(self, session: SessionInfo, duration: int, beacon: bool = True) -> None:
        await self._slot.clear()
        await self._pipeline.emit(
            session,
            [ActivityEvent(kind="session_end", payload={"reason": "window_closed", "durationMs": duration})],
            unload=True,
            beacon=beacon,
        )
        self._complete(session, "window_closed")

    def _begin_finalize(self) -> Optional[tuple[SessionInfo, int]]:
        if self._ended or self._session is None:
            return None
        self._ended = True
        self._state = SessionState.ENDING
        self._disarm()
        session = self._session
        return session, elapsed_ms(session.started_at, self._clock())

    def _complete(self, session: SessionInfo, reason: str) -> None:
        logger.info("Ended session session_id=%s reason=%s", session.session_id, reason)
        if self._session is not session:
            # A newer session was opened while this one was being finalized.
            return
        self._session = None
        self._last_path = None
        self._state = SessionState.NO_SESSION
        self._publish()

    # ------------------------------------------------------------------
    # Inactivity timer
    # ------------------------------------------------------------------

    def _arm(self) -> None:
        self._disarm()
        self.deadline = self._clock() + timedelta(seconds=self.timeout_seconds)
        self._timer = self._scheduler.call_later(self.timeout_seconds, self._on_timeout)

    def _disarm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self.deadline = None

    def _on_timeout(self) -> None:
        self._timer = None
        self.deadline = None
        self._spawn(self._expire())

    async def _expire(self) -> None:
        ended = await self.end_session("timeout")
        sign_out = getattr(self._identity, "sign_out", None)
        if ended and sign_out is not None:
            await sign_out()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_event(self, kind: str, payload: Optional[dict[str, Any]] = None) -> None:
        """Fire-and-forget: schedule delivery of one event for the active session."""
        session = self._session
        if session is None or self._state is not SessionState.ACTIVE:
            return
        try:
            event = ActivityEvent(kind=kind, payload=payload or {})
        except ValidationError as exc:
            logger.warning("Dropping invalid activity event kind=%r: %s", kind[:64], exc)
            return
        self._spawn(self._pipeline.emit(session, [event]))

    def record_page_view(self, path: str, title: str = "") -> bool:
        """Emit page_view unless `path` repeats the last recorded path."""
        if not path or self._session is None or path == self._last_path:
            return False
        self._last_path = path
        self.record_event("page_view", {"path": path, "title": title})
        return True

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; dropping %s", coro.__qualname__)
            coro.close()
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Session background task failed", exc_info=task.exception())

    async def drain(self) -> None:
        """Wait until every scheduled emission has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
