"""
Shared fixtures for sessionlog tests.

All fixtures are in-process: no PostgreSQL, Redis or network needed.
Test doubles live in fakes.py.
"""
from __future__ import annotations

import pytest

from sessionlog.activity.delivery import EventPipeline
from sessionlog.activity.identity import Identity, LocalIdentityProvider, MemoryCredentialRegistry
from sessionlog.activity.lifecycle import SessionManager
from sessionlog.activity.session_slot import MemorySessionSlot
from sessionlog.store import MemoryAuditLogStore
from sessionlog.tests.fakes import FakeClock, FakeScheduler, RecordingTransport


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> FakeScheduler:
    return FakeScheduler(clock)


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def registry() -> MemoryCredentialRegistry:
    return MemoryCredentialRegistry()


@pytest.fixture
def provider(registry: MemoryCredentialRegistry) -> LocalIdentityProvider:
    return LocalIdentityProvider(registry)


@pytest.fixture
def smith() -> Identity:
    return Identity(uid="u-smith", email="agent.smith@dps.local", display_name="Agent Smith")


@pytest.fixture
def slot() -> MemorySessionSlot:
    return MemorySessionSlot()


@pytest.fixture
def pipeline(provider: LocalIdentityProvider, transport: RecordingTransport) -> EventPipeline:
    return EventPipeline(provider, transport)


@pytest.fixture
def manager(provider, pipeline, slot, clock, scheduler):
    counter = iter(range(1, 1000))
    mgr = SessionManager(
        provider,
        pipeline,
        slot,
        clock=clock,
        scheduler=scheduler,
        timeout_seconds=900,
        new_session_id=lambda: f"s-{next(counter)}",
    )
    mgr.start()
    yield mgr
    mgr.stop()


@pytest.fixture
def audit_store(clock: FakeClock) -> MemoryAuditLogStore:
    return MemoryAuditLogStore(clock=clock)
