"""Login derivation and credential registries."""
from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from sessionlog.activity.identity import (
    Identity,
    LocalIdentityProvider,
    MemoryCredentialRegistry,
    RedisCredentialRegistry,
    derive_login,
)
from sessionlog.cache import make_credential_key
from sessionlog.config import settings
from sessionlog.errors import CredentialUnavailable


@pytest.mark.parametrize("email, expected", [
    ("agent.smith@dps.local", "agent.smith"),
    ("Agent.Smith@DPS.LOCAL", "Agent.Smith"),
    ("agent.smith@example.com", "agent.smith@example.com"),
    ("", ""),
    (None, ""),
])
def test_derive_login(email, expected):
    assert derive_login(email, "dps.local") == expected


def test_identity_login_property():
    assert Identity(uid="u-1", email="j.doe@dps.local").login == "j.doe"


@pytest.mark.asyncio
async def test_memory_registry_issue_verify_revoke():
    registry = MemoryCredentialRegistry()
    identity = Identity(uid="u-1", email="j.doe@dps.local", roles=("director",))

    token = await registry.issue(identity)
    assert await registry.verify(token) == identity
    assert await registry.verify("unknown") is None

    await registry.revoke(token)
    assert await registry.verify(token) is None


@pytest.mark.asyncio
async def test_redis_registry_stores_hashed_key_with_ttl():
    client = AsyncMock()
    registry = RedisCredentialRegistry(client)
    identity = Identity(uid="u-1", email="j.doe@dps.local", roles=("director",))

    token = await registry.issue(identity)

    key, ttl, raw = client.setex.await_args.args
    assert key == make_credential_key(token)
    assert token not in key
    assert ttl == settings.credential_ttl

    client.get.return_value = raw
    assert await registry.verify(token) == identity
    assert json.loads(raw)["roles"] == ["director"]


@pytest.mark.asyncio
async def test_redis_registry_unknown_token():
    client = AsyncMock()
    client.get.return_value = None

    assert await RedisCredentialRegistry(client).verify("nope") is None


@pytest.mark.asyncio
async def test_local_provider_resolves_only_current_identity():
    provider = LocalIdentityProvider(MemoryCredentialRegistry())
    smith = Identity(uid="u-smith", email="agent.smith@dps.local")

    with pytest.raises(CredentialUnavailable):
        await provider.resolve_credential(smith)

    await provider.sign_in(smith)
    assert await provider.resolve_credential(smith)

    with pytest.raises(CredentialUnavailable):
        await provider.resolve_credential(Identity(uid="u-other"))
