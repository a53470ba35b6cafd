"""
identity.py - Identity provider boundary and delivery credentials.

The identity provider is an external collaborator. This module fixes the shape
SessionManager and EventPipeline talk to (IdentityProvider), plus:

  - derive_login()              e-mail -> display login (strips the login domain)
  - RedisCredentialRegistry     server-side token -> identity lookup (cache.py namespace)
  - MemoryCredentialRegistry    same contract, process-local
  - LocalIdentityProvider       in-process provider backed by a registry; used by
                                embedded clients and the test suite
"""
from __future__ import annotations

import inspect
import logging
import secrets
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

import redis.asyncio as aioredis
from pydantic import BaseModel, ConfigDict, Field

from sessionlog.cache import delete_credential, get_credential, set_credential
from sessionlog.config import settings
from sessionlog.errors import CredentialUnavailable

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


class Identity(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: str = Field(min_length=1)
    email: str = ""
    display_name: Optional[str] = None
    roles: tuple[str, ...] = ()

    @property
    def login(self) -> str:
        return derive_login(self.email)


def derive_login(email: Optional[str], domain: Optional[str] = None) -> str:
    """
    Normalize a sign-in e-mail to the internal login used across the panel.
    Falls back to the original e-mail when the configured domain suffix is missing.
    """
    if not email:
        return ""
    suffix = f"@{domain or settings.login_domain}"
    if email.lower().endswith(suffix.lower()):
        return email[: -len(suffix)]
    return email


class IdentityProvider(Protocol):
    def current_identity(self) -> Optional[Identity]: ...

    def on_identity_change(self, callback: Listener) -> Unsubscribe: ...

    def on_token_change(self, callback: Listener) -> Unsubscribe: ...

    async def resolve_credential(self, identity: Identity) -> str:
        """Return a delivery token or raise CredentialUnavailable."""
        ...


async def notify(listeners: list[Listener], value: Any) -> None:
    """Call every listener, awaiting the ones that are coroutines."""
    for listener in list(listeners):
        result = listener(value)
        if inspect.isawaitable(result):
            await result


# ---------------------------------------------------------------------------
# Credential registries (server side)
# ---------------------------------------------------------------------------

class RedisCredentialRegistry:
    """Token registry stored under credential:{sha256(token)} with a TTL."""

    def __init__(self, client: aioredis.Redis):
        self._client = client

    async def issue(self, identity: Identity) -> str:
        token = secrets.token_urlsafe(32)
        await set_credential(self._client, token, identity.model_dump(mode="json"))
        return token

    async def verify(self, token: str) -> Optional[Identity]:
        data = await get_credential(self._client, token)
        if data is None:
            return None
        return Identity.model_validate(data)

    async def revoke(self, token: str) -> None:
        await delete_credential(self._client, token)


class MemoryCredentialRegistry:
    def __init__(self) -> None:
        self._tokens: dict[str, Identity] = {}

    async def issue(self, identity: Identity) -> str:
        token = secrets.token_urlsafe(32)
        self._tokens[token] = identity
        return token

    async def verify(self, token: str) -> Optional[Identity]:
        return self._tokens.get(token)

    async def revoke(self, token: str) -> None:
        self._tokens.pop(token, None)


# ---------------------------------------------------------------------------
# In-process provider
# ---------------------------------------------------------------------------

class LocalIdentityProvider:
    """
    Minimal identity provider: one signed-in identity at a time, one live token.

    sign_in / sign_out / rotate_token fire the same observer callbacks a hosted
    auth SDK would (identity change, token change).
    """

    def __init__(self, registry) -> None:
        self._registry = registry
        self._identity: Optional[Identity] = None
        self._token: Optional[str] = None
        self._identity_listeners: list[Listener] = []
        self._token_listeners: list[Listener] = []

    def current_identity(self) -> Optional[Identity]:
        return self._identity

    def on_identity_change(self, callback: Listener) -> Unsubscribe:
        self._identity_listeners.append(callback)
        return lambda: self._remove(self._identity_listeners, callback)

    def on_token_change(self, callback: Listener) -> Unsubscribe:
        self._token_listeners.append(callback)
        return lambda: self._remove(self._token_listeners, callback)

    @staticmethod
    def _remove(listeners: list[Listener], callback: Listener) -> None:
        if callback in listeners:
            listeners.remove(callback)

    async def sign_in(self, identity: Identity) -> None:
        self._identity = identity
        self._token = await self._registry.issue(identity)
        logger.info("Signed in uid=%s", identity.uid)
        await notify(self._token_listeners, identity)
        await notify(self._identity_listeners, identity)

    async def sign_out(self) -> None:
        if self._identity is None:
            return
        uid = self._identity.uid
        if self._token is not None:
            await self._registry.revoke(self._token)
        self._identity = None
        self._token = None
        logger.info("Signed out uid=%s", uid)
        await notify(self._token_listeners, None)
        await notify(self._identity_listeners, None)

    async def rotate_token(self) -> None:
        if self._identity is None:
            return
        if self._token is not None:
            await self._registry.revoke(self._token)
        self._token = await self._registry.issue(self._identity)
        await notify(self._token_listeners, self._identity)

    async def resolve_credential(self, identity: Identity) -> str:
        if self._identity is None or identity.uid != self._identity.uid or not self._token:
            raise CredentialUnavailable(f"no token for uid={identity.uid}")
        return self._token
