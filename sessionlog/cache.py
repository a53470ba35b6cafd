"""
cache.py - Redis layer for sessionlog.

Namespace conventions:
  {session_slot_prefix}:{context_id}  -> durable session slot      TTL 24h (settings.session_slot_ttl)
  credential:{sha256(token)}          -> verified identity dict     TTL 1h  (settings.credential_ttl)

Design:
  - Uses redis.asyncio (async client, part of redis-py 5.x)
  - Pool created once in lifespan, stored on app.state.redis
  - Helper functions take the client as a param - no module-level global state
  - Credential keys hash the token so raw tokens never sit in Redis or in logs
  - Logs only context ids / key digests (never identities or payloads)
"""
import hashlib
import json
import logging
from typing import Optional

import redis.asyncio as aioredis

from sessionlog.config import settings

logger = logging.getLogger(__name__)

CREDENTIAL_PREFIX = "credential"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def make_session_slot_key(context_id: str) -> str:
    """Build Redis key for a browsing context's durable session slot."""
    return f"{settings.session_slot_prefix}:{context_id}"


def make_credential_key(token: str) -> str:
    """
    Build Redis key for a delivery credential.
    Key format: credential:{sha256hex(token)}
    """
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    return f"{CREDENTIAL_PREFIX}:{digest}"


# ---------------------------------------------------------------------------
# Pool factory - called once in lifespan
# ---------------------------------------------------------------------------

async def create_redis_pool() -> aioredis.Redis:
    """
    Create and return an async Redis connection pool.
    Verifies connectivity with PING before returning.
    """
    client = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=20,
    )
    await client.ping()
    logger.info("Redis connection pool established at %s", settings.redis_url)
    return client


# ---------------------------------------------------------------------------
# Session slot helpers
# ---------------------------------------------------------------------------

async def get_slot_raw(client: aioredis.Redis, context_id: str) -> Optional[str]:
    """Return the raw slot string, or None if the slot is empty or expired."""
    return await client.get(make_session_slot_key(context_id))


async def set_slot_data(client: aioredis.Redis, context_id: str, data: dict) -> None:
    """Overwrite the slot and reset its TTL."""
    key = make_session_slot_key(context_id)
    await client.setex(key, settings.session_slot_ttl, json.dumps(data))
    logger.debug("Session slot written context_id=%s ttl=%ds", context_id, settings.session_slot_ttl)


async def delete_slot(client: aioredis.Redis, context_id: str) -> None:
    await client.delete(make_session_slot_key(context_id))
    logger.debug("Session slot cleared context_id=%s", context_id)


# ---------------------------------------------------------------------------
# Credential helpers
# ---------------------------------------------------------------------------

async def get_credential(client: aioredis.Redis, token: str) -> Optional[dict]:
    """Return the identity dict bound to a token, or None if unknown or expired."""
    raw = await client.get(make_credential_key(token))
    if raw is None:
        return None
    return json.loads(raw)


async def set_credential(client: aioredis.Redis, token: str, identity: dict) -> None:
    key = make_credential_key(token)
    await client.setex(key, settings.credential_ttl, json.dumps(identity))
    logger.info("Credential issued key=%s ttl=%ds", key, settings.credential_ttl)


async def delete_credential(client: aioredis.Redis, token: str) -> None:
    key = make_credential_key(token)
    await client.delete(key)
    logger.info("Credential revoked key=%s", key)
