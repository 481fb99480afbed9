"""Shared Redis client and bounded-call helper for ephemeral state."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from zone_relay.core.errors import PresenceUnavailableError
from zone_relay.core.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    """Return the process-wide Redis client, creating it on first use."""
    global _client
    if _client is None:
        _client = aioredis.from_url(settings.redis_url, decode_responses=True)
    return _client


async def close_redis() -> None:
    """Close the shared client, if one was created."""
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None


def key(*parts: object) -> str:
    """Build a namespaced key, e.g. ``zone:presence:sessions``."""
    return ":".join([settings.presence_key_prefix, *(str(part) for part in parts)])


async def bounded(awaitable: Awaitable[T], what: str, timeout: float | None = None) -> T:
    """Await a store call with a timeout, converting failures to a domain error."""
    limit = settings.presence_timeout_seconds if timeout is None else timeout
    try:
        return await asyncio.wait_for(awaitable, timeout=limit)
    except TimeoutError as exc:
        logger.error("Presence store timed out during %s after %.1fs", what, limit)
        raise PresenceUnavailableError() from exc
    except (RedisError, OSError) as exc:
        logger.error("Presence store failed during %s: %s", what, exc)
        raise PresenceUnavailableError() from exc
