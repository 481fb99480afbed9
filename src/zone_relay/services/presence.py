# src/zone_relay/services/presence.py
"""Presence tracking: which users are connected, and through which session.

A user maps to zero or one live transport session. The mapping expires
``PRESENCE_TTL_SECONDS`` after the last heartbeat, so a worker that dies
without cleaning up cannot leave its users online forever. The last-seen
timestamp is recorded on the transition to offline and cleared on reconnect.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta

import redis.asyncio as aioredis

from zone_relay.core.settings import settings
from zone_relay.db.time import as_utc, utcnow
from zone_relay.services.kv import bounded, get_redis, key

logger = logging.getLogger(__name__)

# KEYS: session key, online zset. ARGV: session id, ttl, expiry score, user id.
_REFRESH_SESSION_LUA = """
if redis.call('GET', KEYS[1]) ~= ARGV[1] then
  return 0
end
redis.call('EXPIRE', KEYS[1], ARGV[2])
redis.call('ZADD', KEYS[2], ARGV[3], ARGV[4])
return 1
"""

# KEYS: session key, online zset, last-seen hash.
# ARGV: expected session ('' = any), user id, timestamp.
_RELEASE_SESSION_LUA = """
local current = redis.call('GET', KEYS[1])
if ARGV[1] ~= '' and current ~= ARGV[1] then
  return 0
end
redis.call('DEL', KEYS[1])
redis.call('ZREM', KEYS[2], ARGV[2])
redis.call('HSET', KEYS[3], ARGV[2], ARGV[3])
return 1
"""


class PresenceRegistry(ABC):
    """Single source of truth for whether a user is reachable live."""

    @abstractmethod
    async def set_online(self, user_id: int, session_id: str) -> None:
        """Record ``session_id`` as the user's live session and clear last-seen."""

    @abstractmethod
    async def refresh(self, user_id: int, session_id: str) -> bool:
        """Extend the session's lease; False if it is no longer the user's session."""

    @abstractmethod
    async def set_offline(self, user_id: int, session_id: str | None = None) -> bool:
        """Drop the live mapping and stamp last-seen.

        When ``session_id`` is given, only that session is released so a late
        disconnect of an old socket cannot evict a newer one. Returns whether
        the user transitioned to offline.
        """

    @abstractmethod
    async def get_session(self, user_id: int) -> str | None:
        """Return the user's live session id, if any."""

    @abstractmethod
    async def get_online_user_ids(self) -> set[int]:
        """Return every user with a live session."""

    @abstractmethod
    async def get_last_seen(self, user_id: int) -> datetime | None:
        """Return when the user last went offline (None while online)."""

    async def is_online(self, user_id: int) -> bool:
        return await self.get_session(user_id) is not None


class MemoryPresenceRegistry(PresenceRegistry):
    """In-process registry for single-worker deployments and tests."""

    def __init__(self, ttl_seconds: float | None = None) -> None:
        self.ttl = timedelta(
            seconds=settings.presence_ttl_seconds if ttl_seconds is None else ttl_seconds
        )
        # user_id -> (session_id, lease expiry)
        self._sessions: dict[int, tuple[str, datetime]] = {}
        self._last_seen: dict[int, datetime] = {}

    def _live(self, user_id: int) -> str | None:
        entry = self._sessions.get(user_id)
        if entry is None:
            return None
        session_id, expires_at = entry
        if expires_at <= utcnow():
            # Lease ran out: the user was last seen at the final heartbeat.
            del self._sessions[user_id]
            self._last_seen[user_id] = expires_at - self.ttl
            return None
        return session_id

    async def set_online(self, user_id: int, session_id: str) -> None:
        self._sessions[int(user_id)] = (session_id, utcnow() + self.ttl)
        self._last_seen.pop(int(user_id), None)

    async def refresh(self, user_id: int, session_id: str) -> bool:
        uid = int(user_id)
        if self._live(uid) != session_id:
            return False
        self._sessions[uid] = (session_id, utcnow() + self.ttl)
        return True

    async def set_offline(self, user_id: int, session_id: str | None = None) -> bool:
        uid = int(user_id)
        current = self._live(uid)
        if session_id is not None and current != session_id:
            return False
        self._sessions.pop(uid, None)
        self._last_seen[uid] = utcnow()
        return True

    async def get_session(self, user_id: int) -> str | None:
        return self._live(int(user_id))

    async def get_online_user_ids(self) -> set[int]:
        return {uid for uid in list(self._sessions) if self._live(uid) is not None}

    async def get_last_seen(self, user_id: int) -> datetime | None:
        self._live(int(user_id))
        return self._last_seen.get(int(user_id))


class RedisPresenceRegistry(PresenceRegistry):
    """Registry backed by a leased key per user, an online zset and a last-seen hash.

    The zset is scored by lease expiry, so enumerating online users skips
    sessions whose heartbeat stopped.
    """

    def __init__(self, client: aioredis.Redis | None = None) -> None:
        self._redis = client or get_redis()
        self._online_key = key("presence", "online")
        self._last_seen_key = key("presence", "last_seen")
        self._refresh = self._redis.register_script(_REFRESH_SESSION_LUA)
        self._release = self._redis.register_script(_RELEASE_SESSION_LUA)

    @staticmethod
    def _session_key(user_id: int) -> str:
        return key("presence", "session", user_id)

    @staticmethod
    def _ttl() -> int:
        return int(settings.presence_ttl_seconds)

    def _expiry_score(self) -> float:
        return utcnow().timestamp() + self._ttl()

    async def set_online(self, user_id: int, session_id: str) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._session_key(user_id), session_id, ex=self._ttl())
            pipe.zadd(self._online_key, {str(user_id): self._expiry_score()})
            pipe.hdel(self._last_seen_key, str(user_id))
            await bounded(pipe.execute(), "set_online")
        logger.debug("User %s online via session %s", user_id, session_id)

    async def refresh(self, user_id: int, session_id: str) -> bool:
        refreshed = await bounded(
            self._refresh(
                keys=[self._session_key(user_id), self._online_key],
                args=[session_id, self._ttl(), self._expiry_score(), str(user_id)],
            ),
            "refresh",
        )
        return bool(refreshed)

    async def set_offline(self, user_id: int, session_id: str | None = None) -> bool:
        released = await bounded(
            self._release(
                keys=[self._session_key(user_id), self._online_key, self._last_seen_key],
                args=[session_id or "", str(user_id), utcnow().isoformat()],
            ),
            "set_offline",
        )
        if released:
            logger.debug("User %s offline", user_id)
        return bool(released)

    async def get_session(self, user_id: int) -> str | None:
        return await bounded(self._redis.get(self._session_key(user_id)), "get_session")

    async def is_online(self, user_id: int) -> bool:
        return bool(await bounded(self._redis.exists(self._session_key(user_id)), "is_online"))

    async def get_online_user_ids(self) -> set[int]:
        user_ids = await bounded(
            self._redis.zrangebyscore(self._online_key, utcnow().timestamp(), "+inf"),
            "get_online_user_ids",
        )
        return {int(user_id) for user_id in user_ids}

    async def get_last_seen(self, user_id: int) -> datetime | None:
        raw = await bounded(self._redis.hget(self._last_seen_key, str(user_id)), "get_last_seen")
        if raw:
            return as_utc(datetime.fromisoformat(raw))
        # No clean disconnect recorded; an expired lease still tells us the last heartbeat.
        expires = await bounded(self._redis.zscore(self._online_key, str(user_id)), "get_last_seen")
        if expires is None or expires > utcnow().timestamp():
            return None
        return datetime.fromtimestamp(expires - self._ttl(), UTC)


_registry: PresenceRegistry | None = None


def get_presence_registry() -> PresenceRegistry:
    """Return the shared presence registry for the configured backend."""
    global _registry
    if _registry is None:
        if settings.presence_backend == "memory":
            _registry = MemoryPresenceRegistry()
        else:
            _registry = RedisPresenceRegistry()
    return _registry
