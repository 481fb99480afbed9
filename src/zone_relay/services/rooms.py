# src/zone_relay/services/rooms.py
"""Tracks which live sessions are currently viewing which conversation.

Being online is not the same as looking at a conversation: a user who is
connected but elsewhere in the app still gets a stored notification.
Subscriptions lapse ``PRESENCE_TTL_SECONDS`` after the session's last
heartbeat. The same store keeps short-lived typing indicators per
conversation.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta

import redis.asyncio as aioredis

from zone_relay.core.settings import settings
from zone_relay.db.time import utcnow
from zone_relay.services.kv import bounded, get_redis, key

logger = logging.getLogger(__name__)


class RoomMembershipTracker(ABC):
    """Subscribed / not-subscribed state per (conversation, session)."""

    @abstractmethod
    async def join(self, conversation_id: int, session_id: str) -> None:
        """Subscribe ``session_id`` to the conversation's live channel."""

    @abstractmethod
    async def leave(self, conversation_id: int, session_id: str) -> None:
        """Unsubscribe ``session_id``; a no-op if it was not subscribed."""

    @abstractmethod
    async def leave_all(self, session_id: str) -> set[int]:
        """Drop every subscription of a session and return the rooms it left."""

    @abstractmethod
    async def refresh(self, session_id: str) -> None:
        """Extend the lease on every subscription the session holds."""

    @abstractmethod
    async def is_session_in_room(self, conversation_id: int, session_id: str) -> bool:
        """Return whether ``session_id`` is subscribed to the conversation."""

    @abstractmethod
    async def sessions_in_room(self, conversation_id: int) -> set[str]:
        """Return every session subscribed to the conversation."""

    @abstractmethod
    async def start_typing(self, conversation_id: int, user_id: int) -> None:
        """Mark the user as typing in the conversation (refreshes the activity time)."""

    @abstractmethod
    async def stop_typing(self, conversation_id: int, user_id: int) -> bool:
        """Clear the indicator; return whether one was set."""

    @abstractmethod
    async def stop_typing_everywhere(self, user_id: int) -> set[int]:
        """Clear every indicator of the user and return the conversations affected."""

    @abstractmethod
    async def expire_typing(self, idle_seconds: float | None = None) -> list[tuple[int, int]]:
        """Drop indicators idle for longer than ``idle_seconds``.

        Returns the ``(conversation_id, user_id)`` pairs that were removed.
        """


def _typing_cutoff(idle_seconds: float | None) -> datetime:
    idle = settings.typing_timeout_seconds if idle_seconds is None else idle_seconds
    return utcnow() - timedelta(seconds=idle)


class MemoryRoomTracker(RoomMembershipTracker):
    """In-process tracker for single-worker deployments and tests."""

    def __init__(self, ttl_seconds: float | None = None) -> None:
        self.ttl = timedelta(
            seconds=settings.presence_ttl_seconds if ttl_seconds is None else ttl_seconds
        )
        # conversation_id -> session_id -> lease expiry
        self._rooms: dict[int, dict[str, datetime]] = {}
        self._by_session: dict[str, set[int]] = {}
        # conversation_id -> user_id -> last activity
        self._typing: dict[int, dict[int, datetime]] = {}

    def _live_sessions(self, conversation_id: int) -> dict[str, datetime]:
        room = self._rooms.get(conversation_id, {})
        now = utcnow()
        for session_id in [sid for sid, expires_at in room.items() if expires_at <= now]:
            del room[session_id]
        return room

    async def join(self, conversation_id: int, session_id: str) -> None:
        self._rooms.setdefault(int(conversation_id), {})[session_id] = utcnow() + self.ttl
        self._by_session.setdefault(session_id, set()).add(int(conversation_id))

    async def leave(self, conversation_id: int, session_id: str) -> None:
        room = self._rooms.get(int(conversation_id))
        if room is not None:
            room.pop(session_id, None)
            if not room:
                del self._rooms[int(conversation_id)]
        joined = self._by_session.get(session_id)
        if joined is not None:
            joined.discard(int(conversation_id))
            if not joined:
                del self._by_session[session_id]

    async def leave_all(self, session_id: str) -> set[int]:
        joined = set(self._by_session.get(session_id, set()))
        for conversation_id in joined:
            await self.leave(conversation_id, session_id)
        return joined

    async def refresh(self, session_id: str) -> None:
        expires_at = utcnow() + self.ttl
        for conversation_id in self._by_session.get(session_id, set()):
            room = self._rooms.get(conversation_id)
            if room is not None and session_id in room:
                room[session_id] = expires_at

    async def is_session_in_room(self, conversation_id: int, session_id: str) -> bool:
        return session_id in self._live_sessions(int(conversation_id))

    async def sessions_in_room(self, conversation_id: int) -> set[str]:
        return set(self._live_sessions(int(conversation_id)))

    async def start_typing(self, conversation_id: int, user_id: int) -> None:
        self._typing.setdefault(int(conversation_id), {})[int(user_id)] = utcnow()

    async def stop_typing(self, conversation_id: int, user_id: int) -> bool:
        typing = self._typing.get(int(conversation_id), {})
        removed = typing.pop(int(user_id), None) is not None
        if not typing:
            self._typing.pop(int(conversation_id), None)
        return removed

    async def stop_typing_everywhere(self, user_id: int) -> set[int]:
        stopped = {cid for cid, typing in self._typing.items() if int(user_id) in typing}
        for conversation_id in stopped:
            await self.stop_typing(conversation_id, user_id)
        return stopped

    async def expire_typing(self, idle_seconds: float | None = None) -> list[tuple[int, int]]:
        cutoff = _typing_cutoff(idle_seconds)
        expired = [
            (conversation_id, user_id)
            for conversation_id, typing in self._typing.items()
            for user_id, last_activity in typing.items()
            if last_activity <= cutoff
        ]
        for conversation_id, user_id in expired:
            await self.stop_typing(conversation_id, user_id)
        return expired


class RedisRoomTracker(RoomMembershipTracker):
    """Tracker backed by Redis.

    Each room is a zset of sessions scored by lease expiry, each session has
    a reverse set of its rooms, and each conversation with someone typing
    has a zset of users scored by last activity.
    """

    def __init__(self, client: aioredis.Redis | None = None) -> None:
        self._redis = client or get_redis()
        self._typing_index = key("typing", "rooms")

    @staticmethod
    def _room_key(conversation_id: int) -> str:
        return key("room", conversation_id)

    @staticmethod
    def _session_key(session_id: str) -> str:
        return key("session", session_id, "rooms")

    @staticmethod
    def _typing_key(conversation_id: int) -> str:
        return key("typing", conversation_id)

    @staticmethod
    def _ttl() -> int:
        return int(settings.presence_ttl_seconds)

    async def join(self, conversation_id: int, session_id: str) -> None:
        now = utcnow().timestamp()
        room = self._room_key(conversation_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(room, "-inf", now)
            pipe.zadd(room, {session_id: now + self._ttl()})
            pipe.expire(room, self._ttl())
            pipe.sadd(self._session_key(session_id), str(conversation_id))
            pipe.expire(self._session_key(session_id), self._ttl())
            await bounded(pipe.execute(), "room join")

    async def leave(self, conversation_id: int, session_id: str) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self._room_key(conversation_id), session_id)
            pipe.srem(self._session_key(session_id), str(conversation_id))
            await bounded(pipe.execute(), "room leave")

    async def _joined(self, session_id: str) -> set[int]:
        joined = await bounded(
            self._redis.smembers(self._session_key(session_id)), "room lookup"
        )
        return {int(conversation_id) for conversation_id in joined}

    async def leave_all(self, session_id: str) -> set[int]:
        rooms = await self._joined(session_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            for conversation_id in rooms:
                pipe.zrem(self._room_key(conversation_id), session_id)
            pipe.delete(self._session_key(session_id))
            await bounded(pipe.execute(), "room leave_all")
        if rooms:
            logger.debug("Session %s left rooms %s", session_id, sorted(rooms))
        return rooms

    async def refresh(self, session_id: str) -> None:
        rooms = await self._joined(session_id)
        expires = utcnow().timestamp() + self._ttl()
        async with self._redis.pipeline(transaction=True) as pipe:
            for conversation_id in rooms:
                pipe.zadd(self._room_key(conversation_id), {session_id: expires}, xx=True)
                pipe.expire(self._room_key(conversation_id), self._ttl())
            pipe.expire(self._session_key(session_id), self._ttl())
            await bounded(pipe.execute(), "room refresh")

    async def is_session_in_room(self, conversation_id: int, session_id: str) -> bool:
        expires = await bounded(
            self._redis.zscore(self._room_key(conversation_id), session_id),
            "room membership",
        )
        return expires is not None and expires > utcnow().timestamp()

    async def sessions_in_room(self, conversation_id: int) -> set[str]:
        members = await bounded(
            self._redis.zrangebyscore(
                self._room_key(conversation_id), utcnow().timestamp(), "+inf"
            ),
            "room sessions",
        )
        return set(members)

    async def start_typing(self, conversation_id: int, user_id: int) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zadd(self._typing_key(conversation_id), {str(user_id): utcnow().timestamp()})
            pipe.sadd(self._typing_index, str(conversation_id))
            await bounded(pipe.execute(), "typing start")

    async def stop_typing(self, conversation_id: int, user_id: int) -> bool:
        removed = await bounded(
            self._redis.zrem(self._typing_key(conversation_id), str(user_id)), "typing stop"
        )
        return bool(removed)

    async def _typing_rooms(self) -> set[int]:
        rooms = await bounded(self._redis.smembers(self._typing_index), "typing rooms")
        return {int(conversation_id) for conversation_id in rooms}

    async def stop_typing_everywhere(self, user_id: int) -> set[int]:
        stopped: set[int] = set()
        for conversation_id in await self._typing_rooms():
            if await self.stop_typing(conversation_id, user_id):
                stopped.add(conversation_id)
        return stopped

    async def expire_typing(self, idle_seconds: float | None = None) -> list[tuple[int, int]]:
        cutoff = _typing_cutoff(idle_seconds).timestamp()
        expired: list[tuple[int, int]] = []
        for conversation_id in await self._typing_rooms():
            typing_key = self._typing_key(conversation_id)
            idle = await bounded(
                self._redis.zrangebyscore(typing_key, "-inf", cutoff), "typing sweep"
            )
            for user_id in idle:
                # Only the worker whose ZREM succeeds reports the expiry.
                if await bounded(self._redis.zrem(typing_key, user_id), "typing sweep"):
                    expired.append((conversation_id, int(user_id)))
            if not await bounded(self._redis.zcard(typing_key), "typing sweep"):
                await bounded(
                    self._redis.srem(self._typing_index, str(conversation_id)), "typing sweep"
                )
        return expired


_tracker: RoomMembershipTracker | None = None


def get_room_tracker() -> RoomMembershipTracker:
    """Return the shared room tracker for the configured backend."""
    global _tracker
    if _tracker is None:
        if settings.presence_backend == "memory":
            _tracker = MemoryRoomTracker()
        else:
            _tracker = RedisRoomTracker()
    return _tracker
