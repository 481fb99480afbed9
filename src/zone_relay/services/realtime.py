# src/zone_relay/services/realtime.py
"""WebSocket connection manager implementing the live-push capability.

Sockets are owned by this process and keyed by session id. Who is reachable
through which session is answered by the presence registry and the room
tracker, so routing decisions never depend on transport internals.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import WebSocket

from zone_relay.core.errors import RelayError
from zone_relay.core.settings import settings
from zone_relay.services.broadcaster import Broadcaster
from zone_relay.services.presence import PresenceRegistry, get_presence_registry
from zone_relay.services.rooms import RoomMembershipTracker, get_room_tracker

logger = logging.getLogger(__name__)

EVENT_USER_TYPING = "user:typing"


def encode_frame(event: str, payload: Any, room: int | None = None) -> str:
    """Serialize a server frame."""
    return json.dumps({"event": event, "room": room, "payload": payload}, default=str)


class ConnectionManager(Broadcaster):
    """Tracks this process's sockets and pushes JSON frames to them."""

    def __init__(self, presence: PresenceRegistry, rooms: RoomMembershipTracker) -> None:
        self.presence = presence
        self.rooms = rooms
        # session_id -> WebSocket
        self._sockets: dict[str, WebSocket] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_id: int) -> str:
        """Register an accepted socket and mark its user online."""
        session_id = uuid.uuid4().hex
        async with self._lock:
            self._sockets[session_id] = websocket
        try:
            await self.presence.set_online(user_id, session_id)
        except BaseException:
            async with self._lock:
                self._sockets.pop(session_id, None)
            raise
        logger.info("User %s connected (session %s)", user_id, session_id)
        return session_id

    async def heartbeat(self, user_id: int, session_id: str) -> bool:
        """Extend the session's presence and room leases.

        A session that lost its presence entry (expired, or replaced by a
        newer socket that has since gone) is re-registered while its socket
        is still open here.
        """
        if not await self.presence.refresh(user_id, session_id):
            if await self.presence.get_session(user_id) is not None:
                return False
            await self.presence.set_online(user_id, session_id)
        await self.rooms.refresh(session_id)
        return True

    async def disconnect(self, user_id: int, session_id: str) -> set[int]:
        """Drop the socket and its rooms and typing state, then release presence.

        Presence is released even when the room store fails, and only if
        ``session_id`` is still the user's current session.
        """
        async with self._lock:
            self._sockets.pop(session_id, None)
        stopped: set[int] = set()
        try:
            left = await self.rooms.leave_all(session_id)
            stopped = await self.rooms.stop_typing_everywhere(user_id)
        finally:
            await self.presence.set_offline(user_id, session_id)
            logger.info("User %s disconnected (session %s)", user_id, session_id)
        for conversation_id in stopped:
            await self.emit_typing(conversation_id, user_id, False)
        return left

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sockets

    async def send(self, session_id: str, event: str, payload: Any, room: int | None = None) -> bool:
        """Send one frame to one session; drop the socket if the send fails."""
        websocket = self._sockets.get(session_id)
        if websocket is None:
            return False
        try:
            await websocket.send_text(encode_frame(event, payload, room))
        except Exception as exc:
            logger.warning("Send of %s to session %s failed: %s", event, session_id, exc)
            async with self._lock:
                self._sockets.pop(session_id, None)
            return False
        return True

    async def emit_to_user(self, user_id: int, event: str, payload: dict[str, Any]) -> bool:
        session_id = await self.presence.get_session(user_id)
        if session_id is None:
            return False
        return await self.send(session_id, event, payload)

    async def emit_to_room(
        self,
        room_id: int,
        event: str,
        payload: dict[str, Any],
        exclude: str | None = None,
    ) -> set[str]:
        reached: set[str] = set()
        for session_id in await self.rooms.sessions_in_room(room_id):
            if session_id == exclude:
                continue
            if await self.send(session_id, event, payload, room=room_id):
                reached.add(session_id)
        return reached

    async def emit_typing(
        self,
        conversation_id: int,
        user_id: int,
        is_typing: bool,
        user: dict[str, Any] | None = None,
        exclude: str | None = None,
    ) -> set[str]:
        """Tell the room whether ``user_id`` is typing."""
        payload: dict[str, Any] = {
            "conversationId": conversation_id,
            "userId": user_id,
            "isTyping": is_typing,
        }
        if user is not None:
            payload["user"] = user
        return await self.emit_to_room(conversation_id, EVENT_USER_TYPING, payload, exclude=exclude)

    async def sweep_typing(self, idle_seconds: float | None = None) -> list[tuple[int, int]]:
        """Expire idle typing indicators and announce that those users stopped."""
        expired = await self.rooms.expire_typing(idle_seconds)
        for conversation_id, user_id in expired:
            await self.emit_typing(conversation_id, user_id, False)
        return expired


async def run_typing_sweeper(manager: ConnectionManager, interval: float = 1.0) -> None:
    """Sweep idle typing indicators until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await manager.sweep_typing()
        except RelayError:
            logger.warning("Typing sweep skipped: presence store unavailable")


async def run_heartbeat(manager: ConnectionManager, user_id: int, session_id: str) -> None:
    """Refresh one session's leases every ``PRESENCE_HEARTBEAT_SECONDS`` until cancelled."""
    while True:
        await asyncio.sleep(settings.presence_heartbeat_seconds)
        try:
            if not await manager.heartbeat(user_id, session_id):
                logger.info("Session %s of user %s was superseded", session_id, user_id)
        except RelayError:
            logger.warning("Heartbeat for session %s failed", session_id)


_manager: ConnectionManager | None = None


def get_connection_manager() -> ConnectionManager:
    """Return the process-wide connection manager."""
    global _manager
    if _manager is None:
        _manager = ConnectionManager(get_presence_registry(), get_room_tracker())
    return _manager
