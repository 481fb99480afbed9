# src/zone_relay/api/v1/endpoints/realtime.py
"""WebSocket live transport.

Clients connect with ``/ws?token=<jwt>`` and send JSON frames
(``joinRoom``, ``leaveRoom``, ``markRead``, ``typing:start``,
``typing:stop``, ``ping``). Server frames have the shape
``{"event": ..., "room": ..., "payload": ...}``.

The socket holds no database session: each frame that needs the database
opens its own short one.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from zone_relay.api.v1.dependencies import PresenceDep, RoomsDep, SessionFactoryDep
from zone_relay.core.errors import PresenceUnavailableError, RelayError, ValidationFailedError
from zone_relay.core.security import decode_user_id
from zone_relay.models import User
from zone_relay.services.conversations import ConversationService, require_member
from zone_relay.services.delivery import DeliveryRouter
from zone_relay.services.realtime import ConnectionManager, get_connection_manager, run_heartbeat

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

ROOM_EVENTS = ("joinRoom", "leaveRoom", "markRead", "typing:start", "typing:stop")


def get_connection_manager_dep() -> ConnectionManager:
    """Return this process's connection manager."""
    return get_connection_manager()


ConnectionManagerDep = Annotated[ConnectionManager, Depends(get_connection_manager_dep)]


def _conversation_id(frame: dict[str, Any]) -> int | None:
    try:
        return int(frame.get("conversationId"))
    except (TypeError, ValueError):
        return None


def _upto(frame: dict[str, Any]) -> datetime | None:
    raw = frame.get("uptoTimestamp")
    if raw is None:
        return None
    try:
        return datetime.fromisoformat(str(raw))
    except ValueError as exc:
        raise ValidationFailedError("uptoTimestamp must be an ISO 8601 timestamp") from exc


def _typing_user(user: User) -> dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "display_name": user.display_name,
        "avatar_url": user.avatar_url,
    }


@router.websocket("/ws")
async def live_transport(
    websocket: WebSocket,
    session_factory: SessionFactoryDep,
    presence: PresenceDep,
    rooms: RoomsDep,
    manager: ConnectionManagerDep,
    token: str = Query(""),
) -> None:
    """Hold one client's live session until it disconnects."""
    user_id = decode_user_id(token) if token else None
    if user_id is not None:
        with session_factory() as db:
            if db.get(User, user_id) is None:
                user_id = None
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    try:
        session_id = await manager.connect(websocket, user_id)
    except PresenceUnavailableError:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    heartbeat = asyncio.create_task(run_heartbeat(manager, user_id, session_id))
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                frame = None
            if not isinstance(frame, dict):
                await manager.send(session_id, "error", {"detail": "Frames must be JSON objects"})
                continue

            event = frame.get("event")
            try:
                if event == "ping":
                    await manager.heartbeat(user_id, session_id)
                    await manager.send(session_id, "pong", {})
                elif event in ROOM_EVENTS:
                    conversation_id = _conversation_id(frame)
                    if conversation_id is None:
                        await manager.send(session_id, "error", {"detail": "conversationId is required"})
                        continue
                    await _handle_room_event(
                        event, frame, conversation_id, user_id, session_id,
                        session_factory, presence, rooms, manager,
                    )
                else:
                    await manager.send(session_id, "error", {"detail": f"Unknown event: {event}"})
            except RelayError as exc:
                await manager.send(session_id, "error", {"detail": exc.detail, "event": event})
    except WebSocketDisconnect:
        pass
    finally:
        heartbeat.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await heartbeat
        try:
            await manager.disconnect(user_id, session_id)
        except PresenceUnavailableError:
            logger.error("Could not clear presence for user %s session %s", user_id, session_id)


async def _handle_room_event(
    event: str,
    frame: dict[str, Any],
    conversation_id: int,
    user_id: int,
    session_id: str,
    session_factory,
    presence,
    rooms,
    manager: ConnectionManager,
) -> None:
    if event == "leaveRoom":
        await rooms.leave(conversation_id, session_id)
        return
    if event == "typing:stop":
        if await rooms.stop_typing(conversation_id, user_id):
            await manager.emit_typing(conversation_id, user_id, False, exclude=session_id)
        return

    with session_factory() as db:
        if event == "markRead":
            conversations = ConversationService(db, DeliveryRouter(db, presence, rooms, manager))
            await conversations.mark_messages_as_read(conversation_id, user_id, upto=_upto(frame))
            return

        require_member(db, conversation_id, user_id)
        if event == "joinRoom":
            await rooms.join(conversation_id, session_id)
            await manager.send(
                session_id,
                "roomJoined",
                {"conversationId": conversation_id},
                room=conversation_id,
            )
        else:
            user = db.get(User, user_id)
            await rooms.start_typing(conversation_id, user_id)
            await manager.emit_typing(
                conversation_id,
                user_id,
                True,
                user=_typing_user(user),
                exclude=session_id,
            )
