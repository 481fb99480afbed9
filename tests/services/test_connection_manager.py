# tests/services/test_connection_manager.py
"""Tests for socket bookkeeping, leases and typing in the connection manager."""

import json
from unittest.mock import AsyncMock

import pytest

from zone_relay.core.errors import PresenceUnavailableError
from zone_relay.services.realtime import ConnectionManager


class FakeSocket:
    """Collects the frames sent to it."""

    def __init__(self) -> None:
        self.frames: list[dict] = []

    async def send_text(self, text: str) -> None:
        self.frames.append(json.loads(text))

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.frames]


@pytest.mark.asyncio
async def test_failed_registration_drops_socket(presence, rooms, mocker):
    """Test that a socket whose presence write failed is not left behind."""
    manager = ConnectionManager(presence, rooms)
    mocker.patch.object(presence, "set_online", AsyncMock(side_effect=PresenceUnavailableError("down")))

    with pytest.raises(PresenceUnavailableError):
        await manager.connect(FakeSocket(), 1)

    assert manager._sockets == {}


@pytest.mark.asyncio
async def test_disconnect_releases_presence_when_rooms_fail(presence, rooms, mocker):
    manager = ConnectionManager(presence, rooms)
    session_id = await manager.connect(FakeSocket(), 1)
    mocker.patch.object(rooms, "leave_all", AsyncMock(side_effect=PresenceUnavailableError("down")))

    with pytest.raises(PresenceUnavailableError):
        await manager.disconnect(1, session_id)

    assert await presence.is_online(1) is False
    assert not manager.has_session(session_id)


@pytest.mark.asyncio
async def test_disconnect_keeps_newer_session(connection_manager, presence):
    old = await connection_manager.connect(FakeSocket(), 1)
    new = await connection_manager.connect(FakeSocket(), 1)

    await connection_manager.disconnect(1, old)

    assert await presence.get_session(1) == new


@pytest.mark.asyncio
async def test_heartbeat_extends_and_restores_leases(connection_manager, presence, rooms):
    """Test that a heartbeat renews a live session and re-registers one that lapsed."""
    session_id = await connection_manager.connect(FakeSocket(), 1)
    await rooms.join(5, session_id)

    assert await connection_manager.heartbeat(1, session_id) is True

    await presence.set_offline(1)
    assert await connection_manager.heartbeat(1, session_id) is True
    assert await presence.get_session(1) == session_id
    assert await rooms.is_session_in_room(5, session_id) is True


@pytest.mark.asyncio
async def test_heartbeat_of_superseded_session(connection_manager, presence):
    old = await connection_manager.connect(FakeSocket(), 1)
    new = await connection_manager.connect(FakeSocket(), 1)

    assert await connection_manager.heartbeat(1, old) is False
    assert await presence.get_session(1) == new


@pytest.mark.asyncio
async def test_room_push_reports_reached_sessions(connection_manager, rooms):
    socket = FakeSocket()
    live = await connection_manager.connect(socket, 1)
    await rooms.join(7, live)
    await rooms.join(7, "no-socket-here")

    reached = await connection_manager.emit_to_room(7, "receiveMessage", {"id": 1})

    assert reached == {live}
    assert socket.events() == ["receiveMessage"]


@pytest.mark.asyncio
async def test_sweep_announces_idle_typists(connection_manager, rooms):
    watcher = FakeSocket()
    session_id = await connection_manager.connect(watcher, 2)
    await rooms.join(7, session_id)
    await rooms.start_typing(7, 1)

    assert await connection_manager.sweep_typing(idle_seconds=60) == []
    assert await connection_manager.sweep_typing(idle_seconds=0) == [(7, 1)]

    assert watcher.frames == [
        {
            "event": "user:typing",
            "room": 7,
            "payload": {"conversationId": 7, "userId": 1, "isTyping": False},
        }
    ]


@pytest.mark.asyncio
async def test_disconnect_stops_typing(connection_manager, rooms):
    watcher = FakeSocket()
    watcher_session = await connection_manager.connect(watcher, 2)
    await rooms.join(7, watcher_session)
    typist_session = await connection_manager.connect(FakeSocket(), 1)
    await rooms.start_typing(7, 1)

    await connection_manager.disconnect(1, typist_session)

    assert watcher.frames[-1]["payload"] == {"conversationId": 7, "userId": 1, "isTyping": False}
    assert await rooms.expire_typing(0) == []
