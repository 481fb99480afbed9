# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from itertools import count
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PRESENCE_BACKEND", "memory")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from zone_relay.api.v1 import dependencies as deps
from zone_relay.api.v1.endpoints import realtime as realtime_endpoints
from zone_relay.core.security import create_access_token
from zone_relay.db.session import Base
from zone_relay.db.session import get_db as app_get_session
from zone_relay.db.session import get_session_factory as app_get_session_factory
from zone_relay.main import app as fastapi_app
from zone_relay.models import Conversation, ConversationMember, Message, User
from zone_relay.models.conversation import ROLE_MEMBER, ROLE_OWNER, direct_key
from zone_relay.db.time import utcnow
from zone_relay.services.broadcaster import Broadcaster
from zone_relay.services.delivery import DeliveryRouter
from zone_relay.services.presence import MemoryPresenceRegistry
from zone_relay.services.realtime import ConnectionManager
from zone_relay.services.rooms import MemoryRoomTracker

TEST_DB_URL = "sqlite://"

_USERNAME_COUNTER = count(1)


class RecordingBroadcaster(Broadcaster):
    """Broadcaster that records every emitted event instead of sending it."""

    def __init__(self, rooms: MemoryRoomTracker | None = None) -> None:
        self.rooms = rooms
        self.user_events: list[tuple[int, str, dict[str, Any]]] = []
        self.room_events: list[tuple[int, str, dict[str, Any]]] = []
        self.fail = False

    async def emit_to_user(self, user_id: int, event: str, payload: dict[str, Any]) -> bool:
        if self.fail:
            raise RuntimeError("socket closed")
        self.user_events.append((user_id, event, payload))
        return True

    async def emit_to_room(self, room_id: int, event: str, payload: dict[str, Any]) -> set[str]:
        if self.fail:
            raise RuntimeError("socket closed")
        self.room_events.append((room_id, event, payload))
        if self.rooms is None:
            return set()
        return await self.rooms.sessions_in_room(room_id)

    def user_event_names(self, user_id: int) -> list[str]:
        return [event for uid, event, _ in self.user_events if uid == user_id]

    def room_event_names(self, room_id: int) -> list[str]:
        return [event for rid, event, _ in self.room_events if rid == room_id]


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(
        bind=engine,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()

        # Services commit for real; ensure each test sees a clean database.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def presence() -> MemoryPresenceRegistry:
    return MemoryPresenceRegistry()


@pytest.fixture()
def rooms() -> MemoryRoomTracker:
    return MemoryRoomTracker()


@pytest.fixture()
def broadcaster(rooms: MemoryRoomTracker) -> RecordingBroadcaster:
    return RecordingBroadcaster(rooms)


@pytest.fixture()
def connection_manager(
    presence: MemoryPresenceRegistry,
    rooms: MemoryRoomTracker,
) -> ConnectionManager:
    return ConnectionManager(presence, rooms)


@pytest.fixture()
def router(
    db_session: Session,
    presence: MemoryPresenceRegistry,
    rooms: MemoryRoomTracker,
    broadcaster: RecordingBroadcaster,
) -> DeliveryRouter:
    return DeliveryRouter(db_session, presence, rooms, broadcaster)


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    engine: Engine,
    db_session: Session,
    presence: MemoryPresenceRegistry,
    rooms: MemoryRoomTracker,
    broadcaster: RecordingBroadcaster,
    connection_manager: ConnectionManager,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    overrides: dict[Callable[..., Any], Callable[..., Any]] = {
        app_get_session: _get_session_override,
        app_get_session_factory: lambda: sessionmaker(bind=engine, autoflush=False, expire_on_commit=False),
        deps.get_presence_dep: lambda: presence,
        deps.get_rooms_dep: lambda: rooms,
        deps.get_broadcaster_dep: lambda: broadcaster,
        realtime_endpoints.get_connection_manager_dep: lambda: connection_manager,
    }
    app.dependency_overrides.update(overrides)
    try:
        yield
    finally:
        for dependency in overrides:
            app.dependency_overrides.pop(dependency, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Return a factory that persists users."""

    def _make_user(display_name: str | None = None, **fields: Any) -> User:
        username = fields.pop("username", None) or f"user{next(_USERNAME_COUNTER)}"
        user = User(username=username, display_name=display_name, **fields)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def alice(make_user: Callable[..., User]) -> User:
    return make_user("Alice")


@pytest.fixture()
def bob(make_user: Callable[..., User]) -> User:
    return make_user("Bob")


@pytest.fixture()
def carol(make_user: Callable[..., User]) -> User:
    return make_user("Carol")


def auth_headers(user: User) -> dict[str, str]:
    """Return authorization headers for ``user``."""
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture()
def alice_headers(alice: User) -> dict[str, str]:
    return auth_headers(alice)


@pytest.fixture()
def bob_headers(bob: User) -> dict[str, str]:
    return auth_headers(bob)


@pytest.fixture()
def carol_headers(carol: User) -> dict[str, str]:
    return auth_headers(carol)


@pytest.fixture()
def direct_conversation(db_session: Session, alice: User, bob: User) -> Conversation:
    """A 1:1 conversation between Alice (owner) and Bob."""
    conversation = Conversation(
        is_group=False,
        created_by=alice.id,
        direct_key=direct_key(alice.id, bob.id),
    )
    conversation.members = [
        ConversationMember(user_id=alice.id, role=ROLE_OWNER),
        ConversationMember(user_id=bob.id, role=ROLE_MEMBER),
    ]
    db_session.add(conversation)
    db_session.commit()
    db_session.refresh(conversation)
    return conversation


@pytest.fixture()
def group_conversation(db_session: Session, alice: User, bob: User) -> Conversation:
    """A group owned by Alice with Bob as a plain member."""
    conversation = Conversation(is_group=True, group_name="Crew", created_by=alice.id)
    conversation.members = [
        ConversationMember(user_id=alice.id, role=ROLE_OWNER),
        ConversationMember(user_id=bob.id, role=ROLE_MEMBER),
    ]
    db_session.add(conversation)
    db_session.commit()
    db_session.refresh(conversation)
    return conversation


@pytest.fixture()
def add_message(db_session: Session) -> Callable[..., Message]:
    """Return a factory that persists messages directly."""

    def _add_message(conversation: Conversation, sender: User, content: str = "hello", **fields: Any) -> Message:
        message = Message(
            conversation_id=conversation.id,
            sender_id=sender.id,
            content=content,
            sent_at=fields.pop("sent_at", None) or utcnow(),
            **fields,
        )
        db_session.add(message)
        db_session.commit()
        db_session.refresh(message)
        return message

    return _add_message


@pytest.fixture()
def headers_for() -> Callable[[User], dict[str, str]]:
    return auth_headers
