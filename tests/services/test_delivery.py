# tests/services/test_delivery.py
"""Tests for per-recipient delivery routing."""

import logging
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from zone_relay.core.errors import PresenceUnavailableError
from zone_relay.models import Notification, NotificationType
from zone_relay.schemas.notification import MessageData, ReplyData
from zone_relay.services.delivery import (
    NOTIFICATION_EVENT,
    DeliveryEvent,
    DeliveryRouter,
    NotificationSpec,
)
from zone_relay.services.presence import MemoryPresenceRegistry
from zone_relay.services.rooms import MemoryRoomTracker


def _message_spec(**data):
    return NotificationSpec(
        type=NotificationType.MESSAGE,
        data=MessageData(sender_name="Alice", **data),
        link="/messages/1",
    )


def _notifications_for(db_session, user_id):
    return db_session.scalars(select(Notification).where(Notification.user_id == user_id)).all()


@pytest.mark.asyncio
async def test_offline_recipient_gets_stored_notification_only(router, broadcaster, db_session, alice, bob):
    """Test that an offline recipient gets a notification and no live push."""
    report = await router.deliver(
        DeliveryEvent(
            name="receiveMessage",
            payload={"id": 1},
            recipients=[alice.id, bob.id],
            actor_id=alice.id,
            room_id=1,
            notification=_message_spec(),
        )
    )

    assert report.room_broadcast is True
    assert broadcaster.room_event_names(1) == ["receiveMessage"]
    assert broadcaster.user_events == []
    assert report.live_user_ids == []
    assert list(report.notification_ids) == [bob.id]
    assert len(_notifications_for(db_session, bob.id)) == 1


@pytest.mark.asyncio
async def test_online_recipient_outside_room_gets_event_and_notification(
    router, broadcaster, presence, db_session, alice, bob
):
    """Test that an online user not viewing the room is pushed the event and the notification."""
    await presence.set_online(bob.id, "bob-session")

    report = await router.deliver(
        DeliveryEvent(
            name="receiveMessage",
            payload={"id": 1},
            recipients=[alice.id, bob.id],
            actor_id=alice.id,
            room_id=1,
            notification=_message_spec(),
        )
    )

    assert report.live_user_ids == [bob.id]
    assert broadcaster.user_event_names(bob.id) == ["receiveMessage", NOTIFICATION_EVENT]
    stored = _notifications_for(db_session, bob.id)
    assert len(stored) == 1
    pushed = broadcaster.user_events[-1][2]
    assert pushed["id"] == stored[0].id
    assert pushed["type"] == "message"


@pytest.mark.asyncio
async def test_recipient_in_room_is_skipped(router, broadcaster, presence, rooms, db_session, alice, bob):
    """Test that a user viewing the room gets only the room broadcast."""
    await presence.set_online(bob.id, "bob-session")
    await rooms.join(1, "bob-session")

    report = await router.deliver(
        DeliveryEvent(
            name="receiveMessage",
            payload={"id": 1},
            recipients=[alice.id, bob.id],
            actor_id=alice.id,
            room_id=1,
            notification=_message_spec(),
        )
    )

    assert report.in_room_user_ids == [bob.id]
    assert broadcaster.room_event_names(1) == ["receiveMessage"]
    assert broadcaster.user_events == []
    assert _notifications_for(db_session, bob.id) == []


@pytest.mark.asyncio
async def test_actor_never_notified_and_duplicates_collapsed(router, db_session, alice, bob):
    report = await router.deliver(
        DeliveryEvent(
            name=None,
            payload={},
            recipients=[alice.id, bob.id, bob.id],
            actor_id=alice.id,
            notification=_message_spec(),
        )
    )

    assert list(report.notification_ids) == [bob.id]
    assert _notifications_for(db_session, alice.id) == []
    assert len(_notifications_for(db_session, bob.id)) == 1


@pytest.mark.asyncio
async def test_per_recipient_plan(router, db_session, alice, bob, carol):
    """Test that a callable plan picks the notification per recipient."""
    reply = NotificationSpec(type=NotificationType.REPLY, data=ReplyData(sender_name="Alice"))
    plain = _message_spec()

    await router.deliver(
        DeliveryEvent(
            name=None,
            payload={},
            recipients=[bob.id, carol.id],
            actor_id=alice.id,
            notification=lambda user_id: reply if user_id == bob.id else plain,
        )
    )

    assert [n.type for n in _notifications_for(db_session, bob.id)] == ["reply"]
    assert [n.type for n in _notifications_for(db_session, carol.id)] == ["message"]


@pytest.mark.asyncio
async def test_event_without_name_skips_room_broadcast(router, broadcaster, alice, bob):
    report = await router.deliver(
        DeliveryEvent(name=None, payload={}, recipients=[bob.id], room_id=1, notification=None)
    )
    assert report.room_broadcast is False
    assert broadcaster.room_events == []


@pytest.mark.asyncio
async def test_presence_failure_falls_back_to_notification(router, broadcaster, db_session, alice, bob, caplog):
    """Test that an unreachable presence store treats recipients as offline."""
    router.presence.get_session = AsyncMock(side_effect=PresenceUnavailableError())

    with caplog.at_level(logging.WARNING):
        report = await router.deliver(
            DeliveryEvent(
                name="receiveMessage",
                payload={},
                recipients=[bob.id],
                actor_id=alice.id,
                room_id=1,
                notification=_message_spec(),
            )
        )

    assert list(report.notification_ids) == [bob.id]
    assert broadcaster.user_events == []
    assert "treating as offline" in caplog.text


@pytest.mark.asyncio
async def test_room_lookup_failure_treats_user_as_outside(router, broadcaster, presence, db_session, alice, bob):
    await presence.set_online(bob.id, "bob-session")
    await router.rooms.join(1, "bob-session")
    router.rooms.is_session_in_room = AsyncMock(side_effect=PresenceUnavailableError())

    report = await router.deliver(
        DeliveryEvent(
            name="receiveMessage",
            payload={},
            recipients=[bob.id],
            actor_id=alice.id,
            room_id=1,
            notification=_message_spec(),
        )
    )

    assert report.in_room_user_ids == []
    assert report.live_user_ids == [bob.id]
    assert len(_notifications_for(db_session, bob.id)) == 1


@pytest.mark.asyncio
async def test_live_push_failure_keeps_notification(router, broadcaster, presence, db_session, alice, bob):
    """Test that a failing socket does not prevent the notification from being stored."""
    await presence.set_online(bob.id, "bob-session")
    broadcaster.fail = True

    report = await router.deliver(
        DeliveryEvent(
            name="receiveMessage",
            payload={},
            recipients=[bob.id],
            actor_id=alice.id,
            room_id=1,
            notification=_message_spec(),
        )
    )

    assert report.room_broadcast is False
    assert report.live_user_ids == []
    assert list(report.notification_ids) == [bob.id]
    assert len(_notifications_for(db_session, bob.id)) == 1


@pytest.mark.asyncio
async def test_store_failure_is_reported_not_raised(router, db_session, alice, bob, carol, caplog, mocker):
    """Test that a failed insert for one recipient does not stop the others."""
    real_create = router.store.create

    def flaky_create(user_id, *args, **kwargs):
        if user_id == bob.id:
            raise OperationalError("INSERT", {}, Exception("disk full"))
        return real_create(user_id, *args, **kwargs)

    mocker.patch.object(router.store, "create", side_effect=flaky_create)

    with caplog.at_level(logging.ERROR):
        report = await router.deliver(
            DeliveryEvent(
                name=None,
                payload={},
                recipients=[bob.id, carol.id],
                actor_id=alice.id,
                notification=_message_spec(),
            )
        )

    assert report.failed_user_ids == [bob.id]
    assert list(report.notification_ids) == [carol.id]
    assert "Failed to store message notification" in caplog.text


@pytest.mark.asyncio
async def test_notify_user_pushes_named_event(router, broadcaster, presence, alice, bob):
    await presence.set_online(bob.id, "bob-session")

    report = await router.notify_user(
        bob.id,
        _message_spec(status="accepted"),
        event="messageRequestAccepted",
        payload={"requestId": 3},
        actor_id=alice.id,
    )

    assert report.live_user_ids == [bob.id]
    assert broadcaster.user_event_names(bob.id) == ["messageRequestAccepted", NOTIFICATION_EVENT]
    assert broadcaster.room_events == []


@pytest.mark.asyncio
async def test_announce_only_when_online(router, broadcaster, presence, db_session, bob):
    notification = router.store.create(bob.id, NotificationType.ANNOUNCEMENT, data={"title": "Hi"})

    assert await router.announce(notification) is False
    await presence.set_online(bob.id, "bob-session")
    assert await router.announce(notification) is True
    assert broadcaster.user_event_names(bob.id) == [NOTIFICATION_EVENT]


@pytest.mark.asyncio
async def test_stale_room_session_without_socket_gets_notification(
    connection_manager, presence, rooms, db_session, alice, bob
):
    """Test that a subscription left behind by a dead socket does not swallow the event."""
    await presence.set_online(bob.id, "dead-session")
    await rooms.join(1, "dead-session")
    router = DeliveryRouter(db_session, presence, rooms, connection_manager)

    report = await router.deliver(
        DeliveryEvent(
            name="receiveMessage",
            payload={"id": 1},
            recipients=[alice.id, bob.id],
            actor_id=alice.id,
            room_id=1,
            notification=_message_spec(),
        )
    )

    assert report.in_room_user_ids == []
    assert list(report.notification_ids) == [bob.id]
    assert len(_notifications_for(db_session, bob.id)) == 1


@pytest.mark.asyncio
async def test_lapsed_lease_is_treated_as_offline(db_session, broadcaster, alice, bob):
    """Test that presence and room entries whose heartbeat stopped no longer count."""
    presence = MemoryPresenceRegistry(ttl_seconds=0)
    rooms = MemoryRoomTracker(ttl_seconds=0)
    await presence.set_online(bob.id, "bob-session")
    await rooms.join(1, "bob-session")
    router = DeliveryRouter(db_session, presence, rooms, broadcaster)

    report = await router.deliver(
        DeliveryEvent(
            name="receiveMessage",
            payload={"id": 1},
            recipients=[alice.id, bob.id],
            actor_id=alice.id,
            room_id=1,
            notification=_message_spec(),
        )
    )

    assert report.in_room_user_ids == []
    assert report.live_user_ids == []
    assert list(report.notification_ids) == [bob.id]
    assert broadcaster.user_events == []
