# tests/services/test_notification_store.py
"""Tests for notification persistence."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from zone_relay.core.errors import InvalidTypeError, NotFoundError, ValidationFailedError
from zone_relay.db.time import utcnow
from zone_relay.models import Notification, NotificationType
from zone_relay.schemas.notification import FriendData
from zone_relay.services.notifications import NotificationStore


@pytest.fixture()
def store(db_session):
    return NotificationStore(db_session)


def test_create_fills_default_content(store, bob):
    """Test that omitted content is derived from the type and payload."""
    notification = store.create(
        bob.id,
        "message",
        data={"sender_name": "Ada", "conversation_id": 4},
        link="/messages/4",
    )

    assert notification.id is not None
    assert notification.is_read is False
    assert notification.content == "Ada sent you a message."
    assert notification.additional_info == "Ada sent you a message."
    assert notification.data == {"kind": "message", "sender_name": "Ada", "conversation_id": 4, "is_group": False}


def test_create_rejects_unknown_type(store, bob):
    with pytest.raises(InvalidTypeError):
        store.create(bob.id, "poke")


def test_create_rejects_mismatched_payload(store, bob):
    """Test that a payload tagged for another type is refused."""
    with pytest.raises(ValidationFailedError):
        store.create(bob.id, NotificationType.MESSAGE, data=FriendData(sender_name="Ada"))

    with pytest.raises(ValidationFailedError):
        store.create(bob.id, "donation", data={"amount": "lots"})


def test_create_for_missing_recipient(store):
    with pytest.raises(NotFoundError):
        store.create(987654, "announcement")


def _seed(store, user, count):
    return [store.create(user.id, "announcement", content=f"n{i}") for i in range(count)]


def test_list_newest_first_with_pagination(store, bob):
    created = _seed(store, bob, 5)

    first, total = store.list_for_user(bob.id, page=1, limit=2)
    second, _ = store.list_for_user(bob.id, page=2, limit=2)
    third, _ = store.list_for_user(bob.id, page=3, limit=2)

    assert total == 5
    ordered = [n.id for n in first + second + third]
    assert ordered == [n.id for n in reversed(created)]


def test_list_filters_by_type_and_unread(store, bob):
    _seed(store, bob, 2)
    message = store.create(bob.id, "message", content="hey")
    store.mark_read(message.id, bob.id)
    store.create(bob.id, "message", content="again")

    items, total = store.list_for_user(bob.id, type_filter="message")
    assert total == 2
    assert {n.type for n in items} == {"message"}

    items, total = store.list_for_user(bob.id, type_filter="message", unread_only=True)
    assert total == 1
    assert items[0].content == "again"

    _, total = store.list_for_user(bob.id, type_filter="all")
    assert total == 4

    with pytest.raises(InvalidTypeError):
        store.list_for_user(bob.id, type_filter="poke")


def test_read_flags_are_owner_scoped(store, alice, bob):
    """Test that read-state changes on someone else's notification touch nothing."""
    notification = store.create(bob.id, "announcement")

    assert store.mark_read(notification.id, alice.id) == 0
    assert store.unread_count(bob.id) == 1

    assert store.mark_read(notification.id, bob.id) == 1
    assert store.unread_count(bob.id) == 0
    assert store.mark_unread(notification.id, bob.id) == 1
    assert store.unread_count(bob.id) == 1


def test_mark_all_read(store, alice, bob):
    _seed(store, bob, 3)
    _seed(store, alice, 1)

    assert store.mark_all_read(bob.id) == 3
    assert store.unread_count(bob.id) == 0
    assert store.unread_count(alice.id) == 1
    assert store.mark_all_read(bob.id) == 3


def test_set_status_merges_into_payload(store, bob):
    """Test that setting a status keeps the other payload fields."""
    notification = store.create(
        bob.id,
        "friend",
        data={"sender_name": "Ada", "request_id": 12, "mutual_friends": ["Grace"]},
    )

    updated = store.set_status(notification.id, bob.id, "accepted")

    assert updated.data["status"] == "accepted"
    assert updated.data["sender_name"] == "Ada"
    assert updated.data["request_id"] == 12
    assert updated.data["mutual_friends"] == ["Grace"]


def test_set_status_rejects_other_owner_and_bad_status(store, alice, bob):
    notification = store.create(bob.id, "friend")

    with pytest.raises(NotFoundError):
        store.set_status(notification.id, alice.id, "accepted")
    with pytest.raises(ValidationFailedError):
        store.set_status(notification.id, bob.id, "maybe")


def test_delete_is_owner_scoped(store, alice, bob):
    notification = store.create(bob.id, "announcement")

    assert store.delete(notification.id, alice.id) == 0
    assert store.delete(notification.id, bob.id) == 1
    assert store.delete(notification.id, bob.id) == 0


def test_delete_many_ignores_foreign_ids(store, alice, bob):
    mine = _seed(store, bob, 2)
    theirs = _seed(store, alice, 1)

    removed = store.delete_many([n.id for n in mine + theirs], bob.id)

    assert removed == 2
    assert store.list_for_user(alice.id)[1] == 1
    assert store.delete_many([], bob.id) == 0


def test_delete_all(store, alice, bob):
    _seed(store, bob, 3)
    _seed(store, alice, 1)

    assert store.delete_all(bob.id) == 3
    assert store.list_for_user(bob.id)[1] == 0
    assert store.list_for_user(alice.id)[1] == 1


def test_purge_expired_uses_read_and_unread_retention(store, db_session, bob):
    """Test that read items expire after 30 days and unread items after 90."""
    now = utcnow()

    def aged(days, is_read):
        notification = store.create(bob.id, "announcement", content=f"{days}-{is_read}")
        notification.created_at = now - timedelta(days=days)
        notification.is_read = is_read
        db_session.commit()
        return notification

    aged(31, True)
    kept_read = aged(29, True)
    aged(91, False)
    kept_unread = aged(45, False)

    assert store.purge_expired(now=now) == 2

    remaining = db_session.scalars(select(Notification.id).where(Notification.user_id == bob.id)).all()
    assert sorted(remaining) == sorted([kept_read.id, kept_unread.id])
