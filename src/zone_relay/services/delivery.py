# src/zone_relay/services/delivery.py
"""Delivery routing: live push, stored notification, or both.

Callers commit their own state first and only then hand an event to the
router. Nothing the router does can undo that commit: live-push failures are
logged, and a failing notification insert is rolled back and logged.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zone_relay.core.errors import RelayError
from zone_relay.models import Notification, NotificationType
from zone_relay.schemas.notification import NotificationPayload
from zone_relay.services.broadcaster import Broadcaster
from zone_relay.services.notifications import NotificationStore, serialize_notification
from zone_relay.services.presence import PresenceRegistry
from zone_relay.services.rooms import RoomMembershipTracker

logger = logging.getLogger(__name__)

NOTIFICATION_EVENT = "notification"


@dataclass
class NotificationSpec:
    """What to store for a recipient who is not viewing the event's room."""

    type: NotificationType
    data: NotificationPayload | dict[str, Any] | None = None
    content: str | None = None
    link: str | None = None


# Either one spec for everybody or a per-recipient factory (None skips storing).
NotificationPlan = Union[NotificationSpec, Callable[[int], Union[NotificationSpec, None]]]


@dataclass
class DeliveryEvent:
    """An event to fan out to ``recipients``.

    ``name`` may be None for events that only produce a stored notification.
    When ``room_id`` is set the event is also broadcast once to that room.
    """

    name: str | None
    payload: dict[str, Any]
    recipients: Iterable[int]
    actor_id: int | None = None
    room_id: int | None = None
    notification: NotificationPlan | None = None


@dataclass
class DeliveryReport:
    room_broadcast: bool = False
    live_user_ids: list[int] = field(default_factory=list)
    in_room_user_ids: list[int] = field(default_factory=list)
    notification_ids: dict[int, int] = field(default_factory=dict)
    failed_user_ids: list[int] = field(default_factory=list)


class DeliveryRouter:
    """Decide per recipient between a live event and a stored notification."""

    def __init__(
        self,
        db: Session,
        presence: PresenceRegistry,
        rooms: RoomMembershipTracker,
        broadcaster: Broadcaster,
    ) -> None:
        self.db = db
        self.presence = presence
        self.rooms = rooms
        self.broadcaster = broadcaster
        self.store = NotificationStore(db)

    async def deliver(self, event: DeliveryEvent) -> DeliveryReport:
        """Fan ``event`` out to its recipients.

        Every recipient who is not viewing the room gets a stored notification;
        online recipients outside the room also get the event on their own
        channel. The room itself receives the event once. A recipient only
        counts as viewing the room when the room broadcast actually reached
        their session, so a stale subscription never swallows an event.
        """
        report = DeliveryReport()
        recipients = _unique_recipients(event.recipients, event.actor_id)

        reached: set[str] = set()
        if event.name and event.room_id is not None:
            pushed = await self._push_room(event.room_id, event.name, event.payload)
            report.room_broadcast = pushed is not None
            reached = pushed or set()

        for recipient_id in recipients:
            session_id = await self._session_of(recipient_id)
            in_room = False
            if session_id in reached:
                in_room = await self._in_room(event.room_id, session_id)

            if in_room:
                report.in_room_user_ids.append(recipient_id)
                continue

            if session_id is not None and event.name:
                if await self._push_user(recipient_id, event.name, event.payload):
                    report.live_user_ids.append(recipient_id)

            spec = _spec_for(event.notification, recipient_id)
            if spec is None:
                continue
            notification = self._store(recipient_id, spec)
            if notification is None:
                report.failed_user_ids.append(recipient_id)
                continue
            report.notification_ids[recipient_id] = notification.id
            if session_id is not None:
                await self._push_user(
                    recipient_id, NOTIFICATION_EVENT, serialize_notification(notification)
                )

        return report

    async def notify_user(
        self,
        user_id: int,
        spec: NotificationSpec,
        *,
        event: str | None = None,
        payload: dict[str, Any] | None = None,
        actor_id: int | None = None,
    ) -> DeliveryReport:
        """Deliver a room-less event to a single user."""
        return await self.deliver(
            DeliveryEvent(
                name=event,
                payload=payload or {},
                recipients=[user_id],
                actor_id=actor_id,
                notification=spec,
            )
        )

    async def announce(self, notification: Notification) -> bool:
        """Push an already stored notification to its owner if they are online."""
        session_id = await self._session_of(notification.user_id)
        if session_id is None:
            return False
        return await self._push_user(
            notification.user_id, NOTIFICATION_EVENT, serialize_notification(notification)
        )

    async def _session_of(self, user_id: int) -> str | None:
        try:
            return await self.presence.get_session(user_id)
        except RelayError:
            # Unknown presence means offline: the notification is still stored.
            logger.warning("Presence lookup failed for user %s; treating as offline", user_id)
            return None

    async def _in_room(self, room_id: int, session_id: str) -> bool:
        try:
            return await self.rooms.is_session_in_room(room_id, session_id)
        except RelayError:
            logger.warning("Room lookup failed for room %s; treating as not in room", room_id)
            return False

    async def _push_user(self, user_id: int, event: str, payload: dict[str, Any]) -> bool:
        try:
            return await self.broadcaster.emit_to_user(user_id, event, payload)
        except Exception as exc:
            logger.warning("Live push of %s to user %s failed: %s", event, user_id, exc)
            return False

    async def _push_room(self, room_id: int, event: str, payload: dict[str, Any]) -> set[str] | None:
        try:
            return set(await self.broadcaster.emit_to_room(room_id, event, payload))
        except Exception as exc:
            logger.warning("Live push of %s to room %s failed: %s", event, room_id, exc)
            return None

    def _store(self, user_id: int, spec: NotificationSpec) -> Notification | None:
        try:
            return self.store.create(
                user_id,
                spec.type,
                content=spec.content,
                link=spec.link,
                data=spec.data,
            )
        except (SQLAlchemyError, RelayError):
            self.db.rollback()
            logger.error("Failed to store %s notification for user %s", spec.type, user_id, exc_info=True)
            return None


def _unique_recipients(recipients: Iterable[int], actor_id: int | None) -> list[int]:
    seen: set[int] = set()
    ordered: list[int] = []
    for recipient_id in recipients:
        recipient_id = int(recipient_id)
        if recipient_id == actor_id or recipient_id in seen:
            continue
        seen.add(recipient_id)
        ordered.append(recipient_id)
    return ordered


def _spec_for(plan: NotificationPlan | None, recipient_id: int) -> NotificationSpec | None:
    if plan is None or isinstance(plan, NotificationSpec):
        return plan
    return plan(recipient_id)
