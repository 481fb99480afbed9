# src/zone_relay/services/notifications.py
"""Durable, owner-scoped notification storage."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.orm import Session

from zone_relay.core.errors import NotFoundError, ValidationFailedError
from zone_relay.core.settings import settings
from zone_relay.db.time import as_utc, utcnow
from zone_relay.models import Notification, NotificationType, User
from zone_relay.models.notification import NOTIFICATION_STATUSES
from zone_relay.schemas.notification import (
    NotificationPayload,
    build_payload,
    parse_notification_type,
)
from zone_relay.services.notification_templates import additional_info as info_line
from zone_relay.services.notification_templates import default_content

logger = logging.getLogger(__name__)


def serialize_notification(notification: Notification) -> dict[str, Any]:
    """Return the JSON shape of a notification used by the API and live pushes."""
    created_at = as_utc(notification.created_at)
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type,
        "content": notification.content,
        "is_read": notification.is_read,
        "created_at": created_at.isoformat() if created_at else None,
        "link": notification.link,
        "data": notification.data or {},
        "additional_info": notification.additional_info,
    }


def dump_payload(payload: NotificationPayload) -> dict[str, Any]:
    return payload.model_dump(mode="json", exclude_none=True)


class NotificationStore:
    """Notification persistence bound to one database session.

    Every mutating call commits its own transaction; reads never commit.
    Ownership is enforced in the WHERE clause, so touching a notification that
    belongs to someone else simply matches no rows.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def create(
        self,
        user_id: int,
        notification_type: NotificationType | str,
        content: str | None = None,
        link: str | None = None,
        data: NotificationPayload | dict[str, Any] | None = None,
        additional_info: str | None = None,
    ) -> Notification:
        """Persist a notification for ``user_id``.

        Raises:
            InvalidTypeError: ``notification_type`` is not a known type.
            ValidationFailedError: The payload does not match the type.
            NotFoundError: The recipient does not exist.
        """
        kind = parse_notification_type(notification_type)
        payload = build_payload(kind, data)
        if self.db.get(User, user_id) is None:
            raise NotFoundError("Recipient not found")

        notification = Notification(
            user_id=user_id,
            type=kind.value,
            content=content or default_content(kind, payload),
            link=link,
            data=dump_payload(payload),
            additional_info=additional_info or info_line(kind, payload),
            is_read=False,
            created_at=utcnow(),
        )
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        logger.debug("Stored %s notification %s for user %s", kind.value, notification.id, user_id)
        return notification

    def list_for_user(
        self,
        user_id: int,
        page: int = 1,
        limit: int | None = None,
        type_filter: str | None = None,
        unread_only: bool = False,
    ) -> tuple[list[Notification], int]:
        """Return one page of the user's notifications, newest first, and the total."""
        page = max(page, 1)
        limit = limit or settings.notification_page_size
        limit = max(1, min(limit, settings.notification_page_max))

        conditions = [Notification.user_id == user_id]
        if type_filter and type_filter != "all":
            conditions.append(Notification.type == parse_notification_type(type_filter).value)
        if unread_only:
            conditions.append(Notification.is_read.is_(False))

        total = self.db.scalar(
            select(func.count()).select_from(Notification).where(*conditions)
        ) or 0
        items = self.db.scalars(
            select(Notification)
            .where(*conditions)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return list(items), int(total)

    def unread_count(self, user_id: int) -> int:
        count = self.db.scalar(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
        return int(count or 0)

    def _set_read(self, user_id: int, is_read: bool, notification_id: int | None = None) -> int:
        stmt = update(Notification).where(Notification.user_id == user_id)
        if notification_id is not None:
            stmt = stmt.where(Notification.id == notification_id)
        result = self.db.execute(stmt.values(is_read=is_read))
        self.db.commit()
        return result.rowcount or 0

    def mark_read(self, notification_id: int, user_id: int) -> int:
        return self._set_read(user_id, True, notification_id)

    def mark_unread(self, notification_id: int, user_id: int) -> int:
        return self._set_read(user_id, False, notification_id)

    def mark_all_read(self, user_id: int) -> int:
        return self._set_read(user_id, True)

    def set_status(self, notification_id: int, user_id: int, status: str) -> Notification:
        """Merge ``status`` into the payload, keeping every other payload field."""
        if status not in NOTIFICATION_STATUSES:
            raise ValidationFailedError("Status must be 'accepted' or 'declined'")

        notification = self.db.scalars(
            select(Notification)
            .where(Notification.id == notification_id, Notification.user_id == user_id)
            .with_for_update()
        ).first()
        if notification is None:
            raise NotFoundError("Notification not found")

        kind = parse_notification_type(notification.type)
        payload = build_payload(kind, notification.data or {})
        merged = payload.model_copy(update={"status": status})
        notification.data = dump_payload(merged)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def delete(self, notification_id: int, user_id: int) -> int:
        result = self.db.execute(
            delete(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        self.db.commit()
        return result.rowcount or 0

    def delete_many(self, notification_ids: list[int], user_id: int) -> int:
        if not notification_ids:
            return 0
        result = self.db.execute(
            delete(Notification).where(
                Notification.id.in_(list(set(notification_ids))),
                Notification.user_id == user_id,
            )
        )
        self.db.commit()
        return result.rowcount or 0

    def delete_all(self, user_id: int) -> int:
        result = self.db.execute(delete(Notification).where(Notification.user_id == user_id))
        self.db.commit()
        return result.rowcount or 0

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete read notifications past read retention and unread past unread retention."""
        now = now or utcnow()
        read_cutoff = now - timedelta(days=settings.notification_read_retention_days)
        unread_cutoff = now - timedelta(days=settings.notification_unread_retention_days)
        result = self.db.execute(
            delete(Notification).where(
                or_(
                    and_(Notification.is_read.is_(True), Notification.created_at < read_cutoff),
                    and_(Notification.is_read.is_(False), Notification.created_at < unread_cutoff),
                )
            )
        )
        self.db.commit()
        removed = result.rowcount or 0
        logger.info("Purged %s expired notifications", removed)
        return removed
