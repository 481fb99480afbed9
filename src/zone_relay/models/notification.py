# src/zone_relay/models/notification.py
"""Stored notifications addressed to a single user."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from zone_relay.db.session import Base
from zone_relay.db.time import utcnow


class NotificationType(str, Enum):
    """Closed set of notification kinds."""

    MESSAGE = "message"
    FRIEND = "friend"
    REACTION = "reaction"
    REPLY = "reply"
    ORDER = "order"
    EVENT = "event"
    STREAM = "stream"
    ANNOUNCEMENT = "announcement"
    GIVEAWAY = "giveaway"
    DONATION = "donation"
    MENTION = "mention"


NOTIFICATION_STATUSES = ("accepted", "declined")


class Notification(Base):
    """A durable notification; mutable (read flag, status) until deleted."""

    __tablename__ = "notification"
    __table_args__ = (
        Index("ix_notification_user_created", "user_id", "created_at", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_account.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    link: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    additional_info: Mapped[str | None] = mapped_column(Text, nullable=True)
