# src/zone_relay/models/user.py
"""User accounts as seen by the messaging core.

Accounts are owned by the users service; this service only reads the
identifier, display fields and privacy flags.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from zone_relay.db.session import Base
from zone_relay.db.time import utcnow

VISIBILITY_PUBLIC = "public"
VISIBILITY_FRIENDS = "friends"
VISIBILITY_PRIVATE = "private"


class User(Base):
    """Community member referenced by conversations and notifications."""

    __tablename__ = "user_account"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Privacy flags
    allow_messages: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    allow_friend_requests: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    visibility: Mapped[str] = mapped_column(
        String(16), nullable=False, default=VISIBILITY_PUBLIC
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def name(self) -> str:
        """Return the name shown to other users."""
        return self.display_name or self.username
