# src/zone_relay/models/__init__.py
"""SQLAlchemy models for the Zone Relay service."""

from .conversation import (
    Conversation,
    ConversationMember,
    Message,
    MessageRead,
    MessageReaction,
)
from .message_request import MessageRequest
from .notification import Notification, NotificationType
from .user import User

__all__ = [
    "Conversation", "ConversationMember",
    "Message", "MessageReaction", "MessageRead",
    "MessageRequest",
    "Notification", "NotificationType",
    "User",
]
