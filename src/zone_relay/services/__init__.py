# src/zone_relay/services/__init__.py
"""Business logic services for the Zone Relay application."""

from .conversations import ConversationService
from .delivery import DeliveryEvent, DeliveryReport, DeliveryRouter, NotificationSpec
from .message_requests import MessageRequestService
from .notifications import NotificationStore
from .reactions import ReactionService

__all__ = [
    "ConversationService",
    "DeliveryEvent",
    "DeliveryReport",
    "DeliveryRouter",
    "MessageRequestService",
    "NotificationSpec",
    "NotificationStore",
    "ReactionService",
]
