# src/zone_relay/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .conversations import router as conversations_router
from .message_requests import router as message_requests_router
from .messages import router as messages_router
from .notifications import router as notifications_router
from .presence import router as presence_router
from .reactions import router as reactions_router
from .realtime import router as realtime_router

__all__ = [
    "conversations_router",
    "message_requests_router",
    "messages_router",
    "notifications_router",
    "presence_router",
    "reactions_router",
    "realtime_router",
]
