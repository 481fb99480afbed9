# src/zone_relay/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    conversations_router,
    message_requests_router,
    messages_router,
    notifications_router,
    presence_router,
    reactions_router,
    realtime_router,
)

__all__ = [
    "conversations_router",
    "message_requests_router",
    "messages_router",
    "notifications_router",
    "presence_router",
    "reactions_router",
    "realtime_router",
]
