# src/zone_relay/services/broadcaster.py
"""Capability for pushing live events to connected clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Broadcaster(ABC):
    """Live-push interface handed to the delivery router and message engine."""

    @abstractmethod
    async def emit_to_user(self, user_id: int, event: str, payload: dict[str, Any]) -> bool:
        """Send ``event`` on the user's channel; return whether a socket received it."""

    @abstractmethod
    async def emit_to_room(self, room_id: int, event: str, payload: dict[str, Any]) -> set[str]:
        """Send ``event`` to every session viewing ``room_id``; return the sessions it reached."""
