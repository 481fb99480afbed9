# src/zone_relay/api/v1/endpoints/presence.py
"""Presence lookups for the Zone Relay API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from zone_relay.api.v1.dependencies import CurrentUserDep, PresenceDep
from zone_relay.db.time import as_utc

router = APIRouter(prefix="/presence", tags=["presence"])


@router.get("")
async def online_users(current_user: CurrentUserDep, presence: PresenceDep) -> dict[str, Any]:
    return {"onlineUsers": sorted(await presence.get_online_user_ids())}


@router.get("/{user_id}")
async def user_presence(
    user_id: int,
    current_user: CurrentUserDep,
    presence: PresenceDep,
) -> dict[str, Any]:
    """Return whether a user is online and, if not, when they were last seen."""
    online = await presence.is_online(user_id)
    last_seen = None if online else as_utc(await presence.get_last_seen(user_id))
    return {
        "userId": user_id,
        "online": online,
        "lastSeen": last_seen.isoformat() if last_seen else None,
    }
