# src/zone_relay/api/v1/endpoints/notifications.py
"""Notification endpoints for the Zone Relay API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Response, status

from zone_relay.api.v1.dependencies import CurrentUserDep, DeliveryRouterDep, SessionDep
from zone_relay.core.errors import ForbiddenError, NotFoundError
from zone_relay.schemas.notification import (
    NotificationCreate,
    NotificationIds,
    NotificationStatusUpdate,
)
from zone_relay.services.notifications import NotificationStore, serialize_notification

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_notification(
    body: NotificationCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: DeliveryRouterDep,
) -> dict[str, Any]:
    """Store a notification for a user and push it live if they are online."""
    notification = NotificationStore(db).create(
        body.user_id,
        body.type,
        content=body.content,
        link=body.link,
        data=body.data,
    )
    await delivery.announce(notification)
    return serialize_notification(notification)


@router.get("")
async def list_notifications(
    current_user: CurrentUserDep,
    db: SessionDep,
    page: int = Query(1, ge=1),
    limit: int | None = Query(None, ge=1),
    type_filter: str | None = Query(None, alias="filter"),
    unread_only: bool = Query(False, alias="unreadOnly"),
) -> dict[str, Any]:
    """Return one page of the caller's notifications, newest first."""
    items, total = NotificationStore(db).list_for_user(
        current_user.id,
        page=page,
        limit=limit,
        type_filter=type_filter,
        unread_only=unread_only,
    )
    return {
        "notifications": [serialize_notification(item) for item in items],
        "totalCount": total,
    }


@router.get("/unread-count")
async def unread_count(current_user: CurrentUserDep, db: SessionDep) -> dict[str, int]:
    return {"unreadCount": NotificationStore(db).unread_count(current_user.id)}


@router.patch("/mark-all", status_code=status.HTTP_204_NO_CONTENT)
async def mark_all_read(current_user: CurrentUserDep, db: SessionDep) -> Response:
    NotificationStore(db).mark_all_read(current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/clear-selected")
async def clear_selected(
    body: NotificationIds,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, int]:
    return {"deleted": NotificationStore(db).delete_many(body.ids, current_user.id)}


@router.delete("/clear-all")
async def clear_all(current_user: CurrentUserDep, db: SessionDep) -> dict[str, int]:
    return {"deleted": NotificationStore(db).delete_all(current_user.id)}


@router.patch("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def mark_read(
    notification_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> Response:
    NotificationStore(db).mark_read(notification_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/{notification_id}/unread", status_code=status.HTTP_204_NO_CONTENT)
async def mark_unread(
    notification_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> Response:
    NotificationStore(db).mark_unread(notification_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{notification_id}/status")
async def set_status(
    notification_id: int,
    body: NotificationStatusUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    """Record that the caller accepted or declined what the notification refers to."""
    try:
        notification = NotificationStore(db).set_status(
            notification_id, current_user.id, body.status
        )
    except NotFoundError as exc:
        raise ForbiddenError("Notification not found or not yours") from exc
    return serialize_notification(notification)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> Response:
    if not NotificationStore(db).delete(notification_id, current_user.id):
        raise ForbiddenError("Notification not found or not yours")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
