# src/zone_relay/api/v1/endpoints/message_requests.py
"""Message request endpoints: ask, accept, decline."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Response, status

from zone_relay.api.v1.dependencies import CurrentUserDep, DeliveryRouterDep, SessionDep
from zone_relay.schemas.message_request import MessageRequestAccept, MessageRequestCreate
from zone_relay.services.message_requests import MessageRequestService

router = APIRouter(prefix="/messaging/requests", tags=["message-requests"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_request(
    body: MessageRequestCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: DeliveryRouterDep,
    response: Response,
) -> dict[str, Any]:
    """Ask another user to open a conversation."""
    request, created = await MessageRequestService(db, delivery).create_request(
        current_user.id, body.to_user_id, body.content
    )
    if not created:
        response.status_code = status.HTTP_200_OK
        return {
            "pending": True,
            "message": "Request already pending",
            "request_id": request.id,
        }
    return {"request_id": request.id, "pending": True}


@router.get("")
async def list_incoming(current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    return {"requests": MessageRequestService(db).list_incoming(current_user.id)}


@router.get("/sent")
async def list_outgoing(current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    return {"requests": MessageRequestService(db).list_outgoing(current_user.id)}


@router.post("/{request_id}/accept")
async def accept_request(
    request_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: DeliveryRouterDep,
    body: MessageRequestAccept | None = Body(None),
) -> dict[str, Any]:
    """Accept a request and seed the conversation with it (and an optional reply)."""
    result = await MessageRequestService(db, delivery).accept(
        request_id,
        current_user.id,
        reply_content=body.reply_content if body else None,
    )
    return {
        "message": "Request accepted",
        "conversationId": result["conversation_id"],
        "seeded": {
            "requestMessageId": result["request_message_id"],
            "replyMessageId": result["reply_message_id"],
        },
    }


@router.post("/{request_id}/decline")
async def decline_request(
    request_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: DeliveryRouterDep,
) -> dict[str, str]:
    await MessageRequestService(db, delivery).decline(request_id, current_user.id)
    return {"message": "Request declined"}
