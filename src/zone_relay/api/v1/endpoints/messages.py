# src/zone_relay/api/v1/endpoints/messages.py
"""Message endpoints for the Zone Relay API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Response, status

from zone_relay.api.v1.dependencies import CurrentUserDep, DeliveryRouterDep, SessionDep
from zone_relay.schemas.messaging import MessageCreate
from zone_relay.services.conversations import ConversationService

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def send_message(
    body: MessageCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: DeliveryRouterDep,
) -> dict[str, Any]:
    """Send a message to a conversation the caller belongs to."""
    message = await ConversationService(db, delivery).send_message(
        body.conversation_id,
        current_user.id,
        body.content,
        reply_to_id=body.reply_to_id,
        media_url=body.media_url,
        media_type=body.media_type,
    )
    return {"message": message}


@router.get("")
async def get_messages(
    current_user: CurrentUserDep,
    db: SessionDep,
    conversation_id: int = Query(..., alias="conversationId"),
    before: int | None = Query(None, description="Return messages older than this message id"),
    limit: int | None = Query(None, ge=1),
) -> dict[str, Any]:
    """Return messages newest first, paging backwards with ``before``."""
    messages, has_more = ConversationService(db).get_messages(
        conversation_id,
        current_user.id,
        before=before,
        limit=limit,
    )
    return {"messages": messages, "hasMore": has_more}


@router.get("/{message_id}/reads")
async def get_message_reads(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    return {
        "messageId": message_id,
        "reads": ConversationService(db).get_message_read_status(message_id, current_user.id),
    }


@router.delete("/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: DeliveryRouterDep,
) -> Response:
    await ConversationService(db, delivery).delete_message(message_id, current_user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
