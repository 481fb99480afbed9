# src/zone_relay/api/v1/endpoints/conversations.py
"""Conversation endpoints for the Zone Relay API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Query, Response, status

from zone_relay.api.v1.dependencies import CurrentUserDep, DeliveryRouterDep, SessionDep
from zone_relay.schemas.messaging import AddMemberRequest, ConversationCreate, MarkReadRequest
from zone_relay.services.conversations import ConversationService, serialize_conversation

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_conversation(
    body: ConversationCreate,
    current_user: CurrentUserDep,
    db: SessionDep,
    response: Response,
) -> dict[str, Any]:
    """Create a conversation, or return the existing 1:1 conversation."""
    conversation, existing = ConversationService(db).create_conversation(
        current_user.id,
        body.is_group,
        body.group_name,
        body.member_ids,
    )
    payload: dict[str, Any] = {"conversation": serialize_conversation(conversation)}
    if existing:
        response.status_code = status.HTTP_200_OK
        payload["existing"] = True
    return payload


@router.get("")
async def list_conversations(current_user: CurrentUserDep, db: SessionDep) -> dict[str, Any]:
    return {"conversations": ConversationService(db).list_conversations(current_user.id)}


@router.get("/{conversation_id}/members")
async def get_members(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
) -> dict[str, Any]:
    return {"members": ConversationService(db).get_members(conversation_id, current_user.id)}


@router.post("/{conversation_id}/members")
async def add_member(
    conversation_id: int,
    body: AddMemberRequest,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: DeliveryRouterDep,
) -> dict[str, Any]:
    """Add a user to a group conversation; owners and admins only."""
    member = await ConversationService(db, delivery).add_member(
        conversation_id,
        current_user.id,
        body.user_id,
        role=body.role,
    )
    return {"message": "Member added", "member": member}


@router.post("/{conversation_id}/read")
async def mark_read(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: DeliveryRouterDep,
    body: MarkReadRequest | None = Body(None),
) -> dict[str, Any]:
    """Mark messages sent up to ``uptoTimestamp`` (default now) as read."""
    read_ids = await ConversationService(db, delivery).mark_messages_as_read(
        conversation_id,
        current_user.id,
        upto=body.upto_timestamp if body else None,
        upto_message_id=body.upto_message_id if body else None,
    )
    return {"readMessageIds": read_ids}


@router.get("/{conversation_id}/read-status")
async def get_read_status(
    conversation_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    limit: int = Query(50, ge=1),
) -> dict[str, Any]:
    """Who has read each of the conversation's most recent messages."""
    reads = ConversationService(db).get_conversation_read_status(
        conversation_id, current_user.id, limit=limit
    )
    return {"reads": {str(message_id): readers for message_id, readers in reads.items()}}
