# src/zone_relay/api/v1/endpoints/reactions.py
"""Reaction endpoints for the Zone Relay API."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query

from zone_relay.api.v1.dependencies import CurrentUserDep, DeliveryRouterDep, SessionDep
from zone_relay.schemas.messaging import ReactionToggle, ReactionUpdate
from zone_relay.services.reactions import ReactionService

router = APIRouter(prefix="/reactions", tags=["reactions"])


@router.post("")
async def toggle_reaction(
    body: ReactionToggle,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: DeliveryRouterDep,
) -> dict[str, Any]:
    """Add the reaction if the caller has not placed it yet, otherwise remove it."""
    return await ReactionService(db, delivery).toggle_reaction(
        body.message_id, current_user.id, body.reaction
    )


@router.get("")
async def list_reactions(
    current_user: CurrentUserDep,
    db: SessionDep,
    message_id: int = Query(..., alias="messageId"),
) -> list[dict[str, Any]]:
    return ReactionService(db).list_reactions(message_id, current_user.id)


@router.get("/by-conversation")
async def list_conversation_reactions(
    current_user: CurrentUserDep,
    db: SessionDep,
    conversation_id: int = Query(..., alias="conversationId"),
) -> list[dict[str, Any]]:
    return ReactionService(db).list_conversation_reactions(conversation_id, current_user.id)


@router.patch("/{reaction_id}")
async def update_reaction(
    reaction_id: int,
    body: ReactionUpdate,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: DeliveryRouterDep,
) -> dict[str, Any]:
    updated = await ReactionService(db, delivery).update_reaction(
        reaction_id, current_user.id, body.new_reaction
    )
    return {"updated": updated}


@router.delete("/{reaction_id}")
async def delete_reaction(
    reaction_id: int,
    current_user: CurrentUserDep,
    db: SessionDep,
    delivery: DeliveryRouterDep,
) -> dict[str, bool]:
    await ReactionService(db, delivery).delete_reaction(reaction_id, current_user.id)
    return {"deleted": True}
