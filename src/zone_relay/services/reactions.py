# src/zone_relay/services/reactions.py
"""Message reactions: toggle, list, update and delete."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from zone_relay.core.errors import ConflictError, ForbiddenError, NotFoundError
from zone_relay.db.time import utcnow
from zone_relay.models import Message, MessageReaction, NotificationType, User
from zone_relay.schemas.notification import ReactionData
from zone_relay.services.conversations import (
    conversation_link,
    require_member,
    serialize_reaction,
)
from zone_relay.services.delivery import DeliveryEvent, DeliveryRouter, NotificationSpec
from zone_relay.services.notification_templates import safe_snippet

logger = logging.getLogger(__name__)

EVENT_REACTION_UPDATED = "reactionUpdated"


class ReactionService:
    """Reactions are visible to, and placed by, conversation members only."""

    def __init__(self, db: Session, router: DeliveryRouter | None = None) -> None:
        self.db = db
        self.router = router

    def _visible_message(self, message_id: int, user_id: int) -> Message:
        message = self.db.get(Message, message_id)
        if message is None or message.is_deleted:
            raise NotFoundError("Message not found")
        require_member(self.db, message.conversation_id, user_id)
        return message

    def _find(self, message_id: int, user_id: int, token: str) -> MessageReaction | None:
        return self.db.scalars(
            select(MessageReaction).where(
                MessageReaction.message_id == message_id,
                MessageReaction.user_id == user_id,
                MessageReaction.reaction == token,
            )
        ).first()

    def _owned(self, reaction_id: int, user_id: int) -> MessageReaction:
        reaction = self.db.get(MessageReaction, reaction_id)
        if reaction is None:
            raise NotFoundError("Reaction not found")
        if reaction.user_id != user_id:
            raise ForbiddenError("You can only change your own reactions")
        return reaction

    async def toggle_reaction(self, message_id: int, user_id: int, token: str) -> dict[str, Any]:
        """Add the reaction if absent, remove it if present."""
        message = self._visible_message(message_id, user_id)
        existing = self._find(message_id, user_id, token)

        if existing is not None:
            self.db.delete(existing)
            self.db.commit()
            result: dict[str, Any] = {"removed": True, "emoji": token}
            await self._broadcast(message, user_id, token, removed=True)
            return result

        reaction = MessageReaction(
            message_id=message_id,
            user_id=user_id,
            reaction=token,
            reacted_at=utcnow(),
        )
        self.db.add(reaction)
        try:
            self.db.commit()
        except IntegrityError:
            # Same toggle raced us; the reaction is present either way.
            self.db.rollback()
            reaction = self._find(message_id, user_id, token)
            if reaction is None:
                raise
            return {"reaction": serialize_reaction(reaction)}
        self.db.refresh(reaction)

        await self._broadcast(message, user_id, token, removed=False, notify_author=True)
        return {"reaction": serialize_reaction(reaction)}

    async def _broadcast(
        self,
        message: Message,
        user_id: int,
        token: str,
        removed: bool,
        notify_author: bool = False,
    ) -> None:
        if self.router is None:
            return
        payload = {
            "messageId": message.id,
            "conversationId": message.conversation_id,
            "userId": user_id,
            "reaction": token,
            "removed": removed,
            "reactions": [
                serialize_reaction(r)
                for r in self.db.scalars(
                    select(MessageReaction)
                    .where(MessageReaction.message_id == message.id)
                    .order_by(MessageReaction.reacted_at, MessageReaction.id)
                )
            ],
        }
        recipients: list[int] = []
        spec = None
        if notify_author and message.sender_id != user_id:
            reactor = self.db.get(User, user_id)
            recipients = [message.sender_id]
            spec = NotificationSpec(
                type=NotificationType.REACTION,
                data=ReactionData(
                    sender_name=reactor.name if reactor else None,
                    emoji=token,
                    target_snippet=safe_snippet(message.content) or None,
                    conversation_id=message.conversation_id,
                    message_id=message.id,
                ),
                link=conversation_link(message.conversation_id),
            )
        await self.router.deliver(
            DeliveryEvent(
                name=EVENT_REACTION_UPDATED,
                payload=payload,
                recipients=recipients,
                actor_id=user_id,
                room_id=message.conversation_id,
                notification=spec,
            )
        )

    def list_reactions(self, message_id: int, user_id: int) -> list[dict[str, Any]]:
        self._visible_message(message_id, user_id)
        reactions = self.db.scalars(
            select(MessageReaction)
            .where(MessageReaction.message_id == message_id)
            .order_by(MessageReaction.reacted_at, MessageReaction.id)
        )
        return [serialize_reaction(reaction) for reaction in reactions]

    def list_conversation_reactions(self, conversation_id: int, user_id: int) -> list[dict[str, Any]]:
        require_member(self.db, conversation_id, user_id)
        reactions = self.db.scalars(
            select(MessageReaction)
            .join(Message, Message.id == MessageReaction.message_id)
            .where(Message.conversation_id == conversation_id, Message.is_deleted.is_(False))
            .order_by(MessageReaction.message_id, MessageReaction.reacted_at, MessageReaction.id)
        )
        return [serialize_reaction(reaction) for reaction in reactions]

    async def update_reaction(self, reaction_id: int, user_id: int, new_token: str) -> dict[str, Any]:
        """Replace the token of one of the caller's reactions."""
        reaction = self._owned(reaction_id, user_id)
        if reaction.reaction == new_token:
            return serialize_reaction(reaction)
        if self._find(reaction.message_id, user_id, new_token) is not None:
            raise ConflictError("Reaction already exists")

        reaction.reaction = new_token
        reaction.reacted_at = utcnow()
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError("Reaction already exists") from exc
        self.db.refresh(reaction)

        message = self.db.get(Message, reaction.message_id)
        if message is not None:
            await self._broadcast(message, user_id, new_token, removed=False)
        return serialize_reaction(reaction)

    async def delete_reaction(self, reaction_id: int, user_id: int) -> None:
        reaction = self._owned(reaction_id, user_id)
        token = reaction.reaction
        message = self.db.get(Message, reaction.message_id)
        self.db.delete(reaction)
        self.db.commit()
        if message is not None:
            await self._broadcast(message, user_id, token, removed=True)
