# src/zone_relay/services/message_requests.py
"""First-contact handshake: request, then accept or decline."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from zone_relay.core.errors import (
    AlreadyHandledError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from zone_relay.db.time import as_utc, utcnow
from zone_relay.models import Message, MessageRequest, NotificationType, User
from zone_relay.models.conversation import direct_key
from zone_relay.models.message_request import (
    REQUEST_ACCEPTED,
    REQUEST_DECLINED,
    REQUEST_PENDING,
)
from zone_relay.schemas.notification import MessageData
from zone_relay.services.conversations import conversation_link, find_or_create_direct
from zone_relay.services.delivery import DeliveryRouter, NotificationSpec
from zone_relay.services.notification_templates import safe_snippet

logger = logging.getLogger(__name__)

EVENT_REQUEST_ACCEPTED = "messageRequestAccepted"
REQUESTS_LINK = "/messages/requests"


def serialize_request(request: MessageRequest, sender: User | None, receiver: User | None) -> dict[str, Any]:
    created_at = as_utc(request.created_at)
    return {
        "id": request.id,
        "sender_id": request.sender_id,
        "sender_name": sender.name if sender else None,
        "sender_avatar": sender.avatar_url if sender else None,
        "receiver_id": request.receiver_id,
        "receiver_name": receiver.name if receiver else None,
        "content": request.content,
        "status": request.status,
        "created_at": created_at.isoformat() if created_at else None,
    }


class MessageRequestService:
    """At most one pending request per unordered pair of users."""

    def __init__(self, db: Session, router: DeliveryRouter | None = None) -> None:
        self.db = db
        self.router = router

    def _pending_for_pair(self, pair: str) -> MessageRequest | None:
        return self.db.scalars(
            select(MessageRequest).where(
                MessageRequest.pair_key == pair,
                MessageRequest.status == REQUEST_PENDING,
            )
        ).first()

    def _addressed_to(self, request_id: int, user_id: int) -> MessageRequest:
        request = self.db.get(MessageRequest, request_id)
        # Unknown ids and other people's requests look the same to the caller.
        if request is None or request.receiver_id != user_id:
            raise ForbiddenError("Request not found or not addressed to you")
        if request.status != REQUEST_PENDING:
            raise AlreadyHandledError()
        return request

    def _transition(self, request_id: int, status: str, conversation_id: int | None = None) -> None:
        values: dict[str, Any] = {"status": status, "handled_at": utcnow()}
        if conversation_id is not None:
            values["conversation_id"] = conversation_id
        result = self.db.execute(
            update(MessageRequest)
            .where(MessageRequest.id == request_id, MessageRequest.status == REQUEST_PENDING)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise AlreadyHandledError()

    async def create_request(
        self,
        sender_id: int,
        receiver_id: int,
        content: str,
    ) -> tuple[MessageRequest, bool]:
        """Create a pending request, or return the one already pending for the pair."""
        content = (content or "").strip()
        if not content:
            raise ValidationFailedError("Request content is required")
        if sender_id == receiver_id:
            raise ValidationFailedError("You cannot send a request to yourself")
        receiver = self.db.get(User, receiver_id)
        if receiver is None:
            raise NotFoundError("User not found")
        if not receiver.allow_messages:
            raise ForbiddenError("This user does not accept messages")

        pair = direct_key(sender_id, receiver_id)
        pending = self._pending_for_pair(pair)
        if pending is not None:
            return pending, False

        request = MessageRequest(
            sender_id=sender_id,
            receiver_id=receiver_id,
            pair_key=pair,
            content=content,
            status=REQUEST_PENDING,
            created_at=utcnow(),
        )
        self.db.add(request)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            pending = self._pending_for_pair(pair)
            if pending is None:
                raise
            logger.info("Pending request for %s created concurrently; reusing it", pair)
            return pending, False
        self.db.refresh(request)

        if self.router is not None:
            sender = self.db.get(User, sender_id)
            await self.router.notify_user(
                receiver_id,
                NotificationSpec(
                    type=NotificationType.MESSAGE,
                    data=MessageData(
                        sender_name=sender.name if sender else None,
                        request_id=request.id,
                        preview=safe_snippet(content),
                    ),
                    content=f"{sender.name if sender else 'Someone'} wants to message you.",
                    link=REQUESTS_LINK,
                ),
                actor_id=sender_id,
            )
        return request, True

    def _listing(self, condition) -> list[dict[str, Any]]:
        requests = self.db.scalars(
            select(MessageRequest)
            .where(condition, MessageRequest.status == REQUEST_PENDING)
            .order_by(MessageRequest.created_at.desc(), MessageRequest.id.desc())
        ).all()
        user_ids = {r.sender_id for r in requests} | {r.receiver_id for r in requests}
        users = (
            {u.id: u for u in self.db.scalars(select(User).where(User.id.in_(user_ids)))}
            if user_ids
            else {}
        )
        return [
            serialize_request(r, users.get(r.sender_id), users.get(r.receiver_id))
            for r in requests
        ]

    def list_incoming(self, user_id: int) -> list[dict[str, Any]]:
        return self._listing(MessageRequest.receiver_id == user_id)

    def list_outgoing(self, user_id: int) -> list[dict[str, Any]]:
        return self._listing(MessageRequest.sender_id == user_id)

    async def accept(
        self,
        request_id: int,
        user_id: int,
        reply_content: str | None = None,
    ) -> dict[str, Any]:
        """Accept a request and seed the 1:1 conversation, all in one commit.

        The request content becomes the first message (from the sender); a
        non-empty ``reply_content`` follows as a message from the receiver.
        """
        request = self._addressed_to(request_id, user_id)
        sender_id = request.sender_id

        conversation, _ = find_or_create_direct(self.db, sender_id, user_id)
        seeded = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            content=request.content,
            sent_at=utcnow(),
        )
        self.db.add(seeded)
        self.db.flush()

        reply = None
        reply_content = (reply_content or "").strip()
        if reply_content:
            reply = Message(
                conversation_id=conversation.id,
                sender_id=user_id,
                content=reply_content,
                sent_at=utcnow(),
            )
            self.db.add(reply)
            self.db.flush()

        conversation.last_message_at = (reply or seeded).sent_at
        self._transition(request_id, REQUEST_ACCEPTED, conversation.id)
        self.db.commit()
        logger.info("Request %s accepted into conversation %s", request_id, conversation.id)

        result = {
            "conversation_id": conversation.id,
            "request_message_id": seeded.id,
            "reply_message_id": reply.id if reply else None,
        }
        if self.router is not None:
            receiver = self.db.get(User, user_id)
            name = receiver.name if receiver else "Someone"
            await self.router.notify_user(
                sender_id,
                NotificationSpec(
                    type=NotificationType.MESSAGE,
                    data=MessageData(
                        sender_name=name,
                        conversation_id=conversation.id,
                        request_id=request_id,
                        status=REQUEST_ACCEPTED,
                    ),
                    content=f"{name} accepted your message request.",
                    link=conversation_link(conversation.id),
                ),
                event=EVENT_REQUEST_ACCEPTED,
                payload={
                    "requestId": request_id,
                    "conversationId": conversation.id,
                    "acceptedBy": user_id,
                },
                actor_id=user_id,
            )
        return result

    async def decline(self, request_id: int, user_id: int) -> MessageRequest:
        request = self._addressed_to(request_id, user_id)
        self._transition(request_id, REQUEST_DECLINED)
        self.db.commit()
        self.db.refresh(request)

        if self.router is not None:
            receiver = self.db.get(User, user_id)
            name = receiver.name if receiver else "Someone"
            await self.router.notify_user(
                request.sender_id,
                NotificationSpec(
                    type=NotificationType.MESSAGE,
                    data=MessageData(
                        sender_name=name,
                        request_id=request_id,
                        status=REQUEST_DECLINED,
                    ),
                    content=f"{name} declined your message request.",
                ),
                actor_id=user_id,
            )
        return request
