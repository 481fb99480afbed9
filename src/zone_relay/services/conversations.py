# src/zone_relay/services/conversations.py
"""Conversations, membership, messages and read receipts."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from sqlalchemy import and_, exists, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from zone_relay.core.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from zone_relay.core.settings import settings
from zone_relay.db.time import as_utc, utcnow
from zone_relay.models import (
    Conversation,
    ConversationMember,
    Message,
    MessageReaction,
    MessageRead,
    NotificationType,
    User,
)
from zone_relay.models.conversation import (
    MANAGER_ROLES,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_OWNER,
    direct_key,
)
from zone_relay.schemas.notification import MessageData, ReplyData
from zone_relay.services.delivery import DeliveryEvent, DeliveryRouter, NotificationSpec
from zone_relay.services.notification_templates import safe_snippet

logger = logging.getLogger(__name__)

EVENT_RECEIVE_MESSAGE = "receiveMessage"
EVENT_MEMBER_ADDED = "memberAdded"
EVENT_MESSAGES_READ = "messagesRead"
EVENT_MESSAGE_READ = "message:read"
EVENT_MESSAGE_DELETED = "messageDeleted"


def _iso(value) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def conversation_link(conversation_id: int) -> str:
    return f"/messages/{conversation_id}"


def serialize_conversation(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": conversation.id,
        "is_group": conversation.is_group,
        "group_name": conversation.group_name,
        "created_by": conversation.created_by,
        "created_at": _iso(conversation.created_at),
        "last_message_at": _iso(conversation.last_message_at),
    }


def serialize_member(member: ConversationMember, user: User) -> dict[str, Any]:
    return {
        "user_id": member.user_id,
        "username": user.username,
        "display_name": user.name,
        "avatar_url": user.avatar_url,
        "role": member.role,
        "joined_at": _iso(member.joined_at),
    }


def serialize_reaction(reaction: MessageReaction) -> dict[str, Any]:
    return {
        "id": reaction.id,
        "message_id": reaction.message_id,
        "user_id": reaction.user_id,
        "reaction": reaction.reaction,
        "reacted_at": _iso(reaction.reacted_at),
    }


def require_conversation(db: Session, conversation_id: int) -> Conversation:
    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFoundError("Conversation not found")
    return conversation


def require_member(db: Session, conversation_id: int, user_id: int) -> ConversationMember:
    """Return the caller's membership row; 404 for unknown conversations, 403 for outsiders."""
    require_conversation(db, conversation_id)
    member = db.scalars(
        select(ConversationMember).where(
            ConversationMember.conversation_id == conversation_id,
            ConversationMember.user_id == user_id,
        )
    ).first()
    if member is None:
        raise ForbiddenError("You are not a member of this conversation")
    return member


def member_ids(db: Session, conversation_id: int) -> list[int]:
    return list(
        db.scalars(
            select(ConversationMember.user_id)
            .where(ConversationMember.conversation_id == conversation_id)
            .order_by(ConversationMember.id)
        ).all()
    )


def find_or_create_direct(db: Session, creator_id: int, other_id: int) -> tuple[Conversation, bool]:
    """Return the 1:1 conversation between two users, creating it if needed.

    Does not commit. A concurrent creator losing the unique ``direct_key``
    race gets the winner's row back.
    """
    pair = direct_key(creator_id, other_id)
    existing = db.scalars(select(Conversation).where(Conversation.direct_key == pair)).first()
    if existing is not None:
        return existing, True

    try:
        with db.begin_nested():
            conversation = Conversation(
                is_group=False,
                group_name=None,
                created_by=creator_id,
                created_at=utcnow(),
                direct_key=pair,
            )
            conversation.members = [
                ConversationMember(user_id=creator_id, role=ROLE_OWNER, joined_at=utcnow()),
                ConversationMember(user_id=other_id, role=ROLE_MEMBER, joined_at=utcnow()),
            ]
            db.add(conversation)
            db.flush()
    except IntegrityError:
        logger.info("Direct conversation %s created concurrently; reusing it", pair)
        existing = db.scalars(select(Conversation).where(Conversation.direct_key == pair)).first()
        if existing is None:
            raise
        return existing, True
    return conversation, False


class ConversationService:
    """Conversation lifecycle and message persistence.

    Every mutation commits before anything is handed to the delivery router.
    """

    def __init__(self, db: Session, router: DeliveryRouter | None = None) -> None:
        self.db = db
        self.router = router

    def _users(self, user_ids: Iterable[int]) -> dict[int, User]:
        ids = set(user_ids)
        if not ids:
            return {}
        return {user.id: user for user in self.db.scalars(select(User).where(User.id.in_(ids)))}

    def create_conversation(
        self,
        creator_id: int,
        is_group: bool,
        group_name: str | None,
        member_ids: Iterable[int],
    ) -> tuple[Conversation, bool]:
        """Create a conversation; a 1:1 request returns the existing one if any."""
        others: list[int] = []
        for user_id in member_ids:
            if user_id != creator_id and user_id not in others:
                others.append(int(user_id))

        users = self._users(others)
        missing = [user_id for user_id in others if user_id not in users]
        if missing:
            raise NotFoundError(f"User not found: {missing[0]}")

        if not is_group:
            if len(others) != 1:
                raise ValidationFailedError("A direct conversation needs exactly one other member")
            target = users[others[0]]
            if not target.allow_messages:
                raise ForbiddenError("This user does not accept messages")
            conversation, existing = find_or_create_direct(self.db, creator_id, target.id)
            self.db.commit()
            if not existing:
                logger.info("Created direct conversation %s", conversation.id)
            return conversation, existing

        name = (group_name or "").strip()
        if not name:
            raise ValidationFailedError("Group conversations need a name")
        now = utcnow()
        conversation = Conversation(
            is_group=True,
            group_name=name,
            created_by=creator_id,
            created_at=now,
        )
        conversation.members = [ConversationMember(user_id=creator_id, role=ROLE_OWNER, joined_at=now)]
        conversation.members.extend(
            ConversationMember(user_id=user_id, role=ROLE_MEMBER, joined_at=now) for user_id in others
        )
        self.db.add(conversation)
        self.db.commit()
        self.db.refresh(conversation)
        logger.info("Created group conversation %s with %s members", conversation.id, len(others) + 1)
        return conversation, False

    async def add_member(
        self,
        conversation_id: int,
        actor_id: int,
        new_member_id: int,
        role: str = ROLE_MEMBER,
    ) -> dict[str, Any]:
        """Add a user to a group conversation (owner or admin only)."""
        conversation = require_conversation(self.db, conversation_id)
        actor = require_member(self.db, conversation_id, actor_id)
        if actor.role not in MANAGER_ROLES:
            raise ForbiddenError("Only owners and admins can add members")
        if role == ROLE_ADMIN and actor.role != ROLE_OWNER:
            raise ForbiddenError("Only the owner can add admins")
        if role not in (ROLE_ADMIN, ROLE_MEMBER):
            raise ValidationFailedError("Role must be 'admin' or 'member'")
        if not conversation.is_group:
            raise ValidationFailedError("Members can only be added to group conversations")

        users = self._users([new_member_id, actor_id])
        new_user = users.get(new_member_id)
        if new_user is None:
            raise NotFoundError("User not found")

        existing_ids = member_ids(self.db, conversation_id)
        if new_member_id in existing_ids:
            raise ConflictError("User is already a member")

        member = ConversationMember(
            conversation_id=conversation_id,
            user_id=new_member_id,
            role=role,
            joined_at=utcnow(),
        )
        self.db.add(member)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            raise ConflictError("User is already a member") from exc
        self.db.refresh(member)

        payload = serialize_member(member, new_user)
        payload["conversation_id"] = conversation_id
        if self.router is not None:
            actor_name = users[actor_id].name if actor_id in users else "Someone"
            spec = NotificationSpec(
                type=NotificationType.MESSAGE,
                data=MessageData(
                    sender_name=actor_name,
                    conversation_id=conversation_id,
                    is_group=True,
                    group_name=conversation.group_name,
                ),
                content=f"{actor_name} added you to {conversation.group_name}.",
                link=conversation_link(conversation_id),
            )
            await self.router.deliver(
                DeliveryEvent(
                    name=EVENT_MEMBER_ADDED,
                    payload=payload,
                    recipients=[*existing_ids, new_member_id],
                    actor_id=actor_id,
                    room_id=conversation_id,
                    notification=lambda user_id: spec if user_id == new_member_id else None,
                )
            )
        return payload

    def get_members(self, conversation_id: int, user_id: int) -> list[dict[str, Any]]:
        require_member(self.db, conversation_id, user_id)
        rows = self.db.execute(
            select(ConversationMember, User)
            .join(User, User.id == ConversationMember.user_id)
            .where(ConversationMember.conversation_id == conversation_id)
            .order_by(ConversationMember.id)
        ).all()
        return [serialize_member(member, user) for member, user in rows]

    def list_conversations(self, user_id: int) -> list[dict[str, Any]]:
        """Return the user's conversations, most recently active first."""
        activity = func.coalesce(Conversation.last_message_at, Conversation.created_at)
        conversations = self.db.scalars(
            select(Conversation)
            .join(ConversationMember, ConversationMember.conversation_id == Conversation.id)
            .where(ConversationMember.user_id == user_id)
            .order_by(activity.desc(), Conversation.id.desc())
        ).all()

        results = []
        for conversation in conversations:
            last = self.db.scalars(
                select(Message)
                .where(Message.conversation_id == conversation.id, Message.is_deleted.is_(False))
                .order_by(Message.sent_at.desc(), Message.id.desc())
                .limit(1)
            ).first()
            item = serialize_conversation(conversation)
            item["members"] = self.get_members(conversation.id, user_id)
            item["last_message"] = (
                {
                    "id": last.id,
                    "sender_id": last.sender_id,
                    "content": last.content,
                    "media_type": last.media_type,
                    "sent_at": _iso(last.sent_at),
                }
                if last is not None
                else None
            )
            item["unread_count"] = self._unread_count(conversation.id, user_id)
            results.append(item)
        return results

    def _unread_count(self, conversation_id: int, user_id: int) -> int:
        read = exists().where(MessageRead.message_id == Message.id, MessageRead.user_id == user_id)
        count = self.db.scalar(
            select(func.count())
            .select_from(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_id != user_id,
                Message.is_deleted.is_(False),
                ~read,
            )
        )
        return int(count or 0)

    def message_payloads(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Serialize messages with sender names, reply previews and reactions."""
        if not messages:
            return []
        reply_ids = {message.reply_to_id for message in messages if message.reply_to_id}
        replies = (
            {m.id: m for m in self.db.scalars(select(Message).where(Message.id.in_(reply_ids)))}
            if reply_ids
            else {}
        )
        users = self._users(
            [m.sender_id for m in messages] + [r.sender_id for r in replies.values()]
        )
        reactions: dict[int, list[dict[str, Any]]] = defaultdict(list)
        for reaction in self.db.scalars(
            select(MessageReaction)
            .where(MessageReaction.message_id.in_([m.id for m in messages]))
            .order_by(MessageReaction.reacted_at, MessageReaction.id)
        ):
            reactions[reaction.message_id].append(serialize_reaction(reaction))

        payloads = []
        for message in messages:
            sender = users.get(message.sender_id)
            reply_preview = None
            reply = replies.get(message.reply_to_id) if message.reply_to_id else None
            if reply is not None:
                reply_sender = users.get(reply.sender_id)
                reply_preview = {
                    "id": reply.id,
                    "sender_id": reply.sender_id,
                    "sender_name": reply_sender.name if reply_sender else None,
                    "content": "" if reply.is_deleted else reply.content,
                    "media_type": reply.media_type,
                    "is_deleted": reply.is_deleted,
                }
            payloads.append(
                {
                    "id": message.id,
                    "conversation_id": message.conversation_id,
                    "sender_id": message.sender_id,
                    "sender_name": sender.name if sender else None,
                    "content": message.content,
                    "reply_to_id": message.reply_to_id,
                    "reply_to": reply_preview,
                    "sent_at": _iso(message.sent_at),
                    "media_url": message.media_url,
                    "media_type": message.media_type,
                    "reactions": reactions.get(message.id, []),
                }
            )
        return payloads

    async def send_message(
        self,
        conversation_id: int,
        sender_id: int,
        content: str,
        reply_to_id: int | None = None,
        media_url: str | None = None,
        media_type: str | None = None,
    ) -> dict[str, Any]:
        """Persist a message and fan it out to the other members."""
        conversation = require_conversation(self.db, conversation_id)
        require_member(self.db, conversation_id, sender_id)
        content = (content or "").strip()
        if not content and not media_url:
            raise ValidationFailedError("Message must have content or media")

        reply_to = None
        if reply_to_id is not None:
            reply_to = self.db.get(Message, reply_to_id)
            if reply_to is None or reply_to.conversation_id != conversation_id:
                raise ValidationFailedError("Reply target must be a message in this conversation")

        sent_at = utcnow()
        message = Message(
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            reply_to_id=reply_to_id,
            sent_at=sent_at,
            media_url=media_url,
            media_type=media_type,
        )
        self.db.add(message)
        conversation.last_message_at = sent_at
        self.db.commit()
        self.db.refresh(message)

        payload = self.message_payloads([message])[0]
        if self.router is not None:
            await self.router.deliver(
                DeliveryEvent(
                    name=EVENT_RECEIVE_MESSAGE,
                    payload=payload,
                    recipients=member_ids(self.db, conversation_id),
                    actor_id=sender_id,
                    room_id=conversation_id,
                    notification=self._message_notifications(conversation, message, payload, reply_to),
                )
            )
        return payload

    @staticmethod
    def _message_notifications(
        conversation: Conversation,
        message: Message,
        payload: dict[str, Any],
        reply_to: Message | None,
    ):
        sender_name = payload.get("sender_name") or "Someone"
        preview = safe_snippet(message.content) or None
        link = conversation_link(conversation.id)
        as_message = NotificationSpec(
            type=NotificationType.MESSAGE,
            data=MessageData(
                sender_name=sender_name,
                conversation_id=conversation.id,
                message_id=message.id,
                is_group=conversation.is_group,
                group_name=conversation.group_name,
                media_type=message.media_type,
                preview=preview,
            ),
            link=link,
        )
        if reply_to is None or reply_to.sender_id == message.sender_id:
            return as_message
        as_reply = NotificationSpec(
            type=NotificationType.REPLY,
            data=ReplyData(
                sender_name=sender_name,
                conversation_id=conversation.id,
                message_id=message.id,
                media_type=message.media_type,
                preview=preview,
            ),
            link=link,
        )
        return lambda user_id: as_reply if user_id == reply_to.sender_id else as_message

    def _keyset_before(self, conversation_id: int, before_id: int):
        anchor = self.db.scalars(
            select(Message).where(Message.id == before_id, Message.conversation_id == conversation_id)
        ).first()
        if anchor is None:
            raise NotFoundError("Message not found")
        anchor_sent = select(Message.sent_at).where(Message.id == before_id).scalar_subquery()
        return or_(
            Message.sent_at < anchor_sent,
            and_(Message.sent_at == anchor_sent, Message.id < before_id),
        )

    def get_messages(
        self,
        conversation_id: int,
        user_id: int,
        before: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[dict[str, Any]], bool]:
        """Return one page of messages newest first and whether more may exist.

        Paging is keyset on (sent_at, id), strictly older than ``before``.
        """
        require_member(self.db, conversation_id, user_id)
        limit = limit or settings.message_page_size
        limit = max(1, min(limit, settings.message_page_max))

        stmt = select(Message).where(
            Message.conversation_id == conversation_id,
            Message.is_deleted.is_(False),
        )
        if before is not None:
            stmt = stmt.where(self._keyset_before(conversation_id, before))
        messages = list(
            self.db.scalars(
                stmt.order_by(Message.sent_at.desc(), Message.id.desc()).limit(limit)
            ).all()
        )
        return self.message_payloads(messages), len(messages) == limit

    async def mark_messages_as_read(
        self,
        conversation_id: int,
        user_id: int,
        upto: datetime | None = None,
        upto_message_id: int | None = None,
    ) -> list[int]:
        """Record read receipts for unread messages sent at or before ``upto``.

        ``upto`` defaults to now. ``upto_message_id`` further limits the range to
        messages no later than that message. Returns the ids newly marked read.
        """
        require_member(self.db, conversation_id, user_id)

        already_read = exists().where(
            MessageRead.message_id == Message.id, MessageRead.user_id == user_id
        )
        stmt = select(Message.id).where(
            Message.conversation_id == conversation_id,
            Message.sender_id != user_id,
            Message.is_deleted.is_(False),
            Message.sent_at <= as_utc(upto or utcnow()),
            ~already_read,
        )
        if upto_message_id is not None:
            anchor = self.db.scalars(
                select(Message).where(
                    Message.id == upto_message_id, Message.conversation_id == conversation_id
                )
            ).first()
            if anchor is None:
                raise NotFoundError("Message not found")
            anchor_sent = select(Message.sent_at).where(Message.id == upto_message_id).scalar_subquery()
            stmt = stmt.where(
                or_(
                    Message.sent_at < anchor_sent,
                    and_(Message.sent_at == anchor_sent, Message.id <= upto_message_id),
                )
            )

        unread = list(self.db.scalars(stmt.order_by(Message.sent_at, Message.id)).all())
        if not unread:
            return []

        now = utcnow()
        self.db.add_all(MessageRead(message_id=mid, user_id=user_id, read_at=now) for mid in unread)
        try:
            self.db.commit()
        except IntegrityError:
            # Another request recorded some of these receipts first.
            self.db.rollback()
            unread = list(self.db.scalars(stmt.order_by(Message.sent_at, Message.id)).all())
            if not unread:
                return []
            self.db.add_all(
                MessageRead(message_id=mid, user_id=user_id, read_at=now) for mid in unread
            )
            self.db.commit()

        if self.router is not None:
            await self.router.deliver(
                DeliveryEvent(
                    name=EVENT_MESSAGES_READ,
                    payload={
                        "conversationId": conversation_id,
                        "userId": user_id,
                        "messageIds": unread,
                    },
                    recipients=[],
                    actor_id=user_id,
                    room_id=conversation_id,
                )
            )
            counts = self.read_counts(unread)
            for message_id in unread:
                await self.router.deliver(
                    DeliveryEvent(
                        name=EVENT_MESSAGE_READ,
                        payload={
                            "messageId": message_id,
                            "conversationId": conversation_id,
                            "userId": user_id,
                            "readByCount": counts.get(message_id, 0),
                        },
                        recipients=[],
                        actor_id=user_id,
                        room_id=conversation_id,
                    )
                )
        return unread

    def read_counts(self, message_ids: Iterable[int]) -> dict[int, int]:
        """Return how many users have read each message."""
        ids = list(message_ids)
        if not ids:
            return {}
        rows = self.db.execute(
            select(MessageRead.message_id, func.count(MessageRead.user_id))
            .where(MessageRead.message_id.in_(ids))
            .group_by(MessageRead.message_id)
        ).all()
        return {message_id: count for message_id, count in rows}

    def get_message_reads(self, message_ids: Iterable[int]) -> dict[int, list[dict[str, Any]]]:
        """Group the readers of each message, earliest reader first.

        Messages nobody has read are absent from the result.
        """
        ids = list(message_ids)
        if not ids:
            return {}
        rows = self.db.execute(
            select(MessageRead, User)
            .join(User, User.id == MessageRead.user_id)
            .where(MessageRead.message_id.in_(ids))
            .order_by(MessageRead.read_at, MessageRead.user_id)
        ).all()
        reads: dict[int, list[dict[str, Any]]] = defaultdict(list)
        for receipt, user in rows:
            reads[receipt.message_id].append(
                {
                    "user_id": user.id,
                    "username": user.username,
                    "avatar": user.avatar_url,
                    "read_at": _iso(receipt.read_at),
                }
            )
        return dict(reads)

    def get_message_read_status(self, message_id: int, user_id: int) -> list[dict[str, Any]]:
        """Readers of one message, visible to members of its conversation."""
        message = self.db.get(Message, message_id)
        if message is None or message.is_deleted:
            raise NotFoundError("Message not found")
        require_member(self.db, message.conversation_id, user_id)
        return self.get_message_reads([message_id]).get(message_id, [])

    def get_conversation_read_status(
        self,
        conversation_id: int,
        user_id: int,
        limit: int = 50,
    ) -> dict[int, list[dict[str, Any]]]:
        """Readers of the conversation's ``limit`` most recent live messages."""
        require_member(self.db, conversation_id, user_id)
        limit = max(1, min(int(limit), settings.message_page_max))
        recent = self.db.scalars(
            select(Message.id)
            .where(Message.conversation_id == conversation_id, Message.is_deleted.is_(False))
            .order_by(Message.sent_at.desc(), Message.id.desc())
            .limit(limit)
        ).all()
        return self.get_message_reads(recent)

    async def delete_message(self, message_id: int, user_id: int) -> Message:
        """Soft-delete a message; only its sender may do so."""
        message = self.db.get(Message, message_id)
        if message is None or message.is_deleted:
            raise NotFoundError("Message not found")
        if message.sender_id != user_id:
            raise ForbiddenError("Only the sender can delete this message")

        message.is_deleted = True
        self.db.commit()

        if self.router is not None:
            await self.router.deliver(
                DeliveryEvent(
                    name=EVENT_MESSAGE_DELETED,
                    payload={"messageId": message.id, "conversationId": message.conversation_id},
                    recipients=[],
                    actor_id=user_id,
                    room_id=message.conversation_id,
                )
            )
        return message
