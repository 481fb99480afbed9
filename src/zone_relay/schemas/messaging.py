"""Conversation, message and reaction Pydantic schemas.

Request bodies accept the camelCase names web clients send as well as the
snake_case field names.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class _ClientModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ConversationCreate(_ClientModel):
    """Schema for creating a 1:1 or group conversation."""

    is_group: bool = Field(False, alias="isGroup")
    group_name: str | None = Field(None, alias="groupName", max_length=120)
    member_ids: list[int] = Field(default_factory=list, alias="memberIds", max_length=256)


class AddMemberRequest(_ClientModel):
    """Schema for adding a user to a group conversation."""

    user_id: int = Field(..., alias="userId")
    role: str = Field("member", pattern="^(admin|member)$")


class MessageCreate(_ClientModel):
    """Schema for sending a message."""

    conversation_id: int = Field(..., alias="conversationId")
    content: str = Field("", max_length=5000)
    reply_to_id: int | None = Field(None, alias="replyToId")
    media_url: str | None = Field(None, alias="mediaUrl", max_length=500)
    media_type: str | None = Field(None, alias="mediaType", max_length=64)

    @model_validator(mode="after")
    def _require_content_or_media(self) -> "MessageCreate":
        if not self.content.strip() and not self.media_url:
            raise ValueError("Message must have content or media")
        return self


class MarkReadRequest(_ClientModel):
    """Mark a conversation read up to a timestamp (default now), optionally up to a message."""

    upto_timestamp: datetime | None = Field(None, alias="uptoTimestamp")
    upto_message_id: int | None = Field(None, alias="uptoMessageId")


class ReactionToggle(_ClientModel):
    """Schema for toggling a reaction on a message."""

    message_id: int = Field(..., alias="messageId")
    reaction: str = Field(..., min_length=1, max_length=64)


class ReactionUpdate(_ClientModel):
    """Schema for replacing the token of an existing reaction."""

    new_reaction: str = Field(..., alias="newReaction", min_length=1, max_length=64)
