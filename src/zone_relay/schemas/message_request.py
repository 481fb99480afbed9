"""Message request Pydantic schemas."""

from pydantic import BaseModel, ConfigDict, Field


class MessageRequestCreate(BaseModel):
    """Schema for asking another user to open a conversation."""

    model_config = ConfigDict(populate_by_name=True)

    to_user_id: int = Field(..., alias="toUserId")
    content: str = Field(..., min_length=1, max_length=2000)


class MessageRequestAccept(BaseModel):
    """Optional immediate reply sent when accepting a request."""

    model_config = ConfigDict(populate_by_name=True)

    reply_content: str | None = Field(None, alias="replyContent", max_length=5000)
