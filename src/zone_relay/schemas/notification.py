"""Notification-related Pydantic schemas.

Each notification type carries its own payload model. Payloads are tagged by
``kind`` which must equal the notification type they are attached to.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from zone_relay.core.errors import InvalidTypeError, ValidationFailedError
from zone_relay.models.notification import NotificationType


class NotificationPayload(BaseModel):
    """Fields shared by every payload."""

    model_config = ConfigDict(extra="forbid")

    status: str | None = None


class MessageData(NotificationPayload):
    kind: Literal["message"] = "message"
    sender_name: str | None = None
    conversation_id: int | None = None
    message_id: int | None = None
    request_id: int | None = None
    is_group: bool = False
    group_name: str | None = None
    media_type: str | None = None
    preview: str | None = None


class ReplyData(NotificationPayload):
    kind: Literal["reply"] = "reply"
    sender_name: str | None = None
    conversation_id: int | None = None
    message_id: int | None = None
    media_type: str | None = None
    preview: str | None = None


class FriendData(NotificationPayload):
    kind: Literal["friend"] = "friend"
    sender_name: str | None = None
    sender_id: int | None = None
    nickname: str | None = None
    request_id: int | None = None
    mutual_friends: list[str] = Field(default_factory=list)


class ReactionData(NotificationPayload):
    kind: Literal["reaction"] = "reaction"
    sender_name: str | None = None
    emoji: str | None = None
    target_snippet: str | None = None
    conversation_id: int | None = None
    message_id: int | None = None


class OrderData(NotificationPayload):
    kind: Literal["order"] = "order"
    order_id: str | None = None
    delivery_eta: str | None = None


class EventData(NotificationPayload):
    kind: Literal["event"] = "event"
    event_id: int | None = None
    event_name: str | None = None


class StreamData(NotificationPayload):
    kind: Literal["stream"] = "stream"
    stream_id: int | None = None
    streamer_name: str | None = None
    event_name: str | None = None
    countdown: str | None = None


class AnnouncementData(NotificationPayload):
    kind: Literal["announcement"] = "announcement"
    title: str | None = None


class GiveawayData(NotificationPayload):
    kind: Literal["giveaway"] = "giveaway"
    title: str | None = None


class DonationData(NotificationPayload):
    kind: Literal["donation"] = "donation"
    amount: float | None = None
    currency: str = "USD"


class MentionData(NotificationPayload):
    kind: Literal["mention"] = "mention"
    sender_name: str | None = None
    event_id: int | None = None
    event_title: str | None = None
    comment_id: int | None = None
    comment_snippet: str | None = None


NotificationData = Annotated[
    Union[
        MessageData,
        ReplyData,
        FriendData,
        ReactionData,
        OrderData,
        EventData,
        StreamData,
        AnnouncementData,
        GiveawayData,
        DonationData,
        MentionData,
    ],
    Field(discriminator="kind"),
]

_DATA_ADAPTER: TypeAdapter[Any] = TypeAdapter(NotificationData)

PAYLOAD_MODELS: dict[NotificationType, type[NotificationPayload]] = {
    NotificationType.MESSAGE: MessageData,
    NotificationType.REPLY: ReplyData,
    NotificationType.FRIEND: FriendData,
    NotificationType.REACTION: ReactionData,
    NotificationType.ORDER: OrderData,
    NotificationType.EVENT: EventData,
    NotificationType.STREAM: StreamData,
    NotificationType.ANNOUNCEMENT: AnnouncementData,
    NotificationType.GIVEAWAY: GiveawayData,
    NotificationType.DONATION: DonationData,
    NotificationType.MENTION: MentionData,
}


def parse_notification_type(value: str | NotificationType) -> NotificationType:
    """Return the enum member for ``value`` or raise ``InvalidTypeError``."""
    try:
        return NotificationType(value)
    except ValueError as exc:
        raise InvalidTypeError(f"Invalid notification type: {value}") from exc


def build_payload(
    notification_type: NotificationType,
    data: NotificationPayload | dict[str, Any] | None,
) -> NotificationPayload:
    """Validate ``data`` against the payload model of ``notification_type``."""
    if data is None:
        return PAYLOAD_MODELS[notification_type]()
    if isinstance(data, NotificationPayload):
        payload = data
    else:
        raw = dict(data)
        raw.setdefault("kind", notification_type.value)
        try:
            payload = _DATA_ADAPTER.validate_python(raw)
        except ValidationError as exc:
            raise ValidationFailedError(
                f"Invalid payload for {notification_type.value} notification"
            ) from exc
    if getattr(payload, "kind", None) != notification_type.value:
        raise ValidationFailedError(
            f"Payload kind does not match notification type {notification_type.value}"
        )
    return payload


class NotificationCreate(BaseModel):
    """Schema for creating a notification through the API."""

    user_id: int = Field(..., description="Recipient user id")
    type: str = Field(..., description="One of the notification types")
    content: str | None = Field(None, max_length=1000)
    link: str | None = Field(None, max_length=500)
    data: dict[str, Any] | None = Field(None, description="Typed payload for the notification type")


class NotificationResponse(BaseModel):
    """Schema for notification information returned by the API."""

    id: int
    user_id: int
    type: str
    content: str
    is_read: bool
    created_at: datetime
    link: str | None
    data: dict[str, Any]
    additional_info: str | None

    model_config = ConfigDict(from_attributes=True)


class NotificationStatusUpdate(BaseModel):
    """Accept or decline the action a notification refers to."""

    status: Literal["accepted", "declined"]


class NotificationIds(BaseModel):
    """Batch of notification ids to delete."""

    ids: list[int] = Field(..., min_length=1, max_length=500)
