# src/zone_relay/services/notification_templates.py
"""Default notification text derived from the notification type and payload."""

from __future__ import annotations

import re

from zone_relay.models.notification import NotificationType
from zone_relay.schemas.notification import (
    AnnouncementData,
    DonationData,
    EventData,
    FriendData,
    GiveawayData,
    MentionData,
    MessageData,
    NotificationPayload,
    OrderData,
    ReactionData,
    ReplyData,
    StreamData,
)

MAX_SNIPPET = 80

_WHITESPACE = re.compile(r"\s+")
_CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£"}


def safe_snippet(text: str | None, max_len: int = MAX_SNIPPET) -> str:
    """Collapse whitespace and cap ``text`` at ``max_len`` characters."""
    flat = _WHITESPACE.sub(" ", text or "").strip()
    if len(flat) <= max_len:
        return flat
    return flat[: max_len - 1].rstrip() + "…"


def format_currency(amount: float | int | str | None, currency: str = "USD") -> str:
    try:
        value = float(amount)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return "" if amount is None else str(amount)
    symbol = _CURRENCY_SYMBOLS.get(currency.upper())
    if symbol:
        return f"{symbol}{value:,.2f}"
    return f"{value:,.2f} {currency.upper()}"


def _media_phrase(media_type: str | None) -> str:
    if not media_type:
        return "a message"
    if media_type.startswith("image"):
        return "an image"
    if media_type.startswith("video"):
        return "a video"
    if media_type.startswith("audio"):
        return "an audio clip"
    if "gif" in media_type:
        return "a GIF"
    return "a message"


def default_content(notification_type: NotificationType, data: NotificationPayload) -> str:
    """Return the primary line shown for a notification."""
    sender = getattr(data, "sender_name", None) or "Someone"

    if isinstance(data, MessageData):
        if data.is_group and data.group_name:
            return f"{sender} sent a message to {data.group_name}."
        return f"{sender} sent you a message."
    if isinstance(data, ReplyData):
        return f"{sender} replied to your message."
    if isinstance(data, FriendData):
        return f"{sender} sent you a friend request."
    if isinstance(data, ReactionData):
        return f"{sender} reacted to your message."
    if isinstance(data, OrderData):
        return f"Your order #{data.order_id or 'XXXX'} has been {data.status or 'updated'}."
    if isinstance(data, EventData):
        return f"New event: {data.event_name or 'Untitled Event'} is coming up!"
    if isinstance(data, StreamData):
        return f"{data.streamer_name or 'A streamer'} is now live!"
    if isinstance(data, AnnouncementData):
        return f"New announcement: {data.title or 'Important update'}."
    if isinstance(data, GiveawayData):
        return f"Giveaway alert: {data.title or 'Check it out now!'}"
    if isinstance(data, DonationData):
        amount = "$0.00" if data.amount is None else format_currency(data.amount, data.currency)
        return f"Thank you for donating {amount} to support Zone 25-14."
    if isinstance(data, MentionData):
        return f"{sender} mentioned you in a comment."
    return "You have a new notification."


def additional_info(notification_type: NotificationType, data: NotificationPayload) -> str | None:
    """Return the optional secondary line, or None when there is nothing to add."""
    if isinstance(data, MessageData):
        sender = data.sender_name or "Someone"
        phrase = _media_phrase(data.media_type)
        if data.is_group and data.group_name:
            return f"{sender} sent {phrase} in {data.group_name}."
        return f"{sender} sent you {phrase}."

    if isinstance(data, ReplyData):
        sender = data.sender_name or "Someone"
        media = data.media_type or ""
        for prefix, phrase in (("image", "an image"), ("video", "a video"), ("audio", "an audio clip")):
            if media.startswith(prefix):
                return f"{sender} replied with {phrase}."
        return f"{sender} replied to your message."

    if isinstance(data, FriendData):
        base = None
        if data.nickname and data.nickname != data.sender_name:
            base = f"From: {data.nickname}"
        if data.mutual_friends:
            preview = ", ".join(data.mutual_friends[:3])
            more = len(data.mutual_friends) - 3
            mutual = f"Mutual friends: {preview}" + (f" +{more} more" if more > 0 else "")
            return f"{base} • {mutual}" if base else mutual
        return base

    if isinstance(data, ReactionData):
        target = safe_snippet(data.target_snippet)
        if data.emoji and target:
            return f'{data.emoji} on: "{target}"'
        if target:
            return f'On: "{target}"'
        return None

    if isinstance(data, OrderData):
        if data.status:
            return f"Status: {data.status}"
        if data.delivery_eta:
            return f"Expected delivery: {data.delivery_eta}"
        return None

    if isinstance(data, GiveawayData):
        return f"Giveaway: {safe_snippet(data.title)}" if data.title else None

    if isinstance(data, StreamData):
        parts = []
        if data.event_name:
            parts.append(f"Event: {safe_snippet(data.event_name)}")
        if data.countdown:
            parts.append(f"Goes live in: {safe_snippet(data.countdown, 40)}")
        return " • ".join(parts) or None

    if isinstance(data, AnnouncementData):
        return safe_snippet(data.title) if data.title else None

    if isinstance(data, MentionData):
        if data.comment_snippet:
            return f'In {data.event_title or "an event"}: "{safe_snippet(data.comment_snippet)}"'
        if data.event_title:
            return f"In event: {safe_snippet(data.event_title)}"
        return None

    return None
