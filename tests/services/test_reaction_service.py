# tests/services/test_reaction_service.py
"""Tests for message reactions."""

import pytest
from sqlalchemy import func, select

from zone_relay.core.errors import ConflictError, ForbiddenError, NotFoundError
from zone_relay.models import MessageReaction, Notification
from zone_relay.services.reactions import ReactionService


@pytest.fixture()
def service(db_session, router):
    return ReactionService(db_session, router)


@pytest.fixture()
def message(direct_conversation, alice, add_message):
    return add_message(direct_conversation, alice, "look at this")


def _reaction_rows(db_session, message_id):
    return db_session.scalar(
        select(func.count()).select_from(MessageReaction).where(MessageReaction.message_id == message_id)
    )


@pytest.mark.asyncio
async def test_toggle_flips_presence(service, db_session, message, bob):
    """Test that toggling adds, removes and re-adds a single reaction row."""
    added = await service.toggle_reaction(message.id, bob.id, "🔥")
    assert added["reaction"]["reaction"] == "🔥"
    assert _reaction_rows(db_session, message.id) == 1

    removed = await service.toggle_reaction(message.id, bob.id, "🔥")
    assert removed == {"removed": True, "emoji": "🔥"}
    assert _reaction_rows(db_session, message.id) == 0

    await service.toggle_reaction(message.id, bob.id, "🔥")
    assert _reaction_rows(db_session, message.id) == 1


@pytest.mark.asyncio
async def test_distinct_tokens_coexist(service, db_session, message, bob):
    await service.toggle_reaction(message.id, bob.id, "🔥")
    await service.toggle_reaction(message.id, bob.id, "👍")

    tokens = [r["reaction"] for r in service.list_reactions(message.id, bob.id)]
    assert tokens == ["🔥", "👍"]


@pytest.mark.asyncio
async def test_reaction_notifies_author_once(service, broadcaster, db_session, direct_conversation, message, alice, bob):
    await service.toggle_reaction(message.id, bob.id, "🔥")
    await service.toggle_reaction(message.id, bob.id, "🔥")

    notifications = db_session.scalars(select(Notification).where(Notification.user_id == alice.id)).all()
    assert [n.type for n in notifications] == ["reaction"]
    assert notifications[0].data["emoji"] == "🔥"
    assert broadcaster.room_event_names(direct_conversation.id) == ["reactionUpdated", "reactionUpdated"]


@pytest.mark.asyncio
async def test_reaction_notification_stores_short_snippet(
    service, db_session, direct_conversation, alice, bob, add_message
):
    """Test that the stored payload carries the rendered snippet, not the whole message."""
    long_message = add_message(direct_conversation, alice, "word " * 400)

    await service.toggle_reaction(long_message.id, bob.id, "👍")

    [notification] = db_session.scalars(select(Notification).where(Notification.user_id == alice.id)).all()
    snippet = notification.data["target_snippet"]
    assert len(snippet) == 80
    assert snippet.endswith("…")
    assert snippet in notification.additional_info


@pytest.mark.asyncio
async def test_self_reaction_is_not_notified(service, db_session, message, alice):
    await service.toggle_reaction(message.id, alice.id, "🔥")
    assert db_session.scalars(select(Notification)).all() == []


@pytest.mark.asyncio
async def test_outsider_cannot_react(service, message, carol):
    with pytest.raises(ForbiddenError):
        await service.toggle_reaction(message.id, carol.id, "🔥")


@pytest.mark.asyncio
async def test_deleted_message_cannot_be_reacted_to(service, direct_conversation, alice, bob, add_message):
    gone = add_message(direct_conversation, alice, "bye", is_deleted=True)
    with pytest.raises(NotFoundError):
        await service.toggle_reaction(gone.id, bob.id, "🔥")


@pytest.mark.asyncio
async def test_update_and_delete_require_ownership(service, message, alice, bob):
    """Test that only the reactor may change or remove a reaction."""
    added = await service.toggle_reaction(message.id, bob.id, "🔥")
    reaction_id = added["reaction"]["id"]

    with pytest.raises(ForbiddenError):
        await service.update_reaction(reaction_id, alice.id, "👍")
    with pytest.raises(ForbiddenError):
        await service.delete_reaction(reaction_id, alice.id)
    with pytest.raises(NotFoundError):
        await service.delete_reaction(987654, bob.id)

    updated = await service.update_reaction(reaction_id, bob.id, "👍")
    assert updated["reaction"] == "👍"

    await service.delete_reaction(reaction_id, bob.id)
    assert service.list_reactions(message.id, bob.id) == []


@pytest.mark.asyncio
async def test_update_to_existing_token_conflicts(service, message, bob):
    first = await service.toggle_reaction(message.id, bob.id, "🔥")
    await service.toggle_reaction(message.id, bob.id, "👍")

    with pytest.raises(ConflictError):
        await service.update_reaction(first["reaction"]["id"], bob.id, "👍")


@pytest.mark.asyncio
async def test_conversation_reactions(service, direct_conversation, message, alice, bob, add_message):
    other = add_message(direct_conversation, bob, "reply")
    await service.toggle_reaction(message.id, bob.id, "🔥")
    await service.toggle_reaction(other.id, alice.id, "😂")

    listed = service.list_conversation_reactions(direct_conversation.id, alice.id)
    assert [(r["message_id"], r["reaction"]) for r in listed] == [(message.id, "🔥"), (other.id, "😂")]
