# tests/v1/test_reactions_api.py
"""Tests for reaction endpoints."""

import pytest
from fastapi import status

BASE = "/api/v1/reactions"


@pytest.fixture()
def message(direct_conversation, alice, add_message):
    return add_message(direct_conversation, alice, "nice")


def test_toggle_reaction(client, bob_headers, message) -> None:
    """Test that posting the same reaction twice adds then removes it."""
    body = {"messageId": message.id, "reaction": "👍"}

    added = client.post(BASE, json=body, headers=bob_headers)
    assert added.status_code == status.HTTP_200_OK
    assert added.json()["reaction"]["reaction"] == "👍"

    removed = client.post(BASE, json=body, headers=bob_headers)
    assert removed.json() == {"removed": True, "emoji": "👍"}

    client.post(BASE, json=body, headers=bob_headers)
    listed = client.get(BASE, params={"messageId": message.id}, headers=bob_headers).json()
    assert [r["reaction"] for r in listed] == ["👍"]


def test_reaction_by_outsider(client, carol_headers, message) -> None:
    response = client.post(BASE, json={"messageId": message.id, "reaction": "👍"}, headers=carol_headers)
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_reaction_on_unknown_message(client, bob_headers) -> None:
    response = client.post(BASE, json={"messageId": 999999, "reaction": "👍"}, headers=bob_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_update_and_delete_ownership(client, alice_headers, bob_headers, message) -> None:
    """Test that only the reactor can change or remove a reaction."""
    reaction_id = client.post(
        BASE, json={"messageId": message.id, "reaction": "👍"}, headers=bob_headers
    ).json()["reaction"]["id"]

    response = client.patch(f"{BASE}/{reaction_id}", json={"newReaction": "🔥"}, headers=alice_headers)
    assert response.status_code == status.HTTP_403_FORBIDDEN
    response = client.delete(f"{BASE}/{reaction_id}", headers=alice_headers)
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = client.patch(f"{BASE}/{reaction_id}", json={"newReaction": "🔥"}, headers=bob_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["updated"]["reaction"] == "🔥"

    response = client.delete(f"{BASE}/{reaction_id}", headers=bob_headers)
    assert response.json() == {"deleted": True}
    response = client.delete(f"{BASE}/{reaction_id}", headers=bob_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_reactions_by_conversation(client, alice_headers, bob_headers, direct_conversation, message) -> None:
    client.post(BASE, json={"messageId": message.id, "reaction": "👍"}, headers=bob_headers)
    client.post(BASE, json={"messageId": message.id, "reaction": "😂"}, headers=alice_headers)

    response = client.get(
        f"{BASE}/by-conversation",
        params={"conversationId": direct_conversation.id},
        headers=alice_headers,
    )

    assert response.status_code == status.HTTP_200_OK
    assert [r["reaction"] for r in response.json()] == ["👍", "😂"]


def test_message_payload_includes_reactions(client, bob_headers, direct_conversation, message) -> None:
    client.post(BASE, json={"messageId": message.id, "reaction": "👍"}, headers=bob_headers)

    body = client.get(
        "/api/v1/messages",
        params={"conversationId": direct_conversation.id},
        headers=bob_headers,
    ).json()

    assert [r["reaction"] for r in body["messages"][0]["reactions"]] == ["👍"]
