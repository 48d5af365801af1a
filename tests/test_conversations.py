"""
Tests for the conversation endpoints.

Tests cover:
- GET /api/conversations listing, filtering and limit handling
- PATCH /api/conversations/{id}/takeover validation and updates
- GET /api/conversations/status lookups
"""

import pytest

from whatsapp_inbox.models import Conversation


def deliver(client, phone, timestamp, content="Hola", message_id=None, from_me=False):
    """Helper to create a message (and its conversation) via webhook."""
    event = {
        "type": "message",
        "subType": "text",
        "phone": phone,
        "content": content,
        "timestamp": timestamp,
    }
    if message_id is not None:
        event["message"] = {"key": {"id": message_id, "remoteJid": f"{phone}@s.whatsapp.net"}}
    if from_me:
        event["fromMe"] = True
        event["message"] = {"key": {"id": message_id, "remoteJid": f"{phone}@s.whatsapp.net", "fromMe": True}}
    response = client.post("/api/webhook", json=event)
    assert response.status_code == 200
    assert "skipped" not in response.json()


@pytest.fixture
def seeded_client(client):
    """Three conversations with increasing activity times."""
    deliver(client, "5210000000001", 1700000000, "first", "m1")
    deliver(client, "5210000000002", 1700000100, "second", "m2")
    deliver(client, "5210000000002", 1700000200, "reply", "m3", from_me=True)
    deliver(client, "5210000000003", 1700000300, "third", "m4")
    return client


def conversation_id_for(client, phone):
    for conversation in client.get("/api/conversations").json()["data"]:
        if conversation["phoneNumber"] == phone:
            return conversation["id"]
    raise AssertionError(f"no conversation for {phone}")


class TestConversationsList:
    """GET /api/conversations."""

    def test_empty_database(self, client):
        response = client.get("/api/conversations")

        assert response.status_code == 200
        assert response.json() == {"data": [], "paging": {}}

    def test_ordered_by_last_activity(self, seeded_client):
        """Most recently active conversation comes first."""
        data = seeded_client.get("/api/conversations").json()["data"]

        phones = [c["phoneNumber"] for c in data]
        assert phones == ["5210000000003", "5210000000002", "5210000000001"]

    def test_projection_fields(self, seeded_client):
        """Each row carries counts, last message summary and camelCase keys."""
        data = seeded_client.get("/api/conversations").json()["data"]
        conversation = next(c for c in data if c["phoneNumber"] == "5210000000002")

        assert conversation["status"] == "active"
        assert conversation["phoneNumberId"] == "test-phone-id"
        assert conversation["messagesCount"] == 2
        assert conversation["humanTakeover"] is False
        assert conversation["metadata"] == {}
        assert conversation["lastActiveAt"].startswith("2023-11-14T22:")
        assert conversation["lastMessage"] == {"content": "reply", "direction": "outbound", "type": "text"}

    def test_last_message_absent(self, client, db_session):
        """A conversation without messages has no summary."""
        db_session.add(Conversation(phone_number="5210000000009", provider_number="test-phone-id"))
        db_session.commit()

        data = client.get("/api/conversations").json()["data"]

        assert data[0]["lastMessage"] is None
        assert data[0]["messagesCount"] == 0

    def test_limit(self, seeded_client):
        data = seeded_client.get("/api/conversations", params={"limit": 2}).json()["data"]
        assert len(data) == 2

    @pytest.mark.parametrize("limit", ["abc", "0", "-1"])
    def test_invalid_limit_uses_default(self, seeded_client, limit):
        """Junk limits fall back to the default instead of failing."""
        response = seeded_client.get("/api/conversations", params={"limit": limit})

        assert response.status_code == 200
        assert len(response.json()["data"]) == 3

    def test_status_filter(self, seeded_client, db_session):
        conversation = db_session.query(Conversation).filter_by(phone_number="5210000000001").one()
        conversation.status = "closed"
        db_session.commit()

        data = seeded_client.get("/api/conversations", params={"status": "closed"}).json()["data"]

        assert [c["phoneNumber"] for c in data] == ["5210000000001"]

    def test_metadata_parsed(self, client, db_session):
        """Stored JSON metadata comes back as an object."""
        db_session.add(Conversation(
            phone_number="5210000000010",
            provider_number="test-phone-id",
            metadata_json='{"tags": ["vip"]}',
        ))
        db_session.commit()

        data = client.get("/api/conversations").json()["data"]

        assert data[0]["metadata"] == {"tags": ["vip"]}


class TestConversationTakeover:
    """PATCH /api/conversations/{id}/takeover."""

    def test_enable_takeover(self, seeded_client):
        conversation_id = conversation_id_for(seeded_client, "5210000000001")

        response = seeded_client.patch(
            f"/api/conversations/{conversation_id}/takeover",
            json={"humanTakeover": True},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["id"] == conversation_id
        assert body["data"]["phoneNumber"] == "5210000000001"
        assert body["data"]["humanTakeover"] is True

    def test_disable_takeover(self, seeded_client):
        conversation_id = conversation_id_for(seeded_client, "5210000000001")
        url = f"/api/conversations/{conversation_id}/takeover"

        seeded_client.patch(url, json={"humanTakeover": True})
        response = seeded_client.patch(url, json={"humanTakeover": False})

        assert response.json()["data"]["humanTakeover"] is False

    @pytest.mark.parametrize("body", [{"humanTakeover": "true"}, {"humanTakeover": 1}, {}, [True]])
    def test_non_boolean_rejected(self, seeded_client, body):
        """Only a JSON boolean is accepted."""
        conversation_id = conversation_id_for(seeded_client, "5210000000001")

        response = seeded_client.patch(f"/api/conversations/{conversation_id}/takeover", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": "humanTakeover must be a boolean"}

    def test_invalid_json_rejected(self, seeded_client):
        conversation_id = conversation_id_for(seeded_client, "5210000000001")

        response = seeded_client.patch(
            f"/api/conversations/{conversation_id}/takeover",
            content="{",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400

    def test_unknown_conversation(self, client):
        response = client.patch("/api/conversations/conv_missing/takeover", json={"humanTakeover": True})

        assert response.status_code == 404
        assert response.json() == {"error": "Conversation not found"}


class TestConversationStatus:
    """GET /api/conversations/status."""

    def test_lookup_by_jid(self, seeded_client):
        """The WhatsApp suffix is stripped before lookup."""
        response = seeded_client.get(
            "/api/conversations/status",
            params={"phone": "5210000000002@s.whatsapp.net"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["exists"] is True
        assert body["phoneNumber"] == "5210000000002"
        assert body["humanTakeover"] is False
        assert body["status"] == "active"
        assert body["conversationId"] == conversation_id_for(seeded_client, "5210000000002")

    def test_reflects_takeover(self, seeded_client):
        conversation_id = conversation_id_for(seeded_client, "5210000000003")
        seeded_client.patch(f"/api/conversations/{conversation_id}/takeover", json={"humanTakeover": True})

        body = seeded_client.get("/api/conversations/status", params={"phone": "5210000000003"}).json()

        assert body["humanTakeover"] is True

    def test_unknown_phone(self, client):
        response = client.get("/api/conversations/status", params={"phone": "5219999999999"})

        assert response.status_code == 404
        assert response.json() == {
            "error": "Conversation not found",
            "humanTakeover": False,
            "exists": False,
        }

    def test_phone_required(self, client):
        response = client.get("/api/conversations/status")

        assert response.status_code == 400
        assert response.json() == {"error": "Phone number is required"}
