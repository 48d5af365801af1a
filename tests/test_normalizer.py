"""
Unit tests for webhook normalization and phone helpers.

These exercise the pure functions directly, without HTTP or a database.
"""

import pytest

from whatsapp_inbox import normalizer
from whatsapp_inbox.schemas import InboundMessage, WebhookEvent
from whatsapp_inbox.utils import normalize_phone, parse_limit, strip_jid_suffix, synthetic_message_id


def normalize(raw, provider_number="phone-1"):
    event = normalizer.parse_event(raw)
    assert event is not None
    return normalizer.normalize_event(event, raw, provider_number)


class TestPhoneHelpers:
    """Phone number cleanup."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("5219990001111@s.whatsapp.net", "5219990001111"),
            ("5219990001111@lid", "5219990001111"),
            ("+52 999 000 1111 ", "+529990001111"),
            ("(999) 000-1111", "9990001111"),
            ("me", ""),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize_phone(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_strip_jid_suffix_keeps_plus(self):
        assert strip_jid_suffix("+5219990001111@s.whatsapp.net") == "+5219990001111"

    def test_synthetic_id_uses_last_ten_digits(self):
        assert synthetic_message_id(1700000000, "+5219990001111") == "msg_1700000000_9990001111"

    @pytest.mark.parametrize(
        "raw, expected",
        [(None, 50), ("", 50), ("abc", 50), ("0", 50), ("-5", 50), ("10", 10), ("100", 100), ("500", 100)],
    )
    def test_parse_limit(self, raw, expected):
        assert parse_limit(raw) == expected


class TestParseEvent:
    """Validation of the raw body."""

    def test_non_object_rejected(self):
        assert normalizer.parse_event(["not", "an", "event"]) is None
        assert normalizer.parse_event("text") is None

    def test_wrongly_typed_field_rejected(self):
        assert normalizer.parse_event({"type": "message", "timestamp": "yesterday"}) is None

    def test_unknown_fields_allowed(self):
        event = normalizer.parse_event({"type": "message", "brandNewField": 1})
        assert isinstance(event, WebhookEvent)


class TestNormalizeEvent:
    """Event to canonical message mapping."""

    def test_status_update(self):
        assert normalize({"type": "message", "subType": "status_update", "phone": "1"}) == "status_update"

    def test_missing_subtype(self):
        assert normalize({"type": "message", "phone": "1"}) == "unsupported_event"

    def test_no_phone(self):
        assert normalize({"type": "message", "subType": "text", "from": "me"}) == "no_phone"

    def test_text(self):
        result = normalize({
            "type": "message",
            "subType": "text",
            "from_phone": "5219990001111@s.whatsapp.net",
            "content": "hola",
            "timestamp": 1700000000,
        })

        assert isinstance(result, InboundMessage)
        assert result.phone_number == "5219990001111"
        assert result.direction == "inbound"
        assert result.content == "hola"
        assert result.message_type == "text"
        assert result.has_media is False
        assert result.provider_number == "phone-1"
        assert result.message_id == "msg_1700000000_9990001111"

    def test_event_phone_id_scopes_conversation(self):
        result = normalize({"type": "message", "subType": "text", "phone": "1", "phone_id": "phone-2"})
        assert result.provider_number == "phone-2"

    def test_envelope_timestamp_fallback(self):
        result = normalize({
            "type": "message",
            "subType": "text",
            "phone": "5219990001111",
            "message": {"messageTimestamp": "1700000123"},
        })
        assert result.timestamp == 1700000123

    def test_long_file_length(self):
        result = normalize({
            "type": "message",
            "subType": "audio",
            "phone": "5219990001111",
            "timestamp": 1700000000,
            "message": {"message": {"audioMessage": {"url": "https://x/a.ogg", "fileLength": {"low": 4096, "high": 0}}}},
        })
        assert result.media_url == "https://x/a.ogg"
        assert result.media_byte_size == 4096

    def test_top_level_url_wins_over_nested(self):
        result = normalize({
            "type": "message",
            "subType": "image",
            "phone": "5219990001111",
            "url": "https://x/top.jpg",
            "message": {"message": {"imageMessage": {"url": "https://x/nested.jpg", "mimetype": "image/jpeg"}}},
        })
        assert result.media_url == "https://x/top.jpg"
        assert result.media_mime_type == "image/jpeg"

    def test_nested_search_order(self):
        result = normalize({
            "type": "message",
            "subType": "sticker",
            "phone": "5219990001111",
            "message": {"message": {
                "stickerMessage": {"url": "https://x/s.webp"},
                "audioMessage": {"url": "https://x/a.ogg"},
            }},
        })
        assert result.media_url == "https://x/a.ogg"

    def test_filename_only_from_document(self):
        result = normalize({
            "type": "message",
            "subType": "image",
            "phone": "5219990001111",
            "message": {"message": {"imageMessage": {"url": "https://x/i.jpg", "fileName": "i.jpg"}}},
        })
        assert result.media_filename is None

    def test_reaction_falls_back_to_nested_text(self):
        result = normalize({
            "type": "message",
            "subType": "reaction",
            "phone": "5219990001111",
            "message": {"message": {"reactionMessage": {"text": "❤️"}}},
        })
        assert result.message_type == "reaction"
        assert result.reaction_emoji == "❤️"
        assert result.content == "❤️"
        assert result.reacted_to_message_id is None
        assert result.media_url is None

    def test_push_name_used_for_inbound_only(self):
        inbound = normalize({
            "type": "message",
            "subType": "text",
            "phone": "5219990001111",
            "message": {"pushName": "Luis"},
        })
        outbound = normalize({
            "type": "message",
            "subType": "text",
            "fromMe": True,
            "message": {"pushName": "Our Bot", "key": {"remoteJid": "5219990001111@s.whatsapp.net"}},
        })

        assert inbound.contact_name == "Luis"
        assert outbound.contact_name is None

    def test_display_name_used_for_inbound_only(self):
        outbound = normalize({
            "type": "message",
            "subType": "text",
            "from": "me",
            "from_contact": {"displayName": "Acme Bot"},
            "message": {"key": {"remoteJid": "5219990001111@s.whatsapp.net"}},
        })
        assert outbound.contact_name is None

    @pytest.mark.parametrize(
        "timestamp, expected",
        [
            (1700000000, 1700000000),
            ("1700000000", 1700000000),
            (1700000000000, 1700000000),
            ({"low": 1700000000, "high": 0}, 1700000000),
        ],
    )
    def test_timestamp_forms(self, timestamp, expected):
        result = normalize({
            "type": "message",
            "subType": "text",
            "phone": "5219990001111",
            "message": {"messageTimestamp": timestamp},
        })
        assert result.timestamp == expected

    @pytest.mark.parametrize("timestamp", [1e300, float("inf"), float("nan"), -1, 0])
    def test_unusable_timestamp_falls_back_to_now(self, timestamp, monkeypatch):
        monkeypatch.setattr(normalizer.time, "time", lambda: 1800000000.5)

        result = normalize({"type": "message", "subType": "text", "phone": "5219990001111", "timestamp": timestamp})

        assert result.timestamp == 1800000000
