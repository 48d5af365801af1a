"""
Shape stored rows into the JSON the dashboard UI consumes.

Pure functions: no session access, no mutation of the rows passed in.
"""

import json
import logging
from typing import Any, Dict, Optional

from whatsapp_inbox.schemas import (
    ConversationResponse,
    ConversationStatusResponse,
    LastMessageSummary,
    MediaData,
    MessageResponse,
    TakeoverData,
)
from whatsapp_inbox.utils import epoch_to_iso, isoformat_utc

logger = logging.getLogger(__name__)


def parse_metadata(raw: Optional[str]) -> Dict[str, Any]:
    """Decode a JSON-encoded metadata column; anything unreadable becomes {}."""
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Discarding undecodable metadata column")
        return {}
    return value if isinstance(value, dict) else {}


def display_direction(last_message) -> str:
    if last_message is None:
        return "inbound"
    return "outbound" if last_message.direction == "outbound" else "inbound"


def message_has_media(message) -> bool:
    return bool(message.has_media) or bool(message.media_url)


def project_conversation(conversation, last_message, messages_count: int, provider_number: str = "") -> ConversationResponse:
    summary = None
    if last_message is not None:
        summary = LastMessageSummary(
            content=last_message.content or "",
            direction=display_direction(last_message),
            type=last_message.message_type,
        )

    return ConversationResponse(
        id=conversation.id,
        phone_number=conversation.phone_number,
        status=conversation.status,
        last_active_at=isoformat_utc(conversation.last_active_at),
        phone_number_id=conversation.provider_number or provider_number,
        metadata=parse_metadata(conversation.metadata_json),
        contact_name=conversation.contact_name,
        human_takeover=bool(conversation.human_takeover),
        messages_count=messages_count,
        last_message=summary,
    )


def project_takeover(conversation) -> TakeoverData:
    return TakeoverData(
        id=conversation.id,
        phone_number=conversation.phone_number,
        contact_name=conversation.contact_name,
        human_takeover=bool(conversation.human_takeover),
        last_active_at=isoformat_utc(conversation.last_active_at),
    )


def project_status(conversation) -> ConversationStatusResponse:
    return ConversationStatusResponse(
        conversation_id=conversation.id,
        phone_number=conversation.phone_number,
        contact_name=conversation.contact_name,
        human_takeover=bool(conversation.human_takeover),
        status=conversation.status,
        last_active_at=isoformat_utc(conversation.last_active_at),
    )


def project_message(message) -> MessageResponse:
    """
    Thread-view projection of one message.

    Media messages show their text as caption and an empty content; other
    messages the reverse. This keeps legacy rows, written with both filled,
    from rendering the same text twice.
    """
    has_media = message_has_media(message)
    text = message.content or ""

    media = None
    if message.media_url:
        media = MediaData(
            url=message.media_url,
            filename=message.media_filename,
            content_type=message.media_mime_type,
            byte_size=message.media_byte_size,
        )

    return MessageResponse(
        id=message.id,
        direction=message.direction,
        content="" if has_media else text,
        created_at=epoch_to_iso(message.timestamp),
        status=message.status,
        phone_number=message.phone_number,
        has_media=has_media,
        media_data=media,
        reaction_emoji=message.reaction_emoji,
        reacted_to_message_id=message.reacted_to_message_id,
        filename=message.media_filename,
        mime_type=message.media_mime_type,
        message_type=message.message_type,
        caption=text if has_media else None,
        metadata=parse_metadata(message.metadata_json),
    )
