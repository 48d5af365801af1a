"""
Persist normalized webhook events.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from whatsapp_inbox import normalizer
from whatsapp_inbox.storage import create_message, get_or_create_conversation, update_conversation
from whatsapp_inbox.utils import epoch_to_datetime

logger = logging.getLogger(__name__)

RESULT_STORED = "stored"
RESULT_DUPLICATE = "duplicate"


class IngestError(Exception):
    """The event was valid but could not be stored."""


@dataclass
class IngestResult:
    result: str
    message_id: Optional[str] = None
    conversation_id: Optional[str] = None
    skipped: Optional[str] = None

    @property
    def is_duplicate(self) -> bool:
        return self.result == RESULT_DUPLICATE


def ingest_event(db: Session, payload: Any, default_provider_number: str = "") -> IngestResult:
    """
    Normalize one decoded webhook body and store it.

    Skippable events (status updates, control events without a phone, bodies
    that are not events at all) come back as a skip result and touch nothing.

    Raises:
        IngestError: when the message row could not be written
    """
    event = normalizer.parse_event(payload)
    if event is None:
        return IngestResult(result=normalizer.SKIP_INVALID_PAYLOAD, skipped=normalizer.SKIP_INVALID_PAYLOAD)

    normalized = normalizer.normalize_event(event, payload, default_provider_number)
    if isinstance(normalized, str):
        logger.info(f"Skipping webhook event: {normalized}")
        return IngestResult(result=normalized, skipped=normalized)

    # Converted before any write so a bad value cannot leave a half-stored event
    last_active_at = epoch_to_datetime(normalized.timestamp)

    conversation = get_or_create_conversation(
        db,
        phone_number=normalized.phone_number,
        provider_number=normalized.provider_number or "",
        contact_name=normalized.contact_name,
    )

    # Any message in either direction means the conversation is live again
    updates = {
        "last_active_at": last_active_at,
        "status": "active",
    }
    if normalized.contact_name and not conversation.contact_name:
        updates["contact_name"] = normalized.contact_name
    update_conversation(db, conversation.id, **updates)

    message, is_duplicate = create_message(
        db,
        message_id=normalized.message_id,
        conversation_id=conversation.id,
        direction=normalized.direction,
        phone_number=normalized.phone_number,
        message_type=normalized.message_type,
        timestamp=normalized.timestamp,
        content=normalized.content,
        status=normalized.status,
        has_media=normalized.has_media,
        media_url=normalized.media_url,
        media_filename=normalized.media_filename,
        media_mime_type=normalized.media_mime_type,
        media_byte_size=normalized.media_byte_size,
        reaction_emoji=normalized.reaction_emoji,
        reacted_to_message_id=normalized.reacted_to_message_id,
        metadata={"rawEvent": normalized.raw_event},
    )
    if message is None:
        raise IngestError(f"Failed to store message {normalized.message_id}")

    logger.info(
        f"Message stored: {normalized.message_id} from {normalized.phone_number} "
        f"({normalized.direction}, duplicate={is_duplicate})"
    )
    return IngestResult(
        result=RESULT_DUPLICATE if is_duplicate else RESULT_STORED,
        message_id=normalized.message_id,
        conversation_id=conversation.id,
    )
