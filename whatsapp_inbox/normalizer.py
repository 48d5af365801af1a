"""
Webhook event normalization.

Turns one loosely-typed Wapisimo event into either a skip reason or a
canonical InboundMessage. Nothing here touches the database; see
webhook.py for persistence.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple, Union

from pydantic import ValidationError

from whatsapp_inbox.schemas import InboundMessage, MediaVariant, WebhookEvent
from whatsapp_inbox.utils import normalize_phone, synthetic_message_id

logger = logging.getLogger(__name__)

# Skip reasons returned to the provider as {"success": true, "skipped": <reason>}
SKIP_INVALID_PAYLOAD = "invalid_payload"
SKIP_UNSUPPORTED_EVENT = "unsupported_event"
SKIP_STATUS_UPDATE = "status_update"
SKIP_NO_PHONE = "no_phone"

SELF_SENDER = "me"

# Priority order matters: the first variant with a URL wins
MEDIA_VARIANTS = ("image", "video", "audio", "document", "sticker")
MEDIA_SUBTYPES = frozenset(MEDIA_VARIANTS)

# Epochs above this are milliseconds (1e11 seconds is beyond the year 5000)
MILLISECOND_EPOCH_THRESHOLD = 10 ** 11
# 9999-12-31T23:59:59Z, the last second datetime can represent
MAX_EPOCH_SECONDS = 253402300799

NormalizationResult = Union[InboundMessage, str]


def parse_event(payload: Any) -> Optional[WebhookEvent]:
    """Validate a decoded JSON body. Returns None when it is not a usable event."""
    if not isinstance(payload, dict):
        logger.warning(f"Webhook payload is not an object: {type(payload).__name__}")
        return None
    try:
        return WebhookEvent.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Webhook payload failed validation: {e.error_count()} error(s)")
        return None


def is_self_authored(event: WebhookEvent) -> bool:
    return bool(event.fromMe) or event.from_ == SELF_SENDER


def resolve_phone(event: WebhookEvent) -> str:
    """
    Pick the conversation's phone number.

    Self-authored events carry our own number as sender, so the other party
    is taken from the envelope's remoteJid.
    """
    phone = event.phone or event.from_phone or ""
    if is_self_authored(event):
        key = event.message.key if event.message else None
        if key and key.remoteJid:
            phone = key.remoteJid
    return normalize_phone(phone)


def _coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        # protobuf Long as {"low": ..., "high": ...}
        low = _coerce_int(value.get("low"))
        high = _coerce_int(value.get("high")) or 0
        return None if low is None else (high << 32) + (low & 0xFFFFFFFF)
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        # NaN, Infinity and junk strings
        return None


def _epoch_seconds(value: Optional[int]) -> Optional[int]:
    """Seconds since the epoch, or None when the value cannot be a message time."""
    if value is None:
        return None
    if value > MILLISECOND_EPOCH_THRESHOLD:
        value //= 1000
    if not 0 < value <= MAX_EPOCH_SECONDS:
        return None
    return value


def resolve_timestamp(event: WebhookEvent) -> int:
    """
    Event time in epoch seconds.

    Millisecond epochs are scaled down. Values that are missing or cannot be
    a date fall back to the envelope's messageTimestamp, then to now.
    """
    timestamp = _epoch_seconds(_coerce_int(event.timestamp))
    if timestamp is None and event.message is not None:
        timestamp = _epoch_seconds(_coerce_int(event.message.messageTimestamp))
    return timestamp or int(time.time())


def resolve_message_id(event: WebhookEvent, timestamp: int, phone: str) -> str:
    key = event.message.key if event.message else None
    if key and key.id:
        return key.id
    return synthetic_message_id(timestamp, phone)


def _media_variant(event: WebhookEvent, kind: str) -> Optional[MediaVariant]:
    native = event.message.message if event.message else None
    if native is None:
        return None
    return getattr(native, f"{kind}Message", None)


def find_media(event: WebhookEvent) -> Tuple[Optional[str], Optional[MediaVariant]]:
    """
    Locate the media URL and the variant that described it.

    The top-level ``url`` wins; otherwise the nested variants are searched in
    MEDIA_VARIANTS order.
    """
    if event.url:
        variant = _media_variant(event, event.subType) if event.subType in MEDIA_SUBTYPES else None
        return event.url, variant
    for kind in MEDIA_VARIANTS:
        variant = _media_variant(event, kind)
        if variant is not None and variant.url:
            return variant.url, variant
    return None, None


def _contact_name(event: WebhookEvent) -> Optional[str]:
    # Self-authored events describe our own account, not the other party
    if is_self_authored(event):
        return None
    if event.from_contact and event.from_contact.displayName:
        return event.from_contact.displayName
    if event.message and event.message.pushName:
        return event.message.pushName
    return None


def _shape_reaction(event: WebhookEvent, base: Dict[str, Any]) -> Dict[str, Any]:
    emoji = event.content or ""
    native = event.message.message if event.message else None
    reaction = native.reactionMessage if native else None
    if not emoji and reaction and reaction.text:
        emoji = reaction.text
    reacted_to = reaction.key.id if reaction and reaction.key else None

    base.update(
        message_type="reaction",
        content=emoji,
        reaction_emoji=emoji or None,
        reacted_to_message_id=reacted_to,
        has_media=False,
        status="delivered",
    )
    return base


def _shape_message(event: WebhookEvent, base: Dict[str, Any]) -> Dict[str, Any]:
    subtype = event.subType
    media_url, variant = find_media(event)

    document = _media_variant(event, "document")
    base.update(
        message_type=subtype,
        content=event.content or "",
        has_media=subtype in MEDIA_SUBTYPES,
        media_url=media_url,
        media_filename=document.fileName if document else None,
        media_mime_type=variant.mimetype if variant else None,
        media_byte_size=_coerce_int(variant.fileLength) if variant else None,
        status="sent" if base["direction"] == "outbound" else "delivered",
    )
    return base


_SHAPERS: Dict[str, Callable[[WebhookEvent, Dict[str, Any]], Dict[str, Any]]] = {
    "reaction": _shape_reaction,
}


def normalize_event(event: WebhookEvent, raw_event: Dict[str, Any], default_provider_number: str = "") -> NormalizationResult:
    """
    Map a webhook event onto a canonical message.

    Args:
        event: The validated event
        raw_event: The body exactly as received, kept for debugging
        default_provider_number: Provider phone id used when the event has none

    Returns:
        An InboundMessage, or one of the SKIP_* reasons when the event should
        be acknowledged without storing anything.
    """
    if event.type != "message" or not event.subType:
        return SKIP_UNSUPPORTED_EVENT
    if event.subType == SKIP_STATUS_UPDATE:
        return SKIP_STATUS_UPDATE

    phone = resolve_phone(event)
    if not phone or phone == SELF_SENDER:
        return SKIP_NO_PHONE

    timestamp = resolve_timestamp(event)
    base: Dict[str, Any] = {
        "message_id": resolve_message_id(event, timestamp, phone),
        "phone_number": phone,
        "provider_number": event.phone_id or default_provider_number,
        "contact_name": _contact_name(event),
        "direction": "outbound" if is_self_authored(event) else "inbound",
        "timestamp": timestamp,
        "raw_event": raw_event,
    }

    shaper = _SHAPERS.get(event.subType, _shape_message)
    return InboundMessage(**shaper(event, base))
