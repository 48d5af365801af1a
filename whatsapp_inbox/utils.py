"""
Utility functions shared by the webhook and API handlers.
"""

import random
import re
import string
import time
from datetime import datetime, timezone
from typing import Optional


WHATSAPP_USER_SUFFIX = "@s.whatsapp.net"
_LID_SUFFIX_RE = re.compile(r"@lid$")
_NON_PHONE_CHARS_RE = re.compile(r"[^\d+]")
_NON_DIGITS_RE = re.compile(r"\D")

DEFAULT_LIMIT = 50
MAX_LIMIT = 100

_ID_ALPHABET = string.ascii_lowercase + string.digits


def strip_jid_suffix(value: str) -> str:
    """Drop the WhatsApp address suffix (``@s.whatsapp.net`` or a trailing ``@lid``)."""
    return _LID_SUFFIX_RE.sub("", value.replace(WHATSAPP_USER_SUFFIX, ""))


def normalize_phone(value: Optional[str]) -> str:
    """
    Reduce a phone number or JID to digits and a leading plus sign.

    Examples:
        "5219990001111@s.whatsapp.net" -> "5219990001111"
        "+52 999 000 1111 " -> "+529990001111"
    """
    if not value:
        return ""
    return _NON_PHONE_CHARS_RE.sub("", strip_jid_suffix(value))


def phone_suffix(phone: str, length: int = 10) -> str:
    return _NON_DIGITS_RE.sub("", phone)[-length:]


def synthetic_message_id(timestamp: int, phone: str) -> str:
    """Deterministic id for events that arrive without a provider message id."""
    return f"msg_{timestamp}_{phone_suffix(phone)}"


def outbound_message_id(timestamp: Optional[int] = None) -> str:
    if timestamp is None:
        timestamp = int(time.time())
    random_part = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"msg_{timestamp}_{random_part}"


def parse_limit(raw: Optional[str], default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT) -> int:
    """
    Lenient page-size parsing: junk or non-positive values fall back to the
    default, large values are clamped to the maximum.
    """
    try:
        value = int(raw) if raw is not None else 0
    except (TypeError, ValueError):
        return default
    if value <= 0:
        return default
    return min(value, maximum)


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a Z suffix. Naive datetimes (as SQLite returns them) are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def epoch_to_iso(timestamp: int) -> str:
    return isoformat_utc(datetime.fromtimestamp(int(timestamp), tz=timezone.utc))


def epoch_to_datetime(timestamp: int) -> datetime:
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
