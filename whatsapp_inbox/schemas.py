"""
Pydantic schemas for request/response validation.

This module contains:
- Webhook event models for the loosely-typed Wapisimo payload
- The canonical message produced by the normalizer
- Response models for the dashboard API (camelCase on the wire)
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool


# =============================================================================
# Webhook Event Models
# =============================================================================

class _LenientModel(BaseModel):
    """Provider payloads grow fields without notice; keep whatever arrives."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class MessageKey(_LenientModel):
    remoteJid: Optional[str] = None
    fromMe: Optional[bool] = None
    id: Optional[str] = None


class MediaVariant(_LenientModel):
    """One of imageMessage / videoMessage / audioMessage / documentMessage / stickerMessage."""
    url: Optional[str] = None
    caption: Optional[str] = None
    fileName: Optional[str] = None
    mimetype: Optional[str] = None
    # WhatsApp sends this as a number, a numeric string or a {low, high} pair
    fileLength: Optional[Any] = None


class ReactionVariant(_LenientModel):
    text: Optional[str] = None
    key: Optional[MessageKey] = None


class NativeMessage(_LenientModel):
    conversation: Optional[str] = None
    imageMessage: Optional[MediaVariant] = None
    videoMessage: Optional[MediaVariant] = None
    audioMessage: Optional[MediaVariant] = None
    documentMessage: Optional[MediaVariant] = None
    stickerMessage: Optional[MediaVariant] = None
    reactionMessage: Optional[ReactionVariant] = None


class MessageEnvelope(_LenientModel):
    key: Optional[MessageKey] = None
    messageTimestamp: Optional[Any] = None
    pushName: Optional[str] = None
    message: Optional[NativeMessage] = None


class ContactInfo(_LenientModel):
    jid: Optional[str] = None
    displayName: Optional[str] = None
    phoneNumber: Optional[str] = None


class WebhookEvent(_LenientModel):
    """
    A single Wapisimo webhook delivery.

    Only ``type`` and ``subType`` decide how the event is handled; every other
    field is optional and may be missing depending on the subtype.
    """
    type: Optional[str] = None
    subType: Optional[str] = None
    from_: Optional[str] = Field(None, alias="from")
    fromMe: Optional[bool] = None
    phone: Optional[str] = None
    from_phone: Optional[str] = None
    from_jid: Optional[str] = None
    from_contact: Optional[ContactInfo] = None
    phone_id: Optional[str] = None
    content: Optional[str] = None
    url: Optional[str] = None
    timestamp: Optional[float] = None
    message: Optional[MessageEnvelope] = None


class InboundMessage(BaseModel):
    """Canonical message record derived from one webhook event."""
    message_id: str
    phone_number: str
    provider_number: Optional[str] = None
    contact_name: Optional[str] = None
    direction: str
    message_type: str
    content: str = ""
    status: Optional[str] = None
    has_media: bool = False
    media_url: Optional[str] = None
    media_filename: Optional[str] = None
    media_mime_type: Optional[str] = None
    media_byte_size: Optional[int] = None
    reaction_emoji: Optional[str] = None
    reacted_to_message_id: Optional[str] = None
    timestamp: int
    raw_event: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Request Models
# =============================================================================

class TakeoverRequest(BaseModel):
    """Body of PATCH /api/conversations/{id}/takeover."""
    humanTakeover: StrictBool


# =============================================================================
# Response Models
# =============================================================================

class WebhookAck(BaseModel):
    success: bool = True
    skipped: Optional[str] = None


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Error description")
    details: Optional[Any] = Field(None, description="Upstream or diagnostic detail")


class LastMessageSummary(BaseModel):
    content: str = ""
    direction: str = "inbound"
    type: Optional[str] = None


class ConversationResponse(BaseModel):
    """One row of the conversation list."""
    id: str
    phone_number: str = Field(..., serialization_alias="phoneNumber")
    status: str
    last_active_at: Optional[str] = Field(None, serialization_alias="lastActiveAt")
    phone_number_id: str = Field("", serialization_alias="phoneNumberId")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    contact_name: Optional[str] = Field(None, serialization_alias="contactName")
    human_takeover: bool = Field(False, serialization_alias="humanTakeover")
    messages_count: int = Field(0, ge=0, serialization_alias="messagesCount")
    last_message: Optional[LastMessageSummary] = Field(None, serialization_alias="lastMessage")


class ConversationsListResponse(BaseModel):
    data: List[ConversationResponse] = Field(default_factory=list)
    # No cursor pagination yet; the UI expects the key to be present
    paging: Dict[str, Any] = Field(default_factory=dict)


class TakeoverData(BaseModel):
    id: str
    phone_number: str = Field(..., serialization_alias="phoneNumber")
    contact_name: Optional[str] = Field(None, serialization_alias="contactName")
    human_takeover: bool = Field(..., serialization_alias="humanTakeover")
    last_active_at: Optional[str] = Field(None, serialization_alias="lastActiveAt")


class TakeoverResponse(BaseModel):
    success: bool = True
    data: TakeoverData


class ConversationStatusResponse(BaseModel):
    success: bool = True
    exists: bool = True
    conversation_id: str = Field(..., serialization_alias="conversationId")
    phone_number: str = Field(..., serialization_alias="phoneNumber")
    contact_name: Optional[str] = Field(None, serialization_alias="contactName")
    human_takeover: bool = Field(..., serialization_alias="humanTakeover")
    status: str
    last_active_at: Optional[str] = Field(None, serialization_alias="lastActiveAt")


class MediaData(BaseModel):
    url: str
    filename: Optional[str] = None
    content_type: Optional[str] = Field(None, serialization_alias="contentType")
    byte_size: Optional[int] = Field(None, serialization_alias="byteSize")


class MessageResponse(BaseModel):
    """
    One message as the thread view renders it.

    ``content`` and ``caption`` are never both filled: media messages carry
    their text as caption, everything else as content.
    """
    id: str
    direction: str
    content: str = ""
    created_at: str = Field(..., serialization_alias="createdAt")
    status: Optional[str] = None
    phone_number: str = Field(..., serialization_alias="phoneNumber")
    has_media: bool = Field(False, serialization_alias="hasMedia")
    media_data: Optional[MediaData] = Field(None, serialization_alias="mediaData")
    reaction_emoji: Optional[str] = Field(None, serialization_alias="reactionEmoji")
    reacted_to_message_id: Optional[str] = Field(None, serialization_alias="reactedToMessageId")
    filename: Optional[str] = None
    mime_type: Optional[str] = Field(None, serialization_alias="mimeType")
    message_type: str = Field(..., serialization_alias="messageType")
    caption: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MessagesListResponse(BaseModel):
    data: List[MessageResponse] = Field(default_factory=list)
    paging: Dict[str, Any] = Field(default_factory=dict)


class UploadResponse(BaseModel):
    url: str
    media_type: str = Field(..., serialization_alias="mediaType")
    filename: str
    content_type: str = Field(..., serialization_alias="contentType")
    size: int = Field(..., ge=0)


class CleanupResponse(BaseModel):
    success: bool = True
    message: str
    note: str
    count: int = Field(..., ge=0)


class MaintenanceResponse(BaseModel):
    success: bool = True
    deleted: int = Field(..., ge=0)


class DatabaseStatsResponse(BaseModel):
    conversations: int = Field(..., ge=0)
    messages: int = Field(..., ge=0)


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
