"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from whatsapp_inbox.storage import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_conversation_id() -> str:
    return f"conv_{uuid.uuid4().hex}"


class Conversation(Base):
    """
    One thread per phone number.

    Table: conversations
    Unique: (provider_number, phone_number) so concurrent first contacts
    from the same number collapse onto a single row.
    """
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("provider_number", "phone_number", name="uq_conversations_provider_phone"),
    )

    id = Column(String, primary_key=True, default=generate_conversation_id)
    provider_number = Column(String, nullable=False, default="")
    phone_number = Column(String, nullable=False, index=True)
    contact_name = Column(String, nullable=True)
    status = Column(String, nullable=False, default="active", index=True)
    human_takeover = Column(Boolean, nullable=False, default=False)
    last_active_at = Column(DateTime, nullable=True, index=True)
    metadata_json = Column(Text, nullable=False, default="{}")
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    updated_at = Column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Message(Base):
    """
    A single WhatsApp message.

    Table: messages
    Primary Key: id (provider message id or a synthetic one, ensures idempotency)
    """
    __tablename__ = "messages"

    id = Column(String, primary_key=True)
    conversation_id = Column(
        String,
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    direction = Column(String, nullable=False, index=True)  # inbound | outbound
    content = Column(Text, nullable=True)
    phone_number = Column(String, nullable=False)
    message_type = Column(String, nullable=False)
    status = Column(String, nullable=True)
    has_media = Column(Boolean, nullable=False, default=False)
    media_url = Column(Text, nullable=True)
    media_filename = Column(String, nullable=True)
    media_mime_type = Column(String, nullable=True)
    media_byte_size = Column(Integer, nullable=True)
    reaction_emoji = Column(String, nullable=True)
    reacted_to_message_id = Column(String, nullable=True)
    timestamp = Column(Integer, nullable=False, index=True)  # epoch seconds
    created_at = Column(DateTime, nullable=False, default=_utcnow)
    metadata_json = Column(Text, nullable=False, default="{}")

    conversation = relationship("Conversation", back_populates="messages")
