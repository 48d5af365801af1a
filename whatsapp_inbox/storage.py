import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional, Tuple

from sqlalchemy import create_engine, event, func, inspect, or_, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from whatsapp_inbox.config import settings

logger = logging.getLogger(__name__)

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    echo=False,
)


if _is_sqlite:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()

INVALID_PHONE_NUMBERS = ("", "me")


def _ensure_sqlite_directory() -> None:
    database = engine.url.database
    if not _is_sqlite or not database or database == ":memory:":
        return
    directory = os.path.dirname(os.path.abspath(database))
    os.makedirs(directory, exist_ok=True)


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {engine.url.render_as_string(hide_password=True)}")
    try:
        # Import models to register them with Base.metadata
        from whatsapp_inbox import models  # noqa: F401

        _ensure_sqlite_directory()
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and both tables exist.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        inspector = inspect(engine)
        for table in ("conversations", "messages"):
            if not inspector.has_table(table):
                logger.error(f"Database schema not applied: '{table}' table not found")
                return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _insert_ignore(db: Session, table, values: Dict[str, Any], conflict_columns: List[str]) -> bool:
    """
    Insert a row unless one with the same key already exists.

    Runs as a single INSERT ... ON CONFLICT DO NOTHING statement where the
    dialect supports it, so concurrent deliveries cannot both insert.

    Returns:
        True if a new row was written, False if the key already existed.
    """
    dialect = db.get_bind().dialect.name

    if dialect in ("sqlite", "postgresql"):
        insert = sqlite_insert if dialect == "sqlite" else pg_insert
        stmt = insert(table).values(**values).on_conflict_do_nothing(index_elements=conflict_columns)
        result = db.execute(stmt)
        db.commit()
        return result.rowcount == 1

    try:
        db.execute(table.insert().values(**values))
        db.commit()
        return True
    except IntegrityError:
        db.rollback()
        return False


# =============================================================================
# Conversation Repository Functions
# =============================================================================

def get_or_create_conversation(
    db: Session,
    phone_number: str,
    provider_number: str = "",
    contact_name: Optional[str] = None,
):
    """
    Fetch the conversation for (provider_number, phone_number), creating it if absent.

    Safe under concurrent first contact: the unique constraint decides which
    insert wins and every caller reads back the same row.
    """
    from whatsapp_inbox.models import Conversation, generate_conversation_id

    now = _utcnow()
    created = _insert_ignore(
        db,
        Conversation.__table__,
        {
            "id": generate_conversation_id(),
            "provider_number": provider_number,
            "phone_number": phone_number,
            "contact_name": contact_name or None,
            "status": "active",
            "human_takeover": False,
            "last_active_at": now,
            "metadata_json": "{}",
            "created_at": now,
            "updated_at": now,
        },
        ["provider_number", "phone_number"],
    )

    conversation = (
        db.query(Conversation)
        .filter(
            Conversation.provider_number == provider_number,
            Conversation.phone_number == phone_number,
        )
        .one()
    )
    if created:
        logger.info(f"Conversation created: id={conversation.id}, phone={phone_number}")
    return conversation


def get_conversation(db: Session, conversation_id: str):
    from whatsapp_inbox.models import Conversation

    return db.get(Conversation, conversation_id)


def get_conversation_by_phone(db: Session, phone_number: str, provider_number: Optional[str] = None):
    """Look up a conversation by phone number, optionally scoped to one provider number."""
    from whatsapp_inbox.models import Conversation

    query = db.query(Conversation).filter(Conversation.phone_number == phone_number)
    if provider_number is not None:
        query = query.filter(Conversation.provider_number == provider_number)
    return query.order_by(Conversation.created_at.asc()).first()


def list_conversations(db: Session, status: Optional[str] = None, limit: int = 50) -> list:
    """
    List conversations, most recently active first.

    Args:
        db: Database session
        status: Optional exact-match status filter
        limit: Maximum number of rows to return
    """
    from whatsapp_inbox.models import Conversation

    query = db.query(Conversation)
    if status:
        query = query.filter(Conversation.status == status)
    return (
        query.order_by(Conversation.last_active_at.desc(), Conversation.id.asc())
        .limit(limit)
        .all()
    )


def update_conversation(db: Session, conversation_id: str, **fields):
    """
    Apply field updates to a conversation and bump updated_at.

    Accepts contact_name, status, human_takeover, last_active_at and metadata
    (a dict, stored JSON-encoded). Returns the refreshed row or None if absent.
    """
    from whatsapp_inbox.models import Conversation

    conversation = db.get(Conversation, conversation_id)
    if conversation is None:
        return None

    if "metadata" in fields:
        fields["metadata_json"] = json.dumps(fields.pop("metadata") or {})
    for key, value in fields.items():
        setattr(conversation, key, value)
    conversation.updated_at = _utcnow()

    db.commit()
    db.refresh(conversation)
    return conversation


def get_last_message(db: Session, conversation_id: str):
    from whatsapp_inbox.models import Message

    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.timestamp.desc(), Message.created_at.desc())
        .first()
    )


def count_messages(db: Session, conversation_id: str) -> int:
    from whatsapp_inbox.models import Message

    return (
        db.query(func.count(Message.id))
        .filter(Message.conversation_id == conversation_id)
        .scalar()
        or 0
    )


# =============================================================================
# Message Repository Functions
# =============================================================================

def create_message(
    db: Session,
    message_id: str,
    conversation_id: str,
    direction: str,
    phone_number: str,
    message_type: str,
    timestamp: int,
    content: Optional[str] = None,
    status: Optional[str] = None,
    has_media: bool = False,
    media_url: Optional[str] = None,
    media_filename: Optional[str] = None,
    media_mime_type: Optional[str] = None,
    media_byte_size: Optional[int] = None,
    reaction_emoji: Optional[str] = None,
    reacted_to_message_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> Tuple[Optional[Any], bool]:
    """
    Store a message unless one with the same id already exists.

    A replayed id is a no-op: the stored row keeps its original content and
    delivery status.

    Returns:
        Tuple of (message, is_duplicate)
        - (Message, False): Message created
        - (Message, True): Message already existed, returned unchanged
        - (None, False): Error occurred (already logged)
    """
    from whatsapp_inbox.models import Message

    logger.debug(f"Creating message: id={message_id}, conversation={conversation_id}, type={message_type}")

    try:
        created = _insert_ignore(
            db,
            Message.__table__,
            {
                "id": message_id,
                "conversation_id": conversation_id,
                "direction": direction,
                "content": content,
                "phone_number": phone_number,
                "message_type": message_type,
                "status": status or None,
                "has_media": bool(has_media),
                "media_url": media_url or None,
                "media_filename": media_filename or None,
                "media_mime_type": media_mime_type or None,
                "media_byte_size": media_byte_size or None,
                "reaction_emoji": reaction_emoji or None,
                "reacted_to_message_id": reacted_to_message_id or None,
                "timestamp": timestamp,
                "created_at": _utcnow(),
                "metadata_json": json.dumps(metadata or {}, default=str),
            },
            ["id"],
        )
        message = db.get(Message, message_id)
    except (SQLAlchemyError, TypeError, ValueError) as e:
        db.rollback()
        logger.error(f"Failed to create message {message_id}: {e}")
        return (None, False)

    if message is None:
        logger.error(f"Message {message_id} missing after insert")
        return (None, False)

    if created:
        logger.info(f"Message created: {message_id}")
    else:
        logger.info(f"Duplicate message ignored: {message_id}")
    return (message, not created)


def list_messages(db: Session, conversation_id: str, limit: int = 50) -> list:
    """Messages of one conversation, newest first."""
    from whatsapp_inbox.models import Message

    return (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.timestamp.desc(), Message.created_at.desc())
        .limit(limit)
        .all()
    )


# =============================================================================
# Maintenance Functions
# =============================================================================

def clear_message_content(db: Session) -> int:
    """
    Blank the content of every message that still carries text.

    One-time backfill for rows written before content and caption were kept
    apart. Returns the number of rows changed.
    """
    from whatsapp_inbox.models import Message

    count = (
        db.query(Message)
        .filter(Message.content.isnot(None), Message.content != "")
        .update({Message.content: ""}, synchronize_session=False)
    )
    db.commit()
    logger.info(f"Cleared content on {count} message(s)")
    return count


def clear_all_messages(db: Session) -> int:
    from whatsapp_inbox.models import Message

    count = db.query(Message).delete(synchronize_session=False)
    db.commit()
    logger.warning(f"Deleted {count} message(s)")
    return count


def cleanup_invalid_conversations(db: Session) -> int:
    """
    Delete conversations keyed on an empty or placeholder phone number,
    then any message left without a conversation.

    Returns:
        Number of conversations deleted
    """
    from whatsapp_inbox.models import Conversation, Message

    count = (
        db.query(Conversation)
        .filter(
            or_(
                Conversation.phone_number.is_(None),
                Conversation.phone_number.in_(INVALID_PHONE_NUMBERS),
            )
        )
        .delete(synchronize_session=False)
    )

    orphaned = (
        db.query(Message)
        .filter(~Message.conversation_id.in_(select(Conversation.id)))
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(f"Cleaned up {count} invalid conversation(s), {orphaned} orphaned message(s)")
    return count


def get_database_stats(db: Session) -> dict:
    from whatsapp_inbox.models import Conversation, Message

    return {
        "conversations": db.query(func.count(Conversation.id)).scalar() or 0,
        "messages": db.query(func.count(Message.id)).scalar() or 0,
    }
