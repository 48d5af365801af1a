import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Depends, FastAPI, File, Form, Query, Request, Response, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whatsapp_inbox.config import settings
from whatsapp_inbox.errors import ApiError, ProviderError, StorageNotConfiguredError
from whatsapp_inbox.logging_utils import RequestLoggingMiddleware, log_webhook_data, setup_logging
from whatsapp_inbox.media_storage import R2Storage, generate_object_name, get_media_storage, infer_media_type
from whatsapp_inbox.metrics import (
    get_metrics,
    get_metrics_content_type,
    record_outbound_message,
    record_webhook_outcome,
)
from whatsapp_inbox.normalizer import SKIP_INVALID_PAYLOAD
from whatsapp_inbox.projections import (
    project_conversation,
    project_message,
    project_status,
    project_takeover,
)
from whatsapp_inbox.provider import WapisimoClient, get_provider_client
from whatsapp_inbox.schemas import (
    CleanupResponse,
    ConversationsListResponse,
    ConversationStatusResponse,
    DatabaseStatsResponse,
    ErrorResponse,
    HealthResponse,
    MaintenanceResponse,
    MessagesListResponse,
    TakeoverRequest,
    TakeoverResponse,
    UploadResponse,
    WebhookAck,
)
from whatsapp_inbox.storage import (
    check_db_health,
    cleanup_invalid_conversations,
    clear_all_messages,
    clear_message_content,
    count_messages,
    get_conversation,
    get_conversation_by_phone,
    get_database_stats,
    get_db,
    get_last_message,
    get_or_create_conversation,
    init_db,
    list_conversations,
    list_messages,
    update_conversation,
)
from whatsapp_inbox.utils import normalize_phone, outbound_message_id, parse_limit, strip_jid_suffix
from whatsapp_inbox.webhook import ingest_event


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="WhatsApp Inbox API",
    description="Webhook receiver and operator dashboard API for WhatsApp conversations",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Internals stay in the server log
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if the DB is reachable and both tables
    exist, otherwise 503.
    """
    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )
    return HealthResponse(status="ready")


# =============================================================================
# Webhook Routes
# =============================================================================

@app.post(
    "/api/webhook",
    response_model=WebhookAck,
    response_model_exclude_none=True,
    responses={500: {"model": ErrorResponse, "description": "Event could not be stored"}},
)
async def receive_webhook(request: Request, db: Session = Depends(get_db)) -> WebhookAck:
    """
    Ingest one Wapisimo event.

    - Status updates and events without a usable phone number are
      acknowledged with a ``skipped`` reason and not stored
    - Bodies that are not JSON objects are acknowledged as ``invalid_payload``;
      the provider cannot fix them by retrying
    - Re-delivery of a stored message id is a no-op
    """
    raw_body = await request.body()
    logger.debug(f"Webhook body size: {len(raw_body)} bytes")

    try:
        payload = json.loads(raw_body)
    except ValueError as e:
        logger.warning(f"Webhook body is not valid JSON: {e}")
        record_webhook_outcome(SKIP_INVALID_PAYLOAD)
        log_webhook_data(request=request, result=SKIP_INVALID_PAYLOAD)
        return WebhookAck(skipped=SKIP_INVALID_PAYLOAD)

    try:
        outcome = ingest_event(db, payload, settings.PROVIDER_PHONE_ID)
    except Exception as e:
        logger.exception("Error processing webhook")
        record_webhook_outcome("error")
        log_webhook_data(request=request, result="error")
        raise ApiError("Failed to process webhook", status.HTTP_500_INTERNAL_SERVER_ERROR, details=str(e))

    record_webhook_outcome(outcome.result)
    log_webhook_data(
        request=request,
        message_id=outcome.message_id,
        conversation_id=outcome.conversation_id,
        dup=outcome.is_duplicate,
        result=outcome.result,
    )
    return WebhookAck(skipped=outcome.skipped)


@app.get("/api/webhook")
async def webhook_liveness() -> dict:
    """Some providers probe the webhook URL with a GET before enabling it."""
    return {"status": "ok"}


# =============================================================================
# Conversation Routes
# =============================================================================

@app.get("/api/conversations", response_model=ConversationsListResponse)
async def get_conversations(
    status_filter: Annotated[Optional[str], Query(alias="status", description="Exact-match status filter")] = None,
    limit: Annotated[Optional[str], Query(description="Page size, 1-100, default 50")] = None,
    db: Session = Depends(get_db),
) -> ConversationsListResponse:
    """List conversations, most recently active first, with a last-message summary."""
    page_size = parse_limit(limit)
    try:
        conversations = list_conversations(db, status=status_filter, limit=page_size)
        data = [
            project_conversation(
                conversation,
                get_last_message(db, conversation.id),
                count_messages(db, conversation.id),
                settings.PROVIDER_PHONE_ID,
            )
            for conversation in conversations
        ]
    except SQLAlchemyError as e:
        logger.error(f"Error fetching conversations: {e}")
        raise ApiError("Failed to fetch conversations")

    logger.info(f"GET /api/conversations: returned {len(data)} conversation(s) (limit={page_size})")
    return ConversationsListResponse(data=data)


@app.get(
    "/api/conversations/status",
    response_model=ConversationStatusResponse,
    responses={404: {"description": "No conversation for this phone"}},
)
async def get_conversation_status(
    phone: Annotated[Optional[str], Query(description="Phone number or WhatsApp JID")] = None,
    db: Session = Depends(get_db),
) -> ConversationStatusResponse:
    """Human takeover status for a phone number, used by the bot before it replies."""
    if not phone:
        raise ApiError("Phone number is required", status.HTTP_400_BAD_REQUEST)

    clean_phone = strip_jid_suffix(phone.strip())
    conversation = get_conversation_by_phone(db, clean_phone)
    if conversation is None:
        raise ApiError(
            "Conversation not found",
            status.HTTP_404_NOT_FOUND,
            extra={"humanTakeover": False, "exists": False},
        )
    return project_status(conversation)


@app.patch(
    "/api/conversations/{conversation_id}/takeover",
    response_model=TakeoverResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def set_conversation_takeover(
    conversation_id: str,
    request: Request,
    db: Session = Depends(get_db),
) -> TakeoverResponse:
    """Switch a conversation between bot and human operator."""
    try:
        takeover = TakeoverRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        raise ApiError("humanTakeover must be a boolean", status.HTTP_400_BAD_REQUEST)

    conversation = update_conversation(db, conversation_id, human_takeover=takeover.humanTakeover)
    if conversation is None:
        raise ApiError("Conversation not found", status.HTTP_404_NOT_FOUND)

    logger.info(f"Conversation {conversation_id} humanTakeover={takeover.humanTakeover}")
    return TakeoverResponse(data=project_takeover(conversation))


# =============================================================================
# Message Routes
# =============================================================================

@app.get(
    "/api/messages/{conversation_id}",
    response_model=MessagesListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_messages(
    conversation_id: str,
    limit: Annotated[Optional[str], Query(description="Page size, 1-100, default 50")] = None,
    db: Session = Depends(get_db),
) -> MessagesListResponse:
    """Messages of one conversation, newest first."""
    if get_conversation(db, conversation_id) is None:
        raise ApiError("Conversation not found", status.HTTP_404_NOT_FOUND)

    try:
        messages = list_messages(db, conversation_id, limit=parse_limit(limit))
    except SQLAlchemyError as e:
        logger.error(f"Error fetching messages for {conversation_id}: {e}")
        raise ApiError("Failed to fetch messages", extra={"conversationId": conversation_id})

    return MessagesListResponse(data=[project_message(message) for message in messages])


def _has_file(file: Optional[UploadFile]) -> bool:
    # Browsers submit an empty, unnamed part when no file was picked
    return file is not None and bool(file.filename)


async def _store_upload(file: UploadFile, storage: R2Storage) -> UploadResponse:
    if not storage.is_configured():
        raise ApiError(
            "Storage is not configured",
            status.HTTP_503_SERVICE_UNAVAILABLE,
            details=storage.configuration_instructions(),
        )

    data = await file.read()
    object_name = generate_object_name(file.filename)
    content_type = file.content_type or "application/octet-stream"

    try:
        url = await run_in_threadpool(storage.upload_file, data, object_name, content_type)
    except StorageNotConfiguredError as e:
        raise ApiError("Storage is not configured", status.HTTP_503_SERVICE_UNAVAILABLE, details=str(e))
    except (BotoCoreError, ClientError) as e:
        logger.error(f"Error uploading file: {e}")
        raise ApiError("Failed to upload file", details=str(e))

    return UploadResponse(
        url=url,
        media_type=infer_media_type(content_type),
        filename=file.filename or object_name,
        content_type=content_type,
        size=len(data),
    )


@app.post(
    "/api/media/upload",
    response_model=UploadResponse,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def upload_media(
    file: Annotated[Optional[UploadFile], File()] = None,
    storage: R2Storage = Depends(get_media_storage),
) -> UploadResponse:
    """Upload a file to R2 and return its public URL and media kind."""
    if not _has_file(file):
        raise ApiError("No file provided", status.HTTP_400_BAD_REQUEST)
    return await _store_upload(file, storage)


@app.post(
    "/api/messages/send",
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def send_message(
    to: Annotated[Optional[str], Form()] = None,
    body: Annotated[Optional[str], Form()] = None,
    file: Annotated[Optional[UploadFile], File()] = None,
    db: Session = Depends(get_db),
    provider: WapisimoClient = Depends(get_provider_client),
    storage: R2Storage = Depends(get_media_storage),
) -> JSONResponse:
    """
    Send a text or media message from the operator.

    The message row is not written here: the provider echoes the sent
    message back through the webhook as a fromMe event.
    """
    if not to:
        raise ApiError("Missing required field: to", status.HTTP_400_BAD_REQUEST)
    has_file = _has_file(file)
    if not body and not has_file:
        raise ApiError("Either body or file is required", status.HTTP_400_BAD_REQUEST)

    clean_phone = normalize_phone(to)
    if not clean_phone:
        raise ApiError("Invalid phone number", status.HTTP_400_BAD_REQUEST, details=to)

    conversation = get_or_create_conversation(db, clean_phone, settings.PROVIDER_PHONE_ID)
    message_id = outbound_message_id(int(time.time()))

    kind = "text"
    try:
        if has_file:
            upload = await _store_upload(file, storage)
            kind = upload.media_type
            logger.info(f"Sending {kind} to {clean_phone}: {upload.url}")
            result = await provider.send_media(clean_phone, upload.url, upload.media_type, body or None)
        else:
            result = await provider.send_text(clean_phone, body)
    except ProviderError as e:
        record_outbound_message(kind, "error")
        raise ApiError("Failed to send message", details=e.message)

    record_outbound_message(kind, "sent")
    if not isinstance(result, dict):
        result = {"result": result}
    return JSONResponse({**result, "messageId": message_id, "conversationId": conversation.id})


# =============================================================================
# Maintenance Routes
# =============================================================================

def _maintenance_error(action: str, e: Exception) -> ApiError:
    logger.error(f"Error in {action}: {e}")
    return ApiError(f"Failed to {action}", details=str(e), extra={"success": False})


@app.get("/api/cleanup-messages", response_model=CleanupResponse)
async def cleanup_messages(db: Session = Depends(get_db)) -> CleanupResponse:
    """One-time fix for rows that show the same text as content and caption."""
    try:
        fixed = clear_message_content(db)
    except SQLAlchemyError as e:
        raise _maintenance_error("clean up messages", e)

    return CleanupResponse(
        message=f"Fixed {fixed} message(s) with duplicate text",
        note="New messages will not have this issue. This was a one-time cleanup.",
        count=fixed,
    )


@app.post("/api/maintenance/clear-messages", response_model=MaintenanceResponse)
async def maintenance_clear_messages(db: Session = Depends(get_db)) -> MaintenanceResponse:
    """Delete every stored message. Conversations are kept."""
    try:
        deleted = clear_all_messages(db)
    except SQLAlchemyError as e:
        raise _maintenance_error("clear messages", e)
    return MaintenanceResponse(deleted=deleted)


@app.post("/api/maintenance/cleanup-conversations", response_model=MaintenanceResponse)
async def maintenance_cleanup_conversations(db: Session = Depends(get_db)) -> MaintenanceResponse:
    """Delete conversations with an empty or placeholder phone number and their messages."""
    try:
        deleted = cleanup_invalid_conversations(db)
    except SQLAlchemyError as e:
        raise _maintenance_error("clean up conversations", e)
    return MaintenanceResponse(deleted=deleted)


@app.get("/api/maintenance/stats", response_model=DatabaseStatsResponse)
async def maintenance_stats(db: Session = Depends(get_db)) -> DatabaseStatsResponse:
    return DatabaseStatsResponse(**get_database_stats(db))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
