import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from whatsapp_inbox.metrics import record_http_request


# Request id of the request being handled, picked up by every log line
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

REQUEST_ID_HEADER = "X-Request-ID"

# Third-party loggers that flood INFO with per-call chatter
QUIET_LOGGERS = ("botocore", "boto3", "s3transfer", "httpx", "httpcore", "multipart")

access_logger = logging.getLogger("whatsapp_inbox.requests")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with a UTC ``ts``, the level name and the current request id."""

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)
        # %(ts)s in the format string leaves the key present but None
        if not log_record.get("ts"):
            log_record["ts"] = _utc_timestamp()
        log_record["level"] = record.levelname

        request_id = request_id_ctx.get()
        if request_id and "request_id" not in log_record:
            log_record["request_id"] = request_id


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """
    Send every log record, uvicorn's included, to stdout as JSON.

    Args:
        log_level: Root level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(ts)s %(level)s %(name)s %(message)s"))

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = [handler]

    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers = [handler]
        uvicorn_logger.propagate = False

    # RequestLoggingMiddleware writes the access log
    logging.getLogger("uvicorn.access").disabled = True

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def _route_path(request: Request) -> str:
    # Route template keeps metric labels bounded: /api/messages/{conversation_id}
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


def _log_request(fields: Dict[str, Any]) -> None:
    status = fields["status"]
    if status >= 500:
        level = logging.ERROR
    elif status >= 400:
        level = logging.WARNING
    else:
        level = logging.INFO
    access_logger.log(level, "Request completed", extra=fields)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    One structured access-log line and one metrics sample per request.

    Log keys: ts, level, request_id, method, path, status, latency_ms.
    Webhook deliveries add result, dup, message_id and conversation_id
    when the handler attached them with log_webhook_data().
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        token = request_id_ctx.set(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
            elapsed = time.perf_counter() - started
            response.headers[REQUEST_ID_HEADER] = request_id

            if request.url.path != "/metrics":
                record_http_request(
                    method=request.method,
                    path=_route_path(request),
                    status=response.status_code,
                    latency_seconds=elapsed,
                )

            fields = {
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status": response.status_code,
                "latency_ms": round(elapsed * 1000, 2),
            }
            fields.update(getattr(request.state, "webhook_log_data", {}))
            _log_request(fields)
            return response
        finally:
            request_id_ctx.reset(token)


def log_webhook_data(
    request: Request,
    result: str,
    message_id: Optional[str] = None,
    conversation_id: Optional[str] = None,
    dup: bool = False,
) -> None:
    """
    Attach the webhook outcome to the request so the access-log line carries it.

    Args:
        request: The webhook request
        result: stored, duplicate, error or a skip reason
        message_id: Stored (or replayed) message id
        conversation_id: Conversation the message landed in
        dup: True when the message id had already been stored
    """
    data: Dict[str, Any] = {"result": result, "dup": dup}
    if message_id is not None:
        data["message_id"] = message_id
    if conversation_id is not None:
        data["conversation_id"] = conversation_id
    request.state.webhook_log_data = data
