"""
Prometheus metrics for the inbox API.

- http_requests_total (method, path, status)
- request_latency_seconds (method, path)
- webhook_events_total (result)
- outbound_messages_total (kind, result)

Paths are route templates, so per-conversation URLs share one label value.
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"],
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"],
)

# result: stored, duplicate, error, or a skip reason (invalid_payload, status_update, ...)
webhook_events_total = Counter(
    "webhook_events_total",
    "Webhook deliveries by outcome",
    labelnames=["result"],
)

# kind: text, image, video, audio, document; result: sent, error
outbound_messages_total = Counter(
    "outbound_messages_total",
    "Operator messages forwarded to the provider",
    labelnames=["kind", "result"],
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Count one HTTP request and observe its latency.

    Args:
        method: HTTP method
        path: Route template when the router matched one, else the raw path
        status: Response status code
        latency_seconds: Time spent handling the request
    """
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    request_latency_seconds.labels(method=method, path=path).observe(latency_seconds)


def record_webhook_outcome(result: str) -> None:
    webhook_events_total.labels(result=result).inc()


def record_outbound_message(kind: str, result: str) -> None:
    outbound_messages_total.labels(kind=kind, result=result).inc()


def get_metrics() -> bytes:
    """Current registry in the Prometheus text exposition format."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
