"""
Prometheus metrics for the SMS relay API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Message dispatch outcome counter (result)
- Auth event counter (event, result)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)

# result: queued, sent, delivered, failed, invalid, missing_fields, error
message_dispatch_total = Counter(
    "message_dispatch_total",
    "Outbound message dispatch outcomes",
    labelnames=["result"]
)

# event: register, login, logout
auth_events_total = Counter(
    "auth_events_total",
    "Authentication events by outcome",
    labelnames=["event", "result"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_message_dispatch(result: str) -> None:
    message_dispatch_total.labels(result=result).inc()


def record_auth_event(event: str, result: str) -> None:
    auth_events_total.labels(event=event, result=result).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
