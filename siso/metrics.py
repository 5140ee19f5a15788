"""
Prometheus metrics for siso, kept in the default prometheus-client registry.

- http_requests_total{method, path, status}
- request_latency_seconds{method, path}
- message_events_total{event}: sent, viewed, decrypt_failed
- chat_events_total{event}: created, existing, deleted, forbidden

HTTP metrics are labelled by route template, never by concrete path, so
message and chat ids cannot blow up label cardinality.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

LATENCY_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)

http_requests_total = Counter(
    "http_requests_total",
    "HTTP requests handled, by route template and status",
    labelnames=["method", "path", "status"],
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Time spent handling a request",
    labelnames=["method", "path"],
    buckets=LATENCY_BUCKETS,
)

message_events_total = Counter(
    "message_events_total",
    "Messages sent, viewed (deleted) or failing to decrypt",
    labelnames=["event"],
)

chat_events_total = Counter(
    "chat_events_total",
    "Chat resolutions and deletions",
    labelnames=["event"],
)


def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Count one handled request and observe its latency.

    Args:
        method: HTTP method
        path: Route template, e.g. /messages/{message_id}/view
        status: Response status code
        latency_seconds: Handling time
    """
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    request_latency_seconds.labels(method=method, path=path).observe(latency_seconds)


def record_message_event(event: str) -> None:
    message_events_total.labels(event=event).inc()


def record_chat_event(event: str) -> None:
    chat_events_total.labels(event=event).inc()


def get_metrics() -> bytes:
    """Current values in the Prometheus text exposition format."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
