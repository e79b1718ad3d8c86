"""
Prometheus metrics for the relay API.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Decode outcome counter (source)
- Native bridge invocation latency (mode)
- Send outcome counter (status) and verification poll histogram

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

# source: native, plist, heuristic, undecodable
decode_results_total = Counter(
    "decode_results_total",
    "Attributed body decode outcomes by winning strategy",
    labelnames=["source"]
)

# mode: single, batch
native_bridge_seconds = Histogram(
    "native_bridge_seconds",
    "Wall-clock time spent in the native decode process",
    labelnames=["mode"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
)

# status: queued, sent, delivered, failed
send_outcomes_total = Counter(
    "send_outcomes_total",
    "Outbound send outcomes by derived status",
    labelnames=["status"]
)

verification_attempts = Histogram(
    "verification_attempts",
    "Store polls needed before a sent message was located",
    buckets=(1, 2, 3, 5, 8, 13)
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
    # Normalize path to avoid high-cardinality labels
    normalized_path = path.split("?")[0]
    if normalized_path.startswith("/messages/") and normalized_path != "/messages/send":
        normalized_path = "/messages/{sender}"

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_decode_outcome(source: str) -> None:
    decode_results_total.labels(source=source).inc()


def record_bridge_call(mode: str, seconds: float) -> None:
    native_bridge_seconds.labels(mode=mode).observe(seconds)


def record_send_outcome(status: str, attempts: int = 0) -> None:
    """
    Record the outcome of a send-and-verify cycle.

    Args:
        status: Derived canonical status (queued, sent, delivered, failed)
        attempts: Store polls performed; 0 when verification was skipped
    """
    send_outcomes_total.labels(status=status).inc()
    if attempts:
        verification_attempts.observe(attempts)


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
