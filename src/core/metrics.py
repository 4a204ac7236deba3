"""
Prometheus Metrics for Observability

Tracks job dispatch, reply correlation and blob store traffic.
Exposes /api/v1/metrics endpoint for Prometheus scraping.
"""

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Jobs handed to the broker
jobs_published_total = Counter(
    "relay_jobs_published_total",
    "Total number of job descriptors published to the broker",
    labelnames=["status"]
)

# Replies read off the reply topic
replies_total = Counter(
    "relay_replies_total",
    "Replies consumed from the reply topic",
    labelnames=["outcome"]  # delivered, dropped, malformed
)

# Requests currently waiting on a slot
open_slots_gauge = Gauge(
    "relay_open_slots",
    "Number of pending requests awaiting a reply"
)

# Wait time from slot registration to delivery or timeout
reply_wait_seconds = Histogram(
    "relay_reply_wait_seconds",
    "Time a request spent waiting for its reply",
    labelnames=["outcome"],  # satisfied, timed_out, abandoned
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0]
)

# Blob store operations
blob_operations_total = Counter(
    "relay_blob_operations_total",
    "Object store operations",
    labelnames=["operation", "status"]
)

# API Request Metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "endpoint", "status"]
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration",
    labelnames=["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

# Application Info
app_info = Info(
    "imagery_relay",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


def record_job_published(status: str):
    """Record a publish attempt (success or error)."""
    jobs_published_total.labels(status=status).inc()


def record_reply(outcome: str):
    """Record what happened to a reply read from the broker."""
    replies_total.labels(outcome=outcome).inc()


def record_reply_wait(outcome: str, seconds: float):
    """Record how a pending request finished and how long it waited."""
    reply_wait_seconds.labels(outcome=outcome).observe(seconds)


def record_blob_operation(operation: str, status: str):
    """Record a blob store put/get."""
    blob_operations_total.labels(operation=operation, status=status).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
