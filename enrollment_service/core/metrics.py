"""Application metrics using the Prometheus client library.

Every metric the service exposes is defined here, in one inventory.
Other modules import specific metrics and increment/observe them at the
point of action.  Prometheus scrapes them from GET /metrics.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Enrollment workflow metrics
# ---------------------------------------------------------------------------

ENROLLMENTS_CREATED = Counter(
    "enrollments_created_total",
    "Enrollments created by checkout",
)

CHECKOUT_CONFLICTS = Counter(
    "checkout_conflicts_total",
    "Checkouts rejected because the learner is already enrolled",
)

ATTEMPTS_SUBMITTED = Counter(
    "attempts_submitted_total",
    "Attempts submitted by content type",
    ["content_type"],  # session|quiz|assessment
)

REVIEWS_APPLIED = Counter(
    "reviews_applied_total",
    "Instructor reviews by outcome",
    ["outcome"],  # passed|failed
)

ENROLLMENTS_COMPLETED = Counter(
    "enrollments_completed_total",
    "Enrollments that transitioned to completed",
)

CONCURRENT_UPDATE_CONFLICTS = Counter(
    "enrollment_concurrent_update_conflicts_total",
    "Enrollment writes rejected by the version check",
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)
