"""Prometheus metric inventory.

Every metric the service exports is defined here; the modules that own
the behavior import and update them at the point of action.

Business counters are labelled by outcome rather than by entity id so
that label cardinality stays bounded (one series per outcome, not one
per wallet).
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
    # Gateway round-trips dominate the upper buckets.
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Business metrics
# ---------------------------------------------------------------------------

GROUP_ENROLLMENTS = Counter(
    "group_enrollments_total",
    "Per-member results of group enrollment batches",
    ["result"],  # "success" or "failed"
)

COURSE_ENROLLMENTS = Counter(
    "course_enrollments_total",
    "Single-user enrollment attempts by result",
    ["result"],  # "success", "duplicate", "full"
)

WALLET_TRANSACTIONS = Counter(
    "wallet_transactions_total",
    "Wallet ledger entries by transaction type and result",
    ["type", "result"],  # result: "applied", "replayed", "rejected"
)

WALLET_CAS_CONFLICTS = Counter(
    "wallet_cas_conflicts_total",
    "Compare-and-swap retries caused by concurrent balance updates",
)

PAYMENT_VERIFICATIONS = Counter(
    "payment_verifications_total",
    "Payment verification outcomes",
    ["outcome"],  # verified|replayed|cancelled|failed|error
)

GATEWAY_REQUESTS = Counter(
    "payment_gateway_requests_total",
    "Calls to the external payment gateway",
    ["operation", "result"],  # operation: request|verify; result: ok|rejected|error
)

GATEWAY_LATENCY = Histogram(
    "payment_gateway_request_duration_seconds",
    "Latency of external payment gateway calls (including retries)",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache operations by outcome",
    ["operation"],  # hit, miss, set, invalidate, error
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)

NOTIFICATION_DISPATCH_FAILURES = Counter(
    "notification_dispatch_failures_total",
    "Best-effort notifications that could not be enqueued",
    ["queue_name"],
)
