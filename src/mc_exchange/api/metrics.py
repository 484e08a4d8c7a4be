"""Prometheus counters and histograms served at ``GET /metrics``.

HTTP traffic is recorded by the request middleware in ``main.py``.  The
marketplace counters are bumped by the routes after a service call
succeeds, so a request that rolls back is never counted.
"""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

_LATENCY_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)

# Traffic

http_requests_total = Counter(
    "mcx_http_requests_total",
    "Requests answered by the API.",
    labelnames=["method", "path", "status"],
)
"""``path`` is the matched route template, or ``unmatched`` for 404s."""

http_request_duration_seconds = Histogram(
    "mcx_http_request_duration_seconds",
    "Time spent producing a response.",
    labelnames=["method", "path"],
    buckets=_LATENCY_BUCKETS,
)

# Marketplace

transactions_status_total = Counter(
    "mcx_transaction_status_changes_total",
    "Escrow transactions entering a status.",
    labelnames=["status"],
)

credit_transactions_total = Counter(
    "mcx_credit_ledger_entries_total",
    "Credit ledger rows written.",
    labelnames=["type"],
)
"""``type`` is a ``CreditTransactionType`` value (PURCHASE, USAGE, BONUS, ...)."""

stripe_webhooks_total = Counter(
    "mcx_stripe_webhooks_total",
    "Stripe events received, by outcome (handled, ignored, error).",
    labelnames=["event_type", "outcome"],
)

# Workers

celery_tasks_total = Counter(
    "mcx_periodic_tasks_total",
    "Periodic job runs, by outcome (success, error).",
    labelnames=["task_name", "status"],
)


def get_metrics_response() -> tuple[bytes, str]:
    """Render the default registry in the Prometheus text format."""
    return generate_latest(), CONTENT_TYPE_LATEST
