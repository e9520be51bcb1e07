"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter, Gauge

# Subscription metrics
subscriptions_created_total = Counter(
    "subscriptions_created_total",
    "Total subscriptions created",
    labelnames=["period_type"],
)

subscription_transitions_total = Counter(
    "subscription_transitions_total",
    "Total subscription status transitions",
    labelnames=["from_status", "to_status"],
)

subscriptions_renewed_total = Counter(
    "subscriptions_renewed_total",
    "Total end-dated subscriptions renewed for another cycle",
)

subscriptions_overdue_gauge = Gauge(
    "subscriptions_overdue",
    "Number of subscriptions found overdue by the last scan",
)

# Payment metrics
payments_recorded_total = Counter(
    "payments_recorded_total",
    "Total payments recorded",
    labelnames=["status"],  # status: success, refunded, duplicate
)

payment_amount_total = Counter(
    "payment_amount_total",
    "Total amount of successful payments",
)

late_fees_collected_total = Counter(
    "late_fees_collected_total",
    "Total late fees collected with payments",
)

# Overdue scan metrics
overdue_scan_runs_total = Counter(
    "overdue_scan_runs_total",
    "Total overdue scan runs",
    labelnames=["outcome"],  # outcome: completed, skipped
)

overdue_scan_failures_total = Counter(
    "overdue_scan_failures_total",
    "Total subscriptions that failed to process during a scan",
)

# Notification metrics
notifications_queued_total = Counter(
    "notifications_queued_total",
    "Total notifications written to the outbox",
    labelnames=["kind"],
)

notifications_failed_total = Counter(
    "notifications_failed_total",
    "Total notifications that failed to queue or deliver",
    labelnames=["kind"],
)

notifications_delivered_total = Counter(
    "notifications_delivered_total",
    "Total notifications delivered through the SMS gateway",
    labelnames=["kind"],
)
