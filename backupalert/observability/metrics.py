"""Prometheus metrics definitions."""

from prometheus_client import Counter, Gauge, Histogram

# Event metrics
EVENTS_RECEIVED = Counter(
    "backupalert_events_received_total",
    "Total number of domain events received",
    ["event_type"],
)

EVENTS_PROCESSED = Counter(
    "backupalert_events_processed_total",
    "Total number of domain events processed",
    ["event_type", "status"],
)

# Dispatch metrics
NOTIFICATIONS_DISPATCHED = Counter(
    "backupalert_notifications_dispatched_total",
    "Total notification deliveries by outcome",
    ["channel", "status"],
)

DISPATCH_TASKS_IN_FLIGHT = Gauge(
    "backupalert_dispatch_tasks_in_flight",
    "Number of delivery tasks currently running",
)

# Transport metrics
WEBHOOK_ATTEMPTS = Counter(
    "backupalert_webhook_attempts_total",
    "Total webhook POST attempts by outcome",
    ["outcome"],
)

WEBHOOK_LATENCY = Histogram(
    "backupalert_webhook_latency_seconds",
    "Webhook attempt latency in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

BLOCKED_CONNECTIONS = Counter(
    "backupalert_blocked_connections_total",
    "Connections refused because every resolved address was blocked",
)

# Rule metrics
RULES_EVALUATED = Counter(
    "backupalert_rules_evaluated_total",
    "Total number of rule evaluations",
    ["trigger_type"],
)

RULES_TRIGGERED = Counter(
    "backupalert_rules_triggered_total",
    "Total number of rule triggers",
    ["trigger_type"],
)

RULE_ACTION_FAILURES = Counter(
    "backupalert_rule_action_failures_total",
    "Total rule actions that failed",
    ["action"],
)
