"""Prometheus metrics definitions."""

from prometheus_client import Counter, Gauge, Histogram

# Trigger metrics
TRIGGERS_RECEIVED = Counter(
    "ruleflow_triggers_received_total",
    "Total number of trigger events received",
    ["trigger_type"],
)

TRIGGERS_PROCESSED = Counter(
    "ruleflow_triggers_processed_total",
    "Total number of trigger events processed",
    ["trigger_type", "status"],
)

DISPATCH_MATCHES = Counter(
    "ruleflow_dispatch_matches_total",
    "Total number of rules selected for a trigger",
    ["policy"],
)

# Condition metrics
CONDITION_EVALUATIONS = Counter(
    "ruleflow_condition_evaluations_total",
    "Total number of topic condition evaluations",
    ["outcome"],
)

LLM_LATENCY = Histogram(
    "ruleflow_llm_latency_seconds",
    "LLM request latency in seconds",
    ["purpose"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# Run metrics
STEPS_EXECUTED = Counter(
    "ruleflow_steps_executed_total",
    "Total number of execution steps dispatched",
    ["kind", "success"],
)

RUNS_RECORDED = Counter(
    "ruleflow_runs_recorded_total",
    "Total number of runs written to execution history",
    ["path", "status"],
)

RUN_DURATION = Histogram(
    "ruleflow_run_duration_seconds",
    "Wall-clock duration of a rule run",
    ["path"],
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0),
)

# Scheduler metrics
SCHEDULER_CLAIMS = Counter(
    "ruleflow_scheduler_claims_total",
    "Scheduled run claims by outcome",
    ["outcome"],
)

# Notification metrics
NOTIFICATIONS_QUEUED = Counter(
    "ruleflow_notifications_queued_total",
    "Total notifications queued",
    ["kind"],
)

NOTIFICATIONS_SENT = Counter(
    "ruleflow_notifications_sent_total",
    "Total notifications delivered",
    ["channel", "status"],
)

# Queue metrics
NOTIFICATION_QUEUE_LENGTH = Gauge(
    "ruleflow_notification_queue_length",
    "Number of tasks in notification queue",
)
