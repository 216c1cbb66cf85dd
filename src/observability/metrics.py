"""Prometheus metric definitions for watchdog self-instrumentation.

All metrics are module-level singletons registered with the default
prometheus_client registry.  Import them wherever instrumentation is needed.
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# ---------------------------------------------------------------------------
# Histogram bucket definitions
# ---------------------------------------------------------------------------

REQUEST_DURATION_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5)
SCAN_DURATION_BUCKETS = (0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0)

# ---------------------------------------------------------------------------
# Request-level metrics
# ---------------------------------------------------------------------------

REQUEST_DURATION = Histogram(
    "agent_watchdog_request_duration_seconds",
    "End-to-end request duration in seconds",
    labelnames=["endpoint"],
    buckets=REQUEST_DURATION_BUCKETS,
)

REQUESTS_TOTAL = Counter(
    "agent_watchdog_requests_total",
    "Total number of requests",
    labelnames=["endpoint", "status"],
)

# ---------------------------------------------------------------------------
# Watchdog engine metrics
# ---------------------------------------------------------------------------

SCANS_TOTAL = Counter(
    "agent_watchdog_scans_total",
    "Total number of completed scan cycles",
)

SCAN_DURATION = Histogram(
    "agent_watchdog_scan_duration_seconds",
    "Time taken by one scan cycle in seconds",
    buckets=SCAN_DURATION_BUCKETS,
)

TRANSITIONS_TOTAL = Counter(
    "agent_watchdog_transitions_total",
    "Health state transitions emitted by the engine",
    labelnames=["from_state", "to_state"],
)

UNITS_BY_STATE = Gauge(
    "agent_watchdog_units",
    "Monitored units by health state as of the last scan",
    labelnames=["state"],
)

HEARTBEATS_TOTAL = Counter(
    "agent_watchdog_heartbeats_total",
    "Heartbeats received",
    labelnames=["status"],
)

# ---------------------------------------------------------------------------
# Alert metrics
# ---------------------------------------------------------------------------

ALERTS_TOTAL = Counter(
    "agent_watchdog_alerts_total",
    "Alerts created, by alert type",
    labelnames=["alert_type"],
)

ALERTS_SUPPRESSED_TOTAL = Counter(
    "agent_watchdog_alerts_suppressed_total",
    "Transitions that did not create an alert, by reason",
    labelnames=["reason"],
)

# ---------------------------------------------------------------------------
# Session integrity metrics
# ---------------------------------------------------------------------------

VALIDATIONS_TOTAL = Counter(
    "agent_watchdog_tool_pair_validations_total",
    "Tool-call/result validations, by recommendation",
    labelnames=["recommendation"],
)

SESSION_ERRORS_TOTAL = Counter(
    "agent_watchdog_session_errors_total",
    "Session errors reported, by whether they matched a corruption signature",
    labelnames=["corruption"],
)

SESSION_CORRUPTIONS_TOTAL = Counter(
    "agent_watchdog_session_corruptions_total",
    "Sessions escalated to corrupted",
)

# ---------------------------------------------------------------------------
# Audit delivery metrics
# ---------------------------------------------------------------------------

AUDIT_EVENTS_TOTAL = Counter(
    "agent_watchdog_audit_events_total",
    "Audit events recorded, by event name",
    labelnames=["event"],
)

AUDIT_DELIVERIES_TOTAL = Counter(
    "agent_watchdog_audit_deliveries_total",
    "Audit webhook delivery attempts",
    labelnames=["status"],
)

# ---------------------------------------------------------------------------
# Health / info metrics
# ---------------------------------------------------------------------------

COMPONENT_HEALTHY = Gauge(
    "agent_watchdog_component_healthy",
    "Whether a collaborator component is healthy (1=healthy, 0=unhealthy or unreachable)",
    labelnames=["component"],
)

APP_INFO = Info(
    "agent_watchdog",
    "Agent watchdog build information",
)
