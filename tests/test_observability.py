"""Unit tests for watchdog metric definitions."""

from prometheus_client import REGISTRY

from src.observability.metrics import (
    ALERTS_SUPPRESSED_TOTAL,
    ALERTS_TOTAL,
    APP_INFO,
    AUDIT_DELIVERIES_TOTAL,
    AUDIT_EVENTS_TOTAL,
    COMPONENT_HEALTHY,
    HEARTBEATS_TOTAL,
    REQUEST_DURATION,
    REQUESTS_TOTAL,
    SCAN_DURATION,
    SCANS_TOTAL,
    SESSION_CORRUPTIONS_TOTAL,
    SESSION_ERRORS_TOTAL,
    TRANSITIONS_TOTAL,
    UNITS_BY_STATE,
    VALIDATIONS_TOTAL,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _sample(metric_name: str, labels: dict[str, str] | None = None) -> float | None:
    """Read current value from the default registry."""
    return REGISTRY.get_sample_value(metric_name, labels or {})


# ---------------------------------------------------------------------------
# Metric definition tests
# ---------------------------------------------------------------------------


class TestMetricDefinitions:
    """Verify all expected metrics are registered with correct types."""

    def test_request_metrics(self) -> None:
        assert REQUEST_DURATION._type == "histogram"
        assert REQUESTS_TOTAL._type == "counter"

    def test_scan_metrics(self) -> None:
        assert SCANS_TOTAL._type == "counter"
        assert SCAN_DURATION._type == "histogram"
        assert TRANSITIONS_TOTAL._type == "counter"
        assert UNITS_BY_STATE._type == "gauge"
        assert HEARTBEATS_TOTAL._type == "counter"

    def test_alert_metrics(self) -> None:
        assert ALERTS_TOTAL._type == "counter"
        assert ALERTS_SUPPRESSED_TOTAL._type == "counter"

    def test_session_metrics(self) -> None:
        assert VALIDATIONS_TOTAL._type == "counter"
        assert SESSION_ERRORS_TOTAL._type == "counter"
        assert SESSION_CORRUPTIONS_TOTAL._type == "counter"

    def test_audit_metrics(self) -> None:
        assert AUDIT_EVENTS_TOTAL._type == "counter"
        assert AUDIT_DELIVERIES_TOTAL._type == "counter"

    def test_component_healthy_is_gauge(self) -> None:
        assert COMPONENT_HEALTHY._type == "gauge"

    def test_app_info_is_info(self) -> None:
        assert APP_INFO._type == "info"


class TestMetricValues:
    def test_transition_counter_labels(self) -> None:
        labels = {"from_state": "healthy", "to_state": "warning"}
        before = _sample("agent_watchdog_transitions_total", labels) or 0.0
        TRANSITIONS_TOTAL.labels(**labels).inc()
        assert _sample("agent_watchdog_transitions_total", labels) == before + 1.0

    def test_units_gauge_set(self) -> None:
        UNITS_BY_STATE.labels(state="stale").set(4)
        assert _sample("agent_watchdog_units", {"state": "stale"}) == 4.0
