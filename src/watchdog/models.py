"""Pydantic models for monitored units, heartbeats, thresholds, and alerts."""

from datetime import datetime
from typing import Literal, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

UnitKind = Literal["task", "session"]
HealthState = Literal["healthy", "warning", "stale", "failed"]
AlertType = Literal["warning", "stale", "failed", "retry_exhausted"]
ThresholdScope = Literal["global", "priority", "task_type"]

# Total order used for "only move upward" comparisons.
HEALTH_SEVERITY: dict[str, int] = {"healthy": 0, "warning": 1, "stale": 2, "failed": 3}
ALERT_SEVERITY: dict[str, int] = {"warning": 1, "stale": 2, "failed": 3, "retry_exhausted": 4}
HEALTH_STATES: tuple[HealthState, ...] = ("healthy", "warning", "stale", "failed")


class MonitoredUnit(BaseModel):
    """A task execution or session tracked for liveness."""

    unit_id: str = Field(min_length=1)
    kind: UnitKind = "task"
    priority: str | None = None
    unit_type: str | None = None
    assignee: str | None = None


class HeartbeatRecord(BaseModel):
    """Liveness bookkeeping for one unit, owned by the HeartbeatStore."""

    unit_id: str
    last_heartbeat_at: datetime | None = None
    started_at: datetime | None = None
    # Unit counts as fresh until this instant (deadline extension / retry delay)
    grace_until: datetime | None = None
    missed_count: int = Field(default=0, ge=0)
    retry_count: int = Field(default=0, ge=0)


class WatchdogThresholdConfig(BaseModel):
    """Timing and retry policy for one scope (global, priority, or task type)."""

    model_config = ConfigDict(frozen=True)

    name: str = "default"
    scope: ThresholdScope = "global"
    match: str | None = None
    warning_threshold_ms: int = Field(default=5 * 60_000, gt=0)
    stale_threshold_ms: int = Field(default=15 * 60_000, gt=0)
    failure_threshold_ms: int = Field(default=30 * 60_000, gt=0)
    heartbeat_interval_ms: int = Field(default=60_000, gt=0)
    missed_heartbeat_limit: int = Field(default=3, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=60_000, ge=0)
    alert_on_warning: bool = True
    alert_on_stale: bool = True
    alert_on_failure: bool = True

    @model_validator(mode="after")
    def _check_thresholds(self) -> Self:
        if not self.warning_threshold_ms < self.stale_threshold_ms < self.failure_threshold_ms:
            msg = (
                f"Thresholds for '{self.name}' must be strictly increasing "
                f"(warning={self.warning_threshold_ms}, stale={self.stale_threshold_ms}, "
                f"failure={self.failure_threshold_ms})"
            )
            raise ValueError(msg)
        if self.scope != "global" and not self.match:
            msg = f"Threshold config '{self.name}' with scope '{self.scope}' needs a 'match' value"
            raise ValueError(msg)
        return self

    def alerts_for(self, alert_type: str) -> bool:
        """Whether a transition producing ``alert_type`` should raise an alert."""
        if alert_type == "warning":
            return self.alert_on_warning
        if alert_type == "stale":
            return self.alert_on_stale
        if alert_type == "failed":
            return self.alert_on_failure
        # Exhausting the retry budget always needs a human.
        return True


class TransitionEvent(BaseModel):
    """Emitted by the engine whenever a unit's health moves."""

    unit_id: str
    from_state: HealthState
    to_state: HealthState
    alert_type: AlertType
    elapsed_ms: int | None
    missed: int
    retry_count: int
    occurred_at: datetime


class WatchdogAlert(BaseModel):
    """A stored alert record produced by the AlertManager."""

    id: str
    unit_id: str
    alert_type: AlertType
    message: str
    acknowledged: bool = False
    created_at: datetime


class UnitHealth(BaseModel):
    """Point-in-time view of one monitored unit."""

    unit_id: str
    kind: UnitKind
    priority: str | None = None
    unit_type: str | None = None
    assignee: str | None = None
    state: HealthState
    last_heartbeat_at: datetime | None
    started_at: datetime | None
    elapsed_ms: int | None
    time_until_failure_ms: int | None
    missed_count: int
    retry_count: int
    max_retries: int


class HealthSummary(BaseModel):
    """Unit counts by health state."""

    total: int = 0
    healthy: int = 0
    warning: int = 0
    stale: int = 0
    failed: int = 0


class WatchdogStatus(BaseModel):
    """Scheduler and engine status."""

    running: bool
    enabled: bool
    poll_interval_ms: int
    last_scan: datetime | None
    units_monitored: int
