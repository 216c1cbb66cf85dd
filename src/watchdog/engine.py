"""Watchdog engine: classifies monitored units into healthy/warning/stale/failed.

The engine is driven by ``scan()`` (periodically from the scheduler, or on
demand from the API). Classification is a pure function of elapsed silence and
the unit's resolved thresholds; the engine only ever moves a unit upward in
severity. A unit returns to ``healthy`` when a heartbeat arrives (unless it is
terminally failed) or when recovery intervenes (retry, reset, extension).

Time is injected through ``clock`` so tests drive transitions with a synthetic
clock instead of waiting on real timers.
"""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TypeAlias

from src.observability.metrics import (
    SCAN_DURATION,
    SCANS_TOTAL,
    TRANSITIONS_TOTAL,
    UNITS_BY_STATE,
)
from src.watchdog.errors import UnknownUnitError
from src.watchdog.heartbeats import HeartbeatStore, elapsed_since_anchor
from src.watchdog.locks import KeyedLocks
from src.watchdog.models import (
    HEALTH_SEVERITY,
    HEALTH_STATES,
    HealthState,
    HealthSummary,
    HeartbeatRecord,
    MonitoredUnit,
    TransitionEvent,
    UnitHealth,
    WatchdogThresholdConfig,
)
from src.watchdog.thresholds import ThresholdResolver

logger = logging.getLogger(__name__)

Clock: TypeAlias = Callable[[], datetime]
TransitionListener: TypeAlias = Callable[[TransitionEvent, WatchdogThresholdConfig], object]


def utc_now() -> datetime:
    return datetime.now(UTC)


def classify(elapsed_ms: int | None, config: WatchdogThresholdConfig) -> tuple[HealthState, int]:
    """Map elapsed silence to a candidate state and a missed-heartbeat count.

    Boundaries are inclusive, so a unit sitting exactly on a threshold lands in
    the more severe bucket. No data (``None``) is classified healthy.
    """
    if elapsed_ms is None:
        return "healthy", 0

    missed = elapsed_ms // config.heartbeat_interval_ms
    if missed >= config.missed_heartbeat_limit and elapsed_ms >= config.failure_threshold_ms:
        return "failed", missed
    if elapsed_ms >= config.stale_threshold_ms:
        return "stale", missed
    if elapsed_ms >= config.warning_threshold_ms:
        return "warning", missed
    return "healthy", missed


class WatchdogEngine:
    """State machine over all registered units."""

    def __init__(
        self,
        heartbeats: HeartbeatStore,
        resolver: ThresholdResolver,
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._heartbeats = heartbeats
        self._resolver = resolver
        self._clock = clock
        self._units: dict[str, MonitoredUnit] = {}
        self._states: dict[str, HealthState] = {}
        self._state_locks = KeyedLocks()
        self._scan_locks = KeyedLocks()
        self._listeners: list[TransitionListener] = []
        self.last_scan: datetime | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def subscribe(self, listener: TransitionListener) -> None:
        """Call ``listener(event, config)`` for every transition."""
        self._listeners.append(listener)

    def register(self, unit: MonitoredUnit) -> UnitHealth:
        """Start monitoring ``unit``. Re-registering updates its metadata only."""
        now = self._clock()
        with self._state_locks.hold(unit.unit_id):
            self._units[unit.unit_id] = unit
            self._states.setdefault(unit.unit_id, "healthy")
            self._heartbeats.get_or_create(unit.unit_id, started_at=now)
        logger.info("Monitoring %s '%s'", unit.kind, unit.unit_id)
        return self.unit_health(unit.unit_id, now)

    def evict(self, unit_id: str) -> None:
        """Stop monitoring a unit that reached a terminal outcome."""
        with self._state_locks.hold(unit_id):
            if unit_id not in self._units:
                raise UnknownUnitError(unit_id)
            del self._units[unit_id]
            self._states.pop(unit_id, None)
            self._heartbeats.evict(unit_id)
        logger.info("Stopped monitoring '%s'", unit_id)

    def get_unit(self, unit_id: str) -> MonitoredUnit:
        unit = self._units.get(unit_id)
        if unit is None:
            raise UnknownUnitError(unit_id)
        return unit

    def state_of(self, unit_id: str) -> HealthState:
        self.get_unit(unit_id)
        return self._states[unit_id]

    def unit_ids(self) -> list[str]:
        return list(self._units)

    # ------------------------------------------------------------------
    # Liveness input
    # ------------------------------------------------------------------

    def record_heartbeat(self, unit_id: str) -> HeartbeatRecord:
        """Record a heartbeat; a non-failed unit is healthy again immediately."""
        now = self._clock()
        with self._state_locks.hold(unit_id):
            self.get_unit(unit_id)
            record = self._heartbeats.record_heartbeat(unit_id, now)
            previous = self._states[unit_id]
            if previous != "failed":
                self._states[unit_id] = "healthy"
                if previous != "healthy":
                    logger.info("Unit '%s' recovered from %s on heartbeat", unit_id, previous)
        return record

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(self) -> list[TransitionEvent]:
        """Classify every registered unit once. One unit's failure never aborts the tick."""
        start = time.monotonic()
        now = self._clock()
        events: list[TransitionEvent] = []

        for unit_id in self.unit_ids():
            try:
                events.extend(self.scan_unit(unit_id, now))
            except UnknownUnitError:
                logger.debug("Unit '%s' was evicted during scan", unit_id)
            except Exception:
                logger.exception("Failed to scan unit '%s'; skipping", unit_id)

        self.last_scan = now
        SCANS_TOTAL.inc()
        SCAN_DURATION.observe(time.monotonic() - start)
        summary = self.summary()
        for state in HEALTH_STATES:
            UNITS_BY_STATE.labels(state=state).set(getattr(summary, state))

        if events:
            logger.info("Scan produced %d transition(s) across %d unit(s)", len(events), summary.total)
        return events

    def scan_unit(self, unit_id: str, now: datetime | None = None) -> list[TransitionEvent]:
        """Classify a single unit. Skips the unit if a previous scan of it is still running.

        Raises:
            UnknownUnitError: If the unit is not registered.
        """
        unit = self.get_unit(unit_id)
        with self._scan_locks.try_hold(unit_id) as acquired:
            if not acquired:
                logger.debug("Scan of '%s' still in progress; skipping this tick", unit_id)
                return []
            return self._scan_locked(unit, now or self._clock())

    def _scan_locked(self, unit: MonitoredUnit, now: datetime) -> list[TransitionEvent]:
        config = self._resolver.resolve(unit)
        with self._state_locks.hold(unit.unit_id):
            if unit.unit_id not in self._units:
                raise UnknownUnitError(unit.unit_id)
            record = self._heartbeats.get_or_create(unit.unit_id, started_at=now)
            elapsed = elapsed_since_anchor(record, now)
            candidate, missed = classify(elapsed, config)
            record = self._heartbeats.update(unit.unit_id, missed_count=missed)

            current = self._states[unit.unit_id]
            if HEALTH_SEVERITY[candidate] <= HEALTH_SEVERITY[current]:
                return []

            if candidate == "failed":
                event = self._apply_failure(unit, record, config, current, elapsed, missed, now)
            else:
                self._states[unit.unit_id] = candidate
                event = TransitionEvent(
                    unit_id=unit.unit_id,
                    from_state=current,
                    to_state=candidate,
                    alert_type=candidate,
                    elapsed_ms=elapsed,
                    missed=missed,
                    retry_count=record.retry_count,
                    occurred_at=now,
                )
                logger.info("Unit '%s': %s -> %s after %sms silence", unit.unit_id, current, candidate, elapsed)

        TRANSITIONS_TOTAL.labels(from_state=event.from_state, to_state=event.to_state).inc()
        self._emit(event, config)
        return [event]

    def _apply_failure(
        self,
        unit: MonitoredUnit,
        record: HeartbeatRecord,
        config: WatchdogThresholdConfig,
        current: HealthState,
        elapsed: int | None,
        missed: int,
        now: datetime,
    ) -> TransitionEvent:
        """Apply the retry policy. ``max_retries`` counts attempts after the first failure."""
        retry_count = record.retry_count + 1
        if retry_count <= config.max_retries:
            grace_until = now + timedelta(milliseconds=config.retry_delay_ms)
            self._heartbeats.update(unit.unit_id, retry_count=retry_count, missed_count=0, grace_until=grace_until)
            self._states[unit.unit_id] = "healthy"
            alert_type = "failed"
            logger.warning(
                "Unit '%s' failed after %sms silence; retry %d/%d scheduled",
                unit.unit_id,
                elapsed,
                retry_count,
                config.max_retries,
            )
        else:
            self._heartbeats.update(unit.unit_id, retry_count=retry_count)
            self._states[unit.unit_id] = "failed"
            alert_type = "retry_exhausted"
            logger.error(
                "Unit '%s' failed permanently: retry budget of %d exhausted",
                unit.unit_id,
                config.max_retries,
            )

        return TransitionEvent(
            unit_id=unit.unit_id,
            from_state=current,
            to_state="failed",
            alert_type=alert_type,
            elapsed_ms=elapsed,
            missed=missed,
            retry_count=retry_count,
            occurred_at=now,
        )

    def _emit(self, event: TransitionEvent, config: WatchdogThresholdConfig) -> None:
        for listener in self._listeners:
            try:
                listener(event, config)
            except Exception:
                logger.exception("Transition listener failed for unit '%s'", event.unit_id)

    # ------------------------------------------------------------------
    # Recovery interventions
    # ------------------------------------------------------------------

    def reset(self, unit_id: str) -> UnitHealth:
        """Return a unit (including a terminally failed one) to healthy with a fresh attempt window."""
        now = self._clock()
        with self._state_locks.hold(unit_id):
            self.get_unit(unit_id)
            self._heartbeats.get_or_create(unit_id, started_at=now)
            self._heartbeats.update(unit_id, retry_count=0, missed_count=0, started_at=now, grace_until=None)
            self._states[unit_id] = "healthy"
        logger.info("Unit '%s' reset to healthy", unit_id)
        return self.unit_health(unit_id, now)

    def extend_deadline(self, unit_id: str, duration_ms: int) -> UnitHealth:
        """Treat the unit as fresh until ``now + duration_ms``.

        A terminally failed unit keeps its state; use ``reset`` for that.

        Raises:
            ValueError: If ``duration_ms`` is not positive.
        """
        if duration_ms <= 0:
            msg = f"duration_ms must be positive, got {duration_ms}"
            raise ValueError(msg)
        now = self._clock()
        with self._state_locks.hold(unit_id):
            self.get_unit(unit_id)
            self._heartbeats.get_or_create(unit_id, started_at=now)
            self._heartbeats.update(unit_id, grace_until=now + timedelta(milliseconds=duration_ms), missed_count=0)
            if self._states[unit_id] != "failed":
                self._states[unit_id] = "healthy"
        logger.info("Extended deadline for '%s' by %dms", unit_id, duration_ms)
        return self.unit_health(unit_id, now)

    # ------------------------------------------------------------------
    # Read views
    # ------------------------------------------------------------------

    def unit_health(self, unit_id: str, now: datetime | None = None) -> UnitHealth:
        unit = self.get_unit(unit_id)
        now = now or self._clock()
        config = self._resolver.resolve(unit)
        record = self._heartbeats.get(unit_id) or HeartbeatRecord(unit_id=unit_id)
        state = self._states.get(unit_id, "healthy")
        elapsed = elapsed_since_anchor(record, now)

        if state == "failed":
            until_failure: int | None = 0
        elif elapsed is None:
            until_failure = None
        else:
            until_failure = max(0, config.failure_threshold_ms - elapsed)

        return UnitHealth(
            unit_id=unit_id,
            kind=unit.kind,
            priority=unit.priority,
            unit_type=unit.unit_type,
            assignee=unit.assignee,
            state=state,
            last_heartbeat_at=record.last_heartbeat_at,
            started_at=record.started_at,
            elapsed_ms=elapsed,
            time_until_failure_ms=until_failure,
            missed_count=record.missed_count,
            retry_count=record.retry_count,
            max_retries=config.max_retries,
        )

    def summary(self) -> HealthSummary:
        states = list(self._states.values())
        return HealthSummary(
            total=len(states),
            healthy=states.count("healthy"),
            warning=states.count("warning"),
            stale=states.count("stale"),
            failed=states.count("failed"),
        )

    def all_unit_health(self) -> list[UnitHealth]:
        now = self._clock()
        views: list[UnitHealth] = []
        for unit_id in self.unit_ids():
            try:
                views.append(self.unit_health(unit_id, now))
            except UnknownUnitError:
                continue
        return views
