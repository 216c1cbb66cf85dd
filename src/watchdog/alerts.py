"""Alert manager: turns transition events into deduplicated alert records.

At most one unacknowledged alert of a given type exists per unit. A repeat of
the same type is suppressed until the open one is acknowledged; a more severe
type is a different alert and is always created.
"""

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol
from uuid import uuid4

from src.observability.audit import AuditSink
from src.observability.metrics import ALERTS_SUPPRESSED_TOTAL, ALERTS_TOTAL
from src.watchdog.errors import UnknownAlertError
from src.watchdog.locks import KeyedLocks
from src.watchdog.models import TransitionEvent, WatchdogAlert, WatchdogThresholdConfig

logger = logging.getLogger(__name__)


class AlertStore(Protocol):
    def insert(self, alert: WatchdogAlert) -> None: ...

    def find_unacknowledged(self, unit_id: str, alert_type: str) -> WatchdogAlert | None: ...

    def acknowledge(self, alert_id: str) -> WatchdogAlert | None: ...

    def query(
        self,
        *,
        unit_id: str | None = None,
        acknowledged: bool | None = None,
        limit: int = 50,
    ) -> list[WatchdogAlert]: ...


class InMemoryAlertStore:
    """Default AlertStore when no ALERT_DB_PATH is configured."""

    def __init__(self) -> None:
        self._alerts: dict[str, tuple[int, WatchdogAlert]] = {}
        self._seq = 0
        self._lock = threading.Lock()

    def insert(self, alert: WatchdogAlert) -> None:
        with self._lock:
            self._seq += 1
            self._alerts[alert.id] = (self._seq, alert)

    def find_unacknowledged(self, unit_id: str, alert_type: str) -> WatchdogAlert | None:
        with self._lock:
            entries = list(self._alerts.values())
        for _, alert in sorted(entries, key=lambda e: e[0], reverse=True):
            if alert.unit_id == unit_id and alert.alert_type == alert_type and not alert.acknowledged:
                return alert
        return None

    def acknowledge(self, alert_id: str) -> WatchdogAlert | None:
        with self._lock:
            entry = self._alerts.get(alert_id)
            if entry is None:
                return None
            seq, alert = entry
            if not alert.acknowledged:
                alert = alert.model_copy(update={"acknowledged": True})
                self._alerts[alert_id] = (seq, alert)
            return alert

    def query(
        self,
        *,
        unit_id: str | None = None,
        acknowledged: bool | None = None,
        limit: int = 50,
    ) -> list[WatchdogAlert]:
        with self._lock:
            entries = list(self._alerts.values())
        entries.sort(key=lambda e: (e[1].created_at, e[0]), reverse=True)
        alerts = [a for _, a in entries]
        if unit_id:
            alerts = [a for a in alerts if a.unit_id == unit_id]
        if acknowledged is not None:
            alerts = [a for a in alerts if a.acknowledged == acknowledged]
        return alerts[:limit]


def _format_message(event: TransitionEvent, config: WatchdogThresholdConfig) -> str:
    silence = f"{event.elapsed_ms / 1000:.0f}s" if event.elapsed_ms is not None else "unknown time"
    if event.alert_type == "retry_exhausted":
        return (
            f"Unit {event.unit_id} failed after {silence} without a heartbeat and exhausted "
            f"its retry budget ({config.max_retries} retries)"
        )
    if event.alert_type == "failed":
        return (
            f"Unit {event.unit_id} failed after {silence} without a heartbeat "
            f"({event.missed} missed); retry {event.retry_count}/{config.max_retries} scheduled"
        )
    return f"Unit {event.unit_id} is {event.to_state}: no heartbeat for {silence} ({event.missed} missed)"


class AlertManager:
    """Create, deduplicate, acknowledge, and list watchdog alerts."""

    def __init__(
        self,
        store: AlertStore,
        *,
        audit: AuditSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock or (lambda: datetime.now(UTC))
        self._unit_locks = KeyedLocks()

    def on_transition(self, event: TransitionEvent, config: WatchdogThresholdConfig) -> WatchdogAlert | None:
        """Create an alert for ``event`` unless disabled by config or already open."""
        if not config.alerts_for(event.alert_type):
            ALERTS_SUPPRESSED_TOTAL.labels(reason="disabled").inc()
            logger.debug("Alerts for %s transitions disabled by '%s'", event.alert_type, config.name)
            return None

        with self._unit_locks.hold(event.unit_id):
            existing = self._store.find_unacknowledged(event.unit_id, event.alert_type)
            if existing is not None:
                ALERTS_SUPPRESSED_TOTAL.labels(reason="duplicate").inc()
                logger.debug(
                    "Suppressed duplicate %s alert for '%s' (open: %s)",
                    event.alert_type,
                    event.unit_id,
                    existing.id,
                )
                return None

            alert = WatchdogAlert(
                id=uuid4().hex[:12],
                unit_id=event.unit_id,
                alert_type=event.alert_type,
                message=_format_message(event, config),
                created_at=self._clock(),
            )
            self._store.insert(alert)

        ALERTS_TOTAL.labels(alert_type=alert.alert_type).inc()
        logger.warning("Alert %s [%s]: %s", alert.id, alert.alert_type, alert.message)
        if self._audit is not None:
            self._audit.emit(
                "watchdog",
                "watchdog_alert",
                {"alert_id": alert.id, "unit_id": alert.unit_id, "alert_type": alert.alert_type},
            )
        return alert

    def acknowledge(self, alert_id: str) -> WatchdogAlert:
        """Acknowledge an alert. Acknowledging twice is a no-op.

        Raises:
            UnknownAlertError: If no alert has this id.
        """
        alert = self._store.acknowledge(alert_id)
        if alert is None:
            raise UnknownAlertError(alert_id)
        return alert

    def list_alerts(
        self,
        *,
        unit_id: str | None = None,
        acknowledged: bool | None = None,
        limit: int = 50,
    ) -> list[WatchdogAlert]:
        """Alerts sorted by ``created_at`` descending."""
        return self._store.query(unit_id=unit_id, acknowledged=acknowledged, limit=limit)
