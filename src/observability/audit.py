"""Audit / notification sink for structured watchdog events.

Events are logged immediately and kept in a bounded in-memory buffer. When an
audit webhook is configured, a scheduled job posts undelivered events in one
batch; a failed delivery leaves them pending for the next run. Nothing here
raises into the caller, so a lost audit event never breaks a scan or an API
request.
"""

import logging
import threading
from collections import deque
from datetime import UTC, datetime
from uuid import uuid4

import httpx
from pydantic import BaseModel, Field

from src.observability.metrics import AUDIT_DELIVERIES_TOTAL, AUDIT_EVENTS_TOTAL

logger = logging.getLogger(__name__)


class AuditEvent(BaseModel):
    """One structured event handed to the external audit collaborator."""

    id: str
    category: str
    event: str
    details: dict[str, object] = Field(default_factory=dict)
    created_at: datetime
    delivered: bool = False


class AuditSink:
    """Buffer, log, and (optionally) deliver audit events."""

    def __init__(
        self,
        webhook_url: str = "",
        *,
        buffer_size: int = 500,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self._events: deque[AuditEvent] = deque(maxlen=buffer_size)
        self._lock = threading.Lock()

    def emit(self, category: str, event: str, details: dict[str, object] | None = None) -> AuditEvent:
        record = AuditEvent(
            id=uuid4().hex[:12],
            category=category,
            event=event,
            details=details or {},
            created_at=datetime.now(UTC),
        )
        with self._lock:
            self._events.append(record)
        AUDIT_EVENTS_TOTAL.labels(event=event).inc()
        logger.info("Audit event %s/%s %s", category, event, record.details)
        return record

    def recent(self, limit: int = 50, event: str | None = None) -> list[AuditEvent]:
        """Most recent events first, optionally filtered by event name."""
        with self._lock:
            events = list(self._events)
        if event:
            events = [e for e in events if e.event == event]
        return list(reversed(events))[:limit]

    def pending(self) -> list[AuditEvent]:
        with self._lock:
            return [e for e in self._events if not e.delivered]

    async def deliver_pending(self) -> int:
        """POST undelivered events to the webhook. Returns the number delivered. Never raises."""
        if not self.webhook_url:
            return 0

        batch = self.pending()
        if not batch:
            return 0

        payload = {"events": [e.model_dump(mode="json", exclude={"delivered"}) for e in batch]}
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                resp = await client.post(self.webhook_url, json=payload)
                _ = resp.raise_for_status()
        except httpx.TimeoutException:
            AUDIT_DELIVERIES_TOTAL.labels(status="unreachable").inc()
            logger.warning("Audit webhook timed out after %.1fs; %d event(s) kept", self.timeout_seconds, len(batch))
            return 0
        except Exception as exc:
            AUDIT_DELIVERIES_TOTAL.labels(status="error").inc()
            logger.warning("Audit webhook delivery failed (%s); %d event(s) kept", exc, len(batch))
            return 0

        delivered_ids = {e.id for e in batch}
        with self._lock:
            for existing in self._events:
                if existing.id in delivered_ids:
                    existing.delivered = True
        AUDIT_DELIVERIES_TOTAL.labels(status="success").inc()
        logger.debug("Delivered %d audit event(s)", len(batch))
        return len(batch)
