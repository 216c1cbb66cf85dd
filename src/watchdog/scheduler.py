"""APScheduler integration for the periodic watchdog scan and audit delivery.

Uses AsyncIOScheduler with IntervalTrigger. A scan that outlives its interval
is never run concurrently with the next one (``max_instances=1``) and missed
runs collapse into one (``coalesce=True``). No-ops gracefully if the watchdog
is disabled.
"""

import contextlib
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from src.observability.audit import AuditSink
from src.watchdog.engine import WatchdogEngine

logger = logging.getLogger(__name__)

SCAN_JOB_ID = "watchdog_scan"
AUDIT_JOB_ID = "audit_delivery"


class WatchdogScheduler:
    """Ticker that drives ``engine.scan()``; classification logic lives in the engine."""

    def __init__(
        self,
        engine: WatchdogEngine,
        audit: AuditSink | None = None,
        *,
        scan_interval_seconds: float = 30.0,
        audit_interval_seconds: float = 60.0,
        enabled: bool = True,
    ) -> None:
        self.engine = engine
        self.audit = audit
        self.scan_interval_seconds = scan_interval_seconds
        self.audit_interval_seconds = audit_interval_seconds
        self.enabled = enabled
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and bool(self._scheduler.running)

    async def run_scan(self) -> int:
        """Async job executed by the scheduler: scan all units. Never raises."""
        try:
            events = self.engine.scan()
        except Exception:
            logger.exception("Scheduled watchdog scan failed")
            return 0
        return len(events)

    async def run_audit_delivery(self) -> int:
        if self.audit is None:
            return 0
        try:
            return await self.audit.deliver_pending()
        except Exception:
            logger.exception("Scheduled audit delivery failed")
            return 0

    def start(self) -> None:
        """Start the scheduler if the watchdog is enabled. Must be called from a running event loop."""
        if not self.enabled:
            logger.info("Watchdog scheduler disabled (WATCHDOG_ENABLED=false)")
            return
        if self.running:
            return

        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            self.run_scan,
            trigger=IntervalTrigger(seconds=self.scan_interval_seconds),
            id=SCAN_JOB_ID,
            name="Watchdog scan",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if self.audit is not None and self.audit.webhook_url:
            scheduler.add_job(
                self.run_audit_delivery,
                trigger=IntervalTrigger(seconds=self.audit_interval_seconds),
                id=AUDIT_JOB_ID,
                name="Audit webhook delivery",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Watchdog scheduler started, scanning every %.1fs", self.scan_interval_seconds)

    def stop(self) -> None:
        """Gracefully shut down the scheduler if it is running."""
        if self._scheduler is not None:
            with contextlib.suppress(Exception):
                self._scheduler.shutdown(wait=False)
            logger.info("Watchdog scheduler stopped")
            self._scheduler = None
