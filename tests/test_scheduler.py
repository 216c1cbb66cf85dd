"""Tests for the APScheduler-driven watchdog scan loop."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

from src.observability.audit import AuditSink
from src.watchdog.engine import WatchdogEngine
from src.watchdog.heartbeats import HeartbeatStore
from src.watchdog.models import MonitoredUnit
from src.watchdog.scheduler import AUDIT_JOB_ID, SCAN_JOB_ID, WatchdogScheduler
from src.watchdog.thresholds import ThresholdResolver


def _engine(clock: Any) -> WatchdogEngine:
    return WatchdogEngine(HeartbeatStore(), ThresholdResolver(), clock=clock)


class TestLifecycle:
    async def test_start_and_stop(self, clock: Any) -> None:
        scheduler = WatchdogScheduler(_engine(clock), scan_interval_seconds=60)

        scheduler.start()
        try:
            assert scheduler.running is True
            assert scheduler._scheduler is not None
            job = scheduler._scheduler.get_job(SCAN_JOB_ID)
            assert job is not None
            assert job.max_instances == 1
            assert job.coalesce is True
        finally:
            scheduler.stop()

        assert scheduler.running is False

    async def test_disabled_never_starts(self, clock: Any) -> None:
        scheduler = WatchdogScheduler(_engine(clock), enabled=False)
        scheduler.start()
        assert scheduler.running is False

    async def test_start_twice_is_noop(self, clock: Any) -> None:
        scheduler = WatchdogScheduler(_engine(clock))
        scheduler.start()
        first = scheduler._scheduler
        try:
            scheduler.start()
            assert scheduler._scheduler is first
        finally:
            scheduler.stop()

    def test_stop_without_start(self, clock: Any) -> None:
        scheduler = WatchdogScheduler(_engine(clock))
        scheduler.stop()
        assert scheduler.running is False

    async def test_audit_job_only_with_webhook(self, clock: Any) -> None:
        with_hook = WatchdogScheduler(_engine(clock), AuditSink("http://audit.test/events"))
        without_hook = WatchdogScheduler(_engine(clock), AuditSink())
        with_hook.start()
        without_hook.start()
        try:
            assert with_hook._scheduler is not None
            assert without_hook._scheduler is not None
            assert with_hook._scheduler.get_job(AUDIT_JOB_ID) is not None
            assert without_hook._scheduler.get_job(AUDIT_JOB_ID) is None
        finally:
            with_hook.stop()
            without_hook.stop()


class TestJobs:
    async def test_run_scan_returns_transition_count(self, clock: Any) -> None:
        engine = _engine(clock)
        engine.register(MonitoredUnit(unit_id="t1"))
        engine.register(MonitoredUnit(unit_id="t2"))
        clock.advance(5 * 60_000)

        scheduler = WatchdogScheduler(engine)

        assert await scheduler.run_scan() == 2

    async def test_run_scan_never_raises(self) -> None:
        engine = MagicMock(spec=WatchdogEngine)
        engine.scan.side_effect = RuntimeError("scan blew up")

        scheduler = WatchdogScheduler(engine)

        assert await scheduler.run_scan() == 0

    async def test_run_audit_delivery(self, clock: Any) -> None:
        audit = MagicMock(spec=AuditSink)
        audit.deliver_pending = AsyncMock(return_value=3)

        scheduler = WatchdogScheduler(_engine(clock), audit)

        assert await scheduler.run_audit_delivery() == 3

    async def test_run_audit_delivery_without_sink(self, clock: Any) -> None:
        assert await WatchdogScheduler(_engine(clock)).run_audit_delivery() == 0
