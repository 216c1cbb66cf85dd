"""Wire the watchdog components together from settings."""

import logging

from src.config import Settings, get_settings
from src.observability.audit import AuditSink
from src.sessions.recovery import RecoveryOrchestrator, SessionHealthStore
from src.watchdog.alerts import AlertManager, AlertStore, InMemoryAlertStore
from src.watchdog.engine import Clock, WatchdogEngine, utc_now
from src.watchdog.heartbeats import HeartbeatStore
from src.watchdog.scheduler import WatchdogScheduler
from src.watchdog.store import SqliteAlertStore
from src.watchdog.thresholds import ThresholdResolver, load_threshold_configs

logger = logging.getLogger(__name__)


class WatchdogServices:
    """Everything the API needs, built once at startup and shared across requests."""

    def __init__(
        self,
        *,
        heartbeats: HeartbeatStore,
        resolver: ThresholdResolver,
        engine: WatchdogEngine,
        alerts: AlertManager,
        sessions: RecoveryOrchestrator,
        audit: AuditSink,
        scheduler: WatchdogScheduler,
        thresholds_file: str = "",
    ) -> None:
        self.heartbeats = heartbeats
        self.resolver = resolver
        self.engine = engine
        self.alerts = alerts
        self.sessions = sessions
        self.audit = audit
        self.scheduler = scheduler
        self.thresholds_file = thresholds_file


def _build_alert_store(settings: Settings) -> AlertStore:
    if settings.alert_db_path:
        logger.info("Persisting alerts to %s", settings.alert_db_path)
        return SqliteAlertStore.open(settings.alert_db_path)
    logger.info("Alert persistence disabled: ALERT_DB_PATH not set (alerts kept in memory)")
    return InMemoryAlertStore()


def _build_resolver(settings: Settings) -> ThresholdResolver:
    if not settings.watchdog_thresholds_file:
        logger.info("Using built-in watchdog thresholds: WATCHDOG_THRESHOLDS_FILE not set")
        return ThresholdResolver()
    try:
        configs = load_threshold_configs(settings.watchdog_thresholds_file)
    except Exception:
        logger.exception("Failed to load %s; using built-in thresholds", settings.watchdog_thresholds_file)
        return ThresholdResolver()
    logger.info("Loaded %d threshold configs from %s", len(configs), settings.watchdog_thresholds_file)
    return ThresholdResolver(configs)


def build_watchdog(settings: Settings | None = None, *, clock: Clock = utc_now) -> WatchdogServices:
    """Build and return the watchdog components.

    Args:
        settings: Settings to use. Defaults to the cached application settings.
        clock: Time source shared by the engine, alerts, and session health.

    Returns:
        Wired services; the scheduler is built but not started.
    """
    settings = settings or get_settings()

    audit = AuditSink(
        settings.audit_webhook_url,
        buffer_size=settings.audit_buffer_size,
        timeout_seconds=settings.probe_timeout_seconds,
    )
    heartbeats = HeartbeatStore()
    resolver = _build_resolver(settings)
    engine = WatchdogEngine(heartbeats, resolver, clock=clock)
    alerts = AlertManager(_build_alert_store(settings), audit=audit, clock=clock)
    engine.subscribe(alerts.on_transition)
    sessions = RecoveryOrchestrator(SessionHealthStore(), audit=audit, clock=clock)
    scheduler = WatchdogScheduler(
        engine,
        audit,
        scan_interval_seconds=settings.watchdog_scan_interval_seconds,
        audit_interval_seconds=settings.audit_delivery_interval_seconds,
        enabled=settings.watchdog_enabled,
    )

    return WatchdogServices(
        heartbeats=heartbeats,
        resolver=resolver,
        engine=engine,
        alerts=alerts,
        sessions=sessions,
        audit=audit,
        scheduler=scheduler,
        thresholds_file=settings.watchdog_thresholds_file,
    )
