"""FastAPI backend for the agent watchdog.

Exposes heartbeat ingestion, watchdog health, alerts, session health, and
tool-pair validation over HTTP. The watchdog components are built once at
startup and shared across requests; the scan scheduler runs for the lifetime
of the app.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import datetime

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from src.config import get_settings
from src.observability.audit import AuditEvent
from src.observability.metrics import (
    APP_INFO,
    COMPONENT_HEALTHY,
    HEARTBEATS_TOTAL,
    REQUEST_DURATION,
    REQUESTS_TOTAL,
)
from src.sessions.models import (
    ErrorAnalysis,
    RecoveryStep,
    SessionHealthRecord,
    SessionHealthSummary,
    SessionHealthUpdate,
    ToolCall,
    ToolResult,
    ValidationVerdict,
)
from src.watchdog.errors import InvalidThresholdsError, UnknownAlertError, UnknownUnitError
from src.watchdog.models import (
    HealthState,
    HealthSummary,
    MonitoredUnit,
    TransitionEvent,
    UnitHealth,
    WatchdogAlert,
    WatchdogStatus,
    WatchdogThresholdConfig,
)
from src.watchdog.service import WatchdogServices, build_watchdog

logger = logging.getLogger(__name__)

APP_VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class HeartbeatRequest(BaseModel):
    """Request body for POST /heartbeat."""

    unit_id: str = Field(min_length=1)


class HeartbeatResponse(BaseModel):
    accepted: bool
    unit_id: str
    state: HealthState


class WatchdogHealthResponse(BaseModel):
    """Response body for GET /watchdog/health."""

    summary: HealthSummary
    last_scan: datetime | None
    units: list[UnitHealth]


class ScanResponse(BaseModel):
    transitions: int
    events: list[TransitionEvent]


class ExtendRequest(BaseModel):
    duration_ms: int = Field(gt=0)


class ConfigResponse(BaseModel):
    configs: list[WatchdogThresholdConfig]


class ReloadResponse(BaseModel):
    loaded: int


class RemovedResponse(BaseModel):
    removed: bool


class AlertsResponse(BaseModel):
    alerts: list[WatchdogAlert]


class SessionHealthRequest(BaseModel):
    """Request body for POST /sessions/health."""

    session_key: str
    action: str
    error: str | None = None


class SessionHealthListResponse(BaseModel):
    summary: SessionHealthSummary
    sessions: list[SessionHealthRecord]


class ValidateRequest(BaseModel):
    """Request body for POST /sessions/validate and /sessions/recovery-plan."""

    session_key: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_results: list[ToolResult] = Field(default_factory=list)


class RecoveryPlanResponse(BaseModel):
    verdict: ValidationVerdict | None = None
    steps: list[RecoveryStep]


class AnalyzeErrorRequest(BaseModel):
    error_message: str = ""
    session_key: str | None = None


class AuditEventsResponse(BaseModel):
    events: list[AuditEvent]


class ComponentHealth(BaseModel):
    """Health status of a single collaborator component."""

    name: str
    status: str
    detail: str | None = None


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str
    version: str
    components: list[ComponentHealth]


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the watchdog once at startup, start scanning, tear down on shutdown."""
    APP_INFO.info({"version": APP_VERSION})
    settings = get_settings()
    logging.getLogger("src").setLevel(settings.log_level.upper())

    logger.info("Building agent watchdog...")
    try:
        services = build_watchdog(settings)
        app.state.services = services
    except Exception:
        logger.exception("Failed to build watchdog at startup")
        raise

    services.scheduler.start()
    yield
    services.scheduler.stop()
    logger.info("Shutting down agent watchdog")


app = FastAPI(title="Agent Watchdog", lifespan=lifespan)


@app.middleware("http")
async def record_request_metrics(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    start = time.monotonic()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    status = "success" if response.status_code < 400 else "error"
    REQUESTS_TOTAL.labels(endpoint=endpoint, status=status).inc()
    REQUEST_DURATION.labels(endpoint=endpoint).observe(time.monotonic() - start)
    return response


def _services(request: Request) -> WatchdogServices:
    return request.app.state.services  # type: ignore[no-any-return]


# ---------------------------------------------------------------------------
# Service endpoints
# ---------------------------------------------------------------------------


@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus metrics in exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


async def _probe(client: httpx.AsyncClient, name: str, url: str) -> ComponentHealth:
    """Probe a collaborator health endpoint. A timeout means unreachable, never a crash."""
    try:
        resp = await client.get(url)
    except httpx.TimeoutException:
        return ComponentHealth(name=name, status="unreachable", detail="timed out")
    except httpx.TransportError as exc:
        return ComponentHealth(name=name, status="unreachable", detail=str(exc))
    if resp.status_code == 200:
        return ComponentHealth(name=name, status="healthy")
    return ComponentHealth(name=name, status="unhealthy", detail=f"HTTP {resp.status_code}")


@app.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    """Check health of the watchdog and its collaborators."""
    settings = get_settings()
    services = _services(request)

    targets: list[tuple[str, str]] = []
    if settings.agent_control_url:
        targets.append(("agent_control", f"{settings.agent_control_url}/health"))
    if settings.session_storage_url:
        targets.append(("session_storage", f"{settings.session_storage_url}/health"))

    async with httpx.AsyncClient(timeout=settings.probe_timeout_seconds) as client:
        components = list(await asyncio.gather(*(_probe(client, name, url) for name, url in targets)))

    # --- Scan scheduler ---
    if not services.scheduler.enabled:
        components.append(ComponentHealth(name="watchdog_scheduler", status="healthy", detail="disabled"))
    elif services.scheduler.running:
        components.append(ComponentHealth(name="watchdog_scheduler", status="healthy"))
    else:
        components.append(ComponentHealth(name="watchdog_scheduler", status="unhealthy", detail="not running"))

    # --- Update Prometheus gauges ---
    for comp in components:
        COMPONENT_HEALTHY.labels(component=comp.name).set(1.0 if comp.status == "healthy" else 0.0)

    # --- Overall status ---
    healthy_count = sum(1 for c in components if c.status == "healthy")
    if healthy_count == len(components):
        overall = "healthy"
    elif healthy_count == 0:
        overall = "unhealthy"
    else:
        overall = "degraded"

    return HealthResponse(status=overall, version=APP_VERSION, components=components)


# ---------------------------------------------------------------------------
# Watchdog endpoints
# ---------------------------------------------------------------------------


@app.post("/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(body: HeartbeatRequest, request: Request) -> HeartbeatResponse:
    """Record a liveness signal for a monitored unit."""
    engine = _services(request).engine
    try:
        engine.record_heartbeat(body.unit_id)
    except UnknownUnitError as exc:
        HEARTBEATS_TOTAL.labels(status="unknown_unit").inc()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    HEARTBEATS_TOTAL.labels(status="accepted").inc()
    return HeartbeatResponse(accepted=True, unit_id=body.unit_id, state=engine.state_of(body.unit_id))


@app.post("/watchdog/units", response_model=UnitHealth, status_code=201)
async def register_unit(unit: MonitoredUnit, request: Request) -> UnitHealth:
    """Start monitoring a task or session."""
    return _services(request).engine.register(unit)


@app.delete("/watchdog/units/{unit_id}", response_model=RemovedResponse)
async def evict_unit(unit_id: str, request: Request) -> RemovedResponse:
    """Stop monitoring a unit that reached a terminal outcome."""
    try:
        _services(request).engine.evict(unit_id)
    except UnknownUnitError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RemovedResponse(removed=True)


@app.get("/watchdog/health", response_model=WatchdogHealthResponse)
async def watchdog_health(request: Request) -> WatchdogHealthResponse:
    """Summary counts by state plus per-unit detail."""
    engine = _services(request).engine
    return WatchdogHealthResponse(
        summary=engine.summary(),
        last_scan=engine.last_scan,
        units=engine.all_unit_health(),
    )


@app.get("/watchdog/health/{unit_id}", response_model=UnitHealth)
async def unit_health(unit_id: str, request: Request) -> UnitHealth:
    try:
        return _services(request).engine.unit_health(unit_id)
    except UnknownUnitError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/watchdog/health/{unit_id}/recovery-plan", response_model=RecoveryPlanResponse)
async def unit_recovery_plan(unit_id: str, request: Request) -> RecoveryPlanResponse:
    services = _services(request)
    try:
        health_view = services.engine.unit_health(unit_id)
    except UnknownUnitError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return RecoveryPlanResponse(steps=services.sessions.plan_for_unit(health_view))


@app.post("/watchdog/scan", response_model=ScanResponse)
async def scan(request: Request) -> ScanResponse:
    """Run a scan cycle immediately."""
    events = _services(request).engine.scan()
    return ScanResponse(transitions=len(events), events=events)


@app.get("/watchdog/status", response_model=WatchdogStatus)
async def watchdog_status(request: Request) -> WatchdogStatus:
    services = _services(request)
    return WatchdogStatus(
        running=services.scheduler.running,
        enabled=services.scheduler.enabled,
        poll_interval_ms=int(services.scheduler.scan_interval_seconds * 1000),
        last_scan=services.engine.last_scan,
        units_monitored=len(services.engine.unit_ids()),
    )


@app.get("/watchdog/config", response_model=ConfigResponse)
async def watchdog_config(request: Request) -> ConfigResponse:
    """Active threshold configs (empty means built-in defaults apply)."""
    return ConfigResponse(configs=list(_services(request).resolver.configs))


@app.post("/watchdog/config/reload", response_model=ReloadResponse)
async def reload_config(request: Request) -> ReloadResponse:
    """Re-read the threshold file; takes effect on the next scan tick."""
    services = _services(request)
    if not services.thresholds_file:
        raise HTTPException(status_code=400, detail="WATCHDOG_THRESHOLDS_FILE not configured")
    try:
        loaded = services.resolver.reload(services.thresholds_file)
    except (FileNotFoundError, InvalidThresholdsError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return ReloadResponse(loaded=loaded)


@app.post("/watchdog/reset/{unit_id}", response_model=UnitHealth)
async def reset_unit(unit_id: str, request: Request) -> UnitHealth:
    try:
        return _services(request).engine.reset(unit_id)
    except UnknownUnitError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.post("/watchdog/extend/{unit_id}", response_model=UnitHealth)
async def extend_deadline(unit_id: str, body: ExtendRequest, request: Request) -> UnitHealth:
    try:
        return _services(request).engine.extend_deadline(unit_id, body.duration_ms)
    except UnknownUnitError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


# ---------------------------------------------------------------------------
# Alert endpoints
# ---------------------------------------------------------------------------


@app.get("/alerts", response_model=AlertsResponse)
async def alerts(
    request: Request,
    unit_id: str | None = None,
    acknowledged: bool | None = None,
    limit: int = 50,
) -> AlertsResponse:
    """List alerts, most recent first."""
    return AlertsResponse(
        alerts=_services(request).alerts.list_alerts(unit_id=unit_id, acknowledged=acknowledged, limit=limit)
    )


@app.post("/alerts/{alert_id}/ack", response_model=WatchdogAlert)
async def acknowledge_alert(alert_id: str, request: Request) -> WatchdogAlert:
    try:
        return _services(request).alerts.acknowledge(alert_id)
    except UnknownAlertError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@app.get("/sessions/health", response_model=SessionHealthListResponse)
async def sessions_health(request: Request) -> SessionHealthListResponse:
    summary, sessions = _services(request).sessions.overview()
    return SessionHealthListResponse(summary=summary, sessions=sessions)


@app.get("/sessions/health/{session_key}", response_model=SessionHealthRecord)
async def session_health(session_key: str, request: Request) -> SessionHealthRecord:
    """A session's record; untracked sessions report status ``unknown``."""
    return _services(request).sessions.get(session_key)


@app.post("/sessions/health", response_model=SessionHealthUpdate)
async def update_session_health(body: SessionHealthRequest, request: Request) -> SessionHealthUpdate:
    """Report an error, clear, or heartbeat a session."""
    try:
        return _services(request).sessions.apply(body.session_key, body.action, body.error)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/sessions/health/{session_key}", response_model=RemovedResponse)
async def delete_session_health(session_key: str, request: Request) -> RemovedResponse:
    if not _services(request).sessions.delete(session_key):
        raise HTTPException(status_code=404, detail="Session not found")
    return RemovedResponse(removed=True)


@app.post("/sessions/validate", response_model=ValidationVerdict)
async def validate_tool_pairs(body: ValidateRequest, request: Request) -> ValidationVerdict:
    """Pre-flight check of tool call/result pairs before sending them to the backend."""
    return _services(request).sessions.validate(body.tool_calls, body.tool_results, body.session_key)


@app.post("/sessions/recovery-plan", response_model=RecoveryPlanResponse)
async def session_recovery_plan(body: ValidateRequest, request: Request) -> RecoveryPlanResponse:
    """Validate a batch and return the recovery plan its verdict calls for."""
    sessions = _services(request).sessions
    verdict = sessions.validate(body.tool_calls, body.tool_results, body.session_key)
    steps = sessions.plan_for_verdict(verdict, body.session_key or "<session_key>")
    return RecoveryPlanResponse(verdict=verdict, steps=steps)


@app.post("/sessions/analyze-error", response_model=ErrorAnalysis)
async def analyze_error(body: AnalyzeErrorRequest, request: Request) -> ErrorAnalysis:
    return _services(request).sessions.analyze(body.error_message, body.session_key)


@app.get("/sessions/recovery-steps", response_model=RecoveryPlanResponse)
async def recovery_steps(request: Request) -> RecoveryPlanResponse:
    """The fixed, ordered recovery plan for a corrupted session."""
    return RecoveryPlanResponse(steps=_services(request).sessions.get_recovery_steps())


@app.get("/audit/events", response_model=AuditEventsResponse)
async def audit_events(request: Request, limit: int = 50, event: str | None = None) -> AuditEventsResponse:
    return AuditEventsResponse(events=_services(request).audit.recent(limit=limit, event=event))
