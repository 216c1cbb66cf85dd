"""Session health lifecycle and recovery planning.

Each session has one SessionHealthRecord, created on first report. Errors that
match a corruption signature escalate the record ``healthy -> warning ->
corrupted``; ``clear`` resets it from any state and ``heartbeat`` restores
``healthy`` only when no errors are outstanding.

Recovery plans are advisory: the orchestrator returns the ordered steps and the
agent-control and session-storage services carry them out.
"""

import logging
import threading
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime

from src.observability.audit import AuditSink
from src.observability.metrics import SESSION_CORRUPTIONS_TOTAL, SESSION_ERRORS_TOTAL, VALIDATIONS_TOTAL
from src.sessions.models import (
    SESSION_ACTIONS,
    ErrorAnalysis,
    RecoveryStep,
    SessionHealthRecord,
    SessionHealthSummary,
    SessionHealthUpdate,
    ToolCall,
    ToolResult,
    ValidationVerdict,
)
from src.sessions.validator import analyze_error_message, validate_tool_pairs
from src.watchdog.locks import KeyedLocks
from src.watchdog.models import UnitHealth

logger = logging.getLogger(__name__)

CORRUPTION_ESCALATION_THRESHOLD = 3

CORRUPTED_RECOMMENDATIONS: tuple[str, ...] = (
    "Session context appears corrupted",
    "Recommend clearing session history",
    "Auto-recovery triggered if enabled",
)
WARNING_RECOMMENDATIONS: tuple[str, ...] = (
    "Tool call mismatch detected",
    "Monitoring for recurring errors",
)


def _session_recovery_steps(session_key: str) -> list[RecoveryStep]:
    return [
        RecoveryStep(
            step=1,
            action="pause_agent",
            description="Pause the affected agent to prevent further corruption",
        ),
        RecoveryStep(
            step=2,
            action="export_context",
            description="Export current session context for debugging (optional)",
            optional=True,
        ),
        RecoveryStep(
            step=3,
            action="clear_session",
            description="Clear the session history to reset context",
            command=f"POST /sessions/health {{session_key: '{session_key}', action: 'clear'}}",
        ),
        RecoveryStep(
            step=4,
            action="resume_agent",
            description="Resume the agent with fresh context",
        ),
        RecoveryStep(
            step=5,
            action="verify_health",
            description="Verify session health after recovery",
            command=f"GET /sessions/health/{session_key}",
        ),
    ]


class SessionHealthStore:
    """In-memory SessionHealthRecords with per-session locking."""

    def __init__(self) -> None:
        self._records: dict[str, SessionHealthRecord] = {}
        self._locks = KeyedLocks()
        self._lock = threading.Lock()

    @contextmanager
    def transaction(self, session_key: str, now: datetime) -> Iterator[SessionHealthRecord]:
        """Yield the session's record for read-modify-write, creating it if absent."""
        with self._locks.hold(session_key):
            record = self.get_or_create(session_key, now)
            yield record

    def get_or_create(self, session_key: str, now: datetime) -> SessionHealthRecord:
        with self._lock:
            record = self._records.get(session_key)
            if record is None:
                record = SessionHealthRecord(session_key=session_key, status="healthy", last_activity_at=now)
                self._records[session_key] = record
                logger.debug("Tracking session '%s'", session_key)
            return record

    def get(self, session_key: str) -> SessionHealthRecord | None:
        with self._locks.hold(session_key):
            record = self._records.get(session_key)
            return record.model_copy(deep=True) if record else None

    def delete(self, session_key: str) -> bool:
        with self._locks.hold(session_key), self._lock:
            removed = self._records.pop(session_key, None) is not None
        return removed

    def all(self) -> list[SessionHealthRecord]:
        with self._lock:
            keys = list(self._records)
        records = [self.get(key) for key in keys]
        return [r for r in records if r is not None]


class RecoveryOrchestrator:
    """Session health state machine, integrity checks, and recovery plans."""

    def __init__(
        self,
        store: SessionHealthStore,
        *,
        audit: AuditSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock or (lambda: datetime.now(UTC))

    # ------------------------------------------------------------------
    # Session health lifecycle
    # ------------------------------------------------------------------

    def apply(self, session_key: str, action: str, error: str | None = None) -> SessionHealthUpdate:
        """Dispatch a session health action.

        Raises:
            ValueError: If the session key is blank or the action is unknown.
        """
        if not session_key.strip():
            msg = "session_key required"
            raise ValueError(msg)
        if action == "report_error":
            return self.report_error(session_key, error or "")
        if action == "clear":
            return self.clear(session_key)
        if action == "heartbeat":
            return self.heartbeat(session_key)
        msg = f"Invalid action. Use: {', '.join(SESSION_ACTIONS)}"
        raise ValueError(msg)

    def report_error(self, session_key: str, error_text: str) -> SessionHealthUpdate:
        now = self._clock()
        analysis = analyze_error_message(error_text)
        escalated = False

        with self._store.transaction(session_key, now) as record:
            record.error_count += 1
            record.last_error = error_text
            record.last_activity_at = now

            if analysis.is_corruption:
                record.tool_mismatch_count += 1
                if record.tool_mismatch_count >= CORRUPTION_ESCALATION_THRESHOLD:
                    escalated = record.status != "corrupted"
                    record.status = "corrupted"
                    record.recommendations = list(CORRUPTED_RECOMMENDATIONS)
                else:
                    record.status = "warning"
                    record.recommendations = list(WARNING_RECOMMENDATIONS)
            snapshot = record.model_copy(deep=True)

        SESSION_ERRORS_TOTAL.labels(corruption=str(analysis.is_corruption).lower()).inc()
        if analysis.is_corruption:
            logger.warning(
                "Session '%s' reported %s (%d/%d)",
                session_key,
                analysis.error_type,
                snapshot.tool_mismatch_count,
                CORRUPTION_ESCALATION_THRESHOLD,
            )
        if analysis.is_corruption and snapshot.status == "corrupted":
            if escalated:
                SESSION_CORRUPTIONS_TOTAL.inc()
            self._emit(
                "session_corruption_detected",
                {"session_key": session_key, "error_count": snapshot.tool_mismatch_count},
            )

        return SessionHealthUpdate(session=snapshot, auto_recovery_triggered=snapshot.status == "corrupted")

    def clear(self, session_key: str) -> SessionHealthUpdate:
        """Reset a session after recovery, whatever its prior state."""
        now = self._clock()
        with self._store.transaction(session_key, now) as record:
            record.error_count = 0
            record.last_error = None
            record.tool_mismatch_count = 0
            record.status = "healthy"
            record.recommendations = []
            record.last_activity_at = now
            snapshot = record.model_copy(deep=True)

        logger.info("Session '%s' cleared", session_key)
        self._emit("session_cleared", {"session_key": session_key})
        return SessionHealthUpdate(session=snapshot, auto_recovery_triggered=False)

    def heartbeat(self, session_key: str) -> SessionHealthUpdate:
        now = self._clock()
        with self._store.transaction(session_key, now) as record:
            record.last_activity_at = now
            if record.error_count == 0:
                record.status = "healthy"
            snapshot = record.model_copy(deep=True)
        return SessionHealthUpdate(session=snapshot, auto_recovery_triggered=snapshot.status == "corrupted")

    def get(self, session_key: str) -> SessionHealthRecord:
        """The session's record, or an ``unknown`` placeholder for untracked sessions."""
        record = self._store.get(session_key)
        if record is None:
            return SessionHealthRecord(session_key=session_key, status="unknown")
        return record

    def delete(self, session_key: str) -> bool:
        removed = self._store.delete(session_key)
        if removed:
            logger.info("Session '%s' removed from health tracking", session_key)
        return removed

    def overview(self) -> tuple[SessionHealthSummary, list[SessionHealthRecord]]:
        records = self._store.all()
        statuses = [r.status for r in records]
        summary = SessionHealthSummary(
            total=len(records),
            healthy=statuses.count("healthy"),
            warning=statuses.count("warning"),
            corrupted=statuses.count("corrupted"),
            unknown=statuses.count("unknown"),
        )
        return summary, records

    # ------------------------------------------------------------------
    # Integrity checks (audited wrappers around the pure validators)
    # ------------------------------------------------------------------

    def validate(
        self,
        calls: Sequence[ToolCall],
        results: Sequence[ToolResult],
        session_key: str | None = None,
    ) -> ValidationVerdict:
        verdict = validate_tool_pairs(calls, results)
        VALIDATIONS_TOTAL.labels(recommendation=verdict.recommendation).inc()
        if not verdict.valid:
            self._emit(
                "validation_failed",
                {"session_key": session_key, "errors": verdict.errors, "recommendation": verdict.recommendation},
            )
        return verdict

    def analyze(self, error_message: str, session_key: str | None = None) -> ErrorAnalysis:
        analysis = analyze_error_message(error_message)
        if analysis.is_corruption:
            self._emit(
                "corruption_detected",
                {"session_key": session_key, "error_type": analysis.error_type, "confidence": analysis.confidence},
            )
        return analysis

    # ------------------------------------------------------------------
    # Recovery plans
    # ------------------------------------------------------------------

    def get_recovery_steps(self) -> list[RecoveryStep]:
        """The fixed, ordered 5-step plan for a corrupted session."""
        return _session_recovery_steps("<session_key>")

    def plan_for_verdict(self, verdict: ValidationVerdict, session_key: str) -> list[RecoveryStep]:
        if verdict.recommendation == "clear_session":
            return _session_recovery_steps(session_key)
        if verdict.recommendation == "warn":
            return [
                RecoveryStep(
                    step=1,
                    action="verify_health",
                    description="Re-validate tool pairs once pending tool calls complete",
                    command=f"GET /sessions/health/{session_key}",
                )
            ]
        return []

    def plan_for_unit(self, unit: UnitHealth) -> list[RecoveryStep]:
        """Steps to bring a terminally failed unit back under monitoring."""
        if unit.state != "failed":
            return []
        agent = unit.assignee or "the assigned agent"
        return [
            RecoveryStep(
                step=1,
                action="pause_agent",
                description=f"Pause {agent} so the stalled attempt stops consuming work",
            ),
            RecoveryStep(
                step=2,
                action="reset_watchdog",
                description=f"Reset watchdog state for {unit.unit_id} (retries {unit.retry_count}/{unit.max_retries})",
                command=f"POST /watchdog/reset/{unit.unit_id}",
            ),
            RecoveryStep(
                step=3,
                action="resume_agent",
                description=f"Resume {agent} on {unit.unit_id}",
            ),
            RecoveryStep(
                step=4,
                action="verify_health",
                description="Confirm heartbeats are arriving again",
                command=f"GET /watchdog/health/{unit.unit_id}",
            ),
        ]

    def _emit(self, event: str, details: dict[str, object]) -> None:
        if self._audit is not None:
            self._audit.emit("auto-recovery", event, details)
