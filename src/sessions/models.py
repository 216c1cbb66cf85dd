"""Pydantic models for session integrity checks and session health records."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

SessionStatus = Literal["healthy", "warning", "corrupted", "unknown"]
Recommendation = Literal["ok", "warn", "clear_session"]
SessionAction = Literal["report_error", "clear", "heartbeat"]

SESSION_ACTIONS: tuple[SessionAction, ...] = ("report_error", "clear", "heartbeat")


class ToolCall(BaseModel):
    """A tool invocation requested by the model."""

    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    timestamp: str | None = None


class ToolResult(BaseModel):
    """A tool result sent back to the model, referencing its call by id."""

    model_config = ConfigDict(extra="ignore")

    tool_use_id: str
    content: object = None


class ToolPairMismatch(BaseModel):
    call_id: str
    result_id: str


class ValidationVerdict(BaseModel):
    """Outcome of checking a batch of tool calls against their results."""

    valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    mismatches: list[ToolPairMismatch] = Field(default_factory=list)
    orphaned_calls: list[str] = Field(default_factory=list)
    orphaned_results: list[str] = Field(default_factory=list)
    recommendation: Recommendation = "ok"


class ErrorAnalysis(BaseModel):
    """Result of matching a backend error message against corruption signatures."""

    is_corruption: bool
    error_type: str | None = None
    confidence: float = 0.0
    details: str


class SessionHealthRecord(BaseModel):
    """Health bookkeeping for one conversational session."""

    session_key: str
    status: SessionStatus = "healthy"
    error_count: int = 0
    last_error: str | None = None
    tool_mismatch_count: int = 0
    recommendations: list[str] = Field(default_factory=list)
    last_activity_at: datetime | None = None


class SessionHealthUpdate(BaseModel):
    """Response to a session health action."""

    session: SessionHealthRecord
    auto_recovery_triggered: bool


class SessionHealthSummary(BaseModel):
    total: int = 0
    healthy: int = 0
    warning: int = 0
    corrupted: int = 0
    unknown: int = 0


class RecoveryStep(BaseModel):
    """One advisory step of a recovery plan; executed by external collaborators."""

    step: int
    action: str
    description: str
    optional: bool = False
    command: str | None = None
