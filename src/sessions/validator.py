"""Session integrity checks for tool-call / tool-result history.

A conversation whose tool results no longer line up with the model's tool
calls is rejected by the backend on every subsequent request. The functions
here are pure and cheap, so request handlers call them inline.
"""

import re
from collections.abc import Sequence
from typing import Any

from langchain_core.messages import AIMessage, ToolMessage

from src.sessions.models import ErrorAnalysis, ToolCall, ToolPairMismatch, ToolResult, ValidationVerdict

# More than this many positional mismatches is treated as systemic corruption.
MISMATCH_TOLERANCE = 2

# Ordered (pattern, error type, confidence). The first match wins, so order is
# part of the contract.
CORRUPTION_SIGNATURES: tuple[tuple[re.Pattern[str], str, float], ...] = (
    (re.compile(r"tool_use_id.*mismatch", re.IGNORECASE), "tool_use_id_mismatch", 0.95),
    (re.compile(r"invalid tool_result", re.IGNORECASE), "invalid_tool_result", 0.9),
    (re.compile(r"unexpected tool_use block", re.IGNORECASE), "unexpected_tool_use", 0.9),
    (re.compile(r"context.*corrupt", re.IGNORECASE), "context_corruption", 0.85),
    (re.compile(r"message.*history.*invalid", re.IGNORECASE), "history_invalid", 0.8),
    (re.compile(r"tool_result.*without.*tool_use", re.IGNORECASE), "orphaned_result", 0.95),
    # OpenAI: "An assistant message with 'tool_calls' must be followed by tool messages ..."
    (re.compile(r"tool_calls.*tool messages", re.IGNORECASE), "orphaned_tool_calls", 0.9),
)


def validate_tool_pairs(calls: Sequence[ToolCall], results: Sequence[ToolResult]) -> ValidationVerdict:
    """Check that every tool result references a real call and that the sequences line up.

    An unanswered call is only a warning (it may still be running). A result
    for an unknown call is an error and invalidates the batch. Positional
    mismatches model ordering desync even when every id exists on both sides.
    """
    verdict = ValidationVerdict()

    call_ids = {c.id for c in calls}
    result_ids = {r.tool_use_id for r in results}

    for call in calls:
        if call.id not in result_ids:
            verdict.orphaned_calls.append(call.id)
            verdict.warnings.append(f"Tool call '{call.name}' ({call.id}) has no result")

    for result in results:
        if result.tool_use_id not in call_ids:
            verdict.orphaned_results.append(result.tool_use_id)
            verdict.errors.append(f"Tool result references unknown call: {result.tool_use_id}")
            verdict.valid = False

    for call, result in zip(calls, results, strict=False):
        if call.id != result.tool_use_id:
            verdict.mismatches.append(ToolPairMismatch(call_id=call.id, result_id=result.tool_use_id))

    if verdict.errors or len(verdict.mismatches) > MISMATCH_TOLERANCE:
        verdict.recommendation = "clear_session"
    elif verdict.warnings or verdict.mismatches:
        verdict.recommendation = "warn"

    return verdict


def analyze_error_message(text: str) -> ErrorAnalysis:
    """Classify a backend error message against the known corruption signatures."""
    for pattern, error_type, confidence in CORRUPTION_SIGNATURES:
        if pattern.search(text):
            return ErrorAnalysis(
                is_corruption=True,
                error_type=error_type,
                confidence=confidence,
                details=f"Detected {error_type} pattern in error message",
            )

    return ErrorAnalysis(
        is_corruption=False,
        error_type=None,
        confidence=0.0,
        details="No known corruption patterns detected",
    )


def is_corruption_error(exc: BaseException) -> bool:
    """Check if an exception was caused by corrupted tool-call history."""
    return analyze_error_message(str(exc)).is_corruption


def tool_pairs_from_messages(messages: Sequence[Any]) -> tuple[list[ToolCall], list[ToolResult]]:
    """Extract tool calls and results, in conversation order, from LangChain messages.

    Non-message items are skipped.
    """
    calls: list[ToolCall] = []
    results: list[ToolResult] = []
    for msg in messages:
        if isinstance(msg, AIMessage):
            for tc in msg.tool_calls:
                call_id = tc.get("id")
                if call_id:
                    calls.append(ToolCall(id=call_id, name=tc.get("name", "")))
        elif isinstance(msg, ToolMessage):
            results.append(ToolResult(tool_use_id=msg.tool_call_id, content=msg.content))
    return calls, results


def validate_message_history(messages: Sequence[Any]) -> ValidationVerdict:
    """Run ``validate_tool_pairs`` over a LangChain message history."""
    calls, results = tool_pairs_from_messages(messages)
    return validate_tool_pairs(calls, results)
