"""Progress events emitted by the agent loop, the tool registry and the tool
executor, and their translation into persisted job log entries."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

EventType = Literal["thinking", "tool_call", "tool_result", "response", "error", "complete"]


@dataclass(frozen=True)
class ProgressEvent:
    type: EventType
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


ProgressCallback = Callable[[ProgressEvent], None]

_LOG_STATUS = {
    "thinking": "info",
    "tool_call": "loading",
    "tool_result": "complete",
    "response": "loading",
    "error": "error",
    "complete": "complete",
}


def _step_name(event: ProgressEvent) -> str:
    tool = event.data.get("tool")
    if event.type == "thinking":
        return "agent-thinking"
    if event.type == "tool_call":
        return f"tool-call-{tool}"
    if event.type == "tool_result":
        return f"tool-result-{tool}"
    if event.type == "response":
        return "agent-response"
    if event.type == "error":
        return "agent-error"
    return "agent-complete"


def log_entry(
    step: str,
    message: str,
    status: str,
    data: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    """One JSON-serializable job log entry."""
    return {
        "step": step,
        "message": message,
        "status": status,
        "data": data or {},
        "timestamp": (timestamp or datetime.now(UTC)).isoformat(),
    }


def log_entry_from_event(event: ProgressEvent) -> dict[str, Any]:
    status = _LOG_STATUS[event.type]
    # A tool result that carries an error is logged as an error, not a completion.
    if event.type == "tool_result" and event.data.get("status") == "error":
        status = "error"
    return log_entry(_step_name(event), event.message, status, event.data, event.timestamp)
