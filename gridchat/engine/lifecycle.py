"""Tool call lifecycle state machine.

Defines valid transitions and enforces them. Invalid transitions
raise ValueError rather than silently proceeding.

State Diagram:

    PENDING ──> RUNNING ──┬──> COMPLETE
                          │
                          └──> ERROR

Calls restored from persisted history are created directly in their
terminal state and never transition again.
"""
from __future__ import annotations

from .models import ToolCallStatus

VALID_TRANSITIONS: dict[ToolCallStatus, set[ToolCallStatus]] = {
    ToolCallStatus.PENDING: {
        ToolCallStatus.RUNNING,
    },
    ToolCallStatus.RUNNING: {
        ToolCallStatus.COMPLETE,
        ToolCallStatus.ERROR,
    },
    ToolCallStatus.COMPLETE: set(),
    ToolCallStatus.ERROR: set(),
}

TERMINAL_STATES = frozenset({ToolCallStatus.COMPLETE, ToolCallStatus.ERROR})


def can_transition(current: ToolCallStatus, target: ToolCallStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


def validate_transition(current: ToolCallStatus, target: ToolCallStatus) -> None:
    """Validate a state transition. Raises ValueError if invalid."""
    if not can_transition(current, target):
        allowed = VALID_TRANSITIONS.get(current, set())
        allowed_str = ", ".join(s.value for s in allowed) or "none (terminal)"
        raise ValueError(
            f"Invalid tool call transition: {current.value} -> {target.value}. "
            f"Allowed from {current.value}: {allowed_str}"
        )
