"""Core enums shared by the engine, adapters and persisted models.

Single source of truth to avoid circular imports; shared/models
re-exports what the conversation dataclasses need.
"""
from __future__ import annotations

import time
from enum import Enum


class ToolCallStatus(str, Enum):
    """Tool call lifecycle states. See lifecycle.py for transition rules."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ERROR = "error"


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ThinkingLevel(str, Enum):
    """Reasoning effort requested from the model."""
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    def to_agent(self) -> str:
        """Map to the agent runtime's vocabulary ("off" instead of "none")."""
        return "off" if self is ThinkingLevel.NONE else self.value


# A turn whose final message stops with one of these is discarded from
# the transcript.
FAILED_STOP_REASONS = frozenset({"error", "aborted"})


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds, the unit used for all timestamps."""
    return int(time.time() * 1000)
