"""Transcript reconciler.

Consumes agent lifecycle events in arrival order and maintains the
visible conversation: one Turn per user message or assistant response,
with tool call parts moved through their lifecycle by the tool tracker.

At most one assistant turn is streaming at a time. When its message
ends, commit_turn either finalizes it (adding usage to the running
stats) or, for failed and aborted responses, removes it so no partial
turn survives in history.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Sequence

from gridchat.adapters.events import (
    AgentEnd,
    AgentEvent,
    AgentStart,
    AssistantMessage,
    MessageEnd,
    MessageStart,
    MessageUpdate,
    ToolExecutionEnd,
    ToolExecutionStart,
    ToolExecutionUpdate,
)
from gridchat.adapters.tool_tracker import ToolLifecycleTracker
from gridchat.engine.models import FAILED_STOP_REASONS, TurnRole, now_ms
from gridchat.shared.models.message import TextPart, Turn, make_turn_id
from gridchat.shared.models.session import SessionStats
from gridchat.shared.services.history import extract_parts

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "An error occurred"


class TranscriptReconciler:
    """Owns the turn list while a stream is running."""

    def __init__(self, tracker: ToolLifecycleTracker | None = None) -> None:
        self.tracker = tracker or ToolLifecycleTracker()
        self.turns: list[Turn] = []
        self.stats = SessionStats()
        self.last_error: str | None = None
        self.streaming_turn_id: str | None = None

        # Per-stream flags, cleared by begin_stream()
        self.stream_discarded = False
        self.agent_ended = False

    # ── Stream bookkeeping ──

    def begin_stream(self) -> None:
        self.stream_discarded = False
        self.agent_ended = False

    @property
    def stream_completed_cleanly(self) -> bool:
        """True once the current stream ended without discarding a turn."""
        return self.agent_ended and not self.stream_discarded

    def _streaming_turn(self) -> Turn | None:
        if self.streaming_turn_id is None:
            return None
        for turn in reversed(self.turns):
            if turn.id == self.streaming_turn_id:
                return turn
        return None

    def _allocate_turn(self, message: AssistantMessage) -> Turn:
        turn = Turn(
            id=make_turn_id(TurnRole.ASSISTANT, len(self.turns), message.timestamp),
            role=TurnRole.ASSISTANT,
            parts=extract_parts(message),
            timestamp=message.timestamp,
        )
        self.turns.append(turn)
        self.streaming_turn_id = turn.id
        return turn

    # ── Public mutations ──

    def add_user_turn(self, text: str, timestamp: int | None = None) -> Turn:
        ts = now_ms() if timestamp is None else timestamp
        turn = Turn(
            id=make_turn_id(TurnRole.USER, len(self.turns), ts),
            role=TurnRole.USER,
            parts=[TextPart(text=text)],
            timestamp=ts,
        )
        self.turns.append(turn)
        return turn

    def commit_turn(self, message: AssistantMessage, success: bool) -> Turn | None:
        """Close the streaming turn.

        On failure the turn is removed and the failure recorded; on
        success its parts are finalized and its usage added to stats.
        Returns the committed turn, or None if it was discarded.
        """
        turn = self._streaming_turn()
        self.streaming_turn_id = None

        if not success:
            if turn is not None:
                self.turns.remove(turn)
            self.stream_discarded = True
            if message.stop_reason == "error":
                self.last_error = message.error_message or DEFAULT_ERROR_MESSAGE
            else:
                self.last_error = message.error_message
            logger.info(
                "Discarded assistant turn (stop_reason=%s): %s",
                message.stop_reason, message.error_message or "-",
            )
            return None

        if turn is None:
            logger.warning("message_end without a streaming turn; appending it")
            turn = self._allocate_turn(message)
            self.streaming_turn_id = None
        else:
            turn.parts = extract_parts(message, turn.parts)

        u = message.usage
        self.stats.add_usage(u.input, u.output, u.cache_read, u.cache_write, u.cost_total)
        logger.debug(
            "Committed turn %s: in=%d out=%d cache_read=%d cache_write=%d cost=%.6f",
            turn.id, u.input, u.output, u.cache_read, u.cache_write, u.cost_total,
        )
        return turn

    def discard_streaming_turn(self) -> bool:
        """Roll back the in-progress turn after an abort."""
        self.stream_discarded = True
        turn = self._streaming_turn()
        self.streaming_turn_id = None
        if turn is None:
            return False
        self.turns.remove(turn)
        logger.info("Rolled back streaming turn %s", turn.id)
        return True

    def load(self, turns: Sequence[Turn], stats: SessionStats | None = None) -> None:
        """Replace the visible conversation (session restore)."""
        self.turns = list(turns)
        self.streaming_turn_id = None
        self.last_error = None
        if stats is not None:
            stats.context_window = self.stats.context_window
            self.stats = stats

    def reset(self) -> None:
        self.turns = []
        self.streaming_turn_id = None
        self.last_error = None
        self.stats = SessionStats(context_window=self.stats.context_window)

    # ── Event handling ──

    def handle_event(self, event: AgentEvent) -> None:
        """Apply one lifecycle event."""
        if isinstance(event, MessageStart):
            self._handle_message_start(event)
        elif isinstance(event, MessageUpdate):
            self._handle_message_update(event)
        elif isinstance(event, MessageEnd):
            self._handle_message_end(event)
        elif isinstance(event, ToolExecutionStart):
            self.tracker.start(self.turns, event.tool_call_id)
        elif isinstance(event, ToolExecutionUpdate):
            self.tracker.update(self.turns, event.tool_call_id, event.partial_result)
        elif isinstance(event, ToolExecutionEnd):
            self.tracker.end(self.turns, event.tool_call_id, event.result, event.is_error)
        elif isinstance(event, AgentEnd):
            self.streaming_turn_id = None
            self.agent_ended = True
        elif isinstance(event, AgentStart):
            pass
        else:
            logger.debug("Ignoring unknown event: %s", event.event_type)

    async def consume_events(self, events: AsyncIterator[AgentEvent]) -> None:
        """Drain *events* until AgentEnd or exhaustion."""
        async for event in events:
            try:
                self.handle_event(event)
            except Exception:
                logger.exception("Error processing event: %s", event.event_type)
            if isinstance(event, AgentEnd):
                break

    def _handle_message_start(self, event: MessageStart) -> None:
        message = event.message
        if not isinstance(message, AssistantMessage):
            return
        if self.streaming_turn_id is not None:
            logger.warning(
                "message_start while turn %s is still streaming; closing it",
                self.streaming_turn_id,
            )
        self._allocate_turn(message)

    def _handle_message_update(self, event: MessageUpdate) -> None:
        message = event.message
        if not isinstance(message, AssistantMessage):
            return
        turn = self._streaming_turn()
        if turn is None:
            return
        turn.parts = extract_parts(message, turn.parts)

    def _handle_message_end(self, event: MessageEnd) -> None:
        message = event.message
        if not isinstance(message, AssistantMessage):
            return
        self.commit_turn(message, success=message.stop_reason not in FAILED_STOP_REASONS)
