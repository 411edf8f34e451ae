"""Async event bus bridging agent listener callbacks to async consumers.

AgentRuntime delivers events through synchronous listeners. The EventBus
queues them so a consumer loop (TranscriptReconciler.consume_events) can
process them with ``async for``.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any

from gridchat.adapters.events import AgentEnd, AgentEvent, dict_to_event

logger = logging.getLogger(__name__)


class EventBus:
    """Async queue bridging agent callbacks to event consumers."""

    def __init__(self) -> None:
        # Unbounded: tool lifecycle events must never be dropped.
        self._queue: asyncio.Queue[AgentEvent] = asyncio.Queue()
        self._closed = False

    def _listener(self, event: AgentEvent | dict[str, Any]) -> None:
        if self._closed:
            return
        if isinstance(event, dict):
            event = dict_to_event(event)
        self._queue.put_nowait(event)
        if self._queue.qsize() % 5000 == 0:
            logger.warning("EventBus backlog at %d events", self._queue.qsize())

    def make_listener(self):
        """Return the listener to pass to AgentRuntime.subscribe."""
        return self._listener

    async def consume(self, until_agent_end: bool = True) -> AsyncIterator[AgentEvent]:
        """Yield events as they arrive. Stops on close() or after AgentEnd."""
        while not self._closed:
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            yield event
            if until_agent_end and isinstance(event, AgentEnd):
                break

    def close(self) -> None:
        """Stop the consumer loop permanently."""
        self._closed = True

    def reset(self) -> None:
        """Drain leftover events and re-open the bus for a new run."""
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
        self._closed = False
