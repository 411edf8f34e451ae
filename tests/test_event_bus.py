from __future__ import annotations

import pytest

from gridchat.adapters.event_bus import EventBus
from gridchat.adapters.events import (
    AgentEnd,
    AgentStart,
    AssistantMessage,
    MessageEnd,
    MessageStart,
    ToolCallContent,
    ToolExecutionEnd,
    ToolExecutionStart,
    ToolExecutionUpdate,
)
from gridchat.engine.models import ToolCallStatus
from gridchat.handlers.reconciler import TranscriptReconciler
from gridchat.shared.models.message import ToolCallPart


def _tool_use_message() -> AssistantMessage:
    return AssistantMessage(
        content=[ToolCallContent(id="t1", name="write_cells", arguments={"range": "A1"})],
        stop_reason="toolUse",
        timestamp=100,
    )


@pytest.mark.asyncio
async def test_flooded_bus_delivers_every_event_in_order() -> None:
    bus = EventBus()
    listener = bus.make_listener()
    listener(AgentStart())
    for i in range(12_000):
        listener(ToolExecutionUpdate(tool_call_id="t1", tool_name="write_cells", partial_result=i))
    listener(ToolExecutionEnd(tool_call_id="t1", tool_name="write_cells", result="ok"))
    listener(AgentEnd())

    seen = [event async for event in bus.consume()]

    assert len(seen) == 12_003
    updates = [e.partial_result for e in seen if isinstance(e, ToolExecutionUpdate)]
    assert updates == list(range(12_000))
    assert isinstance(seen[-2], ToolExecutionEnd)


@pytest.mark.asyncio
async def test_flooded_bus_still_completes_tool_calls() -> None:
    bus = EventBus()
    listener = bus.make_listener()
    listener(AgentStart())
    listener(MessageStart(message=_tool_use_message()))
    listener(MessageEnd(message=_tool_use_message()))
    listener(ToolExecutionStart(tool_call_id="t1", tool_name="write_cells"))
    for i in range(6_000):
        listener(ToolExecutionUpdate(tool_call_id="t1", partial_result=i))
    listener(ToolExecutionEnd(tool_call_id="t1", result="done"))
    listener(AgentEnd())

    reconciler = TranscriptReconciler()
    reconciler.begin_stream()
    await reconciler.consume_events(bus.consume())

    call = reconciler.turns[0].parts[0]
    assert isinstance(call, ToolCallPart)
    assert call.status is ToolCallStatus.COMPLETE


@pytest.mark.asyncio
async def test_reset_drains_and_reopens() -> None:
    bus = EventBus()
    listener = bus.make_listener()
    listener(AgentStart())
    bus.close()
    listener(AgentEnd())

    bus.reset()
    listener(AgentEnd())
    seen = [event async for event in bus.consume()]
    assert [type(e) for e in seen] == [AgentEnd]
