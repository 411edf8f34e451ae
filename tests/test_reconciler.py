from __future__ import annotations

import json

import pytest

from gridchat.adapters.event_bus import EventBus
from gridchat.adapters.events import (
    AgentEnd,
    AgentStart,
    AssistantMessage,
    MessageEnd,
    MessageStart,
    MessageUpdate,
    TextContent,
    ThinkingContent,
    ToolCallContent,
    ToolExecutionEnd,
    ToolExecutionStart,
    ToolExecutionUpdate,
    ToolResultMessage,
    Usage,
)
from gridchat.adapters.dirty_ranges import DirtyRange
from gridchat.engine.models import ToolCallStatus, TurnRole
from gridchat.handlers.reconciler import DEFAULT_ERROR_MESSAGE, TranscriptReconciler
from gridchat.shared.models.message import TextPart, ThinkingPart, ToolCallPart, turn_to_dict


def _tool_use_message(**kwargs) -> AssistantMessage:
    return AssistantMessage(
        content=[
            ThinkingContent(thinking="need to write"),
            ToolCallContent(id="t1", name="write_cells", arguments={"range": "A1"}),
        ],
        usage=Usage(input=10, output=5, cache_read=2, cache_write=1, cost_total=0.5),
        stop_reason="toolUse",
        timestamp=100,
        **kwargs,
    )


def _final_message() -> AssistantMessage:
    return AssistantMessage(
        content=[TextContent(text="Done.")],
        usage=Usage(input=20, output=3, cost_total=0.25),
        stop_reason="stop",
        timestamp=200,
    )


def _tool_run_events() -> list:
    partial = AssistantMessage(content=[ThinkingContent(thinking="need")], timestamp=100)
    tool_result = json.dumps({"success": True, "_dirtyRanges": [{"sheetId": 1, "range": "A1"}]})
    return [
        AgentStart(),
        MessageStart(message=partial),
        MessageUpdate(message=_tool_use_message()),
        MessageEnd(message=_tool_use_message()),
        ToolExecutionStart(tool_call_id="t1", tool_name="write_cells"),
        ToolExecutionUpdate(tool_call_id="t1", partial_result="half way"),
        ToolExecutionEnd(tool_call_id="t1", result=tool_result),
        MessageStart(message=ToolResultMessage(tool_call_id="t1", timestamp=150)),
        MessageEnd(message=ToolResultMessage(tool_call_id="t1", timestamp=150)),
        MessageStart(message=AssistantMessage(timestamp=200)),
        MessageUpdate(message=AssistantMessage(content=[TextContent(text="Do")], timestamp=200)),
        MessageEnd(message=_final_message()),
        AgentEnd(),
    ]


def _replay(events) -> TranscriptReconciler:
    reconciler = TranscriptReconciler()
    reconciler.add_user_turn("fill A1", timestamp=50)
    reconciler.begin_stream()
    for event in events:
        reconciler.handle_event(event)
    return reconciler


def test_full_run_builds_expected_turns() -> None:
    reconciler = _replay(_tool_run_events())

    assert [t.id for t in reconciler.turns] == ["user-0-50", "assistant-1-100", "assistant-2-200"]
    tool_turn = reconciler.turns[1]
    assert isinstance(tool_turn.parts[0], ThinkingPart)
    call = tool_turn.parts[1]
    assert isinstance(call, ToolCallPart)
    assert call.status is ToolCallStatus.COMPLETE
    assert json.loads(call.result) == {"success": True}
    assert call.dirty_ranges == [DirtyRange(1, "A1")]
    assert reconciler.turns[2].parts == [TextPart(text="Done.")]
    assert reconciler.streaming_turn_id is None
    assert reconciler.stream_completed_cleanly


def test_replay_is_deterministic() -> None:
    first = _replay(_tool_run_events())
    second = _replay(_tool_run_events())
    assert [turn_to_dict(t) for t in first.turns] == [turn_to_dict(t) for t in second.turns]


def test_stats_accumulate_per_committed_turn() -> None:
    reconciler = _replay(_tool_run_events())
    stats = reconciler.stats
    assert stats.input_tokens == 30
    assert stats.output_tokens == 8
    assert stats.cache_read == 2
    assert stats.cache_write == 1
    assert stats.total_cost == pytest.approx(0.75)
    assert stats.last_input_tokens == 20


def test_streamed_update_keeps_running_tool_status() -> None:
    reconciler = TranscriptReconciler()
    reconciler.handle_event(MessageStart(message=_tool_use_message()))
    reconciler.handle_event(ToolExecutionStart(tool_call_id="t1"))
    reconciler.handle_event(MessageUpdate(message=_tool_use_message()))

    call = reconciler.turns[0].parts[1]
    assert call.status is ToolCallStatus.RUNNING


def test_error_stop_discards_turn_and_records_message() -> None:
    reconciler = TranscriptReconciler()
    reconciler.add_user_turn("hi", timestamp=1)
    reconciler.begin_stream()
    reconciler.handle_event(MessageStart(message=AssistantMessage(timestamp=2)))
    reconciler.handle_event(MessageEnd(message=AssistantMessage(
        content=[TextContent(text="partial")],
        usage=Usage(input=99),
        stop_reason="error",
        error_message="rate limited",
        timestamp=2,
    )))
    reconciler.handle_event(AgentEnd())

    assert [t.role for t in reconciler.turns] == [TurnRole.USER]
    assert reconciler.last_error == "rate limited"
    assert reconciler.stream_discarded
    assert not reconciler.stream_completed_cleanly
    assert reconciler.stats.input_tokens == 0


def test_error_stop_without_message_uses_default() -> None:
    reconciler = TranscriptReconciler()
    reconciler.handle_event(MessageStart(message=AssistantMessage(timestamp=2)))
    reconciler.handle_event(MessageEnd(message=AssistantMessage(stop_reason="error", timestamp=2)))
    assert reconciler.last_error == DEFAULT_ERROR_MESSAGE
    assert reconciler.turns == []


def test_aborted_stop_discards_turn_quietly() -> None:
    reconciler = TranscriptReconciler()
    reconciler.handle_event(MessageStart(message=AssistantMessage(timestamp=2)))
    reconciler.handle_event(MessageEnd(message=AssistantMessage(stop_reason="aborted", timestamp=2)))
    assert reconciler.turns == []
    assert reconciler.last_error is None
    assert reconciler.stream_discarded


def test_message_end_without_start_appends_turn() -> None:
    reconciler = TranscriptReconciler()
    reconciler.handle_event(MessageEnd(message=_final_message()))
    assert [t.id for t in reconciler.turns] == ["assistant-0-200"]
    assert reconciler.stats.output_tokens == 3


def test_discard_streaming_turn_rolls_back() -> None:
    reconciler = TranscriptReconciler()
    reconciler.add_user_turn("hi", timestamp=1)
    reconciler.handle_event(MessageStart(message=AssistantMessage(timestamp=2)))
    assert reconciler.discard_streaming_turn() is True
    assert len(reconciler.turns) == 1
    assert reconciler.discard_streaming_turn() is False


def test_reset_keeps_context_window() -> None:
    reconciler = TranscriptReconciler()
    reconciler.stats.context_window = 200_000
    reconciler.add_user_turn("hi")
    reconciler.reset()
    assert reconciler.turns == []
    assert reconciler.stats.context_window == 200_000


@pytest.mark.asyncio
async def test_consume_events_from_bus_dicts() -> None:
    bus = EventBus()
    listener = bus.make_listener()
    listener({"event": "agent_start"})
    listener({
        "event": "message_start",
        "message": {"role": "assistant", "content": [], "timestamp": 7},
    })
    listener({
        "type": "message_end",
        "message": {
            "role": "assistant",
            "content": [{"type": "text", "text": "hello"}],
            "usage": {"input": 4, "output": 2, "cost": {"total": 0.01}},
            "stopReason": "stop",
            "timestamp": 7,
        },
    })
    listener({"event": "agent_end"})
    listener({"event": "agent_start"})

    reconciler = TranscriptReconciler()
    reconciler.begin_stream()
    await reconciler.consume_events(bus.consume())

    assert [t.id for t in reconciler.turns] == ["assistant-0-7"]
    assert reconciler.turns[0].first_text() == "hello"
    assert reconciler.stats.output_tokens == 2
    assert reconciler.agent_ended
