from __future__ import annotations

import pytest

from gridchat.adapters.events import (
    AgentEvent,
    AssistantMessage,
    MessageEnd,
    TextContent,
    ToolExecutionEnd,
    Usage,
    dict_to_event,
    event_to_dict,
    message_from_dict,
)


def test_tool_end_uses_camel_case_keys() -> None:
    event = ToolExecutionEnd(tool_call_id="t1", tool_name="write", result="ok", is_error=True)
    data = event_to_dict(event)
    assert data == {
        "event": "tool_execution_end",
        "toolCallId": "t1",
        "toolName": "write",
        "result": "ok",
        "isError": True,
    }
    assert dict_to_event(data) == event


def test_message_event_parses_nested_message() -> None:
    event = MessageEnd(message=AssistantMessage(
        content=[TextContent(text="hi")],
        usage=Usage(input=3, cost_total=0.5),
        stop_reason="error",
        error_message="boom",
        timestamp=9,
    ))
    data = event_to_dict(event)
    assert data["message"]["stopReason"] == "error"
    assert data["message"]["usage"]["cost"] == {"total": 0.5}
    assert dict_to_event(data) == event


def test_unknown_event_type_falls_back_to_base() -> None:
    event = dict_to_event({"event": "compaction_start", "extra": 1})
    assert type(event) is AgentEvent
    assert event.event_type == "compaction_start"


def test_unknown_message_role_raises() -> None:
    with pytest.raises(ValueError):
        message_from_dict({"role": "system", "content": "x"})
