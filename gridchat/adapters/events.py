"""Agent messages and lifecycle events.

The agent runtime reports each run as an ordered sequence of events,
parsed into typed dataclasses for safe consumption by the reconciler.
Messages use the runtime's camelCase dict shape on the wire and in the
persisted agent context.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from gridchat.engine.models import now_ms


# ── Content blocks ───────────────────────────────────────────────


@dataclass
class TextContent:
    text: str = ""


@dataclass
class ThinkingContent:
    thinking: str = ""


@dataclass
class ToolCallContent:
    id: str = ""
    name: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class ImageContent:
    data: str = ""
    mime_type: str = "image/png"


AssistantBlock = Union[TextContent, ThinkingContent, ToolCallContent]
ContentBlock = Union[TextContent, ThinkingContent, ToolCallContent, ImageContent]


def block_to_dict(block: ContentBlock) -> dict[str, Any]:
    if isinstance(block, TextContent):
        return {"type": "text", "text": block.text}
    if isinstance(block, ThinkingContent):
        return {"type": "thinking", "thinking": block.thinking}
    if isinstance(block, ToolCallContent):
        return {"type": "toolCall", "id": block.id, "name": block.name, "arguments": block.arguments}
    if isinstance(block, ImageContent):
        return {"type": "image", "data": block.data, "mimeType": block.mime_type}
    raise TypeError(f"Unknown content block: {type(block).__name__}")


def block_from_dict(data: dict[str, Any]) -> ContentBlock:
    kind = data.get("type")
    if kind == "text":
        return TextContent(text=data.get("text", ""))
    if kind == "thinking":
        return ThinkingContent(thinking=data.get("thinking", ""))
    if kind == "toolCall":
        return ToolCallContent(
            id=data.get("id", ""),
            name=data.get("name", ""),
            arguments=data.get("arguments") or {},
        )
    if kind == "image":
        return ImageContent(data=data.get("data", ""), mime_type=data.get("mimeType", "image/png"))
    raise ValueError(f"Unknown content block type: {kind!r}")


# ── Messages ─────────────────────────────────────────────────────


@dataclass
class Usage:
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    cost_total: float = 0.0


@dataclass
class UserMessage:
    role: str = "user"
    # Plain text, or ordered text/image blocks.
    content: str | list[ContentBlock] = ""
    timestamp: int = field(default_factory=now_ms)


@dataclass
class AssistantMessage:
    role: str = "assistant"
    content: list[AssistantBlock] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    stop_reason: str = "stop"
    error_message: str | None = None
    timestamp: int = field(default_factory=now_ms)


@dataclass
class ToolResultMessage:
    role: str = "toolResult"
    tool_call_id: str = ""
    tool_name: str = ""
    content: list[ContentBlock] = field(default_factory=list)
    is_error: bool = False
    timestamp: int = field(default_factory=now_ms)


AgentMessage = Union[UserMessage, AssistantMessage, ToolResultMessage]


def message_to_dict(message: AgentMessage) -> dict[str, Any]:
    """Serialize an agent message for the persisted context."""
    if isinstance(message, UserMessage):
        content: Any = message.content
        if not isinstance(content, str):
            content = [block_to_dict(b) for b in content]
        return {"role": "user", "content": content, "timestamp": message.timestamp}
    if isinstance(message, AssistantMessage):
        data: dict[str, Any] = {
            "role": "assistant",
            "content": [block_to_dict(b) for b in message.content],
            "usage": {
                "input": message.usage.input,
                "output": message.usage.output,
                "cacheRead": message.usage.cache_read,
                "cacheWrite": message.usage.cache_write,
                "cost": {"total": message.usage.cost_total},
            },
            "stopReason": message.stop_reason,
            "timestamp": message.timestamp,
        }
        if message.error_message is not None:
            data["errorMessage"] = message.error_message
        return data
    if isinstance(message, ToolResultMessage):
        return {
            "role": "toolResult",
            "toolCallId": message.tool_call_id,
            "toolName": message.tool_name,
            "content": [block_to_dict(b) for b in message.content],
            "isError": message.is_error,
            "timestamp": message.timestamp,
        }
    raise TypeError(f"Unknown message type: {type(message).__name__}")


def message_from_dict(data: dict[str, Any]) -> AgentMessage:
    """Parse a persisted or streamed message dict. Raises ValueError on unknown roles."""
    role = data.get("role")
    timestamp = int(data.get("timestamp") or 0)
    if role == "user":
        content = data.get("content", "")
        if not isinstance(content, str):
            content = [block_from_dict(b) for b in content]
        return UserMessage(content=content, timestamp=timestamp)
    if role == "assistant":
        usage = data.get("usage") or {}
        cost = usage.get("cost") or {}
        blocks = [block_from_dict(b) for b in data.get("content") or []]
        return AssistantMessage(
            content=[b for b in blocks if not isinstance(b, ImageContent)],
            usage=Usage(
                input=int(usage.get("input", 0)),
                output=int(usage.get("output", 0)),
                cache_read=int(usage.get("cacheRead", 0)),
                cache_write=int(usage.get("cacheWrite", 0)),
                cost_total=float(cost.get("total", 0.0)),
            ),
            stop_reason=data.get("stopReason", "stop"),
            error_message=data.get("errorMessage"),
            timestamp=timestamp,
        )
    if role == "toolResult":
        return ToolResultMessage(
            tool_call_id=data.get("toolCallId", ""),
            tool_name=data.get("toolName", ""),
            content=[block_from_dict(b) for b in data.get("content") or []],
            is_error=bool(data.get("isError", False)),
            timestamp=timestamp,
        )
    raise ValueError(f"Unknown message role: {role!r}")


# ── Events ───────────────────────────────────────────────────────


@dataclass
class AgentEvent:
    """Base lifecycle event from the agent runtime."""
    event_type: str = ""


@dataclass
class AgentStart(AgentEvent):
    event_type: str = "agent_start"


@dataclass
class MessageStart(AgentEvent):
    event_type: str = "message_start"
    message: AgentMessage | None = None


@dataclass
class MessageUpdate(AgentEvent):
    """Carries the full content so far, not a delta."""
    event_type: str = "message_update"
    message: AgentMessage | None = None


@dataclass
class MessageEnd(AgentEvent):
    event_type: str = "message_end"
    message: AgentMessage | None = None


@dataclass
class ToolExecutionStart(AgentEvent):
    event_type: str = "tool_execution_start"
    tool_call_id: str = ""
    tool_name: str = ""
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolExecutionUpdate(AgentEvent):
    event_type: str = "tool_execution_update"
    tool_call_id: str = ""
    tool_name: str = ""
    partial_result: Any = None


@dataclass
class ToolExecutionEnd(AgentEvent):
    event_type: str = "tool_execution_end"
    tool_call_id: str = ""
    tool_name: str = ""
    result: Any = None
    is_error: bool = False


@dataclass
class AgentEnd(AgentEvent):
    event_type: str = "agent_end"


# Map of event type strings to dataclass constructors
_EVENT_MAP: dict[str, type[AgentEvent]] = {
    "agent_start": AgentStart,
    "message_start": MessageStart,
    "message_update": MessageUpdate,
    "message_end": MessageEnd,
    "tool_execution_start": ToolExecutionStart,
    "tool_execution_update": ToolExecutionUpdate,
    "tool_execution_end": ToolExecutionEnd,
    "agent_end": AgentEnd,
}

# camelCase wire keys for snake_case fields
_WIRE_KEYS = {
    "tool_call_id": "toolCallId",
    "tool_name": "toolName",
    "partial_result": "partialResult",
    "is_error": "isError",
}
_FIELD_KEYS = {v: k for k, v in _WIRE_KEYS.items()}


def event_to_dict(event: AgentEvent) -> dict[str, Any]:
    """Convert a typed event dataclass to a plain dict for JSON serialization."""
    d: dict[str, Any] = {}
    for f in event.__dataclass_fields__:
        val = getattr(event, f)
        if val is None:
            continue
        if f == "message":
            val = message_to_dict(val)
        d[_WIRE_KEYS.get(f, f)] = val
    # Use "event" key instead of "event_type" for consistency with runtime callbacks
    if "event_type" in d:
        d["event"] = d.pop("event_type")
    return d


def dict_to_event(data: dict[str, Any]) -> AgentEvent:
    """Convert a runtime callback dict to a typed event dataclass."""
    event_type = data.get("event") or data.get("type", "")
    cls = _EVENT_MAP.get(event_type, AgentEvent)
    # Filter dict keys to only those the dataclass accepts
    valid_fields = {f.name for f in cls.__dataclass_fields__.values()}
    filtered: dict[str, Any] = {}
    for key, value in data.items():
        name = _FIELD_KEYS.get(key, key)
        if name in valid_fields:
            filtered[name] = value
    if isinstance(filtered.get("message"), dict):
        filtered["message"] = message_from_dict(filtered["message"])
    filtered["event_type"] = event_type
    return cls(**filtered)
