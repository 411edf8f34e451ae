"""Turn and part models for the visible conversation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from gridchat.adapters.dirty_ranges import DirtyRange
from gridchat.engine.models import ToolCallStatus, TurnRole, now_ms


def make_turn_id(role: TurnRole, index: int, timestamp: int) -> str:
    """Turn ids depend only on list position and message timestamp, so
    replaying the same events always yields the same ids."""
    return f"{role.value}-{index}-{timestamp}"


@dataclass
class ImageAttachment:
    data: str  # base64
    mime_type: str

    def to_dict(self) -> dict[str, str]:
        return {"data": self.data, "mimeType": self.mime_type}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ImageAttachment:
        return cls(data=data.get("data", ""), mime_type=data.get("mimeType", "image/png"))


@dataclass
class TextPart:
    text: str


@dataclass
class ThinkingPart:
    thinking: str


@dataclass
class ToolCallPart:
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    # Display text; the dirty-range side channel is stripped out of it.
    result: str | None = None
    images: list[ImageAttachment] = field(default_factory=list)
    dirty_ranges: list[DirtyRange] | None = None


Part = Union[TextPart, ThinkingPart, ToolCallPart]


@dataclass
class Turn:
    id: str
    role: TurnRole
    parts: list[Part] = field(default_factory=list)
    timestamp: int = field(default_factory=now_ms)

    def tool_call(self, call_id: str) -> ToolCallPart | None:
        for part in self.parts:
            if isinstance(part, ToolCallPart) and part.id == call_id:
                return part
        return None

    def first_text(self) -> str | None:
        for part in self.parts:
            if isinstance(part, TextPart):
                return part.text
        return None


# ── Serialization ────────────────────────────────────────────────


def part_to_dict(part: Part) -> dict[str, Any]:
    if isinstance(part, TextPart):
        return {"type": "text", "text": part.text}
    if isinstance(part, ThinkingPart):
        return {"type": "thinking", "thinking": part.thinking}
    if isinstance(part, ToolCallPart):
        data: dict[str, Any] = {
            "type": "toolCall",
            "id": part.id,
            "name": part.name,
            "args": part.args,
            "status": part.status.value,
        }
        if part.result is not None:
            data["result"] = part.result
        if part.images:
            data["images"] = [img.to_dict() for img in part.images]
        if part.dirty_ranges:
            data["dirtyRanges"] = [r.to_wire() for r in part.dirty_ranges]
        return data
    raise TypeError(f"Unknown part type: {type(part).__name__}")


def part_from_dict(data: dict[str, Any]) -> Part:
    kind = data.get("type")
    if kind == "text":
        return TextPart(text=data.get("text", ""))
    if kind == "thinking":
        return ThinkingPart(thinking=data.get("thinking", ""))
    if kind == "toolCall":
        dirty = [
            DirtyRange(int(r["sheetId"]), str(r["range"]))
            for r in data.get("dirtyRanges") or []
        ]
        return ToolCallPart(
            id=data["id"],
            name=data.get("name", ""),
            args=data.get("args") or {},
            status=ToolCallStatus(data.get("status", "complete")),
            result=data.get("result"),
            images=[ImageAttachment.from_dict(img) for img in data.get("images") or []],
            dirty_ranges=dirty or None,
        )
    raise ValueError(f"Unknown part type: {kind!r}")


def turn_to_dict(turn: Turn) -> dict[str, Any]:
    return {
        "id": turn.id,
        "role": turn.role.value,
        "parts": [part_to_dict(p) for p in turn.parts],
        "timestamp": turn.timestamp,
    }


def turn_from_dict(data: dict[str, Any]) -> Turn:
    return Turn(
        id=data["id"],
        role=TurnRole(data["role"]),
        parts=[part_from_dict(p) for p in data.get("parts") or []],
        timestamp=int(data.get("timestamp") or 0),
    )
