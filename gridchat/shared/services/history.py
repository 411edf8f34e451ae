"""Conversions between agent messages and the visible conversation."""
from __future__ import annotations

import json
import re
from collections.abc import Sequence
from typing import Any

from gridchat.adapters.dirty_ranges import parse_dirty_ranges, strip_side_channel
from gridchat.adapters.events import (
    AgentMessage,
    AssistantMessage,
    ImageContent,
    TextContent,
    ThinkingContent,
    ToolCallContent,
    ToolResultMessage,
    UserMessage,
)
from gridchat.engine.models import ToolCallStatus, TurnRole
from gridchat.shared.models.message import (
    ImageAttachment,
    Part,
    TextPart,
    ThinkingPart,
    ToolCallPart,
    Turn,
    make_turn_id,
)
from gridchat.shared.models.session import SessionStats

_ATTACHMENTS_PREFIX = re.compile(r"^<attachments>\n[\s\S]*?\n</attachments>\n\n")
_CONTEXT_PREFIX = re.compile(r"^<wb_context>\n[\s\S]*?\n</wb_context>\n\n")


def enrich_prompt(
    content: str,
    metadata: dict[str, Any] | None = None,
    attachments: Sequence[str] | None = None,
) -> str:
    """Prefix a user message with host metadata and uploaded file paths.

    The prefixes are for the model only; strip_enrichment removes them
    again when the conversation is rebuilt from agent context.
    """
    prompt = content
    if metadata is not None:
        prompt = f"<wb_context>\n{json.dumps(metadata, indent=2)}\n</wb_context>\n\n{prompt}"
    if attachments:
        listing = "\n".join(attachments)
        prompt = f"<attachments>\n{listing}\n</attachments>\n\n{prompt}"
    return prompt


def strip_enrichment(content: str | Sequence[Any]) -> str:
    if isinstance(content, str):
        text = content
    else:
        text = "\n".join(b.text for b in content if isinstance(b, TextContent))
    text = _ATTACHMENTS_PREFIX.sub("", text, count=1)
    text = _CONTEXT_PREFIX.sub("", text, count=1)
    return text


def extract_parts(message: AssistantMessage, existing_parts: Sequence[Part] = ()) -> list[Part]:
    """Rebuild a turn's parts from an assistant message's cumulative content.

    Text and thinking are replaced outright. Tool calls that already exist
    keep their status, result, images and dirty ranges, so a streamed
    update never resets a running call back to pending.
    """
    existing = {p.id: p for p in existing_parts if isinstance(p, ToolCallPart)}
    parts: list[Part] = []
    for block in message.content:
        if isinstance(block, TextContent):
            parts.append(TextPart(text=block.text))
        elif isinstance(block, ThinkingContent):
            parts.append(ThinkingPart(thinking=block.thinking))
        elif isinstance(block, ToolCallContent):
            prior = existing.get(block.id)
            if prior is None:
                parts.append(ToolCallPart(id=block.id, name=block.name, args=dict(block.arguments)))
            else:
                parts.append(ToolCallPart(
                    id=block.id,
                    name=block.name,
                    args=dict(block.arguments),
                    status=prior.status,
                    result=prior.result,
                    images=prior.images,
                    dirty_ranges=prior.dirty_ranges,
                ))
        else:
            raise TypeError(f"Unexpected assistant content block: {type(block).__name__}")
    return parts


def _apply_tool_result(turns: list[Turn], message: ToolResultMessage) -> None:
    for turn in reversed(turns):
        if turn.role is not TurnRole.ASSISTANT:
            continue
        part = turn.tool_call(message.tool_call_id)
        if part is None:
            continue
        text = "\n".join(b.text for b in message.content if isinstance(b, TextContent))
        part.status = ToolCallStatus.ERROR if message.is_error else ToolCallStatus.COMPLETE
        part.result = strip_side_channel(text)
        part.dirty_ranges = parse_dirty_ranges(text)
        part.images = [
            ImageAttachment(data=b.data, mime_type=b.mime_type)
            for b in message.content if isinstance(b, ImageContent)
        ]
        return


def agent_messages_to_turns(messages: Sequence[AgentMessage]) -> list[Turn]:
    """Derive the visible conversation from an agent's message context.

    Tool results are folded into the tool call part they answer, which is
    restored directly in its terminal state.
    """
    turns: list[Turn] = []
    for message in messages:
        if isinstance(message, UserMessage):
            turns.append(Turn(
                id=make_turn_id(TurnRole.USER, len(turns), message.timestamp),
                role=TurnRole.USER,
                parts=[TextPart(text=strip_enrichment(message.content))],
                timestamp=message.timestamp,
            ))
        elif isinstance(message, AssistantMessage):
            turns.append(Turn(
                id=make_turn_id(TurnRole.ASSISTANT, len(turns), message.timestamp),
                role=TurnRole.ASSISTANT,
                parts=extract_parts(message),
                timestamp=message.timestamp,
            ))
        elif isinstance(message, ToolResultMessage):
            _apply_tool_result(turns, message)
    return turns


def derive_stats(messages: Sequence[AgentMessage]) -> SessionStats:
    """Recompute usage totals from an agent's message context."""
    stats = SessionStats()
    for message in messages:
        if isinstance(message, AssistantMessage):
            u = message.usage
            stats.add_usage(u.input, u.output, u.cache_read, u.cache_write, u.cost_total)
    return stats
