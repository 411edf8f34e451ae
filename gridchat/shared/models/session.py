"""Session records and running usage statistics."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from gridchat.engine.models import now_ms
from gridchat.shared.models.message import Turn

DEFAULT_SESSION_NAME = "New Chat"
NAME_ELLIPSIS = "..."


def is_default_session_name(name: str | None) -> bool:
    return not name or name.strip() == DEFAULT_SESSION_NAME


def derive_session_name(turns: list[Turn], max_length: int = 40) -> str:
    """Name a session after the first user turn's first text part."""
    for turn in turns:
        if turn.role.value != "user":
            continue
        text = (turn.first_text() or "").strip()
        if not text:
            continue
        if len(text) > max_length:
            return text[: max_length - len(NAME_ELLIPSIS)] + NAME_ELLIPSIS
        return text
    return DEFAULT_SESSION_NAME


@dataclass
class SessionStats:
    """Cumulative token usage and cost for the active conversation."""
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read: int = 0
    cache_write: int = 0
    total_cost: float = 0.0
    # Prompt size of the most recent assistant response.
    last_input_tokens: int = 0
    context_window: int = 0

    def add_usage(
        self,
        input_tokens: int,
        output_tokens: int,
        cache_read: int,
        cache_write: int,
        cost: float,
    ) -> None:
        self.input_tokens += input_tokens
        self.output_tokens += output_tokens
        self.cache_read += cache_read
        self.cache_write += cache_write
        self.total_cost += cost
        self.last_input_tokens = input_tokens + cache_read + cache_write

    def to_dict(self) -> dict[str, Any]:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "cacheRead": self.cache_read,
            "cacheWrite": self.cache_write,
            "totalCost": self.total_cost,
            "lastInputTokens": self.last_input_tokens,
            "contextWindow": self.context_window,
        }


@dataclass
class ChatSession:
    """A persisted conversation scoped to one host workspace.

    ``conversation`` holds the visible turns; ``context`` holds the agent's
    internal message list (as dicts) so both can be replayed on restore.
    """
    workspace_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    name: str = DEFAULT_SESSION_NAME
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    conversation: list[Turn] = field(default_factory=list)
    context: list[dict[str, Any]] = field(default_factory=list)

    @property
    def turn_count(self) -> int:
        return len(self.conversation)
