"""Abstract boundary around the model-driven agent runtime.

The chat engine never talks to a model provider directly. It drives an
AgentRuntime, which emits lifecycle events (adapters/events.py) to its
subscribers while a prompt runs. Concrete runtimes, model catalogs and
tool sets live outside this package and are plugged in through
ModelResolver and AgentFactory.
"""
from __future__ import annotations

import abc
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from gridchat.adapters.events import AgentEvent, AgentMessage

AgentListener = Callable[[AgentEvent], None]
Unsubscribe = Callable[[], None]


@dataclass
class ModelInfo:
    """A resolved model: where to reach it and how much it can hold."""
    id: str
    provider: str
    base_url: str | None = None
    context_window: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentSpec:
    """Everything an AgentFactory needs to build a runtime."""
    model: ModelInfo
    api_key: str
    system_prompt: str
    thinking_level: str = "off"
    # Prior context carried over when a config change rebuilds the agent.
    messages: list[AgentMessage] = field(default_factory=list)


class AgentRuntime(abc.ABC):
    """An opaque, event-emitting agent.

    Events for one prompt are delivered to listeners synchronously and in
    order; ``prompt`` returns once the run has ended (cleanly, with an
    error, or because ``abort`` was called).
    """

    @abc.abstractmethod
    def subscribe(self, listener: AgentListener) -> Unsubscribe:
        """Register *listener*; returns a callable that removes it."""

    @abc.abstractmethod
    async def prompt(self, text: str) -> None:
        """Run the agent on a user message."""

    @abc.abstractmethod
    def abort(self) -> None:
        """Stop the current run. Further events for it are not delivered."""

    @abc.abstractmethod
    def reset(self) -> None:
        """Drop all message context."""

    @property
    @abc.abstractmethod
    def messages(self) -> list[AgentMessage]:
        """The agent's internal message context."""

    @abc.abstractmethod
    def replace_messages(self, messages: list[AgentMessage]) -> None:
        """Swap the internal message context (used on session restore)."""

    @property
    @abc.abstractmethod
    def model(self) -> ModelInfo:
        """The model this runtime was built for."""


class ModelResolver(abc.ABC):
    """Looks up models offered by a provider."""

    @abc.abstractmethod
    def resolve(self, provider: str, model_id: str) -> ModelInfo:
        """Return the model, or raise ModelNotAvailableError."""


class AgentFactory(abc.ABC):
    """Builds agent runtimes from a resolved spec."""

    @abc.abstractmethod
    def create(self, spec: AgentSpec) -> AgentRuntime:
        """Create a runtime for *spec*."""
