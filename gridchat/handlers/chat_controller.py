"""Session-scoped chat controller.

ChatController owns everything one chat panel needs: the agent runtime,
the transcript reconciler, the virtual workspace, the session store and
the provider configuration. Nothing is module-global, so several
controllers (or tests) can run side by side.

After every state transition an immutable ChatSnapshot is published to
subscribers; that snapshot is the only view a UI needs.
"""

from __future__ import annotations

import copy
import dataclasses
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from gridchat.adapters.agent import (
    AgentFactory,
    AgentRuntime,
    AgentSpec,
    ModelResolver,
    Unsubscribe,
)
from gridchat.adapters.events import AgentEnd, AgentEvent, AgentMessage
from gridchat.adapters.tool_tracker import NavigateCallback, RegionResolver, ToolLifecycleTracker
from gridchat.engine.config import EngineConfig
from gridchat.engine.errors import ModelNotAvailableError
from gridchat.engine.hot_swap import ConfigHotSwapQueue
from gridchat.engine.yaml_config import ProviderConfig, apply_proxy, load_provider_config, save_provider_config
from gridchat.handlers.reconciler import DEFAULT_ERROR_MESSAGE, TranscriptReconciler
from gridchat.handlers.session_manager import SessionManager
from gridchat.shared.models.message import Turn
from gridchat.shared.models.session import ChatSession, SessionStats
from gridchat.shared.services.history import enrich_prompt
from gridchat.shared.services.host_settings import HostSettings
from gridchat.shared.services.persistence import SessionStore
from gridchat.shared.services.workspace import VirtualWorkspace

logger = logging.getLogger(__name__)

NOT_CONFIGURED_ERROR = "Please configure your API key first"

ContextProvider = Callable[[], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class ChatSnapshot:
    """Read-only projection of chat state for rendering."""
    turns: tuple[Turn, ...]
    is_streaming: bool
    error: str | None
    session_stats: SessionStats
    sessions: tuple[ChatSession, ...]
    current_session: ChatSession | None
    uploads: tuple[str, ...]
    provider_config: ProviderConfig | None
    has_pending_config: bool


SnapshotListener = Callable[[ChatSnapshot], None]


class ChatController:
    """Drives one conversation against a pluggable agent runtime.

    Args:
        store: Durable session storage.
        host_settings: Document settings holding the workspace id.
        model_resolver: Resolves (provider, model) pairs.
        agent_factory: Builds an AgentRuntime for a resolved model.
        config: Engine configuration; defaults to EngineConfig().
        workspace: Live filesystem; a fresh one if omitted.
        navigate: Host callback for follow mode.
        resolve_region: Host check that a region id still exists.
        context_provider: Async source of host metadata prepended to
            each prompt; failures are logged and the prompt is sent bare.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        host_settings: HostSettings,
        model_resolver: ModelResolver,
        agent_factory: AgentFactory,
        config: EngineConfig | None = None,
        workspace: VirtualWorkspace | None = None,
        navigate: NavigateCallback | None = None,
        resolve_region: RegionResolver | None = None,
        context_provider: ContextProvider | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store
        self.host_settings = host_settings
        self.model_resolver = model_resolver
        self.agent_factory = agent_factory
        self.workspace = workspace or VirtualWorkspace()
        self.context_provider = context_provider

        self.tracker = ToolLifecycleTracker(
            navigate=navigate,
            resolve_region=resolve_region,
            follow_mode=self.config.follow_mode,
        )
        self.reconciler = TranscriptReconciler(self.tracker)
        self.session_manager = SessionManager(self)
        self.hot_swap = ConfigHotSwapQueue()

        self.agent: AgentRuntime | None = None
        self._unsubscribe: Unsubscribe | None = None
        # Agent context held while no agent exists (restored before configuration).
        self._context: list[AgentMessage] = []

        self.is_streaming = False
        self.error: str | None = None
        self.provider_config: ProviderConfig | None = None
        self.workspace_id: str | None = None
        self.sessions: list[ChatSession] = []
        self.current_session: ChatSession | None = None
        self.uploads: list[str] = []

        self._listeners: list[SnapshotListener] = []
        # Bumped by each send and by abort; a finished prompt only
        # touches state if its generation is still current.
        self._generation = 0

    # ── Snapshots ───────────────────────────────────────────────────

    def snapshot(self) -> ChatSnapshot:
        return ChatSnapshot(
            turns=tuple(copy.deepcopy(self.reconciler.turns)),
            is_streaming=self.is_streaming,
            error=self.error,
            session_stats=dataclasses.replace(self.reconciler.stats),
            sessions=tuple(self.sessions),
            current_session=self.current_session,
            uploads=tuple(self.uploads),
            provider_config=self.provider_config,
            has_pending_config=self.hot_swap.has_pending,
        )

    def subscribe(self, listener: SnapshotListener) -> Unsubscribe:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception("Snapshot listener failed")

    # ── Agent context ───────────────────────────────────────────────

    def agent_context(self) -> list[AgentMessage]:
        if self.agent is not None:
            return list(self.agent.messages)
        return list(self._context)

    def replace_agent_context(self, messages: list[AgentMessage]) -> None:
        self._context = list(messages)
        if self.agent is None:
            return
        if messages:
            self.agent.replace_messages(list(messages))
        else:
            self.agent.reset()

    # ── Lifecycle ───────────────────────────────────────────────────

    async def start(self) -> None:
        """Load the saved provider config and restore the current session."""
        if self.provider_config is None:
            saved = load_provider_config(self.config.provider_config_path)
            if saved is not None:
                self.set_provider_config(saved)
        await self.session_manager.load_on_start()

    def close(self) -> None:
        if self.agent is not None:
            self.agent.abort()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # ── Configuration ───────────────────────────────────────────────

    def set_provider_config(self, config: ProviderConfig, persist: bool = False) -> None:
        """Adopt a new provider configuration.

        The config is visible in snapshots immediately. While a response
        is streaming, the agent is only rebuilt on the next send. If the
        config cannot be applied, the previous agent is dropped so sends
        fail until a usable config arrives.
        """
        self.provider_config = config
        self.tracker.follow_mode = (
            self.config.follow_mode if config.follow_mode is None else config.follow_mode
        )
        if persist:
            try:
                save_provider_config(config, self.config.provider_config_path)
            except OSError:
                logger.exception("Failed to save provider config")
        if self.hot_swap.offer(config, self.is_streaming):
            self._apply_config(config)
        self.publish()

    def _release_agent(self) -> None:
        """Drop the current agent, keeping its message context."""
        if self.agent is None:
            return
        self._context = list(self.agent.messages)
        self.agent.abort()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.agent = None

    def _apply_config(self, config: ProviderConfig) -> bool:
        """Rebuild the agent for *config*, keeping the message context."""
        if not config.is_complete:
            logger.info("Provider config incomplete; agent not built")
            self._release_agent()
            return False
        try:
            model = self.model_resolver.resolve(config.provider, config.model)
        except ModelNotAvailableError as exc:
            logger.warning("Cannot apply config: %s", exc)
            self.error = str(exc)
            self._release_agent()
            return False
        model = dataclasses.replace(model, base_url=apply_proxy(model.base_url, config))

        self._release_agent()
        existing = list(self._context)

        agent = self.agent_factory.create(AgentSpec(
            model=model,
            api_key=config.api_key,
            system_prompt=self.config.system_prompt,
            thinking_level=config.thinking.to_agent(),
            messages=existing,
        ))
        self.agent = agent
        self._unsubscribe = agent.subscribe(self._on_agent_event)
        self.hot_swap.clear()
        self.reconciler.stats.context_window = model.context_window
        self.error = None
        logger.info(
            "Agent built: provider=%s model=%s context_window=%d proxied=%s carried_messages=%d",
            config.provider, model.id, model.context_window,
            bool(config.use_proxy and config.proxy_url), len(existing),
        )
        return True

    # ── Streaming ───────────────────────────────────────────────────

    def _on_agent_event(self, event: AgentEvent) -> None:
        if not self.is_streaming:
            logger.debug("Dropping %s received while idle", event.event_type)
            return
        try:
            self.reconciler.handle_event(event)
        except Exception:
            logger.exception("Error processing event: %s", event.event_type)
        if isinstance(event, AgentEnd):
            logger.debug("Agent run ended (discarded=%s)", self.reconciler.stream_discarded)
        self.publish()

    async def send_message(self, content: str) -> None:
        """Send a user message and stream the response.

        A pending configuration is applied first. Autosave runs once the
        run has finished, unless its turn was discarded.
        """
        if self.is_streaming:
            logger.warning("send_message ignored: a response is already streaming")
            return
        if self.session_manager.is_mutating:
            logger.warning("send_message ignored: session is being replaced")
            return

        pending = self.hot_swap.take_pending()
        if pending is not None:
            self._apply_config(pending)

        agent = self.agent
        if agent is None or self.provider_config is None:
            self.error = self.error or NOT_CONFIGURED_ERROR
            self.publish()
            return

        self.reconciler.add_user_turn(content)
        self.reconciler.begin_stream()
        self.reconciler.last_error = None
        self.is_streaming = True
        self.error = None
        self._generation += 1
        generation = self._generation
        self.publish()

        prompt = content
        if self.context_provider is not None:
            try:
                prompt = enrich_prompt(content, await self.context_provider())
            except Exception:
                logger.warning("Failed to get host context; sending prompt without it", exc_info=True)
            if generation != self._generation:
                return

        try:
            await agent.prompt(prompt)
        except Exception as exc:
            logger.exception("Agent run failed")
            if generation == self._generation:
                self.reconciler.discard_streaming_turn()
                self.is_streaming = False
                self.error = str(exc) or DEFAULT_ERROR_MESSAGE
                self.publish()
            return

        if generation != self._generation:
            # Aborted; abort() already rolled back and published.
            return
        self.is_streaming = False
        self.error = self.reconciler.last_error
        clean = not self.reconciler.stream_discarded
        self.publish()
        if clean:
            await self.session_manager.autosave()

    def abort(self) -> None:
        """Stop the current run and roll back its partial turn. No autosave follows."""
        if not self.is_streaming:
            return
        self._generation += 1
        if self.agent is not None:
            self.agent.abort()
        self.reconciler.discard_streaming_turn()
        self.is_streaming = False
        logger.info("Stream aborted by user")
        self.publish()

    # ── Session operations ──────────────────────────────────────────

    async def new_session(self) -> bool:
        return await self.session_manager.new_session()

    async def switch_session(self, session_id: str) -> bool:
        return await self.session_manager.switch_session(session_id)

    async def delete_current_session(self) -> bool:
        return await self.session_manager.delete_current_session()

    async def clear_messages(self) -> bool:
        self.abort()
        return await self.session_manager.clear_messages()

    # ── Workspace ───────────────────────────────────────────────────

    def upload_file(self, name: str, data: bytes) -> str:
        """Place a user file in uploads/. Persisted with the next autosave."""
        path = self.workspace.write_file(name, data)
        self.uploads = self.workspace.list_uploads()
        self.publish()
        return path
