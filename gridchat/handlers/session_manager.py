"""Session lifecycle manager for ChatController.

Handles load-on-start, autosave, new/switch/delete and clear, keeping
the controller focused on streaming and configuration.

Session-mutating operations are refused while a response is streaming
and are serialized with one asyncio.Lock, so a completing stream can
never persist into a session the user has already switched away from.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import TYPE_CHECKING

from gridchat.adapters.events import AgentMessage, message_from_dict, message_to_dict
from gridchat.engine.errors import PersistenceError
from gridchat.shared.models.session import ChatSession
from gridchat.shared.services.history import agent_messages_to_turns, derive_stats
from gridchat.shared.services.host_settings import get_or_create_workspace_id

if TYPE_CHECKING:
    from gridchat.handlers.chat_controller import ChatController

logger = logging.getLogger(__name__)


def _context_messages(session: ChatSession) -> list[AgentMessage]:
    messages: list[AgentMessage] = []
    for raw in session.context:
        try:
            messages.append(message_from_dict(raw))
        except (ValueError, TypeError, KeyError):
            logger.warning("Dropping unreadable context message in session %s", session.id, exc_info=True)
    return messages


class SessionManager:
    """Manages session lifecycle on behalf of ChatController.

    Keeps a reference to the controller so it can reach the store,
    workspace, reconciler and agent without duplicating any of them.
    """

    def __init__(self, controller: ChatController) -> None:
        self._c = controller
        self._lock = asyncio.Lock()
        self._mutating = False
        # Most recent storage failure, for display; never raised.
        self.last_error: str | None = None

    @property
    def is_mutating(self) -> bool:
        """True while new/switch/delete/load is replacing live state."""
        return self._mutating

    # ── helpers ──────────────────────────────────────────────────────

    def _refuse_while_streaming(self, operation: str) -> bool:
        if self._c.is_streaming:
            logger.info("Ignoring %s while a response is streaming", operation)
            return True
        return False

    def _record_failure(self, operation: str, exc: BaseException) -> None:
        self.last_error = f"{operation} failed: {exc}"
        logger.error("%s failed: %s", operation, exc, exc_info=exc)

    async def _restore(self, session: ChatSession) -> None:
        """Replace all live state with *session*'s workspace and conversation."""
        c = self._c
        files = await asyncio.to_thread(c.store.load_workspace_files, session.id)
        await c.workspace.restore(files)

        messages = _context_messages(session)
        turns = session.conversation or agent_messages_to_turns(messages)
        c.reconciler.load(turns, derive_stats(messages))
        c.replace_agent_context(messages)

        c.current_session = session
        c.error = None
        c.uploads = c.workspace.list_uploads()
        logger.info(
            "Restored session %s (%d turns, %d context messages, %d files)",
            session.id, len(turns), len(messages), len(files),
        )

    async def _refresh_sessions(self) -> None:
        c = self._c
        if c.workspace_id is None:
            return
        c.sessions = await asyncio.to_thread(c.store.list_sessions, c.workspace_id)

    # ── public API ──────────────────────────────────────────────────

    async def load_on_start(self) -> bool:
        """Resolve the workspace and restore its most recent session."""
        c = self._c
        async with self._lock:
            self._mutating = True
            try:
                c.workspace_id = await get_or_create_workspace_id(c.host_settings)
                session = await asyncio.to_thread(c.store.get_or_create_current_session, c.workspace_id)
                await self._restore(session)
                await self._refresh_sessions()
            except (PersistenceError, OSError) as exc:
                self._record_failure("Loading session", exc)
                return False
            finally:
                self._mutating = False
        c.publish()
        return True

    async def autosave(self) -> bool:
        """Persist the active conversation and workspace snapshot together.

        Everything saved is captured before the first suspension point, so
        the write always lands in the session the data belongs to.
        """
        c = self._c
        if c.is_streaming:
            logger.debug("Skipping autosave while streaming")
            return False
        if not c.config.autosave_enabled or c.current_session is None:
            return False

        session_id = c.current_session.id
        turns = copy.deepcopy(c.reconciler.turns)
        context = [message_to_dict(m) for m in c.agent_context()]
        workspace = c.workspace

        try:
            files = await workspace.snapshot()
        except Exception as exc:
            # Nothing is written when the snapshot cannot be taken.
            self._record_failure("Workspace snapshot", exc)
            return False

        async with self._lock:
            try:
                updated = await asyncio.to_thread(c.store.commit, session_id, turns, context, files)
            except (PersistenceError, OSError) as exc:
                self._record_failure("Autosave", exc)
                return False
            if c.current_session is not None and c.current_session.id == session_id:
                c.current_session = updated
            self.last_error = None
            try:
                await self._refresh_sessions()
            except (PersistenceError, OSError) as exc:
                # The commit landed; only the session list is stale.
                self._record_failure("Listing sessions", exc)
        c.publish()
        return True

    async def new_session(self) -> bool:
        c = self._c
        if self._refuse_while_streaming("new session"):
            return False
        if c.workspace_id is None:
            logger.error("Cannot create session: workspace id not set")
            return False
        async with self._lock:
            if self._refuse_while_streaming("new session"):
                return False
            self._mutating = True
            try:
                session = await asyncio.to_thread(c.store.create_session, c.workspace_id)
                c.replace_agent_context([])
                await c.workspace.restore([])
                c.reconciler.reset()
                c.current_session = session
                c.error = None
                c.uploads = c.workspace.list_uploads()
                await self._refresh_sessions()
            except (PersistenceError, OSError) as exc:
                self._record_failure("Creating session", exc)
                return False
            finally:
                self._mutating = False
        c.publish()
        return True

    async def switch_session(self, session_id: str) -> bool:
        c = self._c
        if self._refuse_while_streaming("session switch"):
            return False
        if c.current_session is not None and c.current_session.id == session_id:
            return True
        async with self._lock:
            if self._refuse_while_streaming("session switch"):
                return False
            self._mutating = True
            try:
                session = await asyncio.to_thread(c.store.get_session, session_id)
                if session is None:
                    logger.error("Session not found: %s", session_id)
                    return False
                await self._restore(session)
                await self._refresh_sessions()
            except (PersistenceError, OSError) as exc:
                self._record_failure("Switching session", exc)
                return False
            finally:
                self._mutating = False
        c.publish()
        return True

    async def delete_current_session(self) -> bool:
        """Delete the active session and fall back to the most recent one."""
        c = self._c
        if self._refuse_while_streaming("session delete"):
            return False
        if c.current_session is None or c.workspace_id is None:
            return False
        async with self._lock:
            if self._refuse_while_streaming("session delete"):
                return False
            self._mutating = True
            try:
                await asyncio.to_thread(c.store.delete_session, c.current_session.id)
                c.current_session = None
                fallback = await asyncio.to_thread(c.store.get_or_create_current_session, c.workspace_id)
                await self._restore(fallback)
                await self._refresh_sessions()
            except (PersistenceError, OSError) as exc:
                self._record_failure("Deleting session", exc)
                c.publish()
                return False
            finally:
                self._mutating = False
        c.publish()
        return True

    async def clear_messages(self) -> bool:
        """Empty the active conversation, keeping the session and its files."""
        c = self._c
        if self._refuse_while_streaming("clear"):
            return False
        async with self._lock:
            c.replace_agent_context([])
            c.reconciler.reset()
            c.error = None
            if c.current_session is not None and c.config.autosave_enabled:
                try:
                    c.current_session = await asyncio.to_thread(
                        c.store.save_session, c.current_session.id, [], [],
                    )
                    await self._refresh_sessions()
                except (PersistenceError, OSError) as exc:
                    self._record_failure("Clearing session", exc)
        c.publish()
        return True

    async def refresh_sessions(self) -> None:
        try:
            await self._refresh_sessions()
        except (PersistenceError, OSError) as exc:
            self._record_failure("Listing sessions", exc)
        self._c.publish()
