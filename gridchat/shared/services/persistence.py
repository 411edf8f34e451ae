"""Session persistence: conversations and workspace snapshots on disk.

Storage layout:
    ~/.gridchat/sessions/{session_id}/session.json
    ~/.gridchat/sessions/{session_id}/workspace/manifest.json
    ~/.gridchat/sessions/{session_id}/workspace/blobs/{n}.bin

A session's conversation and its workspace snapshot live in one
directory, so ``commit`` can publish both with directory renames: the new
pair is written to a ``.tmp-*`` staging directory, the current directory
is moved aside to ``.old-*``, and the staging directory is renamed into
place. A crash at any point leaves either the old pair or the new pair;
leftovers are cleaned up the next time the store is opened.

The store is synchronous and not thread-safe. Callers on the event loop
run it through ``asyncio.to_thread`` one operation at a time.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Any, Sequence

from gridchat.engine.errors import PersistenceError, SessionNotFoundError
from gridchat.engine.models import now_ms
from gridchat.shared.models.message import Turn, turn_from_dict, turn_to_dict
from gridchat.shared.models.session import (
    DEFAULT_SESSION_NAME,
    ChatSession,
    derive_session_name,
    is_default_session_name,
)
from gridchat.shared.services.durable_write import atomic_write_bytes, atomic_write_json, fsync_dir
from gridchat.shared.services.workspace import WorkspaceFile

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
SESSION_FILE = "session.json"
WORKSPACE_DIR = "workspace"
MANIFEST_FILE = "manifest.json"
BLOBS_DIR = "blobs"

_STAGING_PREFIX = ".tmp-"
_BACKUP_PREFIX = ".old-"
_TRASH_PREFIX = ".del-"


def session_to_dict(session: ChatSession) -> dict[str, Any]:
    return {
        "version": FORMAT_VERSION,
        "id": session.id,
        "workspaceId": session.workspace_id,
        "name": session.name,
        "createdAt": session.created_at,
        "updatedAt": session.updated_at,
        "conversation": [turn_to_dict(t) for t in session.conversation],
        "context": session.context,
    }


def session_from_dict(data: dict[str, Any]) -> ChatSession:
    return ChatSession(
        id=data["id"],
        workspace_id=data["workspaceId"],
        name=data.get("name") or DEFAULT_SESSION_NAME,
        created_at=int(data.get("createdAt") or 0),
        updated_at=int(data.get("updatedAt") or 0),
        conversation=[turn_from_dict(t) for t in data.get("conversation") or []],
        context=list(data.get("context") or []),
    )


class SessionStore:
    """Directory-per-session store for conversations and workspace snapshots."""

    def __init__(self, base_dir: Path, session_name_max_length: int = 40) -> None:
        self._dir = Path(base_dir)
        self._name_max = session_name_max_length
        self._dir.mkdir(parents=True, exist_ok=True)
        self._recover()

    @property
    def base_dir(self) -> Path:
        return self._dir

    # ── Paths ──

    def _session_dir(self, session_id: str) -> Path:
        if not session_id or "/" in session_id or "\\" in session_id or session_id.startswith("."):
            raise PersistenceError(f"Invalid session id: {session_id!r}")
        return self._dir / session_id

    def _unique_sibling(self, prefix: str, session_id: str) -> Path:
        return self._dir / f"{prefix}{session_id}-{uuid.uuid4().hex[:8]}"

    # ── Recovery ──

    def _recover(self) -> None:
        """Finish or roll back commits interrupted by a crash."""
        for entry in sorted(self._dir.iterdir()):
            name = entry.name
            if not entry.is_dir():
                continue
            if name.startswith(_BACKUP_PREFIX):
                session_id = name[len(_BACKUP_PREFIX):].rsplit("-", 1)[0]
                target = self._dir / session_id
                if target.exists():
                    # The new pair was published; the backup is stale.
                    shutil.rmtree(entry, ignore_errors=True)
                    logger.info("Removed stale backup %s", name)
                else:
                    os.replace(entry, target)
                    logger.warning("Restored session %s from interrupted commit", session_id)
            elif name.startswith(_STAGING_PREFIX) or name.startswith(_TRASH_PREFIX):
                shutil.rmtree(entry, ignore_errors=True)
                logger.info("Removed leftover %s", name)
        fsync_dir(self._dir)

    # ── Reading ──

    def _read_record(self, session_dir: Path) -> ChatSession:
        path = session_dir / SESSION_FILE
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return session_from_dict(data)
        except FileNotFoundError:
            raise SessionNotFoundError(session_dir.name) from None
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise PersistenceError(f"Corrupt session record {path}: {exc}") from exc

    def get_session(self, session_id: str) -> ChatSession | None:
        """Return the session, or None if it does not exist."""
        try:
            return self._read_record(self._session_dir(session_id))
        except SessionNotFoundError:
            return None

    def list_sessions(self, workspace_id: str | None = None) -> list[ChatSession]:
        """Sessions for *workspace_id* (all if None), most recently updated first."""
        sessions: list[ChatSession] = []
        for entry in self._dir.iterdir():
            if entry.name.startswith(".") or not entry.is_dir():
                continue
            try:
                session = self._read_record(entry)
            except PersistenceError:
                logger.warning("Skipping unreadable session %s", entry.name, exc_info=True)
                continue
            if workspace_id is None or session.workspace_id == workspace_id:
                sessions.append(session)
        sessions.sort(key=lambda s: (s.updated_at, s.created_at), reverse=True)
        return sessions

    def load_workspace_files(self, session_id: str) -> list[WorkspaceFile]:
        """Read a session's workspace snapshot. Empty if it never had one."""
        ws_dir = self._session_dir(session_id) / WORKSPACE_DIR
        manifest_path = ws_dir / MANIFEST_FILE
        if not manifest_path.exists():
            return []
        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
            return [
                WorkspaceFile(path=item["path"], data=(ws_dir / BLOBS_DIR / item["blob"]).read_bytes())
                for item in manifest.get("files", [])
            ]
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise PersistenceError(f"Corrupt workspace snapshot for {session_id}: {exc}") from exc

    # ── Writing ──

    def create_session(self, workspace_id: str) -> ChatSession:
        session = ChatSession(workspace_id=workspace_id)
        session_dir = self._session_dir(session.id)
        session_dir.mkdir(parents=True, exist_ok=False)
        atomic_write_json(session_dir / SESSION_FILE, session_to_dict(session))
        fsync_dir(self._dir)
        logger.info("Created session %s for workspace %s", session.id, workspace_id)
        return session

    def get_or_create_current_session(self, workspace_id: str) -> ChatSession:
        """Most recently updated session for the workspace, or a new one."""
        sessions = self.list_sessions(workspace_id)
        if sessions:
            return sessions[0]
        return self.create_session(workspace_id)

    def _updated(
        self,
        session_id: str,
        turns: Sequence[Turn],
        context: Sequence[dict[str, Any]] | None,
    ) -> ChatSession:
        current = self._read_record(self._session_dir(session_id))
        current.conversation = list(turns)
        if context is not None:
            current.context = list(context)
        # Strictly increasing so back-to-back saves keep their order.
        current.updated_at = max(now_ms(), current.updated_at + 1)
        if is_default_session_name(current.name):
            current.name = derive_session_name(current.conversation, self._name_max)
        return current

    def save_session(
        self,
        session_id: str,
        turns: Sequence[Turn],
        context: Sequence[dict[str, Any]] | None = None,
    ) -> ChatSession:
        """Persist the conversation only, leaving the workspace snapshot alone."""
        session = self._updated(session_id, turns, context)
        atomic_write_json(self._session_dir(session_id) / SESSION_FILE, session_to_dict(session))
        logger.info("Session %s saved (%d turns)", session_id, len(session.conversation))
        return session

    def commit(
        self,
        session_id: str,
        turns: Sequence[Turn],
        context: Sequence[dict[str, Any]],
        files: Sequence[WorkspaceFile],
    ) -> ChatSession:
        """Publish conversation and workspace snapshot together.

        Either both are replaced or, on any failure, the previous pair is
        left untouched and PersistenceError is raised.
        """
        session = self._updated(session_id, turns, context)
        session_dir = self._session_dir(session_id)
        staging = self._unique_sibling(_STAGING_PREFIX, session_id)
        backup = self._unique_sibling(_BACKUP_PREFIX, session_id)
        try:
            staging.mkdir()
            self._write_pair(staging, session, files)
            os.replace(session_dir, backup)
            try:
                os.replace(staging, session_dir)
            except OSError:
                os.replace(backup, session_dir)
                raise
            fsync_dir(self._dir)
        except (OSError, TypeError, ValueError) as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise PersistenceError(f"Failed to commit session {session_id}: {exc}") from exc
        shutil.rmtree(backup, ignore_errors=True)
        logger.info(
            "Session %s committed (%d turns, %d workspace files)",
            session_id, len(session.conversation), len(files),
        )
        return session

    def _write_pair(self, target: Path, session: ChatSession, files: Sequence[WorkspaceFile]) -> None:
        ws_dir = target / WORKSPACE_DIR
        blobs = ws_dir / BLOBS_DIR
        blobs.mkdir(parents=True)
        manifest = []
        for index, f in enumerate(files):
            blob_name = f"{index:05d}.bin"
            atomic_write_bytes(blobs / blob_name, f.data)
            manifest.append({"path": f.path, "blob": blob_name, "size": len(f.data)})
        atomic_write_json(ws_dir / MANIFEST_FILE, {"files": manifest})
        atomic_write_json(target / SESSION_FILE, session_to_dict(session))

    def rename_session(self, session_id: str, name: str) -> ChatSession:
        session = self._read_record(self._session_dir(session_id))
        session.name = name.strip() or DEFAULT_SESSION_NAME
        session.updated_at = max(now_ms(), session.updated_at + 1)
        atomic_write_json(self._session_dir(session_id) / SESSION_FILE, session_to_dict(session))
        return session

    def delete_session(self, session_id: str) -> bool:
        """Delete a session together with its workspace snapshot."""
        session_dir = self._session_dir(session_id)
        if not session_dir.exists():
            return False
        trash = self._unique_sibling(_TRASH_PREFIX, session_id)
        try:
            os.replace(session_dir, trash)
            fsync_dir(self._dir)
        except OSError as exc:
            raise PersistenceError(f"Failed to delete session {session_id}: {exc}") from exc
        shutil.rmtree(trash, ignore_errors=True)
        logger.info("Deleted session %s", session_id)
        return True
