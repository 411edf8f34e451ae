"""Per-document settings stored by the spreadsheet host.

The host keeps a small key/value store alongside each document. The chat
engine only uses it for one thing: a stable workspace id, which scopes
sessions to the document they were started in.
"""
from __future__ import annotations

import abc
import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Any

from gridchat.engine.errors import PersistenceError
from gridchat.shared.services.durable_write import atomic_write_json

logger = logging.getLogger(__name__)

WORKSPACE_ID_KEY = "gridchat-workspace-id"


class HostSettings(abc.ABC):
    """Document-scoped key/value settings."""

    @abc.abstractmethod
    def get(self, key: str) -> Any:
        """Return the value for *key*, or None."""

    @abc.abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Stage a value; call save() to persist it."""

    @abc.abstractmethod
    async def save(self) -> None:
        """Persist staged values. Raises PersistenceError on failure."""


class JsonHostSettings(HostSettings):
    """HostSettings backed by a JSON file (CLI and tests)."""

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._values: dict[str, Any] = {}
        if self._path.exists():
            try:
                loaded = json.loads(self._path.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    self._values = loaded
            except (OSError, ValueError):
                logger.warning("Ignoring unreadable host settings at %s", self._path, exc_info=True)

    def get(self, key: str) -> Any:
        return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    async def save(self) -> None:
        try:
            await asyncio.to_thread(atomic_write_json, self._path, dict(self._values), sort_keys=True)
        except OSError as exc:
            raise PersistenceError(f"Failed to save host settings: {exc}") from exc


async def get_or_create_workspace_id(settings: HostSettings) -> str:
    """Return the document's workspace id, creating and saving one if needed."""
    existing = settings.get(WORKSPACE_ID_KEY)
    if isinstance(existing, str) and existing:
        return existing
    workspace_id = str(uuid.uuid4())
    settings.set(WORKSPACE_ID_KEY, workspace_id)
    await settings.save()
    logger.info("Created workspace id %s", workspace_id)
    return workspace_id
