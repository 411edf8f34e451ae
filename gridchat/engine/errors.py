"""Exception hierarchy for the chat session engine.

Only failures that callers are expected to handle get their own type.
Stream failures, tool errors and guarded session operations are not
exceptions: they surface as chat state (see handlers/chat_controller.py).
"""
from __future__ import annotations


class GridchatError(Exception):
    """Base exception for all gridchat errors."""


class ModelNotAvailableError(GridchatError):
    """The configured provider does not offer the requested model."""
    def __init__(self, provider: str, model_id: str, reason: str):
        self.provider = provider
        self.model_id = model_id
        self.reason = reason
        super().__init__(
            f"Model '{model_id}' is not available from '{provider}': {reason}"
        )


class ProviderConfigError(GridchatError):
    """A provider configuration is incomplete or malformed."""


class PersistenceError(GridchatError):
    """Durable storage could not be read or written."""


class SessionNotFoundError(PersistenceError):
    """No stored session has the requested id."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class WorkspaceError(GridchatError):
    """A virtual workspace path is missing or not a regular file."""
    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")
