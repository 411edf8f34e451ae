"""gridchat engine: configuration, errors and lifecycle rules for chat sessions."""
from .models import ThinkingLevel, ToolCallStatus, TurnRole
from .config import EngineConfig
from .errors import (
    GridchatError,
    ModelNotAvailableError,
    PersistenceError,
    ProviderConfigError,
    SessionNotFoundError,
    WorkspaceError,
)
from .hot_swap import ConfigHotSwapQueue
from .yaml_config import ProviderConfig

__all__ = [
    # Models
    "ThinkingLevel",
    "ToolCallStatus",
    "TurnRole",
    # Config
    "EngineConfig",
    "ProviderConfig",
    "ConfigHotSwapQueue",
    # Errors
    "GridchatError",
    "ModelNotAvailableError",
    "PersistenceError",
    "ProviderConfigError",
    "SessionNotFoundError",
    "WorkspaceError",
]
