"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via GRIDCHAT_* env vars.
Provider credentials and model selection live separately in
yaml_config.py because they change at runtime (see hot_swap.py).
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


DEFAULT_SYSTEM_PROMPT = """You are an AI assistant integrated into a spreadsheet with full access to read and modify its data.

Use the available tools to inspect the workbook before answering questions about it.
Citations: Use markdown links with #cite: hash to reference sheets/cells. Clicking navigates there.
- Sheet only: [Sheet Name](#cite:sheetId)
- Cell/range: [A1:B10](#cite:sheetId!A1:B10)

When the user asks about their data, read it first. Be concise. Use A1 notation for cell references."""


def _default_data_dir() -> Path:
    return Path.home() / ".gridchat"


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class EngineConfig:
    """Chat session engine configuration."""

    # Root for sessions, provider settings, host settings and logs.
    data_dir: Path = field(default_factory=_default_data_dir)

    # Logging
    log_level: str = "INFO"

    # Auto-derived session names longer than this are cut and suffixed
    # with "...".
    session_name_max_length: int = 40

    # Follow mode default for configs that do not set it explicitly.
    follow_mode: bool = True

    # Turn off to keep conversations in memory only (tests, demos).
    autosave_enabled: bool = True

    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    @property
    def sessions_dir(self) -> Path:
        return self.data_dir / "sessions"

    @property
    def provider_config_path(self) -> Path:
        return self.data_dir / "provider.yaml"

    @property
    def host_settings_path(self) -> Path:
        return self.data_dir / "host-settings.json"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    @classmethod
    def from_env(cls) -> EngineConfig:
        """Load configuration from GRIDCHAT_* environment variables."""
        overrides = {
            k: v for k, v in os.environ.items() if k.startswith("GRIDCHAT_")
        }
        if overrides:
            logger.info(
                "EngineConfig.from_env: GRIDCHAT_* env overrides: %s",
                ", ".join(f"{k}={v}" for k, v in sorted(overrides.items())),
            )
        else:
            logger.debug("EngineConfig.from_env: no GRIDCHAT_* env vars set, using defaults")

        data_dir_raw = os.getenv("GRIDCHAT_DATA_DIR")
        config = cls(
            data_dir=Path(data_dir_raw).expanduser() if data_dir_raw else _default_data_dir(),
            log_level=os.getenv("GRIDCHAT_LOG_LEVEL", cls.log_level).upper(),
            session_name_max_length=max(4, int(os.getenv(
                "GRIDCHAT_SESSION_NAME_MAX", str(cls.session_name_max_length)
            ))),
            follow_mode=_env_flag("GRIDCHAT_FOLLOW_MODE", cls.follow_mode),
            autosave_enabled=_env_flag("GRIDCHAT_AUTOSAVE", cls.autosave_enabled),
            system_prompt=os.getenv("GRIDCHAT_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT),
        )
        logger.info(
            "EngineConfig.from_env: data_dir=%s log_level=%s follow_mode=%s",
            config.data_dir, config.log_level, config.follow_mode,
        )
        return config
