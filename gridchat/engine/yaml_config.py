"""Provider configuration persisted as YAML.

Stores the active model/connection settings the user picked, e.g.:

    provider: anthropic
    api_key: sk-...
    model: claude-sonnet-4-5
    use_proxy: true
    proxy_url: https://proxy.example.com
    thinking: medium
    follow_mode: true

A missing or corrupt file yields no configuration rather than an error,
so a fresh install simply starts unconfigured.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any
from urllib.parse import quote

import yaml

from gridchat.shared.services.durable_write import atomic_write_text

from .errors import ProviderConfigError
from .models import ThinkingLevel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    """Active model/connection configuration."""
    provider: str
    api_key: str
    model: str
    use_proxy: bool = False
    proxy_url: str = ""
    thinking: ThinkingLevel = ThinkingLevel.NONE
    # None defers to EngineConfig.follow_mode.
    follow_mode: bool | None = None

    @property
    def is_complete(self) -> bool:
        """True when provider, key and model are all set."""
        return bool(self.provider and self.api_key and self.model)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["thinking"] = self.thinking.value
        if self.follow_mode is None:
            del data["follow_mode"]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderConfig:
        """Build a config from a loosely-typed mapping.

        Raises ProviderConfigError for values of the wrong type.
        """
        if not isinstance(data, dict):
            raise ProviderConfigError("provider config must be a mapping")
        try:
            thinking = ThinkingLevel(str(data.get("thinking") or "none").lower())
        except ValueError as exc:
            raise ProviderConfigError(f"unknown thinking level: {data.get('thinking')!r}") from exc
        for key in ("provider", "api_key", "model", "proxy_url"):
            value = data.get(key)
            if value is not None and not isinstance(value, str):
                raise ProviderConfigError(f"{key} must be a string")
        follow_mode = data.get("follow_mode")
        return cls(
            provider=data.get("provider") or "",
            api_key=data.get("api_key") or "",
            model=data.get("model") or "",
            use_proxy=bool(data.get("use_proxy", False)),
            # Older files predate proxy support and have no proxy_url key.
            proxy_url=data.get("proxy_url") or "",
            thinking=thinking,
            follow_mode=None if follow_mode is None else bool(follow_mode),
        )


def apply_proxy(base_url: str | None, config: ProviderConfig) -> str | None:
    """Route a model's base URL through the configured proxy, if enabled."""
    if not config.use_proxy or not config.proxy_url or not base_url:
        return base_url
    return f"{config.proxy_url}/?url={quote(base_url, safe='')}"


def load_provider_config(path: Path) -> ProviderConfig | None:
    """Load a complete provider config from *path*.

    Returns None when the file is missing, unreadable, malformed or
    incomplete.
    """
    try:
        if not path.exists():
            logger.debug("Provider config not found at %s", path)
            return None
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        config = ProviderConfig.from_dict(raw)
    except (OSError, yaml.YAMLError, ProviderConfigError):
        logger.warning("Failed to load provider config from %s", path, exc_info=True)
        return None
    if not config.is_complete:
        logger.info("Ignoring incomplete provider config at %s", path)
        return None
    return config


def save_provider_config(config: ProviderConfig, path: Path) -> None:
    """Persist *config* to *path* as YAML."""
    atomic_write_text(path, yaml.safe_dump(config.to_dict(), sort_keys=False))
    logger.info("Provider config saved to %s (provider=%s model=%s)", path, config.provider, config.model)
