"""Deferred application of provider configuration changes.

A configuration that arrives while a response is streaming must not
rebuild the agent under the in-flight stream. It is parked here and
applied right before the next user message is sent.
"""
from __future__ import annotations

import logging

from .yaml_config import ProviderConfig

logger = logging.getLogger(__name__)


class ConfigHotSwapQueue:
    """Holds at most one pending ProviderConfig."""

    def __init__(self) -> None:
        self._pending: ProviderConfig | None = None

    @property
    def pending(self) -> ProviderConfig | None:
        return self._pending

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def offer(self, config: ProviderConfig, streaming: bool) -> bool:
        """Submit a new configuration.

        Returns True when the caller should apply *config* right away.
        While streaming, the config replaces any older pending one and
        False is returned.
        """
        if not streaming:
            # An immediate apply supersedes anything parked earlier.
            self._pending = None
            return True
        if self._pending is not None:
            logger.debug(
                "Replacing pending config %s/%s with %s/%s",
                self._pending.provider, self._pending.model,
                config.provider, config.model,
            )
        self._pending = config
        logger.info("Deferred config %s/%s until the stream ends", config.provider, config.model)
        return False

    def take_pending(self) -> ProviderConfig | None:
        """Remove and return the pending config, if any."""
        config, self._pending = self._pending, None
        return config

    def clear(self) -> None:
        self._pending = None
