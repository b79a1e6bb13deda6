"""Background polling of settings files registered with ``reload_on_change``."""
from __future__ import annotations

import asyncio
from typing import List

from configuration.files import FileConfigurationProvider
from configuration.root import ConfigurationRoot
from core.errors import ConfigurationError
from hosting.lifetime import BackgroundService
from observability.logging import get_logger

logger = get_logger("layerhost.hosting.reload")


class ConfigurationReloadService(BackgroundService):
    """
    Polls reloadable file providers and reloads the ones that changed.

    A file that fails to parse on reload keeps its previous entries.
    """

    def __init__(self, configuration: ConfigurationRoot, interval: float = 2.0):
        super().__init__("ConfigurationReload")
        self.interval = interval
        self.providers: List[FileConfigurationProvider] = [
            p for p in configuration.providers
            if isinstance(p, FileConfigurationProvider) and p.reload_on_change
        ]

    def poll(self) -> int:
        """Check every provider once; returns how many reloaded."""
        reloaded = 0
        for provider in self.providers:
            try:
                if provider.check_for_changes():
                    reloaded += 1
            except ConfigurationError as e:
                logger.warning(
                    "Configuration reload failed; keeping previous values",
                    provider=provider.name,
                    error=e.message,
                )
        return reloaded

    async def execute(self, stopping_token: asyncio.Event) -> None:
        if not self.providers:
            logger.debug("No reloadable configuration files")
            return
        logger.info("Watching configuration files", files=[str(p.path) for p in self.providers])
        while not stopping_token.is_set():
            self.poll()
            try:
                await asyncio.wait_for(stopping_token.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
