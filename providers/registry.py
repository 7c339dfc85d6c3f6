"""
In-memory registry of provider adapters, keyed by provider id.

Job handlers read it concurrently; provider events mutate it under the write
side of a ReadWriteLock.
"""

import logging

from db.enums import ProviderType
from db.schemas.providers import ProviderConfig
from providers.agtv import AGTVProvider
from providers.base import BaseProvider
from providers.xtream import XtreamProvider
from utils.exceptions import ConfigError
from utils.http_client import RateLimitedClient
from utils.lock import ReadWriteLock

logger = logging.getLogger(__name__)

PROVIDER_CLASSES: dict[ProviderType, type[BaseProvider]] = {
    ProviderType.XTREAM: XtreamProvider,
    ProviderType.AGTV: AGTVProvider,
}


def create_provider_adapter(config: ProviderConfig, http: RateLimitedClient) -> BaseProvider:
    provider_class = PROVIDER_CLASSES.get(config.type)
    if provider_class is None:
        raise ConfigError(f"Unsupported provider type: {config.type}")
    return provider_class(config, http)


class ProviderRegistry:
    def __init__(self, http: RateLimitedClient):
        self.http = http
        self._providers: dict[str, BaseProvider] = {}
        self._lock = ReadWriteLock()

    async def get(self, provider_id: str) -> BaseProvider | None:
        async with self._lock.read():
            return self._providers.get(provider_id)

    async def all(self) -> list[BaseProvider]:
        async with self._lock.read():
            return list(self._providers.values())

    async def ids(self) -> list[str]:
        async with self._lock.read():
            return list(self._providers)

    async def upsert(self, config: ProviderConfig) -> BaseProvider:
        """Create the adapter of a provider, or apply a new config to the existing one."""
        async with self._lock.write():
            adapter = self._providers.get(config.id)
            if adapter is not None and adapter.provider_type == config.type:
                adapter.config_update(config)
                logger.debug(f"Updated adapter for provider {config.id}")
            else:
                adapter = create_provider_adapter(config, self.http)
                self._providers[config.id] = adapter
                logger.info(f"Registered {config.type} provider {config.id}")
            return adapter

    async def remove(self, provider_id: str) -> bool:
        async with self._lock.write():
            adapter = self._providers.pop(provider_id, None)
        self.http.remove_provider(provider_id)
        if adapter is not None:
            logger.info(f"Removed provider {provider_id} from registry")
        return adapter is not None

    async def load(self, configs: list[ProviderConfig]) -> int:
        """Register the active providers among ``configs``; invalid ones are logged and skipped."""
        loaded = 0
        for config in configs:
            if not config.is_active:
                continue
            try:
                await self.upsert(config)
                loaded += 1
            except ConfigError as e:
                logger.error(f"Skipping provider {config.id}: {e.message}")
        return loaded
