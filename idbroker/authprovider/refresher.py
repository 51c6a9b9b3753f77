"""
Background job keeping auth provider configuration warm in the cache.
"""

import asyncio

from loguru import logger

from idbroker.registry import ProviderRegistry


class ProviderRefresher:
    def __init__(self, registry: ProviderRegistry, interval: float):
        self.registry = registry
        self.interval = interval
        self.is_running = False
        self._stop = asyncio.Event()

    async def refresh_once(self) -> int:
        providers = await self.registry.list_auth_providers(enabled_only=True)
        for provider in providers:
            await self.registry.cache_auth_provider(provider)
        logger.debug(f"Refreshed {len(providers)} auth providers")
        return len(providers)

    async def run(self):
        """
        Refresh on an interval until stopped; failures are logged and the
        next tick tries again.
        """
        self.is_running = True
        logger.info(f"Auth provider refresher started, interval={self.interval}s")
        while self.is_running:
            try:
                await self.refresh_once()
            except Exception as exc:
                logger.error(f"Auth provider refresh failed: {exc}")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Auth provider refresher stopped")

    async def stop(self):
        self.is_running = False
        self._stop.set()
