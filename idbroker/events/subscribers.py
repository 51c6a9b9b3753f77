"""
The subscribers wired onto the event bus at startup.
"""

from typing import Optional, Union

from loguru import logger

from idbroker.cache import TTLCache
from idbroker.client.schemas import ClientRecord
from idbroker.events.schemas import ClientCreated, ClientUpdated, DomainEvent


class BootstrapStateTracker:
    """
    Flips from "no auth client configured" to "auth enforced" once the
    bootstrap client shows up, and never back.
    """

    def __init__(self, bootstrap_client: Optional[ClientRecord] = None):
        self.bootstrap_client_id: Optional[str] = None
        if bootstrap_client is not None:
            self.bootstrap_client_id = bootstrap_client.client_id

    @property
    def auth_enforced(self) -> bool:
        return self.bootstrap_client_id is not None

    async def handle(self, event: DomainEvent):
        if not isinstance(event, (ClientCreated, ClientUpdated)):
            return
        if self.auth_enforced or not event.client.is_bootstrap:
            return
        self.bootstrap_client_id = event.client.client_id
        logger.success(
            f"Bootstrap client {event.client.client_id} registered, authentication is now enforced"
        )


class ClientCacheInvalidator:
    """
    Drops cached client and provider records tied to a changed client.
    """

    def __init__(self, cache: TTLCache):
        self.cache = cache

    async def handle(self, event: DomainEvent):
        if not isinstance(event, (ClientCreated, ClientUpdated)):
            return
        keys = [client_cache_key(event.client.client_id)]
        if event.client.default_auth_provider_id:
            keys.append(provider_cache_key(event.client.default_auth_provider_id))
        await self.cache.delete(*keys)
        logger.debug(f"Invalidated cache entries {keys}")


def client_cache_key(client_id: str) -> str:
    return f"client:{client_id}"


def provider_cache_key(provider_id: str) -> str:
    return f"authprovider:{provider_id}"


Subscriber = Union[BootstrapStateTracker, ClientCacheInvalidator]
