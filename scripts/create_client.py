import argparse
import asyncio

import redis.asyncio as redis
from loguru import logger

from idbroker.cache import TTLCache
from idbroker.client.schemas import ClientArgs
from idbroker.config import get_settings
from idbroker.crypto.cipher import SecretCipher
from idbroker.database import build_engine, build_sessionmaker, create_tables
from idbroker.events import ClientCacheInvalidator, EventBus, EventKind
from idbroker.registry import ProviderRegistry


async def create_client(args: argparse.Namespace):
    settings = get_settings()
    engine = build_engine(settings.database_url)
    await create_tables(engine)
    cache = TTLCache(redis.from_url(settings.redis_url), fail_open=True)
    bus = EventBus()
    bus.subscribe(EventKind.CLIENT_CREATED, ClientCacheInvalidator(cache))
    registry = ProviderRegistry(
        build_sessionmaker(engine), SecretCipher(settings.encryption_key_bytes), cache, bus
    )
    try:
        if args.bootstrap and (existing := await registry.get_bootstrap_client()):
            logger.warning(f"Bootstrap client already exists: {existing.client_id}")
            return
        record, secret = await registry.create_client(
            ClientArgs(
                name=args.name,
                redirect_urls=args.redirect_url,
                project_id=args.project_id,
                default_auth_provider_id=args.provider_id,
                is_bootstrap=args.bootstrap,
            ),
            created_by="cli",
        )
        logger.success(f"Created client {record.client_id=}")
        print(f"client_id={record.client_id}\nclient_secret={secret}")
    finally:
        await cache.close()
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Register a client application")
    parser.add_argument("name")
    parser.add_argument("--redirect-url", action="append", default=[], required=True)
    parser.add_argument("--provider-id")
    parser.add_argument("--project-id")
    parser.add_argument("--bootstrap", action="store_true")
    asyncio.run(create_client(parser.parse_args()))
