"""
Application entrypoint: builds the services, wires the event bus and mounts
the routers.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import redis.asyncio as redis
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from loguru import logger
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from idbroker.auth.flow import FlowStore
from idbroker.auth.identity import IdentityResolver
from idbroker.auth.router import router as auth_router
from idbroker.auth.service import OAuthBroker, ProviderFactory
from idbroker.authprovider.oauth2 import build_service_provider
from idbroker.authprovider.refresher import ProviderRefresher
from idbroker.cache import TTLCache
from idbroker.config import Settings, get_settings
from idbroker.crypto.cipher import SecretCipher
from idbroker.crypto.tokens import TokenService
from idbroker.database import build_engine, build_sessionmaker, create_tables
from idbroker.events import (
    BootstrapStateTracker,
    ClientCacheInvalidator,
    EventBus,
    EventKind,
)
from idbroker.exceptions import BrokerError, CryptoError
from idbroker.me.router import router as me_router
from idbroker.registry import ProviderRegistry


def error_envelope(message: str) -> dict:
    return {"success": False, "message": message}


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(BrokerError)
    async def _handle_broker_error(_: Request, exc: BrokerError) -> JSONResponse:
        if isinstance(exc, CryptoError):
            # Details stay in the log, the caller only learns it was rejected.
            logger.warning(f"Crypto failure: {type(exc).__name__}")
            message = exc.public_message
        else:
            message = exc.message
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=error_envelope(message))

    @app.exception_handler(RequestValidationError)
    async def _handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        errors = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_envelope(f"Invalid request: {errors}"),
        )

    @app.exception_handler(Exception)
    async def _handle_unexpected(_: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error(f"Unhandled error: {exc}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_envelope("Internal server error"),
        )


def create_app(
    settings: Optional[Settings] = None,
    redis_client: Optional[redis.Redis] = None,
    provider_factory: ProviderFactory = build_service_provider,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config = settings or get_settings()
        logger.info(f"Starting {config.deployment_name}...")

        engine = build_engine(config.database_url)
        await create_tables(engine)
        logger.info("Initialized the database...")

        cache = TTLCache(
            redis_client if redis_client is not None else redis.from_url(config.redis_url),
            fail_open=config.cache_fail_open,
        )
        cipher = SecretCipher(config.encryption_key_bytes)
        flow_store = FlowStore(cache.with_fail_open(False), cipher)
        tokens = TokenService(config.jwt_secret)
        bus = EventBus()
        registry = ProviderRegistry(build_sessionmaker(engine), cipher, cache, bus)

        tracker = BootstrapStateTracker(await registry.get_bootstrap_client())
        invalidator = ClientCacheInvalidator(cache)
        for kind in (EventKind.CLIENT_CREATED, EventKind.CLIENT_UPDATED):
            bus.subscribe(kind, tracker)
            bus.subscribe(kind, invalidator)
        if tracker.auth_enforced:
            logger.info(f"Authentication enforced, bootstrap client {tracker.bootstrap_client_id}")
        else:
            logger.warning("No bootstrap client found, running without authentication")

        app.state.settings = config
        app.state.cache = cache
        app.state.bus = bus
        app.state.registry = registry
        app.state.tracker = tracker
        app.state.broker = OAuthBroker(
            registry,
            flow_store,
            tokens,
            provider_factory=provider_factory,
            access_token_expiry=config.access_token_expiry_seconds,
        )
        app.state.identity_resolver = IdentityResolver(
            tokens,
            cipher,
            cache,
            registry,
            tracker,
            ttl=config.token_cache_ttl_seconds,
        )

        refresher = ProviderRefresher(registry, config.auth_provider_refetch_interval_seconds)
        refresher_task = asyncio.create_task(refresher.run())
        yield
        await refresher.stop()
        await refresher_task
        await cache.close()
        await engine.dispose()

    app = FastAPI(lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(auth_router, prefix="/auth/v1", tags=["Authentication"])
    app.include_router(me_router, prefix="/me", tags=["Me"])

    @app.get("/health")
    async def health(request: Request):
        return {
            "status": "ok",
            "deployment": request.app.state.settings.deployment_name,
            "auth_enforced": request.app.state.tracker.auth_enforced,
        }

    @app.get("/metrics")
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
