"""
Provider registry: clients, auth providers and users, with a read-through
cache in front of the database and lifecycle events for client changes.
"""

import hmac
from typing import Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from idbroker.authprovider.schemas import (
    AuthProvider,
    AuthProviderArgs,
    AuthProviderParams,
    AuthProviderRecord,
)
from idbroker.cache import TTLCache
from idbroker.client.schemas import Client, ClientArgs, ClientRecord, ClientUpdateArgs
from idbroker.constants import (
    CLIENT_CACHE_EXPIRY_SECONDS,
    CLIENT_NEGATIVE_CACHE_EXPIRY_SECONDS,
    PROVIDER_CACHE_EXPIRY_SECONDS,
)
from idbroker.crypto.cipher import SecretCipher
from idbroker.events.bus import EventBus
from idbroker.events.schemas import ClientCreated, ClientUpdated
from idbroker.events.subscribers import client_cache_key, provider_cache_key
from idbroker.exceptions import AuthError, CryptoError, NotFound, UpstreamError
from idbroker.user.schemas import FederatedIdentity, Identity, User

NEGATIVE_CACHE_MARKER = "__none__"


class ProviderRegistry:
    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        cipher: SecretCipher,
        cache: TTLCache,
        bus: EventBus,
    ):
        self.session_maker = session_maker
        self.cipher = cipher
        self.cache = cache
        self.bus = bus

    # Clients.

    async def get_client(self, client_id: str) -> Optional[ClientRecord]:
        """
        Load a client by id, cache first (including brief negative caching).
        """
        cache_key = client_cache_key(client_id)
        cached = await self.cache.get(cache_key)
        if cached == NEGATIVE_CACHE_MARKER:
            return None
        if cached:
            try:
                return ClientRecord.model_validate_json(cached)
            except PydanticValidationError:
                logger.warning(f"Discarding unreadable cached client {client_id}")
                await self.cache.delete(cache_key)

        async with self.session_maker() as session:
            client = await session.get(Client, client_id)
        if not client:
            await self.cache.set(cache_key, NEGATIVE_CACHE_MARKER, CLIENT_NEGATIVE_CACHE_EXPIRY_SECONDS)
            return None
        record = ClientRecord.model_validate(client)
        await self.cache.set(cache_key, record.model_dump_json(), CLIENT_CACHE_EXPIRY_SECONDS)
        return record

    async def get_bootstrap_client(self) -> Optional[ClientRecord]:
        async with self.session_maker() as session:
            client = (
                (
                    await session.execute(
                        select(Client)
                        .where(Client.is_bootstrap.is_(True))
                        .order_by(Client.created_at)
                        .limit(1)
                    )
                )
                .scalars()
                .first()
            )
        return ClientRecord.model_validate(client) if client else None

    async def create_client(
        self, args: ClientArgs, created_by: Optional[str] = None
    ) -> tuple[ClientRecord, str]:
        """
        Persist a new client and announce it; returns (record, plain secret).
        The plain secret is not retrievable afterwards.
        """
        plain_secret = Client.generate_secret()
        client = Client(
            **args.model_dump(),
            secret=self.cipher.encrypt(plain_secret),
            created_by=created_by,
            updated_by=created_by,
        )
        async with self.session_maker() as session:
            session.add(client)
            await session.commit()
            await session.refresh(client)
        record = ClientRecord.model_validate(client)
        logger.info(f"Created client {record.client_id} ({record.name})")
        await self.bus.emit(ClientCreated(client=record))
        return record, plain_secret

    async def update_client(
        self, client_id: str, args: ClientUpdateArgs, updated_by: Optional[str] = None
    ) -> ClientRecord:
        async with self.session_maker() as session:
            client = await session.get(Client, client_id)
            if not client:
                raise NotFound(f"Client {client_id} not found")
            for key, value in args.model_dump(exclude_unset=True).items():
                setattr(client, key, value)
            client.updated_by = updated_by
            await session.commit()
            await session.refresh(client)
        record = ClientRecord.model_validate(client)
        logger.info(f"Updated client {record.client_id}")
        await self.bus.emit(ClientUpdated(client=record))
        return record

    def verify_client_secret(self, client: ClientRecord, secret: str) -> bool:
        try:
            stored = self.cipher.decrypt(client.secret)
        except CryptoError:
            logger.error(f"Stored secret for client {client.client_id} failed to decrypt")
            return False
        return hmac.compare_digest(stored.encode(), secret.encode())

    # Auth providers.

    async def get_auth_provider(self, provider_id: str) -> Optional[AuthProviderRecord]:
        cache_key = provider_cache_key(provider_id)
        cached = await self.cache.get(cache_key)
        if cached:
            try:
                return AuthProviderRecord.model_validate_json(cached)
            except PydanticValidationError:
                await self.cache.delete(cache_key)

        async with self.session_maker() as session:
            provider = await session.get(AuthProvider, provider_id)
        if not provider:
            return None
        record = AuthProviderRecord.model_validate(provider)
        await self.cache_auth_provider(record)
        return record

    async def list_auth_providers(self, enabled_only: bool = True) -> list[AuthProviderRecord]:
        query = select(AuthProvider)
        if enabled_only:
            query = query.where(AuthProvider.enabled.is_(True))
        async with self.session_maker() as session:
            providers = (await session.execute(query)).scalars().all()
        return [AuthProviderRecord.model_validate(provider) for provider in providers]

    async def cache_auth_provider(self, record: AuthProviderRecord):
        await self.cache.set(
            provider_cache_key(record.provider_id),
            record.model_dump_json(),
            PROVIDER_CACHE_EXPIRY_SECONDS,
        )

    async def create_auth_provider(
        self, args: AuthProviderArgs, created_by: Optional[str] = None
    ) -> AuthProviderRecord:
        params = args.params.model_copy(
            update={"client_secret": self.cipher.encrypt(args.params.client_secret)}
        )
        provider = AuthProvider(
            name=args.name,
            provider_type=args.provider_type.value,
            params=params.model_dump(),
            project_id=args.project_id,
            created_by=created_by,
            updated_by=created_by,
        )
        async with self.session_maker() as session:
            session.add(provider)
            await session.commit()
            await session.refresh(provider)
        logger.info(f"Created auth provider {provider.provider_id} ({provider.name})")
        return AuthProviderRecord.model_validate(provider)

    def decrypt_provider_params(self, record: AuthProviderRecord) -> AuthProviderParams:
        return record.params.model_copy(
            update={"client_secret": self.cipher.decrypt(record.params.client_secret)}
        )

    # Users.

    async def get_user(self, user_id: str) -> Optional[Identity]:
        async with self.session_maker() as session:
            user = await session.get(User, user_id)
        return Identity.model_validate(user) if user else None

    async def _find_user(
        self, session: AsyncSession, project_id: Optional[str], federated: FederatedIdentity
    ) -> Optional[User]:
        for column, value in ((User.email, federated.email), (User.phone, federated.phone)):
            if not value:
                continue
            query = select(User).where(column == value)
            if project_id is None:
                query = query.where(User.project_id.is_(None))
            else:
                query = query.where(User.project_id == project_id)
            user = (await session.execute(query)).scalars().first()
            if user:
                return user
        return None

    async def upsert_user(
        self,
        project_id: Optional[str],
        federated: FederatedIdentity,
        auth_provider_id: str,
    ) -> Identity:
        """
        Find the user by email (then phone) within the project, creating it
        when absent. Disabled or expired users are refused.
        """
        if not federated.email and not federated.phone:
            raise UpstreamError("Identity provider returned neither email nor phone")

        async with self.session_maker() as session:
            user = await self._find_user(session, project_id, federated)
            if user is None:
                user = User(
                    project_id=project_id,
                    name=federated.name,
                    email=federated.email,
                    phone=federated.phone,
                    profile_pic=federated.profile_pic,
                    auth_provider_id=auth_provider_id,
                )
                session.add(user)
                try:
                    await session.commit()
                    await session.refresh(user)
                    logger.info(f"Created user {user.user_id} via provider {auth_provider_id}")
                except IntegrityError:
                    # Concurrent callback for the same person created it first.
                    await session.rollback()
                    user = await self._find_user(session, project_id, federated)
                    if user is None:
                        raise
            else:
                if federated.name and not user.name:
                    user.name = federated.name
                if federated.profile_pic and user.profile_pic != federated.profile_pic:
                    user.profile_pic = federated.profile_pic
                await session.commit()
                await session.refresh(user)

        identity = Identity.model_validate(user)
        if not identity.enabled:
            raise AuthError("User is disabled")
        if identity.is_expired():
            raise AuthError("User has expired")
        return identity
