"""
Identity resolution for protected endpoints: bearer token validation with a
cache-aside, per-token locked lookup of the user behind it.
"""

from typing import Optional

from fastapi import Depends, Header, Request
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from idbroker.auth.schemas import digest
from idbroker.cache import KeyedLock, TTLCache
from idbroker.constants import PROJECT_IDS_HEADER
from idbroker.crypto.cipher import SecretCipher
from idbroker.crypto.tokens import TokenService
from idbroker.events.subscribers import BootstrapStateTracker
from idbroker.exceptions import AuthError, CryptoError
from idbroker.metrics import identity_cache_lookups
from idbroker.registry import ProviderRegistry
from idbroker.user.schemas import Identity


def extract_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthError("Authorization header is required")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        raise AuthError("Authorization header must be of the form 'Bearer <token>'")
    return parts[1]


def parse_project_ids(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


class IdentityResolver:
    def __init__(
        self,
        tokens: TokenService,
        cipher: SecretCipher,
        cache: TTLCache,
        registry: ProviderRegistry,
        tracker: BootstrapStateTracker,
        ttl: int,
    ):
        self.tokens = tokens
        self.cipher = cipher
        self.cache = cache
        self.registry = registry
        self.tracker = tracker
        self.ttl = ttl
        self.locks = KeyedLock()
        self._warned_insecure = False

    async def _cached_identity(self, key: str) -> Optional[Identity]:
        sealed = await self.cache.get(key)
        if sealed is None:
            return None
        try:
            return Identity.model_validate_json(self.cipher.decrypt(sealed))
        except (CryptoError, PydanticValidationError):
            logger.warning("Dropping unreadable cached identity")
            await self.cache.delete(key)
            return None

    async def resolve(self, authorization: Optional[str]) -> Optional[Identity]:
        """
        Return the identity behind the bearer token, or None while no
        bootstrap client exists (authentication not yet enforced).
        """
        if not self.tracker.auth_enforced:
            if not self._warned_insecure:
                logger.warning("No bootstrap client configured, requests are NOT authenticated")
                self._warned_insecure = True
            return None

        token = extract_bearer_token(authorization)
        claims = self.tokens.validate(token)
        user_id = claims.get("sub")
        if not user_id:
            raise AuthError("Token has no subject")

        key = f"identity:{digest(token)}"
        async with self.locks.hold(key):
            identity = await self._cached_identity(key)
            if identity is not None:
                identity_cache_lookups.labels(result="hit").inc()
            else:
                identity_cache_lookups.labels(result="miss").inc()
                identity = await self.registry.get_user(user_id)
                if identity is None:
                    raise AuthError("User not found")
                if identity.is_active():
                    await self.cache.set(key, self.cipher.encrypt(identity.model_dump_json()), self.ttl)

        if not identity.enabled:
            raise AuthError("User is disabled")
        if identity.is_expired():
            raise AuthError("User has expired")
        return identity


def get_identity_resolver(request: Request) -> IdentityResolver:
    return request.app.state.identity_resolver


async def get_current_identity(
    request: Request,
    authorization: Optional[str] = Header(None),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Optional[Identity]:
    identity = await resolver.resolve(authorization)
    request.state.user = identity
    return identity


async def get_project_ids(
    request: Request,
    project_ids: Optional[str] = Header(None, alias=PROJECT_IDS_HEADER),
) -> list[str]:
    parsed = parse_project_ids(project_ids)
    request.state.project_ids = parsed
    return parsed
