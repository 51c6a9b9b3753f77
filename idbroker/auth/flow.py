"""
Encrypted, lifetime-bounded storage of pending authorization requests and
issued authorization codes.
"""

from typing import Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from idbroker.auth.schemas import AuthorizationCode, AuthorizationRequest
from idbroker.cache import TTLCache
from idbroker.constants import AUTH_CODE_EXPIRY_SECONDS, AUTH_REQUEST_EXPIRY_SECONDS
from idbroker.crypto.cipher import SecretCipher
from idbroker.exceptions import CryptoError


class FlowStore:
    def __init__(
        self,
        cache: TTLCache,
        cipher: SecretCipher,
        request_ttl: int = AUTH_REQUEST_EXPIRY_SECONDS,
        code_ttl: int = AUTH_CODE_EXPIRY_SECONDS,
    ):
        self.cache = cache
        self.cipher = cipher
        self.request_ttl = request_ttl
        self.code_ttl = code_ttl

    def _open(self, model, key: str, sealed: Optional[str]):
        if sealed is None:
            return None
        try:
            return model.model_validate_json(self.cipher.decrypt(sealed))
        except (CryptoError, PydanticValidationError) as exc:
            logger.warning(f"Discarding unreadable flow record {key}: {exc}")
            return None

    async def save_request(self, request: AuthorizationRequest):
        key = AuthorizationRequest.cache_key(request.client_id, request.state)
        await self.cache.set(key, self.cipher.encrypt(request.model_dump_json()), self.request_ttl)

    async def load_request(self, client_id: str, state: str) -> Optional[AuthorizationRequest]:
        key = AuthorizationRequest.cache_key(client_id, state)
        return self._open(AuthorizationRequest, key, await self.cache.get(key))

    async def claim_request(self, client_id: str, state: str) -> Optional[AuthorizationRequest]:
        """
        Atomically take the pending request; concurrent callbacks for the
        same state see it at most once.
        """
        key = AuthorizationRequest.cache_key(client_id, state)
        return self._open(AuthorizationRequest, key, await self.cache.getdel(key))

    async def issue_code(self, record: AuthorizationCode) -> str:
        """
        Store the record under a fresh code and return the plain code.
        """
        code = AuthorizationCode.generate_code()
        key = AuthorizationCode.cache_key(code)
        await self.cache.set(key, self.cipher.encrypt(record.model_dump_json()), self.code_ttl)
        return code

    async def peek_code(self, code: str) -> Optional[AuthorizationCode]:
        key = AuthorizationCode.cache_key(code)
        return self._open(AuthorizationCode, key, await self.cache.get(key))

    async def claim_code(self, code: str) -> Optional[AuthorizationCode]:
        """
        Atomically remove the code; only one caller ever gets the record back.
        """
        key = AuthorizationCode.cache_key(code)
        return self._open(AuthorizationCode, key, await self.cache.getdel(key))
