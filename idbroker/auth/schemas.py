"""
Transient authorization flow records, kept in the TTL store rather than the
database.
"""

import hashlib
import secrets
import string
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class FlowState(str, Enum):
    START = "START"
    PROVIDER_REDIRECTED = "PROVIDER_REDIRECTED"
    CODE_ISSUED = "CODE_ISSUED"
    TOKEN_ISSUED = "TOKEN_ISSUED"
    FAILED = "FAILED"


def digest(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


class AuthorizationRequest(BaseModel):
    """
    Captured at login, consumed by the provider callback.
    """

    client_id: str
    auth_provider_id: str
    redirect_url: str
    state: str
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None

    @staticmethod
    def cache_key(client_id: str, state: str) -> str:
        return f"auth_request:{client_id}:{digest(state)}"


class AuthorizationCode(BaseModel):
    """
    Internal authorization code, redeemable exactly once at verify.
    """

    client_id: str
    user_id: str
    auth_provider_id: str
    redirect_url: str
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None

    @staticmethod
    def generate_code() -> str:
        return "".join(secrets.choice(string.ascii_letters + string.digits) for _ in range(64))

    @staticmethod
    def cache_key(code: str) -> str:
        return f"auth_code:{digest(code)}"


class ClientCredentialsArgs(BaseModel):
    client_id: str
    client_secret: str
