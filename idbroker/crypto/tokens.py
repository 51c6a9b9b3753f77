"""
Signed, expiring claims tokens (HMAC JWT).
"""

import time
from typing import Any

import jwt

from idbroker.constants import HMAC_ALGORITHMS, TOKEN_ALGORITHM
from idbroker.exceptions import TokenInvalid


class TokenService:
    def __init__(self, secret: str, algorithm: str = TOKEN_ALGORITHM):
        if not secret:
            raise ValueError("Token secret must not be empty")
        if algorithm not in HMAC_ALGORITHMS:
            raise ValueError(f"Unsupported signing algorithm: {algorithm}")
        self._secret = secret
        self.algorithm = algorithm

    def issue(self, claims: dict[str, Any], expiry: int) -> str:
        """
        Sign the claims with an absolute expiry (unix seconds).
        """
        payload = dict(claims)
        payload["exp"] = int(expiry)
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def issue_for(self, claims: dict[str, Any], lifetime_seconds: int) -> str:
        return self.issue(claims, int(time.time()) + lifetime_seconds)

    def validate(self, token: str) -> dict[str, Any]:
        """
        Verify signature and expiry, returning the claims without "exp".
        """
        if not token:
            raise TokenInvalid("Empty token")
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError:
            raise TokenInvalid("Malformed token")
        if header.get("alg") not in HMAC_ALGORITHMS:
            raise TokenInvalid(f"Unexpected signing method: {header.get('alg')}")
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=list(HMAC_ALGORITHMS),
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise TokenInvalid("Token has expired")
        except jwt.PyJWTError as exc:
            raise TokenInvalid(f"Invalid token: {exc}")
        claims.pop("exp", None)
        return claims
