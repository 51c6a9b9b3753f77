"""
Parsing of client credentials presented at the verify endpoint, plus the
PKCE and redirect-target helpers used by the broker.
"""

import base64
import binascii
import hashlib
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlencode

from idbroker.exceptions import InvalidCredentials


@dataclass(frozen=True)
class BasicCredentials:
    client_id: str
    client_secret: str


@dataclass(frozen=True)
class PkceCredentials:
    client_id: str
    code_verifier: str


Credentials = Union[BasicCredentials, PkceCredentials]


def parse_basic_credentials(header: str) -> BasicCredentials:
    """
    Decode "Basic base64(id:secret)", splitting on the first colon only.
    """
    parts = header.split(" ")
    if len(parts) != 2 or parts[0] != "Basic":
        raise InvalidCredentials("Invalid authorization header")
    try:
        decoded = base64.b64decode(parts[1], validate=True).decode()
    except (binascii.Error, ValueError):
        raise InvalidCredentials("Invalid authorization header encoding")
    client_id, sep, client_secret = decoded.partition(":")
    if not sep or not client_id:
        raise InvalidCredentials("Invalid authorization header format")
    return BasicCredentials(client_id=client_id, client_secret=client_secret)


def classify_credentials(
    authorization: Optional[str],
    client_id: Optional[str],
    code_verifier: Optional[str],
) -> Credentials:
    """
    PKCE when a client id and verifier are supplied, otherwise basic auth.
    """
    if client_id and code_verifier:
        return PkceCredentials(client_id=client_id, code_verifier=code_verifier)
    if not authorization:
        raise InvalidCredentials("Client credentials are required")
    credentials = parse_basic_credentials(authorization)
    if client_id and client_id != credentials.client_id:
        raise InvalidCredentials("client_id does not match authorization header")
    return credentials


def pkce_challenge(code_verifier: str) -> str:
    """BASE64URL(SHA256(verifier)) without padding (RFC 7636 S256)."""
    sha256_hash = hashlib.sha256(code_verifier.encode()).digest()
    return base64.urlsafe_b64encode(sha256_hash).rstrip(b"=").decode("ascii")


def build_redirect_target(redirect_url: str, code: str, state: str) -> str:
    separator = "&" if "?" in redirect_url else "?"
    return f"{redirect_url}{separator}{urlencode({'code': code, 'state': state})}"
