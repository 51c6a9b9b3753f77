"""
Authenticated encryption (AES-GCM) for secrets and cached records at rest.
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from idbroker.exceptions import DecryptionError

NONCE_SIZE = 12
TAG_SIZE = 16


class SecretCipher:
    """
    Encrypts to urlsafe-base64(nonce || ciphertext || tag), with a fresh random
    nonce on every call.
    """

    def __init__(self, key: bytes):
        if len(key) not in (16, 24, 32):
            raise ValueError("AES key must be 16, 24 or 32 bytes")
        self._aead = AESGCM(key)

    def encrypt(self, plaintext: str | bytes) -> str:
        if isinstance(plaintext, str):
            plaintext = plaintext.encode()
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext, None)
        return base64.urlsafe_b64encode(nonce + sealed).decode()

    def decrypt_bytes(self, token: str | bytes) -> bytes:
        if isinstance(token, str):
            token = token.encode()
        try:
            payload = base64.b64decode(token, altchars=b"-_", validate=True)
        except (binascii.Error, ValueError):
            raise DecryptionError("Ciphertext is not valid base64")
        if len(payload) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionError("Ciphertext too short")
        nonce, sealed = payload[:NONCE_SIZE], payload[NONCE_SIZE:]
        try:
            return self._aead.decrypt(nonce, sealed, None)
        except InvalidTag:
            raise DecryptionError("Ciphertext failed authentication")

    def decrypt(self, token: str | bytes) -> str:
        try:
            return self.decrypt_bytes(token).decode()
        except UnicodeDecodeError:
            raise DecryptionError("Plaintext is not valid utf-8")
