"""
Error taxonomy for the broker; every error knows the HTTP status it renders as.
"""


class BrokerError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BrokerError):
    """Malformed or missing input."""

    status_code = 400


class InvalidCredentials(ValidationError):
    """Client credentials (basic auth or PKCE) absent, malformed or wrong."""


class NotFound(BrokerError):
    status_code = 404


class AuthError(BrokerError):
    """Missing or invalid bearer token / federation credentials."""

    status_code = 401


class StateMismatch(AuthError):
    """Callback state does not match any pending authorization request."""

    status_code = 400


class CryptoError(AuthError):
    """
    Decryption or signature failure. Rendered as a generic auth error so that
    nothing about keys or ciphertexts leaks to the caller.
    """

    public_message = "Invalid or expired credentials"


class DecryptionError(CryptoError):
    pass


class TokenInvalid(CryptoError):
    pass


class UpstreamError(BrokerError):
    """An identity provider call failed; never retried automatically."""

    status_code = 500


class InternalError(BrokerError):
    status_code = 500


class CodeExchangeError(InternalError):
    """Authorization code unknown, expired or already redeemed."""
