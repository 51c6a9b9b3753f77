from idbroker.crypto.cipher import SecretCipher
from idbroker.crypto.tokens import TokenService

__all__ = ["SecretCipher", "TokenService"]
