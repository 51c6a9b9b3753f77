"""
Flow lifetimes, cache expirations and other fixed values.
"""

# Transient authorization flow state.
AUTH_REQUEST_EXPIRY_SECONDS = 300
AUTH_CODE_EXPIRY_SECONDS = 60

# Issued bearer tokens.
ACCESS_TOKEN_EXPIRY_SECONDS = 86400
TOKEN_ALGORITHM = "HS256"
HMAC_ALGORITHMS = ("HS256", "HS384", "HS512")

# Registry read-through cache.
CLIENT_CACHE_EXPIRY_SECONDS = 3600
CLIENT_NEGATIVE_CACHE_EXPIRY_SECONDS = 60
PROVIDER_CACHE_EXPIRY_SECONDS = 300

# Defaults for the identity cache and provider refresh job (minutes).
DEFAULT_TOKEN_CACHE_TTL_MINUTES = 1440
DEFAULT_AUTH_PROVIDER_REFETCH_INTERVAL_MINUTES = 1

# Per-operation timeout against redis.
CACHE_OP_TIMEOUT_SECONDS = 2.5

# Outbound calls to identity providers.
PROVIDER_HTTP_TIMEOUT_SECONDS = 10

SUPPORTED_CODE_CHALLENGE_METHODS = ("S256",)

PROJECT_IDS_HEADER = "X-Project-Ids"
