"""
Import every ORM module so the declarative base knows about all tables.
"""

from idbroker.authprovider.schemas import AuthProvider  # noqa: F401
from idbroker.client.schemas import Client  # noqa: F401
from idbroker.user.schemas import User  # noqa: F401
