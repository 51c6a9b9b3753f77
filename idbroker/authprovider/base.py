"""
Contract every external identity provider adapter implements.
"""

from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel

from idbroker.user.schemas import FederatedIdentity


class ProviderToken(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None
    expires_in: Optional[int] = None


class ServiceProvider(ABC):
    @abstractmethod
    def authorization_url(self, state: str) -> str:
        """URL the user agent is sent to, carrying state verbatim."""

    @abstractmethod
    async def exchange_code(self, code: str) -> ProviderToken:
        """Trade the provider's authorization code for its token."""

    @abstractmethod
    async def fetch_identity(self, token: ProviderToken) -> FederatedIdentity:
        """Look up who the token belongs to."""
