"""
Generic OAuth2 / OIDC adapter speaking the authorization code grant.
"""

from urllib.parse import urlencode

import aiohttp
from loguru import logger

from idbroker.authprovider.base import ProviderToken, ServiceProvider
from idbroker.authprovider.schemas import AuthProviderParams, ProviderType
from idbroker.constants import PROVIDER_HTTP_TIMEOUT_SECONDS
from idbroker.exceptions import UpstreamError
from idbroker.user.schemas import FederatedIdentity


class OAuth2Provider(ServiceProvider):
    def __init__(self, params: AuthProviderParams, timeout: float = PROVIDER_HTTP_TIMEOUT_SECONDS):
        self.params = params
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def authorization_url(self, state: str) -> str:
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self.params.client_id,
                "redirect_uri": self.params.redirect_url,
                "scope": " ".join(self.params.scopes),
                "state": state,
                "access_type": "offline",
            }
        )
        separator = "&" if "?" in self.params.authorization_url else "?"
        return f"{self.params.authorization_url}{separator}{query}"

    async def exchange_code(self, code: str) -> ProviderToken:
        form = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.params.redirect_url,
            "client_id": self.params.client_id,
            "client_secret": self.params.client_secret,
        }
        try:
            async with aiohttp.ClientSession(raise_for_status=True, timeout=self.timeout) as session:
                async with session.post(
                    self.params.token_url, data=form, headers={"Accept": "application/json"}
                ) as response:
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as exc:
            logger.error(f"Token exchange with {self.params.token_url} failed: {exc}")
            raise UpstreamError("Failed to exchange code with identity provider")
        if not isinstance(data, dict) or not data.get("access_token"):
            raise UpstreamError("Identity provider returned no access token")
        return ProviderToken.model_validate(data)

    async def fetch_identity(self, token: ProviderToken) -> FederatedIdentity:
        headers = {
            "Authorization": f"Bearer {token.access_token}",
            "Accept": "application/json",
        }
        try:
            async with aiohttp.ClientSession(raise_for_status=True, timeout=self.timeout) as session:
                async with session.get(self.params.userinfo_url, headers=headers) as response:
                    data = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as exc:
            logger.error(f"Userinfo request to {self.params.userinfo_url} failed: {exc}")
            raise UpstreamError("Failed to fetch user info from identity provider")
        if not isinstance(data, dict):
            raise UpstreamError("Identity provider returned malformed user info")
        return FederatedIdentity(
            subject=str(data["sub"]) if data.get("sub") is not None else None,
            email=data.get("email"),
            phone=data.get("phone_number") or data.get("phone"),
            name=data.get("name"),
            profile_pic=data.get("picture"),
        )


def build_service_provider(
    provider_type: ProviderType, params: AuthProviderParams
) -> ServiceProvider:
    if provider_type in (ProviderType.OAUTH2, ProviderType.OIDC):
        return OAuth2Provider(params)
    raise UpstreamError(f"Unsupported auth provider type: {provider_type}")
