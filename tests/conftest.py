"""Shared pytest fixtures."""

import base64
import os

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from httpx import ASGITransport, AsyncClient

from idbroker.authprovider.base import ProviderToken, ServiceProvider
from idbroker.exceptions import UpstreamError
from idbroker.user.schemas import FederatedIdentity

TEST_ENCRYPTION_KEY = base64.b64encode(b"k" * 32).decode()
TEST_JWT_SECRET = "test-jwt-secret-with-enough-length-for-every-hmac-variant-0123456789"


class FakeServiceProvider(ServiceProvider):
    """In-memory identity provider: any code except "bad-code" authenticates."""

    def __init__(self, identity: FederatedIdentity | None = None):
        self.identity = identity or FederatedIdentity(
            subject="ext-1", email="ada@example.com", name="Ada Lovelace"
        )
        self.exchanged: list[str] = []

    def authorization_url(self, state: str) -> str:
        return f"https://idp.example.com/authorize?client_id=broker&state={state}"

    async def exchange_code(self, code: str) -> ProviderToken:
        if code == "bad-code":
            raise UpstreamError("Failed to exchange code with identity provider")
        self.exchanged.append(code)
        return ProviderToken(access_token=f"provider-token-{code}")

    async def fetch_identity(self, token: ProviderToken) -> FederatedIdentity:
        return self.identity


@pytest.fixture
def settings(tmp_path):
    from idbroker.config import Settings

    return Settings(
        deployment_name="idbroker-test",
        database_url=f"sqlite+aiosqlite:///{os.path.join(tmp_path, 'idbroker.sqlite')}",
        redis_url="redis://unused:6379/0",
        encryption_key=TEST_ENCRYPTION_KEY,
        jwt_secret=TEST_JWT_SECRET,
        auth_provider_refetch_interval_in_minutes=60,
    )


@pytest.fixture
def redis_client():
    return FakeAsyncRedis()


@pytest.fixture
def cipher():
    from idbroker.crypto.cipher import SecretCipher

    return SecretCipher(b"k" * 32)


@pytest.fixture
def tokens():
    from idbroker.crypto.tokens import TokenService

    return TokenService(TEST_JWT_SECRET)


@pytest.fixture
def fake_provider():
    return FakeServiceProvider()


@pytest_asyncio.fixture
async def app(settings, redis_client, fake_provider):
    """Application with its lifespan running, backed by sqlite and fakeredis."""
    from idbroker.main import create_app

    application = create_app(
        settings,
        redis_client=redis_client,
        provider_factory=lambda provider_type, params: fake_provider,
    )
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def async_client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest_asyncio.fixture
async def auth_provider(app):
    from idbroker.authprovider.schemas import AuthProviderArgs, AuthProviderParams

    return await app.state.registry.create_auth_provider(
        AuthProviderArgs(
            name="fake-idp",
            params=AuthProviderParams(
                authorization_url="https://idp.example.com/authorize",
                token_url="https://idp.example.com/token",
                userinfo_url="https://idp.example.com/userinfo",
                client_id="broker",
                client_secret="provider-secret",
                redirect_url="http://testserver/auth/v1/authp-callback",
            ),
        )
    )


@pytest_asyncio.fixture
async def registered_client(app, auth_provider):
    """The bootstrap client; returns (record, plain secret)."""
    from idbroker.client.schemas import ClientArgs

    return await app.state.registry.create_client(
        ClientArgs(
            name="web-app",
            redirect_urls=["https://app.example.com/callback", "https://app.example.com/cb?tenant=1"],
            default_auth_provider_id=auth_provider.provider_id,
            is_bootstrap=True,
        )
    )
