"""
The three-leg OAuth broker: provider login URL, provider callback, and code
redemption for a signed access token.
"""

import hmac
from dataclasses import dataclass
from typing import Callable, Optional

from loguru import logger

from idbroker.auth.credentials import (
    BasicCredentials,
    Credentials,
    build_redirect_target,
    pkce_challenge,
)
from idbroker.auth.flow import FlowStore
from idbroker.auth.schemas import AuthorizationCode, AuthorizationRequest, FlowState
from idbroker.authprovider.base import ServiceProvider
from idbroker.authprovider.oauth2 import build_service_provider
from idbroker.authprovider.schemas import AuthProviderParams, AuthProviderRecord, ProviderType
from idbroker.client.schemas import ClientRecord
from idbroker.constants import ACCESS_TOKEN_EXPIRY_SECONDS, SUPPORTED_CODE_CHALLENGE_METHODS
from idbroker.crypto.tokens import TokenService
from idbroker.exceptions import (
    AuthError,
    BrokerError,
    CodeExchangeError,
    CryptoError,
    InternalError,
    InvalidCredentials,
    NotFound,
    StateMismatch,
    ValidationError,
)
from idbroker.metrics import track_flow_step
from idbroker.registry import ProviderRegistry

ProviderFactory = Callable[[ProviderType, AuthProviderParams], ServiceProvider]


@dataclass
class IssuedToken:
    access_token: str
    expires_in: int
    token_type: str = "Bearer"


class OAuthBroker:
    def __init__(
        self,
        registry: ProviderRegistry,
        flow_store: FlowStore,
        tokens: TokenService,
        provider_factory: ProviderFactory = build_service_provider,
        access_token_expiry: int = ACCESS_TOKEN_EXPIRY_SECONDS,
    ):
        self.registry = registry
        self.flow_store = flow_store
        self.tokens = tokens
        self.provider_factory = provider_factory
        self.access_token_expiry = access_token_expiry

    def _transition(self, client_id: str, state: FlowState, detail: str = ""):
        logger.info(f"OAuth flow [client={client_id}] -> {state.value} {detail}".rstrip())

    async def _active_client(self, client_id: str) -> ClientRecord:
        client = await self.registry.get_client(client_id)
        if not client or not client.enabled:
            raise NotFound(f"Client {client_id} not found")
        return client

    async def _service_provider(self, provider_id: Optional[str]) -> tuple[AuthProviderRecord, ServiceProvider]:
        if not provider_id:
            raise NotFound("No auth provider configured for client")
        provider = await self.registry.get_auth_provider(provider_id)
        if not provider or not provider.enabled:
            raise NotFound(f"Auth provider {provider_id} not found")
        try:
            params = self.registry.decrypt_provider_params(provider)
        except CryptoError:
            logger.error(f"Credentials of auth provider {provider_id} could not be decrypted")
            raise InternalError("Auth provider configuration is unreadable")
        return provider, self.provider_factory(provider.provider_type, params)

    async def login(
        self,
        client_id: Optional[str],
        state: Optional[str],
        redirect_url: Optional[str],
        auth_provider_id: Optional[str] = None,
        code_challenge: Optional[str] = None,
        code_challenge_method: Optional[str] = None,
    ) -> str:
        """
        Validate the request, remember it, and return the provider login URL.
        """
        if not client_id:
            raise ValidationError("client_id is required")
        if not state:
            raise ValidationError("state is required")
        if not redirect_url:
            raise ValidationError("redirect_url is required")
        if code_challenge:
            code_challenge_method = code_challenge_method or "S256"
            if code_challenge_method not in SUPPORTED_CODE_CHALLENGE_METHODS:
                raise ValidationError(f"Unsupported code_challenge_method: {code_challenge_method}")
        elif code_challenge_method:
            raise ValidationError("code_challenge_method given without code_challenge")

        self._transition(client_id, FlowState.START)
        try:
            client = await self._active_client(client_id)
            provider, service_provider = await self._service_provider(
                auth_provider_id or client.default_auth_provider_id
            )
            if not client.allows_redirect(redirect_url):
                raise ValidationError("redirect_url is not registered for this client")
            try:
                login_url = service_provider.authorization_url(state)
            except (ValueError, TypeError) as exc:
                raise InternalError(f"Failed to build provider login url: {exc}")
            await self.flow_store.save_request(
                AuthorizationRequest(
                    client_id=client_id,
                    auth_provider_id=provider.provider_id,
                    redirect_url=redirect_url,
                    state=state,
                    code_challenge=code_challenge or None,
                    code_challenge_method=code_challenge_method if code_challenge else None,
                )
            )
        except BrokerError as exc:
            self._transition(client_id, FlowState.FAILED, f"at login: {exc.message}")
            track_flow_step("login", False)
            raise
        self._transition(client_id, FlowState.PROVIDER_REDIRECTED, f"provider={provider.provider_id}")
        track_flow_step("login", True)
        return login_url

    async def redirect(self, code: Optional[str], state: Optional[str], client_id: Optional[str]) -> str:
        """
        Handle the provider callback: federate the identity, issue an
        internal code and return where the user agent goes next.
        """
        if not code:
            raise ValidationError("code is required")
        if not state:
            raise ValidationError("state is required")
        if not client_id:
            raise ValidationError("client_id is required")

        try:
            request = await self.flow_store.claim_request(client_id, state)
            if request is None or not hmac.compare_digest(request.state.encode(), state.encode()):
                raise StateMismatch("Unknown or expired state")
            try:
                identity, internal_code = await self._federate(request, code)
            except BrokerError:
                # Put the request back so the user agent may retry the callback.
                await self.flow_store.save_request(request)
                raise
        except BrokerError as exc:
            self._transition(client_id, FlowState.FAILED, f"at callback: {exc.message}")
            track_flow_step("callback", False)
            raise
        self._transition(client_id, FlowState.CODE_ISSUED, f"user={identity.user_id}")
        track_flow_step("callback", True)
        return build_redirect_target(request.redirect_url, internal_code, state)

    async def _federate(self, request: AuthorizationRequest, code: str):
        """
        Exchange the provider code, upsert the user and mint the internal code.
        The user row is committed first; upsert is idempotent, so a retried
        callback converges on the same user.
        """
        client = await self._active_client(request.client_id)
        if not client.allows_redirect(request.redirect_url):
            raise ValidationError("redirect_url is no longer registered for this client")
        provider, service_provider = await self._service_provider(request.auth_provider_id)
        provider_token = await service_provider.exchange_code(code)
        federated = await service_provider.fetch_identity(provider_token)
        identity = await self.registry.upsert_user(client.project_id, federated, provider.provider_id)
        internal_code = await self.flow_store.issue_code(
            AuthorizationCode(
                client_id=request.client_id,
                user_id=identity.user_id,
                auth_provider_id=provider.provider_id,
                redirect_url=request.redirect_url,
                code_challenge=request.code_challenge,
                code_challenge_method=request.code_challenge_method,
            )
        )
        return identity, internal_code

    def _check_credentials(
        self,
        record: AuthorizationCode,
        credentials: Credentials,
        client: Optional[ClientRecord],
    ):
        if record.client_id != credentials.client_id:
            raise InvalidCredentials("Code was not issued to this client")
        if not client or not client.enabled:
            raise InvalidCredentials("Invalid client credentials")
        if not client.allows_redirect(record.redirect_url):
            raise ValidationError("redirect_url is no longer registered for this client")
        if isinstance(credentials, BasicCredentials):
            if not self.registry.verify_client_secret(client, credentials.client_secret):
                raise InvalidCredentials("Invalid client credentials")
            return
        if not record.code_challenge:
            raise InvalidCredentials("Code was not issued for PKCE")
        expected = pkce_challenge(credentials.code_verifier)
        if not hmac.compare_digest(expected.encode(), record.code_challenge.encode()):
            raise InvalidCredentials("Invalid code_verifier")

    async def verify(self, code: Optional[str], credentials: Credentials) -> IssuedToken:
        """
        Redeem an internal authorization code. Credential failures leave the
        code untouched; the code is claimed only after the token is minted.
        """
        client_id = credentials.client_id
        try:
            if not code:
                raise ValidationError("code is required")
            record = await self.flow_store.peek_code(code)
            if record is None:
                raise CodeExchangeError("Authorization code is invalid, expired or already used")
            client = await self.registry.get_client(credentials.client_id)
            self._check_credentials(record, credentials, client)
            access_token = self.tokens.issue_for(
                {
                    "sub": record.user_id,
                    "client_id": record.client_id,
                    "grant_type": "authorization_code",
                },
                self.access_token_expiry,
            )
            if await self.flow_store.claim_code(code) is None:
                raise CodeExchangeError("Authorization code is invalid, expired or already used")
        except BrokerError as exc:
            self._transition(client_id, FlowState.FAILED, f"at verify: {exc.message}")
            track_flow_step("verify", False)
            raise
        self._transition(client_id, FlowState.TOKEN_ISSUED, f"user={record.user_id}")
        track_flow_step("verify", True)
        return IssuedToken(access_token, self.access_token_expiry)

    async def client_credentials(self, client_id: str, client_secret: str) -> IssuedToken:
        """
        Machine-to-machine token for a client acting as its linked user.
        """
        client = await self.registry.get_client(client_id)
        if not client or not client.enabled or not self.registry.verify_client_secret(client, client_secret):
            track_flow_step("client_credentials", False)
            raise InvalidCredentials("Invalid client credentials")
        if not client.linked_user_id:
            track_flow_step("client_credentials", False)
            raise ValidationError("Client has no linked user")
        user = await self.registry.get_user(client.linked_user_id)
        if not user or not user.is_active():
            track_flow_step("client_credentials", False)
            raise AuthError("Linked user is disabled or missing")
        access_token = self.tokens.issue_for(
            {"sub": user.user_id, "client_id": client.client_id, "grant_type": "client_credentials"},
            self.access_token_expiry,
        )
        logger.info(f"Issued client credentials token [client={client_id}]")
        track_flow_step("client_credentials", True)
        return IssuedToken(access_token, self.access_token_expiry)
