"""End-to-end tests of the broker endpoints over HTTP."""

import base64
from urllib.parse import parse_qs, urlparse

import pytest

REDIRECT_URL = "https://app.example.com/callback"


def _basic(client_id: str, secret: str) -> dict:
    token = base64.b64encode(f"{client_id}:{secret}".encode()).decode()
    return {"Authorization": f"Basic {token}"}


async def _login_and_callback(async_client, client_id, state="s1", redirect_url=REDIRECT_URL, **extra):
    response = await async_client.get(
        "/auth/v1/login",
        params={"client_id": client_id, "state": state, "redirect_url": redirect_url, "postback": "true", **extra},
    )
    assert response.status_code == 200, response.text
    response = await async_client.get(
        "/auth/v1/authp-callback",
        params={"code": "provider-code", "state": state, "client_id": client_id, "postback": "true"},
    )
    assert response.status_code == 200, response.text
    target = urlparse(response.json()["redirect_url"])
    query = parse_qs(target.query)
    assert query["state"] == [state]
    return query["code"][0]


class TestHealth:
    @pytest.mark.asyncio
    async def test_not_enforced_without_bootstrap_client(self, async_client):
        response = await async_client.get("/health")
        assert response.status_code == 200
        assert response.json()["auth_enforced"] is False

    @pytest.mark.asyncio
    async def test_enforced_after_bootstrap_client_created(self, async_client, registered_client):
        response = await async_client.get("/health")
        assert response.json()["auth_enforced"] is True

    @pytest.mark.asyncio
    async def test_metrics_exposed(self, async_client):
        response = await async_client.get("/metrics")
        assert response.status_code == 200
        assert "broker_flow_steps_total" in response.text


class TestLogin:
    @pytest.mark.asyncio
    async def test_postback_returns_json(self, async_client, registered_client):
        record, _ = registered_client
        response = await async_client.get(
            "/auth/v1/login",
            params={"client_id": record.client_id, "state": "s1", "redirect_url": REDIRECT_URL, "postback": "true"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert "state=s1" in body["data"]["login_url"]

    @pytest.mark.asyncio
    async def test_redirects_by_default(self, async_client, registered_client):
        record, _ = registered_client
        response = await async_client.get(
            "/auth/v1/login",
            params={"client_id": record.client_id, "state": "s1", "redirect_url": REDIRECT_URL},
        )
        assert response.status_code == 307
        assert response.headers["location"].startswith("https://idp.example.com/authorize")
        assert "state=s1" in response.headers["location"]

    @pytest.mark.asyncio
    async def test_unknown_client(self, async_client, registered_client):
        response = await async_client.get(
            "/auth/v1/login",
            params={"client_id": "nope", "state": "s1", "redirect_url": REDIRECT_URL, "postback": "true"},
        )
        assert response.status_code == 404
        assert response.json() == {"success": False, "message": "Client nope not found"}

    @pytest.mark.asyncio
    async def test_missing_state(self, async_client, registered_client):
        record, _ = registered_client
        response = await async_client.get(
            "/auth/v1/login",
            params={"client_id": record.client_id, "redirect_url": REDIRECT_URL},
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_unregistered_redirect(self, async_client, registered_client):
        record, _ = registered_client
        response = await async_client.get(
            "/auth/v1/login",
            params={"client_id": record.client_id, "state": "s1", "redirect_url": "https://evil.example.com/"},
        )
        assert response.status_code == 400


class TestCallback:
    @pytest.mark.asyncio
    async def test_redirects_to_client_by_default(self, async_client, registered_client):
        record, _ = registered_client
        await async_client.get(
            "/auth/v1/login",
            params={"client_id": record.client_id, "state": "s1", "redirect_url": REDIRECT_URL},
        )
        response = await async_client.get(
            "/auth/v1/authp-callback",
            params={"code": "provider-code", "state": "s1", "client_id": record.client_id},
        )
        assert response.status_code == 307
        assert response.headers["location"].startswith(f"{REDIRECT_URL}?code=")

    @pytest.mark.asyncio
    async def test_existing_query_is_preserved(self, async_client, registered_client):
        record, _ = registered_client
        redirect_url = "https://app.example.com/cb?tenant=1"
        await async_client.get(
            "/auth/v1/login",
            params={"client_id": record.client_id, "state": "s1", "redirect_url": redirect_url},
        )
        response = await async_client.get(
            "/auth/v1/authp-callback",
            params={"code": "provider-code", "state": "s1", "client_id": record.client_id, "postback": "true"},
        )
        assert response.json()["redirect_url"].startswith(f"{redirect_url}&code=")

    @pytest.mark.asyncio
    async def test_state_mismatch_rejected(self, async_client, registered_client, fake_provider):
        record, _ = registered_client
        await async_client.get(
            "/auth/v1/login",
            params={"client_id": record.client_id, "state": "s1", "redirect_url": REDIRECT_URL},
        )
        response = await async_client.get(
            "/auth/v1/authp-callback",
            params={"code": "provider-code", "state": "forged", "client_id": record.client_id},
        )
        assert response.status_code == 400
        assert fake_provider.exchanged == []

    @pytest.mark.asyncio
    async def test_provider_failure(self, async_client, registered_client):
        record, _ = registered_client
        await async_client.get(
            "/auth/v1/login",
            params={"client_id": record.client_id, "state": "s1", "redirect_url": REDIRECT_URL},
        )
        response = await async_client.get(
            "/auth/v1/authp-callback",
            params={"code": "bad-code", "state": "s1", "client_id": record.client_id},
        )
        assert response.status_code == 500
        assert response.json()["success"] is False


class TestVerify:
    @pytest.mark.asyncio
    async def test_full_flow_then_replay(self, async_client, registered_client):
        record, secret = registered_client
        code = await _login_and_callback(async_client, record.client_id)

        response = await async_client.get(
            "/auth/v1/verify", params={"code": code}, headers=_basic(record.client_id, secret)
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["success"] is True
        assert body["data"]["token_type"] == "Bearer"
        access_token = body["data"]["access_token"]

        replay = await async_client.get(
            "/auth/v1/verify", params={"code": code}, headers=_basic(record.client_id, secret)
        )
        assert replay.status_code == 500
        assert replay.json()["success"] is False

        me = await async_client.get(
            "/me/v1",
            headers={"Authorization": f"Bearer {access_token}", "X-Project-Ids": "p1, p2"},
        )
        assert me.status_code == 200, me.text
        data = me.json()["data"]
        assert data["email"] == "ada@example.com"
        assert data["project_ids"] == ["p1", "p2"]

    @pytest.mark.asyncio
    async def test_pkce_flow(self, async_client, registered_client):
        from idbroker.auth.credentials import pkce_challenge

        record, _ = registered_client
        verifier = "a-long-random-code-verifier-0123456789"
        code = await _login_and_callback(
            async_client,
            record.client_id,
            code_challenge=pkce_challenge(verifier),
            code_challenge_method="S256",
        )
        response = await async_client.get(
            "/auth/v1/verify",
            params={"code": code, "client_id": record.client_id, "code_verifier": verifier},
        )
        assert response.status_code == 200, response.text

    @pytest.mark.asyncio
    async def test_legacy_code_challenge_param(self, async_client, registered_client):
        from idbroker.auth.credentials import pkce_challenge

        record, _ = registered_client
        verifier = "another-code-verifier-value-abcdefghijkl"
        code = await _login_and_callback(
            async_client, record.client_id, code_challenge=pkce_challenge(verifier)
        )
        response = await async_client.get(
            "/auth/v1/verify",
            params={"code": code, "client_id": record.client_id, "code_challenge": verifier},
        )
        assert response.status_code == 200, response.text

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"Authorization": "Basic not-base64!!"},
            {"Authorization": "Bearer " + base64.b64encode(b"id:secret").decode()},
            {"Authorization": "Basic " + base64.b64encode(b"no-colon").decode()},
        ],
    )
    async def test_bad_credentials_are_400(self, async_client, registered_client, headers):
        record, _ = registered_client
        code = await _login_and_callback(async_client, record.client_id)
        response = await async_client.get("/auth/v1/verify", params={"code": code}, headers=headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_wrong_secret_keeps_code_valid(self, async_client, registered_client):
        record, secret = registered_client
        code = await _login_and_callback(async_client, record.client_id)
        response = await async_client.get(
            "/auth/v1/verify", params={"code": code}, headers=_basic(record.client_id, "wrong")
        )
        assert response.status_code == 400
        response = await async_client.get(
            "/auth/v1/verify", params={"code": code}, headers=_basic(record.client_id, secret)
        )
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_client_id_mismatch(self, async_client, registered_client):
        record, secret = registered_client
        code = await _login_and_callback(async_client, record.client_id)
        response = await async_client.get(
            "/auth/v1/verify",
            params={"code": code, "client_id": "someone-else"},
            headers=_basic(record.client_id, secret),
        )
        assert response.status_code == 400


class TestProtectedEndpoints:
    @pytest.mark.asyncio
    async def test_missing_bearer(self, async_client, registered_client):
        response = await async_client.get("/me/v1")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_garbage_token_generic_message(self, async_client, registered_client):
        response = await async_client.get("/me/v1", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Invalid or expired credentials"}

    @pytest.mark.asyncio
    async def test_client_credentials(self, app, async_client, registered_client):
        from idbroker.client.schemas import ClientUpdateArgs

        record, secret = registered_client
        code = await _login_and_callback(async_client, record.client_id)
        verify = await async_client.get(
            "/auth/v1/verify", params={"code": code}, headers=_basic(record.client_id, secret)
        )
        assert verify.status_code == 200
        user = await app.state.identity_resolver.resolve(
            f"Bearer {verify.json()['data']['access_token']}"
        )
        await app.state.registry.update_client(
            record.client_id, ClientUpdateArgs(linked_user_id=user.user_id)
        )
        response = await async_client.post(
            "/auth/v1/client-credentials",
            json={"client_id": record.client_id, "client_secret": secret},
        )
        assert response.status_code == 200, response.text
        me = await async_client.get(
            "/me/v1", headers={"Authorization": f"Bearer {response.json()['data']['access_token']}"}
        )
        assert me.json()["data"]["user_id"] == user.user_id
