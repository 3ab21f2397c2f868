"""Tests for the provider HTTP clients."""

from urllib.parse import parse_qs, urlsplit

import httpx
import orjson
import pytest

from quota_proxy.auth.oauth.clients import (
    GRANT_TYPE_DEVICE_CODE,
    CodeFlowClient,
    DeviceFlowClient,
)
from quota_proxy.auth.oauth.entitlement import UpstreamModelsClient
from quota_proxy.config.oauth import (
    DEFAULT_MODELS_URL,
    DEFAULT_TOKEN_URL,
    DeviceFlowSettings,
    OAuthSettings,
)
from quota_proxy.exceptions import (
    DeviceAuthorizationError,
    NoEntitlementError,
    ProviderError,
    RefreshFailedError,
)


def form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestCodeFlowClient:
    def test_authorization_url_requests_offline_consent(self):
        client = CodeFlowClient(OAuthSettings())

        url = client.build_authorization_url("state-123")

        params = {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}
        assert params["state"] == "state-123"
        assert params["response_type"] == "code"
        assert params["access_type"] == "offline"
        assert params["prompt"] == "consent"
        assert params["redirect_uri"] == "http://localhost:42532/oauth-callback"
        assert "code_challenge" not in params

    def test_authorization_url_with_pkce(self):
        url = CodeFlowClient().build_authorization_url("s", code_challenge="abc")

        params = {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}
        assert params["code_challenge"] == "abc"
        assert params["code_challenge_method"] == "S256"

    @pytest.mark.asyncio
    async def test_exchange_code_is_form_encoded_without_secret(
        self, provider, http_client
    ):
        provider.add(
            DEFAULT_TOKEN_URL,
            httpx.Response(200, json={"access_token": "at", "refresh_token": "rt"}),
        )
        client = CodeFlowClient(OAuthSettings(), http_client)

        token = await client.exchange_code("the-code")

        assert token.access_token == "at"
        assert token.refresh_token == "rt"
        request = provider.calls(DEFAULT_TOKEN_URL)[0]
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        body = form(request)
        assert body["grant_type"] == "authorization_code"
        assert body["code"] == "the-code"
        assert "client_secret" not in body

    @pytest.mark.asyncio
    async def test_client_secret_appended_when_configured(self, provider, http_client):
        provider.add(DEFAULT_TOKEN_URL, httpx.Response(200, json={"access_token": "at"}))
        client = CodeFlowClient(OAuthSettings(client_secret="s3cret"), http_client)

        await client.refresh("rt")

        body = form(provider.calls(DEFAULT_TOKEN_URL)[0])
        assert body["grant_type"] == "refresh_token"
        assert body["client_secret"] == "s3cret"

    @pytest.mark.asyncio
    async def test_exchange_error_carries_provider_status_and_body(
        self, provider, http_client
    ):
        provider.add(
            DEFAULT_TOKEN_URL, httpx.Response(400, json={"error": "invalid_grant"})
        )
        client = CodeFlowClient(OAuthSettings(), http_client)

        with pytest.raises(ProviderError) as exc_info:
            await client.exchange_code("bad-code")

        assert exc_info.value.provider_status == 400
        assert "invalid_grant" in exc_info.value.provider_body
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_refresh_transport_error_has_no_provider_status(
        self, provider, http_client
    ):
        provider.add(DEFAULT_TOKEN_URL, httpx.ConnectError("connection refused"))
        client = CodeFlowClient(OAuthSettings(), http_client)

        with pytest.raises(RefreshFailedError) as exc_info:
            await client.refresh("rt")

        assert exc_info.value.provider_status is None
        assert not exc_info.value.is_invalid_grant

    @pytest.mark.asyncio
    async def test_invalid_grant_detected(self, provider, http_client):
        provider.add(
            DEFAULT_TOKEN_URL,
            httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "Token expired"},
            ),
        )
        client = CodeFlowClient(OAuthSettings(), http_client)

        with pytest.raises(RefreshFailedError) as exc_info:
            await client.refresh("rt")

        assert exc_info.value.is_invalid_grant


class TestDeviceFlowClient:
    @pytest.fixture
    def settings(self) -> DeviceFlowSettings:
        return DeviceFlowSettings()

    @pytest.mark.asyncio
    async def test_register_client_sends_json(self, provider, http_client, settings):
        provider.add(
            settings.register_url,
            httpx.Response(200, json={"clientId": "cid", "clientSecret": "cs"}),
        )
        client = DeviceFlowClient(settings, http_client)

        registration = await client.register_client("quota-proxy-abc")

        assert registration.client_id == "cid"
        assert registration.client_secret == "cs"
        body = orjson.loads(provider.calls(settings.register_url)[0].content)
        assert body["clientName"] == "quota-proxy-abc"
        assert body["clientType"] == "public"
        assert body["scopes"] == settings.scopes

    @pytest.mark.asyncio
    async def test_create_token_returns_pending_code(
        self, provider, http_client, settings
    ):
        provider.add(
            settings.token_url,
            httpx.Response(400, json={"error": "authorization_pending"}),
        )
        client = DeviceFlowClient(settings, http_client)

        result = await client.create_token("cid", "cs", "dev-code")

        assert result.token is None
        assert result.error == "authorization_pending"
        body = orjson.loads(provider.calls(settings.token_url)[0].content)
        assert body["grantType"] == GRANT_TYPE_DEVICE_CODE
        assert body["deviceCode"] == "dev-code"

    @pytest.mark.asyncio
    async def test_create_token_parses_camel_case_tokens(
        self, provider, http_client, settings
    ):
        provider.add(
            settings.token_url,
            httpx.Response(
                200,
                json={"accessToken": "at", "refreshToken": "rt", "expiresIn": 3600},
            ),
        )
        client = DeviceFlowClient(settings, http_client)

        result = await client.create_token("cid", "cs", "dev-code")

        assert result.error is None
        assert result.token.access_token == "at"
        assert result.token.refresh_token == "rt"
        assert result.token.expires_in == 3600

    @pytest.mark.asyncio
    async def test_create_token_server_error_raises(
        self, provider, http_client, settings
    ):
        provider.add(settings.token_url, httpx.Response(500, text="oops"))
        client = DeviceFlowClient(settings, http_client)

        with pytest.raises(DeviceAuthorizationError) as exc_info:
            await client.create_token("cid", "cs", "dev-code")

        assert exc_info.value.provider_status == 500

    @pytest.mark.asyncio
    async def test_refresh_uses_registered_client(self, provider, http_client, settings):
        provider.add(
            settings.token_url,
            httpx.Response(200, json={"accessToken": "new", "expiresIn": 60}),
        )
        client = DeviceFlowClient(settings, http_client)

        token = await client.refresh("cid", "cs", "rt")

        assert token.access_token == "new"
        assert token.refresh_token is None
        body = orjson.loads(provider.calls(settings.token_url)[0].content)
        assert body == {
            "clientId": "cid",
            "clientSecret": "cs",
            "grantType": "refresh_token",
            "refreshToken": "rt",
        }


class TestUpstreamModelsClient:
    @pytest.mark.asyncio
    async def test_fetch_models_sends_bearer_token(self, provider, http_client):
        provider.add(
            DEFAULT_MODELS_URL,
            httpx.Response(200, json={"models": {"gemini-2.5-pro": {}}}),
        )
        client = UpstreamModelsClient(http_client=http_client)

        models = await client.fetch_models("at")

        assert list(models) == ["gemini-2.5-pro"]
        request = provider.calls(DEFAULT_MODELS_URL)[0]
        assert request.headers["authorization"] == "Bearer at"
        assert orjson.loads(request.content) == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(200, json={"models": {}}),
            httpx.Response(200, json={}),
            httpx.Response(403, json={"error": "forbidden"}),
            httpx.Response(200, text="not json"),
        ],
    )
    async def test_unusable_answers_mean_no_entitlement(
        self, provider, http_client, response
    ):
        provider.add(DEFAULT_MODELS_URL, response)
        client = UpstreamModelsClient(http_client=http_client)

        with pytest.raises(NoEntitlementError):
            await client.fetch_models("at")

    @pytest.mark.asyncio
    async def test_transport_error_means_no_entitlement(self, provider, http_client):
        provider.add(DEFAULT_MODELS_URL, httpx.ReadTimeout("slow"))
        client = UpstreamModelsClient(http_client=http_client)

        with pytest.raises(NoEntitlementError):
            await client.fetch_models("at")
