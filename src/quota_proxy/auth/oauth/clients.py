"""HTTP clients for the two identity providers.

Both clients accept a shared ``httpx.AsyncClient`` for connection pooling;
without one, each call opens and closes its own client.
"""

import os
import urllib.parse
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import pydantic
from structlog import get_logger

from quota_proxy.auth.models import (
    ClientRegistration,
    DeviceAuthorization,
    DeviceTokenResult,
    TokenResponse,
)
from quota_proxy.config.oauth import DeviceFlowSettings, OAuthSettings
from quota_proxy.exceptions import (
    DeviceAuthorizationError,
    ProviderError,
    RefreshFailedError,
)


logger = get_logger(__name__)

GRANT_TYPE_AUTHORIZATION_CODE = "authorization_code"
GRANT_TYPE_REFRESH_TOKEN = "refresh_token"
GRANT_TYPE_DEVICE_CODE = "urn:ietf:params:oauth:grant-type:device_code"

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}
JSON_HEADERS = {"Content-Type": "application/json"}


def _truncate_error_text(response_text: str) -> str:
    """Truncate response text for compact error logging."""
    if len(response_text) > 200:
        return f"{response_text[:100]}...{response_text[-50:]}"
    if len(response_text) > 100:
        return f"{response_text[:100]}..."
    return response_text


def _log_http_error_compact(operation: str, response: httpx.Response) -> None:
    """Log a provider error response, in full only when verbose logging is on."""
    verbose_api = os.environ.get("QUOTA_PROXY_VERBOSE_API", "false").lower() == "true"

    if verbose_api:
        logger.error(
            "http_operation_failed",
            operation=operation,
            status_code=response.status_code,
            response_text=response.text,
        )
    else:
        logger.error(
            "http_operation_failed_compact",
            operation=operation,
            status_code=response.status_code,
            response_preview=_truncate_error_text(response.text),
            verbose_hint="use QUOTA_PROXY_VERBOSE_API=true for full response",
        )


def _parse(
    model: type[pydantic.BaseModel],
    response: httpx.Response,
    operation: str,
    error_cls: type[ProviderError],
) -> Any:
    try:
        return model.model_validate(response.json())
    except (ValueError, pydantic.ValidationError) as e:
        logger.error(
            "provider_response_invalid",
            operation=operation,
            status_code=response.status_code,
            error=str(e),
        )
        raise error_cls(
            f"{operation}: unexpected provider response",
            provider_status=response.status_code,
            provider_body=_truncate_error_text(response.text),
        ) from e


class _ProviderClient:
    """Shared plumbing: client ownership and transport error wrapping."""

    def __init__(self, timeout: float, http_client: httpx.AsyncClient | None) -> None:
        self._timeout = timeout
        self._shared_client = http_client

    async def _send(
        self,
        operation: str,
        error_cls: type[ProviderError],
        request: Callable[[httpx.AsyncClient], Awaitable[httpx.Response]],
    ) -> httpx.Response:
        """Run ``request`` and turn transport failures into ``error_cls``.

        A provider error raised for a transport failure carries no
        ``provider_status``.
        """
        try:
            if self._shared_client is not None:
                return await request(self._shared_client)
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await request(client)
        except httpx.TransportError as e:
            logger.warning("provider_unreachable", operation=operation, error=str(e))
            raise error_cls(f"{operation}: provider unreachable: {e}") from e


class CodeFlowClient(_ProviderClient):
    """Authorization-code provider: authorization URL, code exchange, refresh."""

    def __init__(
        self,
        config: OAuthSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or OAuthSettings()
        super().__init__(self.config.request_timeout, http_client)

    def build_authorization_url(
        self, state: str, code_challenge: str | None = None
    ) -> str:
        """Build the provider authorization URL.

        Args:
            state: State parameter bound to the pending flow
            code_challenge: Optional S256 PKCE challenge
        """
        params = {
            "access_type": "offline",
            "client_id": self.config.client_id,
            "prompt": "consent",
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.config.scopes),
            "state": state,
        }
        if code_challenge:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return f"{self.config.authorize_url}?{urllib.parse.urlencode(params)}"

    def _client_credentials(self) -> dict[str, str]:
        data = {"client_id": self.config.client_id}
        if self.config.client_secret:
            data["client_secret"] = self.config.client_secret
        return data

    async def exchange_code(
        self, code: str, code_verifier: str | None = None
    ) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Raises:
            ProviderError: On a non-2xx answer or unreachable provider
        """
        data = {
            "code": code,
            "grant_type": GRANT_TYPE_AUTHORIZATION_CODE,
            "redirect_uri": self.config.redirect_uri,
            **self._client_credentials(),
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        response = await self._send(
            "Token exchange",
            ProviderError,
            lambda client: client.post(
                self.config.token_url,
                headers=FORM_HEADERS,
                data=data,
                timeout=self.config.request_timeout,
            ),
        )
        if not response.is_success:
            _log_http_error_compact("Token exchange", response)
            raise ProviderError(
                f"Token exchange failed with status {response.status_code}",
                provider_status=response.status_code,
                provider_body=response.text,
            )
        return _parse(TokenResponse, response, "Token exchange", ProviderError)

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """Redeem a refresh token.

        Raises:
            RefreshFailedError: On a non-2xx answer or unreachable provider
        """
        data = {
            "grant_type": GRANT_TYPE_REFRESH_TOKEN,
            "refresh_token": refresh_token,
            **self._client_credentials(),
        }
        response = await self._send(
            "Token refresh",
            RefreshFailedError,
            lambda client: client.post(
                self.config.token_url,
                headers=FORM_HEADERS,
                data=data,
                timeout=self.config.request_timeout,
            ),
        )
        if not response.is_success:
            _log_http_error_compact("Token refresh", response)
            raise RefreshFailedError(
                f"Token refresh failed with status {response.status_code}",
                provider_status=response.status_code,
                provider_body=response.text,
            )
        return _parse(TokenResponse, response, "Token refresh", RefreshFailedError)


class DeviceFlowClient(_ProviderClient):
    """Device-flow provider (OIDC): client registration, device codes, tokens.

    All requests and responses are JSON with camelCase keys.
    """

    def __init__(
        self,
        config: DeviceFlowSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or DeviceFlowSettings()
        super().__init__(self.config.request_timeout, http_client)

    async def _post_json(
        self,
        operation: str,
        error_cls: type[ProviderError],
        url: str,
        payload: dict[str, Any],
    ) -> httpx.Response:
        return await self._send(
            operation,
            error_cls,
            lambda client: client.post(
                url,
                headers=JSON_HEADERS,
                json=payload,
                timeout=self.config.request_timeout,
            ),
        )

    async def register_client(self, client_name: str) -> ClientRegistration:
        """Register a public client for one device flow."""
        response = await self._post_json(
            "Client registration",
            DeviceAuthorizationError,
            self.config.register_url,
            {
                "clientName": client_name,
                "clientType": "public",
                "scopes": self.config.scopes,
            },
        )
        if not response.is_success:
            _log_http_error_compact("Client registration", response)
            raise DeviceAuthorizationError(
                f"Client registration failed with status {response.status_code}",
                provider_status=response.status_code,
                provider_body=response.text,
            )
        return _parse(
            ClientRegistration, response, "Client registration", DeviceAuthorizationError
        )

    async def start_device_authorization(
        self, client_id: str, client_secret: str
    ) -> DeviceAuthorization:
        """Request a device code and user code."""
        response = await self._post_json(
            "Device authorization",
            DeviceAuthorizationError,
            self.config.device_authorization_url,
            {
                "clientId": client_id,
                "clientSecret": client_secret,
                "startUrl": self.config.start_url,
            },
        )
        if not response.is_success:
            _log_http_error_compact("Device authorization", response)
            raise DeviceAuthorizationError(
                f"Device authorization failed with status {response.status_code}",
                provider_status=response.status_code,
                provider_body=response.text,
            )
        return _parse(
            DeviceAuthorization, response, "Device authorization", DeviceAuthorizationError
        )

    async def create_token(
        self, client_id: str, client_secret: str, device_code: str
    ) -> DeviceTokenResult:
        """Ask whether the user has approved the device code yet.

        A 400 answer is not raised: its OAuth error code is returned so the
        caller can tell ``authorization_pending`` and ``slow_down`` apart from
        terminal errors.

        Raises:
            DeviceAuthorizationError: On any other non-2xx answer
        """
        response = await self._post_json(
            "Device token",
            DeviceAuthorizationError,
            self.config.token_url,
            {
                "clientId": client_id,
                "clientSecret": client_secret,
                "deviceCode": device_code,
                "grantType": GRANT_TYPE_DEVICE_CODE,
            },
        )
        if response.is_success:
            return DeviceTokenResult(
                token=_parse(
                    TokenResponse, response, "Device token", DeviceAuthorizationError
                )
            )

        if response.status_code == 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            error = body.get("error") if isinstance(body, dict) else None
            if error:
                return DeviceTokenResult(
                    error=str(error),
                    description=body.get("error_description"),
                )

        _log_http_error_compact("Device token", response)
        raise DeviceAuthorizationError(
            f"Device token request failed with status {response.status_code}",
            provider_status=response.status_code,
            provider_body=response.text,
        )

    async def refresh(
        self, client_id: str, client_secret: str, refresh_token: str
    ) -> TokenResponse:
        """Redeem a refresh token with the client that obtained it.

        Raises:
            RefreshFailedError: On a non-2xx answer or unreachable provider
        """
        response = await self._post_json(
            "Token refresh",
            RefreshFailedError,
            self.config.token_url,
            {
                "clientId": client_id,
                "clientSecret": client_secret,
                "grantType": GRANT_TYPE_REFRESH_TOKEN,
                "refreshToken": refresh_token,
            },
        )
        if not response.is_success:
            _log_http_error_compact("Token refresh", response)
            raise RefreshFailedError(
                f"Token refresh failed with status {response.status_code}",
                provider_status=response.status_code,
                provider_body=response.text,
            )
        return _parse(TokenResponse, response, "Token refresh", RefreshFailedError)
