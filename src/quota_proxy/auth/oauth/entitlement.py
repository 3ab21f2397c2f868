"""Entitlement check against the upstream model-listing endpoint."""

from typing import Any

import httpx
from structlog import get_logger

from quota_proxy.config.oauth import UpstreamSettings
from quota_proxy.exceptions import NoEntitlementError


logger = get_logger(__name__)


class UpstreamModelsClient:
    """Lists the models a freshly obtained access token can use."""

    def __init__(
        self,
        config: UpstreamSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or UpstreamSettings()
        self._shared_client = http_client

    def _headers(self, access_token: str) -> dict[str, str]:
        return {
            "Host": self.config.host,
            "User-Agent": self.config.user_agent,
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept-Encoding": "gzip",
        }

    async def fetch_models(self, access_token: str) -> dict[str, Any]:
        """Fetch the account's model map.

        Returns:
            Model name to model metadata, never empty

        Raises:
            NoEntitlementError: If the call fails or lists no models
        """

        async def do_request(client: httpx.AsyncClient) -> httpx.Response:
            return await client.post(
                self.config.models_url,
                headers=self._headers(access_token),
                json={},
                timeout=self.config.request_timeout,
            )

        try:
            if self._shared_client is not None:
                response = await do_request(self._shared_client)
            else:
                async with httpx.AsyncClient(
                    timeout=self.config.request_timeout
                ) as client:
                    response = await do_request(client)
        except httpx.TransportError as e:
            logger.warning("entitlement_check_unreachable", error=str(e))
            raise NoEntitlementError(f"Model listing unreachable: {e}") from e

        if not response.is_success:
            logger.warning(
                "entitlement_check_rejected",
                status_code=response.status_code,
            )
            raise NoEntitlementError(
                f"Model listing failed with status {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise NoEntitlementError("Model listing returned invalid JSON") from e

        models = body.get("models") if isinstance(body, dict) else None
        if not isinstance(models, dict) or not models:
            logger.info("entitlement_check_no_models")
            raise NoEntitlementError()

        logger.debug("entitlement_check_passed", models=len(models))
        return models
