"""OAuth provider configuration settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Authorization-code flow (primary identity provider)
DEFAULT_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
DEFAULT_TOKEN_URL = "https://oauth2.googleapis.com/token"
DEFAULT_CLIENT_ID = (
    "1071006060591-tmhssin2h21lcre235vtolojh4g403ep.apps.googleusercontent.com"
)
DEFAULT_REDIRECT_URI = "http://localhost:42532/oauth-callback"
DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/cloud-platform",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/cclog",
    "https://www.googleapis.com/auth/experimentsandconfigs",
]

# Device-code flow (AWS SSO OIDC / Builder ID)
DEFAULT_OIDC_ENDPOINT = "https://oidc.us-east-1.amazonaws.com"
DEFAULT_START_URL = "https://view.awsapps.com/start"
DEFAULT_DEVICE_SCOPES = [
    "codewhisperer:completions",
    "codewhisperer:analysis",
    "codewhisperer:conversations",
]
DEFAULT_DEVICE_MODELS = [
    "claude-sonnet-4-5",
    "claude-sonnet-4",
    "claude-haiku-4-5",
]

# Upstream API used for the entitlement check
DEFAULT_MODELS_HOST = "daily-cloudcode-pa.sandbox.googleapis.com"
DEFAULT_MODELS_URL = f"https://{DEFAULT_MODELS_HOST}/v1internal:fetchAvailableModels"
DEFAULT_UPSTREAM_USER_AGENT = "antigravity/1.11.3 windows/amd64"


class OAuthSettings(BaseSettings):
    """Authorization-code flow settings.

    The client id is provider global; the client secret is only sent when
    configured.
    """

    model_config = SettingsConfigDict(
        env_prefix="OAUTH__",
        case_sensitive=False,
        extra="ignore",
    )

    authorize_url: str = Field(
        default=DEFAULT_AUTHORIZE_URL,
        description="Provider authorization page",
    )
    token_url: str = Field(
        default=DEFAULT_TOKEN_URL,
        description="Provider token endpoint (authorization_code and refresh_token grants)",
    )
    client_id: str = Field(default=DEFAULT_CLIENT_ID, description="OAuth client ID")
    client_secret: str | None = Field(
        default=None,
        description="OAuth client secret, appended to token requests when set",
    )
    redirect_uri: str = Field(
        default=DEFAULT_REDIRECT_URI,
        description="Fixed redirect URI registered with the provider",
    )
    scopes: list[str] = Field(
        default_factory=lambda: DEFAULT_SCOPES.copy(),
        description="OAuth scopes to request",
    )
    state_ttl_seconds: int = Field(
        default=300,
        ge=30,
        le=3600,
        description="Lifetime of a pending authorization-code flow",
    )
    use_pkce: bool = Field(
        default=False,
        description="Send an S256 PKCE challenge with the authorization request",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for provider requests",
    )


class DeviceFlowSettings(BaseSettings):
    """Device-code flow settings for the secondary identity provider."""

    model_config = SettingsConfigDict(
        env_prefix="DEVICE_FLOW__",
        case_sensitive=False,
        extra="ignore",
    )

    oidc_endpoint: str = Field(
        default=DEFAULT_OIDC_ENDPOINT,
        description="Base URL for /client/register, /device_authorization and /token",
    )
    start_url: str = Field(
        default=DEFAULT_START_URL,
        description="Start URL sent with the device authorization request",
    )
    scopes: list[str] = Field(
        default_factory=lambda: DEFAULT_DEVICE_SCOPES.copy(),
        description="Scopes requested when registering the OIDC client",
    )
    client_name_prefix: str = Field(
        default="quota-proxy",
        description="Prefix for the registered client name",
    )
    poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Base wait between token polls while authorization is pending",
    )
    models: list[str] = Field(
        default_factory=lambda: DEFAULT_DEVICE_MODELS.copy(),
        description="Models seeded in the ledger when a device-flow account is linked",
    )
    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for provider requests",
    )

    @property
    def register_url(self) -> str:
        return f"{self.oidc_endpoint.rstrip('/')}/client/register"

    @property
    def device_authorization_url(self) -> str:
        return f"{self.oidc_endpoint.rstrip('/')}/device_authorization"

    @property
    def token_url(self) -> str:
        return f"{self.oidc_endpoint.rstrip('/')}/token"


class UpstreamSettings(BaseSettings):
    """Upstream generative-AI API used for the entitlement check."""

    model_config = SettingsConfigDict(
        env_prefix="UPSTREAM__",
        case_sensitive=False,
        extra="ignore",
    )

    models_url: str = Field(
        default=DEFAULT_MODELS_URL,
        description="Model-listing endpoint called with a freshly obtained token",
    )
    host: str = Field(default=DEFAULT_MODELS_HOST, description="Host header")
    user_agent: str = Field(
        default=DEFAULT_UPSTREAM_USER_AGENT,
        description="User-Agent sent to the upstream API",
    )
    request_timeout: float = Field(default=30.0, gt=0)
