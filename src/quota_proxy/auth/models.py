"""Pydantic models for pending flows and provider responses."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from quota_proxy.core.async_utils import as_utc
from quota_proxy.db.models import Account


class DeviceFlowStatus(StrEnum):
    """Lifecycle of a device-code flow.

    INIT -> REGISTERED -> AUTHORIZING -> PENDING <-> THROTTLED, ending in
    COMPLETED, EXPIRED or FAILED.
    """

    INIT = "init"
    REGISTERED = "registered"
    AUTHORIZING = "authorizing"
    PENDING = "pending"
    THROTTLED = "throttled"
    COMPLETED = "completed"
    EXPIRED = "expired"
    FAILED = "failed"


class FlowState(BaseModel):
    """Fields shared by every pending flow."""

    state: str
    owner_user_id: str
    is_shared: bool = False
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= as_utc(self.expires_at)

    def remaining_seconds(self, now: datetime) -> int:
        return int((as_utc(self.expires_at) - now).total_seconds())


class CodeFlowState(FlowState):
    """Authorization-code flow waiting for the redirect callback."""

    code_verifier: str | None = None


class DeviceFlowState(FlowState):
    """Device-code flow waiting for the user to approve on another device."""

    client_id: str
    client_secret: str
    device_code: str
    machine_id: str
    interval: float
    status: DeviceFlowStatus = DeviceFlowStatus.AUTHORIZING
    bearer_token: str | None = None


class AuthUrlResponse(BaseModel):
    """Returned by the authorization-code flow's begin step."""

    auth_url: str
    state: str
    expires_in: int


class DeviceAuthResponse(BaseModel):
    """Returned by the device-code flow's begin step."""

    auth_url: str = Field(description="Verification URL with the user code filled in")
    verification_uri: str
    user_code: str
    state: str
    expires_in: int
    interval: float


class TokenResponse(BaseModel):
    """Token endpoint answer from either provider.

    The authorization-code provider answers in snake_case, the device-flow
    provider in camelCase.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(validation_alias=AliasChoices("access_token", "accessToken"))
    refresh_token: str | None = Field(
        default=None, validation_alias=AliasChoices("refresh_token", "refreshToken")
    )
    expires_in: int | None = Field(
        default=None, validation_alias=AliasChoices("expires_in", "expiresIn")
    )
    token_type: str | None = Field(
        default=None, validation_alias=AliasChoices("token_type", "tokenType")
    )
    id_token: str | None = Field(
        default=None, validation_alias=AliasChoices("id_token", "idToken")
    )


class ClientRegistration(BaseModel):
    """Public OIDC client registered for one device flow."""

    model_config = ConfigDict(extra="ignore")

    client_id: str = Field(validation_alias=AliasChoices("clientId", "client_id"))
    client_secret: str = Field(
        validation_alias=AliasChoices("clientSecret", "client_secret")
    )


class DeviceAuthorization(BaseModel):
    """Device authorization answer: codes and polling parameters."""

    model_config = ConfigDict(extra="ignore")

    device_code: str = Field(validation_alias=AliasChoices("deviceCode", "device_code"))
    user_code: str = Field(validation_alias=AliasChoices("userCode", "user_code"))
    verification_uri: str = Field(
        validation_alias=AliasChoices("verificationUri", "verification_uri")
    )
    verification_uri_complete: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "verificationUriComplete", "verification_uri_complete"
        ),
    )
    expires_in: int = Field(validation_alias=AliasChoices("expiresIn", "expires_in"))
    interval: float | None = None


@dataclass
class DeviceTokenResult:
    """Outcome of one device token request.

    Exactly one of ``token`` and ``error`` is set; ``error`` is the provider's
    OAuth error code for a 400 answer.
    """

    token: TokenResponse | None = None
    error: str | None = None
    description: str | None = None


@dataclass
class DevicePollResult:
    """Outcome of one poll step of a device-code flow."""

    status: DeviceFlowStatus
    interval: float
    account: Account | None = None

    @property
    def is_complete(self) -> bool:
        return self.account is not None
