"""SQLModel database models."""

from datetime import UTC, datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel

from quota_proxy.core.async_utils import as_utc


class Provider(StrEnum):
    """Identity provider that issued a credential."""

    GOOGLE = "google"
    AWS = "aws"


class AuthMethod(StrEnum):
    """How a credential was obtained."""

    OAUTH = "oauth"
    BUILDER_ID = "builder-id"


class AccountStatus(StrEnum):
    """Lifecycle status of an upstream account."""

    ACTIVE = "active"
    DISABLED = "disabled"
    AUTH_ERROR = "auth_error"


class Account(SQLModel, table=True):
    """Upstream account with OAuth credentials.

    ``account_id`` is derived from the first refresh token, so linking the
    same upstream account again updates this row instead of adding one.
    """

    __tablename__ = "accounts"

    account_id: str = Field(primary_key=True, max_length=32)
    owner_user_id: str = Field(index=True)
    is_shared: bool = Field(default=False, index=True)
    provider: str = Field(default=Provider.GOOGLE)
    auth_method: str = Field(default=AuthMethod.OAUTH)

    access_token: str
    refresh_token: str
    token_expires_at: datetime

    # Device flow: refresh needs the registered client
    client_id: str | None = None
    client_secret: str | None = None
    machine_id: str | None = None

    email: str | None = None
    status: str = Field(default=AccountStatus.ACTIVE, index=True)
    last_error: str | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def expires_at_utc(self) -> datetime:
        return as_utc(self.token_expires_at)

    def expires_in_seconds(self, now: datetime | None = None) -> int:
        """Seconds until the access token expires (negative if expired)."""
        now = now or datetime.now(UTC)
        return int((self.expires_at_utc - now).total_seconds())

    def needs_refresh(self, buffer_seconds: int = 0, now: datetime | None = None) -> bool:
        return self.expires_in_seconds(now) <= buffer_seconds

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE


class ModelQuota(SQLModel, table=True):
    """Dedicated per-account, per-model balance."""

    __tablename__ = "model_quotas"

    account_id: str = Field(primary_key=True, foreign_key="accounts.account_id")
    model_name: str = Field(primary_key=True)
    balance: float = Field(default=0.0, ge=0)
    enabled: bool = Field(default=True)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SharedPoolQuota(SQLModel, table=True):
    """Per-user pooled balance for one model, fed by the user's shared accounts."""

    __tablename__ = "shared_pool_quotas"

    owner_user_id: str = Field(primary_key=True)
    model_name: str = Field(primary_key=True)
    balance: float = Field(default=0.0, ge=0)
    max_balance: float = Field(default=0.0, ge=0)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_recovered_at: datetime | None = None


class FlowStateRecord(SQLModel, table=True):
    """Pending OAuth flow state, stored as a JSON document with an expiry."""

    __tablename__ = "flow_states"

    key: str = Field(primary_key=True)
    value: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime = Field(index=True)
