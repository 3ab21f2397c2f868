"""Settings configuration for Quota Proxy."""

import contextlib
import os
import tomllib
from pathlib import Path
from typing import Any

import orjson
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from quota_proxy.config.discovery import find_toml_config_file

from .database import DatabaseSettings
from .logging_settings import LoggingSettings
from .oauth import DeviceFlowSettings, OAuthSettings, UpstreamSettings
from .quota import QuotaSettings
from .scheduler import SchedulerSettings


__all__ = [
    "Settings",
    "ConfigurationError",
    "get_settings",
]


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def _coerce_settings(value: Any, settings_class: type) -> Any:
    """Coerce value to settings class instance.

    Handles: None → default, dict → instance, passthrough existing instances.
    """
    if value is None:
        return settings_class()
    if isinstance(value, settings_class):
        return value
    if isinstance(value, dict):
        return settings_class(**value)
    if hasattr(value, "model_dump"):
        return settings_class(**value.model_dump())
    return value


class Settings(BaseSettings):
    """Root settings: one section per component.

    Values come from a TOML file (see ``from_config``), nested environment
    variables such as ``QUOTA__RECOVERY_FRACTION`` and a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )

    database: DatabaseSettings = Field(
        default_factory=DatabaseSettings,
        description="Database configuration settings",
    )

    oauth: OAuthSettings = Field(
        default_factory=OAuthSettings,
        description="Authorization-code flow configuration",
    )

    device_flow: DeviceFlowSettings = Field(
        default_factory=DeviceFlowSettings,
        description="Device-code flow configuration",
    )

    upstream: UpstreamSettings = Field(
        default_factory=UpstreamSettings,
        description="Upstream API used for the entitlement check",
    )

    quota: QuotaSettings = Field(
        default_factory=QuotaSettings,
        description="Quota ledger policy",
    )

    scheduler: SchedulerSettings = Field(
        default_factory=SchedulerSettings,
        description="Background job configuration settings",
    )

    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration settings",
    )

    @field_validator("database", mode="before")
    @classmethod
    def validate_database(cls, v: Any) -> Any:
        return _coerce_settings(v, DatabaseSettings)

    @field_validator("oauth", mode="before")
    @classmethod
    def validate_oauth(cls, v: Any) -> Any:
        return _coerce_settings(v, OAuthSettings)

    @field_validator("device_flow", mode="before")
    @classmethod
    def validate_device_flow(cls, v: Any) -> Any:
        return _coerce_settings(v, DeviceFlowSettings)

    @field_validator("upstream", mode="before")
    @classmethod
    def validate_upstream(cls, v: Any) -> Any:
        return _coerce_settings(v, UpstreamSettings)

    @field_validator("quota", mode="before")
    @classmethod
    def validate_quota(cls, v: Any) -> Any:
        return _coerce_settings(v, QuotaSettings)

    @field_validator("scheduler", mode="before")
    @classmethod
    def validate_scheduler(cls, v: Any) -> Any:
        return _coerce_settings(v, SchedulerSettings)

    @field_validator("logging", mode="before")
    @classmethod
    def validate_logging(cls, v: Any) -> Any:
        return _coerce_settings(v, LoggingSettings)

    def model_dump_safe(self) -> dict[str, Any]:
        """Dump model data with the OAuth client secret masked."""
        data = self.model_dump()
        if data["oauth"].get("client_secret"):
            data["oauth"]["client_secret"] = "***"
        return data

    @classmethod
    def load_toml_config(cls, toml_path: Path) -> dict[str, Any]:
        """Read a TOML file into a plain dict.

        Raises:
            ValueError: Unreadable file or invalid TOML
        """
        try:
            with toml_path.open("rb") as f:
                return tomllib.load(f)
        except OSError as e:
            raise ValueError(f"Cannot read TOML config file {toml_path}: {e}") from e
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid TOML syntax in {toml_path}: {e}") from e

    @classmethod
    def from_config(
        cls, config_path: Path | str | None = None, **kwargs: Any
    ) -> "Settings":
        """Build settings from a TOML file plus keyword overrides.

        Without ``config_path`` the file named by ``CONFIG_FILE`` is used,
        then the first discovered one. A missing file means defaults.
        Keyword arguments replace whole sections of the file.
        """
        path = _resolve_config_path(config_path)
        file_values: dict[str, Any] = {}
        if path is not None and path.exists():
            if path.suffix.lower() != ".toml":
                raise ValueError(
                    f"Unsupported config file format: {path.suffix}. "
                    "Only TOML (.toml) files are supported."
                )
            file_values = cls.load_toml_config(path)
        return cls(**{**file_values, **kwargs})


def _resolve_config_path(config_path: Path | str | None) -> Path | None:
    if config_path is not None:
        return Path(config_path)
    from_env = os.environ.get("CONFIG_FILE")
    if from_env:
        return Path(from_env)
    return find_toml_config_file()


def get_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings, applying ``QUOTA_PROXY_CONFIG_OVERRIDES`` (a JSON object).

    Raises:
        ConfigurationError: The file or a value is invalid
    """
    overrides: dict[str, Any] = {}
    raw_overrides = os.environ.get("QUOTA_PROXY_CONFIG_OVERRIDES")
    if raw_overrides:
        with contextlib.suppress(orjson.JSONDecodeError):
            overrides = orjson.loads(raw_overrides)

    try:
        return Settings.from_config(config_path=config_path, **overrides)
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Failed to load configuration: {e}") from e
