"""Configuration module for Quota Proxy."""

from .database import DatabaseSettings
from .logging_settings import LoggingSettings
from .oauth import DeviceFlowSettings, OAuthSettings, UpstreamSettings
from .quota import QuotaSettings
from .scheduler import SchedulerSettings
from .settings import ConfigurationError, Settings, get_settings


__all__ = [
    "Settings",
    "get_settings",
    "ConfigurationError",
    "DatabaseSettings",
    "DeviceFlowSettings",
    "LoggingSettings",
    "OAuthSettings",
    "QuotaSettings",
    "SchedulerSettings",
    "UpstreamSettings",
]
