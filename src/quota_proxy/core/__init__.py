"""Core helpers shared across Quota Proxy."""

from quota_proxy.core.async_utils import KeyedLock, utc_now
from quota_proxy.core.logging import setup_logging


__all__ = ["KeyedLock", "setup_logging", "utc_now"]
