"""Credential acquisition and token lifecycle."""

from quota_proxy.auth.linking import AccountLinker
from quota_proxy.auth.models import (
    AuthUrlResponse,
    CodeFlowState,
    DeviceAuthResponse,
    DeviceFlowState,
    DeviceFlowStatus,
    DevicePollResult,
)
from quota_proxy.auth.refresh import TokenRefresher, TokenRefreshScheduler
from quota_proxy.auth.store import (
    FlowStateStore,
    MemoryFlowStateStore,
    SqlFlowStateStore,
)


__all__ = [
    "AccountLinker",
    "AuthUrlResponse",
    "CodeFlowState",
    "DeviceAuthResponse",
    "DeviceFlowState",
    "DeviceFlowStatus",
    "DevicePollResult",
    "FlowStateStore",
    "MemoryFlowStateStore",
    "SqlFlowStateStore",
    "TokenRefreshScheduler",
    "TokenRefresher",
]
