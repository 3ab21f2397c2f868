"""OAuth flows and provider clients."""

from quota_proxy.auth.oauth.clients import CodeFlowClient, DeviceFlowClient
from quota_proxy.auth.oauth.code_flow import AuthorizationCodeFlow
from quota_proxy.auth.oauth.device_flow import DeviceCodeFlow
from quota_proxy.auth.oauth.entitlement import UpstreamModelsClient


__all__ = [
    "AuthorizationCodeFlow",
    "CodeFlowClient",
    "DeviceCodeFlow",
    "DeviceFlowClient",
    "UpstreamModelsClient",
]
