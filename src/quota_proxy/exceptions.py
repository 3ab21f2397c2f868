"""Consolidated exception hierarchy for Quota Proxy.

All exceptions use proper exception chaining with the `from` keyword.
Error types use StrEnum for type safety and autocompletion.
"""

from enum import StrEnum
from typing import Any

from starlette import status


class ErrorType(StrEnum):
    """Error type codes for API responses."""

    INVALID_REQUEST = "invalid_request_error"
    INVALID_STATE = "invalid_state_error"
    PROVIDER = "provider_error"
    PERMISSION = "permission_error"
    QUOTA_EXCEEDED = "quota_exceeded_error"
    TIMEOUT = "timeout_error"
    INTERNAL_SERVER = "internal_server_error"


# ============================================================================
# Base Exceptions
# ============================================================================


class QuotaProxyError(Exception):
    """Base exception for all Quota Proxy errors.

    Carries the HTTP status code and structured details a front-end
    collaborator needs to render the error.
    """

    def __init__(
        self,
        message: str,
        *,
        error_type: ErrorType | str = ErrorType.INTERNAL_SERVER,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if isinstance(error_type, str) and not isinstance(error_type, ErrorType):
            try:
                self.error_type = ErrorType(error_type)
            except ValueError:
                self.error_type = error_type  # type: ignore[assignment]
        else:
            self.error_type = error_type
        self.status_code = status_code
        self.details = details or {}


class ValidationError(QuotaProxyError):
    """Validation error (400)."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            error_type=ErrorType.INVALID_REQUEST,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class StorageError(QuotaProxyError):
    """Persistence layer failure (500)."""

    def __init__(self, message: str = "Storage operation failed") -> None:
        super().__init__(
            message,
            error_type=ErrorType.INTERNAL_SERVER,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )


# ============================================================================
# OAuth Flow Errors
# ============================================================================


class InvalidStateError(QuotaProxyError):
    """Unknown, expired or already used OAuth state (400).

    Not retried: the user has to restart the flow.
    """

    def __init__(self, message: str = "Invalid or expired state parameter") -> None:
        super().__init__(
            message,
            error_type=ErrorType.INVALID_STATE,
            status_code=status.HTTP_400_BAD_REQUEST,
        )


class ProviderError(QuotaProxyError):
    """Identity provider answered with a non-2xx status (502)."""

    def __init__(
        self,
        message: str,
        *,
        provider_status: int | None = None,
        provider_body: str | None = None,
    ) -> None:
        super().__init__(
            message,
            error_type=ErrorType.PROVIDER,
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={
                "provider_status": provider_status,
                "provider_body": provider_body,
            },
        )
        self.provider_status = provider_status
        self.provider_body = provider_body


class RefreshFailedError(ProviderError):
    """Refresh token grant was rejected by the provider."""

    @property
    def is_invalid_grant(self) -> bool:
        """True when the refresh token itself is no longer usable."""
        body = (self.provider_body or "").lower()
        return self.provider_status == 400 and (
            "invalid_grant" in body or "expired" in body
        )


class DeviceAuthorizationError(ProviderError):
    """Device flow ended in a terminal provider error."""

    pass


class NoEntitlementError(QuotaProxyError):
    """Token is valid but grants no usable model (403)."""

    def __init__(self, message: str = "Account has no usable models") -> None:
        super().__init__(
            message,
            error_type=ErrorType.PERMISSION,
            status_code=status.HTTP_403_FORBIDDEN,
        )


class AuthorizationTimeoutError(QuotaProxyError):
    """Device flow was not authorized before its deadline (408)."""

    def __init__(self, message: str = "Authorization timed out") -> None:
        super().__init__(
            message,
            error_type=ErrorType.TIMEOUT,
            status_code=status.HTTP_408_REQUEST_TIMEOUT,
        )


# ============================================================================
# Quota Errors
# ============================================================================


class InsufficientQuotaError(QuotaProxyError):
    """Consumption rejected, nothing was debited (429)."""

    def __init__(self, key: str, model: str, requested: float, available: float) -> None:
        super().__init__(
            f"Insufficient quota for '{model}': requested {requested}, available {available}",
            error_type=ErrorType.QUOTA_EXCEEDED,
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={
                "key": key,
                "model": model,
                "requested": requested,
                "available": available,
            },
        )
        self.requested = requested
        self.available = available


__all__ = [
    # Enums
    "ErrorType",
    # Base
    "QuotaProxyError",
    "ValidationError",
    "StorageError",
    # OAuth
    "InvalidStateError",
    "ProviderError",
    "RefreshFailedError",
    "DeviceAuthorizationError",
    "NoEntitlementError",
    "AuthorizationTimeoutError",
    # Quota
    "InsufficientQuotaError",
]
