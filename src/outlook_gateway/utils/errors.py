"""Error kinds and exception classes for the Outlook gateway."""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers as values."""

    VALIDATION_FAILED = "validation_failed"
    AUTH_EXPIRED = "auth_expired"
    UPSTREAM_ERROR = "upstream_error"
    CACHE_UNAVAILABLE = "cache_unavailable"


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "details": self.details,
            }
        }


class ValidationFailed(GatewayError):
    """Missing or malformed bearer token, or a webhook clientState mismatch."""

    def __init__(
        self,
        message: str = "Missing or invalid access token",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=401,
            code="VALIDATION_FAILED",
            details=details,
        )


class AuthExpired(GatewayError):
    """Refresh exchange failed, or the replay after a refresh was still 401."""

    def __init__(
        self,
        message: str = "Microsoft authorization expired; re-authorization required",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=401,
            code="AUTH_EXPIRED",
            details=details,
        )


class UpstreamError(GatewayError):
    """Non-2xx, non-401 response from Microsoft Graph."""

    def __init__(
        self,
        upstream_status: int,
        body: Any = None,
        message: Optional[str] = None,
    ):
        self.upstream_status = upstream_status
        self.body = body
        super().__init__(
            message=message or f"Microsoft Graph returned {upstream_status}",
            status_code=502,
            code="UPSTREAM_ERROR",
            details={"upstream_status": upstream_status, "body": body},
        )


class CacheUnavailable(GatewayError):
    """The event cache store could not be reached."""

    def __init__(
        self,
        message: str = "Event cache unavailable",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=503,
            code="CACHE_UNAVAILABLE",
            details=details,
        )


class TokenExchangeError(GatewayError):
    """The OAuth token endpoint rejected a code or refresh-token exchange."""

    def __init__(
        self,
        upstream_status: int,
        body: Optional[Dict[str, Any]] = None,
        message: Optional[str] = None,
    ):
        self.upstream_status = upstream_status
        self.body = body or {}
        description = self.body.get("error_description") or self.body.get("error")
        super().__init__(
            message=message or f"Token exchange failed: {description or upstream_status}",
            status_code=upstream_status,
            code="TOKEN_EXCHANGE_ERROR",
            details={"upstream_status": upstream_status},
        )


class ConfigurationError(GatewayError):
    """Error in service configuration."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=500,
            code="CONFIGURATION_ERROR",
            details=details,
        )

