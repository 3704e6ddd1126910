"""Error taxonomy shared by the rate limiter, OAuth manager and provider clients.

Every error raised to a caller is a CRMError carrying an ErrorType code, an
HTTP status for the API layer, and a message safe to show to the user.
"""

from enum import Enum
from typing import Any, Optional


class ErrorType(str, Enum):
    VALIDATION = "VALIDATION_ERROR"
    AUTHENTICATION = "AUTHENTICATION_ERROR"
    AUTHORIZATION = "AUTHORIZATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN_ERROR"


class CRMError(Exception):
    """Base class for errors surfaced to API callers."""

    code: ErrorType = ErrorType.UNKNOWN
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"detail": self.message, "code": self.code.value}


class APIError(CRMError):
    """Generic error with an explicit code and status, e.g. mapped backend errors."""

    def __init__(
        self,
        message: str,
        code: ErrorType = ErrorType.UNKNOWN,
        status_code: Optional[int] = None,
        details: Optional[Any] = None,
    ):
        super().__init__(message, details)
        self.code = code
        if status_code is not None:
            self.status_code = status_code


class RateLimitExceeded(CRMError):
    """Capacity exhausted and queueing is disabled for the category."""

    code = ErrorType.RATE_LIMIT
    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: Optional[float] = None,
    ):
        super().__init__(message)
        self.retry_after = retry_after


class RateLimitReset(RateLimitExceeded):
    """A queued request was dropped because its limiter was reset."""

    def __init__(self):
        super().__init__("Request cancelled: rate limiter was reset.")


class InvalidState(CRMError):
    """OAuth state is missing, expired or does not match the pending request."""

    code = ErrorType.VALIDATION
    status_code = 400

    def __init__(self, message: str = "Invalid state parameter"):
        super().__init__(message)


class ExchangeFailed(CRMError):
    """The provider's token endpoint rejected the authorization code."""

    code = ErrorType.AUTHENTICATION
    status_code = 502


class NoRefreshToken(CRMError):
    """Token expired and cannot be renewed silently; the user must re-authorize."""

    code = ErrorType.AUTHENTICATION
    status_code = 401

    def __init__(self, message: str = "No refresh token available. Please reconnect."):
        super().__init__(message)


class RefreshFailed(NoRefreshToken):
    """The provider rejected the refresh token (revoked or expired)."""


class UpstreamUnauthorized(CRMError):
    """Provider API returned 401 even after a forced token refresh."""

    code = ErrorType.AUTHENTICATION
    status_code = 401


class UpstreamError(CRMError):
    """Provider API returned a non-2xx status other than 401."""

    code = ErrorType.SERVER_ERROR
    status_code = 502

    def __init__(self, message: str, upstream_status: Optional[int] = None, details: Optional[Any] = None):
        super().__init__(message, details)
        self.upstream_status = upstream_status
        if upstream_status is not None and 400 <= upstream_status < 500:
            self.code = ErrorType.VALIDATION


class IntegrationNotConnected(CRMError):
    code = ErrorType.NOT_FOUND
    status_code = 404

    def __init__(self, provider: str):
        super().__init__(f"{provider} not connected")
        self.provider = provider


class ServiceNotConfigured(CRMError):
    """A provider needed for the request has no credentials in this deployment."""

    code = ErrorType.SERVER_ERROR
    status_code = 503


def map_backend_error(error: Any) -> APIError:
    """Map a Supabase/PostgREST error to a user-friendly APIError.

    Accepts anything with ``message``/``code`` attributes (postgrest.APIError)
    or a plain exception.
    """
    error_message = (getattr(error, "message", None) or str(error) or "").lower()
    error_code = str(getattr(error, "code", "") or "")
    status = getattr(error, "status", None)
    details = getattr(error, "details", None)

    if error_code == "PGRST301" or "jwt" in error_message:
        return APIError(
            "Your session has expired. Please log in again.",
            ErrorType.AUTHENTICATION,
            status or 401,
            details,
        )
    if error_code == "42501" or "permission denied" in error_message:
        return APIError(
            "You don't have permission to perform this action.",
            ErrorType.AUTHORIZATION,
            status or 403,
            details,
        )
    if error_code == "PGRST116" or "not found" in error_message:
        return APIError(
            "The requested resource was not found.",
            ErrorType.NOT_FOUND,
            status or 404,
            details,
        )
    if error_code == "23505" or "duplicate key" in error_message:
        return APIError(
            "A record with this information already exists.",
            ErrorType.CONFLICT,
            status or 409,
            details,
        )
    if error_code == "23503":
        return APIError(
            "Referenced record does not exist.",
            ErrorType.VALIDATION,
            status or 400,
            details,
        )
    if "fetch" in error_message or "network" in error_message:
        return APIError(
            "Network error. Please check your connection and try again.",
            ErrorType.NETWORK_ERROR,
            status or 503,
            details,
        )
    return APIError(
        "An unexpected error occurred. Please try again later.",
        ErrorType.SERVER_ERROR,
        status or 500,
        details,
    )
