"""
Custom exception hierarchy for the application.
"""

from typing import Any

from fastapi import HTTPException, status


# Every credential failure reaches the caller with this text; the audit
# trail records the specific reason.
UNIFORM_AUTH_MESSAGE = "Invalid or missing API key"


class AgencyHubException(Exception):
    """Base exception for all application exceptions."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class AuthenticationError(AgencyHubException):
    """
    Raised when an API key credential cannot be accepted.

    ``reason`` is internal and goes to the audit log only.
    ``public_message`` is what the caller gets back.
    """

    reason: str = "unknown"

    def __init__(self, message: str, reason: str | None = None):
        super().__init__(message)
        if reason is not None:
            self.reason = reason

    @property
    def public_message(self) -> str:
        return UNIFORM_AUTH_MESSAGE


class MissingCredentialError(AuthenticationError):
    """No Authorization header was presented."""
    reason = "missing"


class MalformedCredentialError(AuthenticationError):
    """Wrong scheme or wrong secret shape."""
    reason = "malformed"


class InvalidCredentialError(AuthenticationError):
    """Well-formed but unknown, mismatched or expired."""
    reason = "invalid"


class ScopeDeniedError(AgencyHubException):
    """Raised when a scoped key is used against another sub-agency."""
    pass


class RateLimitExceededError(AgencyHubException):
    """Raised at the HTTP edge when a rate limit denies a request."""

    def __init__(self, retry_after_seconds: int, limit: int | None = None):
        super().__init__(
            "Rate limit exceeded",
            {"retry_after": retry_after_seconds, "limit": limit},
        )
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit


class GatewayUnavailableError(AgencyHubException):
    """Raised when the key store cannot be reached."""
    pass


class KeyGenerationError(AgencyHubException):
    """Raised when secure randomness is unavailable. Fatal configuration error."""
    pass


class ResourceNotFoundError(AgencyHubException):
    """Raised when a requested resource doesn't exist."""
    pass


# HTTP Exception helpers
def unauthorized(detail: str = UNIFORM_AUTH_MESSAGE) -> HTTPException:
    """Return 401 Unauthorized exception."""
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def forbidden(detail: str = "Insufficient permissions") -> HTTPException:
    """Return 403 Forbidden exception."""
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=detail,
    )


def not_found(detail: str = "Resource not found") -> HTTPException:
    """Return 404 Not Found exception."""
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=detail,
    )


def too_many_requests(retry_after: int, limit: int | None = None) -> HTTPException:
    """Return 429 Too Many Requests exception."""
    headers = {"Retry-After": str(retry_after), "X-RateLimit-Remaining": "0"}
    if limit is not None:
        headers["X-RateLimit-Limit"] = str(limit)

    return HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": "Rate limit exceeded",
            "message": f"Too many requests. Please try again in {retry_after} seconds.",
            "retry_after": retry_after,
        },
        headers=headers,
    )
