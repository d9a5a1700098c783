"""Custom exceptions for the contribution attribution pipeline."""

from datetime import datetime
from typing import Any, Dict, Optional


class AttributionError(Exception):
    """Base exception for attribution pipeline errors."""

    code: str = "ATTRIBUTION_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, cause: Optional[Exception] = None):
        """Initialize with message, optional details, and cause."""
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

        # Set the cause for proper exception chaining
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        """String representation with details."""
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message

    @classmethod
    def from_exception(cls, message: str, cause: Exception, details: Optional[Dict[str, Any]] = None):
        """Create exception with proper chaining from another exception."""
        return cls(message, details, cause)


class ConfigurationError(AttributionError):
    """Exception raised for configuration-related errors."""
    code = "CONFIGURATION_ERROR"


class InvalidRequestError(AttributionError):
    """Raised when a request is missing fields required by its mode."""
    code = "INVALID_REQUEST"
    status_code = 400


class GitRepositoryError(AttributionError):
    """Git repository related errors."""
    code = "INVALID_REPOSITORY"
    status_code = 400


class EmptyRepositoryError(AttributionError):
    """Raised when no commits are reachable from the requested branch."""
    code = "EMPTY_REPOSITORY"
    status_code = 404


class OnlyMergeCommitsError(AttributionError):
    """Raised when commits exist but every one of them was excluded as a merge."""
    code = "NO_VALID_COMMITS"
    status_code = 404


class RateLimitedError(AttributionError):
    """Raised when the remote quota is exhausted or about to be."""
    code = "RATE_LIMITED"
    status_code = 429
    retryable = True

    def __init__(
        self,
        message: str,
        reset_at: Optional[datetime] = None,
        remaining: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        details = dict(details or {})
        if reset_at is not None:
            details.setdefault("reset_at", reset_at.isoformat())
        if remaining is not None:
            details.setdefault("remaining", remaining)
        super().__init__(message, details, cause)
        self.reset_at = reset_at
        self.remaining = remaining


class UpstreamError(AttributionError):
    """Base class for failures reported by the remote hosting API."""
    code = "GITHUB_API_ERROR"
    status_code = 502


class UpstreamUnavailableError(UpstreamError):
    """Remote API network failure or 5xx response."""
    code = "UPSTREAM_UNAVAILABLE"
    status_code = 502
    retryable = True


class UpstreamAuthError(UpstreamError):
    """Remote API rejected the access token."""
    code = "UNAUTHORIZED"
    status_code = 401


class RepositoryNotFoundError(UpstreamError):
    """Repository or branch not found on the remote."""
    code = "NOT_FOUND"
    status_code = 404


class RequestCancelledError(AttributionError):
    """Raised when work is submitted after the request was cancelled."""
    code = "CANCELLED"
    status_code = 499
