"""Unified exception hierarchy for Heartline.

All Heartline-specific exceptions inherit from HeartlineError, so callers can
handle any failure from the resilience layer with a single except clause.

Exception Hierarchy:
    HeartlineError (base)
    ├── ConfigurationError - Configuration and settings issues
    └── RequestFailedError - An outbound API request failed
        ├── AuthExpiredError - Credential rejected (401)
        ├── BackendUnavailableError - Backend unreachable (connectivity class)
        ├── ServerError - Origin server returned 5xx
        └── ClientError - Request rejected with 4xx

Usage:
    from heartline.errors import BackendUnavailableError

    try:
        documents = await client.get("/documents")
    except BackendUnavailableError as e:
        logger.warning("Backend down: %s (code: %s)", e.message, e.code)
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standard error codes for Heartline errors.

    Included in ``to_dict()`` output so UIs can branch on them.
    """

    # Configuration errors (CFG_*)
    CFG_INVALID = "CFG_INVALID"
    CFG_MISSING = "CFG_MISSING"

    # Request errors
    AUTH_EXPIRED = "AUTH_EXPIRED"
    TIMEOUT = "TIMEOUT"
    CONNECTION_REFUSED = "CONNECTION_REFUSED"
    NETWORK_ERROR = "NETWORK_ERROR"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"

    # Generic errors
    UNKNOWN = "UNKNOWN"


class HeartlineError(Exception):
    """Base exception for all Heartline errors.

    Attributes:
        message: Human-readable error message.
        code: Machine-readable error code from ErrorCode enum.
        details: Optional additional context about the error.
        cause: Optional original exception that caused this error.
    """

    default_message: str = "An error occurred"
    default_code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str | None = None,
        *,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Initialize a Heartline error.

        Args:
            message: Human-readable error message.
            code: Error code for programmatic handling.
            details: Additional context as key-value pairs.
            cause: Original exception that caused this error.
        """
        self.message = message or self.default_message
        self.code = code or self.default_code
        self.details = details or {}
        self.cause = cause

        super().__init__(self.message)

        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        parts = [f"{self.__class__.__name__}({self.message!r}"]
        if self.code != self.default_code:
            parts.append(f", code={self.code.value!r}")
        if self.details:
            parts.append(f", details={self.details!r}")
        if self.cause:
            parts.append(f", cause={self.cause!r}")
        parts.append(")")
        return "".join(parts)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to a dictionary for display or logging.

        Returns:
            Dictionary with error, code, and detail fields.
        """
        result: dict[str, Any] = {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "detail": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ConfigurationError(HeartlineError):
    """Raised for invalid or unreadable configuration."""

    default_message = "Configuration error"
    default_code = ErrorCode.CFG_INVALID

    def __init__(
        self,
        message: str | None = None,
        *,
        config_key: str | None = None,
        config_path: str | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        details = details or {}
        if config_key:
            details["config_key"] = config_key
        if config_path:
            details["config_path"] = config_path
        super().__init__(message, code=code, details=details, cause=cause)


# Request Errors


class RequestFailedError(HeartlineError):
    """Raised when an outbound API request fails.

    Attributes:
        method: HTTP method of the failed request.
        path: Request path relative to the API base URL.
        status_code: HTTP status, or None for network-level failures.
    """

    default_message = "Request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        method: str | None = None,
        path: str | None = None,
        status_code: int | None = None,
        code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ) -> None:
        details = details or {}
        if method:
            details["method"] = method
        if path:
            details["path"] = path
        if status_code is not None:
            details["status_code"] = status_code
        self.method = method
        self.path = path
        self.status_code = status_code
        super().__init__(message, code=code, details=details, cause=cause)


class AuthExpiredError(RequestFailedError):
    """The server rejected the stored credential.

    Never implies the backend is down. The cached session has already been
    cleared by the time this is raised.
    """

    default_message = "Your session has expired. Please log in again."
    default_code = ErrorCode.AUTH_EXPIRED


class BackendUnavailableError(RequestFailedError):
    """The backend could not be reached.

    Covers timeouts, refused connections, unreachable networks and a proxy
    reporting that the backend behind it is not running.
    """

    default_message = "Backend server is not reachable. Waiting for it to come back."
    default_code = ErrorCode.BACKEND_UNAVAILABLE


class ServerError(RequestFailedError):
    """The origin server answered with a 5xx status."""

    default_message = "Backend server error - please try again"
    default_code = ErrorCode.SERVER_ERROR


class ClientError(RequestFailedError):
    """The server rejected the request with a 4xx status."""

    default_message = "Invalid request"
    default_code = ErrorCode.CLIENT_ERROR


__all__ = [
    "AuthExpiredError",
    "BackendUnavailableError",
    "ClientError",
    "ConfigurationError",
    "ErrorCode",
    "HeartlineError",
    "RequestFailedError",
    "ServerError",
]
