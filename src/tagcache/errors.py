"""
TagCache - Client Error Types

Defines the exception hierarchy raised by transports and the client facade.
All exceptions inherit from TagCacheError for consistent error handling.

Transports always raise typed errors. Only the convenience wrappers on
TagCacheClient turn them into False/0 sentinels.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """
    Standard error codes attached to every TagCacheError.

    Used for structured logging and for callers that prefer matching on a
    code instead of an exception class.
    """

    CONFIGURATION = "CONFIGURATION"
    API_ERROR = "API_ERROR"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    TIMEOUT = "TIMEOUT"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    SERVER_ERROR = "SERVER_ERROR"


class TagCacheError(Exception):
    """Base exception for all TagCache client errors."""

    error_code: ErrorCode = ErrorCode.API_ERROR

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        status_code: int = 500,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.status_code = status_code

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logs and API responses."""
        return {
            "error": self.__class__.__name__,
            "error_code": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(TagCacheError):
    """Raised when configuration is invalid or missing."""

    error_code = ErrorCode.CONFIGURATION

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details, status_code=500)


class ApiError(TagCacheError):
    """Raised for generic 4xx responses and protocol-level failures."""

    def __init__(self, message: str, details: dict[str, Any] | None = None, status_code: int = 400):
        super().__init__(message, details, status_code=status_code)


class UnsupportedOperationError(ApiError):
    """Raised when the active transport cannot perform an operation."""

    error_code = ErrorCode.UNSUPPORTED_OPERATION

    def __init__(self, operation: str, transport: str, alternative: str = "http"):
        message = f"{operation} not supported over {transport} transport; use {alternative}"
        super().__init__(
            message,
            {"operation": operation, "transport": transport, "alternative": alternative},
            status_code=501,
        )
        self.operation = operation
        self.transport = transport


class CacheConnectionError(ApiError):
    """Raised when dialing, writing to or reading from the server fails."""

    error_code = ErrorCode.CONNECTION_FAILED

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details, status_code=503)


class CacheTimeoutError(ApiError):
    """Raised when an operation exceeds its configured timeout."""

    error_code = ErrorCode.TIMEOUT

    def __init__(self, message: str, timeout_ms: int | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if timeout_ms is not None:
            error_details["timeout_ms"] = timeout_ms
        super().__init__(message, error_details, status_code=408)


class UnauthorizedError(ApiError):
    """Raised when authentication fails and no implicit login can recover."""

    error_code = ErrorCode.UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized", details: dict[str, Any] | None = None):
        super().__init__(message, details, status_code=401)


class NotFoundError(ApiError):
    """Raised when a requested key does not exist (or has expired)."""

    error_code = ErrorCode.NOT_FOUND

    def __init__(self, key: str | None = None, message: str | None = None):
        if message is None:
            message = f"Key not found: {key}" if key is not None else "Not found"
        super().__init__(message, {"key": key} if key is not None else {}, status_code=404)
        self.key = key


class ServerError(ApiError):
    """Raised on 5xx responses and on response bodies that cannot be parsed."""

    error_code = ErrorCode.SERVER_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None, status_code: int = 500):
        super().__init__(message, details, status_code=status_code)


def is_retryable_error(error: Exception) -> bool:
    """
    Check if an error is transient and should be retried.

    Only connection failures and timeouts qualify. Server errors are not
    retried because the request may already have been applied.

    Args:
        error: Exception to check

    Returns:
        True if error is retryable (transient)
    """
    return isinstance(error, (CacheConnectionError, CacheTimeoutError))
