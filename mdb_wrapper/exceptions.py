"""
Custom exceptions for MDB_WRAPPER.

Two families live here. Caller-misuse errors (``WrapperValidationError`` and
its subclasses) are raised as-is and never retried. Store failures are never
surfaced verbatim: they cross the boundary as ``DataLayerError`` (or one of
its subclasses) carrying only a generic message, while the original error is
handed to the configured reporter.
"""

from typing import Any

from .constants import GENERIC_ERROR_MESSAGE


class MongoWrapperError(RuntimeError):
    """
    Base exception for MDB_WRAPPER errors.

    Attributes:
        message: Error message
        context: Optional dictionary with additional context (collection,
                 database, action, etc.)
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            context: Optional dictionary with additional context information
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} (context: {context_str})"
        return self.message


class ConfigurationError(MongoWrapperError):
    """
    Raised when wrapper options are invalid or missing.

    Attributes:
        message: Error message
        config_key: Configuration key that caused the error (if available)
        context: Additional context information
    """

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = context or {}
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, context=context)
        self.config_key = config_key


# ============================================================================
# CALLER MISUSE
# ============================================================================


class WrapperValidationError(MongoWrapperError):
    """
    Raised when the caller uses the wrapper incorrectly.

    These errors describe the call, not the data, so they are surfaced
    immediately and never retried or sanitized.
    """


class TransactionMisuseError(WrapperValidationError):
    """Raised for nested transactions or transactions on a transport without sessions."""


class UnsupportedOperationError(WrapperValidationError):
    """
    Raised when an operation is not available on the selected transport.

    Attributes:
        operation: Name of the unsupported operation
        transport: Name of the transport
    """

    def __init__(self, operation: str, transport: str) -> None:
        super().__init__(
            f"'{operation}' is not supported by the {transport} transport",
            context={"operation": operation, "transport": transport},
        )
        self.operation = operation
        self.transport = transport


# ============================================================================
# STORE FAILURES
# ============================================================================


class ReconnectionError(MongoWrapperError):
    """
    Raised when every reconnection attempt for a connection handle failed.

    Carries the message of the last underlying failure. The execution engine
    never retries after this error; it reports and sanitizes it instead.

    Attributes:
        attempts: Number of reconnection attempts made
        last_error: The last underlying exception
    """

    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        detail = str(last_error) if last_error is not None else "unknown error"
        super().__init__(
            f"Reconnection failed after {attempts} attempts: {detail}",
            context={"attempts": attempts},
        )
        self.attempts = attempts
        self.last_error = last_error


class DataApiError(MongoWrapperError):
    """
    Raised by the Data API transport for a non-2xx response.

    Never reaches callers directly; the engine sanitizes it.

    Attributes:
        status: HTTP status code
        error_code: ``error_code`` field of the response body (if any)
    """

    def __init__(self, status: int, error_code: str | None, message: str) -> None:
        super().__init__(
            f"{status} ({error_code}): {message}",
            context={"status": status, "error_code": error_code},
        )
        self.status = status
        self.error_code = error_code


class DataLayerError(MongoWrapperError):
    """
    Generic failure surfaced to callers in place of any store error.

    Only ever carries ``GENERIC_ERROR_MESSAGE``; the full detail went to the
    configured reporter.
    """

    def __init__(self) -> None:
        super().__init__(GENERIC_ERROR_MESSAGE)


class StoreConnectionError(DataLayerError):
    """Sanitized terminal connection failure (after the single retry)."""


class DuplicateKeyError(DataLayerError):
    """Sanitized unique constraint violation. Never retried."""
