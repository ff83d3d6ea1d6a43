"""
Error classification and sanitization.

``ErrorClassifier`` sorts a failure into one of three mutually exclusive
buckets (duplicate key, permanent, retryable connection) or ``UNKNOWN``.
Duplicate key is checked first, then permanent, then retryable, so a failure
whose signature overlaps a connection error is never retried when it also
carries a duplicate-key or permanent signature.

The code sets are constructor parameters: an alternate store supplies its
own code-to-bucket mapping without touching the execution engine.

``ErrorSanitizer`` hands the original error plus metadata to the configured
reporter and returns a generic exception that carries no driver text, error
codes or call arguments.
"""

import logging
from collections.abc import Iterable
from enum import Enum
from typing import Any

import httpx
from bson.errors import InvalidBSON, InvalidDocument, InvalidId
from pymongo.errors import BulkWriteError, ConnectionFailure, CursorNotFound
from pymongo.errors import ConfigurationError as PyMongoConfigurationError
from pymongo.errors import InvalidName, InvalidOperation, OperationFailure, PyMongoError

from ..constants import (
    DUPLICATE_KEY_API_CODES,
    DUPLICATE_KEY_ERROR_CODES,
    PERMANENT_ERROR_CODES,
    RETRYABLE_ERROR_CODES,
    RETRYABLE_HTTP_STATUSES,
)
from ..exceptions import (
    DataApiError,
    DataLayerError,
    DuplicateKeyError,
    ReconnectionError,
    StoreConnectionError,
)
from ..observability import get_logger as get_contextual_logger
from ..types import OnError, maybe_await

logger = logging.getLogger(__name__)
contextual_logger = get_contextual_logger(__name__)

# Driver failures that can never succeed on a fresh connection: API misuse,
# closed clients, exhausted cursors, bad names, version incompatibility.
PERMANENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    InvalidOperation,
    CursorNotFound,
    InvalidName,
    PyMongoConfigurationError,
    InvalidDocument,
    InvalidId,
    InvalidBSON,
    TypeError,
    ValueError,
)

RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    ConnectionFailure,
    httpx.TransportError,
)

RETRYABLE_ERROR_LABELS: tuple[str, ...] = ("RetryableWriteError",)


class ErrorCategory(str, Enum):
    """Classification buckets for store failures."""

    RETRYABLE_CONNECTION = "retryable_connection"
    PERMANENT = "permanent"
    DUPLICATE_KEY = "duplicate_key"
    UNKNOWN = "unknown"


class ErrorClassifier:
    """
    Categorizes failures raised by either transport.

    Example:
        classifier = ErrorClassifier()
        classifier.classify(AutoReconnect("connection reset"))
        # ErrorCategory.RETRYABLE_CONNECTION
    """

    def __init__(
        self,
        duplicate_key_codes: Iterable[int] = DUPLICATE_KEY_ERROR_CODES,
        retryable_codes: Iterable[int] = RETRYABLE_ERROR_CODES,
        permanent_codes: Iterable[int] = PERMANENT_ERROR_CODES,
        duplicate_key_api_codes: Iterable[str] = DUPLICATE_KEY_API_CODES,
        retryable_http_statuses: Iterable[int] = RETRYABLE_HTTP_STATUSES,
    ) -> None:
        self.duplicate_key_codes = frozenset(duplicate_key_codes)
        self.retryable_codes = frozenset(retryable_codes)
        self.permanent_codes = frozenset(permanent_codes)
        self.duplicate_key_api_codes = frozenset(duplicate_key_api_codes)
        self.retryable_http_statuses = frozenset(retryable_http_statuses)

    @staticmethod
    def error_codes(error: BaseException) -> set[int]:
        """Collect every server code attached to ``error`` (including bulk write errors)."""
        codes: set[int] = set()
        code = getattr(error, "code", None)
        if isinstance(code, int):
            codes.add(code)

        details = getattr(error, "details", None)
        if isinstance(error, BulkWriteError) and isinstance(details, dict):
            for write_error in details.get("writeErrors", []):
                if isinstance(write_error.get("code"), int):
                    codes.add(write_error["code"])
            for concern_error in details.get("writeConcernErrors", []):
                if isinstance(concern_error.get("code"), int):
                    codes.add(concern_error["code"])
        return codes

    def is_duplicate_key(self, error: BaseException) -> bool:
        if isinstance(error, DataApiError):
            return error.error_code in self.duplicate_key_api_codes
        return bool(self.error_codes(error) & self.duplicate_key_codes)

    def is_permanent(self, error: BaseException) -> bool:
        if isinstance(error, DataApiError):
            return 400 <= error.status < 500 and error.status not in self.retryable_http_statuses
        if isinstance(error, PERMANENT_EXCEPTIONS):
            return True
        return isinstance(error, OperationFailure) and bool(
            self.error_codes(error) & self.permanent_codes
        )

    def is_retryable_connection(self, error: BaseException) -> bool:
        if isinstance(error, DataApiError):
            return error.status in self.retryable_http_statuses
        if isinstance(error, RETRYABLE_EXCEPTIONS):
            return True
        if isinstance(error, PyMongoError):
            if any(error.has_error_label(label) for label in RETRYABLE_ERROR_LABELS):
                return True
            return bool(self.error_codes(error) & self.retryable_codes)
        return False

    def classify(self, error: BaseException) -> ErrorCategory:
        """
        Return the bucket for ``error``.

        Args:
            error: Any exception raised by a transport

        Returns:
            ErrorCategory (duplicate key, then permanent, then retryable)
        """
        if self.is_duplicate_key(error):
            return ErrorCategory.DUPLICATE_KEY
        if self.is_permanent(error):
            return ErrorCategory.PERMANENT
        if self.is_retryable_connection(error):
            return ErrorCategory.RETRYABLE_CONNECTION
        return ErrorCategory.UNKNOWN

    def is_retryable(self, error: BaseException, in_transaction: bool = False) -> bool:
        """
        Return True if a reconnect-and-retry may fix ``error``.

        Operations bound to a transaction session are never retryable:
        reconnecting invalidates the session.
        """
        if in_transaction:
            return False
        return self.classify(error) is ErrorCategory.RETRYABLE_CONNECTION


class ErrorSanitizer:
    """
    Reports store failures and replaces them with generic errors.

    The reporter receives ``(error, metadata)`` where metadata holds the
    collection, database, action, arguments and category. Without a reporter
    the error is logged through the contextual logger.
    """

    def __init__(
        self,
        collection: str,
        database: str,
        classifier: ErrorClassifier,
        on_error: OnError | None = None,
    ) -> None:
        self.collection = collection
        self.database = database
        self.classifier = classifier
        self.on_error = on_error

    async def report(self, error: BaseException, metadata: dict[str, Any]) -> None:
        """Hand ``error`` to the reporter (or the log); never raises."""
        if self.on_error is None:
            contextual_logger.error(
                "MongoDB error",
                extra={"error_type": type(error).__name__, **metadata},
                exc_info=(type(error), error, error.__traceback__),
            )
            return

        try:
            await maybe_await(self.on_error(error, metadata))
        except Exception:
            # A failing reporter must not replace the error the caller sees
            logger.exception(
                f"Error reporter failed for {self.collection}.{metadata.get('action')}"
            )

    async def sanitize(
        self,
        error: BaseException,
        *,
        action: str,
        arguments: Any = None,
    ) -> DataLayerError:
        """
        Report ``error`` and build the exception the caller will receive.

        Args:
            error: Original failure
            action: Operation name (e.g. "find_one")
            arguments: Call arguments, forwarded to the reporter only

        Returns:
            DuplicateKeyError, StoreConnectionError or DataLayerError
        """
        category = self.classifier.classify(error)

        metadata = {
            "collection": self.collection,
            "database": self.database,
            "action": action,
            "arguments": arguments,
            "category": category.value,
        }
        await self.report(error, metadata)

        if category is ErrorCategory.DUPLICATE_KEY:
            return DuplicateKeyError()
        if category is ErrorCategory.RETRYABLE_CONNECTION or isinstance(error, ReconnectionError):
            return StoreConnectionError()
        return DataLayerError()
