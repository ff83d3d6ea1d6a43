"""
Constants for MDB_WRAPPER.

This module contains all shared constants used across the codebase to avoid
magic numbers and improve maintainability.
"""

from typing import Final

# ============================================================================
# RECONNECTION CONSTANTS
# ============================================================================

DEFAULT_MAX_RETRIES: Final[int] = 3
"""Reconnection attempts after the first one (total attempts = max_retries + 1)."""

DEFAULT_INITIAL_DELAY_MS: Final[int] = 100
"""Backoff delay before the second reconnection attempt (milliseconds)."""

DEFAULT_MAX_DELAY_MS: Final[int] = 5000
"""Upper bound for a single backoff delay (milliseconds)."""

DEFAULT_BACKOFF_MULTIPLIER: Final[float] = 2.0
"""Growth factor applied to the backoff delay after each failed attempt."""

# ============================================================================
# DATABASE CONSTANTS
# ============================================================================

DEFAULT_SERVER_SELECTION_TIMEOUT_MS: Final[int] = 5000
"""Default server selection timeout in milliseconds."""

DEFAULT_HTTP_TIMEOUT_S: Final[float] = 30.0
"""Default request timeout for the Data API transport (seconds)."""

DRIVER_URI_OPTIONS: Final[str] = "retryWrites=true&w=majority"
"""Options appended to the connection string when the driver connects."""

# ============================================================================
# IDENTIFIER CONSTANTS
# ============================================================================

OBJECT_ID_PATTERN: Final[str] = r"[0-9a-fA-F]{24}"
"""Grammar of an ObjectId in its external (string) form, matched in full."""

# ============================================================================
# ERROR CLASSIFICATION CONSTANTS
# ============================================================================

DUPLICATE_KEY_ERROR_CODES: Final[frozenset[int]] = frozenset({11000, 11001, 12582})
"""Server codes reported for unique index violations."""

RETRYABLE_ERROR_CODES: Final[frozenset[int]] = frozenset(
    {
        6,  # HostUnreachable
        7,  # HostNotFound
        89,  # NetworkTimeout
        91,  # ShutdownInProgress
        189,  # PrimarySteppedDown
        206,  # NoSuchSession
        262,  # ExceededTimeLimit
        9001,  # SocketException
        10107,  # NotWritablePrimary
        11600,  # InterruptedAtShutdown
        11602,  # InterruptedDueToReplStateChange
        13435,  # NotPrimaryNoSecondaryOk
        13436,  # NotPrimaryOrSecondary
    }
)
"""Server codes for network, topology and session-expiry failures."""

PERMANENT_ERROR_CODES: Final[frozenset[int]] = frozenset(
    {
        2,  # BadValue
        9,  # FailedToParse
        13,  # Unauthorized
        14,  # TypeMismatch
        18,  # AuthenticationFailed
        40,  # ConflictingUpdateOperators
        52,  # DollarPrefixedFieldName
        66,  # ImmutableField
    }
)
"""Server codes for malformed arguments, query syntax and authentication failures."""

RETRYABLE_HTTP_STATUSES: Final[frozenset[int]] = frozenset({408, 429, 500, 502, 503, 504})
"""Data API response statuses treated as transient."""

DUPLICATE_KEY_API_CODES: Final[frozenset[str]] = frozenset({"DuplicateKey", "E11000"})
"""Data API error codes reported for unique index violations."""

# ============================================================================
# MESSAGES
# ============================================================================

GENERIC_ERROR_MESSAGE: Final[str] = (
    "A database related error occurred. See the logs for detailed information."
)
"""The only message a sanitized error ever carries."""
