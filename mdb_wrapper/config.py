"""
Configuration management for MDB_WRAPPER.

Options are plain Pydantic models so they validate on construction. They can
be built with direct parameters or from environment variables through
``WrapperOptions.from_env()``.
"""

import os
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_HTTP_TIMEOUT_S,
    DEFAULT_INITIAL_DELAY_MS,
    DEFAULT_MAX_DELAY_MS,
    DEFAULT_MAX_RETRIES,
)


class RetrySettings(BaseModel):
    """
    Reconnection backoff parameters.

    The delay before reconnection attempt ``n + 1`` (after ``n`` failures) is
    ``initial_delay_ms * backoff_multiplier ** (n - 1)``, capped at
    ``max_delay_ms``.
    """

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(DEFAULT_MAX_RETRIES, ge=0, description="Attempts after the first")
    initial_delay_ms: int = Field(DEFAULT_INITIAL_DELAY_MS, ge=0)
    max_delay_ms: int = Field(DEFAULT_MAX_DELAY_MS, ge=0)
    backoff_multiplier: float = Field(DEFAULT_BACKOFF_MULTIPLIER, ge=1.0)

    @model_validator(mode="after")
    def _check_delays(self) -> "RetrySettings":
        if self.initial_delay_ms > self.max_delay_ms:
            raise ValueError(
                f"initial_delay_ms ({self.initial_delay_ms}) cannot be greater than "
                f"max_delay_ms ({self.max_delay_ms})"
            )
        return self

    @classmethod
    def from_env(cls) -> "RetrySettings":
        """Build settings from ``MDB_WRAPPER_*`` environment variables."""
        return cls(
            max_retries=int(os.getenv("MDB_WRAPPER_MAX_RETRIES", str(DEFAULT_MAX_RETRIES))),
            initial_delay_ms=int(
                os.getenv("MDB_WRAPPER_INITIAL_DELAY_MS", str(DEFAULT_INITIAL_DELAY_MS))
            ),
            max_delay_ms=int(os.getenv("MDB_WRAPPER_MAX_DELAY_MS", str(DEFAULT_MAX_DELAY_MS))),
            backoff_multiplier=float(
                os.getenv("MDB_WRAPPER_BACKOFF_MULTIPLIER", str(DEFAULT_BACKOFF_MULTIPLIER))
            ),
        )


class WrapperOptions(BaseModel):
    """
    Options shared by every collection created through ``create_db``.

    Example:
        # Using environment variables
        options = WrapperOptions.from_env(cache=my_cache)

        # Or using direct parameters
        options = WrapperOptions(
            database="my_db",
            connection_string="mongodb://localhost:27017",
            use_driver=True,
        )
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    database: str = Field(..., min_length=1)
    collection: str | None = None
    debug: bool = False
    retry: RetrySettings = Field(default_factory=RetrySettings)
    transactions_enabled: bool = True

    # Driver transport
    use_driver: bool = False
    connection_string: str | None = None

    # Data API transport
    api_url: str | None = None
    api_key: str | None = None
    data_source: str | None = None
    http_timeout_s: float = Field(DEFAULT_HTTP_TIMEOUT_S, gt=0)

    # Collaborators
    cache: Callable[..., Any] | None = None
    on_mutation: Callable[..., Any] | None = None
    on_error: Callable[..., Any] | None = None
    set_on_insert: Callable[..., Any] | None = None
    set_on_update: Callable[..., Any] | None = None
    should_revalidate: Callable[..., Any] | None = None

    @classmethod
    def from_env(cls, **overrides: Any) -> "WrapperOptions":
        """
        Build options from environment variables.

        Args:
            **overrides: Values that take precedence over the environment
                         (collaborator callables are usually passed here)

        Returns:
            Validated WrapperOptions
        """
        values: dict[str, Any] = {
            "database": os.getenv("DB_NAME", ""),
            "debug": os.getenv("MDB_WRAPPER_DEBUG", "false").lower() == "true",
            "connection_string": os.getenv("MONGO_URI") or None,
            "api_url": os.getenv("DATA_API_URL") or None,
            "api_key": os.getenv("DATA_API_KEY") or None,
            "data_source": os.getenv("DATA_API_SOURCE") or None,
            "retry": RetrySettings.from_env(),
        }
        values.update(overrides)
        return cls(**values)
