"""
Observability components.

Provides structured logging with per-operation context.
"""

from .logging import (
    ContextualLoggerAdapter,
    get_logger,
    get_logging_context,
    log_operation,
    operation_context,
)

__all__ = [
    "operation_context",
    "get_logging_context",
    "ContextualLoggerAdapter",
    "get_logger",
    "log_operation",
]
