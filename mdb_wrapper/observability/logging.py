"""
Structured logging for MDB_WRAPPER.

The execution engine enters an ``operation_context`` for every call, so any
record emitted underneath it (reconnection attempts, reporter fallbacks)
carries the collection and database it belongs to. Callers may add their
own fields, such as a request id, with the same context manager.
"""

import contextvars
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any

_operation_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "mdb_wrapper_operation_context", default={}
)


@contextmanager
def operation_context(**fields: Any) -> Iterator[dict[str, Any]]:
    """
    Add ``fields`` to every record logged inside the block.

    Nested blocks inherit the outer fields; inner values win on collision.

    Example:
        with operation_context(request_id="r-42"):
            await users.find_one({"email": email})
    """
    merged = {**_operation_context.get(), **fields}
    token = _operation_context.set(merged)
    try:
        yield merged
    finally:
        _operation_context.reset(token)


def get_logging_context() -> dict[str, Any]:
    """Return a copy of the current context plus a timestamp."""
    return {"timestamp": datetime.now().isoformat(), **_operation_context.get()}


class ContextualLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds the operation context to each record."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        context = get_logging_context()
        context.update(kwargs.get("extra") or {})
        kwargs["extra"] = context
        return msg, kwargs


def get_logger(name: str) -> ContextualLoggerAdapter:
    """
    Get a contextual logger.

    Args:
        name: Logger name (typically __name__)

    Returns:
        ContextualLoggerAdapter instance
    """
    return ContextualLoggerAdapter(logging.getLogger(name), {})


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    collection: str,
    method: str,
    outcome: str,
    duration_ms: float,
    level: int = logging.DEBUG,
    **context: Any,
) -> None:
    """
    Log one collection operation.

    Args:
        logger: Logger instance
        collection: Collection name
        method: Operation name (e.g. "find_one")
        outcome: "success", "failure", "rejected" or "reconnecting"
        duration_ms: Elapsed time in milliseconds
        level: Log level
        **context: Additional fields (arguments, database, ...)
    """
    logger.log(
        level,
        f"{collection}.{method} {outcome} ({duration_ms:.2f}ms)",
        extra={
            "method": method,
            "outcome": outcome,
            "success": outcome == "success",
            "duration_ms": round(duration_ms, 2),
            **context,
        },
    )
