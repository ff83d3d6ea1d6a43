"""
Database layer for MDB_WRAPPER.

Transports, connection handling, the execution engine and the collection
surface built on top of them.
"""

from .collection import CollectionWrapper
from .connection import (
    HttpConnectionHandle,
    MotorConnectionHandle,
    ReconnectionCoordinator,
    with_driver_options,
)
from .engine import ExecutionEngine
from .errors import ErrorCategory, ErrorClassifier, ErrorSanitizer
from .factory import Database
from .transaction import TransactionScope
from .transport import HttpTransport, MotorTransport, StoreTransport

__all__ = [
    "CollectionWrapper",
    "Database",
    "ExecutionEngine",
    "TransactionScope",
    "StoreTransport",
    "MotorTransport",
    "HttpTransport",
    "MotorConnectionHandle",
    "HttpConnectionHandle",
    "ReconnectionCoordinator",
    "with_driver_options",
    "ErrorCategory",
    "ErrorClassifier",
    "ErrorSanitizer",
]
