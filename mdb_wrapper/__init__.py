"""
MDB_WRAPPER - MongoDB resilience and normalization layer

One collection-level API over the native driver and the Data API, with
read caching, mutation notification, write-default hooks, ObjectId/string
normalization and reconnect-and-retry on transient connection failures.
"""

from typing import Any

from .cache import MemoryCache
from .config import RetrySettings, WrapperOptions
from .database import CollectionWrapper, Database, ErrorCategory, ErrorClassifier
from .exceptions import (
    ConfigurationError,
    DataLayerError,
    DuplicateKeyError,
    MongoWrapperError,
    StoreConnectionError,
    TransactionMisuseError,
    UnsupportedOperationError,
    WrapperValidationError,
)
from .utils import object_id_to_string, string_to_object_id

__version__ = "0.1.0"


def create_db(options: WrapperOptions | None = None, **kwargs: Any) -> Database:
    """
    Create a database factory.

    Args:
        options: Validated options; built from ``kwargs`` when omitted
        **kwargs: ``WrapperOptions`` fields (used only without ``options``)

    Returns:
        A ``Database``; call it with a collection name to get a
        ``CollectionWrapper``

    Example:
        db = create_db(database="shop", api_url="https://data.example.com/v1")
        orders = db("orders")
        await orders.find({"status": "open"})
    """
    if options is None:
        options = WrapperOptions(**kwargs)
    return Database(options)


__all__ = [
    "create_db",
    "Database",
    "CollectionWrapper",
    # Configuration
    "WrapperOptions",
    "RetrySettings",
    # Cache
    "MemoryCache",
    # Errors
    "ErrorCategory",
    "ErrorClassifier",
    "MongoWrapperError",
    "ConfigurationError",
    "WrapperValidationError",
    "TransactionMisuseError",
    "UnsupportedOperationError",
    "DataLayerError",
    "StoreConnectionError",
    "DuplicateKeyError",
    # Identifiers
    "object_id_to_string",
    "string_to_object_id",
]
