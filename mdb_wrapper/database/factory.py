"""
Database factory.

``Database`` turns one set of ``WrapperOptions`` into collection wrappers.
Connection handles are created lazily, one per transport, and shared by
every collection of the factory together with one reconnection coordinator.
"""

import logging
from typing import Any

from ..config import WrapperOptions
from ..exceptions import ConfigurationError
from .collection import CollectionWrapper
from .connection import ConnectionHandle, HttpConnectionHandle, MotorConnectionHandle, ReconnectionCoordinator
from .engine import ExecutionEngine
from .errors import ErrorClassifier, ErrorSanitizer
from .transport import HttpTransport, MotorTransport

logger = logging.getLogger(__name__)


class Database:
    """
    Factory for ``CollectionWrapper`` instances sharing one set of options.

    Calling the factory returns a collection::

        db = Database(options)
        users = db("users")                     # default transport
        audit = db("audit", use_driver=True)    # force the driver

    Call ``await db.close()`` on shutdown to release the connections.
    """

    def __init__(
        self,
        options: WrapperOptions,
        classifier: ErrorClassifier | None = None,
        coordinator: ReconnectionCoordinator | None = None,
        http_transport: Any = None,
        motor_client_factory: Any = None,
    ) -> None:
        self.options = options
        self.classifier = classifier or ErrorClassifier()
        self.coordinator = coordinator or ReconnectionCoordinator(options.retry)
        self._http_transport = http_transport
        self._motor_client_factory = motor_client_factory
        self._handles: dict[str, ConnectionHandle] = {}

    def __call__(self, collection: str | None = None, use_driver: bool | None = None) -> CollectionWrapper:
        return self.collection(collection, use_driver=use_driver)

    def _handle(self, use_driver: bool) -> ConnectionHandle:
        options = self.options
        key = "driver" if use_driver else "data_api"
        if key in self._handles:
            return self._handles[key]

        if use_driver:
            if not options.connection_string:
                raise ConfigurationError(
                    "A connection string is required for the driver transport",
                    config_key="connection_string",
                )
            kwargs = {}
            if self._motor_client_factory is not None:
                kwargs["client_factory"] = self._motor_client_factory
            handle: ConnectionHandle = MotorConnectionHandle(options.connection_string, **kwargs)
        else:
            if not options.api_url:
                raise ConfigurationError(
                    "An API URL is required for the Data API transport", config_key="api_url"
                )
            handle = HttpConnectionHandle(
                options.api_url,
                api_key=options.api_key,
                timeout_s=options.http_timeout_s,
                transport=self._http_transport,
            )

        self._handles[key] = handle
        logger.debug(f"Created {handle.name} connection handle for '{options.database}'")
        return handle

    def collection(self, name: str | None = None, use_driver: bool | None = None) -> CollectionWrapper:
        """
        Build a wrapper for collection ``name``.

        Args:
            name: Collection name (defaults to ``options.collection``)
            use_driver: Transport override; None uses ``options.use_driver``

        Raises:
            ConfigurationError: If the name or the transport settings are missing
        """
        options = self.options
        name = name or options.collection
        if not name:
            raise ConfigurationError("A collection name is required", config_key="collection")

        driver = options.use_driver if use_driver is None else use_driver
        handle = self._handle(driver)

        if driver:
            transport = MotorTransport(handle, options.database, name)
        else:
            transport = HttpTransport(handle, options.database, name, options.data_source)

        sanitizer = ErrorSanitizer(name, options.database, self.classifier, on_error=options.on_error)
        engine = ExecutionEngine(
            collection=name,
            database=options.database,
            handle=handle,
            coordinator=self.coordinator,
            classifier=self.classifier,
            sanitizer=sanitizer,
            cache=options.cache,
            on_mutation=options.on_mutation,
            should_revalidate=options.should_revalidate,
            debug=options.debug,
        )
        return CollectionWrapper(
            name,
            transport,
            engine,
            set_on_insert=options.set_on_insert,
            set_on_update=options.set_on_update,
            transactions_enabled=options.transactions_enabled,
            sibling_factory=lambda other: self.collection(other, use_driver=driver),
        )

    async def close(self) -> None:
        """Close every connection handle created by this factory."""
        for handle in self._handles.values():
            await handle.close()
        self._handles.clear()
