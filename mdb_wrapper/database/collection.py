"""
Collection surface.

``CollectionWrapper`` exposes the operations callers use. Each method builds
an operation thunk (convert identifiers to internal form, compose write
hooks, call the transport, convert the result to external form) and hands it
to the ``ExecutionEngine``, which applies the cache, retry and sanitization
policy.

Identifiers cross this boundary as 24-character hexadecimal strings in both
directions: callers may pass strings anywhere an ObjectId is expected and
always receive strings back.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping
from typing import Any, Literal, TypeVar

from ..exceptions import WrapperValidationError
from ..hooks import compose_bulk_operations, compose_insert, compose_update
from ..types import Document, WriteHook
from ..utils.mongo import to_external, to_internal
from .engine import ExecutionEngine
from .transaction import TransactionScope
from .transport import StoreTransport

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _call_options(**options: Any) -> dict[str, Any]:
    """Drop unset options so they do not change cache keys."""
    return {key: value for key, value in options.items() if value is not None}


class CollectionWrapper:
    """
    One collection on one transport.

    Example:
        db = create_db(WrapperOptions(database="shop", use_driver=True, connection_string=uri))
        products = db("products")

        product = await products.find_one({"sku": "A-1"})
        await products.update_one({"_id": product["_id"]}, {"$set": {"stock": 4}})
    """

    def __init__(
        self,
        name: str,
        transport: StoreTransport,
        engine: ExecutionEngine,
        *,
        set_on_insert: WriteHook | None = None,
        set_on_update: WriteHook | None = None,
        transactions_enabled: bool = True,
        sibling_factory: Callable[[str], "CollectionWrapper"] | None = None,
    ) -> None:
        self.name = name
        self.transport = transport
        self.engine = engine
        self.set_on_insert = set_on_insert
        self.set_on_update = set_on_update
        self.transactions_enabled = transactions_enabled
        self._sibling_factory = sibling_factory

    def __repr__(self) -> str:
        return f"CollectionWrapper(name={self.name!r}, transport={self.transport.name!r})"

    @property
    def session(self) -> Any:
        return self.engine.session

    @property
    def in_transaction(self) -> bool:
        return self.engine.in_transaction

    def bound_to(
        self, session: Any, pending_mutations: list[tuple[ExecutionEngine, str]] | None = None
    ) -> "CollectionWrapper":
        """Return a copy of this collection whose operations run in ``session``."""
        return CollectionWrapper(
            self.name,
            self.transport,
            self.engine.bound_to(session, pending_mutations),
            set_on_insert=self.set_on_insert,
            set_on_update=self.set_on_update,
            transactions_enabled=self.transactions_enabled,
            sibling_factory=self._sibling_factory,
        )

    def collection(self, name: str) -> "CollectionWrapper":
        """
        Return another collection on the same transport.

        Inside a transaction the sibling is bound to the same session, so
        writes to several collections commit or abort together.
        """
        if self._sibling_factory is None:
            raise WrapperValidationError(
                "This collection was not created by a database factory",
                context={"collection": self.name},
            )
        sibling = self._sibling_factory(name)
        if not self.in_transaction:
            return sibling
        return sibling.bound_to(self.session, self.engine.pending_mutations)

    # ------------------------------------------------------------------
    # Reads (cacheable)
    # ------------------------------------------------------------------

    async def find_one(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        projection: Mapping[str, Any] | None = None,
        cache: bool = True,
    ) -> Document | None:
        """Return the first matching document, or None."""
        filter = filter or {}

        async def operation():
            document = await self.transport.find_one(
                to_internal(filter), projection=projection, session=self.session
            )
            return to_external(document)

        return await self.engine.execute(
            "find_one",
            operation,
            [filter, _call_options(projection=projection)],
            {"cache": cache},
        )

    async def find_by_id(
        self,
        id: Any,
        *,
        projection: Mapping[str, Any] | None = None,
        cache: bool = True,
    ) -> Document | None:
        """Return the document whose ``_id`` is ``id`` (string or ObjectId)."""
        return await self.find_one({"_id": id}, projection=projection, cache=cache)

    async def find(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        projection: Mapping[str, Any] | None = None,
        sort: Any = None,
        limit: int | None = None,
        skip: int | None = None,
        cache: bool = True,
    ) -> list[Document]:
        """
        Return every matching document.

        Args:
            filter: Query filter
            projection: Fields to include or exclude
            sort: ``"-created_at"`` style string, mapping or list of pairs
            limit: Maximum number of documents
            skip: Number of documents to skip
            cache: False forces a fresh read

        Returns:
            List of documents with string identifiers
        """
        filter = filter or {}
        query_options = _call_options(projection=projection, sort=sort, limit=limit, skip=skip)

        async def operation():
            documents = await self.transport.find(
                to_internal(filter), session=self.session, **query_options
            )
            return to_external(documents)

        return await self.engine.execute(
            "find", operation, [filter, query_options], {"cache": cache}
        )

    async def distinct(
        self,
        field: str,
        filter: Mapping[str, Any] | None = None,
        *,
        cache: bool = True,
    ) -> list[Any]:
        """Return the distinct values of ``field`` among matching documents."""
        filter = filter or {}

        async def operation():
            values = await self.transport.distinct(
                field, to_internal(filter), session=self.session
            )
            return to_external(values)

        return await self.engine.execute(
            "distinct", operation, [field, filter], {"cache": cache}
        )

    async def aggregate(
        self, pipeline: list[Mapping[str, Any]], *, cache: bool = True
    ) -> list[Document]:
        """Run an aggregation pipeline and return every resulting document."""

        async def operation():
            documents = await self.transport.aggregate(
                to_internal(list(pipeline)), session=self.session
            )
            return to_external(documents)

        return await self.engine.execute(
            "aggregate", operation, [list(pipeline)], {"cache": cache}
        )

    async def count(
        self, filter: Mapping[str, Any] | None = None, *, cache: bool = True
    ) -> int:
        filter = filter or {}

        async def operation():
            return await self.transport.count(to_internal(filter), session=self.session)

        return await self.engine.execute("count", operation, [filter], {"cache": cache})

    # ------------------------------------------------------------------
    # Writes (mutations)
    # ------------------------------------------------------------------

    async def insert_one(self, document: Mapping[str, Any]) -> dict[str, Any]:
        """
        Insert one document.

        Insert hook fields are merged into the document and take precedence
        over the caller's fields of the same name.

        Returns:
            ``{"inserted_id": "<hex string>"}``
        """

        async def operation():
            composed = await compose_insert(self.name, document, set_on_insert=self.set_on_insert)
            result = await self.transport.insert_one(to_internal(composed), session=self.session)
            return to_external(result)

        return await self.engine.execute("insert_one", operation, [document], is_mutation=True)

    async def insert_many(self, documents: list[Mapping[str, Any]]) -> dict[str, Any]:
        """Insert several documents; returns ``{"inserted_ids": [...]}``."""
        documents = list(documents)

        async def operation():
            composed = [
                await compose_insert(self.name, document, set_on_insert=self.set_on_insert)
                for document in documents
            ]
            result = await self.transport.insert_many(to_internal(composed), session=self.session)
            return to_external(result)

        return await self.engine.execute("insert_many", operation, [documents], is_mutation=True)

    async def _compose_update(self, update: Any, skip_hooks: bool) -> Any:
        return await compose_update(
            self.name,
            update,
            set_on_update=self.set_on_update,
            set_on_insert=self.set_on_insert,
            skip_hooks=skip_hooks,
        )

    async def update_one(
        self,
        filter: Mapping[str, Any],
        update: Any,
        *,
        upsert: bool = False,
        skip_hooks: bool = False,
    ) -> dict[str, Any]:
        """
        Update the first matching document.

        Returns:
            ``{"matched_count", "modified_count", "upserted_id"}``
        """

        async def operation():
            composed = await self._compose_update(update, skip_hooks)
            result = await self.transport.update_one(
                to_internal(filter), to_internal(composed), upsert=upsert, session=self.session
            )
            return to_external(result)

        return await self.engine.execute(
            "update_one", operation, [filter, update, {"upsert": upsert}], is_mutation=True
        )

    async def update_many(
        self,
        filter: Mapping[str, Any],
        update: Any,
        *,
        upsert: bool = False,
        skip_hooks: bool = False,
    ) -> dict[str, Any]:
        async def operation():
            composed = await self._compose_update(update, skip_hooks)
            result = await self.transport.update_many(
                to_internal(filter), to_internal(composed), upsert=upsert, session=self.session
            )
            return to_external(result)

        return await self.engine.execute(
            "update_many", operation, [filter, update, {"upsert": upsert}], is_mutation=True
        )

    async def delete_one(self, filter: Mapping[str, Any]) -> dict[str, Any]:
        async def operation():
            return await self.transport.delete_one(to_internal(filter), session=self.session)

        return await self.engine.execute("delete_one", operation, [filter], is_mutation=True)

    async def delete_many(self, filter: Mapping[str, Any]) -> dict[str, Any]:
        async def operation():
            return await self.transport.delete_many(to_internal(filter), session=self.session)

        return await self.engine.execute("delete_many", operation, [filter], is_mutation=True)

    async def find_one_and_update(
        self,
        filter: Mapping[str, Any],
        update: Any,
        *,
        projection: Mapping[str, Any] | None = None,
        sort: Any = None,
        upsert: bool = False,
        return_document: Literal["before", "after"] = "after",
        skip_hooks: bool = False,
    ) -> Document | None:
        """
        Atomically update one document and return it.

        ``return_document`` defaults to "after" (the updated document).
        Driver transport only.
        """

        async def operation():
            composed = await self._compose_update(update, skip_hooks)
            document = await self.transport.find_one_and_update(
                to_internal(filter),
                to_internal(composed),
                projection=projection,
                sort=sort,
                upsert=upsert,
                return_document=return_document,
                session=self.session,
            )
            return to_external(document)

        return await self.engine.execute(
            "find_one_and_update",
            operation,
            [filter, update, _call_options(upsert=upsert, return_document=return_document)],
            is_mutation=True,
        )

    async def bulk_write(
        self,
        operations: list[Mapping[str, Any]],
        *,
        ordered: bool = True,
        skip_hooks: bool = False,
    ) -> dict[str, Any]:
        """
        Run several writes in one round trip. Driver transport only.

        Operations are single-key mappings::

            [
                {"insert_one": {"document": {...}}},
                {"update_one": {"filter": {...}, "update": {...}, "upsert": True}},
                {"delete_many": {"filter": {...}}},
            ]
        """
        operations = list(operations)

        async def operation():
            composed = await compose_bulk_operations(
                self.name,
                operations,
                set_on_update=self.set_on_update,
                set_on_insert=self.set_on_insert,
                skip_hooks=skip_hooks,
            )
            result = await self.transport.bulk_write(
                to_internal(composed), ordered=ordered, session=self.session
            )
            return to_external(result)

        return await self.engine.execute(
            "bulk_write", operation, [operations, {"ordered": ordered}], is_mutation=True
        )

    # ------------------------------------------------------------------
    # Streaming and raw access (no cache, no retry)
    # ------------------------------------------------------------------

    async def _stream(
        self, action: str, source: AsyncIterator[Document], arguments: list[Any]
    ) -> AsyncIterator[Document]:
        try:
            async for document in source:
                yield to_external(document)
        except WrapperValidationError:
            raise
        except Exception as e:
            raise await self.engine.sanitizer.sanitize(
                e, action=action, arguments=arguments
            ) from None
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()

    def cursor(self, pipeline: list[Mapping[str, Any]]) -> AsyncIterator[Document]:
        """
        Stream the results of an aggregation pipeline.

        Example:
            async for order in orders.cursor([{"$match": {"status": "open"}}]):
                ...
        """
        pipeline = list(pipeline)
        source = self.transport.cursor(to_internal(pipeline), session=self.session)
        return self._stream("cursor", source, [pipeline])

    def find_cursor(
        self,
        filter: Mapping[str, Any] | None = None,
        *,
        projection: Mapping[str, Any] | None = None,
        sort: Any = None,
        limit: int | None = None,
        skip: int | None = None,
    ) -> AsyncIterator[Document]:
        """Stream matching documents instead of loading them all at once."""
        filter = filter or {}
        query_options = _call_options(projection=projection, sort=sort, limit=limit, skip=skip)
        source = self.transport.find_cursor(
            to_internal(filter), session=self.session, **query_options
        )
        return self._stream("find_cursor", source, [filter, query_options])

    async def get_client(self) -> Any:
        """Return the underlying driver collection (driver transport only)."""
        return await self.transport.get_collection()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def with_transaction(
        self, callback: Callable[["CollectionWrapper"], Awaitable[T] | T]
    ) -> T:
        """
        Run ``callback`` inside a transaction.

        The callback receives a copy of this collection bound to the
        transaction session (use ``child.collection(name)`` for other
        collections). The transaction commits when the callback returns and
        aborts when it raises.

        Raises:
            TransactionMisuseError: If already inside a transaction, if
                transactions are disabled, or on the Data API transport
        """
        return await TransactionScope(self, enabled=self.transactions_enabled).run(callback)
