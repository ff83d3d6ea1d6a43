"""
Store transports.

``StoreTransport`` is the one interface the collection surface talks to.
Two implementations exist, selected once by ``create_db``:

- ``MotorTransport``: the native driver (Motor over PyMongo), with sessions,
  cursors and bulk writes.
- ``HttpTransport``: a stateless Data API endpoint (Extended JSON over HTTP).
  No sessions, no cursors; ``distinct`` and ``count`` are emulated with
  aggregations.

Transports receive arguments in internal form (ObjectIds, not strings) and
return plain Python values: documents, lists, counts, and result mappings
with snake_case keys (``inserted_id``, ``matched_count``, ...). They never
catch store errors; the execution engine classifies them.
"""

import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol

from pymongo import DeleteMany, DeleteOne, InsertOne, ReplaceOne, ReturnDocument, UpdateMany, UpdateOne

from ..exceptions import DataApiError, UnsupportedOperationError, WrapperValidationError
from ..utils.mongo import from_transport, parse_sort, to_transport
from .connection import HttpConnectionHandle, MotorConnectionHandle

logger = logging.getLogger(__name__)


def normalize_sort(sort: Any) -> list[tuple[str, int]] | None:
    """Accept a sort string, a mapping or a list of pairs; return a list of pairs."""
    if not sort:
        return None
    if isinstance(sort, str):
        sort = parse_sort(sort)
    if isinstance(sort, Mapping):
        return list(sort.items())
    return [tuple(pair) for pair in sort]


class StoreTransport(Protocol):
    """Operations every transport provides (or rejects explicitly)."""

    name: str
    supports_sessions: bool

    async def find_one(self, filter: Mapping[str, Any], *, projection: Any = None, session: Any = None) -> Any: ...

    async def find(
        self,
        filter: Mapping[str, Any],
        *,
        projection: Any = None,
        sort: Any = None,
        limit: int | None = None,
        skip: int | None = None,
        session: Any = None,
    ) -> list[dict[str, Any]]: ...

    async def count(self, filter: Mapping[str, Any], *, session: Any = None) -> int: ...

    async def distinct(self, field: str, filter: Mapping[str, Any] | None = None, *, session: Any = None) -> list[Any]: ...

    async def aggregate(self, pipeline: list[Mapping[str, Any]], *, session: Any = None) -> list[dict[str, Any]]: ...

    async def insert_one(self, document: Mapping[str, Any], *, session: Any = None) -> dict[str, Any]: ...

    async def insert_many(self, documents: list[Mapping[str, Any]], *, session: Any = None) -> dict[str, Any]: ...

    async def update_one(self, filter: Mapping[str, Any], update: Any, *, upsert: bool = False, session: Any = None) -> dict[str, Any]: ...

    async def update_many(self, filter: Mapping[str, Any], update: Any, *, upsert: bool = False, session: Any = None) -> dict[str, Any]: ...

    async def delete_one(self, filter: Mapping[str, Any], *, session: Any = None) -> dict[str, Any]: ...

    async def delete_many(self, filter: Mapping[str, Any], *, session: Any = None) -> dict[str, Any]: ...

    async def find_one_and_update(
        self,
        filter: Mapping[str, Any],
        update: Any,
        *,
        projection: Any = None,
        sort: Any = None,
        upsert: bool = False,
        return_document: str = "after",
        session: Any = None,
    ) -> Any: ...

    async def bulk_write(self, operations: list[Mapping[str, Any]], *, ordered: bool = True, session: Any = None) -> dict[str, Any]: ...

    def cursor(self, pipeline: list[Mapping[str, Any]], *, session: Any = None) -> AsyncIterator[dict[str, Any]]: ...

    def find_cursor(self, filter: Mapping[str, Any], *, session: Any = None, **options: Any) -> AsyncIterator[dict[str, Any]]: ...

    async def get_collection(self) -> Any: ...

    async def start_session(self) -> Any: ...


# ##########################################################################
# DRIVER TRANSPORT
# ##########################################################################


def _update_result(result: Any) -> dict[str, Any]:
    return {
        "matched_count": result.matched_count,
        "modified_count": result.modified_count,
        "upserted_id": result.upserted_id,
    }


def _to_write_model(operation: Mapping[str, Any]) -> Any:
    """Convert a ``{"update_one": {...}}`` style mapping to a PyMongo write model."""
    if len(operation) != 1:
        raise WrapperValidationError(
            "Each bulk operation must have exactly one key",
            context={"keys": list(operation)},
        )
    kind, body = next(iter(operation.items()))

    if kind == "insert_one":
        return InsertOne(body["document"])
    if kind == "update_one":
        return UpdateOne(body["filter"], body["update"], upsert=body.get("upsert", False))
    if kind == "update_many":
        return UpdateMany(body["filter"], body["update"], upsert=body.get("upsert", False))
    if kind == "replace_one":
        return ReplaceOne(body["filter"], body["replacement"], upsert=body.get("upsert", False))
    if kind == "delete_one":
        return DeleteOne(body["filter"])
    if kind == "delete_many":
        return DeleteMany(body["filter"])
    raise WrapperValidationError(f"Unknown bulk operation '{kind}'", context={"operation": kind})


class MotorTransport:
    """Driver transport over a shared ``MotorConnectionHandle``."""

    name = "driver"
    supports_sessions = True

    def __init__(self, handle: MotorConnectionHandle, database: str, collection: str) -> None:
        self.handle = handle
        self.database = database
        self.collection = collection

    async def get_collection(self) -> Any:
        """Return the Motor collection on the current client."""
        client = await self.handle.get_client()
        return client[self.database][self.collection]

    async def start_session(self) -> Any:
        return await self.handle.start_session()

    @staticmethod
    def _find_kwargs(
        projection: Any = None,
        sort: Any = None,
        limit: int | None = None,
        skip: int | None = None,
        session: Any = None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"session": session}
        if projection is not None:
            kwargs["projection"] = projection
        sort_spec = normalize_sort(sort)
        if sort_spec:
            kwargs["sort"] = sort_spec
        if limit:
            kwargs["limit"] = limit
        if skip:
            kwargs["skip"] = skip
        return kwargs

    async def find_one(self, filter, *, projection=None, session=None):
        collection = await self.get_collection()
        return await collection.find_one(filter, projection=projection, session=session)

    async def find(self, filter, *, projection=None, sort=None, limit=None, skip=None, session=None):
        collection = await self.get_collection()
        cursor = collection.find(filter, **self._find_kwargs(projection, sort, limit, skip, session))
        try:
            return await cursor.to_list(length=None)
        finally:
            await cursor.close()

    async def count(self, filter, *, session=None):
        collection = await self.get_collection()
        return await collection.count_documents(filter, session=session)

    async def distinct(self, field, filter=None, *, session=None):
        collection = await self.get_collection()
        return await collection.distinct(field, filter or {}, session=session)

    async def aggregate(self, pipeline, *, session=None):
        collection = await self.get_collection()
        cursor = collection.aggregate(pipeline, session=session)
        try:
            return await cursor.to_list(length=None)
        finally:
            await cursor.close()

    async def insert_one(self, document, *, session=None):
        collection = await self.get_collection()
        result = await collection.insert_one(document, session=session)
        return {"inserted_id": result.inserted_id}

    async def insert_many(self, documents, *, session=None):
        collection = await self.get_collection()
        result = await collection.insert_many(documents, session=session)
        return {"inserted_ids": list(result.inserted_ids)}

    async def update_one(self, filter, update, *, upsert=False, session=None):
        collection = await self.get_collection()
        result = await collection.update_one(filter, update, upsert=upsert, session=session)
        return _update_result(result)

    async def update_many(self, filter, update, *, upsert=False, session=None):
        collection = await self.get_collection()
        result = await collection.update_many(filter, update, upsert=upsert, session=session)
        return _update_result(result)

    async def delete_one(self, filter, *, session=None):
        collection = await self.get_collection()
        result = await collection.delete_one(filter, session=session)
        return {"deleted_count": result.deleted_count}

    async def delete_many(self, filter, *, session=None):
        collection = await self.get_collection()
        result = await collection.delete_many(filter, session=session)
        return {"deleted_count": result.deleted_count}

    async def find_one_and_update(
        self,
        filter,
        update,
        *,
        projection=None,
        sort=None,
        upsert=False,
        return_document="after",
        session=None,
    ):
        collection = await self.get_collection()
        return await collection.find_one_and_update(
            filter,
            update,
            projection=projection,
            sort=normalize_sort(sort),
            upsert=upsert,
            return_document=(
                ReturnDocument.BEFORE if return_document == "before" else ReturnDocument.AFTER
            ),
            session=session,
        )

    async def bulk_write(self, operations, *, ordered=True, session=None):
        requests = [_to_write_model(operation) for operation in operations]
        collection = await self.get_collection()
        result = await collection.bulk_write(requests, ordered=ordered, session=session)
        return {
            "inserted_count": result.inserted_count,
            "matched_count": result.matched_count,
            "modified_count": result.modified_count,
            "deleted_count": result.deleted_count,
            "upserted_count": result.upserted_count,
            "upserted_ids": dict(result.upserted_ids or {}),
        }

    async def cursor(self, pipeline, *, session=None):
        collection = await self.get_collection()
        cursor = collection.aggregate(pipeline, session=session)
        try:
            async for document in cursor:
                yield document
        finally:
            await cursor.close()

    async def find_cursor(self, filter, *, session=None, **options):
        collection = await self.get_collection()
        cursor = collection.find(filter, **self._find_kwargs(session=session, **options))
        try:
            async for document in cursor:
                yield document
        finally:
            await cursor.close()


# ##########################################################################
# DATA API TRANSPORT
# ##########################################################################


class HttpTransport:
    """
    Data API transport over a shared ``HttpConnectionHandle``.

    Every action is ``POST {api_url}/action/{action}`` with an Extended JSON
    body naming the data source, database and collection.
    """

    name = "data_api"
    supports_sessions = False

    def __init__(
        self,
        handle: HttpConnectionHandle,
        database: str,
        collection: str,
        data_source: str | None = None,
    ) -> None:
        self.handle = handle
        self.database = database
        self.collection = collection
        self.data_source = data_source

    async def get_collection(self) -> Any:
        raise UnsupportedOperationError("get_client", self.name)

    async def start_session(self) -> Any:
        raise UnsupportedOperationError("start_session", self.name)

    def _reject_session(self, action: str, session: Any) -> None:
        if session is not None:
            raise UnsupportedOperationError(f"{action} in a transaction", self.name)

    async def _request(self, action: str, **parameters: Any) -> dict[str, Any]:
        """
        Run one Data API action.

        Raises:
            DataApiError: For any non-2xx response
            httpx.TransportError: For network failures
        """
        body: dict[str, Any] = {"database": self.database, "collection": self.collection}
        if self.data_source:
            body["dataSource"] = self.data_source
        body.update({key: value for key, value in parameters.items() if value is not None})

        client = await self.handle.get_client()
        response = await client.post(f"/action/{action}", content=to_transport(body))

        data: Any = from_transport(response.text) if response.text else {}
        if not 200 <= response.status_code < 300:
            error_code = data.get("error_code") if isinstance(data, dict) else None
            message = data.get("error") if isinstance(data, dict) else None
            raise DataApiError(response.status_code, error_code, message or response.text)
        return data if isinstance(data, dict) else {}

    async def find_one(self, filter, *, projection=None, session=None):
        self._reject_session("find_one", session)
        data = await self._request("findOne", filter=filter, projection=projection)
        return data.get("document")

    async def find(self, filter, *, projection=None, sort=None, limit=None, skip=None, session=None):
        self._reject_session("find", session)
        sort_spec = normalize_sort(sort)
        data = await self._request(
            "find",
            filter=filter,
            projection=projection,
            sort=dict(sort_spec) if sort_spec else None,
            limit=limit or None,
            skip=skip or None,
        )
        return data.get("documents", [])

    async def count(self, filter, *, session=None):
        documents = await self.aggregate(
            [{"$match": filter or {}}, {"$count": "count"}], session=session
        )
        return documents[0]["count"] if documents else 0

    async def distinct(self, field, filter=None, *, session=None):
        pipeline: list[dict[str, Any]] = []
        if filter:
            pipeline.append({"$match": filter})
        pipeline.append({"$group": {"_id": f"${field}"}})
        documents = await self.aggregate(pipeline, session=session)
        return [document["_id"] for document in documents]

    async def aggregate(self, pipeline, *, session=None):
        self._reject_session("aggregate", session)
        data = await self._request("aggregate", pipeline=list(pipeline))
        return data.get("documents", [])

    async def insert_one(self, document, *, session=None):
        self._reject_session("insert_one", session)
        data = await self._request("insertOne", document=document)
        return {"inserted_id": data.get("insertedId")}

    async def insert_many(self, documents, *, session=None):
        self._reject_session("insert_many", session)
        data = await self._request("insertMany", documents=list(documents))
        return {"inserted_ids": list(data.get("insertedIds", []))}

    async def _update(self, action, filter, update, upsert, session):
        self._reject_session(action, session)
        data = await self._request(action, filter=filter, update=update, upsert=upsert)
        return {
            "matched_count": data.get("matchedCount", 0),
            "modified_count": data.get("modifiedCount", 0),
            "upserted_id": data.get("upsertedId"),
        }

    async def update_one(self, filter, update, *, upsert=False, session=None):
        return await self._update("updateOne", filter, update, upsert, session)

    async def update_many(self, filter, update, *, upsert=False, session=None):
        return await self._update("updateMany", filter, update, upsert, session)

    async def delete_one(self, filter, *, session=None):
        self._reject_session("delete_one", session)
        data = await self._request("deleteOne", filter=filter)
        return {"deleted_count": data.get("deletedCount", 0)}

    async def delete_many(self, filter, *, session=None):
        self._reject_session("delete_many", session)
        data = await self._request("deleteMany", filter=filter)
        return {"deleted_count": data.get("deletedCount", 0)}

    async def find_one_and_update(self, filter, update, **options):
        raise UnsupportedOperationError("find_one_and_update", self.name)

    async def bulk_write(self, operations, **options):
        raise UnsupportedOperationError("bulk_write", self.name)

    def cursor(self, pipeline, *, session=None):
        raise UnsupportedOperationError("cursor", self.name)

    def find_cursor(self, filter, *, session=None, **options):
        raise UnsupportedOperationError("find_cursor", self.name)
