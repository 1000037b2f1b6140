"""Generic record engine over a Motor database.

``Model`` works with any pydantic record type implementing ``collection()``.
The collection is resolved from the record on every call, so one engine serves
every record type in the database.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, TypeVar

from bson import ObjectId
from pydantic import BaseModel

from ninja_records.exceptions import (
    ConnectionFailedError,
    InternalError,
    InvalidIDError,
    RecordNotFoundError,
    UnsupportedTypeError,
)
from ninja_records.mapper import (
    DefaultClaims,
    from_document,
    resolve_collection,
    stamp_created,
    stamp_updated,
    to_document,
    type_name,
)
from ninja_records.query import Query, parse_object_id, query_id
from ninja_records.transaction import ExecutionContext, TransactionMixin

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=BaseModel)

MAX_QUERY_LIMIT = 1000
MIN_QUERY_LIMIT = 1
DEFAULT_SEARCH_FIELDS = ("title",)


class Model(TransactionMixin):
    """CRUD, search, count and aggregation for any mappable record type.

    Args:
        database: A Motor database (``AsyncIOMotorDatabase``) shared by every
            engine created from it.
        search_fields: Fields matched by the ``search_text`` argument of
            :meth:`get_many` and :meth:`count`.
        context: Execution context; plain by default. Transactional engines are
            obtained through :meth:`start_transaction`, not by passing a context.
    """

    def __init__(
        self,
        database: Any,
        *,
        search_fields: Sequence[str] = DEFAULT_SEARCH_FIELDS,
        context: ExecutionContext | None = None,
    ) -> None:
        self._database = database
        self._search_fields = tuple(search_fields)
        self._context = context or ExecutionContext()

    def __repr__(self) -> str:
        return f"Model(database={getattr(self._database, 'name', '?')!r}, context={self._context!r})"

    @property
    def database(self) -> Any:
        return self._database

    @property
    def search_fields(self) -> tuple[str, ...]:
        return self._search_fields

    def _with_context(self, context: ExecutionContext) -> Model:
        return type(self)(self._database, search_fields=self._search_fields, context=context)

    def _collection(self, obj: Any, operation: str) -> Any:
        name = resolve_collection(obj, operation)
        self._context.ensure_usable(operation)
        return self._database[name]

    @property
    def _session(self) -> Any:
        return self._context.session

    def _search_query(self, search_text: str | None) -> Query:
        query = Query()
        if search_text is not None:
            query.text_search(search_text, *self._search_fields)
        return query

    # -- Public operations ----------------------------------------------------

    async def get_many(
        self,
        record_type: type[R],
        search_text: str | None = None,
        offset: int = 0,
        limit: int = 100,
    ) -> list[R]:
        """Return a page of records, optionally filtered by ``search_text``.

        Args:
            record_type: The record class to load.
            search_text: Literal text matched case-insensitively against the
                engine's search fields.
            offset: Number of records to skip (>= 0).
            limit: Max records to return (1–1000). Values above 1000 are
                   capped; values below 1 raise ``ValueError``.
        """
        resolve_collection(record_type, "get_many")
        offset = _validate_offset(offset)
        limit = _validate_limit(limit)
        return await self._get_many(record_type, self._search_query(search_text), skip=offset, limit=limit)

    async def get_many_by_ids(self, record_type: type[R], ids: Sequence[str]) -> list[R]:
        """Return the records whose ids are listed. Malformed ids are ignored."""
        resolve_collection(record_type, "get_many_by_ids")
        if not ids:
            return []
        return await self._get_many(record_type, Query().ids(ids), operation="get_many_by_ids")

    async def get_by_id(self, record_type: type[R], id: str) -> R:
        """Return the record with the given id.

        Raises:
            InvalidIDError: If ``id`` is not a valid ObjectId.
            RecordNotFoundError: If no record has that id.
        """
        resolve_collection(record_type, "get_by_id")
        object_id = _parse_id(id, record_type, "get_by_id")
        return await self._get(record_type, Query().add("_id", object_id), operation="get_by_id")

    async def create(self, record: R) -> R:
        """Insert *record*, stamping its default fields first. Returns the same instance."""
        coll = self._instance_collection(record, "create")
        stamp_created(record)
        doc = to_document(record)
        try:
            await coll.insert_one(doc, session=self._session)
        except Exception as exc:
            raise _store_error(exc, record, "create", "Insert operation failed.") from exc
        return record

    async def update(self, record: R, id: str) -> R:
        """Replace the stored document at ``id`` with *record*.

        For records with default fields, an unset ``id`` takes the target id and
        an unset ``created_at`` keeps the stored value.

        Raises:
            InvalidIDError: If ``id`` is malformed or *record* already carries a
                different id.
        """
        coll = self._instance_collection(record, "update")
        object_id = _parse_id(id, record, "update")
        if isinstance(record, DefaultClaims):
            if record.id is None:
                record.id = object_id
            elif record.id != object_id:
                raise InvalidIDError(
                    entity_name=type_name(record),
                    operation="update",
                    detail=f"Record id '{record.id}' does not match target id '{id}'.",
                )
        try:
            if isinstance(record, DefaultClaims) and record.created_at is None:
                stored = await coll.find_one(query_id(object_id), projection={"created_at": 1}, session=self._session)
                if stored is not None:
                    record.created_at = stored.get("created_at")
            stamp_updated(record)
            doc = to_document(record)
            result = await coll.replace_one(query_id(object_id), doc, session=self._session)
        except Exception as exc:
            raise _store_error(exc, record, "update", "Replace operation failed.", id) from exc
        if getattr(result, "matched_count", 1) == 0:
            logger.warning("Update of %s (id=%s) matched no document", type_name(record), id)
        return record

    async def delete(self, record: Any, id: str) -> None:
        """Delete the record with ``id`` from the collection of *record* (instance or class)."""
        resolve_collection(record, "delete")
        object_id = _parse_id(id, record, "delete")
        await self._delete(record, Query().add("_id", object_id))

    async def count(self, record: Any, search_text: str | None = None) -> int:
        """Count records of *record*'s collection, optionally filtered by ``search_text``."""
        return await self._count(record, self._search_query(search_text))

    async def aggregate(self, record_type: type[R], pipeline: Sequence[dict[str, Any]], **options: Any) -> list[R]:
        """Run an aggregation pipeline on the record's collection and decode the output."""
        return await self._aggregate(record_type, pipeline, **options)

    # -- Store primitives -----------------------------------------------------

    def _instance_collection(self, record: Any, operation: str) -> Any:
        if isinstance(record, type):
            raise UnsupportedTypeError(
                entity_name=type_name(record),
                operation=operation,
                detail=f"{operation} expects a record instance, got the class '{type_name(record)}'.",
            )
        return self._collection(record, operation)

    async def _get_many(
        self,
        record_type: type[R],
        query: Query,
        *,
        operation: str = "get_many",
        **find_options: Any,
    ) -> list[R]:
        coll = self._collection(record_type, operation)
        try:
            cursor = coll.find(query.exec(), session=self._session, **find_options)
            docs = [doc async for doc in cursor]
        except Exception as exc:
            raise _store_error(exc, record_type, operation, "Query execution failed.") from exc
        return [from_document(record_type, doc, operation) for doc in docs]

    async def _get(self, record_type: type[R], query: Query, *, operation: str = "get") -> R:
        coll = self._collection(record_type, operation)
        try:
            doc = await coll.find_one(query.exec(), session=self._session)
        except Exception as exc:
            raise _store_error(exc, record_type, operation, "Query execution failed.") from exc
        if doc is None:
            raise RecordNotFoundError(
                entity_name=type_name(record_type),
                operation=operation,
                detail="No matching record.",
            )
        return from_document(record_type, doc, operation)

    async def _delete(self, record: Any, query: Query, *, operation: str = "delete") -> None:
        coll = self._collection(record, operation)
        try:
            result = await coll.delete_one(query.exec(), session=self._session)
        except Exception as exc:
            raise _store_error(exc, record, operation, "Delete operation failed.") from exc
        if getattr(result, "deleted_count", 1) == 0:
            logger.warning("Delete on %s matched no document", type_name(record))

    async def _count(self, record: Any, query: Query, *, operation: str = "count") -> int:
        coll = self._collection(record, operation)
        try:
            return int(await coll.count_documents(query.exec(), session=self._session))
        except Exception as exc:
            raise _store_error(exc, record, operation, "Count operation failed.") from exc

    async def _aggregate(
        self,
        record_type: type[R],
        pipeline: Sequence[dict[str, Any]],
        *,
        operation: str = "aggregate",
        **options: Any,
    ) -> list[R]:
        coll = self._collection(record_type, operation)
        try:
            cursor = coll.aggregate(list(pipeline), session=self._session, **options)
            docs = [doc async for doc in cursor]
        except Exception as exc:
            raise _store_error(exc, record_type, operation, "Aggregation failed.") from exc
        return [from_document(record_type, doc, operation) for doc in docs]


def _validate_limit(limit: int) -> int:
    """Validate and clamp *limit*.

    Raises ``ValueError`` for non-positive values.  Values exceeding
    ``MAX_QUERY_LIMIT`` (1000) are silently capped.
    """
    if limit < MIN_QUERY_LIMIT:
        raise ValueError(f"limit must be >= {MIN_QUERY_LIMIT}, got {limit}")
    return min(limit, MAX_QUERY_LIMIT)


def _validate_offset(offset: int) -> int:
    if offset < 0:
        raise ValueError(f"offset must be >= 0, got {offset}")
    return offset


def _parse_id(id: str, record: Any, operation: str) -> ObjectId:
    object_id = parse_object_id(id)
    if object_id is None:
        raise InvalidIDError(
            entity_name=type_name(record),
            operation=operation,
            detail=f"Invalid identifier '{id}'.",
        )
    return object_id


def _store_error(exc: Exception, record: Any, operation: str, detail: str, id: str | None = None) -> InternalError:
    """Log a driver failure and wrap it in the matching domain exception."""
    name = type_name(record)
    if _is_connection_error(exc):
        logger.error("Mongo %s connection error for %s (id=%s): %s", operation, name, id, type(exc).__name__)
        return ConnectionFailedError(
            entity_name=name,
            operation=operation,
            detail="Database connection failed.",
            cause=exc,
        )
    logger.error("Mongo %s failed for %s (id=%s): %s", operation, name, id, type(exc).__name__)
    return InternalError(entity_name=name, operation=operation, detail=detail, cause=exc)


def _is_connection_error(exc: Exception) -> bool:
    """Check whether *exc* indicates a connection-level failure.

    Detects PyMongo ``ConnectionFailure``, ``ServerSelectionTimeoutError``, and
    similar network-layer exceptions by class name.
    """
    type_names = {cls.__name__ for cls in type(exc).__mro__}
    return bool(type_names & {"ConnectionFailure", "ServerSelectionTimeoutError", "AutoReconnect", "NetworkTimeout"})
