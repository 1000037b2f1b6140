"""Conjunctive filter builder rendering MongoDB filter documents."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

from bson import ObjectId
from bson.errors import InvalidId


def parse_object_id(value: str) -> ObjectId | None:
    """Parse a 24-character hex string into an ``ObjectId``, or return ``None``."""
    if not isinstance(value, str):
        return None
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def query_id(object_id: ObjectId) -> dict[str, Any]:
    """Filter matching exactly one document by ``_id``."""
    return {"_id": object_id}


class Query:
    """Accumulates predicate clauses that are ANDed together on :meth:`exec`.

    Every clause method appends a single clause and returns the builder, so
    helpers can be freely mixed before the final render::

        q = Query().equal("status", "active").text_search("foo", "title", "body")
        await collection.find(q.exec())

    A builder with no clauses renders to ``{}``, which matches every document.
    """

    def __init__(self) -> None:
        self.clauses: list[dict[str, Any]] = []

    def __len__(self) -> int:
        return len(self.clauses)

    def __repr__(self) -> str:
        return f"Query({self.clauses!r})"

    def exec(self) -> dict[str, Any]:
        """Render the accumulated clauses into a filter document."""
        if not self.clauses:
            return {}
        return {"$and": list(self.clauses)}

    def add(self, field: str, value: Any) -> Query:
        """Append a raw ``{field: value}`` clause."""
        self.clauses.append({field: value})
        return self

    def equal(self, field: str, value: Any) -> Query:
        self.clauses.append({field: {"$eq": value}})
        return self

    def not_equal(self, field: str, value: Any) -> Query:
        self.clauses.append({field: {"$ne": value}})
        return self

    def empty(self, field: str) -> Query:
        """Match documents where *field* is missing, null, or a zero-length array."""
        self.clauses.append(
            {
                "$or": [
                    {field: {"$exists": False}},
                    {field: None},
                    {field: {"$size": 0}},
                ]
            }
        )
        return self

    def not_empty(self, field: str) -> Query:
        """Match documents where *field* is present, non-null and not a zero-length array."""
        self.clauses.append({field: {"$exists": True, "$ne": None, "$not": {"$size": 0}}})
        return self

    def text_search(self, text: str, *fields: str, raw: bool = False) -> Query:
        """Case-insensitive substring match on any of *fields*.

        *text* is matched literally; pass ``raw=True`` to interpret it as a
        regular expression. Without fields nothing is appended.
        """
        if not fields:
            return self
        pattern = text if raw else re.escape(text)
        self.clauses.append({"$or": [{field: {"$regex": pattern, "$options": "i"}} for field in fields]})
        return self

    def field_any_of(self, field: str, *values: Any) -> Query:
        self.clauses.append({field: {"$in": list(values)}})
        return self

    def ids(self, ids: Iterable[str], field: str = "_id") -> Query:
        """Constrain *field* to the given identifiers.

        Strings that are not valid ObjectIds are dropped. If none survive the
        clause is ``{"$in": []}`` and the query matches nothing.
        """
        object_ids = [oid for oid in (parse_object_id(i) for i in ids) if oid is not None]
        self.clauses.append({field: {"$in": object_ids}})
        return self
