"""Shared fixtures: an in-memory stand-in for a Motor client."""

from __future__ import annotations

import copy
import re
from types import SimpleNamespace
from typing import Any

import pytest
from bson import ObjectId
from ninja_records.model import Model

_MISSING = object()


# ---------------------------------------------------------------------------
# Filter matching for the operators the query builder emits
# ---------------------------------------------------------------------------


def _lookup(doc: dict[str, Any], field: str) -> Any:
    value: Any = doc
    for part in field.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _equals(value: Any, target: Any) -> bool:
    if target is None:
        return value is _MISSING or value is None
    if value is _MISSING:
        return False
    if isinstance(value, list) and not isinstance(target, list):
        return target in value
    return value == target


def _is_operator_doc(cond: Any) -> bool:
    return isinstance(cond, dict) and bool(cond) and all(str(k).startswith("$") for k in cond)


def _match_field(value: Any, cond: Any) -> bool:
    if not _is_operator_doc(cond):
        return _equals(value, cond)
    for op, arg in cond.items():
        if op == "$eq" and not _equals(value, arg):
            return False
        if op == "$ne" and _equals(value, arg):
            return False
        if op == "$exists" and (value is not _MISSING) != bool(arg):
            return False
        if op == "$size" and not (isinstance(value, list) and len(value) == arg):
            return False
        if op == "$in" and not any(_equals(value, a) for a in arg):
            return False
        if op == "$regex":
            flags = re.IGNORECASE if "i" in cond.get("$options", "") else 0
            if not (isinstance(value, str) and re.search(arg, value, flags)):
                return False
        if op == "$not" and _match_field(value, arg):
            return False
    return True


def matches(doc: dict[str, Any], flt: dict[str, Any]) -> bool:
    for key, cond in flt.items():
        if key == "$and":
            if not all(matches(doc, c) for c in cond):
                return False
        elif key == "$or":
            if not any(matches(doc, c) for c in cond):
                return False
        elif not _match_field(_lookup(doc, key), cond):
            return False
    return True


# ---------------------------------------------------------------------------
# Fake Motor objects
# ---------------------------------------------------------------------------


class FakeCursor:
    def __init__(self, docs: list[dict[str, Any]]) -> None:
        self._docs = docs

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for doc in self._docs:
            yield doc


class FakeSession:
    """Snapshot-isolated session: writes become visible to others only on commit."""

    def __init__(self, client: FakeClient) -> None:
        self.client = client
        self.snapshot: dict[str, list[dict[str, Any]]] | None = None
        self.in_transaction = False
        self.ended = False

    def start_transaction(self) -> None:
        self.snapshot = copy.deepcopy(self.client.data)
        self.in_transaction = True

    async def commit_transaction(self) -> None:
        assert self.snapshot is not None
        self.client.data = self.snapshot
        self.in_transaction = False

    async def abort_transaction(self) -> None:
        self.snapshot = None
        self.in_transaction = False

    async def end_session(self) -> None:
        self.ended = True


class FakeCollection:
    def __init__(self, client: FakeClient, name: str) -> None:
        self.client = client
        self.name = name

    def _docs(self, session: FakeSession | None) -> list[dict[str, Any]]:
        self.client.sessions_seen.append(session)
        if session is not None and session.in_transaction:
            assert session.snapshot is not None
            return session.snapshot.setdefault(self.name, [])
        return self.client.data.setdefault(self.name, [])

    def find(self, flt: dict[str, Any], session: FakeSession | None = None, skip: int = 0, limit: int = 0):
        found = [copy.deepcopy(d) for d in self._docs(session) if matches(d, flt)]
        found = found[skip:]
        if limit:
            found = found[:limit]
        return FakeCursor(found)

    async def find_one(
        self,
        flt: dict[str, Any],
        projection: dict[str, Any] | None = None,
        session: FakeSession | None = None,
    ):
        for doc in self._docs(session):
            if matches(doc, flt):
                if projection:
                    keep = {k for k, v in projection.items() if v} | {"_id"}
                    return {k: copy.deepcopy(v) for k, v in doc.items() if k in keep}
                return copy.deepcopy(doc)
        return None

    async def insert_one(self, doc: dict[str, Any], session: FakeSession | None = None):
        docs = self._docs(session)
        doc.setdefault("_id", ObjectId())
        if any(d["_id"] == doc["_id"] for d in docs):
            raise RuntimeError("duplicate key")
        docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def replace_one(self, flt: dict[str, Any], doc: dict[str, Any], session: FakeSession | None = None):
        docs = self._docs(session)
        for i, existing in enumerate(docs):
            if matches(existing, flt):
                replacement = copy.deepcopy(doc)
                if replacement.setdefault("_id", existing["_id"]) != existing["_id"]:
                    raise RuntimeError("Performing an update on the path '_id' would modify the immutable field '_id'")
                docs[i] = replacement
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, flt: dict[str, Any], session: FakeSession | None = None):
        docs = self._docs(session)
        for i, existing in enumerate(docs):
            if matches(existing, flt):
                del docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, flt: dict[str, Any], session: FakeSession | None = None) -> int:
        return sum(1 for d in self._docs(session) if matches(d, flt))

    def aggregate(self, pipeline: list[dict[str, Any]], session: FakeSession | None = None, **options: Any):
        docs = [copy.deepcopy(d) for d in self._docs(session)]
        for stage in pipeline:
            if "$match" in stage:
                docs = [d for d in docs if matches(d, stage["$match"])]
            elif "$skip" in stage:
                docs = docs[stage["$skip"] :]
            elif "$limit" in stage:
                docs = docs[: stage["$limit"]]
        return FakeCursor(docs)


class FakeDatabase:
    def __init__(self, client: FakeClient, name: str) -> None:
        self.client = client
        self.name = name

    def __getitem__(self, name: str) -> FakeCollection:
        return FakeCollection(self.client, name)


class FakeClient:
    def __init__(self) -> None:
        self.data: dict[str, list[dict[str, Any]]] = {}
        self.sessions: list[FakeSession] = []
        self.sessions_seen: list[FakeSession | None] = []

    def __getitem__(self, name: str) -> FakeDatabase:
        return FakeDatabase(self, name)

    async def start_session(self) -> FakeSession:
        session = FakeSession(self)
        self.sessions.append(session)
        return session


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def model(client: FakeClient) -> Model:
    return Model(client["test"])
