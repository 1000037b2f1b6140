"""Collection contract and document encoding for record types.

A record type integrates with the engine by being a pydantic model with a
``collection()`` classmethod. Types that also inherit :class:`DefaultClaims`
get their identifier and timestamps stamped by the engine.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Protocol, TypeVar, runtime_checkable

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ninja_records.exceptions import InternalError, UnsupportedTypeError

R = TypeVar("R", bound=BaseModel)

# The store keeps datetimes at millisecond resolution.
_STORE_RESOLUTION = timedelta(milliseconds=1)


@runtime_checkable
class Mappable(Protocol):
    """Anything that knows the collection it is stored in."""

    @classmethod
    def collection(cls) -> str: ...


class DefaultClaims(BaseModel):
    """Opt-in default fields stamped by the engine on create and update."""

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True)

    id: ObjectId | None = Field(default=None, alias="_id")
    created_at: datetime | None = None
    updated_at: datetime | None = None


def type_name(obj: Any) -> str:
    cls = obj if isinstance(obj, type) else type(obj)
    return f"{cls.__module__}.{cls.__qualname__}"


def resolve_collection(obj: Any, operation: str) -> str:
    """Return the collection name for a record instance or record class.

    Raises:
        UnsupportedTypeError: If *obj* is not a pydantic model (instance or
            subclass) implementing ``collection()`` with a non-empty name.
    """
    cls = obj if isinstance(obj, type) else type(obj)
    if not issubclass(cls, BaseModel) or not isinstance(cls, Mappable) or not callable(cls.collection):
        raise UnsupportedTypeError(
            entity_name=type_name(obj),
            operation=operation,
            detail=f"Object '{type_name(obj)}' isn't supported. Implement collection() to start using it.",
        )
    name = cls.collection()
    if not isinstance(name, str) or not name:
        raise UnsupportedTypeError(
            entity_name=type_name(obj),
            operation=operation,
            detail=f"collection() of '{type_name(obj)}' must return a non-empty string.",
        )
    return name


def utcnow() -> datetime:
    """Current UTC time truncated to the store's resolution."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def stamp_created(record: BaseModel) -> None:
    """Assign a fresh id if unset and stamp both timestamps."""
    if not isinstance(record, DefaultClaims):
        return
    if record.id is None:
        record.id = ObjectId()
    now = utcnow()
    record.created_at = now
    record.updated_at = now


def stamp_updated(record: BaseModel) -> None:
    """Stamp ``updated_at``, keeping it strictly ahead of the previous value."""
    if not isinstance(record, DefaultClaims):
        return
    now = utcnow()
    previous = record.updated_at or record.created_at
    if previous is not None:
        if previous.tzinfo is None:
            previous = previous.replace(tzinfo=timezone.utc)
        if now <= previous:
            now = previous + _STORE_RESOLUTION
    record.updated_at = now


def to_document(record: BaseModel) -> dict[str, Any]:
    doc = record.model_dump(by_alias=True)
    if doc.get("_id") is None:
        doc.pop("_id", None)
    return doc


def from_document(record_type: type[R], doc: Any, operation: str) -> R:
    """Validate a raw store document into *record_type*."""
    try:
        return record_type.model_validate(dict(doc))
    except (ValidationError, TypeError, ValueError) as exc:
        raise InternalError(
            entity_name=type_name(record_type),
            operation=operation,
            detail="Stored document could not be decoded.",
            cause=exc,
        ) from exc
