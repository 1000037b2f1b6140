"""Domain exceptions for the record engine.

Driver exceptions never leave the engine: every store failure is caught at the
boundary and re-raised as one of these, with the driver error chained as
``__cause__`` for diagnostics.
"""

from __future__ import annotations


class PersistenceError(Exception):
    """Base exception for all record-engine errors.

    Attributes:
        entity_name: The record type or collection involved.
        operation: The engine operation that failed (e.g. ``"create"``, ``"get_by_id"``).
        detail: A sanitised description of what went wrong.
    """

    def __init__(
        self,
        *,
        entity_name: str,
        operation: str,
        detail: str,
        cause: BaseException | None = None,
    ) -> None:
        self.entity_name = entity_name
        self.operation = operation
        self.detail = detail
        msg = f"[{entity_name}] {operation} failed: {detail}"
        super().__init__(msg)
        if cause is not None:
            self.__cause__ = cause


class UnsupportedTypeError(PersistenceError):
    """Raised when a value does not satisfy the collection contract."""


class InvalidIDError(PersistenceError):
    """Raised when an identifier string is not a valid ObjectId."""


class RecordNotFoundError(PersistenceError):
    """Raised when a single-record lookup matches nothing."""


class InternalError(PersistenceError):
    """Raised for any store-level failure."""


class ConnectionFailedError(InternalError):
    """Raised when the store cannot be reached."""


class TransactionError(InternalError):
    """Raised when a transaction cannot start or commit, or its context is reused."""
