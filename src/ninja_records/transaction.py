"""Session-bound transactions for the record engine.

A transaction is a *new* engine instance carrying the same database handle but a
transactional :class:`ExecutionContext`; the engine it was started from is left
untouched and can keep serving plain operations or start further transactions.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any

from ninja_records.exceptions import InternalError, TransactionError

logger = logging.getLogger(__name__)

_ENTITY = "transaction"


class TxState(str, Enum):
    """Lifecycle of an execution context."""

    IDLE = "idle"
    ACTIVE = "active"
    TERMINAL = "terminal"


class ExecutionContext:
    """The session (or lack of one) store operations run under.

    A plain context has no session and stays ``IDLE`` forever. A transactional
    context starts ``ACTIVE`` and becomes ``TERMINAL`` after commit or rollback,
    after which it must not be used again.
    """

    __slots__ = ("session", "state")

    def __init__(self, session: Any = None) -> None:
        self.session = session
        self.state = TxState.IDLE if session is None else TxState.ACTIVE

    def __repr__(self) -> str:
        return f"ExecutionContext(state={self.state.value})"

    @property
    def transactional(self) -> bool:
        return self.session is not None

    def ensure_usable(self, operation: str) -> None:
        """Raise ``TransactionError`` if the context was already committed or rolled back."""
        if self.state is TxState.TERMINAL:
            raise TransactionError(
                entity_name=_ENTITY,
                operation=operation,
                detail="Transaction already finished; start a new one from the base engine.",
            )


class TransactionMixin:
    """Transaction lifecycle for :class:`~ninja_records.model.Model`.

    Relies on the engine exposing ``_database``, ``_context`` and
    ``_with_context(context)``.
    """

    _database: Any
    _context: ExecutionContext

    def _with_context(self, context: ExecutionContext) -> Any:  # pragma: no cover - provided by Model
        raise NotImplementedError

    @property
    def in_transaction(self) -> bool:
        """True while this engine is bound to an active transaction."""
        return self._context.state is TxState.ACTIVE

    async def start_transaction(self) -> Any:
        """Open a session, begin a transaction and return an engine bound to it.

        Raises:
            TransactionError: If called on a transactional engine (no nesting),
                or if the session or transaction cannot be started.
        """
        if self._context.transactional:
            raise TransactionError(
                entity_name=_ENTITY,
                operation="start_transaction",
                detail="Nested transactions are not supported; start from the base engine.",
            )
        try:
            session = await self._database.client.start_session()
        except Exception as exc:
            logger.error("Can't init session for transaction: %s", type(exc).__name__)
            raise TransactionError(
                entity_name=_ENTITY,
                operation="start_transaction",
                detail="Could not start a database session.",
                cause=exc,
            ) from exc
        try:
            session.start_transaction()
        except Exception as exc:
            logger.error("Can't start transaction: %s", type(exc).__name__)
            await _end_session(session)
            raise TransactionError(
                entity_name=_ENTITY,
                operation="start_transaction",
                detail="Could not begin the transaction.",
                cause=exc,
            ) from exc
        logger.debug("Transaction started")
        return self._with_context(ExecutionContext(session))

    async def commit(self) -> None:
        """Commit the bound transaction.

        Raises:
            TransactionError: If there is no active transaction or the commit fails.
        """
        self._require_active("commit")
        session = self._context.session
        self._context.state = TxState.TERMINAL
        try:
            await session.commit_transaction()
        except Exception as exc:
            logger.error("Can't commit transaction: %s", type(exc).__name__)
            raise TransactionError(
                entity_name=_ENTITY,
                operation="commit",
                detail="Transaction commit failed.",
                cause=exc,
            ) from exc
        finally:
            await _end_session(session)
        logger.debug("Transaction committed")

    async def rollback(self, cause: BaseException | None = None) -> InternalError:
        """Abort the bound transaction and return the error to raise.

        Rollback runs in response to a failure that has already decided the
        outcome, so an ``InternalError`` chained to *cause* is always returned,
        whether or not the abort itself succeeded::

            try:
                await tx.create(record)
            except PersistenceError as exc:
                raise await tx.rollback(exc)
        """
        error = InternalError(
            entity_name=_ENTITY,
            operation="rollback",
            detail="Transaction rolled back.",
            cause=cause,
        )
        if self._context.state is not TxState.ACTIVE:
            logger.error("Rollback requested without an active transaction (state=%s)", self._context.state.value)
            return error
        session = self._context.session
        self._context.state = TxState.TERMINAL
        try:
            await session.abort_transaction()
        except Exception as exc:
            logger.error("Error on rollback transaction: %s", type(exc).__name__)
        finally:
            await _end_session(session)
        logger.debug("Transaction rolled back")
        return error

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Any]:
        """Run a block inside a transaction.

        Commits when the block exits normally. On an exception the transaction is
        rolled back and the original exception propagates. A block that already
        committed or rolled back is left as it is.
        """
        tx = await self.start_transaction()
        try:
            yield tx
        except BaseException as exc:
            if tx.in_transaction:
                await tx.rollback(exc)
            raise
        if tx.in_transaction:
            await tx.commit()

    def _require_active(self, operation: str) -> None:
        if self._context.state is TxState.ACTIVE:
            return
        detail = (
            "Transaction already finished."
            if self._context.state is TxState.TERMINAL
            else "Engine is not bound to a transaction."
        )
        raise TransactionError(entity_name=_ENTITY, operation=operation, detail=detail)


async def _end_session(session: Any) -> None:
    try:
        await session.end_session()
    except Exception:
        logger.warning("Failed to end database session", exc_info=True)
