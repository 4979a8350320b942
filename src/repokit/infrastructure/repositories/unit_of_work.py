"""
Unit of Work Implementations

Async context managers that scope a backend handle to one transaction,
plus a transaction manager running a unit-of-work function. Exceptions
raised inside a unit of work roll it back and propagate unchanged.
"""

# Standard library imports
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

# Local imports
from repokit.application.interfaces.backend import IDatabase
from repokit.application.interfaces.unit_of_work import ITransactionManager, IUnitOfWork
from repokit.domain.exceptions import NestedTransactionError, TransactionNotActiveError
from repokit.infrastructure.database.adapter import PostgreSQLAdapter
from repokit.infrastructure.database.backend import PostgreSQLDatabase
from repokit.infrastructure.memory.store import MemoryDatabase

logger = logging.getLogger(__name__)

R = TypeVar("R")


class _UnitOfWorkBase(ABC):
    """Shared context-manager behaviour."""

    _scoped: IDatabase | None

    @property
    def db(self) -> IDatabase:
        """
        The transaction-scoped handle to pass to repository verbs.

        Raises:
            TransactionNotActiveError: Before ``begin_transaction`` or after the end
        """
        if self._scoped is None or not self._scoped.in_transaction:
            raise TransactionNotActiveError("db")
        return self._scoped

    async def is_active(self) -> bool:
        """Check if a transaction is currently active."""
        return self._scoped is not None and self._scoped.in_transaction

    @abstractmethod
    async def begin_transaction(self) -> None:
        """Open the transaction and scope the handle to it."""

    @abstractmethod
    async def commit(self) -> None:
        """Commit and release the scoped handle."""

    @abstractmethod
    async def rollback(self) -> None:
        """Roll back and release the scoped handle."""

    async def __aenter__(self) -> Any:
        """Begin a transaction on entry."""
        await self.begin_transaction()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        """
        Commit on success, roll back on exception.

        The original exception always propagates; a rollback failure
        while handling it is only logged.
        """
        if exc_type is None:
            try:
                await self.commit()
            except Exception as commit_error:
                logger.error(f"Failed to commit in context manager: {commit_error}")
                try:
                    await self.rollback()
                except Exception as rollback_error:
                    logger.error(f"Failed to rollback after commit error: {rollback_error}")
                raise
        else:
            try:
                await self.rollback()
            except Exception as rollback_error:
                logger.warning(f"Failed to rollback in context manager: {rollback_error}")
        return False


class PostgreSQLUnitOfWork(_UnitOfWorkBase):
    """
    PostgreSQL implementation of IUnitOfWork.

    Pins one pooled connection for the whole unit of work.

    Usage:
        async with PostgreSQLUnitOfWork(db) as uow:
            await users.add(uow.db, user)
    """

    def __init__(self, database: PostgreSQLDatabase) -> None:
        """
        Initialize Unit of Work.

        Args:
            database: Pool-bound PostgreSQL handle
        """
        self.database = database
        self._adapter: PostgreSQLAdapter | None = None
        self._scoped: PostgreSQLDatabase | None = None

    async def begin_transaction(self) -> None:
        """
        Begin a new database transaction.

        Raises:
            NestedTransactionError: If this unit of work or its handle is already in one
        """
        if self.database.in_transaction or (self._adapter and self._adapter.has_active_transaction):
            raise NestedTransactionError()

        adapter = PostgreSQLAdapter(self.database.adapter.pool)
        await adapter.begin_transaction()
        self._adapter = adapter
        self._scoped = PostgreSQLDatabase(adapter)
        logger.debug("Unit of Work transaction started")

    async def commit(self) -> None:
        """
        Commit the current transaction.

        Raises:
            TransactionNotActiveError: If no transaction is active
        """
        if self._adapter is None or not self._adapter.has_active_transaction:
            raise TransactionNotActiveError("commit")
        await self._adapter.commit_transaction()
        logger.debug("Unit of Work transaction committed")

    async def rollback(self) -> None:
        """Roll back the current transaction; a no-op when none is active."""
        if self._adapter is None or not self._adapter.has_active_transaction:
            logger.warning("No active transaction to rollback")
            return
        await self._adapter.rollback_transaction()
        logger.debug("Unit of Work transaction rolled back")


class MemoryUnitOfWork(_UnitOfWorkBase):
    """
    In-memory implementation of IUnitOfWork.

    Holds the store's exclusive lock from begin to commit or rollback.
    """

    def __init__(self, database: MemoryDatabase) -> None:
        self.database = database
        self._scoped: MemoryDatabase | None = None

    async def begin_transaction(self) -> None:
        """
        Take the store's exclusive lock.

        Raises:
            NestedTransactionError: If this unit of work or its handle is already in one
        """
        if self._scoped is not None and self._scoped.in_transaction:
            raise NestedTransactionError()
        self._scoped = await self.database.begin_transaction()
        logger.debug("Unit of Work transaction started")

    async def commit(self) -> None:
        if self._scoped is None or not self._scoped.in_transaction:
            raise TransactionNotActiveError("commit")
        await self._scoped.commit_transaction()
        logger.debug("Unit of Work transaction committed")

    async def rollback(self) -> None:
        if self._scoped is None or not self._scoped.in_transaction:
            logger.warning("No active transaction to rollback")
            return
        await self._scoped.rollback_transaction()
        logger.debug("Unit of Work transaction rolled back")


def create_unit_of_work(database: IDatabase) -> IUnitOfWork:
    """
    Create the unit of work matching a backend handle.

    Raises:
        TypeError: If the handle belongs to an unknown backend
    """
    if isinstance(database, PostgreSQLDatabase):
        return PostgreSQLUnitOfWork(database)  # type: ignore[return-value]
    if isinstance(database, MemoryDatabase):
        return MemoryUnitOfWork(database)  # type: ignore[return-value]
    raise TypeError(f"No unit of work for backend {type(database).__name__}")


class TransactionManager(ITransactionManager):
    """
    High-level transaction management.

    Runs a unit-of-work function against a transaction-scoped handle of
    either backend.
    """

    def __init__(self, database: IDatabase) -> None:
        """
        Initialize transaction manager.

        Args:
            database: Shared (pool-bound or whole-store) backend handle
        """
        self.database = database

    async def execute_in_transaction(self, operation: Callable[[IDatabase], Awaitable[R]]) -> R:
        """
        Execute an operation within a transaction.

        Args:
            operation: Async callable receiving the transaction-scoped handle

        Returns:
            Result of the operation

        Raises:
            NestedTransactionError: If the handle is already transaction-scoped
        """
        try:
            result = await self.database.transaction(operation)
        except Exception as e:
            logger.debug(f"Transaction operation rolled back: {e!r}")
            raise
        logger.debug("Transaction operation completed successfully")
        return result
