"""
Unit of Work Interface

Defines the contract for running a caller-supplied unit of work inside
one backend transaction.
"""

# Standard library imports
from abc import abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from .backend import IDatabase

R = TypeVar("R")


class IUnitOfWork(Protocol):
    """
    Unit of Work interface for transaction management.

    Scopes a backend handle to one atomic unit of work.
    """

    db: IDatabase

    @abstractmethod
    async def begin_transaction(self) -> None:
        """
        Begin a new transaction.

        Raises:
            NestedTransactionError: If a transaction is already active
        """
        ...

    @abstractmethod
    async def commit(self) -> None:
        """
        Commit the current transaction.

        Raises:
            TransactionNotActiveError: If no transaction is active
        """
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """Roll back the current transaction; a no-op when none is active."""
        ...

    @abstractmethod
    async def is_active(self) -> bool:
        """Check if a transaction is currently active."""
        ...

    async def __aenter__(self) -> "IUnitOfWork":
        """Begin a transaction on entry."""
        ...

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> bool:
        """Commit on success, roll back on exception."""
        ...


class ITransactionManager(Protocol):
    """High-level transaction execution."""

    @abstractmethod
    async def execute_in_transaction(
        self, operation: Callable[[IDatabase], Awaitable[R]]
    ) -> R:
        """
        Execute an operation within a transaction.

        Args:
            operation: Async callable receiving the transaction-scoped handle

        Returns:
            Result of the operation
        """
        ...
