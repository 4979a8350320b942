"""
Repository Interface Definitions

Defines the verb surface of a repository. Every verb takes the backend
handle (shared or transaction-scoped) as its first argument, so one
repository instance can be shared by concurrent callers.
"""

# Standard library imports
from abc import abstractmethod
from typing import Protocol, TypeVar

# Local imports
from repokit.domain.filters import Filter
from repokit.domain.query import Query

from .backend import IDatabase

T = TypeVar("T")


class IRepository(Protocol[T]):
    """
    Generic repository interface.

    Defines operations for persisting and retrieving entities of one type.
    """

    @abstractmethod
    async def add(self, db: IDatabase, entity: T) -> None:
        """
        Insert a new entity and run the after-add hook atomically.

        Raises:
            ConstraintViolation: If the backend rejects the insert
            SerializationError: If the entity cannot be dumped
        """
        ...

    @abstractmethod
    async def get(self, db: IDatabase, where: Filter) -> T | None:
        """
        Return the first matching entity in natural order, or None.

        Callers needing uniqueness must constrain the filter themselves.

        Raises:
            FilterFieldError: If the filter names an unknown field
            FilterTypeError: If an operand does not fit its field
        """
        ...

    @abstractmethod
    async def get_many(self, db: IDatabase, query: Query) -> list[T]:
        """Return every entity matching the query, in query order."""
        ...

    @abstractmethod
    async def update(self, db: IDatabase, where: Filter, entity: T) -> None:
        """Overwrite every matching record with the dumped entity."""
        ...

    @abstractmethod
    async def delete(self, db: IDatabase, where: Filter) -> None:
        """Remove every matching record."""
        ...

    @abstractmethod
    async def exists(self, db: IDatabase, where: Filter) -> bool:
        """Check whether any record matches."""
        ...

    @abstractmethod
    async def count(self, db: IDatabase, where: Filter) -> int:
        """Count matching records."""
        ...

    @abstractmethod
    async def count_all(self, db: IDatabase) -> int:
        """Count every record of the repository."""
        ...

    @abstractmethod
    async def get_for_update(self, db: IDatabase, where: Filter) -> T | None:
        """
        Like ``get``, but lock the matched record(s) until the transaction ends.

        Raises:
            TransactionNotActiveError: If ``db`` is not transaction-scoped
        """
        ...
