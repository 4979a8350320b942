"""
Backend Handle Interface

Defines the contract every storage backend implements. A handle is
either bound to the shared store (pool / whole in-memory store) or
scoped to one open transaction; repositories receive it as the first
argument of every verb.
"""

# Standard library imports
from abc import abstractmethod
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol, TypeVar

# Local imports
from repokit.domain.filters import Filter
from repokit.domain.mapping import ReadStatement
from repokit.domain.query import Query
from repokit.domain.statements import WriteStatement
from repokit.domain.value_objects.value import Record, ValueKind

R = TypeVar("R")


@dataclass(frozen=True)
class TableSource:
    """Everything a backend needs to know about a repository's storage.

    Attributes:
        table: Table / collection the repository writes to
        fields: Declared record shape
        key: Fields forming the natural key; relational reads fall back to
            this order and the in-memory store enforces its uniqueness
        read: Optional custom read statement
    """

    table: str
    fields: Mapping[str, ValueKind]
    key: tuple[str, ...] = ()
    read: ReadStatement | None = None


class IDatabase(Protocol):
    """Storage backend handle used by the repository engine."""

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        """True when this handle is scoped to an open transaction."""
        ...

    @abstractmethod
    async def fetch(
        self, source: TableSource, query: Query, *, for_update: bool = False
    ) -> list[Record]:
        """
        Return the records matching a validated query, fully materialized.

        Args:
            source: Storage description of the repository
            query: Query whose fields were checked against ``source.fields``
            for_update: Hold an exclusive lock on the matched rows until the
                enclosing transaction ends

        Raises:
            ConnectivityError: If the backend cannot be reached
        """
        ...

    @abstractmethod
    async def exists(self, source: TableSource, where: Filter) -> bool:
        """Check for a matching record without fetching it."""
        ...

    @abstractmethod
    async def count(self, source: TableSource, where: Filter | None) -> int:
        """Count matching records (all records when ``where`` is None)."""
        ...

    @abstractmethod
    async def insert(self, source: TableSource, record: Record) -> None:
        """
        Insert one record.

        Raises:
            ConstraintViolation: If a uniqueness or foreign-key rule is broken
        """
        ...

    @abstractmethod
    async def update(self, source: TableSource, where: Filter, record: Record) -> None:
        """Overwrite every matching record; zero matches is a no-op."""
        ...

    @abstractmethod
    async def delete(self, source: TableSource, where: Filter) -> None:
        """Remove every matching record; zero matches is a no-op."""
        ...

    @abstractmethod
    async def execute(self, statements: Sequence[WriteStatement]) -> None:
        """Run hook statements in order within the current atomic unit."""
        ...

    @abstractmethod
    async def transaction(self, unit_of_work: Callable[["IDatabase"], Awaitable[R]]) -> R:
        """
        Run ``unit_of_work`` inside one transaction.

        Commits when it returns, rolls back when it raises and re-raises
        that same exception.

        Raises:
            NestedTransactionError: If this handle is already transaction-scoped
        """
        ...
