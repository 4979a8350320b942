"""
PostgreSQL backend handle.

Implements the backend handle protocol on top of PostgreSQLAdapter: the
filter tree is compiled to a parameterized predicate, results are
decoded into records, and ``transaction`` runs a unit of work on a
connection pinned for its whole duration.
"""

# Standard library imports
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeVar

# Third-party imports
from psycopg_pool import AsyncConnectionPool

# Local imports
from repokit.application.interfaces.backend import TableSource
from repokit.domain.exceptions import FilterTypeError, NestedTransactionError, SerializationError
from repokit.domain.filters import Filter
from repokit.domain.query import Query
from repokit.domain.statements import WriteStatement
from repokit.domain.value_objects.value import Record

from .adapter import PostgreSQLAdapter
from .sql_compiler import (
    build_count,
    build_delete,
    build_exists,
    build_insert,
    build_select,
    build_statement,
    build_update,
    record_parameters,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")


def _decode_row(source: TableSource, row: Mapping[str, Any]) -> Record:
    try:
        return Record.from_row(row, source.fields)
    except FilterTypeError as e:
        raise SerializationError(source.table, f"row does not match declared fields: {e}", e) from e


class PostgreSQLDatabase:
    """
    Backend handle for PostgreSQL.

    A pool-bound handle is safe to share between concurrent callers.
    ``transaction`` creates a fresh adapter pinned to one connection and
    passes a handle bound to it to the unit of work, so concurrent units
    of work never share connection state.
    """

    def __init__(self, adapter: PostgreSQLAdapter) -> None:
        self._adapter = adapter

    @classmethod
    def from_pool(cls, pool: AsyncConnectionPool) -> "PostgreSQLDatabase":
        return cls(PostgreSQLAdapter(pool))

    @property
    def adapter(self) -> PostgreSQLAdapter:
        return self._adapter

    @property
    def in_transaction(self) -> bool:
        return self._adapter.has_active_transaction

    async def fetch(
        self, source: TableSource, query: Query, *, for_update: bool = False
    ) -> list[Record]:
        built = build_select(source, query, for_update=for_update)
        rows = await self._adapter.fetch_all(built.sql, *built.parameters)
        return [_decode_row(source, row) for row in rows]

    async def exists(self, source: TableSource, where: Filter) -> bool:
        built = build_exists(source, where)
        row = await self._adapter.fetch_one(built.sql, *built.parameters)
        return bool(row and row["exists"])

    async def count(self, source: TableSource, where: Filter | None) -> int:
        built = build_count(source, where)
        row = await self._adapter.fetch_one(built.sql, *built.parameters)
        return int(row["count"]) if row else 0

    async def insert(self, source: TableSource, record: Record) -> None:
        built = build_insert(source.table, record_parameters(record))
        await self._adapter.execute_query(built.sql, *built.parameters)

    async def update(self, source: TableSource, where: Filter, record: Record) -> None:
        built = build_update(source.table, where, record_parameters(record))
        await self._adapter.execute_query(built.sql, *built.parameters)

    async def delete(self, source: TableSource, where: Filter) -> None:
        built = build_delete(source.table, where)
        await self._adapter.execute_query(built.sql, *built.parameters)

    async def execute(self, statements: Sequence[WriteStatement]) -> None:
        if not statements:
            return
        built = [build_statement(statement) for statement in statements]
        await self._adapter.execute_many([(b.sql, b.parameters) for b in built])

    async def transaction(self, unit_of_work: Callable[["PostgreSQLDatabase"], Awaitable[R]]) -> R:
        """
        Run ``unit_of_work`` inside one PostgreSQL transaction.

        Any exception, cancellation included, rolls back before it
        propagates unchanged.

        Raises:
            NestedTransactionError: If this handle is already transaction-scoped
        """
        if self.in_transaction:
            raise NestedTransactionError()

        scoped = PostgreSQLAdapter(self._adapter.pool)
        await scoped.begin_transaction()
        handle = PostgreSQLDatabase(scoped)
        try:
            result = await unit_of_work(handle)
        except BaseException:
            await _rollback_quietly(scoped)
            raise
        await scoped.commit_transaction()
        return result

    def __str__(self) -> str:
        return f"PostgreSQLDatabase({self._adapter})"


async def _rollback_quietly(adapter: PostgreSQLAdapter) -> None:
    """Roll back while another exception is propagating."""
    try:
        await adapter.rollback_transaction()
    except Exception as e:
        logger.warning(f"Rollback failed while handling another error: {e}")
