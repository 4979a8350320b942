"""
In-memory document store and its backend handle.

One MemoryStore holds every collection as an insertion-ordered map from
a synthetic row id to a record, guarded by one reader/writer lock.
Reads take the shared lock; writes take the exclusive lock; a
transaction holds the exclusive lock for its whole unit of work, so
transactions are serializable and queue behind each other. A
transaction's rollback restores the state captured when it began.
"""

# Standard library imports
import asyncio
import itertools
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any, TypeVar

# Local imports
from repokit.application.interfaces.backend import TableSource
from repokit.domain.exceptions import (
    ConstraintViolation,
    FilterTypeError,
    NestedTransactionError,
    SerializationError,
    TransactionNotActiveError,
    UsageError,
)
from repokit.domain.filters import Filter, validate_filter
from repokit.domain.query import Query
from repokit.domain.statements import (
    DeleteStatement,
    InsertStatement,
    SqlStatement,
    UpdateStatement,
    WriteStatement,
)
from repokit.domain.value_objects.value import Record, Value, ValueKind
from repokit.infrastructure.concurrency.rw_lock import AsyncReadWriteLock

from .evaluator import matches, run_query, select

logger = logging.getLogger(__name__)

R = TypeVar("R")

Checkpoint = tuple[dict[str, dict[int, Record]], int]


class MemoryStore:
    """
    Shared in-memory state.

    Not persisted; every process starts empty. Records are immutable, so
    a checkpoint only copies the per-collection row maps.

    Once a table's field shape is declared, every record read from or
    written to it carries the declared variants, the way a column type
    converts whatever a relational INSERT hands it.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[int, Record]] = {}
        self._keys: dict[str, tuple[str, ...]] = {}
        self._fields: dict[str, dict[str, ValueKind]] = {}
        self._row_ids = itertools.count(1)
        self._last_row_id = 0
        self.lock = AsyncReadWriteLock()
        self.owner: asyncio.Task[Any] | None = None

    def rows(self, table: str, fields: Mapping[str, ValueKind] | None = None) -> list[Record]:
        """
        Records of ``table`` in insertion order.

        Args:
            table: Collection name
            fields: Shape to conform to; defaults to the declared one

        Raises:
            SerializationError: If a stored value does not fit its field
        """
        shape = fields or self._fields.get(table)
        return [
            _conform(table, record, shape)
            for record in self._collections.get(table, {}).values()
        ]

    def snapshot(self) -> dict[str, list[Record]]:
        """Collection name → records in insertion order."""
        return {name: self.rows(name) for name in self._collections}

    def declare_key(self, table: str, key: Sequence[str]) -> None:
        """Enforce uniqueness of ``key`` on every later write to ``table``."""
        if key:
            self._keys[table] = tuple(key)

    def declare_fields(self, table: str, fields: Mapping[str, ValueKind]) -> None:
        """Conform every later read and write of ``table`` to ``fields``."""
        if fields:
            self._fields[table] = dict(fields)

    def fields(self, table: str) -> Mapping[str, ValueKind] | None:
        """Declared shape of ``table``, if any repository has written to it."""
        return self._fields.get(table)

    def _conform(self, table: str, record: Record) -> Record:
        return _conform(table, record, self._fields.get(table))

    def checkpoint(self) -> Checkpoint:
        return {name: dict(rows) for name, rows in self._collections.items()}, self._last_row_id

    def restore(self, checkpoint: Checkpoint) -> None:
        collections, last_row_id = checkpoint
        self._collections = {name: dict(rows) for name, rows in collections.items()}
        self._last_row_id = last_row_id
        self._row_ids = itertools.count(last_row_id + 1)

    def _next_row_id(self) -> int:
        self._last_row_id = next(self._row_ids)
        return self._last_row_id

    def _check_unique(self, table: str, rows: Mapping[int, Record]) -> None:
        key = self._keys.get(table)
        if not key:
            return
        seen: set[tuple[Value, ...]] = set()
        for record in rows.values():
            record = self._conform(table, record)
            values = tuple(record.value_or_null(name) for name in key)
            if any(v.is_null for v in values):
                raise ConstraintViolation(
                    f"{table}_pkey", f"key field is null in {dict(zip(key, values))}"
                )
            if values in seen:
                raise ConstraintViolation(
                    f"{table}_pkey", f"duplicate key {dict(zip(key, values))}"
                )
            seen.add(values)

    def insert(self, table: str, record: Record) -> None:
        """
        Append a record.

        Raises:
            ConstraintViolation: If it duplicates the declared key of ``table``
            SerializationError: If a value does not fit the declared shape
        """
        rows = self._collections.get(table, {})
        candidate = dict(rows)
        row_id = self._next_row_id()
        candidate[row_id] = self._conform(table, record)
        self._check_unique(table, candidate)
        self._collections[table] = candidate

    def update(self, table: str, where: Filter, values: Mapping[str, Value]) -> int:
        """
        Overwrite ``values`` on every matching record, keeping row ids and order.

        Returns:
            Number of records changed
        """
        rows = self._collections.get(table, {})
        candidate = dict(rows)
        replacement = self._conform(table, Record(values)).tagged()
        changed = 0
        for row_id, record in rows.items():
            current = self._conform(table, record)
            if matches(where, current):
                candidate[row_id] = current.replace(replacement)
                changed += 1
        if changed:
            self._check_unique(table, candidate)
            self._collections[table] = candidate
        return changed

    def delete(self, table: str, where: Filter) -> int:
        """Remove every matching record; returns how many were removed."""
        rows = self._collections.get(table, {})
        kept = {
            row_id: record
            for row_id, record in rows.items()
            if not matches(where, self._conform(table, record))
        }
        removed = len(rows) - len(kept)
        if removed:
            self._collections[table] = kept
        return removed

    def __repr__(self) -> str:
        sizes = ", ".join(f"{name}={len(rows)}" for name, rows in self._collections.items())
        return f"MemoryStore({sizes})"


def _conform(table: str, record: Record, fields: Mapping[str, ValueKind] | None) -> Record:
    if not fields:
        return record
    try:
        return record.conform(fields)
    except FilterTypeError as e:
        raise SerializationError(table, f"row does not match declared fields: {e}", e) from e


def _source_rows(store: MemoryStore, source: TableSource) -> list[Record]:
    if source.read is None or source.read.view is None:
        return store.rows(source.table, source.fields)
    try:
        return [Record.from_row(row, source.fields) for row in source.read.view(store.snapshot())]
    except FilterTypeError as e:
        raise SerializationError(source.table, f"view row does not match declared fields: {e}", e) from e


class MemoryDatabase:
    """
    Backend handle for the in-memory store.

    The shared handle takes the store lock around each call. The handle
    given to a unit of work runs under the transaction's exclusive lock
    and becomes unusable once the transaction ends.
    """

    def __init__(
        self,
        store: MemoryStore | None = None,
        *,
        checkpoint: Checkpoint | None = None,
    ) -> None:
        self._store = store if store is not None else MemoryStore()
        self._checkpoint = checkpoint
        self._scoped = checkpoint is not None
        self._active = self._scoped

    @property
    def store(self) -> MemoryStore:
        return self._store

    @property
    def in_transaction(self) -> bool:
        return self._active

    def _check_usable(self) -> None:
        if self._scoped and not self._active:
            raise UsageError("Transaction handle used after its transaction ended")

    def _owns_lock(self) -> bool:
        return self._store.owner is not None and self._store.owner is asyncio.current_task()

    @asynccontextmanager
    async def _reading(self) -> AsyncGenerator[None, None]:
        self._check_usable()
        if self._scoped:
            yield
            return
        if self._owns_lock():
            raise UsageError("Use the transaction handle inside a unit of work")
        async with self._store.lock.read_lock():
            yield

    @asynccontextmanager
    async def _writing(self) -> AsyncGenerator[None, None]:
        self._check_usable()
        if self._scoped:
            yield
            return
        if self._owns_lock():
            raise UsageError("Use the transaction handle inside a unit of work")
        async with self._store.lock.write_lock():
            yield

    async def fetch(
        self, source: TableSource, query: Query, *, for_update: bool = False
    ) -> list[Record]:
        if for_update and not self.in_transaction:
            raise TransactionNotActiveError("get_for_update")
        # for_update needs nothing more: the exclusive lock is already held
        async with self._reading():
            return run_query(_source_rows(self._store, source), query)

    async def exists(self, source: TableSource, where: Filter) -> bool:
        async with self._reading():
            return any(matches(where, record) for record in _source_rows(self._store, source))

    async def count(self, source: TableSource, where: Filter | None) -> int:
        async with self._reading():
            return len(select(_source_rows(self._store, source), where))

    def _declare(self, source: TableSource) -> None:
        self._store.declare_key(source.table, source.key)
        self._store.declare_fields(source.table, source.fields)

    async def insert(self, source: TableSource, record: Record) -> None:
        async with self._writing():
            self._declare(source)
            self._store.insert(source.table, record)
            logger.debug(f"Inserted into {source.table}")

    async def update(self, source: TableSource, where: Filter, record: Record) -> None:
        async with self._writing():
            self._declare(source)
            changed = self._store.update(source.table, where, record.tagged())
            logger.debug(f"Updated {changed} record(s) in {source.table}")

    async def delete(self, source: TableSource, where: Filter) -> None:
        async with self._writing():
            self._declare(source)
            removed = self._store.delete(source.table, where)
            logger.debug(f"Deleted {removed} record(s) from {source.table}")

    async def execute(self, statements: Sequence[WriteStatement]) -> None:
        """
        Apply hook statements in order; all of them or none.

        Raises:
            UsageError: For raw SQL statements, which only PostgreSQL can run
        """
        if not statements:
            return
        for statement in statements:
            if isinstance(statement, SqlStatement):
                raise UsageError("Raw SQL statements are not supported by the in-memory backend")

        async with self._writing():
            saved = self._store.checkpoint()
            try:
                for statement in statements:
                    self._apply(statement)
            except BaseException:
                self._store.restore(saved)
                raise

    def _apply(self, statement: WriteStatement) -> None:
        if isinstance(statement, InsertStatement):
            self._store.insert(statement.table, Record.from_mapping(statement.values))
        elif isinstance(statement, UpdateStatement):
            values = {name: Value.of(obj) for name, obj in statement.values.items()}
            self._store.update(statement.table, self._widen(statement), values)
        elif isinstance(statement, DeleteStatement):
            self._store.delete(statement.table, self._widen(statement))
        else:
            raise UsageError(f"Unsupported write statement: {statement!r}")

    def _widen(self, statement: UpdateStatement | DeleteStatement) -> Filter:
        # hook filters carry inferred operand variants; match them to the table
        fields = self._store.fields(statement.table)
        if not fields:
            return statement.where
        return validate_filter(statement.where, fields)

    async def begin_transaction(self) -> "MemoryDatabase":
        """
        Take the exclusive lock and return the transaction-scoped handle.

        Raises:
            NestedTransactionError: If called on a transaction handle, or from
                the task already running a unit of work
        """
        self._check_usable()
        if self._scoped or self._owns_lock():
            raise NestedTransactionError()

        await self._store.lock.acquire_write()
        self._store.owner = asyncio.current_task()
        logger.debug("Transaction started")
        return MemoryDatabase(self._store, checkpoint=self._store.checkpoint())

    async def _end(self) -> None:
        self._active = False
        self._store.owner = None
        await asyncio.shield(self._store.lock.release_write())

    async def commit_transaction(self) -> None:
        """
        Release the exclusive lock, keeping every change.

        Raises:
            TransactionNotActiveError: If this is not an active transaction handle
        """
        if not self._active:
            raise TransactionNotActiveError("commit")
        await self._end()
        logger.debug("Transaction committed")

    async def rollback_transaction(self) -> None:
        """Restore the state captured at begin and release the lock."""
        if not self._active or self._checkpoint is None:
            logger.warning("No active transaction to rollback")
            return
        self._store.restore(self._checkpoint)
        await self._end()
        logger.debug("Transaction rolled back")

    async def transaction(self, unit_of_work: Callable[["MemoryDatabase"], Awaitable[R]]) -> R:
        """
        Run ``unit_of_work`` holding the store's exclusive lock.

        Any exception, cancellation included, restores the prior state
        before it propagates unchanged.

        Raises:
            NestedTransactionError: If this handle is already transaction-scoped
        """
        handle = await self.begin_transaction()
        try:
            result = await unit_of_work(handle)
        except BaseException:
            await handle.rollback_transaction()
            raise
        await handle.commit_transaction()
        return result

    def __str__(self) -> str:
        scope = "transaction" if self._scoped else "shared"
        return f"MemoryDatabase({scope}, {self._store!r})"

