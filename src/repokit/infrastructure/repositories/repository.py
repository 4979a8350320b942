"""
Generic Repository Engine

One repository class serves every entity type. It validates filters and
queries against the entity mapping, dumps and loads entities, runs
after-write hooks in the same atomic unit as the primary write, and
delegates storage to whichever backend handle it is given.
"""

# Standard library imports
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Generic, TypeVar

# Local imports
from repokit.application.interfaces.backend import IDatabase, TableSource
from repokit.domain.exceptions import TransactionNotActiveError, UsageError
from repokit.domain.filters import Filter, validate_filter
from repokit.domain.mapping import EntityMapping, ReadStatement
from repokit.domain.query import Query
from repokit.domain.statements import WriteStatement
from repokit.domain.value_objects.value import Record

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

AfterWriteHook = Callable[[T], Iterable[WriteStatement]]
AfterDeleteHook = Callable[[Filter], Iterable[WriteStatement]]


class Repository(Generic[T]):
    """
    Backend-agnostic repository for one entity type.

    Immutable after construction and safe to share between concurrent
    callers; all per-call state lives in the backend handle passed to
    each verb.

    Usage:
        users = Repository("users", mapping, key=("id",))
        await users.add(db, user)
        page = await users.get_many(db, Query().order([("name", "desc")]).limit(2))
    """

    def __init__(
        self,
        table: str,
        mapping: EntityMapping[T],
        *,
        key: Sequence[str] = (),
        read: ReadStatement | None = None,
        after_add: AfterWriteHook[T] | None = None,
        after_update: AfterWriteHook[T] | None = None,
        after_delete: AfterDeleteHook | None = None,
    ) -> None:
        """
        Initialize repository.

        Args:
            table: Table / collection written by the primary verbs
            mapping: Entity ⇄ record mapping and declared field shape
            key: Natural key fields; relational reads fall back to this
                order and the in-memory store enforces its uniqueness
            read: Optional custom read statement for entities spanning tables
            after_add: Hook producing follow-up statements for ``add``
            after_update: Hook producing follow-up statements for ``update``
            after_delete: Hook producing follow-up statements for ``delete``

        Raises:
            ValueError: If the table name is empty or a key field is undeclared
        """
        if not table:
            raise ValueError("A repository needs a table name")
        unknown = [name for name in key if name not in mapping.fields]
        if unknown:
            raise ValueError(f"Key fields not declared by the mapping: {unknown}")

        self._mapping = mapping
        self._source = TableSource(table, dict(mapping.fields), tuple(key), read)
        self._after_add = after_add
        self._after_update = after_update
        self._after_delete = after_delete

    @property
    def table(self) -> str:
        return self._source.table

    @property
    def mapping(self) -> EntityMapping[T]:
        return self._mapping

    @property
    def source(self) -> TableSource:
        return self._source

    @staticmethod
    def _require_handle(db: IDatabase | None, operation: str) -> IDatabase:
        if db is None:
            raise UsageError(f"'{operation}' needs a backend handle")
        return db

    def _validate(self, where: Filter) -> Filter:
        return validate_filter(where, self._source.fields)

    @staticmethod
    async def _atomically(db: IDatabase, work: Callable[[IDatabase], Awaitable[R]]) -> R:
        """Run ``work`` in the current transaction, or in a new one."""
        if db.in_transaction:
            return await work(db)
        return await db.transaction(work)

    def _load_all(self, records: Iterable[Record]) -> list[T]:
        return [self._mapping.from_record(record) for record in records]

    async def add(self, db: IDatabase, entity: T) -> None:
        """
        Insert an entity, then run the after-add hook atomically.

        Raises:
            ConstraintViolation: If the backend rejects the insert
            SerializationError: If the entity cannot be dumped
        """
        db = self._require_handle(db, "add")
        record = self._mapping.to_record(entity)
        hook = self._after_add

        if hook is None:
            await db.insert(self._source, record)
        else:

            async def work(handle: IDatabase) -> None:
                await handle.insert(self._source, record)
                await handle.execute(list(hook(entity)))

            await self._atomically(db, work)

        logger.debug(f"Added {self._mapping.entity_name} to {self.table}")

    async def get(self, db: IDatabase, where: Filter) -> T | None:
        """
        Return the first matching entity in natural order, or None.

        Natural order is the declared key order on PostgreSQL and
        insertion order in memory. Callers that need uniqueness must
        constrain the filter themselves.
        """
        db = self._require_handle(db, "get")
        query = Query(where=self._validate(where), max_rows=1)
        records = await db.fetch(self._source, query)
        return self._mapping.from_record(records[0]) if records else None

    async def get_many(self, db: IDatabase, query: Query | None = None) -> list[T]:
        """
        Return every entity matching the query, fully materialized.

        Raises:
            FilterFieldError: If the filter or an order key names an unknown field
            FilterTypeError: If a filter operand does not fit its field
        """
        db = self._require_handle(db, "get_many")
        validated = (query or Query()).validated(self._source.fields)
        if validated.is_empty_page:
            return []
        records = await db.fetch(self._source, validated)
        logger.debug(f"Fetched {len(records)} {self._mapping.entity_name} record(s) from {self.table}")
        return self._load_all(records)

    async def update(self, db: IDatabase, where: Filter, entity: T) -> None:
        """
        Overwrite every matching record with the dumped entity, then run the
        after-update hook atomically. Zero matches is not an error.
        """
        db = self._require_handle(db, "update")
        validated = self._validate(where)
        record = self._mapping.to_record(entity)
        hook = self._after_update

        if hook is None:
            await db.update(self._source, validated, record)
        else:

            async def work(handle: IDatabase) -> None:
                await handle.update(self._source, validated, record)
                await handle.execute(list(hook(entity)))

            await self._atomically(db, work)

        logger.debug(f"Updated {self._mapping.entity_name} in {self.table}")

    async def delete(self, db: IDatabase, where: Filter) -> None:
        """
        Remove every matching record, then run the after-delete hook
        atomically. Zero matches is not an error.
        """
        db = self._require_handle(db, "delete")
        validated = self._validate(where)
        hook = self._after_delete

        if hook is None:
            await db.delete(self._source, validated)
        else:

            async def work(handle: IDatabase) -> None:
                await handle.delete(self._source, validated)
                await handle.execute(list(hook(validated)))

            await self._atomically(db, work)

        logger.debug(f"Deleted {self._mapping.entity_name} from {self.table}")

    async def exists(self, db: IDatabase, where: Filter) -> bool:
        db = self._require_handle(db, "exists")
        return await db.exists(self._source, self._validate(where))

    async def count(self, db: IDatabase, where: Filter) -> int:
        db = self._require_handle(db, "count")
        return await db.count(self._source, self._validate(where))

    async def count_all(self, db: IDatabase) -> int:
        db = self._require_handle(db, "count_all")
        return await db.count(self._source, None)

    async def get_for_update(self, db: IDatabase, where: Filter) -> T | None:
        """
        Like ``get``, but lock every matched record until the enclosing
        transaction ends.

        Raises:
            TransactionNotActiveError: If ``db`` is not transaction-scoped
        """
        db = self._require_handle(db, "get_for_update")
        if not db.in_transaction:
            raise TransactionNotActiveError("get_for_update")
        query = Query(where=self._validate(where))
        records = await db.fetch(self._source, query, for_update=True)
        return self._mapping.from_record(records[0]) if records else None

    def __repr__(self) -> str:
        return f"Repository({self.table!r}, {self._mapping!r})"
