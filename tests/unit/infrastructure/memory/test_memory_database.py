"""
Unit tests for the in-memory store and its backend handle.

Tests cover:
- Query scenarios over a seeded store
- Key uniqueness
- Transaction atomicity, isolation and nesting rules
- Mutual exclusion through get_for_update
- Hook statement execution
"""

import asyncio
from dataclasses import dataclass, replace
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from repokit.domain.exceptions import (
    ConstraintViolation,
    NestedTransactionError,
    SerializationError,
    TransactionNotActiveError,
    UsageError,
)
from repokit.domain.filters import and_, contains, ends_with, eq, gte, starts_with
from repokit.domain.mapping import EntityMapping
from repokit.domain.query import Query
from repokit.domain.statements import (
    DeleteStatement,
    InsertStatement,
    SqlStatement,
    UpdateStatement,
)
from repokit.domain.value_objects import ValueKind
from repokit.infrastructure.memory import MemoryDatabase, MemoryStore
from repokit.infrastructure.repositories import Repository
from tests.helpers import UserFactory, user_mapping


def names(users):
    return [user.name for user in users]


@pytest.mark.unit
class TestQueryScenarios:
    """Test reads over Alice, Bob and Eve."""

    @pytest.mark.asyncio
    async def test_order_limit_offset(self, seeded_db, users):
        query = Query().order([("name", "desc")]).limit(2).offset(1)
        assert names(await users.get_many(seeded_db, query)) == ["Bob", "Alice"]

    @pytest.mark.asyncio
    async def test_contains(self, seeded_db, users):
        query = Query().filter(contains("name", "o"))
        assert names(await users.get_many(seeded_db, query)) == ["Bob"]

    @pytest.mark.asyncio
    async def test_starts_and_ends_with(self, seeded_db, users):
        where = and_([starts_with("name", "E"), ends_with("name", "e")])
        user = await users.get(seeded_db, where)
        assert user is not None and user.name == "Eve"

        assert await users.get(seeded_db, and_([where, eq("name", "Bob")])) is None

    @pytest.mark.asyncio
    async def test_natural_order_is_insertion_order(self, seeded_db, users):
        assert names(await users.get_many(seeded_db)) == ["Alice", "Bob", "Eve"]

    @pytest.mark.asyncio
    async def test_get_returns_first_in_natural_order(self, seeded_db, users):
        user = await users.get(seeded_db, eq("active", True))
        assert user.name == "Alice"

    @pytest.mark.asyncio
    async def test_count_and_exists(self, seeded_db, users):
        assert await users.count_all(seeded_db) == 3
        assert await users.count(seeded_db, contains("name", "e")) == 2
        assert await users.exists(seeded_db, eq("name", "Eve"))
        assert not await users.exists(seeded_db, eq("name", "Mallory"))

    @pytest.mark.asyncio
    async def test_empty_store(self, memory_db, users):
        assert await users.get_many(memory_db) == []
        assert await users.count_all(memory_db) == 0


@pytest.mark.unit
class TestWrites:
    """Test single-statement writes."""

    @pytest.mark.asyncio
    async def test_update_keeps_position(self, seeded_db, users):
        bob = await users.get(seeded_db, eq("name", "Bob"))

        await users.update(seeded_db, eq("id", bob.id), replace(bob, name="Robert"))

        assert names(await users.get_many(seeded_db)) == ["Alice", "Robert", "Eve"]

    @pytest.mark.asyncio
    async def test_update_without_match_is_noop(self, seeded_db, users):
        ghost = UserFactory.create(name="Ghost")

        await users.update(seeded_db, eq("id", ghost.id), ghost)

        assert await users.count_all(seeded_db) == 3

    @pytest.mark.asyncio
    async def test_delete(self, seeded_db, users):
        await users.delete(seeded_db, contains("name", "e"))
        assert names(await users.get_many(seeded_db)) == ["Bob"]

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, seeded_db, users):
        await users.delete(seeded_db, eq("name", "Bob"))
        once = seeded_db.store.snapshot()

        await users.delete(seeded_db, eq("name", "Bob"))

        assert seeded_db.store.snapshot() == once
        assert names(await users.get_many(seeded_db)) == ["Alice", "Eve"]

    @pytest.mark.asyncio
    async def test_duplicate_key_rejected(self, seeded_db, users):
        alice = await users.get(seeded_db, eq("name", "Alice"))

        with pytest.raises(ConstraintViolation) as exc_info:
            await users.add(seeded_db, replace(alice, name="Alice 2"))

        assert exc_info.value.constraint == "users_pkey"
        assert await users.count_all(seeded_db) == 3

    @pytest.mark.asyncio
    async def test_update_into_duplicate_key_rejected(self, seeded_db, users):
        alice = await users.get(seeded_db, eq("name", "Alice"))
        bob = await users.get(seeded_db, eq("name", "Bob"))

        with pytest.raises(ConstraintViolation):
            await users.update(seeded_db, eq("id", bob.id), replace(bob, id=alice.id))

        assert (await users.get(seeded_db, eq("name", "Bob"))).id == bob.id

    @pytest.mark.asyncio
    async def test_store_starts_empty_per_instance(self, users):
        first, second = MemoryDatabase(), MemoryDatabase()
        await users.add(first, UserFactory.create())
        assert await users.count_all(second) == 0


@pytest.mark.unit
class TestTransactions:
    """Test transaction semantics."""

    @pytest.mark.asyncio
    async def test_commit(self, memory_db, users):
        async def work(tx):
            await users.add(tx, UserFactory.create(name="Alice"))
            await users.add(tx, UserFactory.create(name="Bob"))
            return "ok"

        assert await memory_db.transaction(work) == "ok"
        assert await users.count_all(memory_db) == 2

    @pytest.mark.asyncio
    async def test_rollback_restores_state(self, seeded_db, users):
        class Abort(Exception):
            pass

        async def work(tx):
            await users.add(tx, UserFactory.create(name="Zed"))
            await users.delete(tx, eq("name", "Alice"))
            raise Abort()

        with pytest.raises(Abort):
            await seeded_db.transaction(work)

        assert names(await users.get_many(seeded_db)) == ["Alice", "Bob", "Eve"]

    @pytest.mark.asyncio
    async def test_cancelled_unit_of_work_rolls_back(self, memory_db, users):
        started = asyncio.Event()

        async def work(tx):
            await users.add(tx, UserFactory.create(name="Half"))
            started.set()
            await asyncio.Event().wait()

        task = asyncio.create_task(memory_db.transaction(work))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await users.count_all(memory_db) == 0
        assert not memory_db.store.lock.is_write_locked

    @pytest.mark.asyncio
    async def test_readers_wait_for_transaction(self, memory_db, users):
        inside = asyncio.Event()
        release = asyncio.Event()

        async def work(tx):
            await users.add(tx, UserFactory.create(name="Pending"))
            inside.set()
            await release.wait()

        writer = asyncio.create_task(memory_db.transaction(work))
        await inside.wait()
        reader = asyncio.create_task(users.count_all(memory_db))
        await asyncio.sleep(0)
        assert not reader.done()

        release.set()
        await writer
        # the reader only ran after the commit
        assert await reader == 1

    @pytest.mark.asyncio
    async def test_nested_transaction_on_scoped_handle(self, memory_db):
        async def outer(tx):
            await tx.transaction(lambda inner: asyncio.sleep(0))

        with pytest.raises(NestedTransactionError):
            await memory_db.transaction(outer)

        assert not memory_db.store.lock.is_write_locked

    @pytest.mark.asyncio
    async def test_nested_transaction_from_same_task(self, memory_db):
        async def outer(tx):
            await memory_db.transaction(lambda inner: asyncio.sleep(0))

        with pytest.raises(NestedTransactionError):
            await memory_db.transaction(outer)

    @pytest.mark.asyncio
    async def test_shared_handle_inside_unit_of_work(self, memory_db, users):
        async def work(tx):
            await users.count_all(memory_db)

        with pytest.raises(UsageError, match="transaction handle"):
            await memory_db.transaction(work)

    @pytest.mark.asyncio
    async def test_scoped_handle_unusable_after_end(self, memory_db, users):
        captured = []

        async def work(tx):
            captured.append(tx)

        await memory_db.transaction(work)

        assert not captured[0].in_transaction
        with pytest.raises(UsageError, match="after its transaction ended"):
            await users.count_all(captured[0])

    @pytest.mark.asyncio
    async def test_explicit_begin_commit(self, memory_db, users):
        tx = await memory_db.begin_transaction()
        await users.add(tx, UserFactory.create())
        await tx.commit_transaction()

        assert await users.count_all(memory_db) == 1
        with pytest.raises(TransactionNotActiveError):
            await tx.commit_transaction()

    @pytest.mark.asyncio
    async def test_rollback_without_transaction_is_noop(self, memory_db):
        await memory_db.rollback_transaction()
        assert not memory_db.store.lock.is_write_locked


@pytest.mark.unit
class TestGetForUpdate:
    """Test exclusive reads."""

    @pytest.mark.asyncio
    async def test_requires_transaction(self, seeded_db, users):
        with pytest.raises(TransactionNotActiveError):
            await users.get_for_update(seeded_db, eq("name", "Alice"))

    @pytest.mark.asyncio
    async def test_backend_rejects_unscoped_lock(self, seeded_db, users):
        with pytest.raises(TransactionNotActiveError):
            await seeded_db.fetch(users.source, Query(), for_update=True)

    @pytest.mark.asyncio
    async def test_concurrent_increments_do_not_lose_updates(self, seeded_db, users):
        async def deposit():
            async def work(tx):
                alice = await users.get_for_update(tx, eq("name", "Alice"))
                await asyncio.sleep(0)
                updated = replace(alice, balance=alice.balance + Decimal("1"))
                await users.update(tx, eq("id", alice.id), updated)

            await seeded_db.transaction(work)

        await asyncio.gather(*(deposit() for _ in range(10)))

        alice = await users.get(seeded_db, eq("name", "Alice"))
        assert alice.balance == Decimal("110.00")


@pytest.mark.unit
class TestExecute:
    """Test hook statement execution."""

    @pytest.mark.asyncio
    async def test_statements_applied_in_order(self, memory_db):
        await memory_db.execute(
            [
                InsertStatement("audit", {"n": 1, "action": "add"}),
                InsertStatement("audit", {"n": 2, "action": "add"}),
                UpdateStatement("audit", eq("n", 2), {"action": "edit"}),
                DeleteStatement("audit", eq("n", 1)),
            ]
        )

        rows = memory_db.store.rows("audit")
        assert [(row["n"], row["action"]) for row in rows] == [(2, "edit")]

    @pytest.mark.asyncio
    async def test_sql_statement_rejected(self, memory_db):
        with pytest.raises(UsageError, match="Raw SQL"):
            await memory_db.execute(
                [InsertStatement("audit", {"n": 1}), SqlStatement("DELETE FROM audit")]
            )

        assert memory_db.store.rows("audit") == []

    @pytest.mark.asyncio
    async def test_failure_applies_nothing(self):
        store = MemoryStore()
        store.declare_key("audit", ["n"])
        database = MemoryDatabase(store)

        with pytest.raises(ConstraintViolation, match="audit_pkey"):
            await database.execute(
                [InsertStatement("audit", {"n": 1}), InsertStatement("audit", {"n": 1})]
            )

        assert store.rows("audit") == []

    @pytest.mark.asyncio
    async def test_empty_is_noop(self, memory_db):
        await memory_db.execute([])
        assert memory_db.store.snapshot() == {}


@dataclass(frozen=True)
class LedgerEntry:
    id: UUID
    amount: Decimal


@pytest.fixture
def ledger():
    """Repository over a table that hooks also write to."""
    mapping = EntityMapping(
        {"id": ValueKind.IDENTIFIER, "amount": ValueKind.DECIMAL},
        lambda entry: {"id": entry.id, "amount": entry.amount},
        lambda record: LedgerEntry(record["id"], record["amount"]),
        entity_name="LedgerEntry",
    )
    return Repository("ledger", mapping, key=("id",))


@pytest.fixture
def signups():
    """Users whose creation credits the ledger with a plain int."""
    return Repository(
        "users",
        user_mapping(),
        key=("id",),
        after_add=lambda user: [InsertStatement("ledger", {"id": user.id, "amount": 5})],
    )


@pytest.mark.unit
class TestDeclaredFieldShape:
    """Hook rows take the variants declared by the table's repository."""

    @pytest.mark.asyncio
    async def test_hook_integer_filters_and_sorts_as_decimal(self, memory_db, ledger, signups):
        await signups.add(memory_db, UserFactory.create())
        await ledger.add(memory_db, LedgerEntry(uuid4(), Decimal("7")))

        query = Query().filter(gte("amount", Decimal("1"))).order([("amount", "asc")])
        entries = await ledger.get_many(memory_db, query)

        assert [entry.amount for entry in entries] == [Decimal("5"), Decimal("7")]
        assert all(isinstance(entry.amount, Decimal) for entry in entries)

    @pytest.mark.asyncio
    async def test_hook_row_after_declaration_stored_as_decimal(
        self, memory_db, ledger, signups
    ):
        await ledger.add(memory_db, LedgerEntry(uuid4(), Decimal("7")))
        await signups.add(memory_db, UserFactory.create())

        kinds = {row.value("amount").kind for row in memory_db.store.rows("ledger")}
        assert kinds == {ValueKind.DECIMAL}
        assert await ledger.count(memory_db, eq("amount", Decimal("5"))) == 1

    @pytest.mark.asyncio
    async def test_hook_filters_widened_to_declared_fields(self, memory_db, ledger):
        first, second = LedgerEntry(uuid4(), Decimal("7")), LedgerEntry(uuid4(), Decimal("9"))
        await ledger.add(memory_db, first)
        await ledger.add(memory_db, second)

        await memory_db.execute(
            [
                UpdateStatement("ledger", eq("amount", 7), {"amount": 8}),
                DeleteStatement("ledger", eq("amount", 9)),
            ]
        )

        entries = await ledger.get_many(memory_db)
        assert entries == [LedgerEntry(first.id, Decimal("8"))]

    @pytest.mark.asyncio
    async def test_hook_value_of_wrong_variant_rejected(self, memory_db, ledger):
        await ledger.add(memory_db, LedgerEntry(uuid4(), Decimal("7")))

        with pytest.raises(SerializationError, match="ledger"):
            await memory_db.execute([InsertStatement("ledger", {"id": uuid4(), "amount": "lots"})])

        assert await ledger.count_all(memory_db) == 1
