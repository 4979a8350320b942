"""
PostgreSQL Database Adapter

Provides async database operations using psycopg3.
Handles connection management, query execution, transactions, and the
single translation point from driver errors to repository errors.
"""

# Standard library imports
import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

# Third-party imports
import psycopg
from psycopg import AsyncConnection
from psycopg.rows import Row, dict_row
from psycopg_pool import AsyncConnectionPool

# Local imports
from repokit.domain.exceptions import (
    BackendError,
    ConnectivityError,
    ConstraintViolation,
    NestedTransactionError,
    RepositoryError,
    TransactionNotActiveError,
)

logger = logging.getLogger(__name__)


def translate_error(operation: str, query: str, error: BaseException) -> RepositoryError:
    """
    Map a driver failure onto the repository error taxonomy.

    Args:
        operation: Adapter operation that failed
        query: Statement being executed (logged truncated)
        error: Original exception

    Returns:
        The repository error to raise (the caller chains ``error``)
    """
    if isinstance(error, psycopg.IntegrityError):
        diag = getattr(error, "diag", None)
        constraint = getattr(diag, "constraint_name", None) or "unknown"
        logger.error(f"Integrity constraint violated: {error} | Query: {query[:100]}...")
        return ConstraintViolation(constraint, str(error), error)  # type: ignore[arg-type]

    if isinstance(
        error, (psycopg.OperationalError, psycopg.InterfaceError, TimeoutError)
    ):
        logger.error(f"{operation} failed: {error} | Query: {query[:100]}...")
        return ConnectivityError(f"{operation} failed: {error}", error)  # type: ignore[arg-type]

    logger.error(f"{operation} failed: {error} | Query: {query[:100]}...")
    return BackendError(f"{operation} failed: {error}", error)  # type: ignore[arg-type]


class PostgreSQLAdapter:
    """
    PostgreSQL database adapter using psycopg3.

    An adapter is either pool-bound (each call borrows a connection and
    commits on return) or, after ``begin_transaction``, pinned to one
    connection until commit or rollback. A pinned adapter must not be
    shared between concurrently running units of work.
    """

    def __init__(self, pool: AsyncConnectionPool) -> None:
        """
        Initialize adapter with connection pool.

        Args:
            pool: psycopg3 async connection pool
        """
        self._pool = pool
        self._connection_cm: AbstractAsyncContextManager[AsyncConnection] | None = None
        self._connection: AsyncConnection | None = None
        self._transaction: psycopg.AsyncTransaction | None = None

    @property
    def pool(self) -> AsyncConnectionPool:
        """Get the connection pool."""
        return self._pool

    @property
    def has_active_transaction(self) -> bool:
        """Check if there's an active transaction."""
        return self._transaction is not None

    @asynccontextmanager
    async def acquire_connection(self) -> AsyncGenerator[AsyncConnection, None]:
        """
        Acquire a database connection from the pool.

        Yields:
            The pinned transaction connection, or a pooled one
        """
        if self._connection:
            # Use existing connection if in transaction
            yield self._connection
            return

        async with self._pool.connection() as connection:
            yield connection

    async def execute_query(self, query: str, *args: Any) -> int:
        """
        Execute a SQL statement that doesn't return data.

        Args:
            query: SQL query string
            *args: Query parameters

        Returns:
            Number of affected rows

        Raises:
            ConstraintViolation: If an integrity constraint is violated
            ConnectivityError: If the connection fails or times out
            BackendError: For any other driver error
        """
        try:
            async with self.acquire_connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, args)
                logger.debug(f"Query executed: {query[:100]}... | Rows: {cur.rowcount}")
                return cur.rowcount
        except (psycopg.Error, TimeoutError) as e:
            raise translate_error("execute_query", query, e) from e

    async def fetch_one(self, query: str, *args: Any) -> Row | None:
        """
        Fetch a single record from the database.

        Args:
            query: SQL query string
            *args: Query parameters

        Returns:
            Record if found, None otherwise
        """
        try:
            async with self.acquire_connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, args)
                result = await cur.fetchone()
                logger.debug(f"Fetch one query: {query[:100]}... | Found: {result is not None}")
                return result
        except (psycopg.Error, TimeoutError) as e:
            raise translate_error("fetch_one", query, e) from e

    async def fetch_all(self, query: str, *args: Any) -> list[Row]:
        """
        Fetch all records from the database.

        Args:
            query: SQL query string
            *args: Query parameters

        Returns:
            List of records
        """
        try:
            async with self.acquire_connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, args)
                result = await cur.fetchall()
                logger.debug(f"Fetch all query: {query[:100]}... | Count: {len(result)}")
                return result
        except (psycopg.Error, TimeoutError) as e:
            raise translate_error("fetch_all", query, e) from e

    async def execute_many(self, statements: Sequence[tuple[str, Sequence[Any]]]) -> None:
        """
        Execute several statements in order on one connection.

        Outside a transaction they still share the borrowed connection's
        implicit transaction, so either all of them commit or none do.
        """
        query = ""
        try:
            async with self.acquire_connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                for query, params in statements:
                    await cur.execute(query, params)
                    logger.debug(f"Query executed: {query[:100]}... | Rows: {cur.rowcount}")
        except (psycopg.Error, TimeoutError) as e:
            raise translate_error("execute_many", query, e) from e

    async def begin_transaction(self) -> None:
        """
        Begin a database transaction, pinning one pooled connection.

        Raises:
            NestedTransactionError: If a transaction is already active
            ConnectivityError: If no connection can be acquired
        """
        if self.has_active_transaction:
            raise NestedTransactionError()

        try:
            connection_cm = self._pool.connection()
            self._connection = await connection_cm.__aenter__()
            self._connection_cm = connection_cm
            self._transaction = self._connection.transaction()
            await self._transaction.__aenter__()
            logger.debug("Transaction started")
        except (psycopg.Error, TimeoutError) as e:
            await self._cleanup_transaction()
            raise translate_error("begin_transaction", "BEGIN", e) from e
        except BaseException:
            # cancelled between checkout and BEGIN: the connection goes back
            await self._cleanup_transaction()
            raise

    async def commit_transaction(self) -> None:
        """
        Commit the current transaction.

        Raises:
            TransactionNotActiveError: If no transaction is active
            ConstraintViolation: If a deferred constraint fails at commit
        """
        if self._transaction is None:
            raise TransactionNotActiveError("commit")

        try:
            await self._transaction.__aexit__(None, None, None)
            logger.debug("Transaction committed")
        except (psycopg.Error, TimeoutError) as e:
            raise translate_error("commit_transaction", "COMMIT", e) from e
        finally:
            await self._cleanup_transaction()

    async def rollback_transaction(self) -> None:
        """Rollback the current transaction; a no-op when none is active."""
        if self._transaction is None:
            logger.warning("No active transaction to rollback")
            return

        try:
            await self._transaction.__aexit__(Exception, Exception(), None)
            logger.debug("Transaction rolled back")
        except (psycopg.Error, TimeoutError) as e:
            raise translate_error("rollback_transaction", "ROLLBACK", e) from e
        finally:
            await self._cleanup_transaction()

    async def _cleanup_transaction(self) -> None:
        """Return the pinned connection to the pool and clear transaction state."""
        if self._connection_cm is not None:
            try:
                await self._connection_cm.__aexit__(None, None, None)
            except Exception as e:
                logger.warning(f"Failed to release connection: {e}")
            finally:
                self._connection_cm = None

        self._connection = None
        self._transaction = None

    async def health_check(self) -> bool:
        """
        Perform a health check on the database connection.

        Returns:
            True if database is healthy, False otherwise
        """
        try:
            async with self.acquire_connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                await cur.execute("SELECT 1")
                await cur.fetchone()
                return True
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    async def get_connection_info(self) -> dict[str, Any]:
        """
        Get information about the connection pool.

        Returns:
            Dictionary with connection pool statistics
        """
        return {
            "max_size": self._pool.max_size,
            "min_size": self._pool.min_size,
            "pool_status": "active" if not self._pool.closed else "closed",
        }

    def __str__(self) -> str:
        """String representation of the adapter."""
        pool_info = f"Pool(max_size={self._pool.max_size})"
        tx_info = "with active transaction" if self.has_active_transaction else "no transaction"
        return f"PostgreSQLAdapter({pool_info}, {tx_info})"
