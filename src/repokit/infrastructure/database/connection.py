"""
Database Connection Management

Provides connection factory and lifecycle management for the PostgreSQL
connection pool. Schema creation stays with the caller.
"""

# Standard library imports
import logging
from typing import TYPE_CHECKING, Optional

# Third-party imports
import psycopg
from psycopg_pool import AsyncConnectionPool

# Local imports
from repokit.domain.exceptions import ConnectivityError
from repokit.infrastructure.config import DatabaseConfig

if TYPE_CHECKING:
    from .backend import PostgreSQLDatabase

logger = logging.getLogger(__name__)


class DatabaseConnection:
    """
    Database connection manager.

    Owns a single psycopg3 connection pool and its lifecycle.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        """
        Initialize connection manager.

        Args:
            config: Database configuration
        """
        self.config = config
        self._pool: AsyncConnectionPool | None = None
        self._is_closed = False

    @property
    def is_connected(self) -> bool:
        """Check if connection pool is active."""
        return self._pool is not None and not self._pool.closed

    @property
    def is_closed(self) -> bool:
        """Check if connection has been closed."""
        return self._is_closed

    @property
    def pool(self) -> AsyncConnectionPool:
        """
        Get the open pool.

        Raises:
            ConnectivityError: If ``connect`` has not been called
        """
        if self._pool is None or self._pool.closed:
            raise ConnectivityError("Database connection pool is not open")
        return self._pool

    async def connect(self) -> AsyncConnectionPool:
        """
        Open the connection pool and check that the server answers.

        Connection failures are reported once; there is no retry loop.

        Returns:
            psycopg3 async connection pool

        Raises:
            ConnectivityError: If the pool cannot be opened
        """
        if self._is_closed:
            raise ConnectivityError("Connection manager has been closed")

        if self.is_connected and self._pool is not None:
            return self._pool

        logger.info(
            f"Connecting to database: {self.config.host}:{self.config.port}/{self.config.database}"
        )

        try:
            self._pool = AsyncConnectionPool(
                conninfo=self.config.build_dsn(),
                min_size=self.config.min_pool_size,
                max_size=self.config.max_pool_size,
                timeout=self.config.pool_timeout,
                open=False,
            )
            await self._pool.open(wait=True, timeout=self.config.pool_timeout)

            async with self._pool.connection() as conn, conn.cursor() as cur:
                await cur.execute("SELECT 1")
                await cur.fetchone()
        except (psycopg.Error, TimeoutError, OSError) as e:
            logger.error(f"Failed to connect to database: {e}")
            await self._cleanup()
            raise ConnectivityError(f"Failed to connect to database: {e}", e) from e

        logger.info(
            f"Database connected successfully. Pool size: {self.config.min_pool_size}-{self.config.max_pool_size}"
        )
        return self._pool

    async def disconnect(self) -> None:
        """Close database connection pool."""
        if self._is_closed:
            return

        logger.info("Disconnecting from database...")
        await self._cleanup()
        self._is_closed = True
        logger.info("Database disconnected")

    async def _cleanup(self) -> None:
        """Close the pool if it is open."""
        if self._pool is not None and not self._pool.closed:
            try:
                await self._pool.close()
            except Exception as e:
                logger.warning(f"Failed to close connection pool: {e}")
        self._pool = None

    def __str__(self) -> str:
        """String representation."""
        status = "connected" if self.is_connected else "disconnected"
        return f"DatabaseConnection({self.config.host}:{self.config.port}, {status})"


class ConnectionFactory:
    """
    Factory for creating and managing database connections.

    Keeps one shared connection per process and hands out backend handles
    bound to its pool.
    """

    _instance: Optional["ConnectionFactory"] = None
    _connection: DatabaseConnection | None = None

    def __new__(cls) -> "ConnectionFactory":
        """Ensure singleton instance."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @classmethod
    async def create_connection(
        cls,
        config: DatabaseConfig | None = None,
        force_new: bool = False,
    ) -> DatabaseConnection:
        """
        Create or get the shared database connection.

        Args:
            config: Database configuration (defaults to environment)
            force_new: Force creation of new connection

        Returns:
            DatabaseConnection instance

        Raises:
            ConnectivityError: If the pool cannot be opened
        """
        instance = cls()

        if force_new or instance._connection is None or instance._connection.is_closed:
            if instance._connection and not instance._connection.is_closed:
                await instance._connection.disconnect()

            config = config or DatabaseConfig.from_env()
            connection = DatabaseConnection(config)
            try:
                await connection.connect()
            except ConnectivityError:
                instance._connection = None
                raise
            instance._connection = connection
            logger.info(f"Created new database connection: {connection}")

        return instance._connection

    @classmethod
    async def create_database(
        cls, config: DatabaseConfig | None = None, force_new: bool = False
    ) -> "PostgreSQLDatabase":
        """
        Return a pool-bound backend handle, connecting first if needed.

        Args:
            config: Database configuration (defaults to environment)
            force_new: Force creation of new connection

        Returns:
            PostgreSQLDatabase bound to the shared pool
        """
        from .backend import PostgreSQLDatabase

        connection = await cls.create_connection(config, force_new)
        return PostgreSQLDatabase.from_pool(connection.pool)

    @classmethod
    async def get_connection(cls) -> DatabaseConnection:
        """
        Get existing database connection.

        Raises:
            ConnectivityError: If no connection exists
        """
        instance = cls()

        if instance._connection is None or instance._connection.is_closed:
            raise ConnectivityError("No active database connection")

        return instance._connection

    @classmethod
    async def close_all(cls) -> None:
        """Close all connections managed by the factory."""
        instance = cls()

        if instance._connection and not instance._connection.is_closed:
            await instance._connection.disconnect()
            instance._connection = None
            logger.info("All database connections closed")

    @classmethod
    def reset(cls) -> None:
        """Reset the factory (for testing)."""
        cls._instance = None
        cls._connection = None
