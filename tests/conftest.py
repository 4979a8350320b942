"""Global pytest configuration and fixtures."""

# Standard library imports
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# Load test environment variables
from dotenv import load_dotenv

test_env_path = Path(__file__).parent.parent / ".env.test"
if test_env_path.exists():
    load_dotenv(test_env_path, override=True)

# Third-party imports
import pytest
from psycopg import AsyncConnection
from psycopg_pool import AsyncConnectionPool

# Local imports
from repokit import MemoryDatabase, MemoryStore, Repository
from repokit.infrastructure.database.connection import ConnectionFactory
from tests.helpers import User, UserFactory, user_mapping


@pytest.fixture
def memory_db() -> MemoryDatabase:
    """Shared handle over a fresh, empty in-memory store."""
    return MemoryDatabase(MemoryStore())


@pytest.fixture
def users() -> Repository[User]:
    """User repository keyed by id."""
    return Repository("users", user_mapping(), key=("id",))


@pytest.fixture
async def seeded_db(memory_db, users) -> MemoryDatabase:
    """In-memory store holding Alice, Bob and Eve, inserted in that order."""
    for user in UserFactory.create_many(["Alice", "Bob", "Eve"]):
        await users.add(memory_db, user)
    return memory_db


@pytest.fixture
def mock_cursor() -> AsyncMock:
    """Mock psycopg cursor."""
    cursor = AsyncMock()
    cursor.rowcount = 1
    cursor.fetchone.return_value = None
    cursor.fetchall.return_value = []
    return cursor


@pytest.fixture
def mock_connection(mock_cursor) -> MagicMock:
    """Mock psycopg connection whose cursor() yields ``mock_cursor``."""
    connection = MagicMock(spec=AsyncConnection)
    connection.cursor.return_value.__aenter__.return_value = mock_cursor
    connection.cursor.return_value.__aexit__.return_value = None
    return connection


@pytest.fixture
def mock_pool(mock_connection) -> MagicMock:
    """Mock connection pool handing out ``mock_connection``."""
    pool = MagicMock(spec=AsyncConnectionPool)
    pool.connection.return_value.__aenter__.return_value = mock_connection
    pool.connection.return_value.__aexit__.return_value = None
    pool.max_size = 10
    pool.min_size = 1
    pool.closed = False
    return pool


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset singleton instances between tests."""
    ConnectionFactory.reset()
    yield
    ConnectionFactory.reset()
