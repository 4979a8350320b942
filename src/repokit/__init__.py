"""
repokit - backend-agnostic repositories over PostgreSQL and an in-memory store.

Callers describe what they want with a filter/query algebra and a small
set of verbs; the same repository runs unchanged against PostgreSQL
(psycopg 3) or a concurrent in-memory document store.
"""

from repokit.domain.exceptions import (
    BackendError,
    ConnectivityError,
    ConstraintViolation,
    FilterError,
    FilterFieldError,
    FilterTypeError,
    NestedTransactionError,
    RepositoryError,
    SerializationError,
    TransactionError,
    TransactionNotActiveError,
    UsageError,
)
from repokit.domain.filters import (
    And,
    Compare,
    Filter,
    Not,
    Operator,
    Or,
    and_,
    between,
    contains,
    ends_with,
    eq,
    gt,
    gte,
    in_set,
    is_not_null,
    is_null,
    lt,
    lte,
    not_,
    not_eq,
    or_,
    starts_with,
)
from repokit.domain.mapping import EntityMapping, ReadStatement
from repokit.domain.query import Direction, OrderBy, Query, asc, desc
from repokit.domain.statements import (
    DeleteStatement,
    InsertStatement,
    SqlStatement,
    UpdateStatement,
)
from repokit.domain.value_objects import NULL, Record, Value, ValueKind
from repokit.infrastructure.config import DatabaseConfig
from repokit.infrastructure.database import ConnectionFactory, PostgreSQLDatabase
from repokit.infrastructure.memory import MemoryDatabase, MemoryStore
from repokit.infrastructure.repositories import (
    MemoryUnitOfWork,
    PostgreSQLUnitOfWork,
    Repository,
    TransactionManager,
)

__version__ = "0.1.0"

__all__ = [
    # Values
    "NULL",
    "Record",
    "Value",
    "ValueKind",
    # Filters
    "And",
    "Compare",
    "Filter",
    "Not",
    "Operator",
    "Or",
    "and_",
    "between",
    "contains",
    "ends_with",
    "eq",
    "gt",
    "gte",
    "in_set",
    "is_not_null",
    "is_null",
    "lt",
    "lte",
    "not_",
    "not_eq",
    "or_",
    "starts_with",
    # Queries
    "Direction",
    "OrderBy",
    "Query",
    "asc",
    "desc",
    # Mapping and statements
    "EntityMapping",
    "ReadStatement",
    "InsertStatement",
    "UpdateStatement",
    "DeleteStatement",
    "SqlStatement",
    # Repositories and backends
    "Repository",
    "PostgreSQLDatabase",
    "MemoryDatabase",
    "MemoryStore",
    "ConnectionFactory",
    "DatabaseConfig",
    "PostgreSQLUnitOfWork",
    "MemoryUnitOfWork",
    "TransactionManager",
    # Errors
    "RepositoryError",
    "ConstraintViolation",
    "ConnectivityError",
    "BackendError",
    "UsageError",
    "TransactionError",
    "NestedTransactionError",
    "TransactionNotActiveError",
    "FilterError",
    "FilterFieldError",
    "FilterTypeError",
    "SerializationError",
]
