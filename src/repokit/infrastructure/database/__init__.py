"""
Database infrastructure module.

Provides the PostgreSQL adapter, connection management, SQL generation
and the PostgreSQL backend handle.
"""

from .adapter import PostgreSQLAdapter
from .backend import PostgreSQLDatabase
from .connection import ConnectionFactory, DatabaseConnection
from .query_builder import QueryBuilder, QueryBuilderError, QueryResult

__all__ = [
    "PostgreSQLAdapter",
    "PostgreSQLDatabase",
    "DatabaseConnection",
    "ConnectionFactory",
    "QueryBuilder",
    "QueryBuilderError",
    "QueryResult",
]
