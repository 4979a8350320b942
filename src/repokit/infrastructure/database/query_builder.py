"""
Parameterized SQL Query Builder.

Builds the handful of statement shapes the PostgreSQL backend issues.
Structure (table and column names) is validated and quoted; data is
always bound through ``%s`` placeholders, never concatenated.

Usage Examples:
    # SELECT query
    query = (QueryBuilder()
        .select(['id', 'name'])
        .from_table('users')
        .where('"status" = %s', ['active'])
        .order_by('name', 'DESC', collate_c=True)
        .limit(10)
        .build())

    # INSERT query
    query = (QueryBuilder()
        .insert_into('users', ['name', 'email'])
        .values(['Jane', 'jane@example.com'])
        .build())

    # UPDATE query
    query = (QueryBuilder()
        .update('users')
        .set({'name': 'Jane'})
        .where('"id" = %s', [123])
        .build())
"""

# Standard library imports
import logging
import re
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

# Local imports
from repokit.domain.exceptions import UsageError

logger = logging.getLogger(__name__)

_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


class QueryType(Enum):
    """Enumeration of supported query types."""

    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class QueryBuilderError(UsageError):
    """Raised when query building fails due to validation or structure errors."""

    pass


def quote_identifier(identifier: str, context: str = "identifier") -> str:
    """
    Validate and double-quote a SQL identifier.

    Schema-qualified names (``schema.table``) are quoted part by part.

    Raises:
        QueryBuilderError: If any part is not a plain identifier
    """
    if not isinstance(identifier, str) or not identifier:
        raise QueryBuilderError(f"Invalid SQL {context}: {identifier!r}")
    parts = identifier.split(".")
    for part in parts:
        if not _IDENTIFIER_PATTERN.match(part):
            raise QueryBuilderError(f"Invalid SQL {context}: {identifier!r}")
    return ".".join(f'"{part}"' for part in parts)


class QueryResult:
    """
    Result of query building containing the SQL and parameters.

    This class encapsulates the final SQL query and its parameters,
    ensuring they can only be used together safely.
    """

    def __init__(self, sql: str, parameters: list[Any]):
        self.sql = sql
        self.parameters = parameters
        self._frozen = True

    def __setattr__(self, name: str, value: Any) -> None:
        """Prevent modification after creation."""
        if hasattr(self, "_frozen") and self._frozen and name != "_frozen":
            raise AttributeError("QueryResult is immutable after creation")
        super().__setattr__(name, value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QueryResult):
            return NotImplemented
        return self.sql == other.sql and self.parameters == other.parameters

    def __str__(self) -> str:
        return f"QueryResult(sql={self.sql!r}, parameters={self.parameters!r})"

    def __repr__(self) -> str:
        return self.__str__()


class QueryBuilder:
    """
    SQL query builder with automatic parameterization.

    - All data values are parameterized, including LIMIT and OFFSET
    - SQL identifiers (tables, columns) are validated and quoted
    - Query structure is validated before building
    """

    def __init__(self) -> None:
        """Initialize a new query builder."""
        self._query_type: QueryType | None = None
        self._select_columns: list[str] = []
        self._from_source: str | None = None
        self._where_clauses: list[str] = []
        self._where_parameters: list[Any] = []
        self._order_by_clauses: list[str] = []
        self._limit_count: int | None = None
        self._offset_count: int | None = None
        self._for_update = False

        # INSERT/UPDATE specific
        self._table: str | None = None
        self._insert_columns: list[str] = []
        self._insert_parameters: list[Any] = []
        self._set_clauses: list[str] = []
        self._set_parameters: list[Any] = []

    def _start(self, query_type: QueryType) -> None:
        if self._query_type is not None and self._query_type != query_type:
            raise QueryBuilderError(
                f"Cannot mix {query_type.value} with {self._query_type.value}"
            )
        self._query_type = query_type

    def select(self, columns: Sequence[str] | str) -> "QueryBuilder":
        """
        Add SELECT columns to the query.

        Args:
            columns: Column names to select, or ``"*"``

        Returns:
            Self for method chaining
        """
        self._start(QueryType.SELECT)

        if isinstance(columns, str):
            if columns.strip() == "*":
                self._select_columns.append("*")
            else:
                self._select_columns.append(quote_identifier(columns, "column"))
        else:
            self._select_columns.extend(quote_identifier(c, "column") for c in columns)

        return self

    def select_count(self) -> "QueryBuilder":
        """Select ``COUNT(*)`` as a column named ``count``."""
        self._start(QueryType.SELECT)
        self._select_columns.append('COUNT(*) AS "count"')
        return self

    def from_table(self, table: str) -> "QueryBuilder":
        """Set the FROM table for SELECT queries."""
        self._from_source = quote_identifier(table, "table")
        return self

    def from_subquery(self, sql: str, alias: str = "q") -> "QueryBuilder":
        """
        Read from a caller-supplied SELECT wrapped as a subquery.

        The statement is trusted; it carries no parameters of its own.
        """
        if not sql or not sql.strip():
            raise QueryBuilderError("Subquery cannot be empty")
        self._from_source = f"({sql.strip().rstrip(';')}) AS {quote_identifier(alias, 'alias')}"
        return self

    def where(self, condition: str, parameters: Sequence[Any]) -> "QueryBuilder":
        """
        Add WHERE condition with parameters.

        Args:
            condition: WHERE condition with parameter placeholders (%s)
            parameters: List of parameter values

        Returns:
            Self for method chaining
        """
        if not condition.strip():
            raise QueryBuilderError("WHERE condition cannot be empty")

        placeholder_count = condition.count("%s")
        if placeholder_count != len(parameters):
            raise QueryBuilderError(
                f"Parameter count mismatch: {placeholder_count} placeholders, {len(parameters)} parameters"
            )

        self._where_clauses.append(condition)
        self._where_parameters.extend(parameters)

        return self

    def order_by(
        self,
        column: str,
        direction: str = "ASC",
        *,
        collate_c: bool = False,
    ) -> "QueryBuilder":
        """
        Add ORDER BY clause.

        NULL sorts first ascending and last descending, matching the
        in-memory ordering.

        Args:
            column: Column name to order by
            direction: Sort direction (ASC or DESC)
            collate_c: Compare text by code point instead of the column collation

        Returns:
            Self for method chaining
        """
        quoted = quote_identifier(column, "order by column")

        direction = direction.upper()
        if direction not in ("ASC", "DESC"):
            raise QueryBuilderError(f"Invalid sort direction: {direction}")

        nulls = "NULLS FIRST" if direction == "ASC" else "NULLS LAST"
        collation = ' COLLATE "C"' if collate_c else ""
        self._order_by_clauses.append(f"{quoted}{collation} {direction} {nulls}")

        return self

    def limit(self, count: int) -> "QueryBuilder":
        """Add LIMIT clause."""
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise QueryBuilderError("LIMIT count must be a non-negative integer")
        self._limit_count = count
        return self

    def offset(self, count: int) -> "QueryBuilder":
        """Add OFFSET clause."""
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise QueryBuilderError("OFFSET count must be a non-negative integer")
        self._offset_count = count
        return self

    def for_update(self) -> "QueryBuilder":
        """Lock the selected rows until the enclosing transaction ends."""
        if self._query_type != QueryType.SELECT:
            raise QueryBuilderError("FOR UPDATE can only be used with SELECT")
        self._for_update = True
        return self

    def insert_into(self, table: str, columns: Sequence[str]) -> "QueryBuilder":
        """
        Start an INSERT query.

        Args:
            table: Table to insert into
            columns: Column names for the insert

        Returns:
            Self for method chaining
        """
        self._start(QueryType.INSERT)
        self._table = quote_identifier(table, "insert table")
        self._insert_columns = [quote_identifier(c, "insert column") for c in columns]
        return self

    def values(self, parameters: Sequence[Any]) -> "QueryBuilder":
        """Add the VALUES row for INSERT, one parameter per column."""
        if self._query_type != QueryType.INSERT:
            raise QueryBuilderError("VALUES can only be used with INSERT")

        if len(parameters) != len(self._insert_columns):
            raise QueryBuilderError(
                f"VALUES parameter count ({len(parameters)}) must match column count ({len(self._insert_columns)})"
            )

        self._insert_parameters = list(parameters)
        return self

    def update(self, table: str) -> "QueryBuilder":
        """Start an UPDATE query."""
        self._start(QueryType.UPDATE)
        self._table = quote_identifier(table, "update table")
        return self

    def set(self, assignments: Mapping[str, Any]) -> "QueryBuilder":
        """
        Add SET clause for UPDATE.

        Args:
            assignments: Column name → new value

        Returns:
            Self for method chaining
        """
        if self._query_type != QueryType.UPDATE:
            raise QueryBuilderError("SET can only be used with UPDATE")

        for column, value in assignments.items():
            self._set_clauses.append(f"{quote_identifier(column, 'set column')} = %s")
            self._set_parameters.append(value)

        return self

    def delete_from(self, table: str) -> "QueryBuilder":
        """Start a DELETE query."""
        self._start(QueryType.DELETE)
        self._table = quote_identifier(table, "delete table")
        return self

    def build(self) -> QueryResult:
        """
        Build the final SQL query with parameters.

        Returns:
            QueryResult containing SQL and parameters

        Raises:
            QueryBuilderError: If query structure is invalid
        """
        if self._query_type is None:
            raise QueryBuilderError("No query type specified")

        if self._query_type == QueryType.SELECT:
            return self._build_select()
        elif self._query_type == QueryType.INSERT:
            return self._build_insert()
        elif self._query_type == QueryType.UPDATE:
            return self._build_update()
        else:
            return self._build_delete()

    def _where_sql(self) -> str | None:
        if not self._where_clauses:
            return None
        return "WHERE " + " AND ".join(f"({clause})" for clause in self._where_clauses)

    def _build_select(self) -> QueryResult:
        """Build SELECT query."""
        if not self._select_columns:
            raise QueryBuilderError("SELECT query must have columns")
        if not self._from_source:
            raise QueryBuilderError("SELECT query must have a FROM source")

        sql_parts = ["SELECT " + ", ".join(self._select_columns)]
        sql_parts.append(f"FROM {self._from_source}")
        all_parameters = []

        where = self._where_sql()
        if where:
            sql_parts.append(where)
            all_parameters.extend(self._where_parameters)

        if self._order_by_clauses:
            sql_parts.append("ORDER BY " + ", ".join(self._order_by_clauses))

        if self._limit_count is not None:
            sql_parts.append("LIMIT %s")
            all_parameters.append(self._limit_count)

        if self._offset_count is not None:
            sql_parts.append("OFFSET %s")
            all_parameters.append(self._offset_count)

        if self._for_update:
            sql_parts.append("FOR UPDATE")

        return QueryResult(" ".join(sql_parts), all_parameters)

    def _build_insert(self) -> QueryResult:
        """Build INSERT query."""
        if not self._insert_columns:
            raise QueryBuilderError("INSERT query must have columns")
        if len(self._insert_parameters) != len(self._insert_columns):
            raise QueryBuilderError("INSERT query must have VALUES")

        columns_str = ", ".join(self._insert_columns)
        placeholders = ", ".join(["%s"] * len(self._insert_columns))
        sql = f"INSERT INTO {self._table} ({columns_str}) VALUES ({placeholders})"

        return QueryResult(sql, list(self._insert_parameters))

    def _build_update(self) -> QueryResult:
        """Build UPDATE query."""
        if not self._set_clauses:
            raise QueryBuilderError("UPDATE query must have SET clauses")

        sql_parts = [f"UPDATE {self._table}"]
        sql_parts.append("SET " + ", ".join(self._set_clauses))
        all_parameters = list(self._set_parameters)

        where = self._where_sql()
        if where:
            sql_parts.append(where)
            all_parameters.extend(self._where_parameters)

        return QueryResult(" ".join(sql_parts), all_parameters)

    def _build_delete(self) -> QueryResult:
        """Build DELETE query."""
        sql_parts = [f"DELETE FROM {self._table}"]
        all_parameters = []

        where = self._where_sql()
        if where:
            sql_parts.append(where)
            all_parameters.extend(self._where_parameters)
        else:
            logger.warning(f"DELETE on {self._table} without WHERE clause removes every row")

        return QueryResult(" ".join(sql_parts), all_parameters)
