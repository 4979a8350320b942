"""
Filter-to-SQL compiler.

Turns a filter tree into a PostgreSQL predicate plus bound parameters,
and assembles the full statements the relational backend runs.

Every leaf compiles to an expression that is never NULL, so ``NOT``,
``AND`` and ``OR`` behave as plain two-valued logic and agree with the
in-memory evaluator row for row. Text comparisons and text ordering use
``COLLATE "C"`` so that both backends order strings by code point.
"""

# Standard library imports
import logging
from collections.abc import Mapping
from typing import Any

# Local imports
from repokit.application.interfaces.backend import TableSource
from repokit.domain.exceptions import FilterTypeError, UsageError
from repokit.domain.filters import (
    And,
    Compare,
    Filter,
    Not,
    Operator,
    Or,
)
from repokit.domain.query import Direction, Query
from repokit.domain.statements import (
    DeleteStatement,
    InsertStatement,
    SqlStatement,
    UpdateStatement,
    WriteStatement,
)
from repokit.domain.value_objects.value import Record, Value, ValueKind

from .query_builder import QueryBuilder, QueryResult, quote_identifier

logger = logging.getLogger(__name__)

_COMPARISON_SQL = {
    Operator.EQ: "=",
    Operator.NOT_EQ: "<>",
    Operator.GT: ">",
    Operator.GTE: ">=",
    Operator.LT: "<",
    Operator.LTE: "<=",
}

_ALWAYS = "TRUE"
_NEVER = "FALSE"


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so the operand matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _like_pattern(operator: Operator, text: str) -> str:
    escaped = escape_like(text)
    if operator is Operator.CONTAINS:
        return f"%{escaped}%"
    if operator is Operator.STARTS_WITH:
        return f"{escaped}%"
    return f"%{escaped}"


def _scalar_operand(expr: Compare) -> Value:
    if not isinstance(expr.operand, Value):
        raise FilterTypeError(f"'{expr.operator.value}' on '{expr.field}' needs a single value")
    return expr.operand


def _compile_compare(expr: Compare) -> tuple[str, list[Any]]:
    column = quote_identifier(expr.field, "filter field")
    operator = expr.operator

    if operator is Operator.IS_NULL:
        return f"{column} IS NULL", []

    if operator is Operator.IN_SET:
        operands = expr.operand if isinstance(expr.operand, tuple) else ()
        wants_null = any(v.is_null for v in operands)
        present = [v.data for v in operands if not v.is_null]
        if not present:
            return (f"{column} IS NULL", []) if wants_null else (_NEVER, [])
        if wants_null:
            return f"({column} IS NULL OR {column} = ANY(%s))", [present]
        return f"({column} IS NOT NULL AND {column} = ANY(%s))", [present]

    operand = _scalar_operand(expr)

    if operator is Operator.EQ and operand.is_null:
        return f"{column} IS NULL", []
    if operator is Operator.NOT_EQ and operand.is_null:
        return f"{column} IS NOT NULL", []

    if operator in _COMPARISON_SQL:
        collation = ' COLLATE "C"' if operand.kind is ValueKind.TEXT else ""
        sql_op = _COMPARISON_SQL[operator]
        return f"({column} IS NOT NULL AND {column}{collation} {sql_op} %s)", [operand.data]

    # contains / starts_with / ends_with
    return (
        f"({column} IS NOT NULL AND {column} LIKE %s)",
        [_like_pattern(operator, operand.data)],
    )


def compile_filter(expr: Filter) -> tuple[str, list[Any]]:
    """
    Compile a filter into a predicate and its parameters.

    Args:
        expr: Filter expression (normally already shape-validated)

    Returns:
        Tuple of SQL predicate text and the parameters for its ``%s``
        placeholders, in order

    Raises:
        FilterTypeError: If ``expr`` is not a filter node
    """
    if isinstance(expr, Compare):
        return _compile_compare(expr)

    if isinstance(expr, (And, Or)):
        if not expr.filters:
            return (_ALWAYS, []) if isinstance(expr, And) else (_NEVER, [])
        joiner = " AND " if isinstance(expr, And) else " OR "
        parts: list[str] = []
        params: list[Any] = []
        for sub in expr.filters:
            sql, sub_params = compile_filter(sub)
            parts.append(sql)
            params.extend(sub_params)
        if len(parts) == 1:
            return parts[0], params
        return "(" + joiner.join(parts) + ")", params

    if isinstance(expr, Not):
        sql, params = compile_filter(expr.filter)
        return f"(NOT {sql})", params

    raise FilterTypeError(f"Not a filter expression: {expr!r}")


def _source_builder(builder: QueryBuilder, source: TableSource) -> QueryBuilder:
    if source.read is not None and source.read.sql:
        return builder.from_subquery(source.read.sql)
    return builder.from_table(source.table)


def _apply_where(builder: QueryBuilder, where: Filter | None) -> QueryBuilder:
    if where is None:
        return builder
    sql, params = compile_filter(where)
    return builder.where(sql, params)


def build_select(source: TableSource, query: Query, *, for_update: bool = False) -> QueryResult:
    """
    Build the SELECT for a query.

    Rows tied on every order key fall back to the declared key columns,
    so the relational natural order is primary-key order.
    """
    builder = QueryBuilder()
    if source.read is not None and source.read.sql:
        builder.select("*")
    else:
        builder.select(list(source.fields))
    _source_builder(builder, source)
    _apply_where(builder, query.where)

    ordered = set()
    for key in query.ordering:
        kind = source.fields.get(key.field)
        builder.order_by(
            key.field,
            "DESC" if key.direction is Direction.DESC else "ASC",
            collate_c=kind is ValueKind.TEXT,
        )
        ordered.add(key.field)
    for name in source.key:
        if name not in ordered:
            builder.order_by(name, "ASC", collate_c=source.fields.get(name) is ValueKind.TEXT)

    if query.max_rows is not None:
        builder.limit(query.max_rows)
    if query.skip:
        builder.offset(query.skip)
    if for_update:
        builder.for_update()
    return builder.build()


def build_exists(source: TableSource, where: Filter) -> QueryResult:
    inner = _apply_where(_source_builder(QueryBuilder().select("*"), source), where).build()
    return QueryResult(f'SELECT EXISTS({inner.sql}) AS "exists"', inner.parameters)


def build_count(source: TableSource, where: Filter | None) -> QueryResult:
    return _apply_where(_source_builder(QueryBuilder().select_count(), source), where).build()


def build_insert(table: str, values: Mapping[str, Any]) -> QueryResult:
    return QueryBuilder().insert_into(table, list(values)).values(list(values.values())).build()


def build_update(table: str, where: Filter, values: Mapping[str, Any]) -> QueryResult:
    builder = QueryBuilder().update(table).set(values)
    return _apply_where(builder, where).build()


def build_delete(table: str, where: Filter) -> QueryResult:
    return _apply_where(QueryBuilder().delete_from(table), where).build()


def record_parameters(record: Record) -> dict[str, Any]:
    """Plain driver values for every field of a record, in field order."""
    return {name: value.data for name, value in record.tagged().items()}


def _plain(values: Mapping[str, Any]) -> dict[str, Any]:
    return {name: Value.of(obj).data for name, obj in values.items()}


def build_statement(statement: WriteStatement) -> QueryResult:
    """
    Build one hook statement.

    Raises:
        UsageError: If ``statement`` is not a known write statement
    """
    if isinstance(statement, InsertStatement):
        return build_insert(statement.table, _plain(statement.values))
    if isinstance(statement, UpdateStatement):
        return build_update(statement.table, statement.where, _plain(statement.values))
    if isinstance(statement, DeleteStatement):
        return build_delete(statement.table, statement.where)
    if isinstance(statement, SqlStatement):
        return QueryResult(statement.sql, list(statement.params))
    raise UsageError(f"Unsupported write statement: {statement!r}")
