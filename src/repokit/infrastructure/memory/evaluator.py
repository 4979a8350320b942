"""
In-memory filter evaluator.

Walks the same filter tree the SQL compiler translates and evaluates it
directly against records. Both must agree row for row; see the module
docstring of ``repokit.domain.filters`` for the shared semantics.
"""

# Standard library imports
from collections.abc import Iterable, Sequence

# Local imports
from repokit.domain.exceptions import FilterTypeError
from repokit.domain.filters import (
    ORDERING_OPERATORS,
    And,
    Compare,
    Filter,
    Not,
    Operator,
    Or,
)
from repokit.domain.query import Direction, OrderBy, Query
from repokit.domain.value_objects.value import Record, Value, ValueKind


def _stored(record: Record, field: str) -> Value:
    # rows from a custom view may omit a field
    return record.value_or_null(field)


def _operand(expr: Compare) -> Value:
    if not isinstance(expr.operand, Value):
        raise FilterTypeError(f"'{expr.operator.value}' on '{expr.field}' needs a single value")
    return expr.operand


def _compare(expr: Compare, record: Record) -> bool:
    stored = _stored(record, expr.field)
    operator = expr.operator

    if operator is Operator.IS_NULL:
        return stored.is_null

    if operator is Operator.IN_SET:
        operands = expr.operand if isinstance(expr.operand, tuple) else ()
        return any(stored == candidate for candidate in operands)

    operand = _operand(expr)

    if operator is Operator.EQ:
        if operand.is_null:
            return stored.is_null
        return not stored.is_null and stored == operand

    if operator is Operator.NOT_EQ:
        if operand.is_null:
            return not stored.is_null
        return not stored.is_null and stored != operand

    if stored.is_null:
        return False

    if operator in ORDERING_OPERATORS:
        if operator is Operator.GT:
            return stored > operand
        if operator is Operator.GTE:
            return stored >= operand
        if operator is Operator.LT:
            return stored < operand
        return stored <= operand

    # contains / starts_with / ends_with
    if stored.kind is not ValueKind.TEXT:
        raise FilterTypeError(
            f"'{operator.value}' is only valid on text fields; '{expr.field}' holds {stored.kind.value}"
        )
    if operator is Operator.CONTAINS:
        return operand.data in stored.data
    if operator is Operator.STARTS_WITH:
        return stored.data.startswith(operand.data)
    return stored.data.endswith(operand.data)


def matches(expr: Filter, record: Record) -> bool:
    """
    Evaluate a filter against one record.

    Raises:
        FilterTypeError: If a comparison mixes value variants
    """
    if isinstance(expr, Compare):
        return _compare(expr, record)
    if isinstance(expr, And):
        return all(matches(sub, record) for sub in expr.filters)
    if isinstance(expr, Or):
        return any(matches(sub, record) for sub in expr.filters)
    if isinstance(expr, Not):
        return not matches(expr.filter, record)
    raise FilterTypeError(f"Not a filter expression: {expr!r}")


def select(records: Iterable[Record], where: Filter | None) -> list[Record]:
    """Records matching ``where`` (all of them when it is None), in input order."""
    if where is None:
        return list(records)
    return [record for record in records if matches(where, record)]


def sort_records(records: Sequence[Record], ordering: Sequence[OrderBy]) -> list[Record]:
    """
    Stable multi-key sort.

    Keys are applied right to left so the leftmost key wins; ties left
    after every key keep their input (insertion) order. NULL sorts first
    ascending and last descending.
    """
    result = list(records)
    for key in reversed(ordering):
        result.sort(
            key=lambda record, name=key.field: _stored(record, name),
            reverse=key.direction is Direction.DESC,
        )
    return result


def run_query(records: Iterable[Record], query: Query) -> list[Record]:
    """Filter, then sort, then offset, then limit."""
    if query.is_empty_page:
        return []
    rows = sort_records(select(records, query.where), query.ordering)
    start = query.skip or 0
    if query.max_rows is None:
        return rows[start:]
    return rows[start : start + query.max_rows]
