"""
Filter Algebra

Filters are pure data: a closed tree of comparison leaves and boolean
combinators over named fields. Building one never touches storage. The
relational compiler and the in-memory evaluator both walk the same four
node types, so each of them can be checked exhaustively against it.

Semantics shared by both interpreters:

- ``eq(f, None)`` matches exactly the rows where ``f`` is NULL.
- ``not_eq(f, v)`` matches only non-NULL values different from ``v``, so
  it is not the same as ``not_(eq(f, v))`` on NULL rows.
- Ordering and string operators never match a NULL stored value.
- ``in_set(f, [])`` matches nothing; NULL inside the set matches NULL rows.
- ``and_([])`` matches everything and ``or_([])`` matches nothing.
- ``not_`` is plain boolean negation; there is no SQL-style UNKNOWN.
"""

from __future__ import annotations

# Standard library imports
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from .exceptions import FilterFieldError, FilterTypeError
from .value_objects.value import Value, ValueKind


class Operator(Enum):
    """Comparison operators available on a single field."""

    EQ = "eq"
    NOT_EQ = "not_eq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_NULL = "is_null"
    IN_SET = "in_set"


ORDERING_OPERATORS = frozenset({Operator.GT, Operator.GTE, Operator.LT, Operator.LTE})
STRING_OPERATORS = frozenset({Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH})


class _Combinable:
    """Lets filters be combined with ``&``, ``|`` and ``~``."""

    def __and__(self, other: Filter) -> And:
        return and_([self, other])  # type: ignore[list-item]

    def __or__(self, other: Filter) -> Or:
        return or_([self, other])  # type: ignore[list-item]

    def __invert__(self) -> Not:
        return not_(self)  # type: ignore[arg-type]


@dataclass(frozen=True)
class Compare(_Combinable):
    """Leaf node comparing one field with an operand.

    ``operand`` is a Value for scalar operators, a tuple of Values for
    IN_SET and None for IS_NULL.
    """

    field: str
    operator: Operator
    operand: Value | tuple[Value, ...] | None = None


@dataclass(frozen=True)
class And(_Combinable):
    filters: tuple[Filter, ...] = ()


@dataclass(frozen=True)
class Or(_Combinable):
    filters: tuple[Filter, ...] = ()


@dataclass(frozen=True)
class Not(_Combinable):
    filter: Filter


Filter = Union[Compare, And, Or, Not]


def _field_name(field: str) -> str:
    if not isinstance(field, str) or not field:
        raise FilterFieldError(str(field))
    return field


def _scalar(operator: Operator, field: str, value: Any) -> Compare:
    return Compare(_field_name(field), operator, Value.of(value))


def _ordered(operator: Operator, field: str, value: Any) -> Compare:
    operand = Value.of(value)
    if operand.is_null:
        raise FilterTypeError(f"'{operator.value}' on '{field}' cannot compare with null")
    return Compare(_field_name(field), operator, operand)


def _text(operator: Operator, field: str, value: Any) -> Compare:
    if not isinstance(value, str):
        raise FilterTypeError(
            f"'{operator.value}' on '{field}' needs a text operand, got {type(value).__name__}"
        )
    return Compare(_field_name(field), operator, Value.of(value))


def eq(field: str, value: Any) -> Compare:
    return _scalar(Operator.EQ, field, value)


def not_eq(field: str, value: Any) -> Compare:
    return _scalar(Operator.NOT_EQ, field, value)


def gt(field: str, value: Any) -> Compare:
    return _ordered(Operator.GT, field, value)


def gte(field: str, value: Any) -> Compare:
    return _ordered(Operator.GTE, field, value)


def lt(field: str, value: Any) -> Compare:
    return _ordered(Operator.LT, field, value)


def lte(field: str, value: Any) -> Compare:
    return _ordered(Operator.LTE, field, value)


def contains(field: str, value: str) -> Compare:
    """Case-sensitive substring test on a text field."""
    return _text(Operator.CONTAINS, field, value)


def starts_with(field: str, value: str) -> Compare:
    return _text(Operator.STARTS_WITH, field, value)


def ends_with(field: str, value: str) -> Compare:
    return _text(Operator.ENDS_WITH, field, value)


def is_null(field: str) -> Compare:
    return Compare(_field_name(field), Operator.IS_NULL)


def is_not_null(field: str) -> Compare:
    return not_eq(field, None)


def in_set(field: str, values: Iterable[Any]) -> Compare:
    """Match rows whose field equals any of ``values``.

    Raises:
        FilterTypeError: If the non-null elements mix variants
    """
    if isinstance(values, (str, bytes)):
        raise FilterTypeError(f"'in_set' on '{field}' needs a collection, not a string")
    operands = tuple(Value.of(v) for v in values)
    kinds = {v.kind for v in operands if not v.is_null}
    if len(kinds) > 1:
        names = ", ".join(sorted(k.value for k in kinds))
        raise FilterTypeError(f"'in_set' on '{field}' mixes value variants: {names}")
    return Compare(_field_name(field), Operator.IN_SET, operands)


def between(field: str, low: Any, high: Any) -> And:
    """Inclusive range; shorthand for ``gte`` and ``lte`` on the same field."""
    return and_([gte(field, low), lte(field, high)])


def and_(filters: Iterable[Filter]) -> And:
    return And(tuple(filters))


def or_(filters: Iterable[Filter]) -> Or:
    return Or(tuple(filters))


def not_(filter: Filter) -> Not:
    return Not(filter)


def referenced_fields(expr: Filter) -> set[str]:
    """Collect every field name a filter touches."""
    if isinstance(expr, Compare):
        return {expr.field}
    if isinstance(expr, (And, Or)):
        fields: set[str] = set()
        for sub in expr.filters:
            fields |= referenced_fields(sub)
        return fields
    if isinstance(expr, Not):
        return referenced_fields(expr.filter)
    raise FilterTypeError(f"Not a filter expression: {expr!r}")


def _check_operand(expr: Compare, kind: ValueKind) -> Compare:
    if expr.operator in STRING_OPERATORS and kind is not ValueKind.TEXT:
        raise FilterTypeError(
            f"'{expr.operator.value}' is only valid on text fields; '{expr.field}' is {kind.value}"
        )
    try:
        if expr.operator is Operator.IS_NULL:
            return expr
        if expr.operator is Operator.IN_SET:
            if not isinstance(expr.operand, tuple):
                raise FilterTypeError(f"in_set operand must be a tuple of values: {expr.operand!r}")
            return Compare(
                expr.field, expr.operator, tuple(v.coerce_to(kind) for v in expr.operand)
            )
        if not isinstance(expr.operand, Value):
            raise FilterTypeError(f"Operand must be a value: {expr.operand!r}")
        return Compare(expr.field, expr.operator, expr.operand.coerce_to(kind))
    except FilterTypeError as e:
        raise FilterTypeError(f"Field '{expr.field}': {e}") from e


def validate_filter(expr: Filter, fields: Mapping[str, ValueKind]) -> Filter:
    """Check a filter against a record shape.

    Args:
        expr: Filter expression
        fields: Declared field name → variant mapping

    Returns:
        An equivalent filter whose operands carry the declared variants
        (integers used against decimal fields are widened)

    Raises:
        FilterFieldError: If a field is not part of the shape
        FilterTypeError: If an operand does not fit the field's variant
    """
    if isinstance(expr, Compare):
        if expr.field not in fields:
            raise FilterFieldError(expr.field, fields.keys())
        return _check_operand(expr, fields[expr.field])
    if isinstance(expr, And):
        return And(tuple(validate_filter(sub, fields) for sub in expr.filters))
    if isinstance(expr, Or):
        return Or(tuple(validate_filter(sub, fields) for sub in expr.filters))
    if isinstance(expr, Not):
        return Not(validate_filter(expr.filter, fields))
    raise FilterTypeError(f"Not a filter expression: {expr!r}")
