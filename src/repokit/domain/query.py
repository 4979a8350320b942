"""Backend-agnostic query: filter, ordering, offset and limit."""

from __future__ import annotations

# Standard library imports
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from enum import Enum

from .exceptions import FilterFieldError, UsageError
from .filters import Filter, validate_filter
from .value_objects.value import ValueKind


class Direction(Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class OrderBy:
    """One sort key. NULL sorts first ascending and last descending."""

    field: str
    direction: Direction = Direction.ASC

    @classmethod
    def parse(cls, item: OrderBy | tuple[str, str | Direction] | str) -> OrderBy:
        """Accept ``OrderBy``, ``(field, "asc"|"desc")`` or a bare field name."""
        if isinstance(item, OrderBy):
            return item
        if isinstance(item, str):
            return cls(item)
        name, direction = item
        if isinstance(direction, str):
            try:
                direction = Direction(direction.lower())
            except ValueError as e:
                raise UsageError(f"Invalid sort direction: {direction}") from e
        return cls(name, direction)


def asc(field_name: str) -> OrderBy:
    return OrderBy(field_name, Direction.ASC)


def desc(field_name: str) -> OrderBy:
    return OrderBy(field_name, Direction.DESC)


def _non_negative(name: str, value: int | None) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise UsageError(f"{name} must be a non-negative integer, got {value!r}")
    return value


@dataclass(frozen=True)
class Query:
    """Filter + ordering + pagination.

    Evaluation order is always: filter, then a stable multi-key sort, then
    offset, then limit. Ties left after every key keep the backend's
    natural row order.

    Usage:
        Query().filter(eq("name", "Bob")).order([("name", "desc")]).limit(2)
    """

    where: Filter | None = None
    ordering: tuple[OrderBy, ...] = ()
    max_rows: int | None = None
    skip: int | None = None

    def __post_init__(self) -> None:
        _non_negative("limit", self.max_rows)
        _non_negative("offset", self.skip)

    def filter(self, expr: Filter | None) -> Query:
        return replace(self, where=expr)

    def order(self, items: Iterable[OrderBy | tuple[str, str | Direction] | str]) -> Query:
        return replace(self, ordering=tuple(OrderBy.parse(item) for item in items))

    def limit(self, n: int | None) -> Query:
        return replace(self, max_rows=_non_negative("limit", n))

    def offset(self, n: int | None) -> Query:
        return replace(self, skip=_non_negative("offset", n))

    @property
    def is_empty_page(self) -> bool:
        """True when the query can only ever return nothing."""
        return self.max_rows == 0

    def validated(self, fields: Mapping[str, ValueKind]) -> Query:
        """Return this query checked against a record shape.

        Raises:
            FilterFieldError: If the filter or an order key names an unknown field
            FilterTypeError: If a filter operand does not fit its field
        """
        for key in self.ordering:
            if key.field not in fields:
                raise FilterFieldError(key.field, fields.keys())
        if self.where is None:
            return self
        return replace(self, where=validate_filter(self.where, fields))
