"""Tagged scalar values and records shared by every backend."""

from __future__ import annotations

# Standard library imports
from collections.abc import Iterator, Mapping
from datetime import datetime
from decimal import Decimal
from enum import Enum
from functools import total_ordering
from typing import Any
from uuid import UUID

from ..exceptions import FilterTypeError


class ValueKind(Enum):
    """Closed set of scalar variants understood by both backends."""

    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    IDENTIFIER = "identifier"
    NULL = "null"


@total_ordering
class Value:
    """Immutable tagged scalar.

    NULL is a first-class variant: it equals only NULL and sorts before
    every other value. Between two non-NULL values, equality and ordering
    are only defined for the same variant; anything else raises
    FilterTypeError rather than silently returning False.
    """

    __slots__ = ("kind", "data")

    kind: ValueKind
    data: Any

    def __init__(self, kind: ValueKind, data: Any = None) -> None:
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "data", None if kind is ValueKind.NULL else data)

    @classmethod
    def of(cls, obj: Any) -> Value:
        """Build a Value from a plain Python object, inferring its variant.

        Args:
            obj: str, int, bool, Decimal, float, datetime, UUID, None or Value

        Returns:
            The tagged value

        Raises:
            FilterTypeError: If the object has no matching variant
        """
        if isinstance(obj, Value):
            return obj
        if obj is None:
            return NULL
        # bool is an int subclass, so it has to be checked first
        if isinstance(obj, bool):
            return cls(ValueKind.BOOLEAN, obj)
        if isinstance(obj, int):
            return cls(ValueKind.INTEGER, obj)
        if isinstance(obj, Decimal):
            return cls(ValueKind.DECIMAL, obj)
        if isinstance(obj, float):
            return cls(ValueKind.DECIMAL, Decimal(str(obj)))
        if isinstance(obj, str):
            return cls(ValueKind.TEXT, obj)
        if isinstance(obj, datetime):
            return cls(ValueKind.TIMESTAMP, obj)
        if isinstance(obj, UUID):
            return cls(ValueKind.IDENTIFIER, obj)
        raise FilterTypeError(f"Unsupported value type: {type(obj).__name__}")

    @property
    def is_null(self) -> bool:
        return self.kind is ValueKind.NULL

    def coerce_to(self, kind: ValueKind) -> Value:
        """Return this value as the given variant.

        NULL coerces to anything and integers widen to decimals; every
        other mismatch raises FilterTypeError.
        """
        if self.kind is kind or self.is_null:
            return self
        if self.kind is ValueKind.INTEGER and kind is ValueKind.DECIMAL:
            return Value(ValueKind.DECIMAL, Decimal(self.data))
        raise FilterTypeError(
            f"Cannot use {self.kind.value} value {self.data!r} as {kind.value}"
        )

    def _check_comparable(self, other: Value) -> None:
        if self.kind is not other.kind:
            raise FilterTypeError(
                f"Cannot compare {self.kind.value} with {other.kind.value}"
            )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        if self.is_null or other.is_null:
            return self.is_null and other.is_null
        self._check_comparable(other)
        return self.data == other.data

    def __lt__(self, other: Value) -> bool:
        if not isinstance(other, Value):
            return NotImplemented
        # NULL sorts before everything else
        if self.is_null or other.is_null:
            return self.is_null and not other.is_null
        self._check_comparable(other)
        try:
            return self.data < other.data
        except TypeError as e:
            # naive vs aware timestamps
            raise FilterTypeError(f"Cannot order {self.data!r} and {other.data!r}") from e

    def __hash__(self) -> int:
        return hash((self.kind, self.data))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError(f"Cannot modify immutable value attribute '{name}'")

    def __repr__(self) -> str:
        if self.is_null:
            return "Value(null)"
        return f"Value({self.kind.value}, {self.data!r})"


NULL = Value(ValueKind.NULL)


class Record(Mapping[str, Any]):
    """Insertion-ordered, read-only mapping from field name to Value.

    Indexing returns the plain Python object so that load functions can
    read a record the same way they would read a driver row; use
    :meth:`value` to get the tagged form.
    """

    __slots__ = ("_values", "_extras")

    def __init__(
        self,
        values: Mapping[str, Value] | None = None,
        extras: Mapping[str, Any] | None = None,
    ) -> None:
        self._values: dict[str, Value] = dict(values or {})
        # Non-scalar columns (arrays, json) produced by custom read statements
        self._extras: dict[str, Any] = dict(extras or {})

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> Record:
        return cls({name: Value.of(obj) for name, obj in data.items()})

    @classmethod
    def from_row(
        cls, row: Mapping[str, Any], fields: Mapping[str, ValueKind] | None = None
    ) -> Record:
        """Build a record from a driver row or document.

        Declared fields are tagged with their declared variant; columns
        outside the closed variant set are kept as extras for load.
        """
        fields = fields or {}
        values: dict[str, Value] = {}
        extras: dict[str, Any] = {}
        for name, obj in row.items():
            if name in fields:
                values[name] = Value.of(obj).coerce_to(fields[name])
                continue
            try:
                values[name] = Value.of(obj)
            except FilterTypeError:
                extras[name] = obj
        return cls(values, extras)

    def value(self, field: str) -> Value:
        return self._values[field]

    def value_or_null(self, field: str) -> Value:
        """Tagged value of ``field``, or NULL when the record lacks it."""
        return self._values.get(field, NULL)

    def tagged(self) -> dict[str, Value]:
        """Copy of the underlying field → Value mapping."""
        return dict(self._values)

    def conform(self, fields: Mapping[str, ValueKind]) -> Record:
        """Copy with every declared field coerced to its declared variant.

        Raises:
            FilterTypeError: If a stored value cannot take its field's variant
        """
        values = {
            name: value.coerce_to(fields[name]) if name in fields else value
            for name, value in self._values.items()
        }
        return Record(values, self._extras)

    def replace(self, values: Mapping[str, Value]) -> Record:
        merged = dict(self._values)
        merged.update(values)
        return Record(merged, self._extras)

    def __getitem__(self, field: str) -> Any:
        if field in self._values:
            return self._values[field].data
        return self._extras[field]

    def __iter__(self) -> Iterator[str]:
        yield from self._values
        yield from self._extras

    def __len__(self) -> int:
        return len(self._values) + len(self._extras)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Record):
            return self._key() == other._key()
        return super().__eq__(other)

    __hash__ = None  # type: ignore[assignment]

    def _key(self) -> tuple[list[tuple[str, ValueKind, Any]], dict[str, Any]]:
        return [(name, v.kind, v.data) for name, v in self._values.items()], self._extras

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v!r}" for k, v in self._values.items())
        return f"Record({fields})"
