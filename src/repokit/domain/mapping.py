"""Entity ⇄ record mapping owned by a repository."""

from __future__ import annotations

# Standard library imports
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .exceptions import FilterTypeError, SerializationError
from .value_objects.value import Record, Value, ValueKind

T = TypeVar("T")

Snapshot = Mapping[str, Sequence[Record]]


@dataclass(frozen=True)
class ReadStatement:
    """Custom read source for a repository spanning several tables.

    ``sql`` is a SELECT the relational backend wraps as a subquery before
    applying filters, ordering and pagination. ``view`` receives a
    snapshot of the in-memory store (collection name → records in
    insertion order) and returns the rows to filter. A backend that finds
    no matching form reads the repository's own table.
    """

    sql: str | None = None
    view: Callable[[Snapshot], Iterable[Mapping[str, Any]]] | None = None


class EntityMapping(Generic[T]):
    """Pair of pure functions converting between an entity and its record.

    ``fields`` declares the record shape: every key ``dump`` produces and
    the variant stored under it. Filters and order keys are validated
    against this shape before any backend is called.
    """

    def __init__(
        self,
        fields: Mapping[str, ValueKind],
        dump: Callable[[T], Mapping[str, Any]],
        load: Callable[[Record], T],
        entity_name: str = "Entity",
    ) -> None:
        if not fields:
            raise ValueError("An entity mapping needs at least one field")
        self.fields: dict[str, ValueKind] = dict(fields)
        self.dump = dump
        self.load = load
        self.entity_name = entity_name

    def to_record(self, entity: T) -> Record:
        """Dump an entity and tag every value with its declared variant.

        Raises:
            SerializationError: If dump fails, misses or adds fields, or
                produces a value of the wrong variant
        """
        try:
            data = self.dump(entity)
        except Exception as e:
            raise SerializationError(self.entity_name, f"dump failed: {e}", e) from e

        missing = [name for name in self.fields if name not in data]
        extra = [name for name in data if name not in self.fields]
        if missing or extra:
            raise SerializationError(
                self.entity_name,
                f"dump produced an unexpected shape (missing={missing}, extra={extra})",
            )

        values: dict[str, Value] = {}
        for name, kind in self.fields.items():
            try:
                values[name] = Value.of(data[name]).coerce_to(kind)
            except FilterTypeError as e:
                raise SerializationError(self.entity_name, f"field '{name}': {e}", e) from e
        return Record(values)

    def from_record(self, record: Record) -> T:
        """Rebuild an entity from a record.

        Raises:
            SerializationError: If load cannot reconstruct the entity
        """
        try:
            return self.load(record)
        except SerializationError:
            raise
        except Exception as e:
            raise SerializationError(self.entity_name, f"load failed: {e}", e) from e

    def __repr__(self) -> str:
        return f"EntityMapping({self.entity_name}, fields={list(self.fields)})"
