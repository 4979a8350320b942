"""
Write statements produced by repository hooks.

Hooks return a list of these; the backend executes them in order inside
the same atomic unit as the primary write. The engine never inspects
their content.
"""

from __future__ import annotations

# Standard library imports
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from .filters import Filter


@dataclass(frozen=True)
class InsertStatement:
    """Insert one record into ``table``."""

    table: str
    values: Mapping[str, Any]


@dataclass(frozen=True)
class UpdateStatement:
    """Overwrite ``values`` on every record of ``table`` matching ``where``."""

    table: str
    where: Filter
    values: Mapping[str, Any]


@dataclass(frozen=True)
class DeleteStatement:
    """Remove every record of ``table`` matching ``where``."""

    table: str
    where: Filter


@dataclass(frozen=True)
class SqlStatement:
    """Raw parameterized SQL; only the relational backend can run it."""

    sql: str
    params: Sequence[Any] = field(default_factory=tuple)


WriteStatement = Union[InsertStatement, UpdateStatement, DeleteStatement, SqlStatement]
