"""
Repository implementations.

The generic repository engine and the unit-of-work / transaction
management shared by both backends.
"""

from .repository import Repository
from .unit_of_work import (
    MemoryUnitOfWork,
    PostgreSQLUnitOfWork,
    TransactionManager,
    create_unit_of_work,
)

__all__ = [
    "Repository",
    "PostgreSQLUnitOfWork",
    "MemoryUnitOfWork",
    "TransactionManager",
    "create_unit_of_work",
]
