"""
Application Interfaces - Backend and Repository Contracts

This module defines the interface contracts that the infrastructure layer
must implement. Following the dependency inversion principle, the application
layer defines what it needs, and the infrastructure layer provides it.
"""

from .backend import IDatabase, TableSource
from .repositories import IRepository
from .unit_of_work import ITransactionManager, IUnitOfWork

__all__ = [
    # Backend interfaces
    "IDatabase",
    "TableSource",
    # Repository interfaces
    "IRepository",
    # Unit of Work interfaces
    "IUnitOfWork",
    "ITransactionManager",
]
