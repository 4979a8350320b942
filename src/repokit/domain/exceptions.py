"""
Repository Exception Definitions

Defines every exception the engine raises. Validation errors (filters,
usage, nesting) are raised before any backend call; backend errors are
mapped once by the backend adapter and never retried.
"""

# Standard library imports
from typing import Any


class RepositoryError(Exception):
    """Base exception for repository operations."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class ConstraintViolation(RepositoryError):
    """Raised when a uniqueness or foreign-key constraint is breached."""

    def __init__(
        self, constraint: str, message: str | None = None, cause: Exception | None = None
    ) -> None:
        msg = f"Integrity constraint '{constraint}' violated"
        if message:
            msg += f": {message}"
        super().__init__(msg, cause)
        self.constraint = constraint


class ConnectivityError(RepositoryError):
    """Raised when the backend transport fails or cannot be reached."""

    def __init__(
        self, message: str = "Database connection failed", cause: Exception | None = None
    ) -> None:
        super().__init__(message, cause)


class BackendError(RepositoryError):
    """Raised for any other failure reported by the storage backend."""

    pass


class UsageError(RepositoryError):
    """Raised when the engine is called in a way its contract forbids."""

    pass


class TransactionError(RepositoryError):
    """Base exception for transaction operations."""

    pass


class NestedTransactionError(TransactionError, UsageError):
    """Raised when a transaction is opened on a handle that already has one."""

    def __init__(self) -> None:
        super().__init__("Transaction is already active; nested transactions are not supported")


class TransactionNotActiveError(TransactionError, UsageError):
    """Raised when an operation requires an active transaction but none exists."""

    def __init__(self, operation: str = "operation") -> None:
        super().__init__(f"'{operation}' requires an active transaction")
        self.operation = operation


class FilterError(RepositoryError):
    """Base exception for invalid filter expressions."""

    pass


class FilterFieldError(FilterError):
    """Raised when a filter or order key names a field the entity does not have."""

    def __init__(self, field: str, known_fields: Any = ()) -> None:
        known = ", ".join(sorted(known_fields))
        message = f"Unknown field '{field}'"
        if known:
            message += f" (known fields: {known})"
        super().__init__(message)
        self.field = field


class FilterTypeError(FilterError):
    """Raised when an operator is applied to values of an incompatible variant."""

    pass


class SerializationError(RepositoryError):
    """Raised when an entity cannot be dumped to or loaded from a record."""

    def __init__(self, entity_type: str, message: str, cause: Exception | None = None) -> None:
        super().__init__(f"{entity_type} serialization failed: {message}", cause)
        self.entity_type = entity_type
