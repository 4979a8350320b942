"""Immutable value objects shared by the filter algebra and the backends."""

from .value import NULL, Record, Value, ValueKind

__all__ = ["NULL", "Record", "Value", "ValueKind"]
