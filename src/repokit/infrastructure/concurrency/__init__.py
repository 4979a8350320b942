"""Concurrency primitives shared by the in-memory backend."""

from .rw_lock import AsyncReadWriteLock

__all__ = ["AsyncReadWriteLock"]
