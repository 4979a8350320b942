"""In-memory backend: a shared document store for tests and prototyping."""

from .store import MemoryDatabase, MemoryStore

__all__ = ["MemoryDatabase", "MemoryStore"]
