"""
Async reader/writer lock.

Any number of readers may hold the lock together; a writer holds it
alone. Waiting writers block new readers so a steady stream of reads
cannot starve a transaction.
"""

# Standard library imports
import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


class AsyncReadWriteLock:
    """Writer-preferring reader/writer lock for asyncio tasks."""

    def __init__(self) -> None:
        self._condition = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        """Number of tasks currently holding the shared lock."""
        return self._readers

    @property
    def is_write_locked(self) -> bool:
        """True while a writer holds the exclusive lock."""
        return self._writer

    async def acquire_read(self) -> None:
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._writer and self._waiting_writers == 0
            )
            self._readers += 1

    async def release_read(self) -> None:
        async with self._condition:
            if self._readers <= 0:
                raise RuntimeError("release_read called without a matching acquire_read")
            self._readers -= 1
            if self._readers == 0:
                self._condition.notify_all()

    async def acquire_write(self) -> None:
        async with self._condition:
            self._waiting_writers += 1
            try:
                await self._condition.wait_for(lambda: not self._writer and self._readers == 0)
            except BaseException:
                self._waiting_writers -= 1
                # readers may have been held back by this writer
                self._condition.notify_all()
                raise
            self._waiting_writers -= 1
            self._writer = True

    async def release_write(self) -> None:
        async with self._condition:
            if not self._writer:
                raise RuntimeError("release_write called without a matching acquire_write")
            self._writer = False
            self._condition.notify_all()

    @asynccontextmanager
    async def read_lock(self) -> AsyncGenerator[None, None]:
        """Hold the shared lock for the duration of the block."""
        await self.acquire_read()
        try:
            yield
        finally:
            # shielded so a second cancellation cannot leak the lock
            await asyncio.shield(self.release_read())

    @asynccontextmanager
    async def write_lock(self) -> AsyncGenerator[None, None]:
        """Hold the exclusive lock for the duration of the block."""
        await self.acquire_write()
        try:
            yield
        finally:
            await asyncio.shield(self.release_write())

    def __repr__(self) -> str:
        return (
            f"AsyncReadWriteLock(readers={self._readers}, writer={self._writer}, "
            f"waiting_writers={self._waiting_writers})"
        )
