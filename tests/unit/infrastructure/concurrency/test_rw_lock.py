"""
Unit tests for the async reader/writer lock.

Tests cover:
- Shared readers
- Exclusive writers
- Writer preference
- Release on cancellation
"""

import asyncio

import pytest

from repokit.infrastructure.concurrency import AsyncReadWriteLock


async def _settle() -> None:
    """Let every runnable task take a step."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.mark.unit
class TestAsyncReadWriteLock:
    """Test AsyncReadWriteLock behaviour."""

    @pytest.mark.asyncio
    async def test_readers_share(self):
        lock = AsyncReadWriteLock()

        async with lock.read_lock():
            async with lock.read_lock():
                assert lock.readers == 2

        assert lock.readers == 0

    @pytest.mark.asyncio
    async def test_writer_excludes_readers(self):
        lock = AsyncReadWriteLock()
        events: list[str] = []

        async def reader():
            async with lock.read_lock():
                events.append("read")

        async with lock.write_lock():
            assert lock.is_write_locked
            task = asyncio.create_task(reader())
            await _settle()
            assert events == []

        await task
        assert events == ["read"]
        assert not lock.is_write_locked

    @pytest.mark.asyncio
    async def test_writer_waits_for_readers(self):
        lock = AsyncReadWriteLock()
        events: list[str] = []

        async def writer():
            async with lock.write_lock():
                events.append("write")

        async with lock.read_lock():
            task = asyncio.create_task(writer())
            await _settle()
            assert events == []

        await task
        assert events == ["write"]

    @pytest.mark.asyncio
    async def test_waiting_writer_blocks_new_readers(self):
        """A queued writer goes before readers that arrive after it."""
        lock = AsyncReadWriteLock()
        events: list[str] = []

        async def writer():
            async with lock.write_lock():
                events.append("write")

        async def late_reader():
            async with lock.read_lock():
                events.append("read")

        async with lock.read_lock():
            writer_task = asyncio.create_task(writer())
            await _settle()
            reader_task = asyncio.create_task(late_reader())
            await _settle()
            assert events == []

        await asyncio.gather(writer_task, reader_task)
        assert events == ["write", "read"]

    @pytest.mark.asyncio
    async def test_cancelled_writer_unblocks_readers(self):
        lock = AsyncReadWriteLock()
        events: list[str] = []

        async def writer():
            async with lock.write_lock():
                events.append("write")

        async def late_reader():
            async with lock.read_lock():
                events.append("read")

        async with lock.read_lock():
            writer_task = asyncio.create_task(writer())
            await _settle()
            reader_task = asyncio.create_task(late_reader())
            await _settle()

            writer_task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await writer_task

            await reader_task
            assert events == ["read"]

    @pytest.mark.asyncio
    async def test_lock_released_when_block_raises(self):
        lock = AsyncReadWriteLock()

        with pytest.raises(ValueError):
            async with lock.write_lock():
                raise ValueError("boom")

        assert not lock.is_write_locked
        async with lock.read_lock():
            assert lock.readers == 1

    @pytest.mark.asyncio
    async def test_unbalanced_release(self):
        lock = AsyncReadWriteLock()

        with pytest.raises(RuntimeError):
            await lock.release_read()
        with pytest.raises(RuntimeError):
            await lock.release_write()
