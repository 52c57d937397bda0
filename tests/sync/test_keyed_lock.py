"""
Tests for per-key asyncio locks.
"""

import asyncio

import pytest

from indexsync.sync.keyed_lock import KeyedLock


class TestKeyedLock:
    """Test ordering and cleanup of KeyedLock"""

    @pytest.mark.asyncio
    async def test_same_key_runs_in_entry_order(self):
        locks = KeyedLock()
        order = []

        async def worker(name, delay):
            async with locks.hold("doc"):
                order.append(f"{name}-start")
                await asyncio.sleep(delay)
                order.append(f"{name}-end")

        await asyncio.gather(worker("first", 0.03), worker("second", 0.0), worker("third", 0.01))

        assert order == [
            "first-start", "first-end",
            "second-start", "second-end",
            "third-start", "third-end",
        ]

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        locks = KeyedLock()
        inside = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            async with locks.hold("a"):
                inside.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await inside.wait()

        async with locks.hold("b"):
            assert locks.is_locked("a")
            assert locks.is_locked("b")

        release.set()
        await task

    @pytest.mark.asyncio
    async def test_locks_are_released(self):
        locks = KeyedLock()

        async with locks.hold("doc"):
            assert len(locks) == 1

        assert len(locks) == 0
        assert not locks.is_locked("doc")

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = KeyedLock()

        with pytest.raises(RuntimeError):
            async with locks.hold("doc"):
                raise RuntimeError("boom")

        assert len(locks) == 0
