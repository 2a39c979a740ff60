"""Tests for keyed locks with the in-process fallback."""

import asyncio

import pytest

from app.config import settings
from app.infra.redis import KeyedLock, LockTimeoutError


@pytest.fixture
def keyed():
    return KeyedLock("unit")


class TestLocalFallback:
    """Test per-key asyncio locks used when Redis is down."""

    @pytest.mark.asyncio
    async def test_released_locks_are_dropped(self, keyed):
        for i in range(1000):
            async with keyed.hold(f"anon-{i}"):
                pass

        assert keyed._local_locks == {}

    @pytest.mark.asyncio
    async def test_same_key_is_serialised(self, keyed):
        order = []
        inside = asyncio.Event()

        async def first():
            async with keyed.hold("patient-1"):
                inside.set()
                await asyncio.sleep(0.05)
                order.append("first")

        async def second():
            await inside.wait()
            async with keyed.hold("patient-1"):
                order.append("second")

        await asyncio.gather(first(), second())

        assert order == ["first", "second"]
        assert keyed._local_locks == {}

    @pytest.mark.asyncio
    async def test_waiter_keeps_entry_alive(self, keyed):
        release = asyncio.Event()
        inside = asyncio.Event()

        async def holder():
            async with keyed.hold("patient-1"):
                inside.set()
                await release.wait()

        task = asyncio.create_task(holder())
        await inside.wait()
        waiter = asyncio.create_task(self._enter(keyed, "patient-1"))
        await asyncio.sleep(0.01)

        lock, users = keyed._local_locks["patient-1"]
        assert users == 2

        release.set()
        await asyncio.gather(task, waiter)
        assert keyed._local_locks == {}

    @pytest.mark.asyncio
    async def test_timeout_raises_and_cleans_up(self, keyed, monkeypatch):
        monkeypatch.setattr(settings, "lock_wait_seconds", 0.05)

        async with keyed.hold("therapist-1"):
            with pytest.raises(LockTimeoutError):
                async with keyed.hold("therapist-1"):
                    pass

        assert keyed._local_locks == {}

    @staticmethod
    async def _enter(keyed: KeyedLock, key: str) -> None:
        async with keyed.hold(key):
            pass
