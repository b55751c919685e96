"""Tests for the per-intent lock."""

import asyncio
from unittest.mock import AsyncMock, Mock

from solver.core.lock import IntentLockManager


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestInMemoryLock:
    """Test process-local lock semantics."""

    def setup_method(self):
        self.clock = FakeClock()
        self.locks = IntentLockManager(clock=self.clock)

    def test_backend(self):
        assert self.locks.backend == "memory"

    def test_lock_lifecycle(self):
        async def scenario():
            assert await self.locks.lock("intent:1", 5000)
            assert not await self.locks.lock("intent:1", 5000)
            assert await self.locks.lock("intent:2", 5000)
            await self.locks.unlock("intent:1")
            assert await self.locks.lock("intent:1", 5000)

        asyncio.run(scenario())

    def test_ttl_expiry(self):
        async def scenario():
            assert await self.locks.lock("intent:1", 5000)
            self.clock.now += 4.999
            assert not await self.locks.lock("intent:1", 5000)
            self.clock.now += 0.001
            assert await self.locks.lock("intent:1", 5000)

        asyncio.run(scenario())

    def test_unlock_unknown_key(self):
        asyncio.run(self.locks.unlock("never-locked"))


class TestRedisLock:
    """Test the redis backend and its fallback."""

    def test_set_nx_px(self):
        redis = Mock()
        redis.set = AsyncMock(side_effect=[True, None])
        redis.delete = AsyncMock(return_value=1)
        locks = IntentLockManager(redis_client=redis)

        async def scenario():
            assert await locks.lock("intent:1", 120000)
            assert not await locks.lock("intent:1", 120000)
            await locks.unlock("intent:1")

        asyncio.run(scenario())
        redis.set.assert_any_await("intent:1", "1", px=120000, nx=True)
        redis.delete.assert_awaited_once_with("intent:1")
        assert locks.backend == "redis"

    def test_falls_back_to_memory(self):
        redis = Mock()
        redis.set = AsyncMock(side_effect=ConnectionError("redis down"))
        locks = IntentLockManager(redis_client=redis)

        async def scenario():
            assert await locks.lock("intent:1", 5000)
            assert not await locks.lock("intent:1", 5000)

        asyncio.run(scenario())
        assert locks.backend == "memory"
