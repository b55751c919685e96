"""Per-intent mutual exclusion with a redis backend and in-process fallback."""

import time
from typing import Callable, Dict, Optional
from loguru import logger
from redis.asyncio import Redis


class IntentLockManager:
    """TTL locks keyed by intent.

    Uses `SET NX PX` on redis when it is reachable. Any redis failure
    degrades to a process-local expiry table with the same TTL semantics,
    which only serializes callers within this process.
    """

    def __init__(self, redis_url: Optional[str] = None, redis_client: Optional[Redis] = None,
                 clock: Callable[[], float] = time.time):
        self._clock = clock
        self.in_memory_locks: Dict[str, float] = {}
        self.redis: Optional[Redis] = redis_client
        if self.redis is None and redis_url:
            try:
                self.redis = Redis.from_url(redis_url, socket_connect_timeout=1, decode_responses=True)
            except Exception as e:
                logger.warning(f"Failed to initialize Redis, using in-memory locks: {e}")
                self.redis = None
        if self.redis is None:
            logger.info("No Redis configured, using in-memory locks")

    @property
    def backend(self) -> str:
        return "redis" if self.redis is not None else "memory"

    async def lock(self, key: str, ttl_ms: int = 5000) -> bool:
        """Try to take `key` for `ttl_ms`. Never waits."""
        if self.redis is not None:
            try:
                acquired = await self.redis.set(key, "1", px=max(1, ttl_ms), nx=True)
                return bool(acquired)
            except Exception as e:
                logger.warning(f"Redis lock failed, falling back to in-memory: {e}")
                self.redis = None
        return self._lock_in_memory(key, ttl_ms)

    async def unlock(self, key: str):
        if self.redis is not None:
            try:
                await self.redis.delete(key)
                return
            except Exception as e:
                logger.warning(f"Redis unlock failed, using in-memory: {e}")
                self.redis = None
        self.in_memory_locks.pop(key, None)

    async def close(self):
        if self.redis is not None:
            await self.redis.aclose()

    def _lock_in_memory(self, key: str, ttl_ms: int) -> bool:
        now = self._clock() * 1000
        expiry = self.in_memory_locks.get(key)
        if expiry is None or expiry <= now:
            self.in_memory_locks[key] = now + ttl_ms
            return True
        return False
