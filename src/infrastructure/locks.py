"""
Redis-based distributed locks.

``DistributedLock`` guards one key: the reconciler uses it so only one
process sweeps per cycle, and ``RedisLockManager`` uses one per entity so
several API processes sharing a store still serialise transitions on the
same vehicle, driver or trip.

Implementation uses SET NX EX for acquire and a Lua script for
atomic check-and-delete on release.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Optional

import redis.asyncio as aioredis

from src.config import settings
from src.domain.errors import LockTimeout
from src.domain.locking import EntityRef, LockManager

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class DistributedLock:
    def __init__(
        self,
        client: aioredis.Redis,
        key: str,
        ttl_seconds: int = 30,
        wait_timeout: Optional[float] = None,
        poll_interval: float = 0.05,
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire once. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def acquire_wait(self) -> bool:
        """Poll until acquired or ``wait_timeout`` elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (self.wait_timeout or 0)
        while True:
            if await self.acquire():
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        acquired = await self.acquire_wait()
        if not acquired:
            raise LockTimeout(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


class RedisLockManager(LockManager):
    def __init__(
        self,
        client: aioredis.Redis,
        ttl_seconds: Optional[int] = None,
        wait_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ):
        self.redis = client
        self.ttl = ttl_seconds or settings.lock_ttl_seconds
        self.wait_timeout = (
            settings.lock_wait_timeout_seconds if wait_timeout is None else wait_timeout
        )
        self.poll_interval = poll_interval or settings.lock_poll_interval_seconds

    def lock_for(self, ref: EntityRef) -> DistributedLock:
        return DistributedLock(
            self.redis,
            f"entity:{ref.key}",
            ttl_seconds=self.ttl,
            wait_timeout=self.wait_timeout,
            poll_interval=self.poll_interval,
        )
