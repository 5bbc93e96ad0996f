# autoship/pipeline/claims.py
"""
Exclusive ownership claims keyed on Task id.

A worker must hold the claim for a Task before executing any of its stages
and releases it on suspension or completion. InMemoryTaskClaims covers a
single process; RedisTaskClaims coordinates several processes with an
expiring key that the holder keeps refreshing.
"""

import asyncio
import logging
import uuid
from typing import Dict, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger("autoship.pipeline.claims")


def new_owner_id() -> str:
    return f"worker-{uuid.uuid4().hex[:12]}"


class InMemoryTaskClaims:

    def __init__(self):
        self._owners: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, task_id: str, owner: str) -> bool:
        async with self._lock:
            current = self._owners.get(task_id)
            if current is not None and current != owner:
                return False
            self._owners[task_id] = owner
            return True

    async def refresh(self, task_id: str, owner: str) -> bool:
        async with self._lock:
            return self._owners.get(task_id) == owner

    async def release(self, task_id: str, owner: str) -> bool:
        async with self._lock:
            if self._owners.get(task_id) != owner:
                return False
            del self._owners[task_id]
            return True

    async def owner_of(self, task_id: str) -> Optional[str]:
        async with self._lock:
            return self._owners.get(task_id)


# Only the holder may extend or drop its claim
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""

_REFRESH_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('pexpire', KEYS[1], ARGV[2])
end
return 0
"""


class RedisTaskClaims:

    KEY_PREFIX = "autoship:claim:"

    def __init__(self, client: aioredis.Redis, ttl_seconds: int = 600):
        self.client = client
        self.ttl_ms = ttl_seconds * 1000

    @classmethod
    def from_url(cls, url: str, ttl_seconds: int = 600) -> "RedisTaskClaims":
        return cls(aioredis.Redis.from_url(url, decode_responses=True), ttl_seconds)

    def _key(self, task_id: str) -> str:
        return f"{self.KEY_PREFIX}{task_id}"

    async def acquire(self, task_id: str, owner: str) -> bool:
        key = self._key(task_id)
        if await self.client.set(key, owner, nx=True, px=self.ttl_ms):
            return True
        # Re-entrant for the current holder
        return await self.refresh(task_id, owner)

    async def refresh(self, task_id: str, owner: str) -> bool:
        result = await self.client.eval(_REFRESH_SCRIPT, 1, self._key(task_id), owner, self.ttl_ms)
        return bool(result)

    async def release(self, task_id: str, owner: str) -> bool:
        result = await self.client.eval(_RELEASE_SCRIPT, 1, self._key(task_id), owner)
        if not result:
            logger.warning(f"Claim on task {task_id} was not held by {owner} at release")
        return bool(result)

    async def owner_of(self, task_id: str) -> Optional[str]:
        return await self.client.get(self._key(task_id))

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
