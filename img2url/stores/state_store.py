"""String key/value state store with optional per-key TTL.

Everything mutable (object metadata, the hash index, quota and rate counters,
stats and the used-token set) lives behind this interface. The contract is
deliberately minimal: no transactions, no multi-key guarantees and no atomic
increment. Counters are read, computed locally and written back, so
concurrent requests may race; callers treat every counter as approximate.
"""

import logging
from typing import Optional
from typing import Protocol

import redis.asyncio as async_redis


logger = logging.getLogger(__name__)


class StateStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...


class RedisStateStore:
    """StateStore backed by plain Redis GET/SET/DEL.

    INCR is intentionally not used so the service keeps the same semantics on
    any TTL key/value backend.
    """

    def __init__(self, redis_client: async_redis.Redis, *, key_prefix: str = "img2url:"):
        self.redis = redis_client
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        raw = await self.redis.get(self._key(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return str(raw)

    async def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        if ttl_seconds is not None and int(ttl_seconds) <= 0:
            # Redis rejects EX <= 0; a non-positive TTL means the value is already stale
            await self.delete(key)
            return
        await self.redis.set(self._key(key), value, ex=int(ttl_seconds) if ttl_seconds else None)

    async def delete(self, key: str) -> None:
        await self.redis.delete(self._key(key))
