from __future__ import annotations

from typing import Optional

import redis.asyncio as aioredis
from redis import Redis


class RedisCache:
    """Thin Redis wrapper for verification codes and rate limit windows."""

    # Atomic fixed window: the first hit in a window starts its expiry
    _FIXED_WINDOW_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
  redis.call('EXPIRE', KEYS[1], tonumber(ARGV[1]))
end
return count
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._fixed_window = self.client.register_script(self._FIXED_WINDOW_SCRIPT)

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling dependent features."""

        # A short-lived sync client keeps the async client off the startup loop
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        await self.client.set(key, value, ex=max(1, int(ttl_seconds)))

    async def delete(self, key: str) -> int:
        return await self.client.delete(key)

    async def incr_window(self, key: str, window_seconds: int) -> int:
        """Count a hit in the fixed window stored at ``key``."""

        count = await self._fixed_window(keys=[key], args=[max(1, int(window_seconds))])
        return int(count)

    async def close(self) -> None:
        await self.client.aclose()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous client internally to avoid event loop binding issues in
    pytest, but exposes async methods so it can be awaited like RedisCache.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self._sync_client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._fixed_window = self._sync_client.register_script(
            RedisCache._FIXED_WINDOW_SCRIPT
        )

    def verify_connection(self) -> None:
        self._sync_client.ping()

    async def get(self, key: str) -> Optional[str]:
        return self._sync_client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._sync_client.set(key, value, ex=max(1, int(ttl_seconds)))

    async def delete(self, key: str) -> int:
        return self._sync_client.delete(key)

    async def incr_window(self, key: str, window_seconds: int) -> int:
        count = self._fixed_window(keys=[key], args=[max(1, int(window_seconds))])
        return int(count)

    def disconnect(self) -> None:
        self._sync_client.close()

    async def close(self) -> None:
        self.disconnect()
