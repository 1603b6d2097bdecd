"""
Key-value backend used by the response cache and the idempotency guard.
"""

from typing import Optional, Protocol, Union

import redis.asyncio as redis

from shared.logging import get_logger


class KeyValueBackend(Protocol):
    """Raw key-value store with per-key expiry.

    Implementations raise on transport failures; callers decide whether a
    failure is fatal.
    """

    async def get(self, key: str) -> Optional[Union[bytes, str]]:
        ...

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...

    async def ping(self) -> bool:
        ...


class RedisKeyValueBackend:
    """Redis implementation of ``KeyValueBackend`` scoped to a key namespace."""

    def __init__(
        self,
        redis_url: str,
        namespace: str,
        *,
        socket_timeout: float = 2.0,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.namespace = namespace
        self.socket_timeout = socket_timeout
        self.logger = get_logger(f"proxy.kv.{namespace}")
        self._redis: Optional[redis.Redis] = client

    def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
            )
        return self._redis

    def _make_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Union[bytes, str]]:
        return await self._get_redis().get(self._make_key(key))

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._get_redis().set(self._make_key(key), value, ex=ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._get_redis().delete(self._make_key(key))

    async def ping(self) -> bool:
        """Check connectivity; never raises."""
        try:
            return bool(await self._get_redis().ping())
        except Exception as exc:
            self.logger.warning("Key-value backend ping failed", error=str(exc))
            return False

    async def close(self) -> None:
        """Close Redis connections."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
