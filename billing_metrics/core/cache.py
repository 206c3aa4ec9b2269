"""Redis-backed key-value store used as a side cache for metrics."""

import logging
import re

from redis.asyncio import Redis
from redis.exceptions import RedisError

from billing_metrics.core.errors import CacheError

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


def escape_glob(value: str) -> str:
    """Escape Redis glob metacharacters so ``value`` matches literally."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


def create_redis_client(url: str, socket_timeout: float | None = None) -> Redis:
    return Redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )


class CacheStore:
    """Thin wrapper over an async Redis client.

    Every backend failure is raised as CacheError; callers decide how to
    degrade.
    """

    def __init__(self, client: Redis):
        self.client = client

    async def get(self, key: str) -> str | None:
        try:
            return await self.client.get(key)
        except (RedisError, OSError) as exc:
            raise CacheError(f"Cache read failed for {key}") from exc

    async def set(self, key: str, value: str, ttl: int) -> None:
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        try:
            await self.client.set(key, value, ex=ttl)
        except (RedisError, OSError) as exc:
            raise CacheError(f"Cache write failed for {key}") from exc

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.client.delete(key))
        except (RedisError, OSError) as exc:
            raise CacheError(f"Cache delete failed for {key}") from exc

    async def delete_by_prefix(self, prefix: str) -> int:
        """Delete ``prefix`` itself and every key under ``prefix:``.

        Keys that merely start with the same characters (``acme`` vs
        ``acme2``) are left alone.
        """
        pattern = f"{escape_glob(prefix)}*"
        nested = f"{prefix}:"
        try:
            keys = [
                key
                async for key in self.client.scan_iter(match=pattern, count=100)
                if key == prefix or key.startswith(nested)
            ]
            if not keys:
                return 0
            deleted = await self.client.delete(*keys)
        except (RedisError, OSError) as exc:
            raise CacheError(f"Cache prefix delete failed for {prefix}") from exc
        logger.debug("Deleted %d cache keys under %s", deleted, prefix)
        return int(deleted)

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.client.exists(key))
        except (RedisError, OSError) as exc:
            raise CacheError(f"Cache exists check failed for {key}") from exc

    async def time_to_live(self, key: str) -> int:
        """Remaining seconds for ``key``, or -1 when absent or without expiry."""
        try:
            remaining = await self.client.ttl(key)
        except (RedisError, OSError) as exc:
            raise CacheError(f"Cache TTL lookup failed for {key}") from exc
        return int(remaining) if remaining >= 0 else -1

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError):
            logger.warning("Redis ping failed", exc_info=True)
            return False

    async def close(self) -> None:
        await self.client.aclose()
