"""Async Redis client wrapper."""

from __future__ import annotations

import json
from typing import Any

import structlog
from redis.asyncio import Redis

logger = structlog.get_logger(__name__)


class RedisClient:
    """Thin wrapper around ``redis.asyncio.Redis`` with JSON cache helpers.

    The cache helpers never raise: connectivity problems are logged and
    reported as a miss (``None``) or a failed write (``False``).

    Args:
        url: Redis connection URL, e.g. ``"redis://localhost:6379/0"``.
    """

    def __init__(self, url: str) -> None:
        self._url = url
        self._redis: Redis | None = None

    async def connect(self) -> None:
        """Open the connection pool (lazy; no round-trip happens here)."""
        self._redis = Redis.from_url(self._url, decode_responses=True)
        logger.info("redis.connected", url=self._url)

    async def disconnect(self) -> None:
        """Close the connection pool gracefully."""
        if self._redis:
            await self._redis.aclose()
            logger.info("redis.disconnected")

    @property
    def redis(self) -> Redis:
        """The underlying client, for stores that need raw commands."""
        if self._redis is None:
            raise RuntimeError("RedisClient not connected — call connect() first.")
        return self._redis

    async def ping(self) -> bool:
        """Return True if Redis responds to PING."""
        return await self.redis.ping()

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    async def get_cache(self, key: str) -> Any | None:  # noqa: ANN401
        """Fetch and deserialise a JSON value.

        Returns:
            Deserialised value, or ``None`` on miss / error.
        """
        try:
            raw = await self.redis.get(key)
            if raw is None:
                return None
            return json.loads(raw)
        except Exception as exc:  # noqa: BLE001
            logger.warning("redis.cache_get_error", key=key, error=str(exc))
            return None

    async def set_cache(self, key: str, value: Any, ttl_seconds: int) -> bool:  # noqa: ANN401
        """Store a JSON-serialisable value with a TTL.

        Returns:
            ``True`` when the write reached Redis.
        """
        try:
            await self.redis.setex(key, ttl_seconds, json.dumps(value))
            return True
        except Exception as exc:  # noqa: BLE001
            logger.warning("redis.cache_set_error", key=key, error=str(exc))
            return False

    async def delete_cache(self, key: str) -> bool:
        """Delete one cached key."""
        try:
            await self.redis.delete(key)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.warning("redis.cache_delete_error", key=key, error=str(exc))
            return False

    async def flush_cache(self, pattern: str = "api:*") -> int:
        """Delete every key matching *pattern*; returns the number removed."""
        try:
            keys = [key async for key in self.redis.scan_iter(match=pattern)]
            if not keys:
                return 0
            return int(await self.redis.delete(*keys))
        except Exception as exc:  # noqa: BLE001
            logger.warning("redis.cache_flush_error", pattern=pattern, error=str(exc))
            return 0
