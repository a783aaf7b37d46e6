"""Request-keyed response cache with pluggable, failure-tolerant backends.

Every backend operation swallows connectivity errors and logs a warning, so
the wrapped handlers keep working (only slower) with no cache at all.
"""

from __future__ import annotations

import hashlib
import json
import time
from collections import OrderedDict
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Mapping, Protocol

import structlog

from content_search.errors import CacheUnavailable
from content_search.services.redis_client import RedisClient

logger = structlog.get_logger(__name__)


def make_cache_key(path: str, params: Mapping[str, Any] | None = None) -> str:
    """Return a deterministic cache key for an endpoint and its parameters.

    Parameters are sorted by name; list values are joined with commas and
    ``None`` values are dropped, so equivalent requests share a key.

    Args:
        path:   Endpoint path, e.g. ``"/search"``.
        params: Query parameters.

    Returns:
        ``"api:<path>"`` or ``"api:<path>:<sha256 hex>"``.
    """
    parts: list[str] = []
    for name in sorted(params or {}):
        value = (params or {})[name]
        if value is None:
            continue
        if isinstance(value, (list, tuple, set)):
            value = ",".join(str(v) for v in value)
        parts.append(f"{name}={value}")
    if not parts:
        return f"api:{path}"
    digest = hashlib.sha256("&".join(parts).encode("utf-8")).hexdigest()
    return f"api:{path}:{digest}"


class CacheBackend(Protocol):
    """Storage used by :class:`ResponseCache`.

    Backends may raise :class:`CacheUnavailable`; :class:`ResponseCache`
    absorbs it and every other backend error.
    """

    name: str

    async def get(self, key: str) -> Any | None: ...  # noqa: ANN401

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool: ...  # noqa: ANN401

    async def delete(self, key: str) -> bool: ...

    async def flush(self) -> int: ...

    async def ping(self) -> bool: ...


class RedisCacheBackend:
    """Cache entries in Redis with ``SETEX``; expiry is enforced by Redis."""

    name = "redis"

    def __init__(self, client: RedisClient) -> None:
        self._client = client

    def _require_connection(self) -> None:
        try:
            self._client.redis  # noqa: B018
        except RuntimeError as exc:
            raise CacheUnavailable(str(exc)) from exc

    async def get(self, key: str) -> Any | None:  # noqa: ANN401
        self._require_connection()
        return await self._client.get_cache(key)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:  # noqa: ANN401
        self._require_connection()
        return await self._client.set_cache(key, value, ttl_seconds)

    async def delete(self, key: str) -> bool:
        self._require_connection()
        return await self._client.delete_cache(key)

    async def flush(self) -> int:
        self._require_connection()
        return await self._client.flush_cache()

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache.ping_failed", backend=self.name, error=str(exc))
            return False


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float


class MemoryCacheBackend:
    """Bounded in-process cache; expired entries behave exactly like misses.

    Args:
        max_entries: Upper bound on stored entries; the oldest are evicted.
        clock:       Monotonic time source (injectable for tests).
    """

    name = "memory"

    def __init__(
        self,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._max_entries = max_entries
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: str) -> Any | None:  # noqa: ANN401
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            return None
        return json.loads(entry.value)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:  # noqa: ANN401
        now = self._clock()
        try:
            payload = json.dumps(value)
        except (TypeError, ValueError) as exc:
            logger.warning("cache.serialise_failed", key=key, error=str(exc))
            return False
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(payload, now, now + ttl_seconds)
        self._evict(now)
        return True

    def _evict(self, now: float) -> None:
        if len(self._entries) <= self._max_entries:
            return
        for stale in [k for k, e in self._entries.items() if now >= e.expires_at]:
            del self._entries[stale]
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def flush(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    async def ping(self) -> bool:
        return True


class NullCacheBackend:
    """No-op backend: every read misses, every write is discarded."""

    name = "none"

    async def get(self, key: str) -> Any | None:  # noqa: ANN401
        return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:  # noqa: ANN401
        return False

    async def delete(self, key: str) -> bool:
        return False

    async def flush(self) -> int:
        return 0

    async def ping(self) -> bool:
        return False


Handler = Callable[..., Awaitable[Any]]


class ResponseCache:
    """Wraps async handlers with read-through caching on a backend.

    Args:
        backend: Storage backend; use :class:`NullCacheBackend` to disable.
        on_hit:  Optional callback receiving the key of every hit.
        on_miss: Optional callback receiving the key of every miss.
    """

    def __init__(
        self,
        backend: CacheBackend,
        on_hit: Callable[[str], None] | None = None,
        on_miss: Callable[[str], None] | None = None,
    ) -> None:
        self.backend = backend
        self.hits = 0
        self.misses = 0
        self._on_hit = on_hit
        self._on_miss = on_miss

    async def get(self, key: str) -> Any | None:  # noqa: ANN401
        try:
            return await self.backend.get(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache.get_failed", key=key[:48], error=str(exc))
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> bool:  # noqa: ANN401
        try:
            return await self.backend.set(key, value, ttl_seconds)
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache.set_failed", key=key[:48], error=str(exc))
            return False

    async def delete(self, key: str) -> bool:
        try:
            return await self.backend.delete(key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache.delete_failed", key=key[:48], error=str(exc))
            return False

    async def flush(self) -> int:
        try:
            return await self.backend.flush()
        except Exception as exc:  # noqa: BLE001
            logger.warning("cache.flush_failed", error=str(exc))
            return 0

    def cached(
        self,
        key_fn: Callable[..., str],
        ttl_seconds: int,
        handler: Handler,
    ) -> Handler:
        """Return *handler* wrapped with a read-through cache.

        A live entry is returned without calling *handler*; on a miss the
        handler runs and its (JSON-serialisable) result is stored for
        *ttl_seconds*. ``None`` results are never cached.

        Args:
            key_fn:      Builds the cache key from the handler's arguments.
            ttl_seconds: Entry lifetime.
            handler:     Async callable producing the payload.
        """

        @wraps(handler)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:  # noqa: ANN401
            key = key_fn(*args, **kwargs)
            hit = await self.get(key)
            if hit is not None:
                self.hits += 1
                logger.debug("cache.hit", key=key[:48])
                if self._on_hit is not None:
                    self._on_hit(key)
                return hit

            self.misses += 1
            logger.debug("cache.miss", key=key[:48])
            if self._on_miss is not None:
                self._on_miss(key)
            result = await handler(*args, **kwargs)
            if result is not None:
                await self.set(key, result, ttl_seconds)
            return result

        return wrapper
