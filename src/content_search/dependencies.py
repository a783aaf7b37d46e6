"""Service container — builds and wires every collaborator explicitly."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from content_search.config import Settings
from content_search.models import SearchRequest
from content_search.search.federated import FederatedSearch
from content_search.search.orchestrator import list_categories, list_tags, run_search
from content_search.search.suggestions import SuggestionEngine
from content_search.services.analytics import (
    AnalyticsRecorder,
    AnalyticsStore,
    MemoryAnalyticsStore,
    RedisAnalyticsStore,
)
from content_search.services.cache import (
    CacheBackend,
    MemoryCacheBackend,
    NullCacheBackend,
    RedisCacheBackend,
    ResponseCache,
    make_cache_key,
)
from content_search.services.content_store import ContentStore, MemoryContentStore
from content_search.services.redis_client import RedisClient

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """Everything a request handler needs, created once per application."""

    store: ContentStore
    analytics: AnalyticsStore
    cache_backend: CacheBackend = field(default_factory=NullCacheBackend)
    redis: RedisClient | None = None
    variant_timeout_seconds: float = 5.0
    search_cache_ttl_seconds: int = 300
    suggestion_cache_ttl_seconds: int = 900
    metadata_cache_ttl_seconds: int = 3600
    analytics_queue_size: int = 1000
    slow_search_ms: float = 500.0
    admin_token: str = ""

    def __post_init__(self) -> None:
        self.recorder = AnalyticsRecorder(self.analytics, self.analytics_queue_size)
        self.cache = ResponseCache(
            self.cache_backend,
            on_hit=lambda _key: self.recorder.count("cache_hits"),
            on_miss=lambda _key: self.recorder.count("cache_misses"),
        )
        self.executor = FederatedSearch(
            self.store,
            timeout_seconds=self.variant_timeout_seconds,
            on_variant_failure=lambda _name: self.recorder.count("failed_variant_queries"),
        )
        self.suggestion_engine = SuggestionEngine(
            self.store, self.analytics, timeout_seconds=self.variant_timeout_seconds
        )

        self.search = self.cache.cached(
            lambda req: make_cache_key("/search", req.model_dump(mode="json")),
            self.search_cache_ttl_seconds,
            self._search,
        )
        self.suggest = self.cache.cached(
            lambda partial, limit: make_cache_key(
                "/suggestions", {"query": partial.strip(), "limit": limit}
            ),
            self.suggestion_cache_ttl_seconds,
            self._suggest,
        )
        self.categories = self.cache.cached(
            lambda content_type: make_cache_key(f"/categories/{content_type.lower()}"),
            self.metadata_cache_ttl_seconds,
            self._categories,
        )
        self.tags = self.cache.cached(
            lambda content_type: make_cache_key(f"/tags/{content_type.lower()}"),
            self.metadata_cache_ttl_seconds,
            self._tags,
        )

    # Cached handlers return JSON-ready dicts (camelCase keys).

    async def _search(self, request: SearchRequest) -> dict[str, Any]:
        response = await run_search(request, self.executor, self.store)
        return response.model_dump(mode="json", by_alias=True)

    async def _suggest(self, partial: str, limit: int) -> dict[str, Any]:
        found = await self.suggestion_engine.suggest(partial, limit)
        return {
            "suggestions": [s.model_dump(mode="json", by_alias=True) for s in found.suggestions],
            "popularSearches": [s.model_dump(mode="json", by_alias=True) for s in found.popular],
            "query": partial.strip(),
        }

    async def _categories(self, content_type: str) -> dict[str, Any]:
        return (await list_categories(self.store, content_type)).model_dump(
            mode="json", by_alias=True
        )

    async def _tags(self, content_type: str) -> dict[str, Any]:
        return (await list_tags(self.store, content_type)).model_dump(mode="json", by_alias=True)

    async def start(self) -> None:
        await self.recorder.start()

    async def close(self) -> None:
        await self.recorder.stop()
        if self.redis is not None:
            await self.redis.disconnect()


async def build_services(config: Settings) -> Services:
    """Create the store, cache and analytics backends selected by *config*."""
    redis: RedisClient | None = None
    if "redis" in (config.cache_backend, config.analytics_backend):
        redis = RedisClient(config.redis_url)
        await redis.connect()

    cache_backend: CacheBackend
    if config.cache_backend == "redis" and redis is not None:
        cache_backend = RedisCacheBackend(redis)
    elif config.cache_backend == "memory":
        cache_backend = MemoryCacheBackend(max_entries=config.memory_cache_max_entries)
    else:
        cache_backend = NullCacheBackend()

    analytics: AnalyticsStore
    if config.analytics_backend == "redis" and redis is not None:
        analytics = RedisAnalyticsStore(redis)
    else:
        analytics = MemoryAnalyticsStore()

    store = MemoryContentStore.from_yaml(config.content_store_path)
    logger.info(
        "services.built",
        cache=cache_backend.name,
        analytics=analytics.name,
        content_store=config.content_store_path,
    )
    return Services(
        store=store,
        analytics=analytics,
        cache_backend=cache_backend,
        redis=redis,
        variant_timeout_seconds=config.variant_timeout_seconds,
        search_cache_ttl_seconds=config.search_cache_ttl_seconds,
        suggestion_cache_ttl_seconds=config.suggestion_cache_ttl_seconds,
        metadata_cache_ttl_seconds=config.metadata_cache_ttl_seconds,
        analytics_queue_size=config.analytics_queue_size,
        slow_search_ms=config.slow_search_ms,
        admin_token=config.admin_token,
    )
