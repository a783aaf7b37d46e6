"""Shared pytest fixtures and configuration."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from content_search.dependencies import Services
from content_search.main import create_app
from content_search.models import ContentItem
from content_search.services.analytics import MemoryAnalyticsStore
from content_search.services.cache import MemoryCacheBackend
from content_search.services.content_store import MemoryContentStore


# ---------------------------------------------------------------------------
# Pytest configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)


# ---------------------------------------------------------------------------
# Model fixtures
# ---------------------------------------------------------------------------

ItemFactory = Callable[..., ContentItem]


def _item(
    id: str,  # noqa: A002
    title: str,
    *,
    body: str = "",
    published: bool = True,
    created_at: datetime | None = None,
    **extra: Any,  # noqa: ANN401
) -> ContentItem:
    return ContentItem(
        id=id,
        title=title,
        body=body,
        published=published,
        created_at=created_at or datetime(2024, 3, 1, tzinfo=timezone.utc),
        **extra,
    )


@pytest.fixture
def make_item() -> ItemFactory:
    """Factory for ContentItem with sensible defaults."""
    return _item


@pytest.fixture
def seeded_store() -> MemoryContentStore:
    """Small multi-variant store with one unpublished article."""
    return MemoryContentStore(
        {
            "article": [
                _item(
                    "art-1",
                    "Dairy Cattle Nutrition Guide",
                    body="Balanced rations for lactating cows.",
                    tags=["dairy", "nutrition"],
                    category="livestock",
                    author="Jane",
                    view_count=400,
                    created_at=datetime(2024, 3, 2, tzinfo=timezone.utc),
                ),
                _item(
                    "art-2",
                    "Dairy Secrets",
                    body="Unreleased draft.",
                    tags=["secret"],
                    category="business",
                    published=False,
                    created_at=datetime(2024, 3, 5, tzinfo=timezone.utc),
                ),
                _item(
                    "art-3",
                    "Soil Testing Before Planting",
                    body="Measure pH before you plant.",
                    tags=["soil"],
                    category="crops",
                    author="Peter",
                    view_count=120,
                    created_at=datetime(2024, 1, 18, tzinfo=timezone.utc),
                ),
            ],
            "dairy": [
                _item(
                    "dairy-1",
                    "Cattle Breeds",
                    body="Friesian and Jersey compared on yield.",
                    tags=["breeds"],
                    category="breeding",
                    view_count=300,
                    created_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
                ),
            ],
            "goat": [
                _item(
                    "goat-1",
                    "Dairy Goats for Beginners",
                    body="Housing and milking routines.",
                    tags=["goats", "dairy"],
                    category="husbandry",
                    view_count=150,
                    created_at=datetime(2024, 1, 9, tzinfo=timezone.utc),
                ),
            ],
            "news": [
                _item(
                    "news-1",
                    "Milk Prices Rise",
                    body="Processors raised farm-gate prices.",
                    tags=["markets"],
                    view_count=900,
                    created_at=datetime(2024, 4, 11, tzinfo=timezone.utc),
                ),
            ],
            "event": [
                _item(
                    "event-1",
                    "Regional Livestock Show",
                    body="Three days of judging.",
                    description="Showcase of dairy and beef breeds.",
                    category="shows",
                    created_at=datetime(2024, 5, 20, tzinfo=timezone.utc),
                ),
            ],
        }
    )


# ---------------------------------------------------------------------------
# Mock service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_redis() -> MagicMock:
    """Mock RedisClient whose raw ``redis`` attribute is an AsyncMock."""
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[])

    mock = MagicMock()
    mock.redis = AsyncMock()
    mock.redis.pipeline = MagicMock(return_value=pipe)
    mock.ping = AsyncMock(return_value=True)
    mock.get_cache = AsyncMock(return_value=None)  # cache miss by default
    mock.set_cache = AsyncMock(return_value=True)
    mock.delete_cache = AsyncMock(return_value=True)
    mock.flush_cache = AsyncMock(return_value=0)
    return mock


@pytest_asyncio.fixture
async def services(seeded_store: MemoryContentStore) -> AsyncIterator[Services]:
    """Fully wired in-memory services with the recorder running."""
    container = Services(
        store=seeded_store,
        analytics=MemoryAnalyticsStore(),
        cache_backend=MemoryCacheBackend(),
        variant_timeout_seconds=1.0,
    )
    await container.start()
    yield container
    await container.close()


@pytest_asyncio.fixture
async def client(services: Services) -> AsyncIterator[AsyncClient]:
    """HTTP client bound to an app built around :func:`services`."""
    app = create_app(services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http
