"""Tests for the variant registry, content store matching and federated search."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from content_search.errors import ClientError
from content_search.models import (
    ContentFilter,
    ContentSort,
    SearchOutcome,
    SearchRequest,
    SortMode,
    TextMatch,
)
from content_search.search import normalizer
from content_search.search.federated import FederatedSearch, build_filter
from content_search.search.registry import VARIANTS, get_variant, resolve_variants
from content_search.services.content_store import MemoryContentStore, matches

SEED_FILE = Path(__file__).resolve().parents[1] / "config" / "content.yaml"


async def _search(
    store: MemoryContentStore, query: str, **overrides: Any  # noqa: ANN401
) -> SearchOutcome:
    request = SearchRequest(query=query, **overrides)
    return await FederatedSearch(store, timeout_seconds=0.5).search(
        request, normalizer.normalize(query)
    )


class FailingStore(MemoryContentStore):
    """Store whose ``news`` variant always errors."""

    async def find_published(  # noqa: ANN201
        self, variant, content_filter, sort, skip=0, limit=None  # noqa: ANN001
    ):
        if variant == "news":
            raise RuntimeError("connection reset")
        return await super().find_published(variant, content_filter, sort, skip, limit)


class SlowStore(MemoryContentStore):
    """Store whose ``dairy`` variant never answers in time."""

    async def find_published(  # noqa: ANN201
        self, variant, content_filter, sort, skip=0, limit=None  # noqa: ANN001
    ):
        if variant == "dairy":
            await asyncio.sleep(5)
        return await super().find_published(variant, content_filter, sort, skip, limit)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_aliases_resolve_to_canonical(self) -> None:
        assert get_variant("Blogs").name == "article"
        assert get_variant("goats").name == "goat"
        assert get_variant("pigs").name == "piggery"

    def test_unknown_type_is_client_error(self) -> None:
        with pytest.raises(ClientError):
            get_variant("podcast")

    def test_empty_selection_means_all(self) -> None:
        assert resolve_variants([]) == list(VARIANTS)

    def test_selection_keeps_registry_order(self) -> None:
        names = [v.name for v in resolve_variants(["goat", "article", "blog"])]
        assert names == ["article", "goat"]


# ---------------------------------------------------------------------------
# Content store
# ---------------------------------------------------------------------------


class TestMatches:
    def test_unpublished_never_matches(self, make_item) -> None:  # noqa: ANN001
        item = make_item("x", "Dairy Secrets", published=False)
        assert not matches(item, ContentFilter())

    def test_all_terms_must_appear_as_words(self, make_item) -> None:  # noqa: ANN001
        item = make_item("x", "Dairy Cattle", body="Feeding guide")
        hit = TextMatch(phrase="cattle feeding", index_terms=["cattle", "feeding"])
        miss = TextMatch(phrase="cattle milking", index_terms=["cattle", "milking"])
        assert matches(item, ContentFilter(text=hit))
        assert not matches(item, ContentFilter(text=miss))

    def test_description_only_when_enabled(self, make_item) -> None:  # noqa: ANN001
        item = make_item("x", "Show", description="dairy breeds on display")
        text = TextMatch(phrase="breeds on display")
        assert not matches(item, ContentFilter(text=text))
        text.include_description = True
        assert matches(item, ContentFilter(text=text))

    def test_structured_clauses(self, make_item) -> None:  # noqa: ANN001
        item = make_item(
            "x", "Guide", tags=["dairy"], category="livestock", author="Jane", view_count=10
        )
        assert matches(item, ContentFilter(tags_any=["dairy", "beef"], min_views=5))
        assert not matches(item, ContentFilter(min_views=11))
        assert not matches(item, ContentFilter(categories_any=["crops"]))
        assert not matches(item, ContentFilter(author="Peter"))
        assert not matches(
            item, ContentFilter(created_from=datetime(2025, 1, 1, tzinfo=timezone.utc))
        )


@pytest.mark.asyncio
class TestMemoryContentStore:
    async def test_sort_and_slice(self, seeded_store: MemoryContentStore) -> None:
        by_title = ContentSort(field="title", descending=False)
        items = await seeded_store.find_published("article", ContentFilter(), by_title)
        assert [i.id for i in items] == ["art-1", "art-3"]

        page = await seeded_store.find_published(
            "article", ContentFilter(), by_title, skip=1, limit=1
        )
        assert [i.id for i in page] == ["art-3"]

    async def test_distinct_values_skip_drafts(self, seeded_store: MemoryContentStore) -> None:
        assert await seeded_store.distinct_tags("article", ContentFilter()) == [
            "dairy",
            "nutrition",
            "soil",
        ]
        assert await seeded_store.distinct_categories("article", ContentFilter()) == [
            "crops",
            "livestock",
        ]

    async def test_count_published(self, seeded_store: MemoryContentStore) -> None:
        assert await seeded_store.count_published("article", ContentFilter()) == 2

    async def test_from_yaml_skips_invalid_items(self, tmp_path: Path) -> None:
        seed = tmp_path / "content.yaml"
        seed.write_text(
            "blogs:\n"
            "  - id: a1\n"
            "    title: Valid\n"
            "    createdAt: 2024-01-01\n"
            "    published: true\n"
            "  - id: a2\n"
            "    published: true\n",
            encoding="utf-8",
        )
        store = MemoryContentStore.from_yaml(seed)
        assert store.counts() == {"article": 1}

    async def test_from_yaml_missing_file(self, tmp_path: Path) -> None:
        assert MemoryContentStore.from_yaml(tmp_path / "absent.yaml").counts() == {}

    async def test_bundled_seed_loads(self) -> None:
        store = MemoryContentStore.from_yaml(SEED_FILE)
        assert store.counts()["article"] == 3
        assert await store.count_published("article", ContentFilter()) == 2


# ---------------------------------------------------------------------------
# Federated search
# ---------------------------------------------------------------------------


class TestBuildFilter:
    def test_capability_gating(self) -> None:
        request = SearchRequest(query="dairy", tags=["dairy"], min_views=10)
        query = normalizer.normalize("dairy")

        article = build_filter(get_variant("article"), request, query, [])
        event = build_filter(get_variant("event"), request, query, [])

        assert article.tags_any == ["dairy"]
        assert article.min_views == 10
        assert article.text.include_description
        assert event.tags_any == []
        assert event.min_views is None
        assert event.text.include_description

    def test_livestock_guides_ignore_min_views(self) -> None:
        request = SearchRequest(query="dairy", tags=["dairy"], min_views=10)
        query = normalizer.normalize("dairy")

        goat = build_filter(get_variant("goat"), request, query, [])
        farm = build_filter(get_variant("farm"), request, query, [])

        assert goat.tags_any == ["dairy"]
        assert goat.min_views is None
        assert not goat.text.include_description
        assert farm.min_views == 10
        assert farm.tags_any == []


@pytest.mark.asyncio
class TestFederatedSearch:
    async def test_unpublished_is_excluded(self, seeded_store: MemoryContentStore) -> None:
        outcome = await _search(seeded_store, "dairy", content_types=["article"])
        assert outcome.total == 1
        assert [r.title for r in outcome.results] == ["Dairy Cattle Nutrition Guide"]
        assert outcome.results[0].content_type == "article"

    async def test_fuzzy_finds_typo(self, seeded_store: MemoryContentStore) -> None:
        outcome = await _search(seeded_store, "catle", fuzzy=True)
        assert "dairy-1" in {r.id for r in outcome.results}
        assert outcome.search_terms_used > 1

    async def test_no_fuzzy_leakage(self, seeded_store: MemoryContentStore) -> None:
        outcome = await _search(seeded_store, "catle", fuzzy=False)
        assert outcome.total == 0
        assert outcome.search_terms_used == 1

    async def test_relevance_is_non_increasing(self, seeded_store: MemoryContentStore) -> None:
        outcome = await _search(seeded_store, "dairy")
        scores = [r.relevance_score for r in outcome.results]
        assert len(scores) >= 3
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 100.0 for s in scores)

    async def test_description_matches_for_events(self, seeded_store: MemoryContentStore) -> None:
        outcome = await _search(seeded_store, "beef breeds", content_types=["event"])
        assert [r.id for r in outcome.results] == ["event-1"]

    async def test_sort_by_views(self, seeded_store: MemoryContentStore) -> None:
        outcome = await _search(seeded_store, "dairy", sort_by=SortMode.VIEWS)
        views = [r.view_count for r in outcome.results]
        assert views == sorted(views, reverse=True)
        assert all(r.relevance_score == 0.0 for r in outcome.results)

    async def test_variant_failure_is_isolated(self, seeded_store: MemoryContentStore) -> None:
        store = FailingStore()
        for variant in ("article", "goat", "news"):
            for item in await seeded_store.find_published(
                variant, ContentFilter(), ContentSort()
            ):
                store.add(variant, item)

        failures: list[str] = []
        request = SearchRequest(query="dairy")
        outcome = await FederatedSearch(store, on_variant_failure=failures.append).search(
            request, normalizer.normalize("dairy")
        )
        assert outcome.failed_variants == ["news"]
        assert failures == ["news"]
        assert {r.id for r in outcome.results} == {"art-1", "goat-1"}

    async def test_slow_variant_times_out(self, seeded_store: MemoryContentStore) -> None:
        store = SlowStore()
        for variant in ("article", "dairy"):
            for item in await seeded_store.find_published(
                variant, ContentFilter(), ContentSort()
            ):
                store.add(variant, item)

        request = SearchRequest(query="cattle")
        outcome = await FederatedSearch(store, timeout_seconds=0.05).search(
            request, normalizer.normalize("cattle")
        )
        assert outcome.failed_variants == ["dairy"]
        assert [r.id for r in outcome.results] == ["art-1"]

    async def test_total_failure_is_empty(self) -> None:
        store = FailingStore()
        outcome = await _search(store, "dairy", content_types=["news"])
        assert outcome.total == 0
        assert outcome.results == []
        assert outcome.failed_variants == ["news"]

    async def test_pagination_is_per_variant(self, make_item) -> None:  # noqa: ANN001
        store = MemoryContentStore(
            {
                "article": [make_item(f"a{i}", f"Goat feeding {i}") for i in range(3)],
                "goat": [make_item(f"g{i}", f"Goat housing {i}") for i in range(3)],
            }
        )
        first = await _search(store, "goat", page_size=2)
        second = await _search(store, "goat", page=2, page_size=2)

        assert first.total == 4
        assert second.total == 2
        assert {r.content_type for r in second.results} == {"article", "goat"}
