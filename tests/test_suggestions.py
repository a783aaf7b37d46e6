"""Tests for the suggestion engine."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from content_search.models import Suggestion
from content_search.search.suggestions import SuggestionEngine, merge_suggestions
from content_search.services.analytics import MemoryAnalyticsStore
from content_search.services.content_store import MemoryContentStore


def _s(text: str, relevance: float, kind: str = "title") -> Suggestion:
    return Suggestion(text=text, relevance=relevance, type=kind)


class TestMergeSuggestions:
    def test_first_occurrence_wins(self) -> None:
        merged = merge_suggestions(
            [[_s("Dairy", 50.0)], [_s("dairy", 90.0, "tag")]],
            limit=10,
        )
        assert len(merged) == 1
        assert merged[0].type == "title"
        assert merged[0].relevance == 50.0

    def test_sorted_and_truncated(self) -> None:
        merged = merge_suggestions(
            [[_s("a", 10.0), _s("b", 30.0)], [_s("c", 20.0, "tag")]],
            limit=2,
        )
        assert [s.text for s in merged] == ["b", "c"]

    def test_ties_keep_source_order(self) -> None:
        merged = merge_suggestions([[_s("x", 5.0)], [_s("y", 5.0, "recent")]], limit=5)
        assert [s.text for s in merged] == ["x", "y"]


@pytest.mark.asyncio
class TestSuggestionEngine:
    async def test_limit_and_distinct_text(self, seeded_store: MemoryContentStore) -> None:
        analytics = MemoryAnalyticsStore()
        await analytics.record_search("dairy goats", 4)
        await analytics.record_search("Dairy Cattle Nutrition Guide", 1)

        found = await SuggestionEngine(seeded_store, analytics).suggest("da", limit=5)

        texts = [s.text.casefold() for s in found.suggestions]
        assert 0 < len(texts) <= 5
        assert len(texts) == len(set(texts))

    async def test_title_beats_history_duplicate(self, seeded_store: MemoryContentStore) -> None:
        analytics = MemoryAnalyticsStore()
        await analytics.record_search("dairy goats for beginners", 3)

        found = await SuggestionEngine(seeded_store, analytics).suggest("dairy go", limit=10)

        matching = [
            s for s in found.suggestions if s.text.casefold() == "dairy goats for beginners"
        ]
        assert len(matching) == 1
        assert matching[0].type == "title"
        assert matching[0].content_type == "goat"

    async def test_tags_carry_variant(self, seeded_store: MemoryContentStore) -> None:
        found = await SuggestionEngine(seeded_store, MemoryAnalyticsStore()).suggest("nutri", 10)
        tags = [s for s in found.suggestions if s.type == "tag"]
        assert [(t.text, t.content_type) for t in tags] == [("nutrition", "article")]

    async def test_short_partial_returns_only_popular(
        self, seeded_store: MemoryContentStore
    ) -> None:
        analytics = MemoryAnalyticsStore()
        for _ in range(3):
            await analytics.record_search("goats", 2)
        await analytics.record_search("nothing here", 0)

        found = await SuggestionEngine(seeded_store, analytics).suggest("d", limit=10)

        assert found.suggestions == []
        assert [p.text for p in found.popular] == ["goats"]
        assert found.popular[0].relevance == 3.0

    async def test_failing_source_is_isolated(self, seeded_store: MemoryContentStore) -> None:
        analytics = MagicMock()
        analytics.recent_matching = AsyncMock(side_effect=ConnectionError("redis down"))
        analytics.popular = AsyncMock(side_effect=ConnectionError("redis down"))

        found = await SuggestionEngine(seeded_store, analytics).suggest("soil", limit=4)

        texts = [s.text for s in found.suggestions]
        assert "Soil Testing Before Planting" in texts
        assert "soil" in texts
        assert found.popular == []

    async def test_unpublished_titles_and_tags_are_hidden(
        self, seeded_store: MemoryContentStore
    ) -> None:
        engine = SuggestionEngine(seeded_store, MemoryAnalyticsStore())

        found = await engine.suggest("secr", limit=10)
        assert found.suggestions == []

        # Published items sharing the prefix still surface.
        found = await engine.suggest("dairy", limit=10)
        texts = [s.text for s in found.suggestions]
        assert "Dairy Cattle Nutrition Guide" in texts
        assert not any("secret" in text.casefold() for text in texts)

    async def test_failing_tag_variant_is_isolated(self, seeded_store: MemoryContentStore) -> None:
        distinct_tags = seeded_store.distinct_tags

        async def flaky_tags(variant, content_filter):  # noqa: ANN001, ANN202
            if variant == "dairy":
                raise ConnectionError("replica lagging")
            return await distinct_tags(variant, content_filter)

        seeded_store.distinct_tags = flaky_tags

        found = await SuggestionEngine(seeded_store, MemoryAnalyticsStore()).suggest("nutri", 10)

        tags = [s for s in found.suggestions if s.type == "tag"]
        assert [(t.text, t.content_type) for t in tags] == [("nutrition", "article")]
