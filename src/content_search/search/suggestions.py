"""Suggestion engine — blends titles, tags and search history for autocomplete."""

from __future__ import annotations

import asyncio
import math
from typing import Awaitable

import structlog

from content_search.models import ContentFilter, ContentSort, Suggestion, SuggestionSet
from content_search.search.registry import VARIANTS, VariantDescriptor, tag_variants
from content_search.search.scoring import score
from content_search.services.analytics import AnalyticsStore
from content_search.services.content_store import ContentStore

logger = structlog.get_logger(__name__)

MIN_PARTIAL_LENGTH = 2
POPULAR_LIST_SIZE = 5
_TITLE_SORT = ContentSort(field="created_at", descending=True)


def _by_relevance(suggestions: list[Suggestion]) -> list[Suggestion]:
    # Stable: equal relevance keeps source order.
    return sorted(suggestions, key=lambda s: s.relevance, reverse=True)


def merge_suggestions(sources: list[list[Suggestion]], limit: int) -> list[Suggestion]:
    """Concatenate *sources* in priority order, de-duplicate and rank.

    Duplicates are detected by case-insensitive text; the first occurrence
    wins, so a title beats the same text coming from tags or history.
    """
    seen: set[str] = set()
    unique: list[Suggestion] = []
    for source in sources:
        for suggestion in source:
            folded = suggestion.text.casefold()
            if folded in seen:
                continue
            seen.add(folded)
            unique.append(suggestion)
    return _by_relevance(unique)[:limit]


class SuggestionEngine:
    """Autocomplete over content titles, tags and the analytics store.

    Args:
        store:           Content store for title and tag lookups.
        analytics:       Analytics store for popular and recent searches.
        timeout_seconds: Bound applied to each source independently.
    """

    def __init__(
        self,
        store: ContentStore,
        analytics: AnalyticsStore,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._store = store
        self._analytics = analytics
        self._timeout = timeout_seconds

    async def _isolated(
        self, source: str, awaitable: Awaitable[list[Suggestion]]
    ) -> list[Suggestion]:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "suggest.source_failed", source=source, error=str(exc) or type(exc).__name__
            )
            return []

    async def _variant_titles(
        self, variant: VariantDescriptor, partial: str, limit: int
    ) -> list[Suggestion]:
        items = await self._store.find_published(
            variant.name, ContentFilter(title_contains=partial), _TITLE_SORT, limit=limit
        )
        return [
            Suggestion(
                text=item.title,
                relevance=round(score(item.title, partial), 4),
                type="title",
                content_type=variant.name,
            )
            for item in items
        ]

    async def title_suggestions(self, partial: str, limit: int) -> list[Suggestion]:
        per_variant = await asyncio.gather(
            *(
                self._isolated(f"title:{v.name}", self._variant_titles(v, partial, limit))
                for v in VARIANTS
            )
        )
        return _by_relevance([s for found in per_variant for s in found])[:limit]

    async def _variant_tags(self, variant: VariantDescriptor, partial: str) -> list[Suggestion]:
        tags = await self._store.distinct_tags(variant.name, ContentFilter(tag_contains=partial))
        return [
            Suggestion(
                text=tag,
                relevance=round(score(tag, partial), 4),
                type="tag",
                content_type=variant.name,
            )
            for tag in tags
        ]

    async def tag_suggestions(self, partial: str, limit: int) -> list[Suggestion]:
        per_variant = await asyncio.gather(
            *(
                self._isolated(f"tag:{v.name}", self._variant_tags(v, partial))
                for v in tag_variants()
            )
        )
        suggestions: list[Suggestion] = []
        seen: set[str] = set()
        for found in per_variant:
            for suggestion in found:
                if suggestion.text.casefold() in seen:
                    continue
                seen.add(suggestion.text.casefold())
                suggestions.append(suggestion)
        return _by_relevance(suggestions)[:limit]

    async def recent_suggestions(self, partial: str, limit: int) -> list[Suggestion]:
        records = await self._analytics.recent_matching(partial, limit)
        return [
            Suggestion(
                text=r.search_term,
                relevance=round(score(r.search_term, partial) + r.result_count / 100, 4),
                type="recent",
            )
            for r in records
        ]

    async def popular_searches(self, limit: int) -> list[Suggestion]:
        top = await self._analytics.popular(limit)
        return [Suggestion(text=t.term, relevance=float(t.count), type="popular") for t in top]

    async def suggest(self, partial: str, limit: int = 10) -> SuggestionSet:
        """Return blended suggestions for *partial* plus the popular list.

        Below :data:`MIN_PARTIAL_LENGTH` characters no content lookups are
        made; only the popular list is returned.
        """
        partial = partial.strip()
        if len(partial) < MIN_PARTIAL_LENGTH:
            popular = await self._isolated("popular", self.popular_searches(POPULAR_LIST_SIZE))
            return SuggestionSet(popular=popular)

        share = max(1, math.ceil(limit / 4))
        titles, tags, recent, popular = await asyncio.gather(
            self._isolated("title", self.title_suggestions(partial, math.ceil(limit / 2))),
            self._isolated("tag", self.tag_suggestions(partial, share)),
            self._isolated("recent", self.recent_suggestions(partial, share)),
            self._isolated("popular", self.popular_searches(max(POPULAR_LIST_SIZE, limit))),
        )

        needle = partial.casefold()
        matching_popular = [
            p.model_copy(update={"relevance": round(score(p.text, partial), 4)})
            for p in popular
            if needle in p.text.casefold()
        ][:share]

        merged = merge_suggestions([titles, tags, recent, matching_popular], limit)
        logger.info(
            "suggest.complete",
            partial=partial[:40],
            titles=len(titles),
            tags=len(tags),
            recent=len(recent),
            popular=len(matching_popular),
            returned=len(merged),
        )
        return SuggestionSet(suggestions=merged, popular=popular[:POPULAR_LIST_SIZE])
