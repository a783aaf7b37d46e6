"""Federated search executor — one concurrent query per content variant."""

from __future__ import annotations

import asyncio
import time
from typing import Callable

import structlog

from content_search.errors import CollaboratorUnavailable
from content_search.models import (
    ContentFilter,
    ContentSort,
    NormalizedQuery,
    SearchOutcome,
    SearchRequest,
    SearchResult,
    SortMode,
    TextMatch,
)
from content_search.search import fuzzy
from content_search.search.registry import VariantDescriptor, resolve_variants
from content_search.search.scoring import score
from content_search.services.content_store import ContentStore

logger = structlog.get_logger(__name__)

_STORE_SORT: dict[SortMode, ContentSort] = {
    SortMode.RELEVANCE: ContentSort(field="created_at", descending=True),
    SortMode.DATE: ContentSort(field="created_at", descending=True),
    SortMode.TITLE: ContentSort(field="title", descending=False),
    SortMode.VIEWS: ContentSort(field="view_count", descending=True),
}


def build_filter(
    variant: VariantDescriptor,
    request: SearchRequest,
    query: NormalizedQuery,
    fuzzy_patterns: list[str],
) -> ContentFilter:
    """Translate a search request into the filter for one *variant*.

    Tag and view filters only apply to variants that carry those fields;
    the description clause only to variants that have one.
    """
    return ContentFilter(
        text=TextMatch(
            phrase=query.phrase,
            index_terms=query.terms,
            include_description=variant.has_description,
            patterns=fuzzy_patterns,
        ),
        created_from=request.date_start,
        created_to=request.date_end,
        tags_any=request.tags if variant.has_tags else [],
        min_views=request.min_views if variant.tracks_views else None,
    )


def sort_results(results: list[SearchResult], sort_by: SortMode) -> list[SearchResult]:
    """Order merged results deterministically for *sort_by*.

    Relevance is non-increasing in score with ties broken by recency.
    """
    if sort_by is SortMode.RELEVANCE:
        key = lambda r: (-r.relevance_score, -r.created_at.timestamp())  # noqa: E731
    elif sort_by is SortMode.TITLE:
        key = lambda r: (r.title.casefold(), -r.created_at.timestamp())  # noqa: E731
    elif sort_by is SortMode.VIEWS:
        key = lambda r: (-r.view_count, -r.created_at.timestamp())  # noqa: E731
    else:
        key = lambda r: -r.created_at.timestamp()  # noqa: E731
    return sorted(results, key=key)


class FederatedSearch:
    """Runs the same logical query against every eligible variant.

    Args:
        store:           Content store queried once per variant.
        timeout_seconds: Per-variant bound; a slow variant contributes nothing.
        on_variant_failure: Optional callback receiving each failed variant name.
    """

    def __init__(
        self,
        store: ContentStore,
        timeout_seconds: float = 5.0,
        on_variant_failure: Callable[[str], None] | None = None,
    ) -> None:
        self._store = store
        self._timeout = timeout_seconds
        self._on_variant_failure = on_variant_failure

    async def _query_variant(
        self,
        variant: VariantDescriptor,
        content_filter: ContentFilter,
        request: SearchRequest,
    ) -> list[SearchResult]:
        t_start = time.perf_counter()
        try:
            items = await asyncio.wait_for(
                self._store.find_published(
                    variant.name,
                    content_filter,
                    _STORE_SORT[request.sort_by],
                    # Pagination is per variant, not over the merged list.
                    skip=request.skip,
                    limit=request.page_size,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise CollaboratorUnavailable(
                variant.name, f"timed out after {self._timeout}s"
            ) from exc
        except Exception as exc:
            raise CollaboratorUnavailable(variant.name, str(exc)) from exc

        elapsed = (time.perf_counter() - t_start) * 1000
        logger.debug(
            "federated.variant_done",
            variant=variant.name,
            results=len(items),
            latency_ms=round(elapsed, 1),
        )
        return [
            SearchResult(**item.model_dump(), content_type=variant.name)
            for item in items
            if item.published
        ]

    async def search(self, request: SearchRequest, query: NormalizedQuery) -> SearchOutcome:
        """Query all eligible variants concurrently and merge the results.

        Args:
            request: Validated search request.
            query:   Normalized query (must not be empty).

        Returns:
            :class:`SearchOutcome` with merged, sorted results. ``total`` is
            the merged length; failed variants are listed, never raised.
        """
        variants = resolve_variants(request.content_types)
        patterns = sorted(fuzzy.expand(query.terms or [query.phrase])) if request.fuzzy else []

        branches = [
            self._query_variant(v, build_filter(v, request, query, patterns), request)
            for v in variants
        ]
        outcomes = await asyncio.gather(*branches, return_exceptions=True)

        merged: list[SearchResult] = []
        failed: list[str] = []
        for variant, outcome in zip(variants, outcomes):
            if isinstance(outcome, BaseException):
                failed.append(variant.name)
                timed_out = isinstance(outcome.__cause__, asyncio.TimeoutError)
                logger.warning(
                    "federated.variant_timeout" if timed_out else "federated.variant_failed",
                    variant=variant.name,
                    error=str(outcome),
                )
                if self._on_variant_failure is not None:
                    self._on_variant_failure(variant.name)
                continue
            merged.extend(outcome)

        if request.sort_by is SortMode.RELEVANCE:
            for result in merged:
                result.relevance_score = round(score(result.title, query.phrase), 4)

        ordered = sort_results(merged, request.sort_by)
        logger.info(
            "federated.merged",
            variants=len(variants),
            failed=len(failed),
            results=len(ordered),
            fuzzy_terms=len(patterns),
        )
        return SearchOutcome(
            results=ordered,
            total=len(ordered),
            search_terms_used=1 + len(patterns),
            failed_variants=failed,
        )
