"""Request orchestration — wires normalizer, executor and highlighter together."""

from __future__ import annotations

import asyncio
import math
import time
from typing import Any, Iterable

import structlog
from pydantic import ValidationError

from content_search.errors import ClientError
from content_search.models import (
    ContentFilter,
    ContentSort,
    FilterResponse,
    Pagination,
    SearchMeta,
    SearchRequest,
    SearchResponse,
    ValuesResponse,
)
from content_search.search import normalizer
from content_search.search.federated import FederatedSearch
from content_search.search.highlight import apply_highlights
from content_search.search.registry import get_variant, tag_variants
from content_search.services.content_store import ContentStore
from content_search.utils.dates import parse_datetime

logger = structlog.get_logger(__name__)

_FILTER_SORT_FIELDS = {"createdAt": "created_at", "title": "title", "views": "view_count"}


def split_values(values: Iterable[str] | None) -> list[str]:
    """Flatten repeated and comma-separated query values, dropping blanks."""
    flat: list[str] = []
    for value in values or []:
        flat.extend(part.strip() for part in value.split(",") if part.strip())
    return flat


def _parse_bound(raw: str | None, name: str, *, end_of_day: bool = False) -> Any:  # noqa: ANN401
    try:
        return parse_datetime(raw, end_of_day=end_of_day)
    except ValueError as exc:
        raise ClientError(f"Invalid {name}: {raw!r}") from exc


def build_search_request(
    query: str | None,
    page: int = 1,
    limit: int = 10,
    content_types: Iterable[str] | None = None,
    fuzzy: bool = False,
    highlight: bool = True,
    sort_by: str = "relevance",
    date_start: str | None = None,
    date_end: str | None = None,
    tags: Iterable[str] | None = None,
    min_views: int | None = None,
) -> SearchRequest:
    """Validate raw query parameters into a :class:`SearchRequest`.

    Raises:
        ClientError: Missing query, bad dates, bounds or content types.
    """
    if query is None or not query.strip():
        raise ClientError("Search query is required")

    try:
        request = SearchRequest(
            query=query.strip(),
            page=page,
            page_size=limit,
            content_types=split_values(content_types),
            fuzzy=fuzzy,
            highlight=highlight,
            sort_by=sort_by,
            date_start=_parse_bound(date_start, "dateStart"),
            date_end=_parse_bound(date_end, "dateEnd", end_of_day=True),
            tags=split_values(tags),
            min_views=min_views,
        )
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()
        )
        raise ClientError(problems) from exc

    if request.date_start and request.date_end and request.date_start > request.date_end:
        raise ClientError("dateStart must not be after dateEnd")
    # Unknown names fail here, before any store is touched.
    for name in request.content_types:
        get_variant(name)
    return request


async def collect_available_tags(store: ContentStore) -> list[str]:
    """Union of published tags across tag-bearing variants (best effort)."""
    variants = tag_variants()
    found = await asyncio.gather(
        *(store.distinct_tags(v.name, ContentFilter()) for v in variants),
        return_exceptions=True,
    )
    tags: set[str] = set()
    for variant, outcome in zip(variants, found):
        if isinstance(outcome, BaseException):
            logger.warning("search.tags_failed", variant=variant.name, error=str(outcome))
            continue
        tags.update(outcome)
    return sorted(tags)


async def run_search(
    request: SearchRequest,
    executor: FederatedSearch,
    store: ContentStore,
) -> SearchResponse:
    """Execute one search and build the public response.

    Stages:
        1. Normalize the raw query (empty -> :class:`ClientError`).
        2. Federated query across variants (fuzzy expansion inside).
        3. Highlight titles, excerpts and descriptions.
        4. Pagination metadata and available tags.

    Analytics are recorded by the caller so cached responses still count.
    """
    t_start = time.perf_counter()
    log = logger.bind(query=request.query[:80], page=request.page, sort_by=request.sort_by.value)
    log.info("search.start", fuzzy=request.fuzzy, content_types=request.content_types)

    query = normalizer.normalize(request.query)
    if query.is_empty:
        raise ClientError("Search query must contain letters or digits")

    outcome, available_tags = await asyncio.gather(
        executor.search(request, query),
        collect_available_tags(store),
    )

    if request.highlight:
        apply_highlights(outcome.results, [query.phrase, *query.terms])

    total_pages = math.ceil(outcome.total / request.page_size) if outcome.total else 0
    elapsed_ms = (time.perf_counter() - t_start) * 1000

    response = SearchResponse(
        results=outcome.results,
        pagination=Pagination(
            current_page=request.page,
            total_pages=total_pages,
            total_results=outcome.total,
            has_next_page=request.page < total_pages,
            has_prev_page=request.page > 1,
            results_per_page=request.page_size,
        ),
        search_meta=SearchMeta(
            query=request.query,
            fuzzy_search=request.fuzzy,
            highlighting=request.highlight,
            sort_by=request.sort_by,
            search_terms_used=outcome.search_terms_used,
            processing_time_ms=round(elapsed_ms, 1),
        ),
        available_tags=available_tags,
    )
    log.info(
        "search.complete",
        results=outcome.total,
        failed_variants=outcome.failed_variants,
        latency_ms=round(elapsed_ms, 1),
    )
    return response


async def filter_content(
    store: ContentStore,
    content_type: str | None,
    categories: Iterable[str] | None = None,
    tags: Iterable[str] | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    author: str | None = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
    page: int = 1,
    limit: int = 10,
) -> FilterResponse:
    """List published items of one variant matching structured criteria.

    Raises:
        ClientError: Missing or unknown content type, bad sort or bounds.
    """
    if not content_type:
        raise ClientError("Content type is required")
    variant = get_variant(content_type)
    if sort_by not in _FILTER_SORT_FIELDS:
        raise ClientError(f"Invalid sortBy: {sort_by!r}")
    if sort_order not in ("asc", "desc"):
        raise ClientError(f"Invalid sortOrder: {sort_order!r}")
    if page < 1 or not 1 <= limit <= 100:
        raise ClientError("page must be >= 1 and limit between 1 and 100")

    content_filter = ContentFilter(
        categories_any=split_values(categories),
        tags_any=split_values(tags) if variant.has_tags else [],
        created_from=_parse_bound(date_from, "dateFrom"),
        created_to=_parse_bound(date_to, "dateTo", end_of_day=True),
        author=author or None,
    )
    sort = ContentSort(field=_FILTER_SORT_FIELDS[sort_by], descending=sort_order == "desc")

    results, total = await asyncio.gather(
        store.find_published(
            variant.name, content_filter, sort, skip=(page - 1) * limit, limit=limit
        ),
        store.count_published(variant.name, content_filter),
    )
    logger.info("filter.complete", content_type=variant.name, results=len(results), total=total)
    return FilterResponse(results=results, total=total, page=page, limit=limit)


async def list_categories(store: ContentStore, content_type: str) -> ValuesResponse:
    """Distinct non-empty categories of a variant's published items."""
    variant = get_variant(content_type)
    categories = await store.distinct_categories(variant.name, ContentFilter())
    return ValuesResponse(content_type=variant.name, data=categories)


async def list_tags(store: ContentStore, content_type: str) -> ValuesResponse:
    """Distinct tags of a variant's published items.

    Raises:
        ClientError: If the variant does not carry tags.
    """
    variant = get_variant(content_type)
    if not variant.has_tags:
        raise ClientError("This content type does not support tags")
    tags = await store.distinct_tags(variant.name, ContentFilter())
    return ValuesResponse(content_type=variant.name, data=tags)
