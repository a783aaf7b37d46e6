"""Pydantic v2 data models for the content search service."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from content_search.utils.dates import parse_datetime


class ApiModel(BaseModel):
    """Base for models that cross the HTTP boundary (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Content
# ---------------------------------------------------------------------------


class ContentItem(ApiModel):
    """A published (or draft) piece of content from one variant collection."""

    id: str
    title: str
    body: str = ""
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    category: str = ""
    author: Optional[str] = None
    created_at: datetime
    published_at: Optional[datetime] = None
    published: bool = False
    view_count: int = Field(default=0, ge=0)
    image_url: Optional[str] = None

    @field_validator("created_at", "published_at", mode="before")
    @classmethod
    def _as_utc(cls, value: Any) -> Optional[datetime]:  # noqa: ANN401
        # YAML seeds may hold bare dates.
        return parse_datetime(value)


class SortMode(str, Enum):
    """Result ordering requested by the caller."""

    RELEVANCE = "relevance"
    DATE = "date"
    TITLE = "title"
    VIEWS = "views"


class TextMatch(BaseModel):
    """Text-matching part of a :class:`ContentFilter`.

    An item matches when any of the following holds (case-insensitive):
    every ``index_terms`` word appears in title+body, ``phrase`` is a
    substring of title or body (or description when ``include_description``),
    or any ``patterns`` regex matches title or body.
    """

    phrase: str
    index_terms: list[str] = Field(default_factory=list)
    include_description: bool = False
    patterns: list[str] = Field(default_factory=list)


class ContentFilter(BaseModel):
    """Store-agnostic filter handed to :class:`ContentStore` implementations.

    ``published=True`` is implied; stores never return drafts.
    """

    text: Optional[TextMatch] = None
    title_contains: Optional[str] = None
    tag_contains: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    tags_any: list[str] = Field(default_factory=list)
    categories_any: list[str] = Field(default_factory=list)
    author: Optional[str] = None
    min_views: Optional[int] = None


class ContentSort(BaseModel):
    """Field ordering applied by the store before skip/limit."""

    field: str = "created_at"
    descending: bool = True


# ---------------------------------------------------------------------------
# Search pipeline models
# ---------------------------------------------------------------------------


class NormalizedQuery(BaseModel):
    """Output of the query normalizer."""

    phrase: str = ""
    terms: list[str] = Field(default_factory=list)
    index_phrase: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.phrase


class SearchRequest(BaseModel):
    """One validated search invocation."""

    query: str = Field(..., min_length=1)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=10, ge=1, le=100)
    content_types: list[str] = Field(default_factory=list)
    fuzzy: bool = False
    highlight: bool = True
    sort_by: SortMode = SortMode.RELEVANCE
    date_start: Optional[datetime] = None
    date_end: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list)
    min_views: Optional[int] = Field(default=None, ge=0)

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size


class SearchResult(ContentItem):
    """ContentItem enriched with its variant tag, score and highlights."""

    content_type: str
    relevance_score: float = 0.0
    highlighted_title: Optional[str] = None
    highlighted_excerpt: Optional[str] = None
    highlighted_description: Optional[str] = None


class SearchOutcome(BaseModel):
    """Merged federated search output."""

    results: list[SearchResult] = Field(default_factory=list)
    total: int = 0
    search_terms_used: int = 1
    failed_variants: list[str] = Field(default_factory=list)


class Suggestion(ApiModel):
    """One autocomplete entry."""

    text: str
    relevance: float
    type: str
    content_type: Optional[str] = None


class SuggestionSet(BaseModel):
    """Blended suggestions plus the standalone popular list."""

    suggestions: list[Suggestion] = Field(default_factory=list)
    popular: list[Suggestion] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Analytics models
# ---------------------------------------------------------------------------


class RequesterMeta(BaseModel):
    """Opaque caller metadata attached to analytics records."""

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    session_id: str = "anonymous"


class ClickEvent(ApiModel):
    """A result click recorded against a search term."""

    content_id: str
    content_type: str
    position: int = Field(default=0, ge=0)
    timestamp: Optional[datetime] = None


class SearchAnalyticsRecord(ApiModel):
    """Aggregated history of one normalized search term."""

    search_term: str
    result_count: int = 0
    total_results: int = 0
    search_count: int = 1
    first_searched: datetime
    last_searched: datetime
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    session_id: str = "anonymous"
    clicked_results: list[ClickEvent] = Field(default_factory=list)

    @property
    def avg_result_count(self) -> float:
        return self.total_results / self.search_count if self.search_count else 0.0


class AnalyticsWindow(BaseModel):
    """Inclusive time window for aggregation queries."""

    start: datetime
    end: datetime

    def contains(self, moment: datetime) -> bool:
        return self.start <= moment <= self.end


class TopSearch(ApiModel):
    term: str
    count: int
    avg_result_count: float
    last_searched: datetime


class TrendPoint(ApiModel):
    date: str
    search_count: int
    unique_term_count: int


class AnalyticsSummary(ApiModel):
    total_searches: int
    unique_search_terms: int
    avg_results_per_search: float


# ---------------------------------------------------------------------------
# API response models
# ---------------------------------------------------------------------------


class Pagination(ApiModel):
    current_page: int
    total_pages: int
    total_results: int
    has_next_page: bool
    has_prev_page: bool
    results_per_page: int


class SearchMeta(ApiModel):
    query: str
    fuzzy_search: bool
    highlighting: bool
    sort_by: SortMode
    search_terms_used: int = 1
    processing_time_ms: float = 0.0


class SearchResponse(ApiModel):
    """Top-level response from GET /search."""

    results: list[SearchResult]
    pagination: Pagination
    search_meta: SearchMeta
    available_tags: list[str] = Field(default_factory=list)


class SuggestionsResponse(ApiModel):
    """Response from GET /suggestions."""

    suggestions: list[Suggestion]
    popular_searches: list[Suggestion]
    query: str = ""


class TrackRequest(ApiModel):
    """Body of POST /analytics/track."""

    search_term: str = Field(..., min_length=1)
    result_count: int = Field(default=0, ge=0)
    click_data: Optional[ClickEvent] = None


class AckResponse(ApiModel):
    success: bool = True
    message: str


class AnalyticsResponse(ApiModel):
    """Response from GET /analytics."""

    top_searches: list[TopSearch]
    search_trends: list[TrendPoint]
    zero_result_searches: list[SearchAnalyticsRecord]
    summary: AnalyticsSummary


class FilterResponse(ApiModel):
    """Response from GET /filter."""

    results: list[ContentItem]
    total: int
    page: int
    limit: int


class ValuesResponse(ApiModel):
    """Response from GET /categories/{type} and GET /tags/{type}."""

    content_type: str
    data: list[str]


class HealthResponse(ApiModel):
    """Response from GET /health."""

    status: str
    cache: str
    analytics: str
    content_store: str
    uptime_seconds: float


class StatsResponse(ApiModel):
    """Response from GET /stats."""

    searches_total: int
    cache_hit_rate: float
    avg_latency_ms: float
    slow_searches: int
    failed_variant_queries: int
