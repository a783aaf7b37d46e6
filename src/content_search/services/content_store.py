"""Read-only content store boundary and an in-memory implementation.

The persistence layer (create/update/delete per content type) lives outside
this service; the search core only needs the four read capabilities of
:class:`ContentStore`. :class:`MemoryContentStore` evaluates
:class:`ContentFilter` in Python and can be seeded from a YAML file.
"""

from __future__ import annotations

import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Protocol

import structlog
import yaml

from content_search.models import ContentFilter, ContentItem, ContentSort, TextMatch
from content_search.search.registry import get_variant

logger = structlog.get_logger(__name__)


class ContentStore(Protocol):
    """Per-variant read capabilities consumed by the search core."""

    async def find_published(
        self,
        variant: str,
        content_filter: ContentFilter,
        sort: ContentSort,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[ContentItem]: ...

    async def count_published(self, variant: str, content_filter: ContentFilter) -> int: ...

    async def distinct_tags(self, variant: str, content_filter: ContentFilter) -> list[str]: ...

    async def distinct_categories(
        self, variant: str, content_filter: ContentFilter
    ) -> list[str]: ...

    async def ping(self) -> bool: ...


@lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


def _has_word(text: str, word: str) -> bool:
    return _compile(rf"\b{re.escape(word)}").search(text) is not None


def _matches_text(item: ContentItem, text: TextMatch) -> bool:
    title = item.title.lower()
    body = item.body.lower()
    phrase = text.phrase.lower()

    combined = f"{title} {body}"
    if text.index_terms and all(_has_word(combined, term) for term in text.index_terms):
        return True
    if phrase and (phrase in title or phrase in body):
        return True
    if text.include_description and phrase and item.description:
        if phrase in item.description.lower():
            return True
    for pattern in text.patterns:
        compiled = _compile(pattern)
        if compiled.search(item.title) or compiled.search(item.body):
            return True
    return False


def matches(item: ContentItem, content_filter: ContentFilter) -> bool:
    """Return True if a published *item* satisfies every filter clause."""
    if not item.published:
        return False
    f = content_filter
    if f.text is not None and not _matches_text(item, f.text):
        return False
    if f.title_contains and f.title_contains.lower() not in item.title.lower():
        return False
    if f.tag_contains:
        needle = f.tag_contains.lower()
        if not any(needle in tag.lower() for tag in item.tags):
            return False
    if f.created_from is not None and item.created_at < f.created_from:
        return False
    if f.created_to is not None and item.created_at > f.created_to:
        return False
    if f.tags_any and not set(item.tags) & set(f.tags_any):
        return False
    if f.categories_any and item.category not in f.categories_any:
        return False
    if f.author and item.author != f.author:
        return False
    if f.min_views is not None and item.view_count < f.min_views:
        return False
    return True


def _sort_key(item: ContentItem, field_name: str) -> Any:  # noqa: ANN401
    value = getattr(item, field_name, None)
    if isinstance(value, str):
        return value.casefold()
    return value


class MemoryContentStore:
    """In-process :class:`ContentStore` keyed by canonical variant name."""

    def __init__(self, items: dict[str, Iterable[ContentItem]] | None = None) -> None:
        self._items: dict[str, list[ContentItem]] = {}
        for variant, variant_items in (items or {}).items():
            for item in variant_items:
                self.add(variant, item)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "MemoryContentStore":
        """Load ``{variant: [item, ...]}`` documents from a YAML file.

        A missing file yields an empty store; malformed items are skipped.
        """
        store = cls()
        file_path = Path(path)
        if not file_path.exists():
            logger.warning("content_store.seed_missing", path=str(file_path))
            return store

        with file_path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}

        for variant, docs in raw.items():
            for index, doc in enumerate(docs or []):
                try:
                    store.add(variant, ContentItem.model_validate(doc))
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "content_store.seed_item_invalid",
                        variant=variant,
                        index=index,
                        error=str(exc),
                    )
        logger.info("content_store.loaded", path=str(file_path), counts=store.counts())
        return store

    def add(self, variant: str, item: ContentItem) -> None:
        """Insert *item* under the canonical name of *variant*."""
        name = get_variant(variant).name
        self._items.setdefault(name, []).append(item)

    def counts(self) -> dict[str, int]:
        return {name: len(items) for name, items in self._items.items()}

    def _matching(self, variant: str, content_filter: ContentFilter) -> list[ContentItem]:
        return [i for i in self._items.get(variant, []) if matches(i, content_filter)]

    async def find_published(
        self,
        variant: str,
        content_filter: ContentFilter,
        sort: ContentSort,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[ContentItem]:
        found = self._matching(variant, content_filter)
        # Secondary order first; sorted() is stable.
        found.sort(key=lambda i: i.created_at, reverse=True)
        found.sort(key=lambda i: _sort_key(i, sort.field), reverse=sort.descending)
        end = None if limit is None else skip + limit
        return found[skip:end]

    async def count_published(self, variant: str, content_filter: ContentFilter) -> int:
        return len(self._matching(variant, content_filter))

    async def distinct_tags(self, variant: str, content_filter: ContentFilter) -> list[str]:
        tags: set[str] = set()
        needle = (content_filter.tag_contains or "").lower()
        for item in self._matching(variant, content_filter):
            tags.update(t for t in item.tags if t and needle in t.lower())
        return sorted(tags)

    async def distinct_categories(
        self, variant: str, content_filter: ContentFilter
    ) -> list[str]:
        return sorted({i.category for i in self._matching(variant, content_filter) if i.category})

    async def ping(self) -> bool:
        return True
