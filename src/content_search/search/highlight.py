"""Result highlighter — excerpt truncation and ``<mark>`` wrapping."""

from __future__ import annotations

import re
from typing import Iterable

from content_search.models import SearchResult

EXCERPT_CHARS = 300
MARK_OPEN = "<mark>"
MARK_CLOSE = "</mark>"


def excerpt(text: str, limit: int = EXCERPT_CHARS) -> str:
    """Truncate *text* to *limit* characters, adding an ellipsis when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + "..."


def highlight(text: str | None, terms: Iterable[str]) -> str | None:
    """Wrap every case-insensitive occurrence of any term in a marker pair.

    All terms are matched in one pass, longest first, so a marker never
    lands inside another. Not idempotent: call once per field.
    """
    if not text:
        return text
    ordered = sorted({t for t in terms if t}, key=len, reverse=True)
    if not ordered:
        return text
    pattern = re.compile("|".join(re.escape(t) for t in ordered), re.IGNORECASE)
    return pattern.sub(lambda m: f"{MARK_OPEN}{m.group(0)}{MARK_CLOSE}", text)


def apply_highlights(results: list[SearchResult], terms: list[str]) -> None:
    """Fill the ``highlighted_*`` fields of each result in place."""
    for result in results:
        result.highlighted_title = highlight(result.title, terms)
        if result.body:
            result.highlighted_excerpt = highlight(excerpt(result.body), terms)
        if result.description:
            result.highlighted_description = highlight(excerpt(result.description), terms)
