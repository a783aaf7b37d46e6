"""Query normalizer — cleans raw query text into a phrase plus index terms."""

from __future__ import annotations

import re

from content_search.models import NormalizedQuery

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

# Shorter words are too noisy for substring search.
MIN_TERM_LENGTH = 3


def clean(raw: str) -> str:
    """Lower-case *raw*, turn punctuation into spaces and collapse whitespace."""
    lowered = raw.lower()
    return _WHITESPACE.sub(" ", _NON_WORD.sub(" ", lowered)).strip()


def normalize(raw: str | None) -> NormalizedQuery:
    """Normalize a raw query.

    Args:
        raw: Query text exactly as the caller sent it.

    Returns:
        :class:`NormalizedQuery`. ``is_empty`` is true when *raw* is empty or
        nothing but punctuation; callers must treat that as a client error.
    """
    if not raw:
        return NormalizedQuery()

    phrase = clean(raw)
    if not phrase:
        return NormalizedQuery()

    terms = [word for word in phrase.split(" ") if len(word) >= MIN_TERM_LENGTH]
    return NormalizedQuery(
        phrase=phrase,
        terms=terms,
        index_phrase=" ".join(terms) or phrase,
    )
