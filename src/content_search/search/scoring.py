"""Relevance scorer — layered literal-match heuristic with an edit-distance floor."""

from __future__ import annotations

import re

EXACT_SCORE = 100.0
PREFIX_SCORE = 80.0
WORD_BOUNDARY_SCORE = 70.0
SUBSTRING_SCORE = 60.0
SIMILARITY_WEIGHT = 40.0


def levenshtein(a: str, b: str) -> int:
    """Return the unit-cost edit distance between *a* and *b*.

    Classic dynamic programming over a ``(len(b)+1) x (len(a)+1)`` table,
    kept as two rolling rows.
    """
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    previous = list(range(len(a) + 1))
    for i, cb in enumerate(b, start=1):
        current = [i]
        for j, ca in enumerate(a, start=1):
            if ca == cb:
                current.append(previous[j - 1])
            else:
                current.append(min(previous[j - 1], current[j - 1], previous[j]) + 1)
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Normalised edit-distance similarity in [0, 1]."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return (max_len - levenshtein(a, b)) / max_len


def score(candidate: str, query: str) -> float:
    """Score how well *candidate* matches *query*, in [0, 100].

    Rules are evaluated in order and the first match wins: exact equality,
    prefix, word-boundary match, substring, then ``similarity * 40``.
    Boundary matches outrank plain containment even though both imply it.
    """
    text = candidate.lower()
    needle = query.lower()

    if text == needle:
        return EXACT_SCORE
    if not needle:
        return 0.0
    if text.startswith(needle):
        return PREFIX_SCORE
    if re.search(rf"\b{re.escape(needle)}", text):
        return WORD_BOUNDARY_SCORE
    if needle in text:
        return SUBSTRING_SCORE
    return max(0.0, similarity(text, needle) * SIMILARITY_WEIGHT)
