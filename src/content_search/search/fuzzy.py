"""Fuzzy term expander — bounded typo-tolerant variants of query terms.

Each variant is a regular-expression fragment for case-insensitive
substring search against title and body. This is a heuristic typo model,
not k-edit-distance enumeration; each term yields at most five variants.
"""

from __future__ import annotations

import re
from typing import Iterable

MAX_VARIANTS_PER_TERM = 5
_MIN_EXPANDABLE_LENGTH = 4


def _transpose(term: str) -> str:
    return term[1] + term[0] + term[2:]


def _delete_last(term: str) -> str:
    return term[:-1]


def _wildcard(term: str) -> str:
    """Wildcard in the suffix: the second-to-last character matches any letter.

    ``goet`` -> ``go\\wt`` matches ``goat``.
    """
    return re.escape(term[:-2]) + r"\w" + re.escape(term[-1])


def _char_class(term: str) -> str:
    """First two characters, then a class of the rest repeated n..n+1 times.

    Tolerates one doubled or dropped letter after the prefix:
    ``catle`` -> ``ca[elt]{3,4}`` matches ``cattle``.
    """
    head, rest = term[:2], term[2:]
    letters = "".join(re.escape(ch) for ch in sorted(set(rest)))
    return f"{re.escape(head)}[{letters}]{{{len(rest)},{len(rest) + 1}}}"


def expand_term(term: str) -> list[str]:
    """Return the ordered, de-duplicated variants of a single *term*.

    Terms of three characters or fewer yield only themselves. Literal
    variants are escaped, so every entry compiles as a regex.
    """
    if len(term) < _MIN_EXPANDABLE_LENGTH:
        return [re.escape(term)]

    candidates = [
        re.escape(term),
        re.escape(_transpose(term)),
        re.escape(_delete_last(term)),
        _wildcard(term),
        _char_class(term),
    ]
    variants: list[str] = []
    for candidate in candidates:
        if candidate and candidate not in variants:
            variants.append(candidate)
    return variants[:MAX_VARIANTS_PER_TERM]


def expand(terms: Iterable[str]) -> set[str]:
    """Expand every term and return the union of their variants."""
    expanded: set[str] = set()
    for term in terms:
        expanded.update(expand_term(term))
    return expanded
