"""Exception taxonomy for the search core.

Only :class:`ClientError` ever reaches the HTTP caller; the others are
raised inside a branch and converted to an empty contribution (or a
cache miss) at that branch's boundary.
"""

from __future__ import annotations


class SearchError(Exception):
    """Base class for all search-core errors."""


class ClientError(SearchError):
    """Invalid request: empty query, unknown content type, bad bounds."""


class CollaboratorUnavailable(SearchError):
    """A content variant's store failed or timed out."""

    def __init__(self, variant: str, reason: str) -> None:
        super().__init__(f"{variant}: {reason}")
        self.variant = variant
        self.reason = reason


class CacheUnavailable(SearchError):
    """The cache backend could not be reached."""
