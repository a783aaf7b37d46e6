"""Registry of searchable content variants and their query capabilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from content_search.errors import ClientError


@dataclass(frozen=True)
class VariantDescriptor:
    """Static description of one content collection.

    Attributes:
        name:            Canonical content-type tag, e.g. ``"dairy"``.
        label:           Human readable collection name.
        has_tags:        Items carry a ``tags`` list.
        tracks_views:    Items carry a meaningful ``view_count``.
        has_description: Items carry a ``description`` worth searching.
        aliases:         Alternative names accepted from callers.
    """

    name: str
    label: str
    has_tags: bool = False
    tracks_views: bool = False
    has_description: bool = False
    aliases: tuple[str, ...] = field(default_factory=tuple)


VARIANTS: tuple[VariantDescriptor, ...] = (
    VariantDescriptor(
        "article", "Articles", has_tags=True, tracks_views=True, has_description=True,
        aliases=("articles", "blog", "blogs"),
    ),
    VariantDescriptor("news", "News", has_tags=True, tracks_views=True, has_description=True),
    VariantDescriptor("event", "Events", has_description=True, aliases=("events",)),
    VariantDescriptor(
        "farm", "Farms for sale", tracks_views=True, has_description=True,
        aliases=("farms", "farmsforsale"),
    ),
    VariantDescriptor(
        "magazine", "Magazines", tracks_views=True, has_description=True,
        aliases=("magazines",),
    ),
    # Livestock guides: tags only; view counts are not filterable.
    VariantDescriptor("dairy", "Dairy guides", has_tags=True, aliases=("dairies",)),
    VariantDescriptor("goat", "Goat guides", has_tags=True, aliases=("goats",)),
    VariantDescriptor(
        "piggery", "Piggery guides", has_tags=True, aliases=("piggeries", "pig", "pigs"),
    ),
    VariantDescriptor("beef", "Beef guides", has_tags=True, aliases=("beefs",)),
)

_BY_NAME: dict[str, VariantDescriptor] = {}
for _variant in VARIANTS:
    _BY_NAME[_variant.name] = _variant
    for _alias in _variant.aliases:
        _BY_NAME[_alias] = _variant


def get_variant(name: str) -> VariantDescriptor:
    """Resolve a canonical name or alias (case-insensitive).

    Raises:
        ClientError: If *name* is not a known content type.
    """
    variant = _BY_NAME.get(name.strip().lower())
    if variant is None:
        raise ClientError(f"Invalid content type: {name!r}")
    return variant


def resolve_variants(names: Iterable[str]) -> list[VariantDescriptor]:
    """Resolve a content-type filter; empty input selects every variant.

    Order follows :data:`VARIANTS` and duplicates collapse.

    Raises:
        ClientError: If any name is unknown.
    """
    requested = [n for n in names if n and n.strip()]
    if not requested:
        return list(VARIANTS)
    wanted = {get_variant(n).name for n in requested}
    return [v for v in VARIANTS if v.name in wanted]


def tag_variants() -> list[VariantDescriptor]:
    """Variants whose items carry tags."""
    return [v for v in VARIANTS if v.has_tags]
