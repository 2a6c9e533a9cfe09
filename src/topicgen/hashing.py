"""Order-independent fingerprints for cache invalidation.

Change detection only, not a security primitive.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence

from topicgen.models import SourceItem, TrendingContext

EMPTY_FINGERPRINT = "0"

Primitive = str | int | float | bool | None


def _render(value: Primitive | Sequence[Primitive]) -> str:
    if isinstance(value, (list, tuple)):
        return ",".join(_render(v) for v in value)
    if value is None:
        return "null"
    return str(value)


def fingerprint(pairs: Iterable[Sequence[Primitive | Sequence[Primitive]]]) -> str:
    """Digest a collection of tuples, ignoring the order of the collection.

    Each tuple renders as ``a:b:...`` (list elements comma-joined); the
    rendered strings are sorted before hashing so permutations collide and
    any content change does not.
    """
    rendered = sorted(":".join(_render(part) for part in pair) for pair in pairs)
    if not rendered:
        return EMPTY_FINGERPRINT
    data = "|".join(rendered)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:16]


def stories_fingerprint(items: Iterable[SourceItem]) -> str:
    return fingerprint(
        (item.id, item.published_at.isoformat() if item.published_at else None)
        for item in items
    )


def trends_fingerprint(trends: Iterable[TrendingContext]) -> str:
    return fingerprint((t.trend_query, list(t.platforms)) for t in trends)
