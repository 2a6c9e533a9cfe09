"""Collect analyst-flagged source items inside a rolling window."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from topicgen.errors import ValidationError
from topicgen.models import AggregationScope, SourceItem
from topicgen.store import JsonStore

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


def flagged_items(
    store: JsonStore,
    project_id: str,
    *,
    window_days: int,
    focus_categories: list[str] | None = None,
    limit: int | None = None,
    scope: AggregationScope = AggregationScope.USER,
    user_id: str | None = None,
    now: datetime | None = None,
) -> list[SourceItem]:
    """Return items flagged for a project within ``window_days`` of ``now``.

    User scope reads only ``user_id``'s flags; project scope reads every
    flagger's.  Items are ordered by publication time, newest first, with
    undated items last.
    """
    if scope == AggregationScope.USER and not user_id:
        raise ValidationError("user_id is required for user-scoped aggregation")

    now = now or datetime.now(tz=UTC)
    cutoff = now - timedelta(days=window_days)
    flags = store.list_flags(
        project_id,
        since=cutoff,
        user_id=user_id if scope == AggregationScope.USER else None,
    )

    item_ids = list(dict.fromkeys(f.item_id for f in flags))
    if not item_ids:
        return []

    items = store.get_items(item_ids)
    if focus_categories:
        wanted = set(focus_categories)
        items = [i for i in items if i.category in wanted]

    items.sort(key=lambda i: i.published_at or _EPOCH, reverse=True)
    if limit is not None:
        items = items[:limit]

    logger.debug(
        "Aggregated %d items for project %s (%s scope, %d-day window)",
        len(items),
        project_id,
        scope,
        window_days,
    )
    return items
