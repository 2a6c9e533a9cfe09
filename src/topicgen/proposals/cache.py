"""Time-bounded cluster cache keyed by project and audience profile."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from topicgen.models import ClusterCacheEntry, TopicCluster
from topicgen.store import JsonStore

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=1)


class ClusterCache:
    """Reads and replaces :class:`ClusterCacheEntry` rows in the store."""

    def __init__(self, store: JsonStore, ttl: timedelta = DEFAULT_TTL) -> None:
        self._store = store
        self._ttl = ttl

    def get(
        self,
        project_id: str,
        audience_profile_id: str | None,
        now: datetime | None = None,
    ) -> ClusterCacheEntry | None:
        """Return the unexpired entry for the key, if any."""
        now = now or datetime.now(tz=UTC)
        entry = self._store.get_cache_entry(project_id, audience_profile_id)
        if entry is None or entry.expires_at <= now:
            return None
        return entry

    def put(
        self,
        project_id: str,
        audience_profile_id: str | None,
        clusters: list[TopicCluster],
        stories_fingerprint: str,
        trends_fingerprint: str = "",
        now: datetime | None = None,
    ) -> ClusterCacheEntry:
        """Replace the entry for the key with freshly computed clusters."""
        now = now or datetime.now(tz=UTC)
        entry = ClusterCacheEntry(
            project_id=project_id,
            audience_profile_id=audience_profile_id,
            clusters=clusters,
            stories_fingerprint=stories_fingerprint,
            trends_fingerprint=trends_fingerprint,
            created_at=now,
            expires_at=now + self._ttl,
        )
        self._store.upsert_cache_entry(entry)
        logger.debug(
            "Cached %d clusters for project %s profile %s",
            len(clusters),
            project_id,
            audience_profile_id,
        )
        return entry

    def lookup(
        self,
        project_id: str,
        audience_profile_id: str | None,
        stories_fingerprint: str,
        trends_fingerprint: str | None = None,
        now: datetime | None = None,
    ) -> list[TopicCluster] | None:
        """Return cached clusters only if the inputs they were built from still match.

        ``trends_fingerprint`` is compared only when given.
        """
        entry = self.get(project_id, audience_profile_id, now=now)
        if entry is None or entry.stories_fingerprint != stories_fingerprint:
            return None
        if trends_fingerprint is not None and entry.trends_fingerprint != trends_fingerprint:
            return None
        logger.info("Cluster cache hit for project %s", project_id)
        return entry.clusters
