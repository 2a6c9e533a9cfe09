"""JSON-backed persistence for the proposal pipeline.

Holds every table the pipeline touches in a single JSON document, loaded
on init and rewritten atomically after each mutation.  With ``path=None``
the store is purely in-memory.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from topicgen.errors import PersistenceError
from topicgen.models import (
    AudienceProfile,
    ClusterCacheEntry,
    FlagRecord,
    ProjectMember,
    ProposalStatus,
    SocialPost,
    SourceItem,
    TopicGeneratorSettings,
    TopicProposal,
    WatchedTrend,
)

logger = logging.getLogger(__name__)

STORE_FILENAME = "topicgen-store.json"

# Alias to avoid shadowing by methods named after builtins
_list = list


class _StoreData(BaseModel):
    """Internal wrapper for JSON serialization."""

    items: list[SourceItem] = Field(default_factory=list)
    flags: list[FlagRecord] = Field(default_factory=list)
    profiles: list[AudienceProfile] = Field(default_factory=list)
    members: list[ProjectMember] = Field(default_factory=list)
    settings: list[TopicGeneratorSettings] = Field(default_factory=list)
    proposals: list[TopicProposal] = Field(default_factory=list)
    cluster_cache: list[ClusterCacheEntry] = Field(default_factory=list)
    watched_trends: list[WatchedTrend] = Field(default_factory=list)
    social_posts: list[SocialPost] = Field(default_factory=list)


class JsonStore:
    """Row-oriented CRUD over the pipeline's entities.

    Mutations hold a lock for the in-memory change plus the file write, so
    replace-style operations never expose two live rows for one key.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._data = self._load()

    @classmethod
    def in_dir(cls, directory: Path) -> JsonStore:
        return cls(directory / STORE_FILENAME)

    # ── Private helpers ──────────────────────────────────────────

    def _load(self) -> _StoreData:
        if self._path is None or not self._path.exists():
            return _StoreData()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return _StoreData.model_validate(raw)
        except (json.JSONDecodeError, ValueError):
            logger.warning("Corrupt store at %s, starting fresh", self._path)
            return _StoreData()

    def _save(self) -> None:
        if self._path is None:
            return
        payload = self._data.model_dump_json(indent=2)
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self._path.parent, prefix=".topicgen-", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self._path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceError(f"Failed to write store {self._path}: {exc}") from exc

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """Apply a change under the lock and persist it.

        If the body or the write fails, every table is restored to its prior
        contents so a later successful write cannot persist the failed change.
        """
        with self._lock:
            tables = {name: _list(getattr(self._data, name)) for name in _StoreData.model_fields}
            snapshot = self._data.model_copy(update=tables)
            try:
                yield
                self._save()
            except Exception:
                self._data = snapshot
                raise

    # ── Source items and flags ───────────────────────────────────

    def add_item(self, item: SourceItem) -> None:
        """Insert or replace a source item by id."""
        with self._mutation():
            self._data.items = [i for i in self._data.items if i.id != item.id]
            self._data.items.append(item)

    def get_item(self, item_id: str) -> SourceItem | None:
        for item in self._data.items:
            if item.id == item_id:
                return item
        return None

    def get_items(self, item_ids: Iterable[str]) -> _list[SourceItem]:
        wanted = set(item_ids)
        return [i for i in self._data.items if i.id in wanted]

    def flag_item(
        self,
        project_id: str,
        user_id: str,
        item_id: str,
        flagged_at: datetime | None = None,
    ) -> FlagRecord:
        """Flag an item for a project. Re-flagging returns the existing record."""
        with self._mutation():
            for flag in self._data.flags:
                if (
                    flag.project_id == project_id
                    and flag.user_id == user_id
                    and flag.item_id == item_id
                ):
                    return flag
            record = FlagRecord(
                project_id=project_id,
                user_id=user_id,
                item_id=item_id,
                flagged_at=flagged_at or datetime.now(tz=UTC),
            )
            self._data.flags.append(record)
            return record

    def list_flags(
        self,
        project_id: str,
        *,
        since: datetime | None = None,
        user_id: str | None = None,
    ) -> _list[FlagRecord]:
        results = [f for f in self._data.flags if f.project_id == project_id]
        if since is not None:
            results = [f for f in results if f.flagged_at >= since]
        if user_id is not None:
            results = [f for f in results if f.user_id == user_id]
        return results

    # ── Audience profiles and members ────────────────────────────

    def upsert_profile(self, profile: AudienceProfile) -> None:
        with self._mutation():
            self._data.profiles = [p for p in self._data.profiles if p.id != profile.id]
            self._data.profiles.append(profile)

    def get_profile(self, profile_id: str) -> AudienceProfile | None:
        for profile in self._data.profiles:
            if profile.id == profile_id:
                return profile
        return None

    def list_profiles(self, project_id: str) -> _list[AudienceProfile]:
        return [p for p in self._data.profiles if p.project_id == project_id]

    def upsert_member(self, member: ProjectMember) -> None:
        with self._mutation():
            self._data.members = [
                m
                for m in self._data.members
                if not (m.project_id == member.project_id and m.user_id == member.user_id)
            ]
            self._data.members.append(member)

    def get_member(self, project_id: str, user_id: str) -> ProjectMember | None:
        for member in self._data.members:
            if member.project_id == project_id and member.user_id == user_id:
                return member
        return None

    # ── Generator settings ───────────────────────────────────────

    def get_settings(self, project_id: str) -> TopicGeneratorSettings | None:
        for settings in self._data.settings:
            if settings.project_id == project_id:
                return settings
        return None

    def upsert_settings(self, settings: TopicGeneratorSettings) -> None:
        with self._mutation():
            self._data.settings = [
                s for s in self._data.settings if s.project_id != settings.project_id
            ]
            self._data.settings.append(settings)

    def list_enabled_settings(self) -> _list[TopicGeneratorSettings]:
        return [s for s in self._data.settings if s.auto_generation_enabled]

    # ── Proposals ────────────────────────────────────────────────

    def create_proposal(self, proposal: TopicProposal) -> TopicProposal:
        with self._mutation():
            self._data.proposals.append(proposal)
        return proposal

    def save_proposal(self, proposal: TopicProposal) -> TopicProposal:
        """Replace a proposal by id, stamping ``updated_at``."""
        updated = proposal.model_copy(update={"updated_at": datetime.now(tz=UTC)})
        with self._mutation():
            for idx, existing in enumerate(self._data.proposals):
                if existing.id == proposal.id:
                    self._data.proposals[idx] = updated
                    break
            else:
                raise KeyError(proposal.id)
        return updated

    def get_proposal(self, proposal_id: str) -> TopicProposal | None:
        for proposal in self._data.proposals:
            if proposal.id == proposal_id:
                return proposal
        return None

    def delete_proposal(self, proposal_id: str) -> bool:
        with self._mutation():
            before = len(self._data.proposals)
            self._data.proposals = [p for p in self._data.proposals if p.id != proposal_id]
            removed = len(self._data.proposals) != before
        return removed

    def list_proposals(
        self,
        project_id: str,
        *,
        status: ProposalStatus | None = None,
        audience_profile_id: str | None = None,
        exclude_statuses: Iterable[ProposalStatus] = (),
        limit: int | None = None,
        offset: int = 0,
    ) -> _list[TopicProposal]:
        """Return a project's proposals, newest first."""
        excluded = set(exclude_statuses)
        results = [p for p in self._data.proposals if p.project_id == project_id]
        if status is not None:
            results = [p for p in results if p.status == status]
        if audience_profile_id is not None:
            results = [p for p in results if p.audience_profile_id == audience_profile_id]
        if excluded:
            results = [p for p in results if p.status not in excluded]
        results.sort(key=lambda p: p.created_at, reverse=True)
        results = results[offset:]
        if limit is not None:
            results = results[:limit]
        return results

    # ── Cluster cache ────────────────────────────────────────────

    def get_cache_entry(
        self, project_id: str, audience_profile_id: str | None
    ) -> ClusterCacheEntry | None:
        matches = [
            e
            for e in self._data.cluster_cache
            if e.project_id == project_id and e.audience_profile_id == audience_profile_id
        ]
        if not matches:
            return None
        return max(matches, key=lambda e: e.created_at)

    def upsert_cache_entry(self, entry: ClusterCacheEntry) -> None:
        """Replace every entry for the entry's key with this one."""
        with self._mutation():
            self._data.cluster_cache = [
                e
                for e in self._data.cluster_cache
                if not (
                    e.project_id == entry.project_id
                    and e.audience_profile_id == entry.audience_profile_id
                )
            ]
            self._data.cluster_cache.append(entry)

    def count_cache_entries(self, project_id: str, audience_profile_id: str | None) -> int:
        return sum(
            1
            for e in self._data.cluster_cache
            if e.project_id == project_id and e.audience_profile_id == audience_profile_id
        )

    # ── Social listening ─────────────────────────────────────────

    def add_watched_trend(self, trend: WatchedTrend) -> None:
        with self._mutation():
            self._data.watched_trends.append(trend)

    def list_watched_trends(
        self, project_id: str, user_id: str | None = None
    ) -> _list[WatchedTrend]:
        """Active trends for a project, newest first."""
        results = [
            t for t in self._data.watched_trends if t.project_id == project_id and t.is_active
        ]
        if user_id is not None:
            results = [t for t in results if t.user_id == user_id]
        return sorted(results, key=lambda t: t.created_at, reverse=True)

    def add_social_post(self, post: SocialPost) -> None:
        with self._mutation():
            self._data.social_posts.append(post)

    def top_social_posts(self, limit: int = 50, min_engagement: float = 0.0) -> _list[SocialPost]:
        posts = [p for p in self._data.social_posts if p.engagement_score >= min_engagement]
        posts.sort(key=lambda p: p.engagement_score, reverse=True)
        return posts[:limit]
