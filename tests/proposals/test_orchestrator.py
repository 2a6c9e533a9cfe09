"""End-to-end orchestrator tests against an in-memory store and a scripted generator."""

from __future__ import annotations

import json
import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import patch

import pytest

from topicgen.config import DurationRange, GeneratorDefaults
from topicgen.errors import (
    GenerationError,
    GenerationFailedError,
    InsufficientInputError,
    NoClustersError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from topicgen.llm import LLMError
from topicgen.models import (
    AudienceProfile,
    DurationType,
    GenerateRequest,
    GenerationTrigger,
    ProjectMember,
    ResearchCitation,
    Role,
    SourceItem,
    TopicGeneratorSettings,
    TopicProposal,
    WatchedTrend,
)
from topicgen.proposals import orchestrator as orchestrator_module
from topicgen.proposals.orchestrator import GenerationOrchestrator
from topicgen.store import JsonStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeGenerator:
    """Returns scripted responses per call label, in order."""

    def __init__(self, **scripts: list[str | Exception]) -> None:
        self.scripts = {label: list(items) for label, items in scripts.items()}
        self.calls: list[tuple[str, str]] = []

    def complete(self, system_prompt: str, user_prompt: str, *, label: str = "") -> str:
        self.calls.append((label, user_prompt))
        queue = self.scripts.get(label)
        if not queue:
            raise LLMError(f"no scripted response for {label}")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def count(self, label: str) -> int:
        return sum(1 for call_label, _ in self.calls if call_label == label)


def _clusters_json(*groups: list[str]) -> str:
    return json.dumps(
        {
            "clusters": [
                {
                    "theme": f"Theme {i}",
                    "keywords": ["k"],
                    "story_ids": ids,
                    "relevance_score": 90 - i,
                }
                for i, ids in enumerate(groups, start=1)
            ]
        }
    )


def _proposal_json(title: str = "A proposal", suggestions: int = 0) -> str:
    return json.dumps(
        {
            "title": title,
            "hook": "Why it matters now.",
            "audience_care_statement": "You should care.",
            "talking_points": [
                {"point": "One", "supporting_detail": "d", "duration_estimate_seconds": 90},
                {"point": "Two", "supporting_detail": "d", "duration_estimate_seconds": 90},
            ],
            "research_suggestions": [
                {"query": f"query {i}", "type": "statistic", "reason": "r"}
                for i in range(suggestions)
            ],
        }
    )


def _citations_json(*urls: str) -> str:
    return json.dumps(
        {"citations": [{"title": u, "url": u, "snippet": "s"} for u in urls]}
    )


def _seed_project(
    store: JsonStore,
    project_id: str = "p1",
    *,
    items: int = 3,
    user: str = "u1",
    flagged_at: datetime | None = None,
) -> AudienceProfile:
    store.upsert_member(ProjectMember(project_id=project_id, user_id=user, role=Role.OWNER))
    profile = AudienceProfile(id=f"{project_id}-aud", project_id=project_id, name="Commuters")
    store.upsert_profile(profile)
    for i in range(1, items + 1):
        item_id = f"{project_id}-s{i}"
        store.add_item(SourceItem(id=item_id, title=f"Story {i}", content="Body"))
        store.flag_item(project_id, user, item_id, flagged_at=flagged_at)
    return profile


def _request(project_id: str = "p1", **kwargs) -> GenerateRequest:
    fields = dict(
        project_id=project_id,
        audience_profile_id=f"{project_id}-aud",
        duration_type=DurationType.STANDARD,
    )
    fields.update(kwargs)
    return GenerateRequest(**fields)


# ---------------------------------------------------------------------------
# Manual generation
# ---------------------------------------------------------------------------


class TestGenerate:
    def test_single_item_is_insufficient(self) -> None:
        store = JsonStore()
        _seed_project(store, items=1)
        llm = FakeGenerator()

        with pytest.raises(InsufficientInputError, match="Found 1 flagged stories"):
            GenerationOrchestrator(store, llm).generate(_request(), "u1")
        assert store.list_proposals("p1") == []
        assert llm.calls == []

    def test_failing_cluster_is_isolated(self) -> None:
        store = JsonStore()
        _seed_project(store)
        llm = FakeGenerator(
            cluster=[_clusters_json(["p1-s1", "p1-s2"], ["p1-s2", "p1-s3"])],
            proposal=[_proposal_json("First"), "this is not json"],
        )

        result = GenerationOrchestrator(store, llm).generate(_request(), "u1")

        assert [p.title for p in result.proposals] == ["First"]
        assert len(store.list_proposals("p1")) == 1
        assert result.total_clusters == 2
        assert result.clusters_processed == 2
        assert result.outcomes[0].proposal_id == result.proposals[0].id
        assert result.outcomes[1].error is not None
        assert result.outcomes[1].proposal_id is None

    def test_proposal_fields(self) -> None:
        store = JsonStore()
        _seed_project(store)
        llm = FakeGenerator(
            cluster=[_clusters_json(["p1-s1", "p1-s2"])],
            proposal=[_proposal_json(suggestions=2)],
            citations=[_citations_json("https://a.org"), _citations_json("https://a.org", "https://b.org")],
        )

        result = GenerationOrchestrator(store, llm).generate(
            _request(duration_type=DurationType.LONG, comparison_regions=["Japan"]), "u1"
        )
        proposal = result.proposals[0]

        assert proposal.generation_trigger == GenerationTrigger.MANUAL
        assert proposal.created_by_user_id == "u1"
        assert proposal.duration_seconds == 420
        assert proposal.comparison_regions == ["Japan"]
        assert proposal.source_story_ids == ["p1-s1", "p1-s2"]
        assert proposal.cluster_theme == "Theme 1"
        assert [c.url for c in proposal.research_citations] == ["https://a.org", "https://b.org"]

    def test_custom_duration_and_settings_regions(self) -> None:
        store = JsonStore()
        _seed_project(store)
        store.upsert_settings(TopicGeneratorSettings(project_id="p1", comparison_regions=["Korea"]))
        llm = FakeGenerator(
            cluster=[_clusters_json(["p1-s1", "p1-s2"])], proposal=[_proposal_json()]
        )

        result = GenerationOrchestrator(store, llm).generate(
            _request(duration_type=DurationType.CUSTOM, duration_seconds=300), "u1"
        )
        assert result.proposals[0].duration_seconds == 300
        assert result.proposals[0].comparison_regions == ["Korea"]

    def test_cluster_ids_and_max_proposals(self) -> None:
        store = JsonStore()
        _seed_project(store)
        llm = FakeGenerator(
            cluster=[_clusters_json(["p1-s1", "p1-s2"], ["p1-s2", "p1-s3"], ["p1-s1", "p1-s3"])],
            proposal=[_proposal_json("Picked")],
        )

        result = GenerationOrchestrator(store, llm).generate(
            _request(cluster_ids=[1, 2], max_proposals=1), "u1"
        )
        assert [p.cluster_theme for p in result.proposals] == ["Theme 2"]
        assert result.clusters_processed == 2
        assert result.total_clusters == 3

    def test_no_clusters(self) -> None:
        store = JsonStore()
        _seed_project(store)
        llm = FakeGenerator(cluster=['{"clusters": []}'])
        with pytest.raises(NoClustersError):
            GenerationOrchestrator(store, llm).generate(_request(), "u1")

    def test_all_clusters_failing(self) -> None:
        store = JsonStore()
        _seed_project(store)
        llm = FakeGenerator(cluster=[_clusters_json(["p1-s1", "p1-s2"])], proposal=["nope"])
        with pytest.raises(GenerationFailedError):
            GenerationOrchestrator(store, llm).generate(_request(), "u1")

    def test_clustering_failure_propagates(self) -> None:
        store = JsonStore()
        _seed_project(store)
        llm = FakeGenerator(cluster=[LLMError("timed out")])
        with pytest.raises(GenerationError):
            GenerationOrchestrator(store, llm).generate(_request(), "u1")

    def test_unknown_profile(self) -> None:
        store = JsonStore()
        _seed_project(store)
        with pytest.raises(NotFoundError):
            GenerationOrchestrator(store, FakeGenerator()).generate(
                _request(audience_profile_id="missing"), "u1"
            )

    def test_viewer_cannot_generate(self) -> None:
        store = JsonStore()
        _seed_project(store)
        store.upsert_member(ProjectMember(project_id="p1", user_id="v", role=Role.VIEWER))
        with pytest.raises(PermissionDeniedError):
            GenerationOrchestrator(store, FakeGenerator()).generate(_request(), "v")

    def test_trending_context_attached(self) -> None:
        store = JsonStore()
        _seed_project(store)
        store.add_watched_trend(WatchedTrend(project_id="p1", user_id="u1", query="#mrt"))
        llm = FakeGenerator(
            cluster=[_clusters_json(["p1-s1", "p1-s2"])], proposal=[_proposal_json()]
        )

        result = GenerationOrchestrator(store, llm).generate(_request(), "u1")
        assert [t.trend_query for t in result.proposals[0].trending_context] == ["#mrt"]
        assert "#mrt" in llm.calls[0][1]

    def test_custom_seconds_outside_table_rejected_before_any_call(self) -> None:
        store = JsonStore()
        _seed_project(store)
        defaults = GeneratorDefaults(
            durations={
                **GeneratorDefaults().durations,
                DurationType.CUSTOM: DurationRange(
                    min_seconds=60, max_seconds=300, default_seconds=120
                ),
            }
        )
        llm = FakeGenerator()

        with pytest.raises(ValidationError, match="Custom duration"):
            GenerationOrchestrator(store, llm, defaults).generate(
                _request(duration_type=DurationType.CUSTOM, duration_seconds=600), "u1"
            )
        assert llm.calls == []

    def test_malformed_citation_does_not_sink_cluster(self) -> None:
        store = JsonStore()
        _seed_project(store)
        llm = FakeGenerator(
            cluster=[_clusters_json(["p1-s1", "p1-s2"])],
            proposal=[_proposal_json(suggestions=2)],
            citations=[
                json.dumps({"citations": [{"title": 123, "url": "https://a.org"}]}),
                _citations_json("https://b.org"),
            ],
        )

        result = GenerationOrchestrator(store, llm).generate(_request(), "u1")
        assert [c.url for c in result.proposals[0].research_citations] == ["https://b.org"]

    def test_failed_save_never_reaches_disk(self, tmp_path: Path) -> None:
        path = tmp_path / "store.json"
        store = JsonStore(path)
        _seed_project(store)
        llm = FakeGenerator(
            cluster=[_clusters_json(["p1-s1", "p1-s2"], ["p1-s2", "p1-s3"])],
            proposal=[_proposal_json("Failed-save"), _proposal_json("Second")],
        )
        real_replace = os.replace
        writes: list[str] = []

        def replace_failing_once(src, dst):
            writes.append(str(dst))
            if len(writes) == 1:
                raise OSError("disk full")
            return real_replace(src, dst)

        with patch("topicgen.store.os.replace", side_effect=replace_failing_once):
            result = GenerationOrchestrator(store, llm).generate(_request(), "u1")

        assert [p.title for p in result.proposals] == ["Second"]
        assert "disk full" in result.outcomes[0].error
        assert [p.title for p in store.list_proposals("p1")] == ["Second"]
        assert [p.title for p in JsonStore(path).list_proposals("p1")] == ["Second"]


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------


class TestPreview:
    def test_too_few_items_returns_message(self) -> None:
        store = JsonStore()
        _seed_project(store, items=1)
        result = GenerationOrchestrator(store, FakeGenerator()).preview("p1", "p1-aud", "u1")
        assert result.clusters == []
        assert "Need at least 2" in result.message

    def test_second_preview_served_from_cache(self) -> None:
        store = JsonStore()
        _seed_project(store)
        llm = FakeGenerator(cluster=[_clusters_json(["p1-s1", "p1-s2"])])
        orchestrator = GenerationOrchestrator(store, llm)

        first = orchestrator.preview("p1", "p1-aud", "u1")
        second = orchestrator.preview("p1", "p1-aud", "u1")

        assert not first.from_cache
        assert second.from_cache
        assert llm.count("cluster") == 1
        assert [s.id for s in second.clusters[0].stories] == ["p1-s1", "p1-s2"]
        assert store.list_proposals("p1") == []

    def test_new_flag_invalidates_cache(self) -> None:
        store = JsonStore()
        _seed_project(store)
        llm = FakeGenerator(
            cluster=[_clusters_json(["p1-s1", "p1-s2"]), _clusters_json(["p1-s3", "p1-s4"])]
        )
        orchestrator = GenerationOrchestrator(store, llm)
        orchestrator.preview("p1", "p1-aud", "u1")

        store.add_item(SourceItem(id="p1-s4", title="Late story"))
        store.flag_item("p1", "u1", "p1-s4")
        result = orchestrator.preview("p1", "p1-aud", "u1")

        assert not result.from_cache
        assert llm.count("cluster") == 2

    def test_force_refresh_skips_cache(self) -> None:
        store = JsonStore()
        _seed_project(store)
        llm = FakeGenerator(cluster=[_clusters_json(["p1-s1", "p1-s2"])] * 2)
        orchestrator = GenerationOrchestrator(store, llm)
        orchestrator.preview("p1", "p1-aud", "u1")
        result = orchestrator.preview("p1", "p1-aud", "u1", force_refresh=True)

        assert not result.from_cache
        assert store.count_cache_entries("p1", "p1-aud") == 1

    def test_similar_proposals_attached(self) -> None:
        store = JsonStore()
        _seed_project(store)
        existing = store.create_proposal(
            TopicProposal(
                project_id="p1",
                title="Earlier take",
                hook="h",
                source_story_ids=["p1-s1"],
                duration_type=DurationType.SHORT,
                duration_seconds=90,
                generation_trigger=GenerationTrigger.MANUAL,
            )
        )
        llm = FakeGenerator(cluster=[_clusters_json(["p1-s1", "p1-s2"])])
        result = GenerationOrchestrator(store, llm).preview("p1", "p1-aud", "u1")

        similar = result.clusters[0].similar_proposals
        assert [s.id for s in similar] == [existing.id]
        assert similar[0].overlap_percentage == 100


# ---------------------------------------------------------------------------
# Scheduled generation
# ---------------------------------------------------------------------------

# 22:05 UTC is 06:05 in Singapore, inside the default firing window
DUE = datetime(2026, 6, 1, 22, 5, tzinfo=UTC)


def _auto_settings(project_id: str, **kwargs) -> TopicGeneratorSettings:
    return TopicGeneratorSettings(
        project_id=project_id, default_audience_profile_id=f"{project_id}-aud", **kwargs
    )


class TestRunScheduled:
    def test_one_project_fails_other_succeeds(self) -> None:
        store = JsonStore()
        for pid in ("pa", "pb"):
            _seed_project(store, pid, flagged_at=DUE - timedelta(days=1))
            store.upsert_settings(_auto_settings(pid))
        llm = FakeGenerator(
            cluster=[LLMError("service down"), _clusters_json(["pb-s1", "pb-s2"])],
            proposal=[_proposal_json("Auto")],
        )

        summary = GenerationOrchestrator(store, llm).run_scheduled(now=DUE)

        assert summary.projects_checked == 2
        assert summary.total_proposals_generated == 1
        by_project = {r.project_id: r for r in summary.results}
        assert by_project["pa"].error is not None
        assert by_project["pa"].proposals_generated == 0
        assert by_project["pb"].error is None
        assert by_project["pb"].proposals_generated == 1
        auto = store.list_proposals("pb")[0]
        assert auto.generation_trigger == GenerationTrigger.AUTO
        assert auto.created_by_user_id is None
        assert auto.duration_seconds == 180

    def test_aggregation_failure_isolated_to_project(self) -> None:
        store = JsonStore()
        for pid in ("pa", "pb"):
            _seed_project(store, pid, flagged_at=DUE - timedelta(days=1))
            store.upsert_settings(_auto_settings(pid))
        llm = FakeGenerator(
            cluster=[_clusters_json(["pb-s1", "pb-s2"])], proposal=[_proposal_json("Auto")]
        )
        real_flagged_items = orchestrator_module.flagged_items

        def flagged_items_failing_for_pa(store, project_id, **kwargs):
            if project_id == "pa":
                raise RuntimeError("flags table unavailable")
            return real_flagged_items(store, project_id, **kwargs)

        with patch.object(
            orchestrator_module, "flagged_items", side_effect=flagged_items_failing_for_pa
        ):
            summary = GenerationOrchestrator(store, llm).run_scheduled(now=DUE)

        by_project = {r.project_id: r for r in summary.results}
        assert by_project["pa"].error == "flags table unavailable"
        assert by_project["pb"].error is None
        assert by_project["pb"].proposals_generated == 1
        assert summary.total_proposals_generated == 1

    def test_naive_now_is_read_as_utc(self) -> None:
        store = JsonStore()
        _seed_project(store, flagged_at=DUE - timedelta(days=1))
        store.upsert_settings(_auto_settings("p1"))
        llm = FakeGenerator(
            cluster=[_clusters_json(["p1-s1", "p1-s2"])], proposal=[_proposal_json("Auto")]
        )

        summary = GenerationOrchestrator(store, llm).run_scheduled(
            now=DUE.replace(tzinfo=None)
        )
        assert [(r.proposals_generated, r.error) for r in summary.results] == [(1, None)]

    def test_default_profile_from_another_project_is_ignored(self) -> None:
        store = JsonStore()
        _seed_project(store, "other")
        _seed_project(store, "p1", flagged_at=DUE - timedelta(days=1))
        store.upsert_settings(
            TopicGeneratorSettings(project_id="p1", default_audience_profile_id="other-aud")
        )
        llm = FakeGenerator()

        summary = GenerationOrchestrator(store, llm).run_scheduled(now=DUE)
        assert [r.skipped_reason for r in summary.results] == [
            "No default audience profile configured"
        ]
        assert llm.calls == []

    def test_not_due_projects_are_skipped_silently(self) -> None:
        store = JsonStore()
        _seed_project(store, flagged_at=DUE - timedelta(days=1))
        store.upsert_settings(_auto_settings("p1", auto_generation_time="09:00"))
        llm = FakeGenerator()

        summary = GenerationOrchestrator(store, llm).run_scheduled(now=DUE)
        assert summary.projects_checked == 1
        assert summary.results == []
        assert llm.calls == []

    def test_firing_window_is_configurable(self) -> None:
        store = JsonStore()
        _seed_project(store, flagged_at=DUE - timedelta(days=1))
        store.upsert_settings(_auto_settings("p1"))
        defaults = GeneratorDefaults(firing_window_minutes=5)

        summary = GenerationOrchestrator(store, FakeGenerator(), defaults).run_scheduled(now=DUE)
        assert summary.results == []

    def test_skip_reasons(self) -> None:
        store = JsonStore()
        _seed_project(store, "few", items=1, flagged_at=DUE - timedelta(days=1))
        store.upsert_settings(_auto_settings("few"))
        _seed_project(store, "noprof", flagged_at=DUE - timedelta(days=1))
        store.upsert_settings(TopicGeneratorSettings(project_id="noprof"))
        _seed_project(store, "small", flagged_at=DUE - timedelta(days=1))
        store.upsert_settings(_auto_settings("small", min_stories_for_cluster=3))
        llm = FakeGenerator(cluster=[_clusters_json(["small-s1", "small-s2"])])

        summary = GenerationOrchestrator(store, llm).run_scheduled(now=DUE)
        reasons = {r.project_id: r.skipped_reason for r in summary.results}

        assert reasons == {
            "few": "Not enough stories (1)",
            "noprof": "No default audience profile configured",
            "small": "No valid clusters found",
        }

    def test_cached_clusters_reused(self) -> None:
        store = JsonStore()
        _seed_project(store, flagged_at=DUE - timedelta(days=1))
        store.upsert_settings(_auto_settings("p1"))
        llm = FakeGenerator(
            cluster=[_clusters_json(["p1-s1", "p1-s2"])],
            proposal=[_proposal_json("One"), _proposal_json("Two")],
        )
        orchestrator = GenerationOrchestrator(store, llm)

        orchestrator.run_scheduled(now=DUE)
        orchestrator.run_scheduled(now=DUE + timedelta(minutes=10))

        assert llm.count("cluster") == 1
        entry = store.get_cache_entry("p1", "p1-aud")
        assert entry.trends_fingerprint == ""
        assert len(store.list_proposals("p1")) == 2


# ---------------------------------------------------------------------------
# Re-synthesis
# ---------------------------------------------------------------------------


def _stored_proposal(store: JsonStore, **kwargs) -> TopicProposal:
    fields = dict(
        project_id="p1",
        created_by_user_id="u1",
        title="Old title",
        hook="Old hook",
        source_story_ids=["p1-s1", "p1-s2"],
        cluster_theme="Transit fares",
        cluster_keywords=["mrt"],
        duration_type=DurationType.LONG,
        duration_seconds=420,
        generation_trigger=GenerationTrigger.AUTO,
        audience_profile_id="p1-aud",
        comparison_regions=["Hong Kong"],
        research_citations=[
            ResearchCitation(title="Kept", url="https://kept.org", snippet="s")
        ],
    )
    fields.update(kwargs)
    return store.create_proposal(TopicProposal(**fields))


class TestResynthesize:
    def test_regenerates_content_and_preserves_provenance(self) -> None:
        store = JsonStore()
        _seed_project(store)
        original = _stored_proposal(store)
        llm = FakeGenerator(
            proposal=[_proposal_json("Fresh title", suggestions=1)],
            citations=[_citations_json("https://kept.org", "https://new.org")],
        )

        updated = GenerationOrchestrator(store, llm).resynthesize(original.id, "u1")

        assert updated.title == "Fresh title"
        assert updated.hook == "Why it matters now."
        assert [c.url for c in updated.research_citations] == ["https://kept.org", "https://new.org"]
        assert updated.research_citations[0].title == "Kept"
        assert updated.source_story_ids == original.source_story_ids
        assert updated.generation_trigger == GenerationTrigger.AUTO
        assert updated.created_at == original.created_at
        assert updated.duration_seconds == 420
        assert "Duration: 420 seconds (long)" in llm.calls[0][1]
        assert "CLUSTER THEME: Transit fares" in llm.calls[0][1]

    def test_theme_falls_back_to_title_and_first_profile(self) -> None:
        store = JsonStore()
        _seed_project(store)
        original = _stored_proposal(store, cluster_theme=None, audience_profile_id=None)
        llm = FakeGenerator(proposal=[_proposal_json()])

        GenerationOrchestrator(store, llm).resynthesize(original.id, "u1")
        assert "CLUSTER THEME: Old title" in llm.calls[0][1]
        assert "TARGET AUDIENCE: Commuters" in llm.calls[0][1]

    def test_citation_failure_keeps_existing(self) -> None:
        store = JsonStore()
        _seed_project(store)
        original = _stored_proposal(store)
        llm = FakeGenerator(proposal=[_proposal_json(suggestions=1)], citations=[LLMError("x")])

        updated = GenerationOrchestrator(store, llm).resynthesize(original.id, "u1")
        assert [c.url for c in updated.research_citations] == ["https://kept.org"]

    def test_no_source_items(self) -> None:
        store = JsonStore()
        _seed_project(store)
        original = _stored_proposal(store, source_story_ids=["gone"])
        with pytest.raises(ValidationError, match="No source stories"):
            GenerationOrchestrator(store, FakeGenerator()).resynthesize(original.id, "u1")

    def test_no_profile_available(self) -> None:
        store = JsonStore()
        store.upsert_member(ProjectMember(project_id="p1", user_id="u1", role=Role.OWNER))
        store.add_item(SourceItem(id="p1-s1", title="Story"))
        original = _stored_proposal(store, source_story_ids=["p1-s1"], audience_profile_id=None)
        with pytest.raises(ValidationError, match="No audience profile"):
            GenerationOrchestrator(store, FakeGenerator()).resynthesize(original.id, "u1")

    def test_synthesis_failure_leaves_proposal_untouched(self) -> None:
        store = JsonStore()
        _seed_project(store)
        original = _stored_proposal(store)
        llm = FakeGenerator(proposal=["garbage"])

        with pytest.raises(GenerationError):
            GenerationOrchestrator(store, llm).resynthesize(original.id, "u1")
        assert store.get_proposal(original.id).title == "Old title"
