"""Generation orchestrator -- manual, preview, scheduled, and re-synthesis flows.

Every flow follows the same shape: aggregate flagged items, cluster them
(through the cache where allowed), then expand clusters into proposals one
at a time.  A failing cluster never aborts its siblings; a failing project
never aborts the scheduled run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime

from topicgen.config import GeneratorDefaults
from topicgen.errors import (
    GenerationFailedError,
    InsufficientInputError,
    NoClustersError,
    NotFoundError,
    RunReport,
    ValidationError,
)
from topicgen.hashing import stories_fingerprint, trends_fingerprint
from topicgen.llm import TextGenerator
from topicgen.models import (
    AggregationScope,
    AudienceProfile,
    ClusterOutcome,
    ClusterPreview,
    DurationType,
    GenerateRequest,
    GenerationResult,
    GenerationTrigger,
    PreviewResult,
    ProjectRunResult,
    ScheduledRunSummary,
    SourceItem,
    TopicCluster,
    TopicGeneratorSettings,
    TopicProposal,
    TrendingContext,
)
from topicgen.proposals.aggregator import flagged_items
from topicgen.proposals.cache import ClusterCache
from topicgen.proposals.citations import CitationFinder, deduplicate_citations, merge_citations
from topicgen.proposals.clusterer import ThemeClusterer
from topicgen.proposals.review import (
    get_settings,
    require_editor,
    require_member,
    require_proposal,
)
from topicgen.proposals.schedule import is_due
from topicgen.proposals.similarity import find_similar
from topicgen.proposals.synthesizer import ProposalSynthesizer
from topicgen.proposals.trending import build_trending_context
from topicgen.store import JsonStore

logger = logging.getLogger(__name__)

SKIP_NO_PROFILE = "No default audience profile configured"
SKIP_NO_CLUSTERS = "No valid clusters found"


@dataclass
class _RunContext:
    """Everything a single cluster needs to become a proposal."""

    project_id: str
    profile: AudienceProfile
    items: list[SourceItem]
    trigger: GenerationTrigger
    duration_type: DurationType
    duration_seconds: int
    comparison_regions: list[str]
    trending_context: list[TrendingContext] = field(default_factory=list)
    user_id: str | None = None


def _aware(now: datetime | None) -> datetime:
    """Current time when ``now`` is None; naive values are read as UTC."""
    if now is None:
        return datetime.now(tz=UTC)
    if now.tzinfo is None:
        return now.replace(tzinfo=UTC)
    return now


class GenerationOrchestrator:
    """Drives the proposal pipeline against a store and a text generator."""

    def __init__(
        self,
        store: JsonStore,
        llm: TextGenerator,
        defaults: GeneratorDefaults | None = None,
    ) -> None:
        self._store = store
        self._defaults = defaults or GeneratorDefaults()
        self._clusterer = ThemeClusterer(llm)
        self._synthesizer = ProposalSynthesizer(llm, self._defaults.duration_tolerance)
        self._citations = CitationFinder(llm, max_queries=self._defaults.max_citation_queries)
        self._cache = ClusterCache(store, ttl=self._defaults.cache_ttl)

    # ── Manual generation ────────────────────────────────────────

    def generate(self, request: GenerateRequest, user_id: str) -> GenerationResult:
        """Generate and persist proposals for the caller's flagged items.

        Raises:
            PermissionDeniedError: Caller is not an editing member.
            ValidationError: Bad cluster indices or custom duration.
            NotFoundError: The audience profile does not exist in the project.
            InsufficientInputError: Fewer than two flagged items.
            NoClustersError: The clusterer found no themes.
            GenerationFailedError: No cluster produced a proposal.
        """
        require_editor(self._store, request.project_id, user_id)
        if request.cluster_ids and any(i < 0 for i in request.cluster_ids):
            raise ValidationError("cluster_ids must be non-negative indices")
        duration_seconds = self._defaults.duration_seconds(
            request.duration_type, request.duration_seconds
        )

        profile = self._require_profile(request.project_id, request.audience_profile_id)
        settings = self._settings(request.project_id)

        items = flagged_items(
            self._store,
            request.project_id,
            window_days=settings.time_window_days,
            focus_categories=settings.focus_categories,
            limit=self._defaults.items_limit,
            scope=AggregationScope.USER,
            user_id=user_id,
        )
        if len(items) < self._defaults.min_items_to_cluster:
            raise InsufficientInputError(len(items), self._defaults.min_items_to_cluster)

        trending = self._trending(settings, request.project_id, user_id)
        clusters = self._clusterer.cluster(items, profile, trending or None)
        if not clusters:
            raise NoClustersError()

        selected = clusters
        if request.cluster_ids:
            wanted = set(request.cluster_ids)
            selected = [c for i, c in enumerate(clusters) if i in wanted]

        max_proposals = request.max_proposals or settings.max_proposals_per_run
        regions = (
            request.comparison_regions
            if request.comparison_regions is not None
            else settings.comparison_regions
        )
        ctx = _RunContext(
            project_id=request.project_id,
            profile=profile,
            items=items,
            trigger=GenerationTrigger.MANUAL,
            duration_type=request.duration_type,
            duration_seconds=duration_seconds,
            comparison_regions=regions,
            trending_context=trending,
            user_id=user_id,
        )
        proposals, outcomes, report = self._process_clusters(selected[:max_proposals], ctx)
        logger.info(report.summary())

        if not proposals:
            raise GenerationFailedError(
                f"Failed to generate any proposals from {len(outcomes)} clusters"
            )
        return GenerationResult(
            proposals=proposals,
            clusters_processed=len(selected),
            total_clusters=len(clusters),
            outcomes=outcomes,
        )

    # ── Preview ──────────────────────────────────────────────────

    def preview(
        self,
        project_id: str,
        audience_profile_id: str,
        user_id: str,
        force_refresh: bool = False,
    ) -> PreviewResult:
        """Cluster the caller's flagged items without persisting proposals."""
        require_member(self._store, project_id, user_id)
        profile = self._require_profile(project_id, audience_profile_id)
        settings = self._settings(project_id)

        items = flagged_items(
            self._store,
            project_id,
            window_days=settings.time_window_days,
            focus_categories=settings.focus_categories,
            limit=self._defaults.items_limit,
            scope=AggregationScope.USER,
            user_id=user_id,
        )
        if len(items) < self._defaults.min_items_to_cluster:
            message = str(InsufficientInputError(len(items), self._defaults.min_items_to_cluster))
            return PreviewResult(stories=items, message=message)

        trending = self._trending(settings, project_id, user_id)
        stories_fp = stories_fingerprint(items)
        trends_fp = trends_fingerprint(trending)

        if not force_refresh:
            cached = self._cache.lookup(project_id, profile.id, stories_fp, trends_fp)
            if cached is not None:
                return PreviewResult(
                    clusters=self._enrich(project_id, cached, items),
                    stories=items,
                    trending_context=trending,
                    from_cache=True,
                )

        clusters = self._clusterer.cluster(items, profile, trending or None)
        self._cache.put(project_id, profile.id, clusters, stories_fp, trends_fp)
        return PreviewResult(
            clusters=self._enrich(project_id, clusters, items),
            stories=items,
            trending_context=trending,
            from_cache=False,
            message=None if clusters else str(NoClustersError()),
        )

    def _enrich(
        self, project_id: str, clusters: list[TopicCluster], items: list[SourceItem]
    ) -> list[ClusterPreview]:
        enriched = []
        for cluster in clusters:
            ids = set(cluster.story_ids)
            enriched.append(
                ClusterPreview(
                    **cluster.model_dump(),
                    stories=[i for i in items if i.id in ids],
                    similar_proposals=find_similar(
                        self._store,
                        project_id,
                        cluster.story_ids,
                        min_overlap_percentage=self._defaults.similarity_threshold,
                    ),
                )
            )
        return enriched

    # ── Scheduled generation ─────────────────────────────────────

    def run_scheduled(self, now: datetime | None = None) -> ScheduledRunSummary:
        """Run every due project once. One project's failure never stops the rest."""
        started = time.monotonic()
        now = _aware(now)
        enabled = self._store.list_enabled_settings()
        results: list[ProjectRunResult] = []

        for settings in enabled:
            try:
                if not is_due(settings, now, self._defaults.firing_window_minutes):
                    logger.debug("Project %s not due at %s", settings.project_id, now)
                    continue
                logger.info("Processing project %s", settings.project_id)
                result = self.run_project(settings, now=now)
            except Exception as exc:
                logger.warning(
                    "Scheduled run failed for project %s", settings.project_id, exc_info=True
                )
                result = ProjectRunResult(project_id=settings.project_id, error=str(exc))
            results.append(result)

        summary = ScheduledRunSummary(
            elapsed_seconds=round(time.monotonic() - started, 3),
            projects_checked=len(enabled),
            total_proposals_generated=sum(r.proposals_generated for r in results),
            results=results,
        )
        logger.info(
            "Scheduled run: %d projects checked, %d proposals in %.1fs",
            summary.projects_checked,
            summary.total_proposals_generated,
            summary.elapsed_seconds,
        )
        return summary

    def run_project(
        self, settings: TopicGeneratorSettings, now: datetime | None = None
    ) -> ProjectRunResult:
        """Unattended generation for one project, using all members' flags."""
        project_id = settings.project_id
        min_items = settings.min_stories_for_cluster
        now = _aware(now)

        items = flagged_items(
            self._store,
            project_id,
            window_days=settings.time_window_days,
            focus_categories=settings.focus_categories,
            limit=self._defaults.items_limit,
            scope=AggregationScope.PROJECT,
            now=now,
        )
        if len(items) < min_items:
            return ProjectRunResult(
                project_id=project_id, skipped_reason=f"Not enough stories ({len(items)})"
            )

        profile = None
        if settings.default_audience_profile_id:
            profile = self._store.get_profile(settings.default_audience_profile_id)
        if profile is None or profile.project_id != project_id:
            return ProjectRunResult(project_id=project_id, skipped_reason=SKIP_NO_PROFILE)

        stories_fp = stories_fingerprint(items)
        clusters = self._cache.lookup(project_id, profile.id, stories_fp, now=now)
        if clusters is None:
            clusters = self._clusterer.cluster(items, profile)
            self._cache.put(project_id, profile.id, clusters, stories_fp, "", now=now)

        valid = [c for c in clusters if len(c.story_ids) >= min_items]
        if not valid:
            return ProjectRunResult(project_id=project_id, skipped_reason=SKIP_NO_CLUSTERS)

        duration_type = settings.default_duration_type
        ctx = _RunContext(
            project_id=project_id,
            profile=profile,
            items=items,
            trigger=GenerationTrigger.AUTO,
            duration_type=duration_type,
            duration_seconds=self._defaults.duration_seconds(
                duration_type, settings.default_duration_seconds
            ),
            comparison_regions=settings.comparison_regions,
        )
        proposals, _, report = self._process_clusters(
            valid[: settings.max_proposals_per_run], ctx
        )
        logger.info("Project %s %s", project_id, report.summary())
        return ProjectRunResult(project_id=project_id, proposals_generated=len(proposals))

    # ── Re-synthesis ─────────────────────────────────────────────

    def resynthesize(self, proposal_id: str, user_id: str) -> TopicProposal:
        """Regenerate a proposal's content from its stored provenance.

        Only title, hook, care statement, talking points and citations are
        replaced; new citations are merged in by URL.
        """
        proposal = require_proposal(self._store, proposal_id)
        require_editor(self._store, proposal.project_id, user_id)

        items = self._store.get_items(proposal.source_story_ids)
        if not items:
            raise ValidationError("No source stories available for re-synthesis")

        profile = None
        if proposal.audience_profile_id:
            profile = self._store.get_profile(proposal.audience_profile_id)
        if profile is None:
            profiles = self._store.list_profiles(proposal.project_id)
            profile = profiles[0] if profiles else None
        if profile is None:
            raise ValidationError("No audience profile available for re-synthesis")

        cluster = TopicCluster(
            theme=proposal.cluster_theme or proposal.title,
            keywords=proposal.cluster_keywords,
            story_ids=proposal.source_story_ids,
            relevance_score=1.0,
            audience_relevance=proposal.audience_care_statement,
        )
        draft = self._synthesizer.synthesize(
            cluster,
            items,
            profile,
            proposal.duration_type,
            proposal.duration_seconds,
            proposal.comparison_regions,
            proposal.trending_context or None,
        )

        citations = list(proposal.research_citations)
        if draft.research_suggestions:
            try:
                found = self._citations.find_citations(
                    draft.title,
                    draft.research_suggestions,
                    audience_region=profile.market_region,
                    max_per_query=self._defaults.max_citations_per_query,
                )
                citations = merge_citations(citations, found)
            except Exception:
                logger.warning(
                    "Citation refresh failed for %s, keeping existing", proposal_id, exc_info=True
                )

        updated = self._store.save_proposal(
            proposal.model_copy(
                update={
                    "title": draft.title,
                    "hook": draft.hook,
                    "audience_care_statement": draft.audience_care_statement,
                    "talking_points": draft.talking_points,
                    "research_citations": citations,
                }
            )
        )
        logger.info("Re-synthesized proposal %s", proposal_id)
        return updated

    # ── Shared helpers ───────────────────────────────────────────

    def _process_clusters(
        self, clusters: list[TopicCluster], ctx: _RunContext
    ) -> tuple[list[TopicProposal], list[ClusterOutcome], RunReport]:
        """Turn each cluster into a saved proposal, isolating failures."""
        report = RunReport(stage="clusters")
        proposals: list[TopicProposal] = []
        outcomes: list[ClusterOutcome] = []

        for index, cluster in enumerate(clusters):
            try:
                proposal = self._build_proposal(cluster, ctx)
            except Exception as exc:
                logger.warning(
                    "Failed to generate proposal for cluster %r", cluster.theme, exc_info=True
                )
                report.add_error(cluster.theme, str(exc), error_type=type(exc).__name__)
                outcomes.append(ClusterOutcome(index=index, theme=cluster.theme, error=str(exc)))
                continue
            proposals.append(proposal)
            report.add_success(cluster.theme, proposal.id)
            outcomes.append(
                ClusterOutcome(index=index, theme=cluster.theme, proposal_id=proposal.id)
            )
            logger.info("Generated proposal %r for project %s", proposal.title, ctx.project_id)

        return proposals, outcomes, report

    def _build_proposal(self, cluster: TopicCluster, ctx: _RunContext) -> TopicProposal:
        ids = set(cluster.story_ids)
        cluster_items = [i for i in ctx.items if i.id in ids]
        draft = self._synthesizer.synthesize(
            cluster,
            cluster_items,
            ctx.profile,
            ctx.duration_type,
            ctx.duration_seconds,
            ctx.comparison_regions,
            ctx.trending_context or None,
        )
        citations = self._citations.find_citations(
            cluster.theme,
            draft.research_suggestions,
            audience_region=ctx.profile.market_region,
            max_per_query=self._defaults.max_citations_per_query,
        )
        proposal = TopicProposal(
            project_id=ctx.project_id,
            created_by_user_id=ctx.user_id,
            title=draft.title,
            hook=draft.hook,
            audience_care_statement=draft.audience_care_statement,
            talking_points=draft.talking_points,
            research_citations=deduplicate_citations(citations),
            source_story_ids=cluster.story_ids,
            cluster_theme=cluster.theme,
            cluster_keywords=cluster.keywords,
            duration_type=ctx.duration_type,
            duration_seconds=ctx.duration_seconds,
            generation_trigger=ctx.trigger,
            audience_profile_id=ctx.profile.id,
            comparison_regions=ctx.comparison_regions,
            trending_context=ctx.trending_context,
        )
        return self._store.create_proposal(proposal)

    def _require_profile(self, project_id: str, profile_id: str) -> AudienceProfile:
        profile = self._store.get_profile(profile_id)
        if profile is None or profile.project_id != project_id:
            raise NotFoundError(f"Audience profile not found: {profile_id}")
        return profile

    def _settings(self, project_id: str) -> TopicGeneratorSettings:
        return get_settings(self._store, project_id, self._defaults)

    def _trending(
        self, settings: TopicGeneratorSettings, project_id: str, user_id: str | None
    ) -> list[TrendingContext]:
        if not settings.include_trending_context:
            return []
        return build_trending_context(self._store, project_id, user_id=user_id)
