"""Domain models -- pure Pydantic v2 data types.

Covers the inputs the pipeline reads (source items, flags, audience
profiles, trends), the records it writes (proposals, cluster cache
entries, settings), and the result shapes returned by the orchestrator.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Tone(StrEnum):
    INVESTIGATIVE = "investigative"
    EDUCATIONAL = "educational"
    BALANCED = "balanced"
    PROVOCATIVE = "provocative"
    CONVERSATIONAL = "conversational"


class DepthPreference(StrEnum):
    SURFACE = "surface"
    MEDIUM = "medium"
    DEEP_DIVE = "deep_dive"


class DurationType(StrEnum):
    SHORT = "short"
    STANDARD = "standard"
    LONG = "long"
    CUSTOM = "custom"


class ProposalStatus(StrEnum):
    DRAFT = "draft"
    REVIEWED = "reviewed"
    APPROVED = "approved"
    REJECTED = "rejected"
    ARCHIVED = "archived"


class GenerationTrigger(StrEnum):
    AUTO = "auto"
    MANUAL = "manual"


class SourceType(StrEnum):
    STATISTIC = "statistic"
    STUDY = "study"
    EXPERT_OPINION = "expert_opinion"
    NEWS = "news"


class ResearchType(StrEnum):
    """Evidence kinds the synthesizer may request."""

    STATISTIC = "statistic"
    STUDY = "study"
    EXPERT_OPINION = "expert_opinion"


class Role(StrEnum):
    OWNER = "owner"
    EDITOR = "editor"
    VIEWER = "viewer"


class AggregationScope(StrEnum):
    USER = "user"
    PROJECT = "project"


# ---------------------------------------------------------------------------
# Inputs (owned by other subsystems, read here)
# ---------------------------------------------------------------------------


class SourceItem(BaseModel):
    """A news story an analyst can flag."""

    id: str
    title: str
    content: str = ""
    summary: str | None = None
    source: str = ""
    url: str | None = None
    category: str = ""
    published_at: datetime | None = None
    is_trending: bool = False
    trend_score: float = 0.0

    @property
    def brief(self) -> str:
        """Summary if present, else the head of the body."""
        return self.summary or self.content[:500]


class FlagRecord(BaseModel):
    """One analyst marking one item as relevant to a project."""

    project_id: str
    user_id: str
    item_id: str
    flagged_at: datetime = Field(default_factory=_now)


class AudienceProfile(BaseModel):
    """Demographic and psychographic description of a target audience."""

    id: str = Field(default_factory=_new_id)
    project_id: str
    name: str
    age_range: str | None = None
    location: str | None = None
    education_level: str | None = None
    values: list[str] = Field(default_factory=list)
    fears: list[str] = Field(default_factory=list)
    aspirations: list[str] = Field(default_factory=list)
    preferred_tone: Tone | None = None
    depth_preference: DepthPreference | None = None
    political_sensitivity: int | None = Field(default=None, ge=1, le=10)
    primary_language: str | None = None
    market_region: str | None = None
    platform_type: str | None = None
    cultural_context: str | None = None


class ProjectMember(BaseModel):
    project_id: str
    user_id: str
    role: Role = Role.EDITOR
    can_approve_stories: bool = False


class WatchedTrend(BaseModel):
    id: str = Field(default_factory=_new_id)
    project_id: str
    user_id: str | None = None
    query: str
    platforms: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime = Field(default_factory=_now)


class SocialPost(BaseModel):
    id: str = Field(default_factory=_new_id)
    platform: str
    content: str
    hashtags: list[str] = Field(default_factory=list)
    engagement_score: float = 0.0
    post_url: str | None = None


class ViralPost(BaseModel):
    """A social post attached to a trend for prompt context."""

    platform: str
    content: str
    engagement_score: float = 0.0
    post_url: str | None = None


class TrendingContext(BaseModel):
    trend_query: str
    platforms: list[str] = Field(default_factory=list)
    viral_posts: list[ViralPost] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Pipeline intermediates
# ---------------------------------------------------------------------------


class TopicCluster(BaseModel):
    """A thematically coherent group of source items."""

    theme: str
    keywords: list[str] = Field(default_factory=list)
    story_ids: list[str] = Field(default_factory=list)
    relevance_score: float = Field(default=0.0, ge=0, le=100)
    audience_relevance: str | None = None


class ClusterCacheEntry(BaseModel):
    project_id: str
    audience_profile_id: str | None = None
    clusters: list[TopicCluster] = Field(default_factory=list)
    stories_fingerprint: str
    trends_fingerprint: str = ""
    created_at: datetime = Field(default_factory=_now)
    expires_at: datetime


class TalkingPoint(BaseModel):
    point: str
    supporting_detail: str = ""
    duration_estimate_seconds: int = Field(default=0, ge=0)
    audience_framing: str | None = None


class ResearchSuggestion(BaseModel):
    """A search the synthesizer asks the citation finder to run."""

    query: str
    type: ResearchType = ResearchType.STATISTIC
    reason: str = ""


class ResearchCitation(BaseModel):
    title: str
    url: str
    source_type: SourceType = SourceType.NEWS
    snippet: str = ""
    accessed_at: datetime = Field(default_factory=_now)
    relevance_to_audience: str | None = None


class ProposalDraft(BaseModel):
    """Synthesizer output before citations are attached and it is saved."""

    title: str
    hook: str
    audience_care_statement: str = ""
    talking_points: list[TalkingPoint] = Field(default_factory=list)
    research_suggestions: list[ResearchSuggestion] = Field(default_factory=list)
    duration_warning: str | None = None


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class TopicProposal(BaseModel):
    """A generated content brief derived from one cluster."""

    id: str = Field(default_factory=_new_id)
    project_id: str
    created_by_user_id: str | None = None

    title: str
    hook: str
    audience_care_statement: str | None = None
    talking_points: list[TalkingPoint] = Field(default_factory=list)
    research_citations: list[ResearchCitation] = Field(default_factory=list)

    source_story_ids: list[str] = Field(default_factory=list)
    cluster_theme: str | None = None
    cluster_keywords: list[str] = Field(default_factory=list)

    duration_type: DurationType
    duration_seconds: int

    generation_trigger: GenerationTrigger
    audience_profile_id: str | None = None
    comparison_regions: list[str] = Field(default_factory=list)
    trending_context: list[TrendingContext] = Field(default_factory=list)

    status: ProposalStatus = ProposalStatus.DRAFT
    review_notes: str | None = None

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class TopicGeneratorSettings(BaseModel):
    """Per-project configuration for the proposal generator."""

    project_id: str
    auto_generation_enabled: bool = True
    auto_generation_time: str = Field(default="06:00", pattern=r"^\d{2}:\d{2}(:\d{2})?$")
    auto_generation_timezone: str = "Asia/Singapore"
    time_window_days: int = Field(default=7, ge=1, le=30)
    min_stories_for_cluster: int = Field(default=2, ge=1, le=10)
    max_proposals_per_run: int = Field(default=5, ge=1, le=20)
    focus_categories: list[str] = Field(default_factory=list)
    comparison_regions: list[str] = Field(
        default_factory=lambda: ["Singapore", "Malaysia", "United States"]
    )
    default_duration_type: DurationType = DurationType.STANDARD
    default_duration_seconds: int = Field(default=180, ge=60, le=900)
    default_audience_profile_id: str | None = None
    include_trending_context: bool = True


# ---------------------------------------------------------------------------
# Requests and results
# ---------------------------------------------------------------------------


class GenerateRequest(BaseModel):
    """Caller input for manual generation."""

    project_id: str
    audience_profile_id: str
    duration_type: DurationType
    duration_seconds: int | None = Field(default=None, ge=60, le=900)
    comparison_regions: list[str] | None = None
    cluster_ids: list[int] | None = None
    max_proposals: int | None = Field(default=None, ge=1, le=10)


class ProposalUpdate(BaseModel):
    """Fields a reviewer may change. ``None`` means leave as is."""

    title: str | None = None
    hook: str | None = None
    audience_care_statement: str | None = None
    talking_points: list[TalkingPoint] | None = None
    research_citations: list[ResearchCitation] | None = None
    status: ProposalStatus | None = None
    review_notes: str | None = Field(default=None, max_length=2000)


class SimilarProposalInfo(BaseModel):
    id: str
    title: str
    status: ProposalStatus
    cluster_theme: str | None = None
    source_story_ids: list[str] = Field(default_factory=list)
    created_at: datetime
    overlap_count: int
    overlap_percentage: int


class ClusterOutcome(BaseModel):
    """What happened to one cluster during a generation run."""

    index: int
    theme: str
    proposal_id: str | None = None
    error: str | None = None


class GenerationResult(BaseModel):
    proposals: list[TopicProposal] = Field(default_factory=list)
    clusters_processed: int = 0
    total_clusters: int = 0
    outcomes: list[ClusterOutcome] = Field(default_factory=list)


class ClusterPreview(TopicCluster):
    """A cluster enriched with its items and duplicate warnings."""

    stories: list[SourceItem] = Field(default_factory=list)
    similar_proposals: list[SimilarProposalInfo] = Field(default_factory=list)


class PreviewResult(BaseModel):
    clusters: list[ClusterPreview] = Field(default_factory=list)
    stories: list[SourceItem] = Field(default_factory=list)
    trending_context: list[TrendingContext] = Field(default_factory=list)
    from_cache: bool = False
    message: str | None = None


class ProjectRunResult(BaseModel):
    project_id: str
    proposals_generated: int = 0
    error: str | None = None
    skipped_reason: str | None = None


class ScheduledRunSummary(BaseModel):
    elapsed_seconds: float
    projects_checked: int
    total_proposals_generated: int
    results: list[ProjectRunResult] = Field(default_factory=list)


class ProposalStats(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_trigger: dict[str, int] = Field(default_factory=dict)
    last_auto_generation: datetime | None = None
