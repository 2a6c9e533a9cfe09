"""Expand a cluster into a proposal draft with one generative call."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from topicgen.errors import GenerationError
from topicgen.llm import LLMError, ParseError, TextGenerator, parse_json_response
from topicgen.models import (
    AudienceProfile,
    DurationType,
    ProposalDraft,
    ResearchSuggestion,
    SourceItem,
    TalkingPoint,
    TopicCluster,
    TrendingContext,
)
from topicgen.proposals.prompts import PROPOSAL_SYSTEM_PROMPT, get_proposal_prompt

logger = logging.getLogger(__name__)


class ProposalSynthesizer:
    """Synthesizes proposal drafts via a :class:`TextGenerator`."""

    def __init__(self, llm: TextGenerator, duration_tolerance: float = 0.2) -> None:
        self._llm = llm
        self._tolerance = duration_tolerance

    def synthesize(
        self,
        cluster: TopicCluster,
        items: list[SourceItem],
        audience_profile: AudienceProfile,
        duration_type: DurationType,
        duration_seconds: int,
        comparison_regions: list[str],
        trending_context: list[TrendingContext] | None = None,
    ) -> ProposalDraft:
        """Generate a draft for one cluster.

        Args:
            cluster: Theme, keywords and story ids to write about.
            items: The cluster's source items.
            audience_profile: Who the video is for.
            duration_type: Duration class, echoed into the prompt.
            duration_seconds: Target total length of the talking points.
            comparison_regions: Regions the script may compare against.
            trending_context: Optional social trends to weave in.

        Returns:
            A draft whose ``duration_warning`` is set when the talking
            points' total strays beyond the tolerance.

        Raises:
            GenerationError: If the call fails, the output is unparseable,
                or title, hook or talking points are missing.
        """
        prompt = get_proposal_prompt(
            cluster,
            items,
            audience_profile,
            str(duration_type),
            duration_seconds,
            comparison_regions,
            trending_context,
        )
        try:
            raw = self._llm.complete(PROPOSAL_SYSTEM_PROMPT, prompt, label="proposal")
        except LLMError as exc:
            raise GenerationError(f"Proposal call failed for {cluster.theme!r}: {exc}") from exc

        parsed = parse_json_response(raw)
        if isinstance(parsed, ParseError):
            raise GenerationError(
                f"Unparseable proposal output for {cluster.theme!r}: {parsed.reason}"
            )

        draft = self._to_draft(parsed.data, cluster.theme)
        warning = self._check_duration(draft.talking_points, duration_seconds)
        if warning:
            logger.warning("Proposal %r: %s", draft.title, warning)
            draft = draft.model_copy(update={"duration_warning": warning})
        return draft

    @staticmethod
    def _to_draft(data: dict[str, Any], theme: str) -> ProposalDraft:
        title = data.get("title")
        hook = data.get("hook")
        points_raw = data.get("talking_points")
        if not title or not hook or not points_raw:
            raise GenerationError(
                f"Proposal output for {theme!r} is missing title, hook, or talking points"
            )

        try:
            points = [TalkingPoint.model_validate(p) for p in points_raw]
        except (PydanticValidationError, TypeError) as exc:
            raise GenerationError(f"Invalid talking points for {theme!r}: {exc}") from exc

        suggestions: list[ResearchSuggestion] = []
        for entry in data.get("research_suggestions") or []:
            try:
                suggestions.append(ResearchSuggestion.model_validate(entry))
            except PydanticValidationError:
                logger.warning("Skipping malformed research suggestion: %r", entry)

        return ProposalDraft(
            title=str(title),
            hook=str(hook),
            audience_care_statement=str(data.get("audience_care_statement") or ""),
            talking_points=points,
            research_suggestions=suggestions,
        )

    def _check_duration(self, points: list[TalkingPoint], target: int) -> str | None:
        total = sum(p.duration_estimate_seconds for p in points)
        if target <= 0:
            return None
        deviation = abs(total - target) / target
        if deviation <= self._tolerance:
            return None
        return (
            f"talking points total {total}s against a {target}s target "
            f"({deviation:.0%} off)"
        )
