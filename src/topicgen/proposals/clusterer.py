"""Group source items into themes with one generative call."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from topicgen.errors import GenerationError
from topicgen.llm import LLMError, ParseError, TextGenerator, parse_json_response
from topicgen.models import AudienceProfile, SourceItem, TopicCluster, TrendingContext
from topicgen.proposals.prompts import CLUSTER_SYSTEM_PROMPT, get_cluster_prompt

logger = logging.getLogger(__name__)


def _clamp_score(value: Any) -> float:
    try:
        score = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(100.0, score))


class ThemeClusterer:
    """Clusters items for an audience via a :class:`TextGenerator`."""

    def __init__(self, llm: TextGenerator) -> None:
        self._llm = llm

    def cluster(
        self,
        items: list[SourceItem],
        audience_profile: AudienceProfile,
        trending_context: list[TrendingContext] | None = None,
    ) -> list[TopicCluster]:
        """Return zero or more clusters over ``items``.

        Raises:
            GenerationError: If the call fails or its output is not a
                ``{"clusters": [...]}`` object.
        """
        if not items:
            return []

        prompt = get_cluster_prompt(items, audience_profile, trending_context)
        try:
            raw = self._llm.complete(CLUSTER_SYSTEM_PROMPT, prompt, label="cluster")
        except LLMError as exc:
            raise GenerationError(f"Clustering call failed: {exc}") from exc

        parsed = parse_json_response(raw)
        if isinstance(parsed, ParseError):
            raise GenerationError(f"Unparseable clustering output: {parsed.reason}")

        raw_clusters = parsed.data.get("clusters", [])
        if not isinstance(raw_clusters, list):
            raise GenerationError("Clustering output 'clusters' is not a list")

        known_ids = {item.id for item in items}
        clusters: list[TopicCluster] = []
        for entry in raw_clusters:
            cluster = self._to_cluster(entry, known_ids)
            if cluster is not None:
                clusters.append(cluster)

        logger.info("Clustered %d items into %d themes", len(items), len(clusters))
        return clusters

    @staticmethod
    def _to_cluster(entry: Any, known_ids: set[str]) -> TopicCluster | None:
        if not isinstance(entry, dict) or not entry.get("theme"):
            logger.warning("Skipping malformed cluster: %r", entry)
            return None
        theme = str(entry["theme"])

        raw_ids = entry.get("story_ids") or []
        if not isinstance(raw_ids, list):
            logger.warning("Skipping cluster %r: story_ids is not a list", theme)
            return None
        story_ids = [
            str(sid)
            for sid in raw_ids
            if isinstance(sid, (str, int)) and str(sid) in known_ids
        ]
        dropped = len(raw_ids) - len(story_ids)
        if dropped:
            logger.warning("Dropped %d unknown story ids from cluster %r", dropped, theme)
        if not story_ids:
            return None

        keywords = entry.get("keywords") or []
        if not isinstance(keywords, list):
            keywords = [keywords]
        relevance = entry.get("audience_relevance")
        try:
            return TopicCluster(
                theme=theme,
                keywords=[str(k) for k in keywords],
                story_ids=list(dict.fromkeys(story_ids)),
                relevance_score=_clamp_score(entry.get("relevance_score")),
                audience_relevance=str(relevance) if relevance is not None else None,
            )
        except PydanticValidationError:
            logger.warning("Skipping invalid cluster %r", theme, exc_info=True)
            return None
