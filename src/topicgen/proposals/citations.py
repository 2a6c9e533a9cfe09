"""Research citations: per-query generation plus list helpers."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from pydantic import ValidationError as PydanticValidationError

from topicgen.errors import RunReport
from topicgen.llm import LLMError, ParseError, TextGenerator, parse_json_response
from topicgen.models import ResearchCitation, ResearchSuggestion, SourceType
from topicgen.proposals.prompts import RESEARCH_SYSTEM_PROMPT, get_research_prompt

logger = logging.getLogger(__name__)

MAX_QUERIES = 5


class CitationFinder:
    """Turns research suggestions into citations, one call per query."""

    def __init__(self, llm: TextGenerator, max_queries: int = MAX_QUERIES) -> None:
        self._llm = llm
        self._max_queries = max_queries
        self.last_report: RunReport | None = None

    def find_citations(
        self,
        topic: str,
        queries: list[ResearchSuggestion],
        audience_region: str | None = None,
        max_per_query: int = 2,
    ) -> list[ResearchCitation]:
        """Collect citations for up to five queries.

        A failing query is logged and skipped; the rest still run.
        """
        report = RunReport(stage="citations")
        citations: list[ResearchCitation] = []

        for query in queries[: self._max_queries]:
            try:
                found = self._query(topic, query, audience_region, max_per_query)
            except LLMError as exc:
                logger.warning("Citation query %r failed", query.query, exc_info=True)
                report.add_error(query.query, str(exc), error_type="llm")
                continue
            except Exception as exc:
                logger.warning("Citation query %r failed", query.query, exc_info=True)
                report.add_error(query.query, str(exc), error_type=type(exc).__name__)
                continue
            if found is None:
                report.add_error(query.query, "unparseable output", error_type="parse")
                continue
            citations.extend(found)
            report.add_success(query.query, f"{len(found)} citations")

        self.last_report = report
        logger.debug(report.summary())
        return citations

    def _query(
        self,
        topic: str,
        query: ResearchSuggestion,
        audience_region: str | None,
        max_per_query: int,
    ) -> list[ResearchCitation] | None:
        prompt = get_research_prompt(topic, query, audience_region)
        raw = self._llm.complete(RESEARCH_SYSTEM_PROMPT, prompt, label="citations")

        parsed = parse_json_response(raw)
        if isinstance(parsed, ParseError):
            logger.warning("Failed to parse citations for %r: %s", query.query, parsed.reason)
            return None

        entries = parsed.data.get("citations") or []
        if not isinstance(entries, list):
            logger.warning("Citations for %r are not a list", query.query)
            return None

        now = datetime.now(tz=UTC)
        results = []
        for entry in entries[:max_per_query]:
            if not isinstance(entry, dict):
                continue
            try:
                citation = ResearchCitation(
                    title=entry.get("title") or "Untitled",
                    url=entry.get("url") or "#",
                    source_type=SourceType(query.type.value),
                    snippet=entry.get("snippet") or "",
                    accessed_at=now,
                    relevance_to_audience=entry.get("relevance_to_audience") or query.reason,
                )
            except PydanticValidationError:
                logger.warning("Skipping malformed citation for %r: %r", query.query, entry)
                continue
            results.append(citation)
        return results


def is_valid_citation(citation: ResearchCitation) -> bool:
    """True when the citation has a title, a real URL, and a snippet."""
    return bool(citation.title and citation.url and citation.url != "#" and citation.snippet)


def deduplicate_citations(citations: Iterable[ResearchCitation]) -> list[ResearchCitation]:
    """Drop repeated URLs, keeping the first occurrence."""
    seen: set[str] = set()
    unique = []
    for citation in citations:
        if citation.url in seen:
            continue
        seen.add(citation.url)
        unique.append(citation)
    return unique


def merge_citations(
    existing: list[ResearchCitation], new: Iterable[ResearchCitation]
) -> list[ResearchCitation]:
    """Append citations from ``new`` whose URL is not already present."""
    return deduplicate_citations([*existing, *new])


def group_citations_by_type(
    citations: Iterable[ResearchCitation],
) -> dict[SourceType, list[ResearchCitation]]:
    grouped: dict[SourceType, list[ResearchCitation]] = {}
    for citation in citations:
        grouped.setdefault(citation.source_type, []).append(citation)
    return grouped
