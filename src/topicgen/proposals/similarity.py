"""Detect existing proposals that share source items with a candidate."""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable

from topicgen.models import ProposalStatus, SimilarProposalInfo, TopicProposal
from topicgen.store import JsonStore


def _index_by_story(proposals: Iterable[TopicProposal]) -> dict[str, list[TopicProposal]]:
    index: dict[str, list[TopicProposal]] = {}
    for proposal in proposals:
        for story_id in set(proposal.source_story_ids):
            index.setdefault(story_id, []).append(proposal)
    return index


def find_similar(
    store: JsonStore,
    project_id: str,
    story_ids: list[str],
    *,
    min_overlap_percentage: int = 50,
    exclude_statuses: Iterable[ProposalStatus] = (),
) -> list[SimilarProposalInfo]:
    """Return non-archived proposals whose source items overlap ``story_ids``.

    Overlap percentage is measured against the smaller of the two id sets,
    so a proposal built from a subset of the candidate's items scores 100.
    Results are ordered by percentage, highest first.
    """
    wanted = set(story_ids)
    if not wanted:
        return []

    excluded = {ProposalStatus.ARCHIVED, *exclude_statuses}
    proposals = store.list_proposals(project_id, exclude_statuses=excluded)
    index = _index_by_story(proposals)

    overlaps: Counter[str] = Counter()
    by_id: dict[str, TopicProposal] = {}
    for story_id in wanted:
        for proposal in index.get(story_id, []):
            overlaps[proposal.id] += 1
            by_id[proposal.id] = proposal

    results = []
    for proposal_id, overlap in overlaps.items():
        proposal = by_id[proposal_id]
        denominator = min(len(wanted), len(set(proposal.source_story_ids)))
        exact = 100 * overlap / denominator
        if exact < min_overlap_percentage:
            continue
        results.append(
            SimilarProposalInfo(
                id=proposal.id,
                title=proposal.title,
                status=proposal.status,
                cluster_theme=proposal.cluster_theme,
                source_story_ids=proposal.source_story_ids,
                created_at=proposal.created_at,
                overlap_count=overlap,
                overlap_percentage=round(exact),
            )
        )

    results.sort(key=lambda r: r.overlap_percentage, reverse=True)
    return results
