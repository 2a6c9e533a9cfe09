"""Topic proposal pipeline -- aggregate, cluster, synthesize, review."""

from topicgen.proposals.aggregator import flagged_items  # noqa: F401
from topicgen.proposals.cache import ClusterCache  # noqa: F401
from topicgen.proposals.citations import (  # noqa: F401
    CitationFinder,
    deduplicate_citations,
    group_citations_by_type,
    is_valid_citation,
    merge_citations,
)
from topicgen.proposals.clusterer import ThemeClusterer  # noqa: F401
from topicgen.proposals.orchestrator import GenerationOrchestrator  # noqa: F401
from topicgen.proposals.review import (  # noqa: F401
    delete_proposal,
    get_settings,
    list_proposals,
    proposal_stats,
    require_member,
    update_proposal,
    update_settings,
)
from topicgen.proposals.schedule import is_due, parse_schedule_time  # noqa: F401
from topicgen.proposals.similarity import find_similar  # noqa: F401
from topicgen.proposals.synthesizer import ProposalSynthesizer  # noqa: F401
from topicgen.proposals.trending import build_trending_context  # noqa: F401
