"""Review workflow: role checks, proposal edits, stats, and settings."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from topicgen.config import GeneratorDefaults
from topicgen.errors import NotFoundError, PermissionDeniedError, ValidationError
from topicgen.models import (
    GenerationTrigger,
    ProjectMember,
    ProposalStats,
    ProposalStatus,
    ProposalUpdate,
    Role,
    TopicGeneratorSettings,
    TopicProposal,
)
from topicgen.store import JsonStore

logger = logging.getLogger(__name__)


# ── Access control ───────────────────────────────────────────────


def require_member(store: JsonStore, project_id: str, user_id: str) -> ProjectMember:
    member = store.get_member(project_id, user_id)
    if member is None:
        raise PermissionDeniedError(f"User {user_id} is not a member of project {project_id}")
    return member


def require_editor(store: JsonStore, project_id: str, user_id: str) -> ProjectMember:
    """Any member except a viewer."""
    member = require_member(store, project_id, user_id)
    if member.role == Role.VIEWER:
        raise PermissionDeniedError("Viewers cannot modify topic proposals")
    return member


def can_approve(member: ProjectMember) -> bool:
    return member.role == Role.OWNER or member.can_approve_stories


def require_proposal(store: JsonStore, proposal_id: str) -> TopicProposal:
    proposal = store.get_proposal(proposal_id)
    if proposal is None:
        raise NotFoundError(f"Topic proposal not found: {proposal_id}")
    return proposal


# ── Proposals ────────────────────────────────────────────────────


def list_proposals(
    store: JsonStore,
    project_id: str,
    user_id: str,
    *,
    status: ProposalStatus | None = None,
    audience_profile_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[TopicProposal]:
    require_member(store, project_id, user_id)
    return store.list_proposals(
        project_id,
        status=status,
        audience_profile_id=audience_profile_id,
        limit=limit,
        offset=offset,
    )


def update_proposal(
    store: JsonStore, proposal_id: str, user_id: str, update: ProposalUpdate
) -> TopicProposal:
    """Apply a reviewer's edits.

    Approval needs the owner role or ``can_approve_stories``; viewers can
    change nothing.
    """
    proposal = require_proposal(store, proposal_id)
    member = require_member(store, proposal.project_id, user_id)
    if update.status == ProposalStatus.APPROVED and not can_approve(member):
        raise PermissionDeniedError("You do not have permission to approve proposals")
    if member.role == Role.VIEWER:
        raise PermissionDeniedError("Viewers cannot edit topic proposals")

    changes = update.model_dump(exclude_none=True)
    if not changes:
        return proposal
    updated = store.save_proposal(proposal.model_copy(update=_as_models(update, changes)))
    logger.info("Proposal %s updated by %s (%s)", proposal_id, user_id, ", ".join(changes))
    return updated


def _as_models(update: ProposalUpdate, changes: dict[str, Any]) -> dict[str, Any]:
    # model_dump flattens nested models; keep the typed values for model_copy
    return {key: getattr(update, key) for key in changes}


def delete_proposal(store: JsonStore, proposal_id: str, user_id: str) -> None:
    """Only the project owner or the proposal's creator may delete."""
    proposal = require_proposal(store, proposal_id)
    member = require_member(store, proposal.project_id, user_id)
    if member.role != Role.OWNER and proposal.created_by_user_id != user_id:
        raise PermissionDeniedError("You do not have permission to delete this proposal")
    store.delete_proposal(proposal_id)
    logger.info("Proposal %s deleted by %s", proposal_id, user_id)


def proposal_stats(store: JsonStore, project_id: str) -> ProposalStats:
    proposals = store.list_proposals(project_id)
    auto_times = [
        p.created_at for p in proposals if p.generation_trigger == GenerationTrigger.AUTO
    ]
    return ProposalStats(
        total=len(proposals),
        by_status=dict(Counter(str(p.status) for p in proposals)),
        by_trigger=dict(Counter(str(p.generation_trigger) for p in proposals)),
        last_auto_generation=max(auto_times) if auto_times else None,
    )


# ── Settings ─────────────────────────────────────────────────────


def get_settings(
    store: JsonStore, project_id: str, defaults: GeneratorDefaults | None = None
) -> TopicGeneratorSettings:
    """Stored settings, or the generator defaults when none exist."""
    stored = store.get_settings(project_id)
    if stored is not None:
        return stored
    return (defaults or GeneratorDefaults()).default_settings(project_id)


def update_settings(
    store: JsonStore,
    project_id: str,
    user_id: str,
    changes: dict[str, Any],
    defaults: GeneratorDefaults | None = None,
) -> TopicGeneratorSettings:
    require_editor(store, project_id, user_id)
    current = get_settings(store, project_id, defaults)
    merged = {**current.model_dump(), **changes, "project_id": project_id}
    try:
        settings = TopicGeneratorSettings.model_validate(merged)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid settings: {exc}") from exc
    store.upsert_settings(settings)
    return settings
