"""Error taxonomy and per-run outcome reporting for the proposal pipeline.

Request-level errors (bad input, missing entities, zero successful outputs)
propagate to the caller.  Unit-level failures (one cluster, one citation
query, one project in the scheduled run) are caught and recorded in a
:class:`RunReport` instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum


class TopicgenError(Exception):
    """Base error for everything the pipeline surfaces to callers."""


class ValidationError(TopicgenError):
    """Malformed caller input. Nothing was persisted."""


class NotFoundError(TopicgenError):
    """A project, audience profile, or proposal does not exist."""


class PermissionDeniedError(TopicgenError):
    """The caller's project role does not allow the requested action."""


class InsufficientInputError(TopicgenError):
    """Too few flagged items to cluster."""

    def __init__(self, count: int, required: int = 2) -> None:
        self.count = count
        self.required = required
        super().__init__(
            f"Found {count} flagged stories. Need at least {required} to cluster."
        )


class NoClustersError(TopicgenError):
    """The clusterer found no meaningful themes."""

    def __init__(self, message: str = "") -> None:
        super().__init__(
            message or "Could not identify meaningful themes from the flagged stories."
        )


class GenerationError(TopicgenError):
    """A generative call failed or returned output that could not be parsed."""


class GenerationFailedError(TopicgenError):
    """Every candidate in a run failed, so nothing was produced."""


class PersistenceError(TopicgenError):
    """A store write failed."""


class OutcomeStatus(StrEnum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class UnitOutcome:
    """Result of processing a single unit (cluster, query, or project)."""

    unit: str
    status: OutcomeStatus
    detail: str = ""
    error_type: str = ""


@dataclass
class RunReport:
    """Ordered accumulator of ``(unit, outcome)`` pairs for one run."""

    stage: str
    outcomes: list[UnitOutcome] = field(default_factory=list)

    def add_success(self, unit: str, detail: str = "") -> None:
        self.outcomes.append(UnitOutcome(unit, OutcomeStatus.OK, detail))

    def add_skip(self, unit: str, reason: str) -> None:
        self.outcomes.append(UnitOutcome(unit, OutcomeStatus.SKIPPED, reason))

    def add_error(self, unit: str, message: str, *, error_type: str = "error") -> None:
        self.outcomes.append(
            UnitOutcome(unit, OutcomeStatus.FAILED, message, error_type=error_type)
        )

    @property
    def succeeded(self) -> list[UnitOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.OK]

    @property
    def failed(self) -> list[UnitOutcome]:
        return [o for o in self.outcomes if o.status == OutcomeStatus.FAILED]

    @property
    def has_errors(self) -> bool:
        return bool(self.failed)

    def summary(self) -> str:
        """One-line human summary, e.g. ``clusters: 2 ok, 1 failed``."""
        ok = len(self.succeeded)
        failed = len(self.failed)
        skipped = len(self.outcomes) - ok - failed
        parts = [f"{ok} ok"]
        if failed:
            parts.append(f"{failed} failed")
        if skipped:
            parts.append(f"{skipped} skipped")
        return f"{self.stage}: {', '.join(parts)}"
