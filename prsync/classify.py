"""
PR status classification for Prsync.

Pure functions that derive display-level status from a PullRequestRecord:
- needs_rebase: the single "stale branch" predicate
- build_status: CI rollup (no CI / building / failed / passed)
- approval_status: merge readiness + review decision
- group_by_status: ordering used by every PR listing

No I/O, no mutation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .github import MergeState, PullRequestRecord, ReviewDecision

STALE_STATES = frozenset({MergeState.BEHIND, MergeState.DIRTY})
ATTENTION_STATES = frozenset({MergeState.BLOCKED, MergeState.UNSTABLE, MergeState.UNKNOWN})

IN_FLIGHT_STATUSES = frozenset({"IN_PROGRESS", "QUEUED", "PENDING", "WAITING", "REQUESTED"})
FAILED_CONCLUSIONS = frozenset({"FAILURE", "ERROR", "TIMED_OUT"})


@dataclass(frozen=True)
class StatusDisplay:
    """A classified status with its rendering hints."""
    key: str
    symbol: str
    label: str
    color: str | None = None  # click.style colour name, None = dim

    @property
    def text(self) -> str:
        return f"{self.symbol} {self.label}"


NO_CI = StatusDisplay("no_ci", "—", "No CI")
BUILDING = StatusDisplay("building", "⋯", "Building")
BUILD_FAILED = StatusDisplay("failed", "✗", "Failed", "red")
BUILD_PASSED = StatusDisplay("passed", "✓", "Build passed", "green")

CONFLICTS = StatusDisplay("conflicts", "✗", "Conflicts", "red")
REBASE_NEEDED = StatusDisplay("rebase_needed", "⚠", "Rebase needed", "yellow")
APPROVED = StatusDisplay("approved", "✓", "Approved", "green")
CHANGES_REQUESTED = StatusDisplay("changes_requested", "○", "Changes req'd", "red")
AWAITING_REVIEW = StatusDisplay("awaiting_review", "○", "Awaiting review", "white")
NO_REVIEW = StatusDisplay("no_review", "—", "No review req.")

_REVIEW_DISPLAY = {
    ReviewDecision.APPROVED: APPROVED,
    ReviewDecision.CHANGES_REQUESTED: CHANGES_REQUESTED,
    ReviewDecision.REVIEW_REQUIRED: AWAITING_REVIEW,
}


def needs_rebase(pr: PullRequestRecord) -> bool:
    """True when the PR branch is behind or diverged from its target."""
    return pr.merge_state in STALE_STATES


def build_status(pr: PullRequestRecord) -> StatusDisplay:
    """Summarize CI checks. A running check wins over an earlier failure."""
    if not pr.checks:
        return NO_CI
    if any(check.status in IN_FLIGHT_STATUSES for check in pr.checks):
        return BUILDING
    if any(check.conclusion in FAILED_CONCLUSIONS for check in pr.checks):
        return BUILD_FAILED
    return BUILD_PASSED


def approval_status(pr: PullRequestRecord) -> StatusDisplay:
    """Merge readiness first (dirty, then behind), then the review decision."""
    if pr.merge_state == MergeState.DIRTY:
        return CONFLICTS
    if pr.merge_state == MergeState.BEHIND:
        return REBASE_NEEDED
    return _REVIEW_DISPLAY.get(pr.review_decision, NO_REVIEW)


def status_group(pr: PullRequestRecord) -> int:
    """0 = needs rebase, 1 = needs attention, 2 = clean."""
    if needs_rebase(pr):
        return 0
    if pr.merge_state in ATTENTION_STATES:
        return 1
    return 2


def group_by_status(prs: Iterable[PullRequestRecord]) -> list[PullRequestRecord]:
    """Order PRs by status group, keeping fetch order inside each group."""
    return sorted(prs, key=status_group)


@dataclass(frozen=True)
class PrSummary:
    total: int
    needs_rebase: int
    failed_builds: int
    approved: int


def summarize(prs: Iterable[PullRequestRecord]) -> PrSummary:
    prs = list(prs)
    return PrSummary(
        total=len(prs),
        needs_rebase=sum(1 for pr in prs if needs_rebase(pr)),
        failed_builds=sum(1 for pr in prs if build_status(pr) is BUILD_FAILED),
        approved=sum(1 for pr in prs if approval_status(pr) is APPROVED),
    )
