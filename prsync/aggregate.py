"""
Cross-repository PR aggregation for Prsync.

fetch_sections() gathers the current user's open PRs for every configured
repository concurrently and returns one Section per repository, in
configured order. A failing repository yields a Section with `error` set;
it never hides the others.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from .classify import build_status, needs_rebase
from .config import RepoTarget
from .github import PullRequestRecord, RepoInfo

logger = logging.getLogger(__name__)


class PrGateway(Protocol):
    def list_open_pull_requests(self, repo: str | None = None) -> list[PullRequestRecord]: ...

    def get_repository(self, repo: str | None = None) -> RepoInfo: ...


@dataclass
class Section:
    """One repository's slice of a snapshot: PRs or an error, never both."""
    repo: RepoInfo | None
    pull_requests: list[PullRequestRecord] = field(default_factory=list)
    error: str | None = None
    target: RepoTarget | None = None

    @property
    def visible(self) -> bool:
        return bool(self.error or self.pull_requests)

    @property
    def label(self) -> str | None:
        if self.repo is not None:
            return self.repo.full_name
        if self.target is not None:
            return self.target.slug
        return None


@dataclass(frozen=True)
class ColumnWidths:
    number: int = 0
    branch: int = 0
    build: int = 0


def _non_draft(prs: Sequence[PullRequestRecord]) -> list[PullRequestRecord]:
    return [pr for pr in prs if not pr.is_draft]


async def _fetch_target(target: RepoTarget, gateway: PrGateway) -> Section:
    slug = target.slug
    try:
        repo, prs = await asyncio.gather(
            asyncio.to_thread(gateway.get_repository, slug),
            asyncio.to_thread(gateway.list_open_pull_requests, slug),
        )
    except Exception as exc:  # noqa: BLE001
        logger.info("repository fetch failed repo=%s error=%s", slug, exc)
        return Section(repo=None, error=str(exc) or type(exc).__name__, target=target)
    return Section(repo=repo, pull_requests=_non_draft(prs), target=target)


async def _fetch_current_directory(gateway: PrGateway) -> Section:
    repo: RepoInfo | None = None
    try:
        repo = await asyncio.to_thread(gateway.get_repository)
    except Exception as exc:  # noqa: BLE001
        logger.debug("current repository metadata unavailable error=%s", exc)
    # PR fetch failure is the caller's to handle
    prs = await asyncio.to_thread(gateway.list_open_pull_requests)
    return Section(repo=repo, pull_requests=_non_draft(prs))


async def fetch_sections(targets: Sequence[RepoTarget], gateway: PrGateway) -> list[Section]:
    """Fetch one Section per target, or the current directory if none are configured."""
    if not targets:
        return [await _fetch_current_directory(gateway)]
    return list(await asyncio.gather(*(_fetch_target(target, gateway) for target in targets)))


def visible_sections(sections: Sequence[Section]) -> list[Section]:
    """Sections worth rendering: failed ones and ones with PRs."""
    return [section for section in sections if section.visible]


def compute_column_widths(sections: Sequence[Section]) -> ColumnWidths:
    """Column widths over every visible section, so repositories line up."""
    prs = [pr for section in visible_sections(sections) for pr in section.pull_requests]
    if not prs:
        return ColumnWidths()
    return ColumnWidths(
        number=max(len(f"PR#{pr.number}") for pr in prs),
        branch=max(len(pr.head_branch) for pr in prs),
        build=max(len(build_status(pr).text) for pr in prs),
    )


def collect_stale(sections: Sequence[Section]) -> list[tuple[Section, PullRequestRecord]]:
    """Every PR that needs a rebase, paired with its section."""
    return [
        (section, pr)
        for section in sections
        for pr in section.pull_requests
        if needs_rebase(pr)
    ]
