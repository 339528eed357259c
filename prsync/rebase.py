"""
Sequential rebase of stale PR branches.

RebaseOrchestrator runs one task per stale branch, strictly in order:

    fetch -> checkout -> rebase -> (abort on conflict) -> confirm -> push

A failing task never stops the batch, except a conflict the user chooses
not to continue past; in that case the working copy stays on the
conflicted branch for inspection. Otherwise the original branch is checked
out again at the end, unless `stay` is set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Protocol

import click

from .classify import needs_rebase
from .git import GitError, RebaseConflictError, RebaseStoppedError
from .github import PullRequestRecord

logger = logging.getLogger(__name__)


class DirtyWorkingCopyError(Exception):
    """The working copy has uncommitted changes."""


class RebaseMode(str, Enum):
    PLAIN = "plain"
    INTERACTIVE = "interactive"
    SQUASH = "squash"


class VersionControl(Protocol):
    remote: str

    def current_branch(self) -> str: ...
    def has_uncommitted_changes(self) -> bool: ...
    def fetch(self) -> None: ...
    def checkout(self, branch: str) -> None: ...
    def ahead_count(self, ref: str) -> int: ...
    def rebase(self, onto: str, *, interactive: bool = False, squash: bool = False) -> None: ...
    def abort_rebase(self) -> None: ...
    def push_force_with_lease(self, branch: str) -> None: ...


class AuthCheck(Protocol):
    def check_authenticated(self) -> str: ...


@dataclass(frozen=True)
class RebaseTask:
    """One stale branch to bring up to date."""
    branch: str
    pr_number: int
    pr_title: str
    target: str  # default branch name, without the remote prefix


@dataclass(frozen=True)
class RebaseOutcome:
    success: bool
    # True only when a conflict forced `git rebase --abort`
    aborted: bool = False
    message: str | None = None


@dataclass
class BatchResult:
    succeeded: int = 0
    failed: int = 0
    stopped_early: bool = False
    restored: bool = False
    dry_run: bool = False


def tasks_from_pull_requests(
    prs: Iterable[PullRequestRecord],
    target: str,
) -> list[RebaseTask]:
    """Rebase tasks for the non-draft stale PRs, in the order given."""
    return [
        RebaseTask(branch=pr.head_branch, pr_number=pr.number, pr_title=pr.title, target=target)
        for pr in prs
        if not pr.is_draft and needs_rebase(pr)
    ]


def _plural(count: int, word: str = "branch", suffix: str = "es") -> str:
    return f"{count} {word}{'' if count == 1 else suffix}"


class RebaseOrchestrator:
    """Drives rebase tasks against one working copy."""

    def __init__(
        self,
        git: VersionControl,
        gateway: AuthCheck,
        confirm: Callable[..., bool] = click.confirm,
        echo: Callable[[str], None] = click.echo,
    ):
        self.git = git
        self.gateway = gateway
        self.confirm = confirm
        self.echo = echo
        self.original_branch: str | None = None

    def check_preconditions(self, dry_run: bool = False) -> str:
        """Verify auth and a clean working copy, and remember the current branch.

        Raises AuthError or DirtyWorkingCopyError before anything is touched.
        """
        self.gateway.check_authenticated()
        if not dry_run and self.git.has_uncommitted_changes():
            raise DirtyWorkingCopyError(
                "You have uncommitted changes. Please commit or stash them first."
            )
        self.original_branch = self.git.current_branch()
        logger.debug("original branch=%s", self.original_branch)
        return self.original_branch

    def _fail(self, what: str, exc: Exception) -> RebaseOutcome:
        self.echo(f"  {click.style('✗', fg='red')} {what}")
        detail = str(exc).strip()
        if detail:
            self.echo(click.style(f"    {detail.splitlines()[-1]}", dim=True))
        logger.info("rebase task failed step=%s error=%s", what, exc)
        return RebaseOutcome(success=False, message=what)

    def _rebase(self, task: RebaseTask, mode: RebaseMode, onto: str) -> RebaseOutcome | None:
        """Run the rebase for `mode`. Returns an outcome only when nothing was run."""
        if mode is RebaseMode.INTERACTIVE:
            self.git.rebase(onto, interactive=True)
            return None
        if mode is RebaseMode.SQUASH:
            ahead = self.git.ahead_count(onto)
            if ahead == 0:
                self.echo(f"  {click.style('✗', fg='red')} {task.branch}: nothing to rebase")
                return RebaseOutcome(success=False, message="nothing to rebase")
            if ahead > 1:
                self.echo(click.style(f"  Squashing {ahead} commits", dim=True))
                self.git.rebase(onto, squash=True)
                return None
        self.git.rebase(onto)
        return None

    def run_task(self, task: RebaseTask, mode: RebaseMode = RebaseMode.PLAIN, dry_run: bool = False) -> RebaseOutcome:
        onto = f"{self.git.remote}/{task.target}"
        branch = click.style(task.branch, bold=True)

        if dry_run:
            self.echo(
                f"  {click.style('[dry-run]', dim=True)} Would rebase {branch} "
                f"onto {click.style(onto, bold=True)}"
            )
            return RebaseOutcome(success=True, message="dry run")

        try:
            self.git.fetch()
        except GitError as exc:
            return self._fail(f"Fetch of {self.git.remote} failed", exc)

        try:
            self.git.checkout(task.branch)
        except GitError as exc:
            return self._fail(f"Checkout of {task.branch} failed", exc)

        try:
            skipped = self._rebase(task, mode, onto)
        except RebaseConflictError as exc:
            try:
                self.git.abort_rebase()
            except GitError as abort_exc:
                logger.warning("rebase --abort failed branch=%s error=%s", task.branch, abort_exc)
            if isinstance(exc, RebaseStoppedError):
                what = f"Rebase of {branch} onto {onto} stopped before finishing"
            else:
                what = f"Conflicts rebasing {branch} onto {onto}"
            self.echo(f"  {click.style('⚠', fg='yellow')} {what}; rebase aborted")
            self.echo(click.style(f"    Resolve by hand: git checkout {task.branch} && git rebase {onto}", dim=True))
            return RebaseOutcome(
                success=False,
                aborted=True,
                message="stopped" if isinstance(exc, RebaseStoppedError) else "conflict",
            )
        except GitError as exc:
            return self._fail(f"Rebase of {task.branch} failed", exc)
        if skipped is not None:
            return skipped

        self.echo(f"  {click.style('✓', fg='green')} Rebased {branch} onto {onto}")

        if not self.confirm(f"  Force-push {task.branch} to {self.git.remote} (--force-with-lease)?", default=True):
            self.echo(click.style("  Push skipped", dim=True))
            return RebaseOutcome(success=True, message="push skipped")

        try:
            self.git.push_force_with_lease(task.branch)
        except GitError as exc:
            return self._fail(f"Push of {task.branch} failed", exc)
        self.echo(f"  {click.style('✓', fg='green')} Pushed {branch}")
        return RebaseOutcome(success=True)

    def _restore(self) -> bool:
        if not self.original_branch:
            return False
        try:
            self.git.checkout(self.original_branch)
        except GitError as exc:
            logger.info("restore checkout failed branch=%s error=%s", self.original_branch, exc)
            self.echo(click.style(
                f"Warning: could not return to original branch {self.original_branch}",
                fg="yellow",
            ))
            return False
        self.echo(f"Returned to {click.style(self.original_branch, bold=True)}")
        return True

    def summary(self, result: BatchResult) -> str:
        if result.dry_run:
            return f"Dry run complete · {_plural(result.succeeded)} would be rebased"
        if result.failed == 0:
            return click.style(f"Rebased {_plural(result.succeeded)} successfully", fg="green")
        return f"{result.succeeded} succeeded, {click.style(f'{result.failed} failed', fg='red')}"

    def run_batch(
        self,
        tasks: list[RebaseTask],
        mode: RebaseMode = RebaseMode.PLAIN,
        dry_run: bool = False,
        stay: bool = False,
    ) -> BatchResult:
        """Run every task in order, then return to the original branch."""
        result = BatchResult(dry_run=dry_run)
        if not tasks:
            self.echo(click.style("All PRs are up to date. Nothing to rebase.", fg="green"))
            return result

        for index, task in enumerate(tasks):
            self.echo("")
            self.echo(
                f"{click.style('●', fg='cyan')} Rebasing {click.style(task.branch, bold=True)} "
                f"{click.style(f'(#{task.pr_number})', dim=True)}"
            )
            outcome = self.run_task(task, mode, dry_run)
            if outcome.success:
                result.succeeded += 1
            else:
                result.failed += 1

            remaining = len(tasks) - index - 1
            if outcome.aborted and remaining:
                if not self.confirm(f"Continue with the remaining {_plural(remaining)}?", default=True):
                    result.stopped_early = True
                    self.echo(click.style(
                        f"Stopped. Working copy left on {task.branch}.", fg="yellow"
                    ))
                    break

        self.echo("")
        if not (result.stopped_early or stay or dry_run):
            result.restored = self._restore()
        self.echo(self.summary(result))
        return result
