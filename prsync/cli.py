"""
Prsync CLI - Track your open GitHub PRs and keep their branches rebased.

Commands:
    status    - One-shot PR status (current repo, or all tracked with --all)
    live      - Continuously refreshing PR status
    rebase    - Rebase stale PR branches onto the default branch
    select    - Check out the branch of one of your open PRs
    config    - Manage tracked repositories
    watch     - Background check with desktop notifications
"""

from __future__ import annotations

import functools
import logging
from pathlib import Path
from typing import Callable, Sequence, TypeVar

import click
from dotenv import load_dotenv

from . import __version__
from . import watch as watch_ops
from .classify import approval_status, needs_rebase
from .config import ConfigStore, tildeify
from .git import GitError, GitRepo, parse_remote_slug
from .github import AuthError, GitHubAPIError, GitHubClient, PullRequestRecord
from .live import LiveDisplay
from .logs import add_watch_log_sink, setup_logging
from .notify import get_notifier
from .rebase import DirtyWorkingCopyError, RebaseMode, RebaseOrchestrator, tasks_from_pull_requests
from .render import format_pr_lines
from .scheduler import SchedulerError, get_periodic_job

# GITHUB_TOKEN may live in a .env file
load_dotenv()

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONTEXT_SETTINGS = {"help_option_names": ["-h", "--help"]}


def cancellable(func: Callable) -> Callable:
    """Treat a cancelled prompt (Ctrl+C / EOF) as a normal, successful exit."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except click.Abort:
            click.echo("")
            click.echo(click.style("Cancelled", dim=True))
            return None
    return wrapper


def choose(items: Sequence[T], describe: Callable[[T], str], message: str) -> T:
    """Numbered selection prompt. 0 cancels (raises click.Abort)."""
    for index, item in enumerate(items, start=1):
        click.echo(f"  {click.style(str(index), fg='cyan')}) {describe(item)}")
    click.echo(f"  {click.style('0', fg='cyan')}) Cancel")
    choice = click.prompt(message, type=click.IntRange(0, len(items)), default=1)
    if choice == 0:
        raise click.Abort()
    return items[choice - 1]


def format_interval(seconds: int) -> str:
    if seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


def _short_title(title: str, limit: int = 50) -> str:
    return title if len(title) <= limit else title[: limit - 3] + "..."


@click.group(context_settings=CONTEXT_SETTINGS)
@click.version_option(version=__version__, prog_name="prsync")
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging on stderr")
def main(verbose: bool):
    """Prsync - Track your open GitHub PRs and keep their branches rebased."""
    setup_logging(verbose)


@main.command()
@click.option("--all", "all_repos", is_flag=True, help="Show every tracked repository")
def status(all_repos: bool):
    """Show the status of your open PRs once.

    Without --all only the repository in the current directory is shown.
    """
    display = LiveDisplay(
        ConfigStore(),
        GitHubClient(),
        get_periodic_job(),
        use_config=all_repos,
    )
    try:
        frame = display.snapshot()
    except GitHubAPIError as e:
        raise click.ClickException(str(e))
    click.echo(frame)


@main.command()
@click.option("--interval", type=click.IntRange(min=1), default=None,
              help="Seconds between refreshes (default: live_interval from config)")
def live(interval: int | None):
    """Continuously refresh PR status for every tracked repository.

    Falls back to the current directory when no repositories are tracked.
    Press Ctrl+C to exit.
    """
    display = LiveDisplay(ConfigStore(), GitHubClient(), get_periodic_job())
    display.run(interval)


@main.command()
@click.option("--all", "all_branches", is_flag=True, help="Rebase every stale branch")
@click.option("-i", "--interactive", is_flag=True, help="Interactive rebase (opens your editor)")
@click.option("-s", "--squash", is_flag=True, help="Squash each branch into a single commit")
@click.option("--stay", is_flag=True, help="Stay on the last branch instead of returning")
@click.option("--dry-run", is_flag=True, help="Show what would happen without executing")
@cancellable
def rebase(all_branches: bool, interactive: bool, squash: bool, stay: bool, dry_run: bool):
    """Rebase branches of your PRs that are behind or diverged.

    Each branch is fetched, rebased onto origin/<default branch> and, after
    confirmation, pushed with --force-with-lease. Conflicts abort the rebase.

    Examples:

        prsync rebase             # Pick one stale branch
        prsync rebase --all       # Every stale branch, one after another
        prsync rebase --dry-run   # Show what would be rebased
    """
    if interactive and squash:
        raise click.UsageError("--interactive and --squash cannot be combined.")
    mode = RebaseMode.PLAIN
    if interactive:
        mode = RebaseMode.INTERACTIVE
    elif squash:
        mode = RebaseMode.SQUASH

    client = GitHubClient()
    orchestrator = RebaseOrchestrator(GitRepo(), client)
    try:
        orchestrator.check_preconditions(dry_run=dry_run)
    except (AuthError, DirtyWorkingCopyError, GitError) as e:
        raise click.ClickException(str(e))

    try:
        prs = client.list_open_pull_requests()
    except GitHubAPIError as e:
        raise click.ClickException(f"Failed to fetch PRs: {e}")

    stale = [pr for pr in prs if not pr.is_draft and needs_rebase(pr)]
    click.echo(f"Found {len(stale)} PR{'' if len(stale) == 1 else 's'} needing rebase")
    if not stale:
        orchestrator.run_batch([], mode, dry_run=dry_run, stay=stay)
        return

    for pr in stale:
        state = approval_status(pr)
        click.echo(
            f"  {click.style(f'#{pr.number}', dim=True)} {pr.title}\n"
            f"     {click.style(pr.head_branch, dim=True)} · {click.style(state.label, fg=state.color)}"
        )

    try:
        default_branch = client.get_default_branch()
    except GitHubAPIError as e:
        raise click.ClickException(f"Could not detect the default branch: {e}")
    click.echo(f"Default branch: {click.style(default_branch, bold=True)}")

    tasks = tasks_from_pull_requests(stale, default_branch)
    if all_branches:
        if not dry_run:
            count = len(tasks)
            click.confirm(
                f"Rebase all {count} branch{'' if count == 1 else 'es'} onto origin/{default_branch}?",
                default=True,
                abort=True,
            )
    elif len(tasks) > 1:
        click.echo("")
        task = choose(
            tasks,
            lambda t: f"{t.branch}  {click.style(f'#{t.pr_number} {_short_title(t.pr_title, 40)}', dim=True)}",
            "Which branch do you want to rebase?",
        )
        tasks = [task]

    orchestrator.run_batch(tasks, mode, dry_run=dry_run, stay=stay)


@main.command()
@cancellable
def select():
    """Check out the branch of one of your open PRs (drafts included)."""
    client = GitHubClient()
    try:
        prs = client.list_open_pull_requests()
    except GitHubAPIError as e:
        raise click.ClickException(str(e))

    if not prs:
        click.echo(click.style("No open PRs found for your account in this repository.", fg="yellow"))
        return

    click.echo("")
    click.echo(click.style("🌿 Select Branch", bold=True))
    click.echo("")
    for line in format_pr_lines(prs, title=ConfigStore().load().title):
        click.echo(f"  {line}")
    click.echo("")

    pr: PullRequestRecord = choose(
        prs,
        lambda p: f"{p.head_branch}  {click.style(f'PR#{p.number} - {_short_title(p.title)}', dim=True)}",
        "Branch to check out",
    )

    git = GitRepo()
    try:
        if git.current_branch() == pr.head_branch:
            click.echo(f"Already on {click.style(pr.head_branch, bold=True)}")
            return
        git.checkout(pr.head_branch)
    except GitError as e:
        raise click.ClickException(str(e))
    click.echo(f"{click.style('✓', fg='green')} Switched to {click.style(pr.head_branch, bold=True)}")


@main.group(name="config")
def config_group() -> None:
    """Manage tracked repositories."""


@config_group.command("add")
@click.option("--path", "local_path", type=click.Path(file_okay=False, path_type=Path),
              default=None, help="Local checkout (default: current directory)")
@click.option("--remote", default=None, help="owner/name or GitHub URL (default: the origin remote)")
def config_add(local_path: Path | None, remote: str | None):
    """Track a repository."""
    local_path = (local_path or Path.cwd()).expanduser().resolve()
    if not remote:
        remote = GitRepo(local_path).remote_url()
        if not remote:
            raise click.ClickException(
                f"No 'origin' remote found in {tildeify(local_path)}. Pass --remote owner/name."
            )
    parsed = parse_remote_slug(remote)
    if parsed is None:
        raise click.ClickException(f"Not a GitHub repository: {remote}")

    store = ConfigStore()
    _host, owner, name = parsed
    if not store.add_repo(str(local_path), remote):
        click.echo(click.style(f"{owner}/{name} is already tracked.", fg="yellow"))
        return
    click.echo(f"{click.style('✓', fg='green')} Tracking {click.style(f'{owner}/{name}', bold=True)} "
               f"{click.style(tildeify(local_path), dim=True)}")


@config_group.command("list")
def config_list():
    """List tracked repositories."""
    repos = ConfigStore().list_repos()
    if not repos:
        click.echo("No repositories configured.")
        click.echo("Add one with: prsync config add")
        return
    width = max(len(repo.slug) for repo in repos)
    for repo in repos:
        click.echo(f"  {click.style(repo.slug.ljust(width), bold=True)}  "
                   f"{click.style(tildeify(repo.local_path), dim=True)}")


@config_group.command("remove")
@click.argument("remote", required=False)
@cancellable
def config_remove(remote: str | None):
    """Stop tracking a repository (prompts when REMOTE is omitted)."""
    store = ConfigStore()
    if not remote:
        repos = store.list_repos()
        if not repos:
            click.echo("No repositories configured.")
            return
        remote = choose(repos, lambda r: r.slug, "Repository to remove").remote

    if not store.remove_repo(remote):
        raise click.ClickException(f"Repository not tracked: {remote}")
    click.echo(f"{click.style('✓', fg='green')} Removed {remote}")


@config_group.command("path")
def config_path():
    """Print the configuration file path."""
    click.echo(str(ConfigStore().path))


@config_group.command("edit")
def config_edit():
    """Open the configuration file in $EDITOR."""
    store = ConfigStore()
    store.load()  # writes defaults on first run
    click.edit(filename=str(store.path))


@main.group(name="watch")
def watch_group() -> None:
    """Background PR check with desktop notifications."""


@watch_group.command("install")
def watch_install():
    """Install the periodic background check."""
    store = ConfigStore()
    job = get_periodic_job()
    try:
        interval = watch_ops.install(store, job)
    except (watch_ops.WatchError, SchedulerError) as e:
        raise click.ClickException(str(e))
    click.echo(f"{click.style('✓', fg='green')} Watch installed ({job.name}), "
               f"checking every {format_interval(interval)}")
    click.echo(click.style(f"  {tildeify(job.location)}", dim=True))


@watch_group.command("uninstall")
def watch_uninstall():
    """Remove the periodic background check."""
    job = get_periodic_job()
    if not watch_ops.uninstall(job):
        click.echo("Watch is not installed.")
        return
    click.echo(f"{click.style('✓', fg='green')} Watch removed")


@watch_group.command("status")
def watch_status():
    """Show whether the background check is installed and running."""
    info = watch_ops.status(ConfigStore(), get_periodic_job())
    state_color = {"running": "green", "installed": "yellow"}.get(info.state)
    click.echo(f"  {'state:'.ljust(10)}{click.style(info.state, fg=state_color)}")
    click.echo(f"  {'interval:'.ljust(10)}{format_interval(info.check_interval)}")
    click.echo(f"  {'repos:'.ljust(10)}{info.repo_count}")
    click.echo(f"  {'job:'.ljust(10)}{click.style(tildeify(info.location), dim=True)}")
    click.echo(f"  {'log:'.ljust(10)}{click.style(tildeify(info.log_file), dim=True)}")
    if info.last_log_line:
        click.echo(f"  {'last:'.ljust(10)}{click.style(info.last_log_line, dim=True)}")


@watch_group.command("check")
def watch_check():
    """Run one background check now (what the scheduler invokes)."""
    store = ConfigStore()
    try:
        add_watch_log_sink(store.log_dir)
    except OSError as e:
        click.echo(f"Warning: watch log unavailable: {e}", err=True)
    try:
        client = GitHubClient()
    except Exception as e:  # noqa: BLE001
        logger.error("watch check failed error=%s", e)
        return
    watch_ops.run_check(store, client, get_notifier())
