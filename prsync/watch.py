"""
Background PR watch for Prsync.

`prsync watch check` runs run_check() once: aggregate every configured
repository, pick the PRs whose merge state is in `notify_on`, and post a
desktop notification. The OS scheduler (see scheduler.py) runs it every
`check_interval` seconds. run_check() never raises; failures go to the
watch log.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path

from .aggregate import PrGateway, Section, collect_stale, fetch_sections
from .classify import needs_rebase
from .config import ConfigStore
from .github import PullRequestRecord
from .logs import WATCH_LOG_NAME, last_log_line
from .notify import Notifier
from .scheduler import PeriodicJob, watch_command

logger = logging.getLogger(__name__)


class WatchError(Exception):
    """The watch job cannot be installed as requested."""


@dataclass
class WatchReport:
    """Result of one watch check."""
    sections: list[Section] = field(default_factory=list)
    # PRs whose merge state is in notify_on, with their sections
    triggered: list[tuple[Section, PullRequestRecord]] = field(default_factory=list)
    needs_rebase: int = 0
    notified: bool = False


@dataclass
class WatchStatus:
    state: str
    location: Path
    check_interval: int
    repo_count: int
    log_file: Path
    last_log_line: str | None


def notification_for(
    triggered: list[tuple[Section, PullRequestRecord]],
) -> tuple[str, str] | None:
    """Title and body for the triggered PRs, or None when there are none.

    The title says "rebase" only when every triggering PR is behind or dirty;
    other `notify_on` states (blocked, unstable, ...) read as "attention".
    """
    if not triggered:
        return None
    need = "rebase" if all(needs_rebase(pr) for _section, pr in triggered) else "attention"
    if len(triggered) == 1:
        section, pr = triggered[0]
        return f"PR needs {need}", f"{section.label or 'unknown'}: #{pr.number} {pr.title}"

    repos: list[str] = []
    for section, _pr in triggered:
        label = section.label or "unknown"
        if label not in repos:
            repos.append(label)
    return f"{len(triggered)} PRs need {need}", f"Across {', '.join(repos)}"


def run_check(store: ConfigStore, gateway: PrGateway, notifier: Notifier) -> WatchReport | None:
    """Check every configured repository once and notify. Never raises."""
    try:
        config = store.load()
        if not config.repos:
            logger.info("watch check skipped: no repositories configured")
            return None

        sections = asyncio.run(fetch_sections(config.repos, gateway))
        for section in sections:
            if section.error:
                logger.warning("fetch failed repo=%s error=%s", section.label, section.error)

        triggers = {state.lower() for state in config.notify_on}
        report = WatchReport(
            sections=sections,
            triggered=[
                (section, pr)
                for section in sections
                for pr in section.pull_requests
                if pr.merge_state.value in triggers
            ],
            needs_rebase=len(collect_stale(sections)),
        )

        message = notification_for(report.triggered)
        if message is not None:
            title, body = message
            report.notified = notifier.notify(title, body)

        logger.info(
            "watch check done repos=%s triggered=%s needs_rebase=%s notified=%s",
            len(sections), len(report.triggered), report.needs_rebase, report.notified,
        )
        return report
    except Exception as exc:  # noqa: BLE001
        logger.error("watch check failed error=%s", exc, exc_info=True)
        return None


def install(store: ConfigStore, job: PeriodicJob) -> int:
    """Install the periodic job. Returns the check interval in seconds."""
    config = store.load()
    if not config.repos:
        raise WatchError("No repositories configured. Add one first: prsync config add")
    job.install(watch_command(), config.check_interval, store.log_dir)
    logger.info("watch installed interval=%s location=%s", config.check_interval, job.location)
    return config.check_interval


def uninstall(job: PeriodicJob) -> bool:
    return job.uninstall()


def status(store: ConfigStore, job: PeriodicJob) -> WatchStatus:
    config = store.load()
    log_file = store.log_dir / WATCH_LOG_NAME
    return WatchStatus(
        state=job.state(),
        location=job.location,
        check_interval=config.check_interval,
        repo_count=len(config.repos),
        log_file=log_file,
        last_log_line=last_log_line(log_file),
    )
