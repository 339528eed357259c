"""
Text rendering of PR status snapshots.

render_frame() is the single renderer behind both `prsync status` (one
frame) and `prsync live` (a frame per tick). The two differ only in the
refresh hint at the bottom.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

import click

from .aggregate import ColumnWidths, Section, compute_column_widths, visible_sections
from .classify import StatusDisplay, approval_status, build_status, group_by_status, summarize
from .config import TitleConfig
from .github import PullRequestRecord

RULE_WIDTH = 60

OSC8_SEQUENCE = re.compile(r"\x1b\]8;;[^\x1b]*\x1b\\")


@dataclass(frozen=True)
class FooterInfo:
    """Metadata shown under the PR list."""
    watch_state: str  # "running", "installed" or "not installed"
    config_path: str


def terminal_link(url: str, label: str) -> str:
    """OSC 8 hyperlink; terminals without support just show the label."""
    if not url:
        return label
    return f"\x1b]8;;{url}\x1b\\{label}\x1b]8;;\x1b\\"


def visible_width(line: str) -> int:
    """Columns a line occupies on screen, ignoring colors and links."""
    return len(click.unstyle(OSC8_SEQUENCE.sub("", line)))


def _styled(display: StatusDisplay) -> str:
    if display.color is None:
        return click.style(display.text, dim=True)
    return click.style(display.text, fg=display.color)


def _title_text(pr: PullRequestRecord, slice_start: int) -> str:
    text = pr.title.strip()
    if slice_start > 0:
        text = text[slice_start:].strip()
    return text


def format_pr_line(
    pr: PullRequestRecord,
    widths: ColumnWidths,
    title_width: int = 0,
    title_slice_start: int = 0,
) -> str:
    """One aligned PR row: number, branch, [title], build, approval."""
    number_text = f"PR#{pr.number}"
    number = terminal_link(pr.url, click.style(number_text, fg="magenta"))
    number += " " * max(0, widths.number - len(number_text))

    branch = click.style(pr.head_branch, fg="cyan")
    branch += " " * max(0, widths.branch - len(pr.head_branch))

    title = ""
    if title_width > 0:
        text = _title_text(pr, title_slice_start)
        if len(text) > title_width:
            text = text[: title_width - 1] + "…"
        title = "  " + click.style(text, fg="white") + " " * (title_width - len(text))

    build = build_status(pr)
    build_text = _styled(build) + " " * max(0, widths.build - len(build.text))

    return f"{number}  {branch}{title}  {build_text}  {_styled(approval_status(pr))}"


def format_pr_lines(
    prs: Sequence[PullRequestRecord],
    widths: ColumnWidths | None = None,
    title: TitleConfig | None = None,
    all_prs: Sequence[PullRequestRecord] | None = None,
) -> list[str]:
    """Format PR rows with aligned columns.

    Pass `widths` to align against PRs from other repositories; otherwise
    widths come from this batch alone. `all_prs` sizes the title column
    the same way.
    """
    if not prs:
        return []
    if widths is None:
        widths = compute_column_widths([Section(repo=None, pull_requests=list(prs))])

    title_width = 0
    slice_start = 0
    if title is not None and title.display:
        slice_start = title.slice_start
        title_width = min(
            title.max_chars,
            max(len(_title_text(pr, slice_start)) for pr in (all_prs or prs)),
        )

    return [format_pr_line(pr, widths, title_width, slice_start) for pr in prs]


def _section_lines(
    section: Section,
    widths: ColumnWidths,
    title: TitleConfig,
    all_prs: Sequence[PullRequestRecord],
) -> list[str]:
    lines = []
    label = section.label
    if label:
        header = click.style(label, bold=True, fg="white")
        if section.repo is not None:
            header = terminal_link(f"{section.repo.url}/pulls", header)
        lines.append(f"  {header}")
        lines.append("")

    if section.error:
        message = section.error.strip().splitlines()[0] if section.error.strip() else "Unknown error"
        lines.append(f"  {click.style('✗', fg='red')} {click.style(message, dim=True)}")
    else:
        for line in format_pr_lines(
            group_by_status(section.pull_requests), widths, title, all_prs
        ):
            lines.append(f"  {line}")
    lines.append("")
    return lines


def _footer_lines(footer: FooterInfo) -> list[str]:
    if footer.watch_state == "running":
        watch = click.style("✓ running", fg="green")
    elif footer.watch_state == "installed":
        watch = click.style("○ installed, not running", fg="yellow")
    else:
        watch = click.style("not installed", dim=True)

    label_width = len("config:")
    return [
        f"  {click.style('watch:'.ljust(label_width), fg='white')}  {watch}",
        f"  {click.style('config:'.ljust(label_width), fg='white')}  "
        f"{click.style(footer.config_path, dim=True)}",
    ]


def render_body(sections: Sequence[Section], title: TitleConfig) -> list[str]:
    """The section blocks and summary: the part shared by status and live."""
    lines: list[str] = []
    shown = visible_sections(sections)
    if not shown:
        lines.append(click.style("  No open PRs found", dim=True))
        lines.append("")
        return lines

    widths = compute_column_widths(shown)
    all_prs = [pr for section in shown for pr in section.pull_requests]
    for section in shown:
        lines.extend(_section_lines(section, widths, title, all_prs))

    summary = summarize(all_prs)
    total = f"{summary.total} open PR{'' if summary.total == 1 else 's'}"
    if summary.needs_rebase:
        verb = "needs" if summary.needs_rebase == 1 else "need"
        state = click.style(f"{summary.needs_rebase} {verb} rebase", fg="yellow")
    else:
        state = click.style("all up to date", fg="green")
    lines.append(f"  {total} {click.style('·', dim=True)} {state}")
    lines.append("")
    return lines


def render_frame(
    sections: Sequence[Section],
    title: TitleConfig,
    footer: FooterInfo,
    live_interval: int | None = None,
    now: datetime | None = None,
) -> str:
    """Render one full frame. `live_interval` adds the refresh hint."""
    now = now or datetime.now()
    lines = [
        "",
        f"{click.style('📊 PR Status', bold=True)} "
        f"{click.style('· refreshed ' + now.strftime('%H:%M:%S'), dim=True)}",
        "",
    ]
    lines.extend(render_body(sections, title))
    lines.append(click.style("─" * RULE_WIDTH, dim=True))
    lines.append("")
    lines.extend(_footer_lines(footer))
    lines.append("")
    if live_interval is not None:
        lines.append(click.style(
            f"  Refreshing every {live_interval}s · Press Ctrl+C to exit", dim=True
        ))
        lines.append("")
    return "\n".join(lines)


def render_error(exc: BaseException) -> str:
    """Inline error block shown in place of a frame."""
    message = str(exc).strip() or type(exc).__name__
    return f"\n{click.style('Error:', fg='red')} {message}\n"
