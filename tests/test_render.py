from __future__ import annotations

import asyncio
import re
from datetime import datetime

import click

from fakes import FakeGateway, make_pr
from prsync.aggregate import Section, fetch_sections
from prsync.config import RepoTarget, TitleConfig
from prsync.github import FetchError, MergeState
from prsync.render import FooterInfo, format_pr_lines, render_error, render_frame

NOW = datetime(2024, 5, 1, 9, 30, 15)
OSC8_LINK = re.compile(r"\x1b\]8;;[^\x1b]*\x1b\\")
FOOTER = FooterInfo(watch_state="not installed", config_path="~/.config/prsync/config.json")


def _plain(text: str) -> str:
    return click.unstyle(OSC8_LINK.sub("", text))


def _two_repo_sections():
    gateway = FakeGateway(
        prs={"acme/a": [
            make_pr(1, branch="clean-branch", merge_state=MergeState.CLEAN),
            make_pr(2, branch="stale-branch", merge_state=MergeState.BEHIND),
        ]},
        errors={"acme/b": FetchError("HTTP 502 from GitHub\nretry later")},
    )
    targets = [RepoTarget("/src/a", "acme/a"), RepoTarget("/src/b", "acme/b")]
    return asyncio.run(fetch_sections(targets, gateway))


def test_frame_groups_rows_and_shows_errors_inline():
    frame = _plain(render_frame(_two_repo_sections(), TitleConfig(), FOOTER, now=NOW))
    lines = frame.splitlines()

    assert "refreshed 09:30:15" in frame
    stale_row = next(i for i, line in enumerate(lines) if "stale-branch" in line)
    clean_row = next(i for i, line in enumerate(lines) if "clean-branch" in line)
    assert stale_row < clean_row
    assert "acme/b" in frame
    assert "✗ HTTP 502 from GitHub" in frame
    assert "retry later" not in frame
    assert "2 open PRs · 1 needs rebase" in frame


def test_snapshot_frame_differs_from_live_frame_only_by_hint():
    sections = _two_repo_sections()

    snapshot = render_frame(sections, TitleConfig(), FOOTER, now=NOW)
    live = render_frame(sections, TitleConfig(), FOOTER, live_interval=10, now=NOW)

    assert "Refreshing every" not in snapshot
    assert "Refreshing every 10s" in _plain(live)
    assert live.startswith(snapshot)


def test_render_is_idempotent():
    first = render_frame(_two_repo_sections(), TitleConfig(), FOOTER, now=NOW)
    second = render_frame(_two_repo_sections(), TitleConfig(), FOOTER, now=NOW)
    assert first == second


def test_no_prs_message():
    frame = _plain(render_frame([Section(repo=None)], TitleConfig(), FOOTER, now=NOW))
    assert "No open PRs found" in frame


def test_rows_align_across_sections():
    a = Section(repo=None, pull_requests=[make_pr(1, branch="x")], target=RepoTarget("", "acme/a"))
    b = Section(repo=None, pull_requests=[make_pr(1000, branch="much-longer")], target=RepoTarget("", "acme/b"))

    frame = _plain(render_frame([a, b], TitleConfig(), FOOTER, now=NOW))
    rows = [line for line in frame.splitlines() if "PR#" in line]

    assert len(rows) == 2
    assert rows[0].index("No CI") == rows[1].index("No CI")


def test_title_column_truncates_and_slices():
    prs = [make_pr(1, title="ABC-123 Implement the thing"), make_pr(2, title="ABC-9 Fix")]
    title = TitleConfig(display=True, max_chars=10, slice_start=8)

    lines = [_plain(line) for line in format_pr_lines(prs, title=title)]

    assert "Implement…" in lines[0]
    assert "ABC" not in lines[0]


def test_render_error():
    assert "Error:" in _plain(render_error(RuntimeError("boom")))
    assert "RuntimeError" in _plain(render_error(RuntimeError()))
