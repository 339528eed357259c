from __future__ import annotations

from unittest.mock import patch

import asyncio

import click

from fakes import FakeGateway, make_pr
from prsync.config import ConfigStore
from prsync.github import FetchError, MergeState
from prsync.live import FrameWriter, LiveDisplay
from prsync.render import terminal_link


def _store(tmp_path, *slugs):
    store = ConfigStore(tmp_path / "config.json")
    for slug in slugs:
        store.add_repo(f"/src/{slug}", slug)
    return store


def _strip_clock(text):
    return [line for line in click.unstyle(text).splitlines() if "refreshed" not in line]


def test_snapshot_has_no_refresh_hint(tmp_path):
    gateway = FakeGateway(prs={"acme/a": [make_pr(1, merge_state=MergeState.BEHIND)]})
    display = LiveDisplay(_store(tmp_path, "acme/a"), gateway)

    frame = click.unstyle(display.snapshot())

    assert "acme/a" in frame
    assert "1 open PR · 1 needs rebase" in frame
    assert "Refreshing every" not in frame


def test_snapshot_is_stable_between_runs(tmp_path):
    gateway = FakeGateway(prs={"acme/a": [make_pr(1), make_pr(2, merge_state=MergeState.DIRTY)]})
    display = LiveDisplay(_store(tmp_path, "acme/a"), gateway)

    assert _strip_clock(display.snapshot()) == _strip_clock(display.snapshot())


def test_snapshot_without_config_uses_current_directory(tmp_path):
    gateway = FakeGateway(prs={None: [make_pr(5)], "acme/a": [make_pr(1)]})
    display = LiveDisplay(_store(tmp_path, "acme/a"), gateway, use_config=False)

    display.snapshot()

    assert gateway.pr_calls == [None]


def test_run_spins_then_overwrites_frames_in_place(tmp_path):
    written = []
    gateway = FakeGateway(prs={"acme/a": [make_pr(1)]})
    display = LiveDisplay(_store(tmp_path, "acme/a"), gateway, write=written.append)

    display.run(interval=0.01, iterations=2)

    output = "".join(written)
    assert "| Fetching PR status…" in output
    frames = [i for i, chunk in enumerate(written) if "PR Status" in chunk]
    assert len(frames) == 2
    assert "Refreshing every 0.01s" in click.unstyle(written[frames[0]])
    # The second frame is drawn over the first one
    redraw = written[frames[1] - 1]
    assert redraw.startswith("\x1b[") and redraw.endswith("\x1b[J")


def test_run_renders_tick_errors_and_keeps_going(tmp_path):
    written = []
    gateway = FakeGateway(errors={None: FetchError("No git remote 'origin' found")})
    display = LiveDisplay(_store(tmp_path), gateway, write=written.append)

    display.run(interval=0.01, iterations=2)

    errors = [chunk for chunk in written if "Error:" in click.unstyle(chunk)]
    assert len(errors) == 2
    assert "No git remote" in errors[0]


def test_run_exits_quietly_on_ctrl_c(tmp_path):
    display = LiveDisplay(_store(tmp_path), FakeGateway(), write=lambda text: None)

    with patch("prsync.live.asyncio.run", side_effect=KeyboardInterrupt):
        display.run(interval=1)


def test_frame_writer_tracks_line_count():
    written = []
    writer = FrameWriter(written.append)

    writer.show("a\nb\nc")
    writer.show("d")

    assert written[0] == "a\nb\nc\n"
    assert written[1] == "\x1b[3A\r\x1b[J"
    assert writer.lines == 1


def test_frame_writer_counts_wrapped_rows():
    written = []
    writer = FrameWriter(written.append, columns=lambda: 20)
    row = click.style("PR#12", bold=True) + " " + terminal_link("https://github.com/acme/a/pull/12", "x" * 30)

    writer.show("header\n" + row)
    writer.show("next")

    # 36 visible columns wrap onto two rows at width 20
    assert writer.rows(row) == 2
    assert written[1] == "\x1b[3A\r\x1b[J"


def test_frame_writer_exact_width_line_is_one_row():
    writer = FrameWriter(lambda text: None, columns=lambda: 10)
    assert writer.rows("x" * 10) == 1
    assert writer.rows("x" * 11) == 2
    assert writer.rows("") == 1


def test_run_keeps_fixed_cadence_despite_slow_fetch(tmp_path):
    real_sleep = asyncio.sleep
    waits = []

    async def slow_tick(interval):
        await real_sleep(0.1)
        return "PR Status"

    async def recording_sleep(delay):
        waits.append(delay)
        await real_sleep(delay)

    display = LiveDisplay(_store(tmp_path), FakeGateway(), write=lambda text: None)
    with patch.object(display, "_tick", slow_tick), \
            patch("prsync.live.asyncio.sleep", recording_sleep):
        display.run(interval=0.3, iterations=3)

    assert len(waits) == 2
    assert all(wait < 0.25 for wait in waits)
