"""
Snapshot and continuous PR status display.

LiveDisplay.snapshot() backs `prsync status`; LiveDisplay.run() backs
`prsync live`. Both render through render.render_frame so one `status`
is exactly one frame of `live` without the refresh hint.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import shutil
from typing import Callable

import click

from .aggregate import PrGateway, Section, fetch_sections
from .config import ConfigStore, PrsyncConfig, tildeify
from .render import FooterInfo, render_error, render_frame, visible_width
from .scheduler import PeriodicJob

logger = logging.getLogger(__name__)

SPINNER_FRAMES = ("|", "/", "-", "\\")
SPINNER_TICK = 0.08
SPINNER_TEXT = "Fetching PR status…"

CURSOR_UP = "\x1b[{n}A"
ERASE_DOWN = "\x1b[J"
ERASE_LINE = "\x1b[K"


def _echo_raw(text: str) -> None:
    click.echo(text, nl=False)


def _terminal_columns() -> int:
    return shutil.get_terminal_size().columns


class FrameWriter:
    """Redraws a multi-line frame in place."""

    def __init__(
        self,
        write: Callable[[str], None] = _echo_raw,
        columns: Callable[[], int] = _terminal_columns,
    ):
        self.write = write
        self.columns = columns
        self.lines = 0

    def rows(self, text: str) -> int:
        """Terminal rows `text` takes up once long lines wrap."""
        width = max(1, self.columns())
        return sum(max(1, -(-visible_width(line) // width)) for line in text.split("\n"))

    def show(self, text: str) -> None:
        if self.lines:
            self.write(CURSOR_UP.format(n=self.lines) + "\r" + ERASE_DOWN)
        self.write(text + "\n")
        self.lines = self.rows(text)


class LiveDisplay:
    """Aggregates and renders PR status frames."""

    def __init__(
        self,
        store: ConfigStore,
        gateway: PrGateway,
        job: PeriodicJob | None = None,
        use_config: bool = True,
        write: Callable[[str], None] = _echo_raw,
    ):
        self.store = store
        self.gateway = gateway
        self.job = job
        # False limits the view to the repository in the current directory
        self.use_config = use_config
        self.write = write
        self.screen = FrameWriter(write)

    def _footer(self) -> FooterInfo:
        state = self.job.state() if self.job is not None else "not installed"
        return FooterInfo(watch_state=state, config_path=tildeify(self.store.path))

    async def collect(self, config: PrsyncConfig | None = None) -> list[Section]:
        config = config or self.store.load()
        targets = config.repos if self.use_config else []
        return await fetch_sections(targets, self.gateway)

    async def frame(self, live_interval: int | float | None = None) -> str:
        """Aggregate once and render a full frame."""
        config = self.store.load()
        sections, footer = await asyncio.gather(
            self.collect(config),
            asyncio.to_thread(self._footer),
        )
        return render_frame(sections, config.title, footer, live_interval=live_interval)

    def snapshot(self) -> str:
        """One aggregation and render pass, without the refresh hint."""
        return asyncio.run(self.frame())

    async def _tick(self, interval: int | float) -> str:
        try:
            return await self.frame(live_interval=interval)
        except Exception as exc:  # noqa: BLE001
            logger.info("live refresh failed error=%s", exc)
            return render_error(exc)

    async def _spin(self, done: asyncio.Event) -> None:
        for glyph in itertools.cycle(SPINNER_FRAMES):
            self.write(f"\r{glyph} {SPINNER_TEXT}")
            try:
                await asyncio.wait_for(done.wait(), SPINNER_TICK)
                break
            except asyncio.TimeoutError:
                continue
        self.write("\r" + ERASE_LINE)

    async def _run(self, interval: int | float, iterations: int | None) -> None:
        loop = asyncio.get_running_loop()
        started = loop.time()
        done = asyncio.Event()
        spinner = asyncio.create_task(self._spin(done))
        try:
            text = await self._tick(interval)
        finally:
            done.set()
            await spinner
        self.screen.show(text)

        count = 1
        while iterations is None or count < iterations:
            # Ticks start on a fixed cadence; a slow fetch shortens the next wait
            await asyncio.sleep(max(0.0, started + interval - loop.time()))
            started = loop.time()
            self.screen.show(await self._tick(interval))
            count += 1

    def run(self, interval: int | float | None = None, iterations: int | None = None) -> None:
        """Refresh forever (or `iterations` times) until Ctrl+C."""
        if interval is None:
            interval = self.store.load().live_interval
        try:
            asyncio.run(self._run(interval, iterations))
        except KeyboardInterrupt:
            self.write("\n")
