"""
Periodic background job management for `prsync watch`.

PeriodicJob is the small install/uninstall/query interface the watch
command talks to. Adapters:
- LaunchAgentJob: macOS LaunchAgent plist + launchctl
- SystemdTimerJob: systemd user service + timer (Linux)
"""

from __future__ import annotations

import logging
import plistlib
import shlex
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from pathlib import Path

logger = logging.getLogger(__name__)

JOB_LABEL = "com.prsync.pr-watch"
UNIT_NAME = "prsync-watch"


class SchedulerError(RuntimeError):
    """The OS scheduler refused an install or uninstall."""


def watch_command() -> list[str]:
    """The command line the scheduler runs on every tick."""
    executable = shutil.which("prsync")
    if executable:
        return [executable, "watch", "check"]
    return [sys.executable, "-m", "prsync", "watch", "check"]


def _run(cmd: list[str]) -> subprocess.CompletedProcess[str]:
    try:
        return subprocess.run(cmd, text=True, capture_output=True, check=False)
    except FileNotFoundError as exc:
        return subprocess.CompletedProcess(cmd, 127, "", str(exc))


class PeriodicJob(ABC):
    """Install, remove and inspect a periodic invocation of a fixed command."""

    name: str = "periodic job"

    @property
    @abstractmethod
    def location(self) -> Path:
        """File that defines the job."""

    @abstractmethod
    def install(self, command: list[str], interval: int, log_dir: Path) -> None:
        """Install (or replace) the job and start it."""

    @abstractmethod
    def uninstall(self) -> bool:
        """Stop and remove the job. Returns False if it was not installed."""

    def is_installed(self) -> bool:
        return self.location.exists()

    @abstractmethod
    def is_running(self) -> bool:
        """Whether the OS scheduler has the job loaded."""

    def state(self) -> str:
        if self.is_running():
            return "running"
        if self.is_installed():
            return "installed"
        return "not installed"


class LaunchAgentJob(PeriodicJob):
    name = "LaunchAgent"

    def __init__(self, agents_dir: Path | None = None, label: str = JOB_LABEL):
        self.agents_dir = agents_dir or Path.home() / "Library" / "LaunchAgents"
        self.label = label

    @property
    def location(self) -> Path:
        return self.agents_dir / f"{self.label}.plist"

    def build_plist(self, command: list[str], interval: int, log_dir: Path) -> bytes:
        return plistlib.dumps({
            "Label": self.label,
            "ProgramArguments": command,
            "StartInterval": int(interval),
            "RunAtLoad": True,
            "StandardOutPath": str(log_dir / "watch.stdout.log"),
            "StandardErrorPath": str(log_dir / "watch.stderr.log"),
            "EnvironmentVariables": {
                "PATH": "/opt/homebrew/bin:/usr/local/bin:/usr/bin:/bin",
            },
        })

    def is_running(self) -> bool:
        return _run(["launchctl", "list", self.label]).returncode == 0

    def install(self, command: list[str], interval: int, log_dir: Path) -> None:
        if self.is_running():
            _run(["launchctl", "unload", str(self.location)])

        self.agents_dir.mkdir(parents=True, exist_ok=True)
        log_dir.mkdir(parents=True, exist_ok=True)
        self.location.write_bytes(self.build_plist(command, interval, log_dir))
        logger.info("launch agent written path=%s", self.location)

        proc = _run(["launchctl", "load", str(self.location)])
        if proc.returncode != 0:
            raise SchedulerError(proc.stderr.strip() or "launchctl load failed")

    def uninstall(self) -> bool:
        if not self.is_installed():
            return False
        if self.is_running():
            proc = _run(["launchctl", "unload", str(self.location)])
            if proc.returncode != 0:
                logger.warning("launchctl unload failed error=%s", proc.stderr.strip())
        self.location.unlink()
        return True


class SystemdTimerJob(PeriodicJob):
    name = "systemd timer"

    def __init__(self, unit_dir: Path | None = None, unit: str = UNIT_NAME):
        self.unit_dir = unit_dir or Path.home() / ".config" / "systemd" / "user"
        self.unit = unit

    @property
    def location(self) -> Path:
        return self.unit_dir / f"{self.unit}.timer"

    @property
    def service_path(self) -> Path:
        return self.unit_dir / f"{self.unit}.service"

    def build_service(self, command: list[str], log_dir: Path) -> str:
        log_file = log_dir / "watch.stdout.log"
        return (
            "[Unit]\n"
            "Description=prsync PR watch check\n"
            "\n"
            "[Service]\n"
            "Type=oneshot\n"
            f"ExecStart={shlex.join(command)}\n"
            f"StandardOutput=append:{log_file}\n"
            f"StandardError=append:{log_file}\n"
        )

    def build_timer(self, interval: int) -> str:
        return (
            "[Unit]\n"
            "Description=Run prsync PR watch check periodically\n"
            "\n"
            "[Timer]\n"
            "OnBootSec=1min\n"
            f"OnUnitActiveSec={int(interval)}s\n"
            f"Unit={self.unit}.service\n"
            "\n"
            "[Install]\n"
            "WantedBy=timers.target\n"
        )

    def is_running(self) -> bool:
        proc = _run(["systemctl", "--user", "is-active", "--quiet", f"{self.unit}.timer"])
        return proc.returncode == 0

    def install(self, command: list[str], interval: int, log_dir: Path) -> None:
        self.unit_dir.mkdir(parents=True, exist_ok=True)
        log_dir.mkdir(parents=True, exist_ok=True)
        self.service_path.write_text(self.build_service(command, log_dir))
        self.location.write_text(self.build_timer(interval))
        logger.info("systemd units written path=%s", self.location)

        for cmd in (
            ["systemctl", "--user", "daemon-reload"],
            ["systemctl", "--user", "enable", "--now", f"{self.unit}.timer"],
        ):
            proc = _run(cmd)
            if proc.returncode != 0:
                raise SchedulerError(proc.stderr.strip() or f"{' '.join(cmd)} failed")

    def uninstall(self) -> bool:
        if not self.is_installed():
            return False
        proc = _run(["systemctl", "--user", "disable", "--now", f"{self.unit}.timer"])
        if proc.returncode != 0:
            logger.warning("systemctl disable failed error=%s", proc.stderr.strip())
        self.location.unlink()
        self.service_path.unlink(missing_ok=True)
        _run(["systemctl", "--user", "daemon-reload"])
        return True


def get_periodic_job() -> PeriodicJob:
    """The adapter for this platform."""
    if sys.platform == "darwin":
        return LaunchAgentJob()
    return SystemdTimerJob()
