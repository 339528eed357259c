"""
Desktop notifications for `prsync watch`.

Best effort: a notifier that cannot deliver logs at debug level and
returns False instead of raising.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from typing import Protocol

logger = logging.getLogger(__name__)

APP_NAME = "prsync"


class Notifier(Protocol):
    def notify(self, title: str, body: str) -> bool: ...


def _applescript_string(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _deliver(cmd: list[str]) -> bool:
    try:
        proc = subprocess.run(cmd, text=True, capture_output=True, check=False, timeout=10)
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.debug("notification failed cmd=%s error=%s", cmd[0], exc)
        return False
    if proc.returncode != 0:
        logger.debug("notification failed cmd=%s error=%s", cmd[0], proc.stderr.strip())
        return False
    return True


class OsascriptNotifier:
    """macOS Notification Center via osascript."""

    def notify(self, title: str, body: str) -> bool:
        script = (
            f"display notification {_applescript_string(body)} "
            f"with title {_applescript_string(title)} sound name \"default\""
        )
        return _deliver(["osascript", "-e", script])


class NotifySendNotifier:
    """freedesktop notifications via notify-send."""

    def notify(self, title: str, body: str) -> bool:
        if shutil.which("notify-send") is None:
            logger.debug("notify-send not installed")
            return False
        return _deliver(["notify-send", "--app-name", APP_NAME, title, body])


def get_notifier() -> Notifier:
    if sys.platform == "darwin":
        return OsascriptNotifier()
    return NotifySendNotifier()
