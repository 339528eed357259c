"""
Configuration management for Prsync.

A single JSON document holds:
- repos: tracked repositories (local path + GitHub remote)
- live_interval / check_interval: polling tunables
- notify_on: merge states that trigger a watch notification
- pr_listing: display preferences for PR rows

The document is read fresh on every access and written whole. A missing
file is a first run (defaults are written out); a corrupt file falls back
to defaults.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator

from .git import parse_remote_slug

try:
    import fcntl
except ImportError:  # pragma: no cover - Windows
    fcntl = None  # type: ignore[assignment]

logger = logging.getLogger(__name__)

DEFAULT_LIVE_INTERVAL = 10
DEFAULT_CHECK_INTERVAL = 900
DEFAULT_NOTIFY_ON = ["behind", "dirty"]
DEFAULT_TITLE_MAX_CHARS = 40
DEFAULT_TITLE_SLICE_START = 0


class ConfigParseError(ValueError):
    """The persisted configuration could not be parsed."""


@dataclass
class RepoTarget:
    """A tracked repository."""

    local_path: str
    remote: str  # "owner/name" or a GitHub URL

    @property
    def slug(self) -> str:
        """Normalized "owner/name" form of the remote."""
        parsed = parse_remote_slug(self.remote)
        if parsed is None:
            return self.remote.strip()
        _host, owner, name = parsed
        return f"{owner}/{name}"


@dataclass
class TitleConfig:
    """PR title column settings."""

    display: bool = False
    max_chars: int = DEFAULT_TITLE_MAX_CHARS
    # Characters dropped from the start of every title (e.g. a ticket prefix)
    slice_start: int = DEFAULT_TITLE_SLICE_START


@dataclass
class PrsyncConfig:
    """Complete Prsync configuration."""

    repos: list[RepoTarget] = field(default_factory=list)
    live_interval: int = DEFAULT_LIVE_INTERVAL
    check_interval: int = DEFAULT_CHECK_INTERVAL
    notify_on: list[str] = field(default_factory=lambda: list(DEFAULT_NOTIFY_ON))
    title: TitleConfig = field(default_factory=TitleConfig)

    @classmethod
    def from_dict(cls, data: Any) -> "PrsyncConfig":
        """Parse a decoded JSON document, raising ConfigParseError on bad shape."""
        if not isinstance(data, dict):
            raise ConfigParseError("config root must be an object")

        raw_repos = data.get("repos", [])
        if not isinstance(raw_repos, list):
            raise ConfigParseError("'repos' must be a list")

        repos = []
        for item in raw_repos:
            if not isinstance(item, dict) or not item.get("remote"):
                raise ConfigParseError(f"invalid repo entry: {item!r}")
            repos.append(RepoTarget(
                local_path=str(item.get("local_path", "")),
                remote=str(item["remote"]),
            ))

        listing = data.get("pr_listing") or {}
        title_data = (listing.get("title") or {}) if isinstance(listing, dict) else {}
        if not isinstance(title_data, dict):
            raise ConfigParseError("'pr_listing.title' must be an object")

        notify_on = data.get("notify_on", DEFAULT_NOTIFY_ON)
        if not isinstance(notify_on, list):
            raise ConfigParseError("'notify_on' must be a list")

        try:
            return cls(
                repos=repos,
                live_interval=max(1, int(data.get("live_interval", DEFAULT_LIVE_INTERVAL))),
                check_interval=max(60, int(data.get("check_interval", DEFAULT_CHECK_INTERVAL))),
                notify_on=[str(state).lower() for state in notify_on],
                title=TitleConfig(
                    display=bool(title_data.get("display", False)),
                    max_chars=max(2, int(title_data.get("max_chars", DEFAULT_TITLE_MAX_CHARS))),
                    slice_start=max(0, int(title_data.get("slice_start", DEFAULT_TITLE_SLICE_START))),
                ),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigParseError(str(exc)) from exc

    def to_dict(self) -> dict[str, Any]:
        return {
            "repos": [
                {"local_path": repo.local_path, "remote": repo.remote}
                for repo in self.repos
            ],
            "live_interval": self.live_interval,
            "check_interval": self.check_interval,
            "notify_on": list(self.notify_on),
            "pr_listing": {
                "title": {
                    "display": self.title.display,
                    "max_chars": self.title.max_chars,
                    "slice_start": self.title.slice_start,
                },
            },
        }


def default_config_path() -> Path:
    """Resolve the config file location ($PRSYNC_CONFIG, then XDG, then ~/.config)."""
    override = os.environ.get("PRSYNC_CONFIG")
    if override:
        return Path(override).expanduser().resolve()
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        base = Path(xdg_config_home).expanduser()
    else:
        base = Path.home() / ".config"
    return (base / "prsync" / "config.json").resolve()


def tildeify(path: Path | str) -> str:
    """Shorten a path under the home directory to ~/..."""
    text = str(path)
    home = str(Path.home())
    if text == home or text.startswith(home + os.sep):
        return "~" + text[len(home):]
    return text


class ConfigStore:
    """Reads and writes the JSON configuration document.

    No state is cached between calls: every operation reads the file again.
    """

    def __init__(self, path: Path | None = None):
        self.path = path or default_config_path()

    @property
    def config_dir(self) -> Path:
        return self.path.parent

    @property
    def log_dir(self) -> Path:
        return self.config_dir / "logs"

    def load(self) -> PrsyncConfig:
        """Load the configuration, writing defaults on first run."""
        if not self.path.exists():
            config = PrsyncConfig()
            try:
                self.save(config)
            except OSError as exc:
                logger.warning("could not write default config path=%s error=%s", self.path, exc)
            return config

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return PrsyncConfig.from_dict(data)
        except (OSError, json.JSONDecodeError, ConfigParseError) as exc:
            logger.warning("invalid config, using defaults path=%s error=%s", self.path, exc)
            return PrsyncConfig()

    def save(self, config: PrsyncConfig) -> None:
        """Write the whole document atomically under an advisory lock."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(config.to_dict(), indent=2) + "\n"
        with self._locked():
            fd, tmp_name = tempfile.mkstemp(
                dir=self.config_dir, prefix=".config-", suffix=".json"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise

    @contextmanager
    def _locked(self) -> Iterator[None]:
        if fcntl is None:
            yield
            return
        lock_path = self.path.with_name(self.path.name + ".lock")
        with open(lock_path, "a") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def list_repos(self) -> list[RepoTarget]:
        return self.load().repos

    def add_repo(self, local_path: str, remote: str) -> bool:
        """Track a repository. Returns False if the remote is already tracked."""
        config = self.load()
        target = RepoTarget(local_path=local_path, remote=remote)
        if any(repo.slug.lower() == target.slug.lower() for repo in config.repos):
            return False
        config.repos.append(target)
        self.save(config)
        return True

    def remove_repo(self, remote: str) -> bool:
        """Stop tracking a repository. Returns False if it was not tracked."""
        config = self.load()
        wanted = RepoTarget(local_path="", remote=remote).slug.lower()
        remaining = [repo for repo in config.repos if repo.slug.lower() != wanted]
        if len(remaining) == len(config.repos):
            return False
        config.repos = remaining
        self.save(config)
        return True
