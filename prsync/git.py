"""
Local git working-copy operations for Prsync.

Every operation shells out to `git` synchronously in the repository
directory. Failures raise GitError; a rebase that stops on conflicts raises
RebaseConflictError so callers can abort it.

Run as `python -m prsync.git <todo-file>` this module acts as a
GIT_SEQUENCE_EDITOR that squashes every pick after the first one.
"""

from __future__ import annotations

import logging
import os
import re
import shlex
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)

DEFAULT_REMOTE = "origin"


@dataclass
class GitError(RuntimeError):
    cmd: list[str]
    exit_code: int
    stdout: str
    stderr: str

    def __str__(self) -> str:
        detail = self.stderr.strip() or self.stdout.strip()
        message = f"git command failed ({self.exit_code}): {' '.join(self.cmd)}"
        if detail:
            message += f"\n{detail}"
        return message


class RebaseConflictError(GitError):
    """A rebase stopped on conflicts and is still in progress."""


class RebaseStoppedError(RebaseConflictError):
    """git exited cleanly but left the rebase in progress (an `edit` or `break` stop)."""


def parse_remote_slug(remote_url: str) -> tuple[str, str, str] | None:
    """Split a remote into (host, owner, name).

    Accepts https URLs, scp-style ssh remotes and bare "owner/name".
    """
    remote_url = remote_url.strip()
    if not remote_url:
        return None

    if "://" in remote_url:
        parsed = urlsplit(remote_url)
        host = parsed.hostname or ""
        path = parsed.path
    else:
        match = re.match(r"^(?:[^@/]+@)?([^:/]+):(.+)$", remote_url)
        if match:
            host = match.group(1)
            path = "/" + match.group(2)
        elif re.match(r"^[\w.-]+/[\w.-]+$", remote_url):
            host = "github.com"
            path = "/" + remote_url
        else:
            return None

    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        return None
    owner = parts[-2]
    name = parts[-1]
    if name.endswith(".git"):
        name = name[:-4]
    if not host or not owner or not name:
        return None
    return host, owner, name


def squash_todo(text: str) -> str:
    """Rewrite a rebase todo list so every pick after the first is a squash."""
    lines = []
    seen_pick = False
    for line in text.splitlines():
        stripped = line.lstrip()
        if stripped.startswith("pick ") or stripped.startswith("p "):
            if seen_pick:
                _, rest = stripped.split(" ", 1)
                line = f"squash {rest}"
            seen_pick = True
        lines.append(line)
    return "\n".join(lines) + "\n"


def squash_sequence_editor() -> str:
    """Command line git runs to edit the todo list during a squash rebase."""
    return f"{shlex.quote(sys.executable)} -m prsync.git"


class GitRepo:
    """Synchronous git operations on one working copy."""

    def __init__(self, path: Path | str | None = None, remote: str = DEFAULT_REMOTE):
        self.path = Path(path) if path else Path.cwd()
        self.remote = remote

    def _run(
        self,
        args: list[str],
        *,
        env: dict[str, str] | None = None,
        interactive: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        cmd = ["git", *args]
        logger.debug("git cwd=%s cmd=%s", self.path, " ".join(cmd))
        run_env = {**os.environ, **env} if env else None
        if interactive:
            # Hand the terminal to git (and the user's editor)
            proc = subprocess.run(cmd, cwd=self.path, env=run_env, text=True, check=False)
            return subprocess.CompletedProcess(cmd, proc.returncode, "", "")
        return subprocess.run(
            cmd,
            cwd=self.path,
            env=run_env,
            text=True,
            capture_output=True,
            check=False,
        )

    def _check(self, args: list[str], **kwargs) -> str:
        proc = self._run(args, **kwargs)
        if proc.returncode != 0:
            raise GitError(
                cmd=["git", *args],
                exit_code=proc.returncode,
                stdout=proc.stdout or "",
                stderr=proc.stderr or "",
            )
        return proc.stdout or ""

    def current_branch(self) -> str:
        return self._check(["rev-parse", "--abbrev-ref", "HEAD"]).strip()

    def has_uncommitted_changes(self) -> bool:
        return bool(self._check(["status", "--porcelain"]).strip())

    def remote_url(self) -> str | None:
        proc = self._run(["remote", "get-url", self.remote])
        if proc.returncode != 0:
            return None
        return proc.stdout.strip() or None

    def fetch(self) -> None:
        self._check(["fetch", self.remote])

    def checkout(self, branch: str) -> None:
        self._check(["checkout", branch])

    def ahead_count(self, ref: str) -> int:
        """Number of commits on HEAD that are not on `ref`."""
        out = self._check(["rev-list", "--count", f"{ref}..HEAD"]).strip()
        return int(out or 0)

    def is_rebase_in_progress(self) -> bool:
        for name in ("rebase-merge", "rebase-apply"):
            out = self._run(["rev-parse", "--git-path", name]).stdout.strip()
            if out and (self.path / out).exists():
                return True
        return False

    def rebase(self, onto: str, *, interactive: bool = False, squash: bool = False) -> None:
        """Rebase HEAD onto `onto`.

        `squash` runs a non-interactive `rebase -i` that folds every commit
        after the first into it. Raises RebaseConflictError when the rebase
        stops with conflicts, and RebaseStoppedError when git returns with the
        rebase still in progress.
        """
        args = ["rebase"]
        env = None
        if interactive or squash:
            args.append("-i")
        if squash:
            env = {
                "GIT_SEQUENCE_EDITOR": squash_sequence_editor(),
                "GIT_EDITOR": "true",
            }
        args.append(onto)

        proc = self._run(args, env=env, interactive=interactive)
        if proc.returncode == 0:
            if not self.is_rebase_in_progress():
                return
            raise RebaseStoppedError(
                cmd=["git", *args],
                exit_code=0,
                stdout=proc.stdout or "",
                stderr="rebase stopped before completion",
            )
        error_cls = RebaseConflictError if self.is_rebase_in_progress() else GitError
        raise error_cls(
            cmd=["git", *args],
            exit_code=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )

    def abort_rebase(self) -> None:
        self._check(["rebase", "--abort"])

    def push_force_with_lease(self, branch: str) -> None:
        self._check(["push", "--force-with-lease", self.remote, branch])


def _main(argv: list[str]) -> int:
    if len(argv) != 1:
        print("usage: python -m prsync.git <rebase-todo-file>", file=sys.stderr)
        return 2
    todo = Path(argv[0])
    todo.write_text(squash_todo(todo.read_text()))
    return 0


if __name__ == "__main__":
    raise SystemExit(_main(sys.argv[1:]))
