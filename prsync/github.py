"""
GitHub API client for Prsync.

Fetches the current user's open pull requests (with merge, CI and review
state) and repository metadata.

Authentication, in order:
- GITHUB_TOKEN / GH_TOKEN environment variables (a .env file is honoured)
- `gh auth token` from the GitHub CLI, if installed
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import requests

from .git import GitRepo, parse_remote_slug

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
MAX_RETRIES = 3
RETRY_DELAY = 1.0
REQUEST_TIMEOUT = 30
MAX_PRS = 100

OPEN_PRS_QUERY = """
query($q: String!, $first: Int!) {
  search(query: $q, type: ISSUE, first: $first) {
    nodes {
      ... on PullRequest {
        number
        title
        headRefName
        baseRefName
        mergeStateStatus
        isDraft
        reviewDecision
        updatedAt
        url
        commits(last: 1) {
          nodes {
            commit {
              statusCheckRollup {
                contexts(first: 100) {
                  nodes {
                    __typename
                    ... on CheckRun { name status conclusion }
                    ... on StatusContext { context state }
                  }
                }
              }
            }
          }
        }
      }
    }
  }
}
"""


class MergeState(str, Enum):
    CLEAN = "clean"
    BEHIND = "behind"
    DIRTY = "dirty"
    BLOCKED = "blocked"
    UNSTABLE = "unstable"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "MergeState":
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.UNKNOWN


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    REVIEW_REQUIRED = "review_required"
    NONE = "none"

    @classmethod
    def parse(cls, value: str | None) -> "ReviewDecision":
        try:
            return cls((value or "").lower())
        except ValueError:
            return cls.NONE


@dataclass(frozen=True)
class CheckResult:
    """One CI check on the PR head commit."""
    name: str
    status: str  # QUEUED, IN_PROGRESS, COMPLETED, PENDING, ...
    conclusion: str = ""  # SUCCESS, FAILURE, ERROR, TIMED_OUT, ...


@dataclass(frozen=True)
class PullRequestRecord:
    """Snapshot of one open PR as of fetch time."""
    number: int
    title: str
    head_branch: str
    base_branch: str
    merge_state: MergeState
    is_draft: bool
    review_decision: ReviewDecision
    checks: tuple[CheckResult, ...] = field(default_factory=tuple)
    updated_at: str | None = None
    url: str = ""


@dataclass(frozen=True)
class RepoInfo:
    """Repository metadata."""
    name: str
    full_name: str
    url: str
    default_branch: str = "main"


class GitHubAPIError(Exception):
    """Error from GitHub API."""
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuthError(GitHubAPIError):
    """No usable credentials, or GitHub rejected them."""


class RateLimitError(GitHubAPIError):
    """Rate limit exceeded."""
    def __init__(self, reset_time: int | None = None):
        super().__init__("GitHub API rate limit exceeded", 403)
        self.reset_time = reset_time


class FetchError(GitHubAPIError):
    """A repository's PRs or metadata could not be fetched."""


def resolve_token() -> str | None:
    """Find a GitHub token in the environment or the gh CLI."""
    for name in ("GITHUB_TOKEN", "GH_TOKEN"):
        token = os.environ.get(name)
        if token:
            return token.strip()

    if shutil.which("gh") is None:
        return None
    proc = subprocess.run(
        ["gh", "auth", "token"],
        text=True,
        capture_output=True,
        check=False,
    )
    if proc.returncode != 0:
        return None
    return proc.stdout.strip() or None


def parse_check(node: dict[str, Any]) -> CheckResult | None:
    """Normalize a CheckRun or StatusContext rollup node."""
    kind = node.get("__typename")
    if kind == "CheckRun":
        return CheckResult(
            name=node.get("name") or "",
            status=(node.get("status") or "").upper(),
            conclusion=(node.get("conclusion") or "").upper(),
        )
    if kind == "StatusContext":
        state = (node.get("state") or "").upper()
        if state in {"PENDING", "EXPECTED"}:
            return CheckResult(name=node.get("context") or "", status="PENDING")
        return CheckResult(name=node.get("context") or "", status="COMPLETED", conclusion=state)
    return None


def parse_pull_request(data: dict[str, Any]) -> PullRequestRecord | None:
    """Parse a GraphQL PullRequest node. Returns None for malformed nodes."""
    number = data.get("number")
    if not isinstance(number, int) or not isinstance(data.get("headRefName"), str):
        return None

    checks: list[CheckResult] = []
    commits = (data.get("commits") or {}).get("nodes") or []
    if commits:
        rollup = ((commits[-1] or {}).get("commit") or {}).get("statusCheckRollup") or {}
        for node in (rollup.get("contexts") or {}).get("nodes") or []:
            check = parse_check(node or {})
            if check is not None:
                checks.append(check)

    return PullRequestRecord(
        number=number,
        title=data.get("title") or "",
        head_branch=data["headRefName"],
        base_branch=data.get("baseRefName") or "",
        merge_state=MergeState.parse(data.get("mergeStateStatus")),
        is_draft=bool(data.get("isDraft")),
        review_decision=ReviewDecision.parse(data.get("reviewDecision")),
        checks=tuple(checks),
        updated_at=data.get("updatedAt"),
        url=data.get("url") or "",
    )


class GitHubClient:
    """GitHub REST + GraphQL client with retry and rate limit handling."""

    def __init__(self, token: str | None = None, repo_path: str | None = None):
        self.token = token if token is not None else resolve_token()
        self.repo_path = repo_path
        self.session = requests.Session()

        if self.token:
            self.session.headers["Authorization"] = f"bearer {self.token}"

        # merge-info preview keeps mergeStateStatus available on older GHES
        self.session.headers["Accept"] = (
            "application/vnd.github.merge-info-preview+json, application/vnd.github+json"
        )
        self.session.headers["User-Agent"] = "prsync/0.1.0"

    def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> requests.Response:
        """Make an API request with retry and rate limit handling."""
        if not self.token:
            raise AuthError(
                "No GitHub credentials found. Set GITHUB_TOKEN or run: gh auth login"
            )
        url = f"{GITHUB_API_BASE}{endpoint}"

        for attempt in range(MAX_RETRIES):
            try:
                response = self.session.request(method, url, timeout=REQUEST_TIMEOUT, **kwargs)
            except requests.RequestException as e:
                if attempt < MAX_RETRIES - 1:
                    time.sleep(RETRY_DELAY * (attempt + 1))
                    continue
                raise GitHubAPIError(f"Request failed: {e}")

            if response.status_code == 401:
                raise AuthError("GitHub rejected the credentials (401). Run: gh auth login", 401)

            if response.status_code == 403:
                remaining = response.headers.get("X-RateLimit-Remaining")
                if remaining == "0":
                    reset_time = int(response.headers.get("X-RateLimit-Reset", 0))
                    raise RateLimitError(reset_time)

            if response.status_code >= 500 and attempt < MAX_RETRIES - 1:
                time.sleep(RETRY_DELAY * (attempt + 1))
                continue

            if response.status_code >= 400:
                raise GitHubAPIError(
                    f"GitHub API error: {response.status_code} - {response.text}",
                    response.status_code
                )

            return response

        raise GitHubAPIError("Max retries exceeded")

    def _graphql(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        response = self._request("POST", "/graphql", json={"query": query, "variables": variables})
        payload = response.json()
        errors = payload.get("errors")
        if errors:
            messages = "; ".join(str(err.get("message", err)) for err in errors)
            raise GitHubAPIError(f"GitHub GraphQL error: {messages}")
        return payload.get("data") or {}

    def resolve_repo(self, repo: str | None = None) -> str:
        """Return "owner/name" for `repo`, or for the current directory's origin."""
        if repo:
            parsed = parse_remote_slug(repo)
            if parsed is None:
                raise FetchError(f"Not a GitHub repository: {repo}")
            _host, owner, name = parsed
            return f"{owner}/{name}"

        remote_url = GitRepo(self.repo_path).remote_url()
        if not remote_url:
            raise FetchError("No git remote 'origin' found in the current directory")
        parsed = parse_remote_slug(remote_url)
        if parsed is None:
            raise FetchError(f"Remote is not a GitHub repository: {remote_url}")
        _host, owner, name = parsed
        return f"{owner}/{name}"

    def check_authenticated(self) -> str:
        """Verify credentials. Returns the login, raises AuthError otherwise."""
        try:
            response = self._request("GET", "/user")
        except AuthError:
            raise
        except GitHubAPIError as exc:
            raise AuthError(f"Could not reach GitHub: {exc}", exc.status_code) from exc
        return response.json().get("login", "")

    def list_open_pull_requests(self, repo: str | None = None) -> list[PullRequestRecord]:
        """List the current user's open PRs (drafts included) in `repo`."""
        slug = self.resolve_repo(repo)
        query = f"is:pr is:open author:@me repo:{slug} sort:updated-desc"
        data = self._graphql(OPEN_PRS_QUERY, {"q": query, "first": MAX_PRS})

        prs = []
        for node in (data.get("search") or {}).get("nodes") or []:
            pr = parse_pull_request(node or {})
            if pr is not None:
                prs.append(pr)
        logger.debug("fetched open prs repo=%s count=%s", slug, len(prs))
        return prs

    def get_repository(self, repo: str | None = None) -> RepoInfo:
        """Get name, full name, URL and default branch of `repo`."""
        slug = self.resolve_repo(repo)
        data = self._request("GET", f"/repos/{slug}").json()
        if not data.get("name") or not data.get("full_name") or not data.get("html_url"):
            raise FetchError(f"Failed to fetch repository info for {slug}")
        return RepoInfo(
            name=data["name"],
            full_name=data["full_name"],
            url=data["html_url"],
            default_branch=data.get("default_branch") or "main",
        )

    def get_default_branch(self, repo: str | None = None) -> str:
        return self.get_repository(repo).default_branch
