from __future__ import annotations

from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from fakes import FakeGateway, FakeGit, make_pr
from prsync import __version__
from prsync.cli import format_interval, main
from prsync.config import ConfigStore
from prsync.github import FetchError, MergeState


@pytest.fixture
def env(tmp_path):
    return {"PRSYNC_CONFIG": str(tmp_path / "config.json"), "GITHUB_TOKEN": "test-token"}


def _job(state="not installed"):
    job = Mock()
    job.state.return_value = state
    return job


def test_cli_help_lists_commands():
    runner = CliRunner()
    result = runner.invoke(main, ["-h"])
    assert result.exit_code == 0
    for command in ("status", "live", "rebase", "select", "config", "watch"):
        assert command in result.output


def test_cli_version():
    result = CliRunner().invoke(main, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_cli_unknown_command():
    runner = CliRunner()
    result = runner.invoke(main, ["frobnicate"])
    assert result.exit_code != 0
    assert "No such command 'frobnicate'" in result.output


def test_cli_unknown_subcommand():
    result = CliRunner().invoke(main, ["watch", "frobnicate"])
    assert result.exit_code != 0


def test_rebase_interactive_and_squash_conflict():
    result = CliRunner().invoke(main, ["rebase", "-i", "-s"])
    assert result.exit_code == 2
    assert "cannot be combined" in result.output


def test_rebase_dry_run_end_to_end(env):
    gateway = FakeGateway(
        prs={None: [make_pr(7, branch="feature/x", merge_state=MergeState.DIRTY)]},
        default_branch="main",
    )
    git = FakeGit(branch="main", dirty=True)

    with patch("prsync.cli.GitHubClient", return_value=gateway), \
            patch("prsync.cli.GitRepo", return_value=git):
        result = CliRunner().invoke(main, ["rebase", "--dry-run"], env=env)

    assert result.exit_code == 0, result.output
    assert "Would rebase feature/x onto origin/main" in result.output
    assert git.mutations == []


def test_rebase_nothing_to_rebase(env):
    gateway = FakeGateway(prs={None: [make_pr(1), make_pr(2, merge_state=MergeState.BEHIND, is_draft=True)]})
    git = FakeGit()

    with patch("prsync.cli.GitHubClient", return_value=gateway), \
            patch("prsync.cli.GitRepo", return_value=git):
        result = CliRunner().invoke(main, ["rebase", "--all"], env=env)

    assert result.exit_code == 0
    assert "Nothing to rebase" in result.output
    assert git.mutations == []


def test_rebase_refuses_dirty_working_copy(env):
    git = FakeGit(dirty=True)

    with patch("prsync.cli.GitHubClient", return_value=FakeGateway()), \
            patch("prsync.cli.GitRepo", return_value=git):
        result = CliRunner().invoke(main, ["rebase"], env=env)

    assert result.exit_code == 1
    assert "uncommitted changes" in result.output
    assert git.mutations == []


def test_rebase_all_cancelled_exits_zero(env):
    gateway = FakeGateway(prs={None: [make_pr(1, merge_state=MergeState.BEHIND)]})
    git = FakeGit()

    with patch("prsync.cli.GitHubClient", return_value=gateway), \
            patch("prsync.cli.GitRepo", return_value=git):
        result = CliRunner().invoke(main, ["rebase", "--all"], env=env, input="n\n")

    assert result.exit_code == 0
    assert "Cancelled" in result.output
    assert git.mutations == []


def test_rebase_selects_one_branch(env):
    gateway = FakeGateway(prs={None: [
        make_pr(1, branch="feature/a", merge_state=MergeState.BEHIND),
        make_pr(2, branch="feature/b", merge_state=MergeState.DIRTY),
    ]})
    git = FakeGit(branch="main")

    with patch("prsync.cli.GitHubClient", return_value=gateway), \
            patch("prsync.cli.GitRepo", return_value=git):
        result = CliRunner().invoke(main, ["rebase"], env=env, input="2\ny\n")

    assert result.exit_code == 0, result.output
    assert ("checkout", "feature/b") in git.calls
    assert ("checkout", "feature/a") not in git.calls
    assert ("push", "feature/b") in git.calls
    assert git.calls[-1] == ("checkout", "main")


def test_status_renders_current_repository(env):
    gateway = FakeGateway(prs={None: [make_pr(3, branch="feature/status")]})

    with patch("prsync.cli.GitHubClient", return_value=gateway), \
            patch("prsync.cli.get_periodic_job", return_value=_job()):
        result = CliRunner().invoke(main, ["status"], env=env)

    assert result.exit_code == 0, result.output
    assert "feature/status" in result.output
    assert "Refreshing every" not in result.output


def test_status_fetch_failure_is_fatal(env):
    gateway = FakeGateway(errors={None: FetchError("No git remote 'origin' found")})

    with patch("prsync.cli.GitHubClient", return_value=gateway), \
            patch("prsync.cli.get_periodic_job", return_value=_job()):
        result = CliRunner().invoke(main, ["status"], env=env)

    assert result.exit_code == 1
    assert "Error: No git remote 'origin' found" in result.output


def test_status_all_isolates_failures(env, tmp_path):
    store = ConfigStore(tmp_path / "config.json")
    store.add_repo("/src/a", "acme/a")
    store.add_repo("/src/b", "acme/b")
    gateway = FakeGateway(
        prs={"acme/a": [make_pr(1, branch="feature/ok")]},
        errors={"acme/b": FetchError("boom")},
    )

    with patch("prsync.cli.GitHubClient", return_value=gateway), \
            patch("prsync.cli.get_periodic_job", return_value=_job()):
        result = CliRunner().invoke(main, ["status", "--all"], env=env)

    assert result.exit_code == 0
    assert "feature/ok" in result.output
    assert "boom" in result.output


def test_config_add_list_remove(env, tmp_path):
    runner = CliRunner()

    added = runner.invoke(main, ["config", "add", "--path", str(tmp_path), "--remote", "acme/app"], env=env)
    duplicate = runner.invoke(main, ["config", "add", "--path", str(tmp_path),
                                     "--remote", "https://github.com/acme/app"], env=env)
    listed = runner.invoke(main, ["config", "list"], env=env)
    removed = runner.invoke(main, ["config", "remove", "acme/app"], env=env)
    missing = runner.invoke(main, ["config", "remove", "acme/app"], env=env)

    assert added.exit_code == 0 and "Tracking acme/app" in added.output
    assert "already tracked" in duplicate.output
    assert "acme/app" in listed.output
    assert removed.exit_code == 0
    assert missing.exit_code == 1


def test_config_add_detects_origin(env, tmp_path):
    with patch("prsync.cli.GitRepo") as git_repo:
        git_repo.return_value.remote_url.return_value = "git@github.com:acme/detected.git"
        result = CliRunner().invoke(main, ["config", "add", "--path", str(tmp_path)], env=env)

    assert result.exit_code == 0
    assert "acme/detected" in result.output


def test_config_add_rejects_non_github_remote(env, tmp_path):
    result = CliRunner().invoke(
        main, ["config", "add", "--path", str(tmp_path), "--remote", "nonsense"], env=env
    )
    assert result.exit_code == 1


def test_config_path(env):
    result = CliRunner().invoke(main, ["config", "path"], env=env)
    assert result.output.strip() == str(Path(env["PRSYNC_CONFIG"]).resolve())


def test_select_cancel(env):
    gateway = FakeGateway(prs={None: [make_pr(1, branch="feature/a", is_draft=True)]})
    git = FakeGit()

    with patch("prsync.cli.GitHubClient", return_value=gateway), \
            patch("prsync.cli.GitRepo", return_value=git):
        result = CliRunner().invoke(main, ["select"], env=env, input="0\n")

    assert result.exit_code == 0
    assert "Cancelled" in result.output
    assert git.mutations == []


def test_select_checks_out_branch(env):
    gateway = FakeGateway(prs={None: [make_pr(1, branch="feature/a"), make_pr(2, branch="feature/b")]})
    git = FakeGit()

    with patch("prsync.cli.GitHubClient", return_value=gateway), \
            patch("prsync.cli.GitRepo", return_value=git):
        result = CliRunner().invoke(main, ["select"], env=env, input="2\n")

    assert result.exit_code == 0
    assert git.mutations == [("checkout", "feature/b")]


def test_watch_install_without_repos_fails(env):
    with patch("prsync.cli.get_periodic_job", return_value=_job()):
        result = CliRunner().invoke(main, ["watch", "install"], env=env)
    assert result.exit_code == 1
    assert "No repositories configured" in result.output


def test_watch_check_always_exits_zero(env):
    with patch("prsync.cli.GitHubClient", side_effect=RuntimeError("boom")):
        result = CliRunner().invoke(main, ["watch", "check"], env=env)
    assert result.exit_code == 0


def test_format_interval():
    assert format_interval(900) == "15m"
    assert format_interval(3600) == "1h"
    assert format_interval(90) == "90s"
