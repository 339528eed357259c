from __future__ import annotations

import json

from prsync.config import (
    DEFAULT_CHECK_INTERVAL,
    DEFAULT_LIVE_INTERVAL,
    ConfigStore,
    PrsyncConfig,
    RepoTarget,
    default_config_path,
)


def test_missing_file_writes_defaults(tmp_path):
    store = ConfigStore(tmp_path / "prsync" / "config.json")

    config = store.load()

    assert config.repos == []
    assert config.live_interval == DEFAULT_LIVE_INTERVAL
    assert config.check_interval == DEFAULT_CHECK_INTERVAL
    assert config.notify_on == ["behind", "dirty"]
    assert config.title.display is False
    assert config.title.max_chars == 40
    assert store.path.exists()
    data = json.loads(store.path.read_text())
    assert data["pr_listing"]["title"]["max_chars"] == 40


def test_corrupt_file_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    config = ConfigStore(path).load()

    assert config == PrsyncConfig()
    # The broken file is left for the user to fix
    assert path.read_text() == "{not json"


def test_invalid_shape_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"repos": "acme/app"}))

    assert ConfigStore(path).load().repos == []


def test_load_reads_values_and_clamps(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "repos": [{"local_path": "/src/app", "remote": "acme/app"}],
        "live_interval": 0,
        "check_interval": 5,
        "notify_on": ["DIRTY"],
        "pr_listing": {"title": {"display": True, "max_chars": 25, "slice_start": 4}},
    }))

    config = ConfigStore(path).load()

    assert config.repos == [RepoTarget(local_path="/src/app", remote="acme/app")]
    assert config.live_interval == 1
    assert config.check_interval == 60
    assert config.notify_on == ["dirty"]
    assert config.title.display is True
    assert config.title.max_chars == 25
    assert config.title.slice_start == 4


def test_add_repo_rejects_duplicate_remote(tmp_path):
    store = ConfigStore(tmp_path / "config.json")

    assert store.add_repo("/src/app", "https://github.com/acme/app") is True
    assert store.add_repo("/elsewhere", "git@github.com:Acme/App.git") is False
    assert store.add_repo("/src/lib", "acme/lib") is True

    assert [repo.slug for repo in store.list_repos()] == ["acme/app", "acme/lib"]


def test_remove_repo(tmp_path):
    store = ConfigStore(tmp_path / "config.json")
    store.add_repo("/src/app", "https://github.com/acme/app")

    assert store.remove_repo("acme/missing") is False
    assert store.remove_repo("acme/app") is True
    assert store.list_repos() == []


def test_store_reads_fresh_on_every_call(tmp_path):
    path = tmp_path / "config.json"
    store = ConfigStore(path)
    store.load()

    other = ConfigStore(path)
    other.add_repo("/src/app", "acme/app")

    assert [repo.slug for repo in store.list_repos()] == ["acme/app"]


def test_save_round_trips_and_leaves_no_temp_files(tmp_path):
    store = ConfigStore(tmp_path / "config.json")
    config = PrsyncConfig(repos=[RepoTarget("/src/app", "acme/app")], live_interval=30)

    store.save(config)

    assert store.load() == config
    leftovers = [p.name for p in tmp_path.iterdir() if p.name.startswith(".config-")]
    assert leftovers == []


def test_default_config_path_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("PRSYNC_CONFIG", str(tmp_path / "custom.json"))
    assert default_config_path() == (tmp_path / "custom.json").resolve()


def test_default_config_path_xdg(tmp_path, monkeypatch):
    monkeypatch.delenv("PRSYNC_CONFIG", raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
    assert default_config_path() == (tmp_path / "prsync" / "config.json").resolve()


def test_repo_target_slug_normalizes_urls():
    assert RepoTarget("", "https://github.com/acme/app.git").slug == "acme/app"
    assert RepoTarget("", "git@github.com:acme/app.git").slug == "acme/app"
    assert RepoTarget("", "acme/app").slug == "acme/app"
