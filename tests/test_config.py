"""Tests for configuration loading."""

from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

import pytest

from session_pilot.config import PRESETS, Settings, SourceConfig, get_settings, load_config
from session_pilot.core.errors import ConfigError

CONFIG = """
polling:
  interval_seconds: 60
  lock_state: true
server:
  url: http://localhost:5000
paths:
  state_file: ~/pilot/state.yaml
tools:
  github:
    reprocess_on: [state, updated_at]
    mappings:
      repository_full_name: repository.nameWithOwner
repos:
  org/app:
    path: ~/code/app
    prompt: review
    agent: build
    readiness:
      labels:
        exclude: [wip]
    session:
      name: "{title}"
sources:
  - name: my-issues
    tool:
      command: [gh, search, issues, --json, "number,title,repository"]
    item:
      id: "{repository.nameWithOwner}#{number}"
    repo: "{repository}"
    worktree: new
    mappings:
      identifier: "body:/([A-Z]+-\\\\d+)/"
    readiness:
      labels:
        required: [agent]
    session:
      reuse: false
"""


def write_config(tmpdir: str, text: str) -> Path:
    path = Path(tmpdir) / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_without_file() -> None:
    """A missing config file yields defaults."""
    with TemporaryDirectory() as tmpdir:
        with patch.dict("os.environ", {}, clear=True):
            settings = get_settings(Path(tmpdir) / "missing.yaml")

    assert settings.polling.interval_seconds == 300
    assert settings.polling.startup_delay_seconds == 10
    assert settings.polling.cleanup_ttl_days == 30
    assert settings.server.dispatch_timeout == 10
    assert settings.sources == []
    assert settings.github_token is None


def test_load_full_config() -> None:
    with TemporaryDirectory() as tmpdir:
        with patch.dict("os.environ", {"GITHUB_TOKEN": "tok"}, clear=True):
            settings = get_settings(write_config(tmpdir, CONFIG))

    assert settings.github_token == "tok"
    assert settings.polling.interval_seconds == 60
    assert settings.polling.lock_state is True
    assert settings.server.url == "http://localhost:5000"
    assert settings.paths.state_file.parts[-2:] == ("pilot", "state.yaml")
    assert "~" not in str(settings.paths.state_file)
    assert settings.repos["org/app"].path == "~/code/app"

    source = settings.sources[0]
    assert source.name == "my-issues"
    assert source.item_id == "{repository.nameWithOwner}#{number}"
    assert source.provider == "github"


def test_action_config_layers_source_over_repo() -> None:
    """Repo settings form the base; source settings win."""
    with TemporaryDirectory() as tmpdir:
        with patch.dict("os.environ", {}, clear=True):
            settings = get_settings(write_config(tmpdir, CONFIG))

    source = settings.sources[0]
    action = settings.action_config(source, "org/app")

    assert action.base_directory == "~/code/app"
    assert action.prompt == "review"
    assert action.agent == "build"
    assert action.worktree == "new"
    assert action.session.name == "{title}"
    assert action.session.reuse is False
    assert action.readiness == {"labels": {"required": ["agent"]}}


def test_action_config_without_repo() -> None:
    action = Settings().action_config(SourceConfig(name="s", working_dir="/work"), None)

    assert action.base_directory == "/work"
    assert action.prompt == "default"
    assert action.session.reuse is True


def test_provider_level_settings() -> None:
    """reprocess_on and mappings fall back to the tool provider."""
    with TemporaryDirectory() as tmpdir:
        with patch.dict("os.environ", {}, clear=True):
            settings = get_settings(write_config(tmpdir, CONFIG))

    source = settings.sources[0]
    assert settings.reprocess_on(source) == ["state", "updated_at"]
    assert settings.mappings(source) == {
        "repository_full_name": "repository.nameWithOwner",
        "identifier": "body:/([A-Z]+-\\d+)/",
    }

    source.reprocess_on = ["attention"]
    assert settings.reprocess_on(source) == ["attention"]


def test_environment_overrides() -> None:
    with TemporaryDirectory() as tmpdir:
        env = {"SESSION_PILOT_SERVER_URL": "http://remote:4096", "SESSION_PILOT_STATE_FILE": "/tmp/s.yaml"}
        with patch.dict("os.environ", env, clear=True):
            settings = get_settings(write_config(tmpdir, CONFIG))

    assert settings.server.url == "http://remote:4096"
    assert settings.paths.state_file == Path("/tmp/s.yaml")


def test_invalid_yaml_raises() -> None:
    with TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError):
            load_config(write_config(tmpdir, "sources: [unclosed"))


def test_non_mapping_config_raises() -> None:
    with TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError, match="mapping"):
            load_config(write_config(tmpdir, "- just\n- a list\n"))


def test_malformed_source_raises() -> None:
    """Malformed sections are reported as config errors."""
    with TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError):
            get_settings(write_config(tmpdir, "sources: [just-a-string]\n"))


def test_preset_expands_to_full_source() -> None:
    """A preset supplies tool, item id, repo template and naming."""
    text = "sources:\n  - preset: github/my-issues\n    prompt: worktree\n"
    with TemporaryDirectory() as tmpdir:
        with patch.dict("os.environ", {}, clear=True):
            settings = get_settings(write_config(tmpdir, text))

    source = settings.sources[0]
    assert source.name == "github-my-issues"
    assert source.tool["command"][:3] == ["gh", "search", "issues"]
    assert "--assignee=@me" in source.tool["command"]
    assert source.item_id == "{url}"
    assert source.repo == "{repository}"
    assert source.session == {"name": "{title}"}
    assert source.worktree_name == "issue-{number}"
    assert source.prompt == "worktree"
    assert source.provider == "github"


def test_attention_preset_enables_enrichment() -> None:
    source = SourceConfig.from_dict({"preset": "github/my-prs-attention"})

    assert source.tool == {"github": {"query": "is:pr is:open author:@me"}}
    assert source.filter_bot_comments is True
    assert source.enrich_mergeable is True
    assert source.readiness == {"require_attention": True}
    assert source.session["name"] == "{attention_label}: {title}"


def test_user_values_override_preset() -> None:
    source = SourceConfig.from_dict(
        {"preset": "github/review-requests", "name": "reviews", "agent": "plan", "tool": {"command": ["my-gh"]}}
    )

    assert source.name == "reviews"
    assert source.agent == "plan"
    assert source.tool == {"command": ["my-gh"]}
    assert source.session == {"name": "Review: {title}"}


def test_preset_names_are_unique() -> None:
    """Source names key the processed state, so presets must not collide."""
    names = [SourceConfig.from_dict({"preset": key}).name for key in PRESETS]
    assert len(set(names)) == len(names)


def test_presets_are_not_shared_between_sources() -> None:
    first = SourceConfig.from_dict({"preset": "github/my-issues"})
    first.tool["command"].append("--limit=5")

    second = SourceConfig.from_dict({"preset": "github/my-issues"})
    assert "--limit=5" not in second.tool["command"]


def test_unknown_preset_raises() -> None:
    with TemporaryDirectory() as tmpdir:
        with pytest.raises(ConfigError, match="Unknown preset: unknown/preset"):
            get_settings(write_config(tmpdir, "sources:\n  - preset: unknown/preset\n"))


def test_github_shorthand() -> None:
    """``github: <query>`` expands into a GitHub search tool."""
    source = SourceConfig.from_dict({"name": "mine", "github": "is:issue assignee:@me state:open"})

    assert source.name == "mine"
    assert source.tool == {"github": {"query": "is:issue assignee:@me state:open"}}
    assert source.provider == "github"


def test_dedup_section() -> None:
    with TemporaryDirectory() as tmpdir:
        with patch.dict("os.environ", {}, clear=True):
            settings = get_settings(write_config(tmpdir, "dedup:\n  tracker_keys: [ENG, OPS]\n"))

    assert settings.dedup.tracker_keys == ["ENG", "OPS"]
    assert Settings().dedup.tracker_keys is None
