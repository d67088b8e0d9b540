"""Configuration management."""

import copy
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from session_pilot.core.errors import ConfigError

CONFIG_DIR = Path("~/.config/session-pilot").expanduser()
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config.yaml"


@dataclass
class PollingConfig:
    """Polling loop settings."""
    interval_seconds: float = 300.0
    startup_delay_seconds: float = 10.0
    cleanup_ttl_days: float = 30.0
    missing_min_age_days: float = 1.0
    fetch_timeout: float = 30.0
    lock_state: bool = False


@dataclass
class ServerConfig:
    """Execution backend (OpenCode server) settings."""
    url: str = "http://localhost:4096"
    request_timeout: float = 30.0
    dispatch_timeout: float = 10.0


@dataclass
class DedupConfig:
    """Cross-source dedup settings.

    ``tracker_keys`` limits tracker references found in item text to these
    team prefixes; None accepts any team.
    """
    tracker_keys: Optional[list[str]] = None


@dataclass
class PathsConfig:
    """Path settings."""
    state_file: Path = CONFIG_DIR / "poll-state.yaml"
    templates_dir: Path = CONFIG_DIR / "templates"


@dataclass
class SessionOptions:
    """How sessions are named and whether idle ones are reused."""
    name: Optional[str] = None
    reuse: bool = True

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "SessionOptions":
        data = data or {}
        return cls(name=data.get("name"), reuse=data.get("reuse", True) is not False)


@dataclass
class RepoConfig:
    """Per-repository settings."""
    path: Optional[str] = None
    prompt: Optional[str] = None
    agent: Optional[str] = None
    model: Optional[str] = None
    worktree: Optional[str] = None
    worktree_name: Optional[str] = None
    prefer_existing_sandbox: Optional[bool] = None
    readiness: dict = field(default_factory=dict)
    session: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RepoConfig":
        data = data or {}
        return cls(
            path=data.get("path") or data.get("repo_path"),
            prompt=data.get("prompt"),
            agent=data.get("agent"),
            model=data.get("model"),
            worktree=data.get("worktree"),
            worktree_name=data.get("worktree_name"),
            prefer_existing_sandbox=data.get("prefer_existing_sandbox"),
            readiness=dict(data.get("readiness") or {}),
            session=dict(data.get("session") or {}),
        )


GH_SEARCH_FIELDS = "number,title,body,url,state,labels,repository,author,createdAt,updatedAt"

# Built-in sources, keyed "<provider>/<name>". User keys replace preset keys.
PRESETS: dict[str, dict[str, Any]] = {
    "github/my-issues": {
        "name": "github-my-issues",
        "tool": {
            "command": ["gh", "search", "issues", "--assignee=@me", "--state=open", "--json", GH_SEARCH_FIELDS],
        },
        "item": {"id": "{url}"},
        "repo": "{repository}",
        "session": {"name": "{title}"},
        "worktree_name": "issue-{number}",
    },
    "github/review-requests": {
        "name": "review-requests",
        "tool": {
            "command": ["gh", "search", "prs", "--review-requested=@me", "--state=open", "--json", GH_SEARCH_FIELDS],
        },
        "item": {"id": "{url}"},
        "repo": "{repository}",
        "session": {"name": "Review: {title}"},
        "worktree_name": "pr-{number}",
    },
    "github/my-prs-attention": {
        "name": "my-prs-attention",
        "tool": {"github": {"query": "is:pr is:open author:@me"}},
        "repo": "{repository}",
        "filter_bot_comments": True,
        "enrich_mergeable": True,
        "readiness": {"require_attention": True},
        "session": {"name": "{attention_label}: {title}"},
        "worktree_name": "pr-{number}",
    },
    # No tool: point tool.command at a CLI that prints Linear issues as JSON.
    "linear/my-issues": {
        "name": "linear-my-issues",
        "item": {"id": "{identifier}"},
        "session": {"name": "{title}"},
        "worktree_name": "{identifier}",
    },
}


def expand_source(data: dict) -> dict:
    """Expand the ``preset:`` key and the ``github: "<query>"`` shorthand.

    Raises:
        ConfigError: if the preset is unknown
    """
    name = data.get("preset")
    if name:
        if name not in PRESETS:
            raise ConfigError(f"Unknown preset: {name}")
        data = {**copy.deepcopy(PRESETS[name]), **data}
        del data["preset"]

    query = data.get("github")
    if isinstance(query, str):
        data = {key: value for key, value in data.items() if key != "github"}
        data["tool"] = {"github": {"query": query}}
    return data


@dataclass
class SourceConfig:
    """A polling source.

    ``tool`` binds the source to a fetcher: ``{"command": [...]}`` runs a
    CLI that prints JSON, ``{"github": {"query": ...}}`` uses the GitHub
    search API.
    """
    name: str
    tool: dict = field(default_factory=dict)
    item_id: Optional[str] = None
    mappings: dict = field(default_factory=dict)
    repo: Optional[str] = None
    repos: list[str] = field(default_factory=list)
    readiness: dict = field(default_factory=dict)
    reprocess_on: Optional[list[str]] = None
    working_dir: Optional[str] = None
    prompt: Optional[str] = None
    agent: Optional[str] = None
    model: Optional[str] = None
    worktree: Optional[str] = None
    worktree_name: Optional[str] = None
    prefer_existing_sandbox: Optional[bool] = None
    session: dict = field(default_factory=dict)
    filter_bot_comments: bool = False
    enrich_mergeable: bool = False

    @property
    def provider(self) -> Optional[str]:
        """Tool provider used to look up provider-level settings."""
        if self.tool.get("provider"):
            return self.tool["provider"]
        if "github" in self.tool:
            return "github"
        command = self.tool.get("command")
        if isinstance(command, list) and command and command[0] == "gh":
            return "github"
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "SourceConfig":
        data = expand_source(data)
        item = data.get("item") or {}
        return cls(
            name=data.get("name") or "unknown",
            tool=dict(data.get("tool") or {}),
            item_id=item.get("id"),
            mappings=dict(data.get("mappings") or {}),
            repo=data.get("repo"),
            repos=list(data.get("repos") or []),
            readiness=dict(data.get("readiness") or {}),
            reprocess_on=data.get("reprocess_on"),
            working_dir=data.get("working_dir"),
            prompt=data.get("prompt"),
            agent=data.get("agent"),
            model=data.get("model"),
            worktree=data.get("worktree"),
            worktree_name=data.get("worktree_name"),
            prefer_existing_sandbox=data.get("prefer_existing_sandbox"),
            session=dict(data.get("session") or {}),
            filter_bot_comments=bool(data.get("filter_bot_comments", False)),
            enrich_mergeable=bool(data.get("enrich_mergeable", False)),
        )


@dataclass
class ActionConfig:
    """Effective settings for dispatching one item: repo settings overlaid by the source."""
    repo_key: Optional[str] = None
    base_directory: Optional[str] = None
    prompt: str = "default"
    agent: Optional[str] = None
    model: Optional[str] = None
    worktree: Optional[str] = None
    worktree_name: Optional[str] = None
    prefer_existing_sandbox: Optional[bool] = None
    session: SessionOptions = field(default_factory=SessionOptions)
    readiness: dict = field(default_factory=dict)


@dataclass
class Settings:
    """Application settings."""

    # Secrets (from environment only)
    github_token: Optional[str] = None

    # Config sections
    polling: PollingConfig = field(default_factory=PollingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    repos: dict[str, RepoConfig] = field(default_factory=dict)
    sources: list[SourceConfig] = field(default_factory=list)
    tools: dict[str, dict] = field(default_factory=dict)

    def repo_config(self, repo_key: Optional[str]) -> RepoConfig:
        if repo_key and repo_key in self.repos:
            return self.repos[repo_key]
        return RepoConfig()

    def reprocess_on(self, source: SourceConfig) -> Optional[list[str]]:
        """Source-level ``reprocess_on`` wins over the provider-level one."""
        if source.reprocess_on is not None:
            return source.reprocess_on
        provider = self.tools.get(source.provider or "", {})
        return provider.get("reprocess_on")

    def mappings(self, source: SourceConfig) -> dict:
        provider = self.tools.get(source.provider or "", {})
        merged = dict(provider.get("mappings") or {})
        merged.update(source.mappings)
        return merged

    def action_config(self, source: SourceConfig, repo_key: Optional[str]) -> ActionConfig:
        repo = self.repo_config(repo_key)
        session = dict(repo.session)
        session.update(source.session)
        readiness = dict(repo.readiness)
        readiness.update(source.readiness)

        def pick(name: str) -> Any:
            value = getattr(source, name)
            return value if value is not None else getattr(repo, name)

        return ActionConfig(
            repo_key=repo_key,
            base_directory=source.working_dir or repo.path,
            prompt=pick("prompt") or "default",
            agent=pick("agent"),
            model=pick("model"),
            worktree=pick("worktree"),
            worktree_name=pick("worktree_name"),
            prefer_existing_sandbox=pick("prefer_existing_sandbox"),
            session=SessionOptions.from_dict(session),
            readiness=readiness,
        )


def load_config(config_path: Path = DEFAULT_CONFIG_PATH) -> dict:
    """Load configuration from YAML file.

    Raises:
        ConfigError: if the file exists but cannot be parsed
    """
    if not config_path.exists():
        return {}

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load config at {config_path}: {e}") from e

    if not isinstance(config, dict):
        raise ConfigError(f"Config at {config_path} must be a mapping")
    return config


def get_settings(config_path: Path = DEFAULT_CONFIG_PATH) -> Settings:
    """Get application settings from YAML config and environment."""
    config = load_config(config_path)

    settings = Settings(github_token=os.getenv("GITHUB_TOKEN"))

    try:
        for key, value in (config.get("polling") or {}).items():
            setattr(settings.polling, key, value)

        for key, value in (config.get("server") or {}).items():
            setattr(settings.server, key, value)

        for key, value in (config.get("paths") or {}).items():
            setattr(settings.paths, key, Path(value).expanduser())

        for key, value in (config.get("dedup") or {}).items():
            setattr(settings.dedup, key, value)

        settings.repos = {
            str(key): RepoConfig.from_dict(value) for key, value in (config.get("repos") or {}).items()
        }
        settings.sources = [SourceConfig.from_dict(s) for s in config.get("sources") or []]
        settings.tools = dict(config.get("tools") or {})
    except (AttributeError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config at {config_path}: {e}") from e

    server_url = os.getenv("SESSION_PILOT_SERVER_URL")
    if server_url:
        settings.server.url = server_url

    state_file = os.getenv("SESSION_PILOT_STATE_FILE")
    if state_file:
        settings.paths.state_file = Path(state_file).expanduser()

    return settings
