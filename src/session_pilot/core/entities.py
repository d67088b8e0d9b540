"""Core domain entities."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


_MISSING = object()


@dataclass
class Item:
    """A unit of potential work fetched from a tracker."""

    id: str
    title: str = ""
    body: str = ""
    labels: list[str] = field(default_factory=list)
    state: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    repository: Optional[str] = None
    number: Optional[int] = None
    identifier: Optional[str] = None
    author: Optional[str] = None
    url: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Item id cannot be empty")

    def get(self, path: str, default: Any = None) -> Any:
        """Resolve a dotted path against the envelope first, then ``extra``."""
        head, _, rest = path.partition(".")
        if head != "extra" and head in self.__dataclass_fields__:
            value: Any = getattr(self, head)
        else:
            value = self.extra.get(head, _MISSING) if head != "extra" else self.extra
            if value is _MISSING:
                return default

        for part in rest.split(".") if rest else []:
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default
        return default if value is None else value


@dataclass(frozen=True)
class ReadinessResult:
    """Outcome of readiness evaluation for one item."""

    ready: bool
    reason: Optional[str] = None
    priority: float = 0.0


@dataclass
class ProcessingRecord:
    """Durable bookkeeping entry marking an item as handled."""

    processed_at: datetime
    last_seen_at: datetime
    source: str = ""
    was_unseen: bool = False
    item_state: Optional[str] = None
    item_updated_at: Optional[datetime] = None
    directory: Optional[str] = None
    session_id: Optional[str] = None
    dedup_keys: list[str] = field(default_factory=list)
    repo_key: Optional[str] = None
    has_attention: Optional[bool] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed_at": self.processed_at.isoformat(),
            "last_seen_at": self.last_seen_at.isoformat(),
            "source": self.source,
            "was_unseen": self.was_unseen,
            "item_state": self.item_state,
            "item_updated_at": self.item_updated_at.isoformat() if self.item_updated_at else None,
            "directory": self.directory,
            "session_id": self.session_id,
            "dedup_keys": list(self.dedup_keys),
            "repo_key": self.repo_key,
            "has_attention": self.has_attention,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProcessingRecord":
        """Rebuild a record from its serialized form.

        Raises:
            KeyError, TypeError, ValueError: if the mapping is malformed
        """
        updated = data.get("item_updated_at")
        return cls(
            processed_at=datetime.fromisoformat(data["processed_at"]),
            last_seen_at=datetime.fromisoformat(data.get("last_seen_at") or data["processed_at"]),
            source=data.get("source") or "",
            was_unseen=bool(data.get("was_unseen", False)),
            item_state=data.get("item_state"),
            item_updated_at=datetime.fromisoformat(updated) if updated else None,
            directory=data.get("directory"),
            session_id=data.get("session_id"),
            dedup_keys=list(data.get("dedup_keys") or []),
            repo_key=data.get("repo_key"),
            has_attention=data.get("has_attention"),
        )


@dataclass(frozen=True)
class SessionContext:
    """Project directory plus the directory the agent actually works in.

    Both are equal unless the session runs in an isolated workspace.
    """

    project_directory: str
    working_directory: str

    def __post_init__(self) -> None:
        if not self.project_directory:
            raise ValueError("SessionContext: project_directory is required")
        if not self.working_directory:
            raise ValueError("SessionContext: working_directory is required")

    @property
    def is_worktree(self) -> bool:
        return self.project_directory != self.working_directory

    @classmethod
    def for_project(cls, directory: str) -> "SessionContext":
        return cls(directory, directory)

    @classmethod
    def for_worktree(cls, project_directory: str, worktree_directory: str) -> "SessionContext":
        return cls(project_directory, worktree_directory)


@dataclass(frozen=True)
class Workspace:
    """An isolated workspace (sandbox checkout) of a project."""

    name: str
    directory: str

    def matches(self, fragment: str) -> bool:
        return fragment in self.name or fragment in self.directory


@dataclass(frozen=True)
class Placement:
    """Where a session should run."""

    context: SessionContext
    created: bool = False
    reused: bool = False
    error: Optional[str] = None

    @property
    def directory(self) -> str:
        return self.context.working_directory


@dataclass
class Session:
    """A unit of agent execution bound to a directory."""

    id: str
    directory: str = ""
    title: str = ""
    created_at: float = 0.0
    updated_at: float = 0.0
    archived_at: Optional[float] = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None


class SessionStatusType(str, Enum):
    """Execution status reported for a session."""

    IDLE = "idle"
    BUSY = "busy"
    RETRY = "retry"


@dataclass(frozen=True)
class SessionStatus:
    type: str = SessionStatusType.IDLE.value

    @property
    def is_idle(self) -> bool:
        return self.type == SessionStatusType.IDLE.value


class DispatchOutcome(str, Enum):
    """How sure we are that the execution backend accepted a dispatch."""

    CONFIRMED = "confirmed"
    AMBIGUOUS = "ambiguous"
    FAILED = "failed"


@dataclass
class DispatchResult:
    """Result of creating a session or messaging an existing one."""

    outcome: DispatchOutcome
    session_id: Optional[str] = None
    directory: Optional[str] = None
    error: Optional[str] = None
    warning: Optional[str] = None
    reused: bool = False

    @property
    def accepted(self) -> bool:
        """True when the item must be recorded as processed."""
        return self.outcome in (DispatchOutcome.CONFIRMED, DispatchOutcome.AMBIGUOUS)
