"""Core domain layer."""

from session_pilot.core.entities import (
    DispatchOutcome,
    DispatchResult,
    Item,
    Placement,
    ProcessingRecord,
    ReadinessResult,
    Session,
    SessionContext,
    SessionStatus,
    Workspace,
)
from session_pilot.core.interfaces import ExecutionDispatcher, ItemSource, WorkspaceProvider
from session_pilot.core.placement import PlacementResolver, WorktreePolicy
from session_pilot.core.readiness import ReadinessPolicy, evaluate, sort_by_priority
from session_pilot.core.state_store import ItemStateStore

__all__ = [
    "Item",
    "ReadinessResult",
    "ProcessingRecord",
    "SessionContext",
    "Session",
    "SessionStatus",
    "Workspace",
    "Placement",
    "DispatchOutcome",
    "DispatchResult",
    "ItemSource",
    "WorkspaceProvider",
    "ExecutionDispatcher",
    "PlacementResolver",
    "WorktreePolicy",
    "ReadinessPolicy",
    "evaluate",
    "sort_by_priority",
    "ItemStateStore",
]
