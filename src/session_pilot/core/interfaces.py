"""Core interfaces for adapters."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from session_pilot.core.entities import DispatchResult, Item, Session, SessionStatus, Workspace

if TYPE_CHECKING:
    from session_pilot.config import SourceConfig


class ItemSource(ABC):
    """Interface for fetching items from a tracker."""

    @abstractmethod
    async def fetch_items(self, source: "SourceConfig") -> list[Item]:
        """Fetch the current items for a configured source.

        Raises:
            SourceFetchError: on transport or parse failure
        """
        pass


class WorkspaceProvider(ABC):
    """Interface for listing and creating isolated workspaces.

    Implementations may raise on any failure; callers treat every exception
    as "no isolated workspace available".
    """

    @abstractmethod
    async def list_workspaces(self, project_directory: str) -> list[Workspace]:
        """List isolated workspaces of a project."""
        pass

    @abstractmethod
    async def create_workspace(self, project_directory: str, name: Optional[str] = None) -> Workspace:
        """Create a new isolated workspace for a project."""
        pass


class ExecutionDispatcher(ABC):
    """Interface for the agent execution backend."""

    @abstractmethod
    async def list_sessions(self, directory: str) -> list[Session]:
        """List sessions scoped to a directory."""
        pass

    @abstractmethod
    async def get_session_statuses(self) -> dict[str, SessionStatus]:
        """Get statuses of sessions that are not idle."""
        pass

    @abstractmethod
    async def create_session(self, directory: str, prompt: str, meta: dict[str, Any]) -> DispatchResult:
        """Create a session in a directory and send it the prompt."""
        pass

    @abstractmethod
    async def send_message(
        self, session_id: str, directory: str, prompt: str, meta: dict[str, Any]
    ) -> DispatchResult:
        """Send the prompt to an existing session."""
        pass
