"""Decide which directory a session runs in."""

import logging
from dataclasses import dataclass
from typing import Optional

from session_pilot.core.entities import Placement, SessionContext
from session_pilot.core.interfaces import WorkspaceProvider

logger = logging.getLogger(__name__)

NEW_WORKTREE = "new"


@dataclass(frozen=True)
class WorktreePolicy:
    """Isolation settings for one dispatch.

    ``worktree`` is None (run in the project), ``"new"`` (fresh isolated
    workspace) or the name of an existing workspace.
    """

    worktree: Optional[str] = None
    worktree_name: Optional[str] = None
    prefer_existing_sandbox: Optional[bool] = None


class PlacementResolver:
    """Resolve the working directory for a session.

    Provider failures of any kind never abort the item: they fall back to
    the project directory and carry the reason in :attr:`Placement.error`.
    """

    def __init__(self, provider: Optional[WorkspaceProvider]) -> None:
        self.provider = provider

    async def resolve(
        self,
        base_directory: str,
        policy: WorktreePolicy,
        existing_directory: Optional[str] = None,
    ) -> Placement:
        if existing_directory and existing_directory != base_directory:
            logger.debug("Reusing previously recorded directory %s", existing_directory)
            return Placement(SessionContext.for_worktree(base_directory, existing_directory), reused=True)

        if not policy.worktree:
            return Placement(SessionContext.for_project(base_directory))

        if self.provider is None:
            return self._fallback(base_directory, "Cannot use worktree: no server available")

        try:
            if policy.worktree == NEW_WORKTREE:
                return await self._resolve_new(base_directory, policy)
            return await self._resolve_named(base_directory, policy.worktree)
        except Exception as e:
            return self._fallback(base_directory, f"Worktree request failed: {e or type(e).__name__}")

    async def _resolve_new(self, base_directory: str, policy: WorktreePolicy) -> Placement:
        if policy.prefer_existing_sandbox is not False and policy.worktree_name:
            for workspace in await self.provider.list_workspaces(base_directory):
                if workspace.matches(policy.worktree_name):
                    logger.debug("Reusing existing worktree %s", workspace.directory)
                    return Placement(
                        SessionContext.for_worktree(base_directory, workspace.directory), reused=True
                    )

        workspace = await self.provider.create_workspace(base_directory, policy.worktree_name)
        logger.info("Created worktree %s at %s", workspace.name, workspace.directory)
        return Placement(SessionContext.for_worktree(base_directory, workspace.directory), created=True)

    async def _resolve_named(self, base_directory: str, name: str) -> Placement:
        for workspace in await self.provider.list_workspaces(base_directory):
            if workspace.matches(name):
                return Placement(SessionContext.for_worktree(base_directory, workspace.directory), reused=True)
        return self._fallback(base_directory, f'Worktree "{name}" not found in project sandboxes')

    @staticmethod
    def _fallback(base_directory: str, error: str) -> Placement:
        logger.warning("Using %s: %s", base_directory, error)
        return Placement(SessionContext.for_project(base_directory), error=error)
