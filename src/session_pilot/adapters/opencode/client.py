"""OpenCode server client: worktrees, sessions and message dispatch."""

import logging
from typing import Any, Optional

import httpx

from session_pilot.core import (
    DispatchOutcome,
    DispatchResult,
    ExecutionDispatcher,
    Session,
    SessionStatus,
    Workspace,
    WorkspaceProvider,
)
from session_pilot.core.errors import BackendError

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "anthropic"


def split_model(model: str) -> tuple[str, str]:
    """Split ``provider/model`` into provider and model ids."""
    if "/" in model:
        provider, model_id = model.split("/", 1)
        return provider, model_id
    return DEFAULT_PROVIDER, model


def build_message_body(prompt: str, meta: dict[str, Any]) -> dict[str, Any]:
    body: dict[str, Any] = {"parts": [{"type": "text", "text": prompt}]}
    if meta.get("agent"):
        body["agent"] = meta["agent"]
    if meta.get("model"):
        body["providerID"], body["modelID"] = split_model(meta["model"])
    return body


def read_json(response: httpx.Response) -> Any:
    """Decode a JSON reply, raising :class:`BackendError` when it is not JSON."""
    try:
        return response.json()
    except ValueError as e:
        raise BackendError(f"Unreadable reply from {response.request.url.path}: {e}") from e


def session_from_dict(data: dict) -> Session:
    times = data.get("time") or {}
    return Session(
        id=str(data["id"]),
        directory=data.get("directory") or "",
        title=data.get("title") or "",
        created_at=float(times.get("created") or 0),
        updated_at=float(times.get("updated") or 0),
        archived_at=times.get("archived"),
    )


class OpenCodeClient(WorkspaceProvider, ExecutionDispatcher):
    """HTTP client for a running OpenCode server.

    Listing calls raise ``httpx.HTTPError`` on transport failure and
    :class:`BackendError` on an unreadable payload. Dispatch calls never
    raise; they report a :class:`DispatchOutcome` instead.
    """

    def __init__(
        self,
        base_url: str,
        request_timeout: float = 30.0,
        dispatch_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.request_timeout = request_timeout
        self.dispatch_timeout = dispatch_timeout
        self.transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=self.transport)

    async def list_workspaces(self, project_directory: str) -> list[Workspace]:
        async with self._client(self.request_timeout) as client:
            response = await client.get("/experimental/worktree", params={"directory": project_directory})
            response.raise_for_status()
            data = read_json(response)

        if not isinstance(data, list):
            return []
        return [
            Workspace(name=entry.get("name") or "", directory=entry["directory"])
            for entry in data
            if isinstance(entry, dict) and entry.get("directory")
        ]

    async def create_workspace(self, project_directory: str, name: Optional[str] = None) -> Workspace:
        body = {"name": name} if name else {}
        async with self._client(self.request_timeout) as client:
            response = await client.post(
                "/experimental/worktree", params={"directory": project_directory}, json=body
            )
            response.raise_for_status()
            data = read_json(response)

        if not isinstance(data, dict) or not data.get("directory"):
            raise BackendError(f"Worktree reply for {project_directory} has no directory: {data!r}")
        logger.debug("Created worktree %s at %s", data.get("name"), data["directory"])
        return Workspace(name=data.get("name") or "", directory=data["directory"])

    async def list_sessions(self, directory: str) -> list[Session]:
        async with self._client(self.request_timeout) as client:
            response = await client.get("/session", params={"directory": directory})
            response.raise_for_status()
            data = read_json(response)

        if not isinstance(data, list):
            return []
        return [session_from_dict(entry) for entry in data if isinstance(entry, dict) and entry.get("id")]

    async def get_session_statuses(self) -> dict[str, SessionStatus]:
        async with self._client(self.request_timeout) as client:
            response = await client.get("/session/status")
            response.raise_for_status()
            data = read_json(response)

        if not isinstance(data, dict):
            return {}
        return {
            session_id: SessionStatus(type=str(status.get("type") or "idle"))
            for session_id, status in data.items()
            if isinstance(status, dict)
        }

    async def create_session(self, directory: str, prompt: str, meta: dict[str, Any]) -> DispatchResult:
        try:
            async with self._client(self.request_timeout) as client:
                response = await client.post("/session", params={"directory": directory}, json={})
        except httpx.TimeoutException as e:
            return DispatchResult(
                DispatchOutcome.AMBIGUOUS,
                directory=directory,
                warning=f"Session creation timed out, it may still exist: {e}",
            )
        except httpx.HTTPError as e:
            return DispatchResult(DispatchOutcome.FAILED, directory=directory, error=f"Failed to create session: {e}")

        if not response.is_success:
            return DispatchResult(
                DispatchOutcome.FAILED,
                directory=directory,
                error=f"Failed to create session: {response.status_code} {response.text}",
            )

        try:
            session_id = str(response.json()["id"])
        except (KeyError, TypeError, ValueError):
            return DispatchResult(
                DispatchOutcome.FAILED, directory=directory, error=f"Unexpected session payload: {response.text[:200]}"
            )
        logger.debug("Created session %s in %s", session_id, directory)

        if meta.get("title"):
            await self._set_title(session_id, directory, meta["title"])

        return await self.send_message(session_id, directory, prompt, meta)

    async def send_message(
        self, session_id: str, directory: str, prompt: str, meta: dict[str, Any]
    ) -> DispatchResult:
        """Post the prompt and return once the server has accepted it.

        The message endpoint streams until the agent finishes, so only the
        response status is awaited, bounded by ``dispatch_timeout``.
        """
        body = build_message_body(prompt, meta)
        error_text = ""
        try:
            async with self._client(self.dispatch_timeout) as client:
                async with client.stream(
                    "POST", f"/session/{session_id}/message", params={"directory": directory}, json=body
                ) as response:
                    status_code = response.status_code
                    if not response.is_success:
                        await response.aread()
                        error_text = response.text
        except httpx.TimeoutException:
            return DispatchResult(
                DispatchOutcome.AMBIGUOUS,
                session_id=session_id,
                directory=directory,
                warning=f"No response from session {session_id} within {self.dispatch_timeout}s",
            )
        except httpx.HTTPError as e:
            return DispatchResult(
                DispatchOutcome.FAILED,
                session_id=session_id,
                directory=directory,
                error=f"Failed to send message: {e}",
            )

        if not 200 <= status_code < 300:
            return DispatchResult(
                DispatchOutcome.FAILED,
                session_id=session_id,
                directory=directory,
                error=f"Failed to send message: {status_code} {error_text}",
            )

        logger.debug("Sent message to session %s", session_id)
        return DispatchResult(DispatchOutcome.CONFIRMED, session_id=session_id, directory=directory)

    async def _set_title(self, session_id: str, directory: str, title: str) -> None:
        try:
            async with self._client(self.request_timeout) as client:
                response = await client.patch(
                    f"/session/{session_id}", params={"directory": directory}, json={"title": title}
                )
            if not response.is_success:
                logger.warning("Could not set title of session %s: %d", session_id, response.status_code)
        except httpx.HTTPError as e:
            logger.warning("Could not set title of session %s: %s", session_id, e)
