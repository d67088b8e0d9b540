"""GitHub source: issues and pull requests from the search API."""

import logging
from typing import Any, Optional

import httpx

from session_pilot.adapters.sources.mappings import apply_mappings, item_from_dict, transform_items
from session_pilot.config import SourceConfig
from session_pilot.core import Item, ItemSource
from session_pilot.core.errors import SourceConfigError, SourceFetchError
from session_pilot.core.feedback import has_actionable_feedback
from session_pilot.core.readiness import CONFLICTING

logger = logging.getLogger(__name__)

DEFAULT_ID_TEMPLATE = "{repository_full_name}#{number}"
MERGEABLE = "MERGEABLE"
UNKNOWN = "UNKNOWN"


def mergeable_status(pull: dict) -> str:
    """Map REST ``mergeable``/``mergeable_state`` to a GraphQL-style status."""
    if pull.get("mergeable") is False or pull.get("mergeable_state") == "dirty":
        return CONFLICTING
    if pull.get("mergeable") is True:
        return MERGEABLE
    return UNKNOWN


def attention_label(has_conflicts: bool, has_feedback: bool) -> str:
    if has_conflicts and has_feedback:
        return "Conflicts+Feedback"
    if has_conflicts:
        return "Conflicts"
    if has_feedback:
        return "Feedback"
    return "PR"


class GitHubSource(ItemSource):
    """Search GitHub issues and pull requests.

    ``tool.github.query`` is passed to ``/search/issues`` as is, e.g.
    ``"repo:org/app is:pr is:open review-requested:@me"``.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        mappings: Optional[dict[str, str]] = None,
        max_items: int = 100,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.token = token
        self.mappings = mappings or {}
        self.max_items = max_items
        self.timeout = timeout
        self.transport = transport
        self.api_base = "https://api.github.com"

    async def fetch_items(self, source: SourceConfig) -> list[Item]:
        github = source.tool.get("github") or {}
        query = github.get("query") if isinstance(github, dict) else None
        if not query:
            raise SourceConfigError(f"Source '{source.name}' has no tool.github.query")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            raw_items = await self._search(client, query, source.name)

            for raw in raw_items:
                if source.filter_bot_comments:
                    raw["comments"] = await self._fetch_comments(client, raw)
                if source.enrich_mergeable and "pull_request" in raw:
                    status = await self._fetch_mergeable(client, raw)
                    if status is not None:
                        raw["mergeable"] = status
                if source.filter_bot_comments and source.enrich_mergeable:
                    self._compute_attention(raw)

        mapped = [apply_mappings(raw, self.mappings) for raw in raw_items]
        items = [item_from_dict(raw) for raw in transform_items(mapped, source.item_id or DEFAULT_ID_TEMPLATE)]
        logger.debug("GitHub query for %s returned %d items", source.name, len(items))
        return items

    async def _search(self, client: httpx.AsyncClient, query: str, source_name: str) -> list[dict]:
        try:
            response = await client.get(
                f"{self.api_base}/search/issues",
                headers=self._get_headers(),
                params={"q": query, "per_page": self.max_items},
            )
        except httpx.HTTPError as e:
            raise SourceFetchError(f"GitHub search failed for {source_name}: {e}") from e

        if response.status_code != 200:
            raise SourceFetchError(
                f"GitHub API error {response.status_code} for {source_name}: {response.text[:200]}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise SourceFetchError(f"GitHub returned invalid JSON for {source_name}") from e

        raw_items = []
        for raw in data.get("items") or []:
            repo = self._repo_from_url(raw.get("repository_url"))
            raw_items.append({**raw, "repository_full_name": repo} if repo else dict(raw))
        return raw_items

    async def _fetch_comments(self, client: httpx.AsyncClient, raw: dict) -> list[dict]:
        repo = raw.get("repository_full_name")
        number = raw.get("number")
        paths = [f"/repos/{repo}/issues/{number}/comments"]
        if "pull_request" in raw:
            paths += [f"/repos/{repo}/pulls/{number}/reviews", f"/repos/{repo}/pulls/{number}/comments"]

        comments: list[dict] = []
        for path in paths:
            data = await self._get_json(client, path)
            if isinstance(data, list):
                comments.extend(entry for entry in data if isinstance(entry, dict))
        return comments

    async def _fetch_mergeable(self, client: httpx.AsyncClient, raw: dict) -> Optional[str]:
        pull = await self._get_json(
            client, f"/repos/{raw.get('repository_full_name')}/pulls/{raw.get('number')}"
        )
        return mergeable_status(pull) if isinstance(pull, dict) else None

    def _compute_attention(self, raw: dict) -> None:
        author = (raw.get("user") or {}).get("login")
        has_conflicts = raw.get("mergeable") == CONFLICTING
        has_feedback = has_actionable_feedback(raw.get("comments") or [], author)
        raw["has_attention"] = has_conflicts or has_feedback
        raw["attention_label"] = attention_label(has_conflicts, has_feedback)

    async def _get_json(self, client: httpx.AsyncClient, path: str) -> Any:
        """GET an API path; enrichment failures are logged and yield None."""
        try:
            response = await client.get(f"{self.api_base}{path}", headers=self._get_headers())
        except httpx.HTTPError as e:
            logger.warning("GitHub request %s failed: %s", path, e)
            return None
        if response.status_code != 200:
            logger.warning("GitHub API error %d for %s", response.status_code, path)
            return None
        try:
            return response.json()
        except ValueError:
            logger.warning("GitHub returned invalid JSON for %s", path)
            return None

    @staticmethod
    def _repo_from_url(url: Optional[str]) -> Optional[str]:
        if not url or "/repos/" not in url:
            return None
        return url.split("/repos/", 1)[1].strip("/") or None

    def _get_headers(self) -> dict[str, str]:
        """Get headers for GitHub API requests."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        return headers
