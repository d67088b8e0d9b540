"""Source that runs a command-line tool printing JSON (e.g. ``gh``)."""

import asyncio
import json
import logging
import os

from session_pilot.adapters.sources.mappings import apply_mappings, item_from_dict, transform_items
from session_pilot.config import SourceConfig
from session_pilot.core import Item, ItemSource
from session_pilot.core.errors import SourceConfigError, SourceFetchError

logger = logging.getLogger(__name__)

RESPONSE_KEYS = ("items", "issues", "nodes")


def parse_json_items(text: str, source_name: str) -> list[dict]:
    """Parse tool output as a list of raw items.

    Accepts a JSON array, an object wrapping the array under a known key,
    or a single object.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise SourceFetchError(f"Failed to parse {source_name} output: {e}") from e

    if isinstance(data, list):
        return [entry for entry in data if isinstance(entry, dict)]
    if isinstance(data, dict):
        for key in RESPONSE_KEYS:
            if isinstance(data.get(key), list):
                return [entry for entry in data[key] if isinstance(entry, dict)]
        return [data]
    return []


class CommandSource(ItemSource):
    """Run ``tool.command`` and read items from its stdout."""

    def __init__(self, timeout: float = 30.0, mappings: dict[str, str] | None = None) -> None:
        self.timeout = timeout
        self.mappings = mappings or {}

    async def fetch_items(self, source: SourceConfig) -> list[Item]:
        command = source.tool.get("command")
        if not isinstance(command, list) or not command:
            raise SourceConfigError(f"Source '{source.name}' has no tool.command")

        stdout = await self._run([os.path.expanduser(str(arg)) for arg in command], source.name)
        raw_items = parse_json_items(stdout, source.name)
        mapped = [apply_mappings(raw, self.mappings) for raw in raw_items]
        return [item_from_dict(raw) for raw in transform_items(mapped, source.item_id)]

    async def _run(self, argv: list[str], source_name: str) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SourceFetchError(f"Could not start {argv[0]} for {source_name}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise SourceFetchError(f"{argv[0]} timed out after {self.timeout}s for {source_name}") from e

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise SourceFetchError(f"{argv[0]} exited with {process.returncode} for {source_name}: {message}")

        logger.debug("%s returned %d bytes for %s", argv[0], len(stdout), source_name)
        return stdout.decode("utf-8", errors="replace")
