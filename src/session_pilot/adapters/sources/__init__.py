"""Source adapters for fetching items."""

from session_pilot.adapters.sources.command_source import CommandSource
from session_pilot.adapters.sources.github_source import GitHubSource
from session_pilot.config import Settings, SourceConfig
from session_pilot.core import ItemSource
from session_pilot.core.errors import SourceConfigError


def build_item_source(source: SourceConfig, settings: Settings) -> ItemSource:
    """Pick the adapter bound to a source's ``tool``.

    Raises:
        SourceConfigError: if the source names no usable tool
    """
    mappings = settings.mappings(source)
    if isinstance(source.tool.get("github"), dict):
        return GitHubSource(
            token=settings.github_token,
            mappings=mappings,
            timeout=settings.polling.fetch_timeout,
        )
    if source.tool.get("command"):
        return CommandSource(timeout=settings.polling.fetch_timeout, mappings=mappings)
    raise SourceConfigError(f"Source '{source.name}' has no tool configured (expected 'command' or 'github')")


__all__ = ["CommandSource", "GitHubSource", "build_item_source"]
