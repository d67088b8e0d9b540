"""CLI entry point for session pilot."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from session_pilot.adapters.opencode import OpenCodeClient
from session_pilot.config import DEFAULT_CONFIG_PATH, Settings, get_settings
from session_pilot.core import ItemStateStore, PlacementResolver
from session_pilot.core.errors import ConfigError
from session_pilot.use_cases import PollService

logger = logging.getLogger("session_pilot")

app = typer.Typer(help="Poll issue trackers and start OpenCode sessions for ready work.")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class State:
    config_path: Path = DEFAULT_CONFIG_PATH


state = State()


@app.callback()
def main(
    config: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to config.yaml"),
    log_level: str = typer.Option("INFO", "--log-level", envvar="SESSION_PILOT_LOG_LEVEL", help="Logging level"),
) -> None:
    """Poll issue trackers and start OpenCode sessions for ready work."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)
    state.config_path = config


def load_settings() -> Settings:
    """Load settings; a broken config is the only fatal error."""
    try:
        return get_settings(state.config_path)
    except ConfigError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)


def open_store(settings: Settings) -> ItemStateStore:
    return ItemStateStore(settings.paths.state_file, lock=settings.polling.lock_state)


def build_service(settings: Settings) -> PollService:
    client = OpenCodeClient(
        settings.server.url,
        request_timeout=settings.server.request_timeout,
        dispatch_timeout=settings.server.dispatch_timeout,
    )
    return PollService(
        settings=settings,
        store=open_store(settings),
        dispatcher=client,
        resolver=PlacementResolver(client),
    )


@app.command()
def run() -> None:
    """Poll on the configured interval until interrupted."""
    settings = load_settings()
    service = build_service(settings)
    logger.info(
        "Polling %d sources every %ss (server %s)",
        len(settings.sources),
        settings.polling.interval_seconds,
        settings.server.url,
    )
    try:
        asyncio.run(service.run_forever())
    except KeyboardInterrupt:
        logger.info("Stopped")


@app.command("poll-once")
def poll_once(
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be started without doing it"),
) -> None:
    """Run a single poll cycle."""
    settings = load_settings()
    results = asyncio.run(build_service(settings).poll_once(dry_run=dry_run))

    if not results:
        typer.echo("No items to start")
        return

    for result in results:
        if result.dry_run:
            typer.echo(f"[dry-run] {result.item_id} -> {result.directory}")
        elif result.outcome is not None and result.error is None:
            note = f" (warning: {result.warning})" if result.warning else ""
            typer.echo(f"{result.outcome.value}: {result.item_id} -> {result.session_id or '?'}{note}")
        else:
            typer.echo(f"failed: {result.item_id}: {result.error}")


@app.command()
def status() -> None:
    """Show processed items and the dedup index."""
    store = open_store(load_settings())
    stats = store.get_stats()

    typer.echo(f"State file: {store.state_file}")
    typer.echo(f"Processed items: {stats['total_processed']}")
    for source, count in stats["by_source"].items():
        typer.echo(f"  • {source or '(none)'}: {count}")
    typer.echo(f"Dedup keys: {stats['dedup_keys']}")

    for item_id, record in store.records():
        flags = " [unseen]" if record.was_unseen else ""
        typer.echo(f"\n{item_id}{flags}")
        typer.echo(f"  processed: {record.processed_at.isoformat()}")
        if record.session_id:
            typer.echo(f"  session:   {record.session_id}")
        if record.directory:
            typer.echo(f"  directory: {record.directory}")
        for key in record.dedup_keys:
            typer.echo(f"  key:       {key}")


@app.command()
def clear(
    item_id: Optional[str] = typer.Argument(None, help="Item id to forget"),
    all_items: bool = typer.Option(False, "--all", help="Forget every processed item"),
) -> None:
    """Forget processed items so they are picked up again."""
    if not item_id and not all_items:
        typer.echo("Give an item id or --all", err=True)
        raise typer.Exit(code=2)

    store = open_store(load_settings())
    if all_items:
        store.clear_all()
        typer.echo("Cleared all processed items")
    elif store.clear_processed(item_id):
        typer.echo(f"Cleared {item_id}")
    else:
        typer.echo(f"{item_id} was not processed", err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
