"""Business logic use cases."""

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import Optional

import httpx

from session_pilot.adapters.prompts import build_prompt, build_session_title
from session_pilot.adapters.sources import build_item_source
from session_pilot.adapters.sources.mappings import TEMPLATE_FIELD, expand_template
from session_pilot.config import ActionConfig, Settings, SourceConfig
from session_pilot.core import (
    DispatchOutcome,
    DispatchResult,
    ExecutionDispatcher,
    Item,
    ItemSource,
    ItemStateStore,
    Placement,
    PlacementResolver,
    ReadinessPolicy,
    Session,
    WorktreePolicy,
    evaluate,
    sort_by_priority,
)
from session_pilot.core.dedup import compute_dedup_keys
from session_pilot.core.errors import BackendError, SourceConfigError, SourceFetchError
from session_pilot.core.session_reuse import active_sessions, select_session

logger = logging.getLogger(__name__)

SourceFactory = Callable[[SourceConfig, Settings], ItemSource]


@dataclass
class PollResult:
    """What happened to one ready item in a poll cycle."""

    item_id: str
    source: str
    outcome: Optional[DispatchOutcome] = None
    session_id: Optional[str] = None
    directory: Optional[str] = None
    reused_session: bool = False
    dry_run: bool = False
    error: Optional[str] = None
    warning: Optional[str] = None


def resolve_repo_key(source: SourceConfig, item: Item) -> Optional[str]:
    """Pick the ``repos:`` entry for an item: ``source.repos[0]`` or the ``source.repo`` template."""
    if source.repos:
        return source.repos[0]
    if source.repo:
        resolved = expand_template(source.repo, item)
        if resolved and not TEMPLATE_FIELD.search(resolved):
            return resolved
    return None


class PollService:
    """Reconcile tracker items against processed state and start sessions.

    Sources are polled one after another and ready items are dispatched
    sequentially, so the state file only ever has one writer per process.
    """

    def __init__(
        self,
        settings: Settings,
        store: ItemStateStore,
        dispatcher: ExecutionDispatcher,
        resolver: PlacementResolver,
        source_factory: SourceFactory = build_item_source,
    ) -> None:
        self.settings = settings
        self.store = store
        self.dispatcher = dispatcher
        self.resolver = resolver
        self.source_factory = source_factory
        self._stopped = asyncio.Event()

    async def poll_once(self, dry_run: bool = False) -> list[PollResult]:
        """Run one poll cycle over every configured source."""
        if not self.settings.sources:
            logger.debug("No sources configured")
            return []

        results: list[PollResult] = []
        for source in self.settings.sources:
            results.extend(await self.poll_source(source, dry_run=dry_run))
        return results

    async def poll_source(self, source: SourceConfig, dry_run: bool = False) -> list[PollResult]:
        try:
            fetcher = self.source_factory(source, self.settings)
            items = await fetcher.fetch_items(source)
        except SourceConfigError as e:
            logger.error("Skipping source %s: %s", source.name, e)
            return []
        except SourceFetchError as e:
            logger.error("Error fetching from %s: %s", source.name, e)
            return []
        except Exception:
            logger.exception("Unexpected error fetching from %s", source.name)
            return []
        logger.debug("Fetched %d items from %s", len(items), source.name)

        actions: dict[str, ActionConfig] = {}
        evaluated = []
        for item in items:
            action = self.settings.action_config(source, resolve_repo_key(source, item))
            readiness = evaluate(item, ReadinessPolicy.from_dict(action.readiness))
            logger.debug("Item %s: ready=%s, reason=%s", item.id, readiness.ready, readiness.reason or "none")
            if readiness.ready:
                actions[item.id] = action
                evaluated.append((item, readiness))
        logger.debug("%d items ready out of %d", len(evaluated), len(items))

        reprocess_on = self.settings.reprocess_on(source)
        results = []
        for item, _ in sort_by_priority(evaluated):
            result = await self._process_item(source, item, actions[item.id], reprocess_on, dry_run)
            if result is not None:
                results.append(result)

        # An empty fetch is treated as transient; it must not flag every record.
        if items and not dry_run:
            current_ids = [item.id for item in items]
            self.store.mark_unseen(source.name, current_ids)
            removed = self.store.cleanup_missing_from_source(
                source.name, current_ids, self.settings.polling.missing_min_age_days
            )
            if removed:
                logger.debug("Cleaned up %d stale state entries for source %s", removed, source.name)

        return results

    async def _process_item(
        self,
        source: SourceConfig,
        item: Item,
        action: ActionConfig,
        reprocess_on: Optional[list[str]],
        dry_run: bool,
    ) -> Optional[PollResult]:
        dedup_keys = compute_dedup_keys(
            item, repo=item.repository, tracker_keys=self.settings.dedup.tracker_keys
        )

        existing_directory = None
        if self.store.is_processed(item.id):
            if not self.store.should_reprocess(item, reprocess_on):
                logger.debug("Skipping %s - already processed", item.id)
                return None
            record = self.store.get_record(item.id)
            existing_directory = record.directory if record else None
            if not dry_run:
                self.store.clear_processed(item.id)
            logger.info("Reprocessing %s (reopened or updated)", item.id)

        if dedup_keys:
            owner = self.store.find_owner_by_dedup_key(dedup_keys)
            if owner is not None and owner != item.id:
                logger.debug("Skipping %s - dedup key matches already-processed item %s", item.id, owner)
                return None

        if not action.base_directory:
            logger.debug("Skipping %s - no local path configured for repository", item.id)
            return None

        base_directory = os.path.expanduser(action.base_directory)
        title = build_session_title(action.session.name, item)

        if dry_run:
            logger.info("Would start session for %s in %s (title: %s)", item.id, base_directory, title)
            return PollResult(item.id, source.name, directory=base_directory, dry_run=True)

        try:
            dispatch = await self._dispatch(item, action, base_directory, existing_directory, title)
        except httpx.HTTPError as e:
            logger.error("Error starting session for %s: %s", item.id, e)
            return PollResult(item.id, source.name, outcome=DispatchOutcome.FAILED, error=str(e))
        except Exception as e:
            logger.exception("Unexpected error starting session for %s", item.id)
            return PollResult(item.id, source.name, outcome=DispatchOutcome.FAILED, error=str(e) or type(e).__name__)

        result = PollResult(
            item.id,
            source.name,
            outcome=dispatch.outcome,
            session_id=dispatch.session_id,
            directory=dispatch.directory,
            reused_session=dispatch.reused,
            error=dispatch.error,
            warning=dispatch.warning,
        )

        if not dispatch.accepted:
            logger.error("Failed to start session for %s: %s", item.id, dispatch.error or "unknown error")
            return result

        self.store.mark_processed(
            item.id,
            source=source.name,
            repo_key=action.repo_key or source.name,
            item_state=item.state,
            item_updated_at=item.updated_at,
            directory=dispatch.directory,
            session_id=dispatch.session_id,
            dedup_keys=dedup_keys,
            has_attention=item.extra.get("has_attention"),
        )

        if dispatch.outcome == DispatchOutcome.AMBIGUOUS:
            logger.warning("Started session for %s (warning: %s)", item.id, dispatch.warning)
        elif dispatch.reused:
            logger.info("Sent %s to existing session %s", item.id, dispatch.session_id)
        else:
            logger.info("Started session for %s", item.id)
        return result

    async def _dispatch(
        self,
        item: Item,
        action: ActionConfig,
        base_directory: str,
        existing_directory: Optional[str],
        title: str,
    ) -> DispatchResult:
        policy = WorktreePolicy(
            worktree=action.worktree,
            worktree_name=expand_template(action.worktree_name, item) if action.worktree_name else None,
            prefer_existing_sandbox=action.prefer_existing_sandbox,
        )
        placement = await self.resolver.resolve(base_directory, policy, existing_directory)
        if placement.error:
            logger.debug("Placement for %s degraded: %s", item.id, placement.error)

        prompt = build_prompt(action.prompt, item, self.settings.paths.templates_dir)
        meta = {"title": title, "agent": action.agent, "model": action.model}

        if self._can_reuse(action, placement):
            session = await self._find_session(placement.directory)
            if session is not None:
                logger.debug("Reusing session %s for %s", session.id, item.id)
                result = await self.dispatcher.send_message(session.id, placement.directory, prompt, meta)
                result.reused = True
                return result

        return await self.dispatcher.create_session(placement.directory, prompt, meta)

    @staticmethod
    def _can_reuse(action: ActionConfig, placement: Placement) -> bool:
        # A freshly created worktree never shares a session with another item.
        if not action.session.reuse:
            return False
        return not placement.context.is_worktree or placement.reused

    async def _find_session(self, directory: str) -> Optional[Session]:
        try:
            sessions = active_sessions(await self.dispatcher.list_sessions(directory))
            if not sessions:
                return None
            statuses = await self.dispatcher.get_session_statuses()
        except (httpx.HTTPError, BackendError) as e:
            logger.warning("Could not list sessions in %s, starting a new one: %s", directory, e)
            return None
        return select_session(sessions, statuses)

    async def run_forever(self) -> None:
        """Poll on a fixed interval until :meth:`stop` is called."""
        polling = self.settings.polling
        removed = self.store.cleanup_expired(polling.cleanup_ttl_days)
        if removed:
            logger.info("Cleaned up %d expired state entries (older than %s days)", removed, polling.cleanup_ttl_days)

        if polling.startup_delay_seconds > 0:
            logger.info("Waiting %ss for server to initialize...", polling.startup_delay_seconds)
            if await self._sleep(polling.startup_delay_seconds):
                return

        while not self._stopped.is_set():
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Error in poll cycle")
            if await self._sleep(polling.interval_seconds):
                return

    def stop(self) -> None:
        self._stopped.set()

    async def _sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; True if stopped meanwhile."""
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
