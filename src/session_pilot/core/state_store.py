"""Persistent record of processed items and the cross-source dedup index."""

import logging
import os
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Optional

import yaml

from session_pilot.core.entities import Item, ProcessingRecord
from session_pilot.core.locking import StateLock

logger = logging.getLogger(__name__)

STATE_FIELDS = frozenset({"state", "status"})
TIMESTAMP_FIELDS = frozenset({"updated_at"})
ATTENTION_FIELD = "attention"

DEFAULT_REPROCESS_ON = ("state",)

TERMINAL_STATES = frozenset(
    {"closed", "merged", "done", "completed", "canceled", "cancelled", "resolved"}
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class ItemStateStore:
    """Track processed items in a single YAML snapshot.

    Every mutating call writes the snapshot before returning, so the
    processed map and the dedup index on disk never disagree. With
    ``lock=True`` each mutation re-reads the snapshot under a
    :class:`StateLock` so several processes can share one file.
    """

    def __init__(
        self,
        state_file: Path,
        lock: bool = False,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.state_file = Path(state_file)
        self.clock = clock
        self._lock_path = self.state_file.with_name(self.state_file.name + ".lock") if lock else None
        self._records: dict[str, ProcessingRecord] = {}
        self._index: dict[str, str] = {}
        self._records, self._index = self._read()

    # Queries

    def is_processed(self, item_id: str) -> bool:
        return item_id in self._records

    def get_record(self, item_id: str) -> Optional[ProcessingRecord]:
        return self._records.get(item_id)

    def processed_ids(self) -> list[str]:
        return list(self._records)

    def records(self) -> Iterator[tuple[str, ProcessingRecord]]:
        return iter(list(self._records.items()))

    def dedup_index(self) -> dict[str, str]:
        return dict(self._index)

    def find_owner_by_dedup_key(self, keys: Iterable[str]) -> Optional[str]:
        """Return the first live item id that owns any of the keys."""
        for key in keys:
            owner = self._index.get(key)
            if owner is not None and owner in self._records:
                return owner
        return None

    def should_reprocess(self, item: Item, reprocess_on: Optional[Iterable[str]] = None) -> bool:
        """Decide whether a processed item deserves another session.

        Reappearance after being missing from its source always counts.
        Otherwise only the fields named in ``reprocess_on`` are consulted:
        ``state``/``status`` trigger on a terminal to non-terminal change,
        ``updated_at`` on a strictly newer timestamp, ``attention`` when the
        attention flag turns on.
        """
        record = self._records.get(item.id)
        if record is None:
            return False
        if record.was_unseen:
            return True

        fields = DEFAULT_REPROCESS_ON if reprocess_on is None else tuple(reprocess_on)
        for name in fields:
            if name in STATE_FIELDS and self._reopened(record.item_state, item.state):
                return True
            if name in TIMESTAMP_FIELDS and self._advanced(record.item_updated_at, item.updated_at):
                return True
            if name == ATTENTION_FIELD:
                if record.has_attention is False and item.extra.get("has_attention") is True:
                    return True
        return False

    @staticmethod
    def _reopened(previous: Optional[str], current: Optional[str]) -> bool:
        if not previous or not current:
            return False
        return previous.lower() in TERMINAL_STATES and current.lower() not in TERMINAL_STATES

    @staticmethod
    def _advanced(previous: Optional[datetime], current: Optional[datetime]) -> bool:
        if previous is None or current is None:
            return False
        return _aware(current) > _aware(previous)

    def get_stats(self) -> dict[str, Any]:
        """Get statistics about processed items."""
        by_source: dict[str, int] = {}
        for record in self._records.values():
            by_source[record.source] = by_source.get(record.source, 0) + 1
        return {
            "total_processed": len(self._records),
            "dedup_keys": len(self._index),
            "by_source": by_source,
        }

    # Mutations

    def mark_processed(self, item_id: str, **fields: Any) -> ProcessingRecord:
        """Upsert the record for an item and index its dedup keys.

        Keyword arguments are :class:`ProcessingRecord` fields. Fields not
        given keep their previous value.
        """
        now = self.clock()
        with self._transaction():
            if "dedup_keys" in fields:
                fields["dedup_keys"] = list(dict.fromkeys(fields["dedup_keys"] or []))

            previous = self._records.get(item_id)
            if previous is not None:
                kept = fields.get("dedup_keys", previous.dedup_keys)
                self._deindex(item_id, [k for k in previous.dedup_keys if k not in kept])
                base = previous
            else:
                base = ProcessingRecord(processed_at=now, last_seen_at=now)

            record = replace(base, **fields, processed_at=now, last_seen_at=now, was_unseen=False)
            self._records[item_id] = record
            self._index_keys(item_id, record.dedup_keys)
        return record

    def clear_processed(self, item_id: str) -> bool:
        with self._transaction():
            removed = self._remove(item_id)
        return removed

    def clear_all(self) -> None:
        with self._transaction():
            self._records.clear()
            self._index.clear()

    def mark_unseen(self, source: str, current_ids: Iterable[str]) -> None:
        """Flag records of a source whose items are missing from its latest fetch.

        Records still present get ``last_seen_at`` refreshed. Their
        ``was_unseen`` flag stays set until the item is processed again.
        """
        current = set(current_ids)
        now = self.clock()
        with self._transaction():
            for item_id, record in self._records.items():
                if record.source != source:
                    continue
                if item_id in current:
                    record.last_seen_at = now
                else:
                    record.was_unseen = True

    def cleanup_expired(self, ttl_days: float) -> int:
        """Remove records processed more than ``ttl_days`` ago."""
        cutoff = self.clock() - timedelta(days=ttl_days)
        with self._transaction():
            expired = [i for i, r in self._records.items() if _aware(r.processed_at) < cutoff]
            for item_id in expired:
                self._remove(item_id)
        return len(expired)

    def cleanup_missing_from_source(
        self, source: str, current_ids: Iterable[str], min_age_days: float = 1
    ) -> int:
        """Remove a source's records that are gone from its results and old enough."""
        current = set(current_ids)
        cutoff = self.clock() - timedelta(days=min_age_days)
        with self._transaction():
            missing = [
                item_id
                for item_id, record in self._records.items()
                if record.source == source
                and item_id not in current
                and _aware(record.processed_at) < cutoff
            ]
            for item_id in missing:
                self._remove(item_id)
        return len(missing)

    # Internals

    def _remove(self, item_id: str) -> bool:
        record = self._records.pop(item_id, None)
        if record is None:
            return False
        self._deindex(item_id, record.dedup_keys)
        return True

    def _index_keys(self, item_id: str, keys: Iterable[str]) -> None:
        for key in keys:
            owner = self._index.get(key)
            if owner is None or owner == item_id or owner not in self._records:
                self._index[key] = item_id

    def _deindex(self, item_id: str, keys: Iterable[str]) -> None:
        """Drop keys owned by ``item_id``, handing them to another live holder."""
        for key in keys:
            if self._index.get(key) != item_id:
                continue
            del self._index[key]
            for other_id, other in self._records.items():
                if other_id != item_id and key in other.dedup_keys:
                    self._index[key] = other_id
                    break

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        if self._lock_path is None:
            yield
            self._save()
            return
        with StateLock(self._lock_path):
            self._records, self._index = self._read()
            yield
            self._save()

    def _read(self) -> tuple[dict[str, ProcessingRecord], dict[str, str]]:
        if not self.state_file.exists():
            return {}, {}

        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            records = {
                str(item_id): ProcessingRecord.from_dict(raw)
                for item_id, raw in (data.get("processed") or {}).items()
            }
            index = {str(k): str(v) for k, v in (data.get("dedup_index") or {}).items()}
        except (OSError, yaml.YAMLError, AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Could not read state file %s, starting fresh: %s", self.state_file, e)
            return {}, {}

        # Entries pointing at missing records are dropped on load
        index = {key: owner for key, owner in index.items() if owner in records}
        return records, index

    def _save(self) -> None:
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        state = {
            "processed": {item_id: record.to_dict() for item_id, record in self._records.items()},
            "dedup_index": dict(self._index),
            "saved_at": self.clock().isoformat(),
        }
        tmp_path = self.state_file.with_name(f"{self.state_file.name}.{os.getpid()}.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(state, f, allow_unicode=True, default_flow_style=False, sort_keys=False)
        os.replace(tmp_path, self.state_file)
