"""Cross-process lock built on an atomically created marker file."""

import logging
import os
import time
from pathlib import Path
from types import TracebackType
from typing import Optional

from session_pilot.core.errors import LockTimeout

logger = logging.getLogger(__name__)


class StateLock:
    """Exclusive lock shared by every process using the same marker path.

    The marker is created with ``O_CREAT | O_EXCL`` so exactly one process
    wins. A marker older than ``stale_after`` seconds belongs to a crashed
    holder and is removed.
    """

    def __init__(
        self,
        path: Path,
        retries: int = 50,
        retry_delay: float = 0.1,
        stale_after: float = 30.0,
    ) -> None:
        self.path = path
        self.retries = retries
        self.retry_delay = retry_delay
        self.stale_after = stale_after
        self._held = False

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for attempt in range(self.retries + 1):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            except FileExistsError:
                self._break_if_stale()
                if attempt < self.retries:
                    time.sleep(self.retry_delay)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            self._held = True
            return
        raise LockTimeout(f"Could not acquire {self.path} after {self.retries} retries")

    def release(self) -> None:
        if not self._held:
            return
        self._held = False
        self.path.unlink(missing_ok=True)

    def _break_if_stale(self) -> None:
        try:
            age = time.time() - self.path.stat().st_mtime
        except FileNotFoundError:
            return
        if age > self.stale_after:
            logger.warning("Removing stale lock %s (%.0fs old)", self.path, age)
            self.path.unlink(missing_ok=True)

    def __enter__(self) -> "StateLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
