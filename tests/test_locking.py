"""Tests for the state file lock."""

import os
import time
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from session_pilot.core.errors import LockTimeout
from session_pilot.core.locking import StateLock


def test_lock_acquire_and_release() -> None:
    """The marker exists only while the lock is held."""
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "state.yaml.lock"

        with StateLock(path):
            assert path.exists()
            assert path.read_text() == str(os.getpid())

        assert not path.exists()


def test_lock_times_out_when_held() -> None:
    """A second holder gives up after its retries."""
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "state.yaml.lock"

        with StateLock(path):
            with pytest.raises(LockTimeout):
                StateLock(path, retries=2, retry_delay=0.01).acquire()


def test_stale_lock_is_broken() -> None:
    """A marker left by a crashed process is removed."""
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "state.yaml.lock"
        path.write_text("12345")
        old = time.time() - 120
        os.utime(path, (old, old))

        lock = StateLock(path, retries=1, retry_delay=0.01, stale_after=30.0)
        lock.acquire()
        assert path.read_text() == str(os.getpid())
        lock.release()
        assert not path.exists()


def test_lock_released_on_error() -> None:
    """The marker is removed even when the body raises."""
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "state.yaml.lock"

        with pytest.raises(RuntimeError):
            with StateLock(path):
                raise RuntimeError("boom")

        assert not path.exists()
