"""Tests for per-host lock markers."""

import os
import subprocess
import sys
import threading
from unittest.mock import patch

import pytest

from sjk_backup.__util__ import HostLockedError, LockError
from sjk_backup.core.locks import LockManager


def dead_pid():
    """Return the pid of a process that has already exited."""
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


class TestAcquire:
    """Tests for LockManager.acquire."""

    def test_creates_marker_with_pid(self, lock_dir):
        locks = LockManager(lock_dir)

        path = locks.acquire("alpha")

        assert path == lock_dir / "alpha.lock"
        assert path.read_text() == str(os.getpid())
        assert locks.owned == {"alpha"}

    def test_second_acquire_is_locked(self, lock_dir):
        locks = LockManager(lock_dir)
        locks.acquire("alpha")

        with pytest.raises(HostLockedError) as excinfo:
            locks.acquire("alpha")
        assert excinfo.value.pid == os.getpid()

    def test_marker_from_other_manager_is_respected(self, lock_dir):
        LockManager(lock_dir).acquire("alpha")
        other = LockManager(lock_dir)

        with pytest.raises(HostLockedError):
            other.acquire("alpha")
        assert other.owned == frozenset()

    def test_unreadable_pid_counts_as_held(self, lock_dir):
        (lock_dir / "alpha.lock").write_text("")

        with pytest.raises(HostLockedError):
            LockManager(lock_dir).acquire("alpha")

    def test_stale_marker_is_replaced(self, lock_dir):
        (lock_dir / "alpha.lock").write_text(str(dead_pid()))
        locks = LockManager(lock_dir)

        locks.acquire("alpha")

        assert (lock_dir / "alpha.lock").read_text() == str(os.getpid())

    def test_concurrent_acquire_succeeds_once(self, lock_dir):
        """Exactly one of many concurrent callers gets the lock."""
        locks = LockManager(lock_dir)
        barrier = threading.Barrier(8)
        outcomes = []
        outcome_lock = threading.Lock()

        def worker():
            barrier.wait()
            try:
                locks.acquire("alpha")
                result = "acquired"
            except HostLockedError:
                result = "locked"
            with outcome_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("acquired") == 1
        assert outcomes.count("locked") == 7

    def test_io_error_raises_lock_error(self, tmp_path):
        locks = LockManager(tmp_path / "missing")

        with pytest.raises(LockError):
            locks.acquire("alpha")


class TestRelease:
    """Tests for LockManager.release and release_all."""

    def test_release_removes_marker(self, lock_dir):
        locks = LockManager(lock_dir)
        locks.acquire("alpha")

        locks.release("alpha")

        assert not (lock_dir / "alpha.lock").exists()
        assert locks.owned == frozenset()

    def test_release_not_owned_leaves_marker(self, lock_dir):
        marker = lock_dir / "alpha.lock"
        marker.write_text("1")

        LockManager(lock_dir).release("alpha")

        assert marker.exists()

    def test_release_failure_is_surfaced(self, lock_dir):
        locks = LockManager(lock_dir)
        locks.acquire("alpha")

        with patch("pathlib.Path.unlink", side_effect=PermissionError("denied")):
            with pytest.raises(LockError, match="denied"):
                locks.release("alpha")
        assert "alpha" in locks.owned

    def test_release_all_only_owned(self, lock_dir):
        foreign = lock_dir / "gamma.lock"
        foreign.write_text(str(os.getpid()))
        locks = LockManager(lock_dir)
        locks.acquire("alpha")
        locks.acquire("beta")

        released = locks.release_all()

        assert released == ["alpha", "beta"]
        assert sorted(p.name for p in lock_dir.glob("*.lock")) == ["gamma.lock"]

    def test_hold_releases_on_error(self, lock_dir):
        locks = LockManager(lock_dir)

        with pytest.raises(RuntimeError):
            with locks.hold("alpha"):
                assert locks.is_locked("alpha")
                raise RuntimeError("boom")

        assert not locks.is_locked("alpha")
