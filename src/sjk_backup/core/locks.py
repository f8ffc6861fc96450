"""Per-host lock markers.

A host is locked while ``<lock_directory>/<host>.lock`` exists. The marker
holds the pid of the owning process. Markers are created exclusively, and
the check-stale-then-create sequence is serialized across processes with a
guard file so a marker is never observed without its pid.

The manager remembers which markers it created. :meth:`LockManager.release_all`
only ever removes those, never markers left by other invocations.
"""

import contextlib
import logging
import os
import threading
from pathlib import Path

from filelock import FileLock, Timeout

from .. import __util__

logger = logging.getLogger(__name__)

GUARD_FILE_NAME = ".sjk-backup.guard"
LOCK_SUFFIX = ".lock"


class LockManager:
    """Create, inspect and remove per-host lock markers."""

    def __init__(self, lock_directory, guard_timeout: float = 30.0) -> None:
        self.lock_directory = Path(lock_directory)
        self.guard_timeout = guard_timeout
        self._owned: set[str] = set()
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"LockManager({str(self.lock_directory)!r})"

    def path_for(self, host: str) -> Path:
        return self.lock_directory / f"{host}{LOCK_SUFFIX}"

    @property
    def owned(self) -> frozenset[str]:
        """Hosts whose markers were created by this manager and not yet released."""
        with self._lock:
            return frozenset(self._owned)

    def read_pid(self, host: str) -> int | None:
        """Return the pid recorded in the host's marker, if any."""
        try:
            content = self.path_for(host).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise __util__.LockError(f"Could not read {self.path_for(host)}: {e}") from e
        try:
            return int(content)
        except ValueError:
            return None

    def is_locked(self, host: str) -> bool:
        return self.path_for(host).exists()

    def acquire(self, host: str) -> Path:
        """Create the host's marker and record our pid in it.

        Raises:
            HostLockedError: The marker exists and its owner is still running
            LockError: The marker could not be created
        """
        path = self.path_for(host)
        if not self.lock_directory.is_dir():
            raise __util__.LockError(f"Lock directory {self.lock_directory} does not exist")
        guard = FileLock(self.lock_directory / GUARD_FILE_NAME, timeout=self.guard_timeout)
        with self._lock:
            try:
                with guard:
                    if path.exists():
                        self._clear_stale(host, path)
                    logger.debug("Creating lockfile %s", path)
                    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
                    self._owned.add(host)
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(str(os.getpid()))
            except FileExistsError:
                # Created outside the guard by something not honoring it
                raise __util__.HostLockedError(host, self.read_pid(host))
            except Timeout as e:
                raise __util__.LockError(f"Timed out waiting for {e.lock_file}") from e
            except OSError as e:
                if host in self._owned:
                    self._owned.discard(host)
                    path.unlink(missing_ok=True)
                raise __util__.LockError(f"Could not create {path}: {e}") from e
        logger.debug("Wrote pid %d to %s", os.getpid(), path)
        return path

    def _clear_stale(self, host: str, path: Path) -> None:
        """Remove ``path`` if its owner is gone, else raise HostLockedError."""
        pid = self.read_pid(host)
        if pid is None or __util__.pid_is_running(pid):
            raise __util__.HostLockedError(host, pid)
        logger.warning("Removing stale lock file %s (pid %d is not running)", path, pid)
        path.unlink()

    def release(self, host: str) -> None:
        """Remove the host's marker.

        Releasing a host this manager does not own (or already released,
        e.g. by the shutdown hook) is a no-op.

        Raises:
            LockError: The marker could not be removed
        """
        path = self.path_for(host)
        with self._lock:
            if host not in self._owned:
                logger.debug("Not releasing %s: not owned by this process", path)
                return
            logger.debug("Removing lockfile %s", path)
            try:
                path.unlink()
            except FileNotFoundError:
                logger.warning("Lock file %s vanished before release", path)
            except OSError as e:
                raise __util__.LockError(f"Error removing lock file {path}: {e}") from e
            self._owned.discard(host)

    def release_all(self) -> list[str]:
        """Best-effort removal of every marker this manager owns.

        Returns:
            Hosts whose markers were removed
        """
        released = []
        for host in sorted(self.owned):
            try:
                self.release(host)
            except __util__.LockError as e:
                logger.error("%s", e)
                continue
            released.append(host)
        return released

    @contextlib.contextmanager
    def hold(self, host: str):
        """Hold the host's lock for the duration of the block."""
        self.acquire(host)
        try:
            yield self.path_for(host)
        finally:
            self.release(host)
