"""Test doubles shared by the test modules."""

import threading
from pathlib import Path

from sjk_backup.config import HostConfig
from sjk_backup.core.rsync import SyncResult


class FakeInvoker:
    """Stand-in for RsyncInvoker that writes files instead of running rsync.

    ``failures`` maps a host name to the number of leading attempts that
    fail; a negative number makes every attempt fail.
    """

    def __init__(self, failures=None, delay=0.0):
        self.failures = dict(failures or {})
        self.delay = delay
        self.calls = []
        self.running = 0
        self.max_running = 0
        self._lock = threading.Lock()
        self.terminated = False

    def sync(self, host: HostConfig, path, destination: Path, link_dest=None):
        with self._lock:
            self.calls.append((host.name, path, destination, link_dest))
            self.running += 1
            self.max_running = max(self.max_running, self.running)
            remaining = self.failures.get(host.name, 0)
            if remaining > 0:
                self.failures[host.name] = remaining - 1
            failed = remaining != 0
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            cmd = ("rsync", host.source_for(path), str(destination))
            if failed:
                return SyncResult(returncode=23, command=cmd)
            target = destination / path.lstrip("/")
            target.mkdir(parents=True, exist_ok=True)
            (target / "data.txt").write_text(f"{host.name}:{path}")
            return SyncResult(returncode=0, command=cmd)
        finally:
            with self._lock:
                self.running -= 1

    def terminate_all(self):
        self.terminated = True
        return 0
