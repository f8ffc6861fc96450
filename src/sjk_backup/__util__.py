# pyright: standard

"""sjk-backup: sjk_backup/__util__.py
Common errors and small helpers shared by the backup modules.
"""

import os
import time
from datetime import datetime

DATE_FORMAT = "%Y-%m-%d.%H-%M-%S"


class AbortError(Exception):
    """Raised when the current host job must be aborted."""


class LockError(AbortError):
    """A lock marker could not be created, read or removed."""


class HostLockedError(Exception):
    """A lock marker for the host is already held by a running process."""

    def __init__(self, host: str, pid: int | None = None) -> None:
        self.host = host
        self.pid = pid
        holder = f" by pid {pid}" if pid is not None else ""
        super().__init__(f"{host} is already locked{holder}")


class PublishError(AbortError):
    """Promoting a staging area or swapping the latest pointer failed."""


class RetryExhaustedError(Exception):
    """Every attempt of a sync invocation failed."""

    def __init__(self, description: str, attempts: int, last_result=None, cancelled=False):
        self.description = description
        self.attempts = attempts
        self.last_result = last_result
        self.cancelled = cancelled
        if cancelled:
            msg = f"{description}: cancelled after {attempts} attempt(s)"
        else:
            msg = f"{description}: failed after {attempts} attempt(s)"
        super().__init__(msg)


def date_to_str(timestamp: datetime | None = None, fmt: str = DATE_FORMAT) -> str:
    """Format a generation timestamp, defaulting to the current local time."""
    if timestamp is None:
        timestamp = datetime.now()
    return timestamp.strftime(fmt)


def str_to_date(value: str, fmt: str = DATE_FORMAT) -> datetime:
    """Parse a generation timestamp produced by :func:`date_to_str`."""
    return datetime.strptime(value, fmt)


def log_heading(caption: str = "") -> str:
    """Formatted heading for logging output sections."""
    return f"{'-' * 10} {caption} {'-' * 10}"


def pid_is_running(pid: int) -> bool:
    """Return True if a process with ``pid`` exists on this machine."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by another user
        return True
    return True


def elapsed(start: float) -> str:
    """Human readable duration since ``start`` (a time.monotonic value)."""
    seconds = int(time.monotonic() - start)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h{minutes:02d}m{seconds:02d}s"
    if minutes:
        return f"{minutes}m{seconds:02d}s"
    return f"{seconds}s"
