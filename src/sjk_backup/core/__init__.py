"""Core backup modules: locking, rsync invocation, retries, rotation, scheduling."""

from .locks import LockManager
from .retry import RetryPolicy
from .rotation import NumberedRotation, RotationManager, StagedRotation, rotation_for
from .rsync import RsyncInvoker, SyncResult, build_rsync_command
from .scheduler import JobResult, JobState, RunSummary, Scheduler, ShutdownHook

__all__ = [
    "LockManager",
    "RetryPolicy",
    "RotationManager",
    "StagedRotation",
    "NumberedRotation",
    "rotation_for",
    "RsyncInvoker",
    "SyncResult",
    "build_rsync_command",
    "Scheduler",
    "ShutdownHook",
    "JobResult",
    "JobState",
    "RunSummary",
]
