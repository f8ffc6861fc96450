"""Run backup jobs for the configured hosts.

Each host job goes through::

    PENDING -> LOCKED -> RUNNING -> PUBLISHED | FAILED -> (lock released)

A host whose lock is already held ends in SKIPPED. Locks are acquired by the
scheduling thread, jobs run on a bounded thread pool, and the lock is
released as the last step of every job.
"""

import enum
import logging
import signal
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .. import __util__
from ..config import Config, HostConfig
from .locks import LockManager
from .retry import RetryPolicy
from .rotation import rotation_for
from .rsync import RsyncInvoker

logger = logging.getLogger(__name__)


class JobState(enum.Enum):
    PENDING = "pending"
    LOCKED = "locked"
    RUNNING = "running"
    PUBLISHED = "published"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class JobResult:
    """What happened to one host."""

    host: str
    state: JobState = JobState.PENDING
    generation: Optional[Path] = None
    failed_paths: list[str] = field(default_factory=list)
    error: Optional[str] = None
    publish_error: bool = False
    unlocked: bool = False


@dataclass
class RunSummary:
    results: list[JobResult] = field(default_factory=list)

    def by_state(self, state: JobState) -> list[JobResult]:
        return [r for r in self.results if r.state is state]

    @property
    def published(self) -> list[JobResult]:
        return self.by_state(JobState.PUBLISHED)

    @property
    def failed(self) -> list[JobResult]:
        return self.by_state(JobState.FAILED)

    @property
    def skipped(self) -> list[JobResult]:
        return self.by_state(JobState.SKIPPED)

    @property
    def exit_code(self) -> int:
        """0 unless every attempted host failed or a publish step failed."""
        if any(r.publish_error for r in self.results):
            return 1
        attempted = [r for r in self.results if r.state is not JobState.SKIPPED]
        if attempted and all(r.state is JobState.FAILED for r in attempted):
            return 1
        return 0


class Scheduler:
    """Drive per-host jobs with bounded parallelism."""

    def __init__(
        self,
        config: Config,
        locks: Optional[LockManager] = None,
        invoker=None,
        stop_event: Optional[threading.Event] = None,
        clock=None,
    ) -> None:
        general = config.general
        self.config = config
        self.locks = locks or LockManager(general.lock_directory)
        self.invoker = invoker or RsyncInvoker(general.rsync_binary, inplace=general.inplace)
        self.stop_event = stop_event or threading.Event()
        self.clock = clock
        self.max_workers = general.max_concurrent_rsyncs

    def retry_policy(self) -> RetryPolicy:
        general = self.config.general
        return RetryPolicy(
            general.retries, general.seconds_between_retries, stop_event=self.stop_event
        )

    def rotation(self, host: HostConfig):
        return rotation_for(
            self.config.general.rotation,
            self.config.general.backup_root,
            host.name,
            self.config.get_retention_depth(host),
            clock=self.clock,
        )

    def run(self, only: Optional[str] = None) -> RunSummary:
        """Back up all enabled hosts, or only the host named ``only``.

        Single-host mode runs in the calling thread without the pool.

        Raises:
            KeyError: ``only`` is not a configured host
        """
        start = time.monotonic()
        logger.info(__util__.log_heading(f"Started at {time.ctime()}"))

        if only is not None:
            host = self.config.get_host(only)
            if host is None:
                raise KeyError(only)
            summary = RunSummary([self.run_host(host)])
        else:
            summary = self._run_pool(self.config.get_enabled_hosts())

        logger.info(__util__.log_heading(f"Finished at {time.ctime()}"))
        logger.info(
            "%d published, %d failed, %d skipped in %s",
            len(summary.published),
            len(summary.failed),
            len(summary.skipped),
            __util__.elapsed(start),
        )
        for result in summary.failed:
            logger.error("%s failed: %s", result.host, result.error)
        return summary

    def _run_pool(self, hosts: list[HostConfig]) -> RunSummary:
        logger.info("Processing %d host(s), %d at a time", len(hosts), self.max_workers)
        summary = RunSummary()
        executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="backup"
        )
        futures: dict[Future, JobResult] = {}
        try:
            for host in hosts:
                if self.stop_event.is_set():
                    break
                result = JobResult(host.name)
                summary.results.append(result)
                if not self._lock(host, result):
                    continue
                futures[executor.submit(self._job, host, result)] = result

            for future in as_completed(futures):
                result = futures[future]
                try:
                    future.result()
                except Exception as e:
                    logger.exception("Job for %s crashed", result.host)
                    result.state = JobState.FAILED
                    result.error = str(e)
        except BaseException:
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return summary

    def run_host(self, host: HostConfig) -> JobResult:
        """Lock, back up, publish and unlock a single host in this thread."""
        result = JobResult(host.name)
        if self._lock(host, result):
            self._job(host, result)
        return result

    def _lock(self, host: HostConfig, result: JobResult) -> bool:
        """PENDING -> LOCKED, or a terminal SKIPPED/FAILED."""
        try:
            self.locks.acquire(host.name)
        except __util__.HostLockedError as e:
            logger.info("Skipping %s: %s, a backup is probably running", host.name, e)
            result.state = JobState.SKIPPED
            result.error = str(e)
            return False
        except __util__.LockError as e:
            logger.error("Could not lock %s: %s", host.name, e)
            result.state = JobState.FAILED
            result.error = str(e)
            return False
        result.state = JobState.LOCKED
        return True

    def _job(self, host: HostConfig, result: JobResult) -> JobResult:
        """Run a locked host and always release its lock."""
        try:
            result.state = JobState.RUNNING
            self._backup(host, result)
        except __util__.PublishError as e:
            logger.critical("Publishing backup of %s failed: %s", host.name, e)
            result.state = JobState.FAILED
            result.publish_error = True
            result.error = str(e)
        except __util__.AbortError as e:
            logger.error("Backup of %s aborted: %s", host.name, e)
            result.state = JobState.FAILED
            result.error = str(e)
        except Exception as e:
            logger.exception("Backup of %s failed unexpectedly", host.name)
            result.state = JobState.FAILED
            result.error = str(e)
        finally:
            try:
                self.locks.release(host.name)
                result.unlocked = True
            except __util__.LockError as e:
                logger.error("%s; future runs of %s are blocked", e, host.name)
                result.state = JobState.FAILED
                result.error = str(e)
        return result

    def _backup(self, host: HostConfig, result: JobResult) -> None:
        """RUNNING -> PUBLISHED | FAILED."""
        logger.info(__util__.log_heading(f"Host: {host.name}"))
        rotation = self.rotation(host)
        staging = rotation.prepare_destination()
        retry = self.retry_policy()

        for path in host.paths:
            source = host.source_for(path)
            logger.info("Backing up %s", source)

            def attempt(path=path):
                return self.invoker.sync(host, path, staging.path, staging.link_dest)

            try:
                retry.run(attempt, description=f"rsync of {source} to {staging.path}")
            except __util__.RetryExhaustedError as e:
                logger.error("%s", e)
                if e.last_result is not None:
                    logger.error("rsync command used: %s", e.last_result.command_line)
                result.failed_paths.append(path)
                if e.cancelled:
                    break

        if result.failed_paths:
            result.state = JobState.FAILED
            result.error = f"{len(result.failed_paths)} path(s) failed: " + ", ".join(
                result.failed_paths
            )
            logger.warning("Not publishing %s, left %s in place", host.name, staging.path)
            return
        if self.stop_event.is_set():
            result.state = JobState.FAILED
            result.error = "cancelled"
            return

        result.generation = rotation.publish(staging)
        result.state = JobState.PUBLISHED
        logger.info("Published %s", result.generation)
        try:
            rotation.trim()
        except OSError as e:
            logger.error("Retention trimming for %s failed: %s", host.name, e)

    def shutdown(self) -> list[str]:
        """Stop new work, terminate rsync children and release our locks."""
        self.stop_event.set()
        terminate = getattr(self.invoker, "terminate_all", None)
        if terminate is not None:
            terminate()
        released = self.locks.release_all()
        for host in released:
            logger.warning("Released lock of %s on shutdown", host)
        return released


class ShutdownHook:
    """Turn SIGINT, SIGTERM and SIGHUP into a clean scheduler shutdown.

    The handler must not take any lock: it only sets the stop event and
    raises ``SystemExit``. Terminating children and releasing locks happens
    in :meth:`__exit__`, once the interrupted frames have unwound.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGHUP)

    def __init__(self, scheduler: Scheduler) -> None:
        self.scheduler = scheduler
        self._previous = {}

    def _handler(self, signum, frame):
        name = signal.Signals(signum).name
        if self.scheduler.stop_event.is_set():
            logger.warning("Received %s, already shutting down", name)
            return
        logger.warning("Received %s, cleaning up", name)
        self.scheduler.stop_event.set()
        raise SystemExit(128 + signum)

    def __enter__(self):
        for signum in self.SIGNALS:
            self._previous[signum] = signal.signal(signum, self._handler)
        return self

    def __exit__(self, exc_type, exc, tb):
        try:
            if exc_type is not None:
                self.scheduler.shutdown()
        finally:
            for signum, handler in self._previous.items():
                signal.signal(signum, handler)
            self._previous.clear()
        return False
