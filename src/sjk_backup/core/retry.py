"""Bounded retries around a sync invocation."""

import logging
import threading
from typing import Callable, Optional

from .. import __util__
from .rsync import SyncResult

logger = logging.getLogger(__name__)


class RetryPolicy:
    """Run an invocation up to ``retries + 1`` times.

    The delay between attempts is a wait on ``stop_event`` so a shutdown can
    interrupt it. Waiting only blocks the calling worker.
    """

    def __init__(
        self,
        retries: int,
        seconds_between_retries: float,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        if retries < 0:
            raise ValueError("retries must not be negative")
        self.retries = retries
        self.seconds_between_retries = seconds_between_retries
        self.stop_event = stop_event or threading.Event()

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def run(self, invocation: Callable[[], SyncResult], description: str = "sync") -> SyncResult:
        """Call ``invocation`` until it succeeds.

        Returns:
            The first successful result

        Raises:
            RetryExhaustedError: Every attempt failed, or a shutdown was
                requested between attempts
        """
        result = None
        for attempt in range(1, self.max_attempts + 1):
            if self.stop_event.is_set():
                raise __util__.RetryExhaustedError(
                    description, attempt - 1, result, cancelled=True
                )

            result = invocation()
            logger.debug("Try %d: %s", attempt, result.command_line)

            if result.success:
                return result

            logger.debug("rsync exited with status %d", result.returncode)
            if attempt == self.max_attempts:
                break

            logger.warning(
                "%s failed (attempt %d/%d), waiting %s seconds before trying again",
                description,
                attempt,
                self.max_attempts,
                self.seconds_between_retries,
            )
            if self.stop_event.wait(self.seconds_between_retries):
                raise __util__.RetryExhaustedError(
                    description, attempt, result, cancelled=True
                )

        raise __util__.RetryExhaustedError(description, self.max_attempts, result)
