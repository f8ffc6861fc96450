"""rsync invocation.

Builds the rsync argument list for one path of a host and runs it. No retry
or rotation logic lives here.
"""

import logging
import shlex
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from ..config.schema import HostConfig

logger = logging.getLogger(__name__)

BASE_OPTIONS = (
    "--archive",
    "--hard-links",
    "--human-readable",
    "--numeric-ids",
    "--delete",
    "--delete-excluded",
    "--partial",
    "--relative",
)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a single rsync run."""

    returncode: int
    command: tuple[str, ...]
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0

    @property
    def command_line(self) -> str:
        return shlex.join(self.command)


def build_rsync_command(
    host: HostConfig,
    path: str,
    destination: Path,
    link_dest: Optional[Path] = None,
    rsync_binary: str = "rsync",
    inplace: bool = False,
) -> list[str]:
    """Build the rsync command line for one of ``host``'s paths.

    Args:
        host: Host configuration
        path: Source path on that host
        destination: Directory receiving the transfer
        link_dest: Previous generation to hard-link unchanged files against
        rsync_binary: rsync executable
        inplace: Add --inplace

    Returns:
        The argument list, binary first
    """
    cmd = [rsync_binary, *BASE_OPTIONS]
    if host.is_remote:
        # Keep spaces in remote paths from being split by the remote shell
        cmd.append("--protect-args")
    if inplace:
        cmd.append("--inplace")
    if host.one_file_system:
        cmd.append("--one-file-system")
    if host.bwlimit:
        cmd.append(f"--bwlimit={host.bwlimit}")
    for pattern in host.exclude:
        cmd.append(f"--exclude={pattern}")
    if link_dest is not None:
        cmd.append(f"--link-dest={link_dest}")
    cmd += [host.source_for(path), str(destination)]
    return cmd


class RsyncInvoker:
    """Run rsync and keep track of running children for shutdown."""

    def __init__(self, rsync_binary: str = "rsync", inplace: bool = False) -> None:
        self.rsync_binary = rsync_binary
        self.inplace = inplace
        self._active: set[subprocess.Popen] = set()
        self._lock = threading.Lock()
        self._terminated = False

    def sync(
        self,
        host: HostConfig,
        path: str,
        destination: Path,
        link_dest: Optional[Path] = None,
    ) -> SyncResult:
        """Transfer one path of ``host`` into ``destination``."""
        cmd = build_rsync_command(
            host,
            path,
            destination,
            link_dest=link_dest,
            rsync_binary=self.rsync_binary,
            inplace=self.inplace,
        )
        return self.run(cmd)

    def run(self, cmd: Sequence[str]) -> SyncResult:
        logger.debug("Executing: %s", shlex.join(cmd))
        try:
            with self._lock:
                if self._terminated:
                    return SyncResult(returncode=-1, command=tuple(cmd), stderr="terminated")
                proc = subprocess.Popen(
                    list(cmd),
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=subprocess.PIPE,
                    text=True,
                )
                self._active.add(proc)
        except OSError as e:
            logger.error("Could not execute %s: %s", cmd[0], e)
            return SyncResult(returncode=127, command=tuple(cmd), stderr=str(e))

        try:
            _, stderr = proc.communicate()
        except BaseException:
            # Interrupted by a signal, rsync must not outlive us
            proc.terminate()
            raise
        finally:
            with self._lock:
                self._active.discard(proc)

        stderr = stderr or ""
        if proc.returncode != 0 and stderr.strip():
            for line in stderr.strip().splitlines()[-5:]:
                logger.debug("rsync: %s", line)
        return SyncResult(returncode=proc.returncode, command=tuple(cmd), stderr=stderr)

    def terminate_all(self) -> int:
        """Terminate running children and refuse to start new ones.

        Returns:
            Number of processes signalled
        """
        with self._lock:
            self._terminated = True
            procs = list(self._active)
        for proc in procs:
            logger.debug("Terminating rsync (pid %d)", proc.pid)
            try:
                proc.terminate()
            except ProcessLookupError:
                pass
        return len(procs)
