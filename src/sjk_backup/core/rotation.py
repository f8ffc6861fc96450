"""On-disk generations of a host's backups.

Layout under ``<backup_root>/<host>/``::

    <host>.<generation>              completed generation
    <host>.<timestamp>.unfinished    staging area (staged scheme only)
    <host>.latest                    symlink to the newest generation

Two schemes are provided. :class:`StagedRotation` syncs into an unfinished
staging directory and only renames it and swaps ``latest`` once every path
has synced. :class:`NumberedRotation` shifts fixed slots before syncing
straight into slot 0.
"""

import logging
import os
import re
import shutil
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .. import __util__

logger = logging.getLogger(__name__)

LATEST_SUFFIX = "latest"
UNFINISHED_SUFFIX = "unfinished"
STAMP_PATTERN = r"\d{4}-\d{2}-\d{2}\.\d{2}-\d{2}-\d{2}"


@dataclass(frozen=True)
class Generation:
    """A completed snapshot of a host."""

    path: Path
    sort_key: tuple

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class StagingArea:
    """Where the current run writes, and what it hard-links against."""

    path: Path
    link_dest: Optional[Path]


class RotationManager:
    """Common generation bookkeeping for a single host."""

    scheme = ""

    def __init__(
        self,
        backup_root,
        host: str,
        depth: int,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if depth < 1:
            raise ValueError("retention depth must be at least 1")
        self.host = host
        self.depth = depth
        self.host_dir = Path(backup_root) / host
        self.latest_link = self.host_dir / f"{host}.{LATEST_SUFFIX}"
        self.clock = clock or datetime.now

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str(self.host_dir)!r}, depth={self.depth})"

    # The following methods are implemented by the schemes.

    def _parse_generation(self, path: Path) -> Optional[Generation]:
        raise NotImplementedError

    def prepare_destination(self) -> StagingArea:
        """Get a directory ready to receive this run's transfers."""
        raise NotImplementedError

    def publish(self, staging: StagingArea) -> Path:
        """Promote a fully synced staging area and point ``latest`` at it."""
        raise NotImplementedError

    # Shared helpers

    def ensure_host_dir(self) -> None:
        if not self.host_dir.is_dir():
            logger.info("Creating directory: %s", self.host_dir)
            try:
                self.host_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error("Error creating %s: %s", self.host_dir, e)
                raise __util__.AbortError(str(e)) from e

    def list_generations(self) -> list[Generation]:
        """Return completed generations, oldest first."""
        if not self.host_dir.is_dir():
            return []
        generations = []
        for item in self.host_dir.iterdir():
            if item.is_symlink() or not item.is_dir():
                continue
            generation = self._parse_generation(item)
            if generation is not None:
                generations.append(generation)
        generations.sort(key=lambda g: g.sort_key)
        return generations

    def list_unfinished(self) -> list[Path]:
        """Return leftover staging areas, oldest first."""
        if not self.host_dir.is_dir():
            return []
        return sorted(
            item
            for item in self.host_dir.glob(f"{self.host}.*.{UNFINISHED_SUFFIX}")
            if item.is_dir() and not item.is_symlink()
        )

    def latest(self) -> Optional[Path]:
        """Return the generation ``latest`` points to, if it resolves."""
        if not self.latest_link.is_symlink():
            return None
        target = Path(os.readlink(self.latest_link))
        if not target.is_absolute():
            target = self.host_dir / target
        return target if target.is_dir() else None

    def point_latest_to(self, generation: Path) -> None:
        """Atomically repoint ``latest`` at ``generation``.

        Raises:
            PublishError: The pointer could not be replaced
        """
        tmp_link = self.host_dir / (
            f".{self.latest_link.name}.{os.getpid()}.{threading.get_ident()}"
        )
        logger.debug("Creating %s -> %s link", self.latest_link, generation.name)
        try:
            if tmp_link.is_symlink():
                tmp_link.unlink()
            # Relative target keeps the tree relocatable
            os.symlink(generation.name, tmp_link)
            os.replace(tmp_link, self.latest_link)
        except OSError as e:
            try:
                tmp_link.unlink()
            except OSError:
                pass
            raise __util__.PublishError(
                f"Could not point {self.latest_link} at {generation}: {e}"
            ) from e

    def trim(self, dry_run: bool = False) -> list[Path]:
        """Delete generations beyond the retention depth.

        The generation ``latest`` points to is always kept and counts
        toward the depth.

        Returns:
            Paths that were (or, with dry_run, would be) deleted
        """
        latest = self.latest()
        generations = self.list_generations()
        if latest is not None:
            latest = latest.resolve()
            others = [g for g in generations if g.path.resolve() != latest]
            keep = self.depth - 1
        else:
            others = generations
            keep = self.depth
        to_delete = others[: max(len(others) - keep, 0)]

        removed = []
        for generation in to_delete:
            if dry_run:
                logger.info("Would remove %s", generation.path)
            else:
                logger.info("Removing %s", generation.path)
                shutil.rmtree(generation.path)
            removed.append(generation.path)
        return removed


class StagedRotation(RotationManager):
    """Timestamped generations published by rename and pointer swap."""

    scheme = "staged"

    def __init__(self, backup_root, host: str, depth: int, clock=None) -> None:
        super().__init__(backup_root, host, depth, clock=clock)
        self._generation_re = re.compile(
            rf"^{re.escape(host)}\.(?P<stamp>{STAMP_PATTERN})(?:-(?P<seq>\d+))?$"
        )

    def _parse_generation(self, path: Path) -> Optional[Generation]:
        match = self._generation_re.match(path.name)
        if match is None:
            return None
        try:
            stamp = __util__.str_to_date(match["stamp"])
        except ValueError:
            logger.warning("Could not parse date from: %r", path.name)
            return None
        return Generation(path=path, sort_key=(stamp, int(match["seq"] or 0)))

    def prepare_destination(self) -> StagingArea:
        """Create the staging directory for this run.

        The newest leftover staging area of an interrupted run is reused so
        partial transfers resume; older leftovers are removed.
        """
        self.ensure_host_dir()
        stamp = __util__.date_to_str(self.clock())
        staging = self.host_dir / f"{self.host}.{stamp}.{UNFINISHED_SUFFIX}"

        stale = [p for p in self.list_unfinished() if p != staging]
        resumable = None
        if stale and not staging.exists():
            resumable = stale.pop()
        try:
            for path in stale:
                logger.info("Removing abandoned staging area %s", path)
                shutil.rmtree(path)
            if resumable is not None:
                logger.info("Resuming interrupted backup in %s", resumable)
                os.rename(resumable, staging)
            staging.mkdir(exist_ok=True)
        except OSError as e:
            raise __util__.AbortError(f"Could not prepare {staging}: {e}") from e

        link_dest = self.latest()
        if link_dest is None:
            logger.info("No previous generation for %s, doing a full copy", self.host)
        return StagingArea(path=staging, link_dest=link_dest)

    def _final_name(self, staging: Path) -> Path:
        base = staging.name[: -len(f".{UNFINISHED_SUFFIX}")]
        final = self.host_dir / base
        seq = 0
        while final.exists() or final.is_symlink():
            seq += 1
            final = self.host_dir / f"{base}-{seq}"
        return final

    def publish(self, staging: StagingArea) -> Path:
        final = self._final_name(staging.path)
        logger.debug("Moving %s to %s", staging.path, final)
        try:
            os.rename(staging.path, final)
        except OSError as e:
            raise __util__.PublishError(
                f"Could not move {staging.path} to {final}: {e}"
            ) from e
        self.point_latest_to(final)
        return final


class NumberedRotation(RotationManager):
    """Fixed slots ``<host>.0`` (newest) to ``<host>.<depth-1>``.

    Rotation happens before the transfer, so a failed run leaves slot 0
    partially updated while the true oldest copy is already gone.
    """

    scheme = "numbered"

    def __init__(self, backup_root, host: str, depth: int, clock=None) -> None:
        super().__init__(backup_root, host, depth, clock=clock)
        self._generation_re = re.compile(rf"^{re.escape(host)}\.(?P<slot>\d+)$")

    def slot(self, index: int) -> Path:
        return self.host_dir / f"{self.host}.{index}"

    def _parse_generation(self, path: Path) -> Optional[Generation]:
        match = self._generation_re.match(path.name)
        if match is None:
            return None
        # Oldest first means highest slot first
        return Generation(path=path, sort_key=(-int(match["slot"]),))

    def rotate(self) -> None:
        """Drop the oldest slot(s) and shift the rest up by one."""
        try:
            for generation in self.list_generations():
                index = -generation.sort_key[0]
                if index >= self.depth - 1:
                    logger.debug("Removing %s", generation.path)
                    shutil.rmtree(generation.path)
            for index in range(self.depth - 2, -1, -1):
                if self.slot(index).is_dir():
                    logger.debug("Moving %s to %s", self.slot(index), self.slot(index + 1))
                    os.rename(self.slot(index), self.slot(index + 1))
        except OSError as e:
            raise __util__.AbortError(f"Could not rotate {self.host_dir}: {e}") from e

    def prepare_destination(self) -> StagingArea:
        self.ensure_host_dir()
        self.rotate()
        slot0 = self.slot(0)
        try:
            slot0.mkdir(exist_ok=True)
        except OSError as e:
            raise __util__.AbortError(f"Could not create {slot0}: {e}") from e
        previous = self.slot(1)
        return StagingArea(path=slot0, link_dest=previous if previous.is_dir() else None)

    def publish(self, staging: StagingArea) -> Path:
        current = self.latest()
        if current is None or current.resolve() != staging.path.resolve():
            self.point_latest_to(staging.path)
        return staging.path


ROTATIONS = {
    StagedRotation.scheme: StagedRotation,
    NumberedRotation.scheme: NumberedRotation,
}


def rotation_for(scheme: str, backup_root, host: str, depth: int, clock=None) -> RotationManager:
    """Return the rotation manager for ``scheme``."""
    try:
        cls = ROTATIONS[scheme]
    except KeyError:
        raise ValueError(f"Unknown rotation scheme: {scheme}") from None
    return cls(backup_root, host, depth, clock=clock)
