"""Tests for generation rotation and publishing."""

import os
from datetime import datetime
from unittest.mock import patch

import pytest

from sjk_backup.__util__ import PublishError
from sjk_backup.core.rotation import (
    NumberedRotation,
    StagedRotation,
    rotation_for,
)


def fill(path, name="file.txt", content="data"):
    path.mkdir(parents=True, exist_ok=True)
    (path / name).write_text(content)


def snapshot_tree(root):
    """Map of relative path -> content for every file under root."""
    tree = {}
    for dirpath, _, files in os.walk(root, followlinks=False):
        for name in files:
            full = os.path.join(dirpath, name)
            with open(full, encoding="utf-8") as f:
                tree[os.path.relpath(full, root)] = f.read()
    return tree


def staged_run(rotation, content="data"):
    staging = rotation.prepare_destination()
    fill(staging.path, content=content)
    return rotation.publish(staging)


class TestStagedRotation:
    """Tests for the timestamped staged scheme."""

    def test_prepare_creates_host_dir_and_staging(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 3, clock=clock)

        staging = rotation.prepare_destination()

        assert rotation.host_dir.is_dir()
        assert staging.path.name == "alpha.2026-01-01.03-00-00.unfinished"
        assert staging.path.is_dir()
        assert staging.link_dest is None

    def test_publish_renames_and_points_latest(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 3, clock=clock)
        staging = rotation.prepare_destination()
        fill(staging.path)

        final = rotation.publish(staging)

        assert final.name == "alpha.2026-01-01.03-00-00"
        assert not staging.path.exists()
        assert rotation.latest_link.is_symlink()
        assert os.readlink(rotation.latest_link) == final.name
        assert rotation.latest() == final

    def test_next_run_links_against_latest(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 3, clock=clock)
        first = staged_run(rotation)

        staging = rotation.prepare_destination()

        assert staging.link_dest == first

    def test_staging_never_exposed_as_latest(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 3, clock=clock)
        first = staged_run(rotation)

        rotation.prepare_destination()

        assert rotation.latest() == first
        assert [g.path for g in rotation.list_generations()] == [first]

    def test_unpublished_staging_leaves_history_untouched(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 3, clock=clock)
        staged_run(rotation, content="one")
        staged_run(rotation, content="two")
        before = snapshot_tree(rotation.host_dir)
        latest_before = os.readlink(rotation.latest_link)

        staging = rotation.prepare_destination()
        fill(staging.path, content="partial")
        # publish never called: a path failed

        after = {
            k: v for k, v in snapshot_tree(rotation.host_dir).items()
            if not k.startswith(staging.path.name)
        }
        assert after == before
        assert os.readlink(rotation.latest_link) == latest_before

    def test_leftover_staging_is_resumed(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 3, clock=clock)
        old = rotation.prepare_destination()
        fill(old.path, name="partial.txt")

        staging = rotation.prepare_destination()

        assert staging.path != old.path
        assert not old.path.exists()
        assert (staging.path / "partial.txt").exists()

    def test_older_leftovers_are_removed(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 3, clock=clock)
        oldest = rotation.prepare_destination().path
        middle = rotation.prepare_destination().path
        # second prepare resumed the first leftover under a new name
        assert not oldest.exists()
        fill(rotation.host_dir / "alpha.2025-12-31.00-00-00.unfinished")

        staging = rotation.prepare_destination()

        assert rotation.list_unfinished() == [staging.path]
        assert not middle.exists()

    def test_same_second_publish_gets_suffix(self, backup_root):
        fixed = lambda: datetime(2026, 1, 1, 3, 0, 0)  # noqa: E731
        rotation = StagedRotation(backup_root, "alpha", 5, clock=fixed)

        first = staged_run(rotation)
        second = staged_run(rotation)

        assert first.name == "alpha.2026-01-01.03-00-00"
        assert second.name == "alpha.2026-01-01.03-00-00-1"
        assert rotation.latest() == second
        assert [g.path for g in rotation.list_generations()] == [first, second]

    def test_trim_keeps_depth(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 3, clock=clock)
        finals = [staged_run(rotation) for _ in range(5)]

        removed = rotation.trim()

        assert removed == finals[:2]
        assert [g.path for g in rotation.list_generations()] == finals[2:]
        assert rotation.latest() == finals[-1]

    def test_trim_never_deletes_latest(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 2, clock=clock)
        finals = [staged_run(rotation) for _ in range(4)]
        rotation.point_latest_to(finals[0])

        rotation.trim()

        remaining = [g.path for g in rotation.list_generations()]
        assert finals[0] in remaining
        assert len(remaining) == 2
        assert remaining == [finals[0], finals[3]]

    def test_trim_dry_run(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 1, clock=clock)
        finals = [staged_run(rotation) for _ in range(3)]

        removed = rotation.trim(dry_run=True)

        assert removed == finals[:2]
        assert all(p.exists() for p in finals)

    def test_foreign_entries_ignored(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 3, clock=clock)
        fill(rotation.host_dir / "notes")
        fill(rotation.host_dir / "alpha.garbage")
        fill(rotation.host_dir / "beta.2026-01-01.00-00-00")

        assert rotation.list_generations() == []

    def test_rename_failure_is_publish_error(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 3, clock=clock)
        first = staged_run(rotation)
        staging = rotation.prepare_destination()

        with patch("os.rename", side_effect=OSError("read-only")):
            with pytest.raises(PublishError, match="read-only"):
                rotation.publish(staging)

        assert rotation.latest() == first
        assert staging.path.exists()

    def test_pointer_failure_is_publish_error(self, backup_root, clock):
        rotation = StagedRotation(backup_root, "alpha", 3, clock=clock)
        first = staged_run(rotation)
        staging = rotation.prepare_destination()

        with patch("os.replace", side_effect=OSError("boom")):
            with pytest.raises(PublishError, match="boom"):
                rotation.publish(staging)

        # Old pointer survives, no temporary links left behind
        assert rotation.latest() == first
        assert not list(rotation.host_dir.glob(".alpha.latest.*"))


class TestNumberedRotation:
    """Tests for the fixed slot scheme."""

    def test_first_run(self, backup_root):
        rotation = NumberedRotation(backup_root, "alpha", 3)

        staging = rotation.prepare_destination()

        assert staging.path == rotation.host_dir / "alpha.0"
        assert staging.link_dest is None

    def test_rotation_shifts_slots(self, backup_root):
        rotation = NumberedRotation(backup_root, "alpha", 3)
        for i in range(3):
            staging = rotation.prepare_destination()
            fill(staging.path, content=f"run{i}")
            rotation.publish(staging)

        staging = rotation.prepare_destination()

        assert staging.link_dest == rotation.slot(1)
        assert (rotation.slot(1) / "file.txt").read_text() == "run2"
        assert (rotation.slot(2) / "file.txt").read_text() == "run1"
        assert not rotation.slot(3).exists()

    def test_depth_is_bounded(self, backup_root):
        rotation = NumberedRotation(backup_root, "alpha", 3)
        for i in range(6):
            staging = rotation.prepare_destination()
            fill(staging.path, content=f"run{i}")
            rotation.publish(staging)

        names = sorted(g.name for g in rotation.list_generations())
        assert names == ["alpha.0", "alpha.1", "alpha.2"]
        assert rotation.latest() == rotation.slot(0)
        assert (rotation.latest() / "file.txt").read_text() == "run5"

    def test_shrunk_depth_drops_extra_slots(self, backup_root):
        for i in range(5):
            fill(backup_root / "alpha" / f"alpha.{i}")
        rotation = NumberedRotation(backup_root, "alpha", 2)

        rotation.prepare_destination()

        names = sorted(g.name for g in rotation.list_generations())
        assert names == ["alpha.0", "alpha.1"]


class TestRotationFor:
    def test_known_schemes(self, backup_root):
        assert isinstance(rotation_for("staged", backup_root, "a", 2), StagedRotation)
        assert isinstance(rotation_for("numbered", backup_root, "a", 2), NumberedRotation)

    def test_unknown_scheme(self, backup_root):
        with pytest.raises(ValueError):
            rotation_for("weekly", backup_root, "a", 2)

    def test_depth_must_be_positive(self, backup_root):
        with pytest.raises(ValueError):
            StagedRotation(backup_root, "a", 0)
