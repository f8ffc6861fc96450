"""List command: Show generations, locks and staging areas per host."""

import argparse
import json
import logging

from rich.console import Console
from rich.table import Table

from .. import __util__
from ..__logger__ import create_logger
from ..core import LockManager, rotation_for
from .common import get_log_level, load_config_from_args

logger = logging.getLogger(__name__)


def execute_list(args: argparse.Namespace) -> int:
    """Execute the list command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    create_logger(get_log_level(args, "WARNING"))

    loaded = load_config_from_args(args)
    if loaded is None:
        return 1
    config, _ = loaded

    locks = LockManager(config.general.lock_directory)
    rows = []
    for host in config.hosts.values():
        rotation = rotation_for(
            config.general.rotation,
            config.general.backup_root,
            host.name,
            config.get_retention_depth(host),
        )
        latest = rotation.latest()
        try:
            pid = locks.read_pid(host.name) if locks.is_locked(host.name) else None
        except __util__.LockError as e:
            logger.warning("%s", e)
            pid = None
        rows.append(
            {
                "host": host.name,
                "enabled": host.enabled,
                "locked": locks.is_locked(host.name),
                "pid": pid,
                "depth": rotation.depth,
                "generations": [g.name for g in rotation.list_generations()],
                "latest": latest.name if latest else None,
                "unfinished": [p.name for p in rotation.list_unfinished()],
            }
        )

    if getattr(args, "json", False):
        print(json.dumps(rows, indent=2))
        return 0

    table = Table(title=f"Backups in {config.general.backup_root}")
    table.add_column("Host")
    table.add_column("Lock")
    table.add_column("Kept", justify="right")
    table.add_column("Latest")
    table.add_column("Unfinished")
    for row in rows:
        lock = "-"
        if row["locked"]:
            lock = f"pid {row['pid']}" if row["pid"] is not None else "held"
        name = row["host"] if row["enabled"] else f"{row['host']} (disabled)"
        table.add_row(
            name,
            lock,
            f"{len(row['generations'])}/{row['depth']}",
            row["latest"] or "-",
            ", ".join(row["unfinished"]) or "-",
        )
    Console().print(table)
    return 0
