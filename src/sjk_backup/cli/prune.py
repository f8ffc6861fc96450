"""Prune command: Apply retention depth to existing generations."""

import argparse
import logging
import time

from .. import __util__
from ..__logger__ import create_logger
from ..config import ConfigError, check_paths
from ..core import Scheduler
from .common import get_log_level, load_config_from_args

logger = logging.getLogger(__name__)


def execute_prune(args: argparse.Namespace) -> int:
    """Execute the prune command.

    Hosts whose lock is held are left alone.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    create_logger(get_log_level(args))

    loaded = load_config_from_args(args)
    if loaded is None:
        return 1
    config, _ = loaded
    create_logger(get_log_level(args, config.general.log_level), config.general.log_file)

    try:
        check_paths(config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    dry_run = getattr(args, "dry_run", False)
    if dry_run:
        logger.info("Dry run mode - showing what would be deleted")

    logger.info(__util__.log_heading(f"Pruning generations at {time.ctime()}"))

    scheduler = Scheduler(config)
    total_deleted = 0
    errors = 0

    for host in config.hosts.values():
        rotation = scheduler.rotation(host)
        try:
            with scheduler.locks.hold(host.name):
                deleted = rotation.trim(dry_run=dry_run)
        except __util__.HostLockedError as e:
            logger.info("Skipping %s: %s", host.name, e)
            continue
        except (__util__.LockError, OSError) as e:
            logger.error("Pruning %s failed: %s", host.name, e)
            errors += 1
            continue
        logger.info("%s: %d generation(s) removed", host.name, len(deleted))
        total_deleted += len(deleted)

    verb = "would be removed" if dry_run else "removed"
    logger.info("Total: %d generation(s) %s", total_deleted, verb)

    return 1 if errors else 0
