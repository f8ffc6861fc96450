"""Run command: Back up every configured host, or a single one."""

import argparse
import logging
import shlex

from ..__logger__ import create_logger
from ..config import Config, ConfigError, check_paths
from ..core import RotationManager, Scheduler, ShutdownHook, build_rsync_command
from .common import get_log_level, load_config_from_args

logger = logging.getLogger(__name__)


def execute_run(args: argparse.Namespace) -> int:
    """Execute the run command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    # Initialize logger
    create_logger(get_log_level(args))

    loaded = load_config_from_args(args)
    if loaded is None:
        return 1
    config, config_path = loaded

    # Reconfigure with the configured log file and level
    create_logger(get_log_level(args, config.general.log_level), config.general.log_file)
    logger.debug("Loaded configuration from: %s", config_path)

    try:
        check_paths(config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    machine = getattr(args, "machine", None)
    if machine is not None and config.get_host(machine) is None:
        logger.error("%s is not in the config file", machine)
        return 1

    if not config.hosts:
        logger.error("No hosts configured")
        return 1

    if getattr(args, "dry_run", False):
        return _dry_run(config, machine)

    scheduler = Scheduler(config)
    with ShutdownHook(scheduler):
        summary = scheduler.run(only=machine)

    if machine is not None and summary.skipped:
        logger.error("Could not lock %s - is a backup already running?", machine)
        return 1

    return summary.exit_code


def _dry_run(config: Config, machine: str | None) -> int:
    """Show what would be done without making changes."""
    print("Dry run mode - showing what would be done:")
    print("")

    scheduler = Scheduler(config)
    hosts = [config.hosts[machine]] if machine else config.get_enabled_hosts()
    for host in hosts:
        rotation: RotationManager = scheduler.rotation(host)
        locked = " (locked)" if scheduler.locks.is_locked(host.name) else ""
        print(f"Host: {host.name}{locked}")
        print(f"  Rotation: {rotation.scheme}, keeping {rotation.depth}")

        destination = rotation.host_dir / f"{host.name}.<new>"
        link_dest = rotation.latest()
        for path in host.paths:
            cmd = build_rsync_command(
                host,
                path,
                destination,
                link_dest=link_dest,
                rsync_binary=config.general.rsync_binary,
                inplace=config.general.inplace,
            )
            print(f"  {shlex.join(cmd)}")
        print("")

    return 0
