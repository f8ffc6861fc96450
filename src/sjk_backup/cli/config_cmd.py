"""Config command: Configuration management."""

import argparse
import logging
import sys

from ..__logger__ import create_logger
from ..config import ConfigError, check_paths, find_config_file, load_config
from ..config.loader import CONFIG_PATHS, generate_example_config
from .common import get_log_level

logger = logging.getLogger(__name__)


def execute_config(args: argparse.Namespace) -> int:
    """Execute the config command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    create_logger(get_log_level(args))

    action = getattr(args, "config_action", None)

    if action == "validate":
        return _validate_config(args)
    elif action == "init":
        return _init_config(args)
    else:
        print("Usage: sjk-backup config <validate|init>")
        return 1


def _validate_config(args: argparse.Namespace) -> int:
    """Validate configuration file."""
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            print("Searched locations:")
            for path in CONFIG_PATHS:
                print(f"  {path}")
            return 1

        print(f"Validating: {config_path}")
        config, warnings = load_config(config_path)

        if warnings:
            print("")
            print("Warnings:")
            for warning in warnings:
                print(f"  - {warning}")

        try:
            check_paths(config)
        except ConfigError as e:
            print("")
            print(f"Warning: {e}")

        print("")
        print("Configuration is valid.")
        print(f"  Hosts: {len(config.hosts)}")
        print(f"  Enabled: {len(config.get_enabled_hosts())}")
        print(f"  Rotation: {config.general.rotation}")

        total_paths = sum(len(h.paths) for h in config.hosts.values())
        print(f"  Paths: {total_paths}")

        return 0

    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1


def _init_config(args: argparse.Namespace) -> int:
    """Generate example configuration."""
    content = generate_example_config()

    output = getattr(args, "output", None)
    if output:
        try:
            with open(output, "w", encoding="utf-8") as f:
                f.write(content)
            print(f"Configuration written to: {output}")
        except OSError as e:
            print(f"Error writing config: {e}", file=sys.stderr)
            return 1
    else:
        print(content)

    return 0
