"""Shared CLI utilities and argument parsers."""

import argparse
import logging
from pathlib import Path

from ..config import Config, ConfigError, find_config_file, load_config

logger = logging.getLogger(__name__)


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )


def get_log_level(args: argparse.Namespace, default: str = "INFO") -> str:
    """Determine log level from parsed arguments.

    Args:
        args: Parsed command line arguments
        default: Level used when no verbosity flag was given

    Returns:
        Log level string (DEBUG, INFO, WARNING, ERROR)
    """
    if getattr(args, "debug", False):
        return "DEBUG"
    elif getattr(args, "quiet", False):
        return "WARNING"
    elif getattr(args, "verbose", False):
        return "DEBUG"
    else:
        return default


def load_config_from_args(args: argparse.Namespace) -> tuple[Config, Path] | None:
    """Find and load the configuration named by ``--config``.

    Problems are reported and None returned.
    """
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            print("Create one with: sjk-backup config init")
            return None

        config, warnings = load_config(config_path)
        for warning in warnings:
            logger.warning("Config: %s", warning)

    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return None

    return config, config_path
