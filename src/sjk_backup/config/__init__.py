"""Configuration system for sjk-backup.

This module provides TOML-based configuration loading, validation,
and schema definitions for the backup orchestrator.
"""

from .loader import ConfigError, check_paths, find_config_file, load_config
from .schema import Config, GeneralConfig, HostConfig

__all__ = [
    "GeneralConfig",
    "HostConfig",
    "Config",
    "load_config",
    "find_config_file",
    "check_paths",
    "ConfigError",
]
