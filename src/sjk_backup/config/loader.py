"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import logging
import os
import re
import tomllib
from pathlib import Path
from typing import Any

from .schema import ROTATION_SCHEMES, Config, GeneralConfig, HostConfig


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "sjk-backup" / "config.toml",
    Path("/usr/local/etc/sjk-backup.toml"),
    Path("/etc/sjk-backup/config.toml"),
]

# Host ids become file and directory names
HOST_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

# Legacy numeric verbosity: 0 errors only ... 5 everything
LEGACY_LOG_LEVELS = {
    0: "ERROR",
    1: "WARNING",
    2: "INFO",
    3: "INFO",
    4: "INFO",
    5: "DEBUG",
}


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def parse_log_level(value: Any) -> str:
    """Normalize a level name or legacy verbosity number to a level name."""
    if isinstance(value, bool):
        raise ConfigError(f"Invalid log_level: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ConfigError(f"Invalid log_level: {value}")
        return LEGACY_LOG_LEVELS.get(value, "DEBUG")
    if isinstance(value, str):
        name = value.strip().upper()
        if name.isdigit():
            return parse_log_level(int(name))
        if isinstance(logging.getLevelName(name), int):
            return name
    raise ConfigError(f"Invalid log_level: {value!r}")


def _require_int(data: dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"'{key}' must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigError(f"'{key}' must be at least {minimum}, got {value}")
    return value


def _require_bool(data: dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false, got {value!r}")
    return value


def _require_number(data: dict[str, Any], key: str, minimum: float) -> int | float:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{key}' must be a number, got {value!r}")
    if value < minimum:
        raise ConfigError(f"'{key}' must be at least {minimum}, got {value}")
    return value


def _string_list(value: Any, what: str) -> tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return tuple(value)
    raise ConfigError(f"{what} must be a string or a list of strings")


def _parse_general(data: dict[str, Any]) -> GeneralConfig:
    """Parse the [general] table."""
    for key in ("backup_root", "lock_directory"):
        if not data.get(key):
            raise ConfigError(f"No {key} defined in [general]")

    rotation = data.get("rotation", "staged")
    if rotation not in ROTATION_SCHEMES:
        raise ConfigError(
            f"Unknown rotation scheme {rotation!r} "
            f"(expected one of: {', '.join(ROTATION_SCHEMES)})"
        )

    return GeneralConfig(
        backup_root=str(data["backup_root"]),
        lock_directory=str(data["lock_directory"]),
        log_file=data.get("log_file"),
        log_level=parse_log_level(data.get("log_level", "INFO")),
        max_concurrent_rsyncs=_require_int(data, "max_concurrent_rsyncs", 2, 1),
        retries=_require_int(data, "retries", 3, 0),
        seconds_between_retries=_require_int(data, "seconds_between_retries", 60, 0),
        number_of_backups=_require_int(data, "number_of_backups", 7, 1),
        rotation=rotation,
        rsync_binary=data.get("rsync_binary", "rsync"),
        inplace=_require_bool(data, "inplace", False),
    )


def _parse_host(name: str, data: dict[str, Any]) -> HostConfig:
    """Parse a [backup.<name>] table."""
    if not HOST_ID_RE.match(name):
        raise ConfigError(f"Invalid host identifier: {name!r}")
    if not isinstance(data, dict):
        raise ConfigError(f"[backup.{name}] must be a table")
    if "path" not in data:
        raise ConfigError(f"Host '{name}' missing required 'path' field")

    paths = _string_list(data["path"], f"Host '{name}' path")
    if not paths:
        raise ConfigError(f"Host '{name}' has an empty 'path' list")

    host = data.get("host")
    user = data.get("user")
    if user and not host:
        raise ConfigError(f"Host '{name}' sets 'user' without 'host'")

    bwlimit = data.get("bwlimit")
    if bwlimit is not None:
        bwlimit = _require_number(data, "bwlimit", 0)

    number_of_backups = data.get("number_of_backups")
    if number_of_backups is not None:
        number_of_backups = _require_int(data, "number_of_backups", 1, 1)

    return HostConfig(
        name=name,
        paths=paths,
        host=host,
        user=user,
        exclude=_string_list(data.get("exclude", []), f"Host '{name}' exclude"),
        bwlimit=bwlimit,
        number_of_backups=number_of_backups,
        one_file_system=_require_bool(data, "one_file_system", True),
        enabled=_require_bool(data, "enabled", True),
    )


def _validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []

    if not config.hosts:
        warnings.append("No hosts configured")

    for host in config.hosts.values():
        if len(host.paths) != len(set(host.paths)):
            warnings.append(f"Host '{host.name}' has duplicate paths")
        if not host.enabled:
            warnings.append(f"Host '{host.name}' is disabled")

    return warnings


def load_config(path: Path | str) -> tuple[Config, list[str]]:
    """Load and validate configuration from TOML file.

    Args:
        path: Path to configuration file

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")

    if "general" not in data:
        raise ConfigError("Missing [general] section")

    general = _parse_general(data["general"])

    hosts = {}
    for name, host_data in data.get("backup", {}).items():
        hosts[name] = _parse_host(name, host_data)

    config = Config(general=general, hosts=hosts)

    # Validate and collect warnings
    warnings = _validate_config(config)

    return config, warnings


def check_paths(config: Config) -> None:
    """Check that backup_root and lock_directory are usable.

    Raises:
        ConfigError: If either directory is missing or not writable
    """
    root = Path(config.general.backup_root)
    if not root.exists():
        raise ConfigError(f"{root} does not exist")
    if not root.is_dir():
        raise ConfigError(f"{root} is not a directory")
    if not os.access(root, os.W_OK):
        raise ConfigError(f"{root} is not writable by us")

    lock_dir = Path(config.general.lock_directory)
    if not lock_dir.is_dir():
        raise ConfigError(f"{lock_dir} does not exist. Please create it.")
    if not os.access(lock_dir, os.W_OK):
        raise ConfigError(f"{lock_dir} is not writable")


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# sjk-backup configuration

[general]
backup_root = "/srv/backup"
lock_directory = "/var/run/sjk-backup"
log_file = "/var/log/sjk-backup.log"
log_level = "INFO"

max_concurrent_rsyncs = 2
retries = 3
seconds_between_retries = 60

# Default number of generations kept per host
number_of_backups = 7

# "staged": timestamped snapshots published by rename + latest symlink
# "numbered": fixed slots host.0 (newest) .. host.N-1
rotation = "staged"

# Local backup
[backup.localhost]
path = ["/etc", "/home"]
exclude = ["*.tmp", ".cache/"]
number_of_backups = 3

# Remote backup over ssh
# [backup.webserver]
# host = "web1.example.org"
# user = "root"
# path = ["/etc", "/var/www"]
# bwlimit = 5000
# number_of_backups = 14
"""
