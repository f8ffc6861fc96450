"""Pytest configuration and shared fixtures."""

from datetime import datetime, timedelta

import pytest

from sjk_backup.config import Config, GeneralConfig, HostConfig


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def backup_root(tmp_path):
    root = tmp_path / "backup"
    root.mkdir()
    return root


@pytest.fixture
def lock_dir(tmp_path):
    locks = tmp_path / "locks"
    locks.mkdir()
    return locks


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
[general]
backup_root = "/srv/backup"
lock_directory = "/var/run/sjk-backup"
log_file = "/var/log/sjk-backup.log"
log_level = 5
max_concurrent_rsyncs = 3
retries = 2
seconds_between_retries = 30
number_of_backups = 10

[backup.localhost]
path = ["/etc", "/home/"]
exclude = ["*.tmp"]
number_of_backups = 3

[backup.webserver]
host = "web1.example.org"
user = "root"
path = "/var/www"
bwlimit = 5000
one_file_system = false
"""


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid TOML configuration string."""
    return """
[general]
backup_root = "/srv/backup"
lock_directory = "/var/run/sjk-backup"

[backup.localhost]
path = ["/etc"]
"""


@pytest.fixture
def config_file(tmp_config_dir, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path


@pytest.fixture
def minimal_config_file(tmp_config_dir, minimal_config_toml):
    """Create a temporary config file with minimal content."""
    config_path = tmp_config_dir / "minimal.toml"
    config_path.write_text(minimal_config_toml)
    return config_path


@pytest.fixture
def make_config(backup_root, lock_dir):
    """Build a Config pointing at the temporary directories."""

    def _make(hosts, **general):
        settings = {
            "backup_root": str(backup_root),
            "lock_directory": str(lock_dir),
            "max_concurrent_rsyncs": 2,
            "retries": 0,
            "seconds_between_retries": 0,
            "number_of_backups": 3,
        }
        settings.update(general)
        return Config(
            general=GeneralConfig(**settings),
            hosts={h.name: h for h in hosts},
        )

    return _make


@pytest.fixture
def clock():
    """A clock advancing one hour per call."""
    state = {"now": datetime(2026, 1, 1, 3, 0, 0)}

    def _now():
        current = state["now"]
        state["now"] = current + timedelta(hours=1)
        return current

    return _now


@pytest.fixture
def local_host():
    return HostConfig(name="localhost", paths=("/etc",))
