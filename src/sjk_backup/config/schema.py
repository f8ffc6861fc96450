"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults.
All objects are frozen: settings are loaded once and passed explicitly
to the scheduler and its workers.
"""

from dataclasses import dataclass, field
from typing import Optional

from .. import strip_trailing_slash

ROTATION_SCHEMES = ("staged", "numbered")


@dataclass(frozen=True)
class HostConfig:
    """Backup configuration for a single host.

    Attributes:
        name: Unique host identifier, used for lock and directory names
        paths: Source paths to back up, in order
        host: Remote host name (None for the local filesystem)
        user: Remote user name
        exclude: rsync exclude patterns
        bwlimit: Bandwidth limit passed to rsync (KiB/s)
        number_of_backups: Host-specific retention depth (overrides global)
        one_file_system: Do not cross filesystem boundaries
        enabled: Whether this host takes part in full runs
    """

    name: str
    paths: tuple[str, ...]
    host: Optional[str] = None
    user: Optional[str] = None
    exclude: tuple[str, ...] = ()
    bwlimit: Optional[float] = None
    number_of_backups: Optional[int] = None
    one_file_system: bool = True
    enabled: bool = True

    @property
    def is_remote(self) -> bool:
        return self.host is not None

    def source_for(self, path: str) -> str:
        """Return the rsync source spec for one of this host's paths."""
        path = strip_trailing_slash(path)
        if not self.is_remote:
            return path
        if self.user:
            return f"{self.user}@{self.host}:{path}"
        return f"{self.host}:{path}"


@dataclass(frozen=True)
class GeneralConfig:
    """Global configuration settings.

    Attributes:
        backup_root: Directory holding one subdirectory per host
        lock_directory: Directory holding the per-host lock markers
        log_file: Path to log file (None for console only)
        log_level: Logging level name
        max_concurrent_rsyncs: Max concurrent host jobs
        retries: Extra attempts after a failed rsync
        seconds_between_retries: Delay between attempts
        number_of_backups: Default retention depth
        rotation: Generation scheme, "staged" or "numbered"
        rsync_binary: rsync executable to invoke
        inplace: Pass --inplace to rsync
    """

    backup_root: str
    lock_directory: str
    log_file: Optional[str] = None
    log_level: str = "INFO"
    max_concurrent_rsyncs: int = 2
    retries: int = 3
    seconds_between_retries: int = 60
    number_of_backups: int = 7
    rotation: str = "staged"
    rsync_binary: str = "rsync"
    inplace: bool = False


@dataclass(frozen=True)
class Config:
    """Root configuration object.

    Attributes:
        general: Global settings
        hosts: Host configurations keyed by identifier, in file order
    """

    general: GeneralConfig
    hosts: dict[str, HostConfig] = field(default_factory=dict)

    def get_retention_depth(self, host: HostConfig) -> int:
        """Get the effective retention depth for a host.

        Host-specific depth overrides the global default.
        """
        return host.number_of_backups or self.general.number_of_backups

    def get_enabled_hosts(self) -> list[HostConfig]:
        """Get list of enabled hosts."""
        return [h for h in self.hosts.values() if h.enabled]

    def get_host(self, name: str) -> Optional[HostConfig]:
        return self.hosts.get(name)
