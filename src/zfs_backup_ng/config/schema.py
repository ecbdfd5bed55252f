"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults.
"""

from dataclasses import dataclass, field
from typing import Optional

DEFAULT_COMPRESS = ["gzip", "-c"]
DEFAULT_ENCRYPT = [
    "gpg",
    "--batch",
    "--yes",
    "--symmetric",
    "--cipher-algo",
    "AES256",
    "--passphrase-file",
    "/etc/zfs-backup-ng/passphrase",
]


@dataclass
class RetentionConfig:
    """Retention policy configuration.

    Attributes:
        policy: "latest-full" keeps everything from a full backup onward,
            "keep-all" disables pruning
        keep_chains: Number of full backup chains to keep with "latest-full"
    """

    policy: str = "latest-full"
    keep_chains: int = 1


@dataclass
class VolumeConfig:
    """Volume backup configuration.

    Attributes:
        name: Dataset to back up (e.g., "tank/home")
        full_backup_interval: Per-volume override of the global interval
        self_managed_snapshots: Per-volume override of the global mode
        enabled: Whether this volume is enabled for backup
    """

    name: str
    full_backup_interval: Optional[int] = None
    self_managed_snapshots: Optional[bool] = None
    enabled: bool = True

    def __post_init__(self):
        self.name = self.name.strip("/")


@dataclass
class GlobalConfig:
    """Global configuration settings.

    Attributes:
        destination: Remote store (local path or ssh://user@host[:port]/path)
        ssh_key: Private key used for ssh destinations
        full_backup_interval: Number of artifacts from one full backup to the next
        snapshot_prefix: Prefix of snapshot names
        snapshot_timestamp_format: strftime format; must sort chronologically
        self_managed_snapshots: Create and destroy snapshots ourselves
        flatten_char: Replaces '/' in volume names for remote file names
        compress: Compression command, reads stdin and writes stdout
        encrypt: Encryption command, reads stdin and writes stdout
        use_sudo: Prefix zfs commands with "sudo -n" when not root
        lock_file: Pid file guarding against concurrent runs
        work_dir: Parent directory for the per-run working directory
        transaction_log: Path to JSON-lines transaction log (None to disable)
        log_file: Path to log file (None for no file logging)
        stage_timeout: Seconds to wait for each pipeline stage (None waits forever)
        retention: Retention policy
    """

    destination: Optional[str] = None
    ssh_key: Optional[str] = None
    full_backup_interval: int = 14
    snapshot_prefix: str = "bak-"
    snapshot_timestamp_format: str = "%Y%m%d-%H%M"
    self_managed_snapshots: bool = False
    flatten_char: str = "_"
    compress: list[str] = field(default_factory=lambda: list(DEFAULT_COMPRESS))
    encrypt: list[str] = field(default_factory=lambda: list(DEFAULT_ENCRYPT))
    use_sudo: bool = True
    lock_file: str = "/run/zfs-backup-ng.pid"
    work_dir: Optional[str] = None
    transaction_log: Optional[str] = None
    log_file: Optional[str] = None
    stage_timeout: Optional[float] = None
    retention: RetentionConfig = field(default_factory=RetentionConfig)


@dataclass
class Config:
    """Root configuration object.

    Attributes:
        global_config: Global settings that apply to all volumes
        volumes: List of volume configurations
    """

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    volumes: list[VolumeConfig] = field(default_factory=list)

    def get_full_backup_interval(self, volume: VolumeConfig) -> int:
        """Volume-specific interval overrides the global one."""
        if volume.full_backup_interval is not None:
            return volume.full_backup_interval
        return self.global_config.full_backup_interval

    def is_self_managed(self, volume: VolumeConfig) -> bool:
        if volume.self_managed_snapshots is not None:
            return volume.self_managed_snapshots
        return self.global_config.self_managed_snapshots

    def get_enabled_volumes(self) -> list[VolumeConfig]:
        """Get list of enabled volumes."""
        return [v for v in self.volumes if v.enabled]
