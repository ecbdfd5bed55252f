"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import tomllib
from pathlib import Path
from typing import Any

from .schema import (
    DEFAULT_COMPRESS,
    DEFAULT_ENCRYPT,
    Config,
    GlobalConfig,
    RetentionConfig,
    VolumeConfig,
)


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "zfs-backup-ng" / "config.toml",
    Path("/etc/zfs-backup-ng/config.toml"),
]

RETENTION_POLICIES = ("latest-full", "keep-all")


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


def _parse_command(data: dict[str, Any], key: str, default: list[str]) -> list[str]:
    value = data.get(key, default)
    if isinstance(value, str):
        value = value.split()
    if not isinstance(value, list) or not value:
        raise ConfigError(f"'{key}' must be a non-empty command list")
    return [str(part) for part in value]


def _parse_retention(data: dict[str, Any]) -> RetentionConfig:
    """Parse retention configuration from dict."""
    policy = data.get("policy", "latest-full")
    if policy not in RETENTION_POLICIES:
        raise ConfigError(
            f"Unknown retention policy '{policy}' "
            f"(expected one of: {', '.join(RETENTION_POLICIES)})"
        )

    keep_chains = data.get("keep_chains", 1)
    if not isinstance(keep_chains, int) or keep_chains < 1:
        raise ConfigError("'keep_chains' must be a positive integer")

    return RetentionConfig(policy=policy, keep_chains=keep_chains)


def _parse_volume(data: dict[str, Any] | str) -> VolumeConfig:
    """Parse volume configuration from dict (or bare dataset name)."""
    if isinstance(data, str):
        return VolumeConfig(name=data)

    if "name" not in data:
        raise ConfigError("Volume missing required 'name' field")

    return VolumeConfig(
        name=data["name"],
        full_backup_interval=data.get("full_backup_interval"),
        self_managed_snapshots=data.get("self_managed_snapshots"),
        enabled=data.get("enabled", True),
    )


def _parse_global(data: dict[str, Any]) -> GlobalConfig:
    """Parse global configuration from dict."""
    retention = RetentionConfig()
    if "retention" in data:
        retention = _parse_retention(data["retention"])

    return GlobalConfig(
        destination=data.get("destination"),
        ssh_key=data.get("ssh_key"),
        full_backup_interval=data.get("full_backup_interval", 14),
        snapshot_prefix=data.get("snapshot_prefix", "bak-"),
        snapshot_timestamp_format=data.get(
            "snapshot_timestamp_format", "%Y%m%d-%H%M"
        ),
        self_managed_snapshots=data.get("self_managed_snapshots", False),
        flatten_char=data.get("flatten_char", "_"),
        compress=_parse_command(data, "compress", DEFAULT_COMPRESS),
        encrypt=_parse_command(data, "encrypt", DEFAULT_ENCRYPT),
        use_sudo=data.get("use_sudo", True),
        lock_file=data.get("lock_file", "/run/zfs-backup-ng.pid"),
        work_dir=data.get("work_dir"),
        transaction_log=data.get("transaction_log"),
        log_file=data.get("log_file"),
        stage_timeout=data.get("stage_timeout"),
        retention=retention,
    )


def _validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of warnings."""
    warnings = []
    global_config = config.global_config

    if not config.volumes:
        warnings.append("No volumes configured")

    if not global_config.destination:
        warnings.append("No destination configured")

    volume_names = [v.name for v in config.volumes]
    if len(volume_names) != len(set(volume_names)):
        warnings.append("Duplicate volume names detected")

    intervals = [global_config.full_backup_interval] + [
        v.full_backup_interval
        for v in config.volumes
        if v.full_backup_interval is not None
    ]
    if any(interval < 1 for interval in intervals):
        warnings.append("full_backup_interval below 1 is treated as 1")

    # Lexicographic order of snapshot names must match chronological order
    if not global_config.snapshot_timestamp_format.startswith("%Y"):
        warnings.append(
            f"Timestamp format '{global_config.snapshot_timestamp_format}' "
            "may not sort chronologically; it should start with %Y"
        )

    if global_config.flatten_char in ("/", "-", ".", "#"):
        warnings.append(
            f"flatten_char '{global_config.flatten_char}' clashes with "
            "the artifact naming scheme"
        )

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

    global_config = _parse_global(data.get("global", {}))

    volumes = []
    for vol_data in data.get("volumes", []):
        volumes.append(_parse_volume(vol_data))

    config = Config(global_config=global_config, volumes=volumes)

    warnings = _validate_config(config)

    return config, warnings


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# zfs-backup-ng configuration
# See documentation for full options

[global]
destination = "ssh://backup@nas/backups/zfs"
ssh_key = "/root/.ssh/backup_ed25519"

# A full backup every 14 artifacts, incrementals in between
full_backup_interval = 14

# Snapshot names are <prefix><timestamp>; the format must sort chronologically
snapshot_prefix = "bak-"
snapshot_timestamp_format = "%Y%m%d-%H%M"

# true: take and destroy snapshots ourselves
# false: only back up snapshots created elsewhere that match the prefix
self_managed_snapshots = false

compress = ["gzip", "-c"]
encrypt = ["gpg", "--batch", "--yes", "--symmetric", "--cipher-algo", "AES256",
           "--passphrase-file", "/etc/zfs-backup-ng/passphrase"]

lock_file = "/run/zfs-backup-ng.pid"
# transaction_log = "/var/log/zfs-backup-ng/transactions.jsonl"
# log_file = "/var/log/zfs-backup-ng/zfs-backup-ng.log"

[global.retention]
policy = "latest-full"   # or "keep-all"
keep_chains = 1

[[volumes]]
name = "tank/home"

# [[volumes]]
# name = "tank/var/log"
# full_backup_interval = 7
# self_managed_snapshots = true
"""
