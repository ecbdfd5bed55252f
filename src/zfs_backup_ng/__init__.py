"""zfs-backup-ng: zfs_backup_ng/__init__.py."""


__version__ = "0.1.0"


def flatten_volume_name(volume: str, flatten_char: str = "_") -> str:
    """Replace '/' with flatten_char and remove leading slash"""
    return str(volume).strip("/").replace("/", flatten_char)
