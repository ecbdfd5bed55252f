"""ssh connection helpers for zfs-backup-ng."""
