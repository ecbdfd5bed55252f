"""Command line interface for zfs-backup-ng."""

from .dispatcher import main

__all__ = ["main"]
