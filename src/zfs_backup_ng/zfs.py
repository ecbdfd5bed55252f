# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/zfs.py
Thin wrapper around the zfs command for snapshots and send streams.
"""

import os
import subprocess

from . import __util__
from .__logger__ import logger


class ZfsSnapshots:
    """Snapshot subsystem backed by the ``zfs`` command line tool."""

    def __init__(self, use_sudo=True, zfs_command="zfs") -> None:
        self.use_sudo = use_sudo
        self.zfs_command = zfs_command

    def __repr__(self) -> str:
        return f"ZfsSnapshots(use_sudo={self.use_sudo})"

    def list_snapshots(self, volume):
        """Return the names (without 'volume@') of all snapshots of a volume, sorted."""
        cmd = self._build_list_command(volume)
        output = self._exec_command(cmd)
        names = []
        for line in output.splitlines():
            line = line.strip()
            if not line:
                continue
            dataset, _, name = line.partition("@")
            # -d 1 already limits to this dataset, but be strict about it
            if dataset != volume or not name:
                continue
            names.append(name)
        names.sort()
        logger.debug("Found %d snapshot(s) of %s", len(names), volume)
        return names

    def create_snapshot(self, volume, name) -> None:
        logger.info("Creating snapshot %s@%s", volume, name)
        self._exec_command(self._build_snapshot_command(volume, name))

    def destroy_snapshot(self, volume, name) -> None:
        logger.info("Destroying snapshot %s@%s", volume, name)
        self._exec_command(self._build_destroy_command(volume, name))

    def extract_stream(self, volume, base, target, stderr=None):
        """Start 'zfs send' and return its Popen object, reading from stdout."""
        cmd = self._wrap(self._build_send_command(volume, base, target))
        logger.debug("Send command: %s", cmd)
        try:
            return __util__.exec_subprocess(
                cmd, method="Popen", stdout=subprocess.PIPE, stderr=stderr
            )
        except (OSError, __util__.AbortError) as e:
            raise __util__.SnapshotError(f"Could not start {cmd}: {e}") from e

    def _build_list_command(self, volume):
        return [
            self.zfs_command,
            "list",
            "-H",
            "-t",
            "snapshot",
            "-o",
            "name",
            "-d",
            "1",
            volume,
        ]

    def _build_snapshot_command(self, volume, name):
        return [self.zfs_command, "snapshot", f"{volume}@{name}"]

    def _build_destroy_command(self, volume, name):
        return [self.zfs_command, "destroy", f"{volume}@{name}"]

    def _build_send_command(self, volume, base, target):
        cmd = [self.zfs_command, "send"]
        if base:
            cmd += ["-i", f"@{base}"]
        cmd += [f"{volume}@{target}"]
        return cmd

    def _wrap(self, command):
        if self.use_sudo and os.geteuid() != 0:
            return ["sudo", "-n"] + command
        return command

    def _exec_command(self, command):
        command = self._wrap(command)
        try:
            return __util__.exec_subprocess(
                command, stderr=subprocess.PIPE, text=True
            )
        except subprocess.CalledProcessError as e:
            message = __util__.decode_stderr(e.stderr) or f"exit status {e.returncode}"
            logger.error("%s failed: %s", " ".join(command), message)
            raise __util__.SnapshotError(message) from e
        except __util__.AbortError as e:
            raise __util__.SnapshotError(str(e)) from e
