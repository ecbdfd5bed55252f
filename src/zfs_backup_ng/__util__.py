# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/__util__.py
Common utility code shared between modules.
"""

import os
import subprocess

from .__logger__ import logger


class AbortError(Exception):
    """Exception where zfs-backup-ng should abort."""


class AlreadyRunningError(AbortError):
    """Another instance holds the singleton lock."""

    def __init__(self, lock_file, pid) -> None:
        super().__init__(f"Already running with pid {pid} (lock file {lock_file})")
        self.lock_file = lock_file
        self.pid = pid


class SkipVolume(Exception):
    """The current volume is skipped without any state being changed."""


class DuplicateSnapshotError(SkipVolume):
    """The snapshot about to be created already exists."""


class NoSnapshotError(SkipVolume):
    """No snapshot matching the naming pattern exists for the volume."""


class NoNewDataError(SkipVolume):
    """The newest snapshot is already backed up."""


class SnapshotError(Exception):
    """A snapshot subsystem command failed."""


class TransportError(Exception):
    """A remote store operation failed."""


class ChainError(Exception):
    """An artifact would break the backup chain."""


class MalformedArtifactName(ValueError):
    """A remote file name doesn't follow the artifact grammar."""


class NoFullBackupWarning(UserWarning):
    """Pruning was requested but the chain has no full backup to anchor on."""


class Interrupted(KeyboardInterrupt):
    """Raised from a signal handler to unwind the run."""

    def __init__(self, signum) -> None:
        super().__init__(f"Received signal {signum}")
        self.signum = signum


def exec_subprocess(command, method="check_output", **kwargs):
    """Run a command, logging it and translating failures.

    ``method`` names the ``subprocess`` callable to use (``check_output``,
    ``check_call``, ``run`` or ``Popen``).
    """
    logger.debug("Executing: %s", command)
    func = getattr(subprocess, method)
    try:
        return func(command, **kwargs)
    except subprocess.CalledProcessError as e:
        logger.debug("Command %s failed with %d: %r", command, e.returncode, e.stderr)
        raise
    except FileNotFoundError as e:
        logger.error("Command not found: %s", command[0])
        raise AbortError(f"Command not found: {command[0]}") from e


def pid_alive(pid: int) -> bool:
    """Return whether a process with the given pid exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, but owned by somebody else
        return True
    return True


def log_heading(caption: str) -> str:
    """Formatted heading for logging output sections."""
    return f"{'-' * 10} {caption} {'-' * 10}"


def decode_stderr(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace").strip()
    return str(data).strip()
