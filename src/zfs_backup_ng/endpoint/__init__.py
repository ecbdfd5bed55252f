# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/endpoint/__init__.py."""

import getpass
import urllib.parse
from pathlib import Path

from ..__logger__ import logger

from .common import RemoteStore
from .local import LocalRemoteStore
from .ssh import SSHRemoteStore

__all__ = ["RemoteStore", "LocalRemoteStore", "SSHRemoteStore", "choose_endpoint"]


def choose_endpoint(spec, common_config=None):
    """
    Chooses a suitable remote store based on the specification given.

    Args:
        spec (str): The destination (e.g., "ssh://user@host:2222/backups" or "/mnt/backup").
        common_config (dict): Settings shared by all stores (e.g. "ssh_identity_file").

    Returns:
        RemoteStore: An instance of the appropriate ``RemoteStore`` subclass.

    Raises:
        ValueError: If no store can be created for the given specification.
    """
    config = dict(common_config or {})

    if not spec:
        raise ValueError("No destination specified.")

    if spec.startswith("ssh://"):
        parsed = urllib.parse.urlparse(spec)
        if not parsed.hostname:
            raise ValueError("No hostname for SSH specified.")

        config["hostname"] = parsed.hostname
        config["port"] = parsed.port
        config["username"] = parsed.username or getpass.getuser()
        # Keep the raw remote path, it must not be resolved locally
        config["path"] = parsed.path.strip() or "."

        logger.debug("SSH destination: %s", config)
        return SSHRemoteStore(config=config)

    if "://" in spec:
        raise ValueError(f"No remote store could be generated for: {spec}")

    config["path"] = Path(spec)
    return LocalRemoteStore(config=config)
