# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/endpoint/common.py
Common functionality among remote stores.
"""

import subprocess

from zfs_backup_ng import __util__
from zfs_backup_ng.__logger__ import logger


class RemoteStore:
    """Generic structure of a remote artifact store.

    The core only ever needs four operations: list names, stream-write an
    object, rename it and delete a batch of objects. Failures of any of
    them raise ``TransportError``.
    """

    def __init__(self, config=None, **kwargs) -> None:
        """
        Initialize the store with a configuration dictionary.

        Args:
            config (dict): Configuration dictionary containing store settings.
            kwargs: Additional keyword arguments overriding config entries.
        """
        config = config or {}
        self.config = {}
        self.config["path"] = config.get("path")

        for key, value in kwargs.items():
            self.config[key] = value

    def __repr__(self) -> str:
        return f"{self.config['path']}"

    def get_id(self) -> str:
        """Return an id string to identify this store over multiple runs."""
        return f"unknown://{self.config['path']}"

    def prepare(self):
        """Public access to _prepare, which is called after creating a store."""
        logger.debug("Preparing remote store %r ...", self)
        return self._prepare()

    def close(self) -> None:
        """Release connections held by the store."""

    def list_names(self, prefix=""):
        """Return all object names starting with ``prefix``, sorted."""
        names = [name for name in self._listdir() if name.startswith(prefix)]
        names.sort()
        logger.debug("%r: %d name(s) with prefix %r", self, len(names), prefix)
        return names

    def write(self, name, stdin, stderr=None):
        """Start a process storing everything read from ``stdin`` as ``name``.

        Returns:
            The Popen object of the writing process.
        """
        cmd = self._build_write_command(name)
        logger.debug("Write command: %s", cmd)
        try:
            return __util__.exec_subprocess(
                cmd,
                method="Popen",
                stdin=stdin,
                stdout=subprocess.DEVNULL,
                stderr=stderr,
            )
        except (OSError, __util__.AbortError) as e:
            raise __util__.TransportError(f"Could not start {cmd}: {e}") from e

    def rename(self, source, destination) -> None:
        """Atomically rename an object."""
        raise NotImplementedError

    def delete(self, names) -> None:
        """Delete a batch of objects; missing objects are not an error."""
        raise NotImplementedError

    # The following methods may be implemented by stores unless the
    # default behaviour is wanted.

    def _prepare(self) -> None:
        """Called after store creation for additional checks."""
        pass

    def _listdir(self):
        raise NotImplementedError

    def _build_write_command(self, name):
        raise NotImplementedError
