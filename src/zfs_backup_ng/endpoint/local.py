# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/endpoint/local.py
Remote store that is a directory on a locally mounted file system.
"""

import os
from pathlib import Path

from zfs_backup_ng import __util__
from zfs_backup_ng.__logger__ import logger

from .common import RemoteStore


class LocalRemoteStore(RemoteStore):
    """Store artifacts in a local (or locally mounted) directory."""

    def __init__(self, config=None, **kwargs) -> None:
        super().__init__(config=config, **kwargs)
        self.config["path"] = Path(self.config["path"]).expanduser().resolve()

    def get_id(self):
        """Return an id string to identify this store over multiple runs."""
        return str(self.config["path"])

    def rename(self, source, destination) -> None:
        try:
            os.replace(self._path(source), self._path(destination))
        except OSError as e:
            raise __util__.TransportError(
                f"Renaming {source} to {destination} failed: {e}"
            ) from e
        logger.debug("Renamed %s -> %s", source, destination)

    def delete(self, names) -> None:
        failed = []
        for name in names:
            try:
                self._path(name).unlink(missing_ok=True)
            except OSError as e:
                logger.error("Error deleting %s: %s", name, e)
                failed.append(name)
        if failed:
            raise __util__.TransportError(f"Could not delete: {', '.join(failed)}")

    def _prepare(self) -> None:
        path = self.config["path"]
        if not path.is_dir():
            logger.info("Creating directory: %s", path)
            try:
                path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error("Error creating new location %s: %s", path, e)
                raise __util__.AbortError from e

    def _listdir(self):
        try:
            return [item.name for item in self.config["path"].iterdir()]
        except OSError as e:
            raise __util__.TransportError(
                f"Cannot list {self.config['path']}: {e}"
            ) from e

    def _build_write_command(self, name):
        return ["sh", "-c", 'exec cat > "$1"', "sh", str(self._path(name))]

    def _path(self, name) -> Path:
        if "/" in name:
            raise ValueError(f"Invalid object name: {name!r}")
        return self.config["path"] / name
