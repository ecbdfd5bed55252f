# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/endpoint/ssh.py
Remote store that is a directory on a host reachable over ssh.
"""

import posixpath
import shlex
import subprocess
from typing import Any, List

from zfs_backup_ng import __util__
from zfs_backup_ng.__logger__ import logger
from zfs_backup_ng.sshutil.master import SSHMasterManager

from .common import RemoteStore


class SSHRemoteStore(RemoteStore):
    """Store artifacts on a remote host, driving it with plain POSIX tools."""

    def __init__(self, config=None, **kwargs) -> None:
        super().__init__(config=config, **kwargs)
        self.config["path"] = str(self.config["path"] or ".")
        self.hostname = self.config["hostname"]
        self.ssh_manager = SSHMasterManager(
            hostname=self.hostname,
            username=self.config.get("username"),
            port=self.config.get("port"),
            ssh_opts=self.config.get("ssh_opts", []),
            identity_file=self.config.get("ssh_identity_file"),
        )

    def __repr__(self) -> str:
        return f"ssh://{self.ssh_manager.username}@{self.hostname}{self.config['path']}"

    def get_id(self) -> str:
        return repr(self)

    def close(self) -> None:
        self.ssh_manager.stop_master()

    def rename(self, source, destination) -> None:
        self._exec_remote_command(
            ["mv", "-f", "--", self._path(source), self._path(destination)]
        )
        logger.debug("Renamed %s -> %s on %s", source, destination, self.hostname)

    def delete(self, names) -> None:
        names = list(names)
        if not names:
            return
        self._exec_remote_command(
            ["rm", "-f", "--"] + [self._path(name) for name in names]
        )

    def _prepare(self) -> None:
        if not self.ssh_manager.start_master():
            raise __util__.TransportError(f"Cannot connect to {self.hostname}")
        self._exec_remote_command(["mkdir", "-p", "--", self.config["path"]])

    def _listdir(self):
        output = self._exec_remote_command(["ls", "-1A", "--", self.config["path"]])
        return [line for line in output.splitlines() if line.strip()]

    def _build_write_command(self, name):
        remote = f"cat > {shlex.quote(self._path(name))}"
        return self.ssh_manager.get_ssh_base_cmd() + [remote]

    def _build_remote_command(self, command: List[str]) -> List[str]:
        return self.ssh_manager.get_ssh_base_cmd() + [shlex.join(command)]

    def _exec_remote_command(self, command: List[str]) -> Any:
        cmd = self._build_remote_command(command)
        try:
            result = __util__.exec_subprocess(
                cmd, method="run", capture_output=True, text=True
            )
        except (OSError, __util__.AbortError) as e:
            raise __util__.TransportError(f"ssh to {self.hostname} failed: {e}") from e
        if result.returncode != 0:
            message = __util__.decode_stderr(result.stderr)
            logger.error(
                "Remote command %s on %s failed (%d): %s",
                command[0],
                self.hostname,
                result.returncode,
                message,
            )
            raise __util__.TransportError(
                f"{command[0]} on {self.hostname} failed: {message}"
            )
        return result.stdout

    def _path(self, name) -> str:
        if "/" in name:
            raise ValueError(f"Invalid object name: {name!r}")
        return posixpath.join(self.config["path"], name)
