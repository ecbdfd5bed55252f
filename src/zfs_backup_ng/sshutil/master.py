import getpass
import os
import subprocess
import threading
from pathlib import Path
from typing import List, Optional

from zfs_backup_ng.__logger__ import logger


class SSHMasterManager:
    """Share one authenticated ssh connection between all remote commands.

    Every list, write, rename and delete of a run goes through the
    ControlMaster socket, so the remote host authenticates us once.
    """

    # Runs are unattended: never prompt, fail fast on dead links
    BASE_OPTIONS = (
        "ControlMaster=auto",
        "ServerAliveInterval=5",
        "ServerAliveCountMax=6",
        "ConnectTimeout=30",
        "StrictHostKeyChecking=accept-new",
        "BatchMode=yes",
    )

    def __init__(
        self,
        hostname: str,
        username: Optional[str] = None,
        port: Optional[int] = None,
        ssh_opts: Optional[List[str]] = None,
        control_dir: Optional[str] = None,
        persist: str = "60",
        identity_file: Optional[str] = None,
    ):
        self.hostname = hostname
        self.username = username or getpass.getuser()
        self.port = port
        self.ssh_opts = list(ssh_opts or [])
        self.persist = persist
        self.identity_file = identity_file
        self.control_dir = (
            Path(control_dir) if control_dir else Path.home() / ".ssh" / "controlmasters"
        )
        # one socket per process and thread, never shared between runs
        instance = f"{os.getpid()}_{threading.get_ident()}"
        self.control_path = (
            self.control_dir / f"zb_{self.username}_{self.hostname}_{instance}.sock"
        )
        self._lock = threading.Lock()
        self._master_started = False

    @property
    def destination(self) -> str:
        return f"{self.username}@{self.hostname}"

    def get_ssh_base_cmd(self) -> List[str]:
        """Return the ssh command line up to (and including) the destination."""
        cmd = ["ssh"]
        options = [
            f"ControlPath={self.control_path}",
            f"ControlPersist={self.persist}",
            *self.BASE_OPTIONS,
            *self.ssh_opts,
        ]
        for option in options:
            cmd += ["-o", option]
        if self.port:
            cmd += ["-p", str(self.port)]
        if self.identity_file:
            cmd += ["-i", str(self.identity_file)]
        cmd.append(self.destination)
        return cmd

    def start_master(self) -> bool:
        """Open the master connection in the background.

        Returns:
            False if ssh could not connect
        """
        with self._lock:
            if self.is_master_alive():
                return True
            self.control_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            cmd = self.get_ssh_base_cmd()
            cmd.insert(1, "-MNf")
            logger.debug("Starting SSH master: %s", cmd)
            try:
                subprocess.run(cmd, check=True, capture_output=True)
            except subprocess.CalledProcessError as e:
                logger.error(
                    "Failed to start SSH master to %s: %s",
                    self.destination,
                    e.stderr.decode(errors="replace").strip() if e.stderr else e,
                )
                return False
            except OSError as e:
                logger.error("Failed to start SSH master: %s", e)
                return False
            self._master_started = True
            return True

    def stop_master(self) -> bool:
        if not self._master_started:
            return True
        with self._lock:
            if not self._control("exit"):
                logger.error("Failed to stop SSH master to %s", self.destination)
                return False
            self._master_started = False
            self.control_path.unlink(missing_ok=True)
            return True

    def is_master_alive(self) -> bool:
        return self.control_path.exists() and self._control("check")

    def _control(self, operation: str) -> bool:
        cmd = [
            "ssh",
            "-O",
            operation,
            "-o",
            f"ControlPath={self.control_path}",
            self.destination,
        ]
        try:
            subprocess.run(cmd, check=True, capture_output=True)
        except (OSError, subprocess.CalledProcessError):
            return False
        return True
