"""Run context: singleton lock, working directory, signals and cleanup.

Everything that is process-wide state for one run lives here and is
released on every way out of the ``with`` block: normal completion,
exceptions, Ctrl-C and SIGTERM/SIGHUP.
"""

import atexit
import logging
import os
import shutil
import signal
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Optional

from filelock import FileLock

from .. import __util__

logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGTERM, signal.SIGHUP)


class SingletonLock:
    """Pid file lock that treats a lock of a dead process as not held.

    The check-and-write is serialized with a ``FileLock`` on a sibling
    file so two starting instances can't both take over a stale lock.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._guard = FileLock(str(self.path) + ".lock")
        self.acquired = False

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            AlreadyRunningError: If a live process holds the lock
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._guard:
            pid = self.read_pid()
            if pid is not None and pid != os.getpid():
                if __util__.pid_alive(pid):
                    raise __util__.AlreadyRunningError(self.path, pid)
                logger.warning(
                    "Removing stale lock file %s of dead process %d", self.path, pid
                )
            self.path.write_text(f"{os.getpid()}\n", encoding="utf-8")
            self.acquired = True
        logger.debug("Acquired lock %s", self.path)

    def release(self) -> None:
        if not self.acquired:
            return
        with self._guard:
            if self.read_pid() == os.getpid():
                self.path.unlink(missing_ok=True)
        self.acquired = False
        logger.debug("Released lock %s", self.path)

    def read_pid(self) -> Optional[int]:
        try:
            text = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            return int(text)
        except ValueError:
            logger.warning("Ignoring corrupt lock file %s: %r", self.path, text)
            return None


class RunContext:
    """Scoped state of one backup run.

    Args:
        lock_file: Pid file guarding against concurrent runs
        work_dir_parent: Where to create the working directory (None: system tmp)
        handle_signals: Turn SIGTERM/SIGHUP into ``Interrupted``
    """

    def __init__(
        self,
        lock_file: Path | str,
        work_dir_parent: Path | str | None = None,
        handle_signals: bool = True,
    ) -> None:
        self.lock = SingletonLock(lock_file)
        self.work_dir_parent = work_dir_parent
        self.handle_signals = handle_signals
        self.work_dir: Optional[Path] = None
        self._processes: list[subprocess.Popen] = []
        self._previous_handlers: dict[int, object] = {}
        self._active = False

    def __enter__(self) -> "RunContext":
        self.lock.acquire()
        self._active = True
        atexit.register(self.cleanup)
        try:
            if self.work_dir_parent is not None:
                Path(self.work_dir_parent).mkdir(parents=True, exist_ok=True)
            self.work_dir = Path(
                tempfile.mkdtemp(prefix="zfs-backup-ng.", dir=self.work_dir_parent)
            )
            logger.debug("Working directory: %s", self.work_dir)
            if self.handle_signals:
                self._install_signal_handlers()
        except BaseException:
            self.cleanup()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def track(self, proc: subprocess.Popen) -> None:
        self._processes.append(proc)

    def untrack(self, proc: subprocess.Popen) -> None:
        if proc in self._processes:
            self._processes.remove(proc)

    @property
    def running_processes(self) -> list[subprocess.Popen]:
        return [p for p in self._processes if p.poll() is None]

    def cleanup(self) -> None:
        """Kill stage processes, remove the working directory, release the lock.

        Safe to call more than once.
        """
        if not self._active:
            return
        self._active = False
        atexit.unregister(self.cleanup)

        for proc in self.running_processes:
            logger.warning("Killing leftover process %d", proc.pid)
            proc.kill()
            proc.wait()
        self._processes.clear()

        self._restore_signal_handlers()

        if self.work_dir is not None:
            shutil.rmtree(self.work_dir, ignore_errors=True)
            self.work_dir = None

        self.lock.release()

    def _on_signal(self, signum, frame) -> None:
        logger.warning("Received signal %d, stopping", signum)
        raise __util__.Interrupted(signum)

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in main thread, signal handlers not installed")
            return
        for signum in HANDLED_SIGNALS:
            self._previous_handlers[signum] = signal.signal(signum, self._on_signal)

    def _restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            # None means the handler was not installed from Python
            signal.signal(signum, signal.SIG_DFL if handler is None else handler)
        self._previous_handlers.clear()
