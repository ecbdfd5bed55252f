"""Transfer pipeline: extract | compress | encrypt | transport, then commit.

The four stages run as concurrent processes joined by OS pipes, so a slow
consumer throttles its producer through the pipe buffer. The artifact is
written under a temporary name and renamed to its final name only when
every stage exited successfully; otherwise the temporary object and a
snapshot created for this attempt are removed again.
"""

import logging
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .. import __util__
from ..transaction import log_transaction
from .artifact import BackupChain, temp_name
from .planning import BackupPlan

logger = logging.getLogger(__name__)

STDERR_TAIL_BYTES = 2000


class Stage(Enum):
    """Pipeline stage."""

    EXTRACT = "extract"
    COMPRESS = "compress"
    ENCRYPT = "encrypt"
    TRANSPORT = "transport"


PIPELINE_ORDER = (Stage.EXTRACT, Stage.COMPRESS, Stage.ENCRYPT, Stage.TRANSPORT)
# Transport finishes last on success and tells us the outcome first
WAIT_ORDER = (Stage.TRANSPORT, Stage.EXTRACT, Stage.COMPRESS, Stage.ENCRYPT)


@dataclass
class StageResult:
    """Exit status of one stage; None if it never started or timed out."""

    stage: Stage
    returncode: Optional[int]
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.returncode == 0


@dataclass
class PipelineResult:
    """Outcome of one transfer."""

    plan: BackupPlan
    stages: list[StageResult] = field(default_factory=list)
    success: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def stages_succeeded(self) -> bool:
        return len(self.stages) == len(PIPELINE_ORDER) and all(
            s.success for s in self.stages
        )

    def failed_stages(self) -> list[StageResult]:
        return [s for s in self.stages if not s.success]

    def returncodes(self) -> dict[str, Optional[int]]:
        return {s.stage.value: s.returncode for s in self.stages}


class TransferPipeline:
    """Run backup plans through the stage chain against one remote store.

    Args:
        snapshots: Snapshot subsystem providing ``extract_stream``
        store: Remote store receiving the artifact
        compress: Compression command (stdin -> stdout)
        encrypt: Encryption command (stdin -> stdout)
        context: Optional RunContext tracking processes and the working directory
        stage_timeout: Seconds to wait for each stage; None waits forever
    """

    def __init__(
        self,
        snapshots,
        store,
        compress: list[str],
        encrypt: list[str],
        context=None,
        stage_timeout: Optional[float] = None,
    ) -> None:
        self.snapshots = snapshots
        self.store = store
        self.compress = list(compress)
        self.encrypt = list(encrypt)
        self.context = context
        self.stage_timeout = stage_timeout

    def run(self, plan: BackupPlan, chain: BackupChain) -> PipelineResult:
        """Transfer ``plan`` and commit it to ``chain`` on success.

        Interruption (KeyboardInterrupt) stops all stages, rolls back and
        propagates.
        """
        temp = temp_name(plan.remote_name)
        result = PipelineResult(plan=plan)
        processes: dict[Stage, subprocess.Popen] = {}
        stderr_files = {stage: self._stderr_file() for stage in PIPELINE_ORDER}
        transfer_start = time.monotonic()

        logger.info("Sending %s to %s ...", plan, self.store)
        log_transaction(
            action="transfer",
            status="started",
            volume=plan.volume,
            destination=str(self.store),
            snapshot=plan.target,
            parent=plan.base,
            artifact=plan.remote_name,
        )

        committed = False
        try:
            try:
                try:
                    self._start_stages(plan, temp, processes, stderr_files)
                except (OSError, __util__.AbortError, __util__.SnapshotError,
                        __util__.TransportError) as e:
                    logger.error("Could not start transfer of %s: %s", plan.volume, e)
                    result.error = str(e)
                    self._kill(processes)
                    returncodes = {s: p.returncode for s, p in processes.items()}
                else:
                    returncodes = self._wait(processes)
                result.stages = [
                    StageResult(
                        stage=stage,
                        returncode=returncodes.get(stage),
                        stderr=self._read_tail(stderr_files[stage]),
                    )
                    for stage in PIPELINE_ORDER
                ]
            except BaseException:
                self._kill(processes)
                raise
            finally:
                self._cleanup(processes, stderr_files)

            if result.stages_succeeded:
                try:
                    self.store.rename(temp, plan.remote_name)
                except __util__.TransportError as e:
                    logger.error("Committing %s failed: %s", plan.remote_name, e)
                    result.error = str(e)
                else:
                    committed = True
                    plan.created_snapshot = False
                    chain.append(plan.artifact, base=plan.base)
                    result.success = True
            elif result.error is None:
                result.error = f"stage(s) failed: {result.returncodes()}"
        except BaseException:
            # Once renamed the artifact is committed and stays
            if not committed:
                logger.error("Transfer of %s aborted, rolling back", plan.volume)
                self._rollback(plan, temp)
            raise

        result.duration_seconds = time.monotonic() - transfer_start

        if result.success:
            logger.info(
                "Committed %s in %.1fs", plan.remote_name, result.duration_seconds
            )
        else:
            self._log_stage_errors(result)
            self._rollback(plan, temp)

        log_transaction(
            action="transfer",
            status="completed" if result.success else "failed",
            volume=plan.volume,
            destination=str(self.store),
            snapshot=plan.target,
            parent=plan.base,
            artifact=plan.remote_name,
            duration_seconds=result.duration_seconds,
            error=None if result.success else result.error,
            details={"returncodes": result.returncodes()},
        )
        return result

    def _start_stages(self, plan, temp, processes, stderr_files) -> None:
        extract = self.snapshots.extract_stream(
            plan.volume, plan.base, plan.target, stderr=stderr_files[Stage.EXTRACT]
        )
        self._track(processes, Stage.EXTRACT, extract)

        upstream = extract
        for stage, command in (
            (Stage.COMPRESS, self.compress),
            (Stage.ENCRYPT, self.encrypt),
        ):
            proc = __util__.exec_subprocess(
                command,
                method="Popen",
                stdin=upstream.stdout,
                stdout=subprocess.PIPE,
                stderr=stderr_files[stage],
            )
            self._track(processes, stage, proc)
            # The child holds its own copy; ours would keep the pipe open
            upstream.stdout.close()
            upstream = proc

        transport = self.store.write(
            temp, stdin=upstream.stdout, stderr=stderr_files[Stage.TRANSPORT]
        )
        self._track(processes, Stage.TRANSPORT, transport)
        upstream.stdout.close()

    def _track(self, processes, stage, proc) -> None:
        processes[stage] = proc
        if self.context is not None:
            self.context.track(proc)
        logger.debug("Started %s stage (pid %d)", stage.value, proc.pid)

    def _wait(self, processes) -> dict[Stage, Optional[int]]:
        returncodes: dict[Stage, Optional[int]] = {}
        for stage in WAIT_ORDER:
            try:
                returncodes[stage] = processes[stage].wait(timeout=self.stage_timeout)
            except subprocess.TimeoutExpired:
                logger.error(
                    "Timeout after %ss waiting for %s stage",
                    self.stage_timeout,
                    stage.value,
                )
                self._kill(processes)
                break
            logger.debug(
                "%s stage exited with %d", stage.value, returncodes[stage]
            )
        return returncodes

    def _kill(self, processes) -> None:
        for stage, proc in processes.items():
            if proc.poll() is None:
                logger.debug("Killing %s stage (pid %d)", stage.value, proc.pid)
                proc.kill()
            proc.wait()

    def _rollback(self, plan: BackupPlan, temp: str) -> None:
        """Remove everything this attempt left behind; never raises."""
        try:
            self.store.delete([temp])
            logger.info("Removed temporary object %s", temp)
        except __util__.TransportError as e:
            logger.error("Could not remove temporary object %s: %s", temp, e)
        if plan.created_snapshot:
            try:
                self.snapshots.destroy_snapshot(plan.volume, plan.target)
            except __util__.SnapshotError as e:
                logger.error(
                    "Could not destroy snapshot %s@%s: %s", plan.volume, plan.target, e
                )
            else:
                plan.created_snapshot = False

    def _cleanup(self, processes, stderr_files) -> None:
        """Close pipes and stop tracking processes."""
        for proc in processes.values():
            for pipe in (proc.stdin, proc.stdout, proc.stderr):
                if pipe:
                    try:
                        pipe.close()
                    except OSError as e:
                        logger.warning("Error closing pipe: %s", e)
            if self.context is not None:
                self.context.untrack(proc)
        for f in stderr_files.values():
            if f is not None:
                f.close()

    def _stderr_file(self):
        if self.context is None:
            return None
        return tempfile.TemporaryFile(dir=self.context.work_dir)

    @staticmethod
    def _read_tail(f) -> str:
        if f is None:
            return ""
        f.seek(0, 2)
        size = f.tell()
        f.seek(max(0, size - STDERR_TAIL_BYTES))
        return __util__.decode_stderr(f.read())

    @staticmethod
    def _log_stage_errors(result: PipelineResult) -> None:
        logger.error(
            "Transfer of %s failed: %s", result.plan.volume, result.error
        )
        for stage in result.failed_stages():
            if stage.stderr:
                logger.error("  %s: %s", stage.stage.value, stage.stderr)
