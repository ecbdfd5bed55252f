"""Run driver: back up the configured volumes one after the other.

Per volume: list remote state, decide, transfer, prune. A volume that is
skipped or fails never stops the run; the next scheduled run retries it.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .. import __util__
from ..config import Config, VolumeConfig
from .artifact import ArtifactGrammar
from .lister import RemoteState, list_remote_state
from .pipeline import PipelineResult, TransferPipeline
from .planning import BackupPlan, BackupPlanner
from .retention import prune_chain, strategy_from_config

logger = logging.getLogger(__name__)


class VolumeStatus(Enum):
    """How processing a volume ended."""

    COMMITTED = "committed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class VolumeOutcome:
    volume: str
    status: VolumeStatus
    message: str = ""
    plan: Optional[BackupPlan] = None
    result: Optional[PipelineResult] = None
    pruned: int = 0


@dataclass
class RunSummary:
    """Outcome of every volume of one run."""

    outcomes: list[VolumeOutcome] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    completed_at: float = 0.0

    def count(self, status: VolumeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @property
    def failed(self) -> list[VolumeOutcome]:
        return [o for o in self.outcomes if o.status is VolumeStatus.FAILED]


class BackupRunner:
    """Drive backups of volumes against one remote store.

    Args:
        config: Effective configuration
        store: Prepared remote store
        snapshots: Snapshot subsystem
        context: Optional RunContext for process tracking and stage logs
        now: Clock used to name self-managed snapshots
    """

    def __init__(
        self,
        config: Config,
        store,
        snapshots,
        context=None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.store = store
        self.snapshots = snapshots
        self.now = now
        global_config = config.global_config
        self.pipeline = TransferPipeline(
            snapshots,
            store,
            compress=global_config.compress,
            encrypt=global_config.encrypt,
            context=context,
            stage_timeout=global_config.stage_timeout,
        )
        self.strategy = strategy_from_config(global_config.retention)

    def run(self, volumes: list[VolumeConfig]) -> RunSummary:
        """Process ``volumes`` strictly in order."""
        summary = RunSummary()
        logger.info("Processing %d volume(s)", len(volumes))

        for volume in volumes:
            try:
                outcome = self.backup_volume(volume)
            except Exception as e:
                logger.exception("Volume %s failed: %s", volume.name, e)
                outcome = VolumeOutcome(volume.name, VolumeStatus.FAILED, str(e))
            summary.outcomes.append(outcome)

        summary.completed_at = time.time()
        logger.info(
            "Run finished: %d committed, %d skipped, %d failed",
            summary.count(VolumeStatus.COMMITTED),
            summary.count(VolumeStatus.SKIPPED),
            summary.count(VolumeStatus.FAILED),
        )
        for outcome in summary.failed:
            logger.warning("  %s: %s", outcome.volume, outcome.message)
        return summary

    def grammar_for(self, volume: str) -> ArtifactGrammar:
        global_config = self.config.global_config
        return ArtifactGrammar(
            volume,
            snapshot_prefix=global_config.snapshot_prefix,
            timestamp_format=global_config.snapshot_timestamp_format,
            flatten_char=global_config.flatten_char,
        )

    def planner_for(self, volume: VolumeConfig) -> BackupPlanner:
        global_config = self.config.global_config
        return BackupPlanner(
            self.snapshots,
            full_backup_interval=self.config.get_full_backup_interval(volume),
            snapshot_prefix=global_config.snapshot_prefix,
            timestamp_format=global_config.snapshot_timestamp_format,
            self_managed=self.config.is_self_managed(volume),
            flatten_char=global_config.flatten_char,
            now=self.now,
        )

    def backup_volume(self, volume: VolumeConfig) -> VolumeOutcome:
        name = volume.name
        logger.info(__util__.log_heading(f"Volume: {name}"))

        try:
            state = list_remote_state(self.store, self.grammar_for(name))
        except __util__.TransportError as e:
            logger.warning("Listing remote backups of %s failed: %s", name, e)
            return VolumeOutcome(name, VolumeStatus.FAILED, f"listing failed: {e}")

        self._remove_stale(name, state)

        planner = self.planner_for(volume)
        try:
            plan = planner.plan(name, state.chain)
        except __util__.NoNewDataError as e:
            logger.info("Skipping %s: %s", name, e)
            return VolumeOutcome(name, VolumeStatus.SKIPPED, str(e))
        except __util__.SkipVolume as e:
            logger.warning("Skipping %s: %s", name, e)
            return VolumeOutcome(name, VolumeStatus.SKIPPED, str(e))
        except __util__.SnapshotError as e:
            logger.error("Snapshot handling for %s failed: %s", name, e)
            return VolumeOutcome(name, VolumeStatus.FAILED, f"snapshot: {e}")

        try:
            result = self.pipeline.run(plan, state.chain)
        except BaseException:
            # Covers an interrupt before the pipeline took over the plan
            if plan.created_snapshot:
                if planner.discard_snapshot(name, plan.target):
                    plan.created_snapshot = False
            raise
        if not result.success:
            return VolumeOutcome(
                name,
                VolumeStatus.FAILED,
                result.error or "transfer failed",
                plan=plan,
                result=result,
            )

        pruned = prune_chain(
            state.chain,
            self.store,
            self.strategy,
            flatten_char=self.config.global_config.flatten_char,
        )
        return VolumeOutcome(
            name,
            VolumeStatus.COMMITTED,
            plan.remote_name,
            plan=plan,
            result=result,
            pruned=len(pruned),
        )

    def _remove_stale(self, name: str, state: RemoteState) -> None:
        """Delete temporary objects of transfers that never finished."""
        if not state.stale:
            return
        logger.warning(
            "Removing %d stale temporary object(s) of %s: %s",
            len(state.stale),
            name,
            ", ".join(state.stale),
        )
        try:
            self.store.delete(state.stale)
        except __util__.TransportError as e:
            logger.warning("Could not remove stale objects of %s: %s", name, e)
