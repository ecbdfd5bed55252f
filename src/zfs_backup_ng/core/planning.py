"""Backup decision engine: FULL or INCREMENTAL, and of which snapshots.

The decision depends on the number of artifacts at the remote store, the
snapshots that currently exist for the volume and whether snapshots are
created here (self-managed) or by some other tool (externally-managed).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .. import __util__
from .artifact import (
    BackupArtifact,
    BackupChain,
    BackupKind,
    snapshot_timestamp_valid,
)

logger = logging.getLogger(__name__)


@dataclass
class BackupPlan:
    """What the transfer pipeline should do for one volume.

    ``created_snapshot`` is set while the target snapshot was created for
    this plan and still has to be destroyed if the plan is not committed.
    """

    volume: str
    kind: BackupKind
    base: Optional[str]
    target: str
    remote_name: str
    created_snapshot: bool = False

    @property
    def artifact(self) -> BackupArtifact:
        return BackupArtifact(volume=self.volume, snapshot=self.target, kind=self.kind)

    def __str__(self) -> str:
        if self.base:
            return f"{self.kind.name} {self.volume}@{self.base} -> @{self.target}"
        return f"{self.kind.name} {self.volume}@{self.target}"


class BackupPlanner:
    """Decide the next backup of a volume.

    Args:
        snapshots: Snapshot subsystem (list/create/destroy)
        full_backup_interval: Number of artifacts from one full backup to the next
        snapshot_prefix: Prefix of the snapshots considered ours
        timestamp_format: strftime format for new snapshot names
        self_managed: Whether snapshots are created and destroyed here
        flatten_char: Replaces '/' in remote names
        now: Clock used to name new snapshots
    """

    def __init__(
        self,
        snapshots,
        full_backup_interval: int = 14,
        snapshot_prefix: str = "bak-",
        timestamp_format: str = "%Y%m%d-%H%M",
        self_managed: bool = False,
        flatten_char: str = "_",
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.snapshots = snapshots
        self.full_backup_interval = max(1, full_backup_interval)
        self.snapshot_prefix = snapshot_prefix
        self.timestamp_format = timestamp_format
        self.self_managed = self_managed
        self.flatten_char = flatten_char
        self.now = now

    def matching_snapshots(self, volume: str) -> list[str]:
        """The SnapshotSet: our snapshots of ``volume``, oldest first.

        Only ``<prefix><timestamp>`` names count, the same names the
        artifact grammar accepts back from the remote store.
        """
        prefix = self.snapshot_prefix
        return sorted(
            name
            for name in self.snapshots.list_snapshots(volume)
            if name.startswith(prefix)
            and snapshot_timestamp_valid(name[len(prefix):], self.timestamp_format)
        )

    def plan(self, volume: str, chain: BackupChain) -> BackupPlan:
        """Decide what to back up next.

        Raises:
            DuplicateSnapshotError: Self-managed and the new name already exists
            NoSnapshotError: Externally-managed and no matching snapshot exists
            NoNewDataError: The newest snapshot is already backed up
            SnapshotError: A snapshot command failed
        """
        full_due = len(chain) % self.full_backup_interval == 0
        snapshot_set = self.matching_snapshots(volume)
        last = chain.last

        if self.self_managed:
            target = self.snapshot_prefix + self.now().strftime(self.timestamp_format)
            if target in snapshot_set:
                raise __util__.DuplicateSnapshotError(
                    f"Snapshot {volume}@{target} already exists"
                )
        else:
            if not snapshot_set:
                raise __util__.NoSnapshotError(
                    f"No snapshot of {volume} matches '{self.snapshot_prefix}*'"
                )
            target = snapshot_set[-1]

        # Checked before any snapshot is touched so nothing is left behind
        if last is not None and target <= last.snapshot:
            raise __util__.NoNewDataError(
                f"{volume}@{target} is already backed up (last artifact: {last.snapshot})"
            )

        if not self.self_managed:
            return self._build_plan(volume, chain, target, snapshot_set, full_due)

        if full_due:
            # Old snapshots would only inflate the upcoming full backup
            snapshot_set = self._destroy_stale_snapshots(volume, snapshot_set)
        self.snapshots.create_snapshot(volume, target)
        try:
            return self._build_plan(
                volume, chain, target, snapshot_set + [target], full_due, created=True
            )
        except BaseException:
            self.discard_snapshot(volume, target)
            raise

    def discard_snapshot(self, volume: str, name: str) -> bool:
        """Destroy a snapshot created for a plan that won't be committed.

        Errors are logged, not raised.

        Returns:
            Whether the snapshot was destroyed
        """
        try:
            self.snapshots.destroy_snapshot(volume, name)
        except __util__.SnapshotError as e:
            logger.error("Could not destroy snapshot %s@%s: %s", volume, name, e)
            return False
        return True

    def _build_plan(
        self,
        volume: str,
        chain: BackupChain,
        target: str,
        snapshot_set: list[str],
        full_due: bool,
        created: bool = False,
    ) -> BackupPlan:
        last = chain.last
        kind = BackupKind.FULL
        base = None
        if not full_due and last is not None:
            if chain.latest_full_index() is None:
                logger.warning(
                    "Remote chain of %s has no full backup, promoting to full", volume
                )
            elif last.snapshot not in snapshot_set:
                logger.warning(
                    "Base snapshot %s@%s no longer exists, promoting to full",
                    volume,
                    last.snapshot,
                )
            else:
                kind = BackupKind.INCREMENTAL
                base = last.snapshot

        artifact = BackupArtifact(volume=volume, snapshot=target, kind=kind)
        plan = BackupPlan(
            volume=volume,
            kind=kind,
            base=base,
            target=target,
            remote_name=artifact.remote_name(self.flatten_char),
            created_snapshot=created,
        )
        logger.info("Plan: %s (%d artifact(s) at remote)", plan, len(chain))
        return plan

    def _destroy_stale_snapshots(self, volume: str, snapshot_set: list[str]) -> list[str]:
        """Destroy all but the most recent snapshot, newest first."""
        if len(snapshot_set) <= 1:
            return list(snapshot_set)
        keep = snapshot_set[-1]
        for name in reversed(snapshot_set[:-1]):
            self.snapshots.destroy_snapshot(volume, name)
        return [keep]
