"""Core backup logic for zfs-backup-ng.

Decision engine, transfer pipeline, retention and the run driver that
ties them together for every configured volume.
"""

from .artifact import ArtifactGrammar, BackupArtifact, BackupChain, BackupKind
from .context import RunContext, SingletonLock
from .lister import RemoteState, list_remote_state
from .pipeline import PipelineResult, Stage, StageResult, TransferPipeline
from .planning import BackupPlan, BackupPlanner
from .retention import (
    KeepAllRetention,
    LatestFullRetention,
    RetentionStrategy,
    prune_chain,
)
from .runner import BackupRunner, RunSummary, VolumeOutcome, VolumeStatus

__all__ = [
    "ArtifactGrammar",
    "BackupArtifact",
    "BackupChain",
    "BackupKind",
    "RunContext",
    "SingletonLock",
    "RemoteState",
    "list_remote_state",
    "PipelineResult",
    "Stage",
    "StageResult",
    "TransferPipeline",
    "BackupPlan",
    "BackupPlanner",
    "KeepAllRetention",
    "LatestFullRetention",
    "RetentionStrategy",
    "prune_chain",
    "BackupRunner",
    "RunSummary",
    "VolumeOutcome",
    "VolumeStatus",
]
