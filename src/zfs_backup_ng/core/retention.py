"""Retention: decide which committed artifacts may be deleted, and delete them.

A full backup together with the incrementals after it is self-contained,
so everything before the most recent full backup can go. Strategies are
pluggable so other policies can be configured per deployment.
"""

import logging
from typing import Protocol

from .. import __util__
from ..transaction import log_transaction
from .artifact import BackupArtifact, BackupChain

logger = logging.getLogger(__name__)


class RetentionStrategy(Protocol):
    """Selects the artifacts of a chain that should be deleted."""

    def select(self, chain: BackupChain) -> list[BackupArtifact]: ...


class LatestFullRetention:
    """Keep from the ``keep_chains``-th most recent FULL backup onward.

    Raises NoFullBackupWarning from ``select`` when the chain has no full
    backup to anchor on.
    """

    def __init__(self, keep_chains: int = 1) -> None:
        if keep_chains < 1:
            raise ValueError("keep_chains must be at least 1")
        self.keep_chains = keep_chains

    def __repr__(self) -> str:
        return f"LatestFullRetention(keep_chains={self.keep_chains})"

    def select(self, chain: BackupChain) -> list[BackupArtifact]:
        full_indices = chain.full_indices()
        if not full_indices:
            raise __util__.NoFullBackupWarning(
                f"No full backup of {chain.volume} at the remote store, not pruning"
            )
        if len(full_indices) < self.keep_chains:
            boundary = full_indices[0]
        else:
            boundary = full_indices[-self.keep_chains]
        return list(chain.artifacts[:boundary])


class KeepAllRetention:
    """Never delete anything."""

    def __repr__(self) -> str:
        return "KeepAllRetention()"

    def select(self, chain: BackupChain) -> list[BackupArtifact]:
        return []


def strategy_from_config(retention_config) -> RetentionStrategy:
    """Build the strategy named by a RetentionConfig."""
    if retention_config.policy == "keep-all":
        return KeepAllRetention()
    if retention_config.policy == "latest-full":
        return LatestFullRetention(keep_chains=retention_config.keep_chains)
    raise ValueError(f"Unknown retention policy: {retention_config.policy}")


def prune_chain(
    chain: BackupChain,
    store,
    strategy: RetentionStrategy,
    flatten_char: str = "_",
    dry_run: bool = False,
) -> list[BackupArtifact]:
    """Delete the artifacts ``strategy`` selects with one batch delete.

    A failed batch delete is logged and not retried; the store decides how
    much of the batch went through, and the next run will select whatever
    is left again.

    Returns:
        The artifacts that were deleted (or would be, with dry_run)
    """
    try:
        doomed = strategy.select(chain)
    except __util__.NoFullBackupWarning as e:
        logger.warning("%s", e)
        return []

    if not doomed:
        logger.info("Nothing to prune for %s", chain.volume)
        return []

    names = [artifact.remote_name(flatten_char) for artifact in doomed]
    if dry_run:
        for name in names:
            logger.info("Would delete: %s", name)
        return doomed

    try:
        store.delete(names)
    except __util__.TransportError as e:
        logger.warning("Pruning %s failed: %s", chain.volume, e)
        log_transaction(
            action="prune",
            status="failed",
            volume=chain.volume,
            destination=str(store),
            error=str(e),
            details={"artifacts": names},
        )
        return []

    chain.remove(doomed)
    logger.info("Pruned %d artifact(s) of %s", len(doomed), chain.volume)
    log_transaction(
        action="prune",
        status="completed",
        volume=chain.volume,
        destination=str(store),
        details={"artifacts": names},
    )
    return doomed
