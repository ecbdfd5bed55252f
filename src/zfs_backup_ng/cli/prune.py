"""Prune command: apply the retention policy without backing up."""

import argparse
import logging
import time

from .. import __util__
from ..__logger__ import create_logger
from ..config import ConfigError
from ..core import RunContext, list_remote_state, prune_chain
from ..core.artifact import ArtifactGrammar
from ..core.retention import strategy_from_config
from ..transaction import set_transaction_log
from .common import (
    get_log_level,
    load_effective_config,
    open_store,
    require,
    select_volumes,
)

logger = logging.getLogger(__name__)


def execute_prune(args: argparse.Namespace) -> int:
    """Execute the prune command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    create_logger(get_log_level(args))

    try:
        config = load_effective_config(args)
        volumes = select_volumes(config, getattr(args, "volumes", None))
        require(bool(volumes), "No volumes given")
        store = open_store(config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    global_config = config.global_config
    dry_run = getattr(args, "dry_run", False)
    if dry_run:
        logger.info("Dry run mode - showing what would be deleted")
    else:
        set_transaction_log(global_config.transaction_log)

    strategy = strategy_from_config(global_config.retention)
    logger.info(__util__.log_heading(f"Pruning with {strategy!r} at {time.ctime()}"))

    total_deleted = 0
    errors = 0

    try:
        with RunContext(global_config.lock_file, global_config.work_dir):
            store.prepare()
            for volume in volumes:
                grammar = ArtifactGrammar(
                    volume.name,
                    snapshot_prefix=global_config.snapshot_prefix,
                    timestamp_format=global_config.snapshot_timestamp_format,
                    flatten_char=global_config.flatten_char,
                )
                try:
                    state = list_remote_state(store, grammar)
                except __util__.TransportError as e:
                    logger.warning("Listing %s failed: %s", volume.name, e)
                    errors += 1
                    continue

                logger.info("%s: %d artifact(s)", volume.name, len(state.chain))
                deleted = prune_chain(
                    state.chain,
                    store,
                    strategy,
                    flatten_char=global_config.flatten_char,
                    dry_run=dry_run,
                )
                total_deleted += len(deleted)
    except __util__.AlreadyRunningError as e:
        logger.error("%s", e)
        return 1
    except (__util__.AbortError, __util__.TransportError) as e:
        logger.error("Cannot use destination %s: %s", store, e)
        return 1
    finally:
        store.close()
        set_transaction_log(None)

    if dry_run:
        logger.info("Dry run: would delete %d artifact(s)", total_deleted)
    else:
        logger.info("Deleted %d artifact(s)", total_deleted)

    if errors > 0:
        logger.warning("Encountered %d error(s)", errors)
        return 1

    return 0
