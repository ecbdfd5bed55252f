"""Run command: back up all given or configured volumes."""

import argparse
import logging
import time

from .. import __util__
from ..__logger__ import create_logger
from ..config import ConfigError
from ..core import BackupRunner, RunContext
from ..transaction import set_transaction_log
from ..zfs import ZfsSnapshots
from .common import (
    get_log_level,
    load_effective_config,
    open_store,
    require,
    select_volumes,
)

logger = logging.getLogger(__name__)

EXIT_INTERRUPTED = 130


def execute_run(args: argparse.Namespace) -> int:
    """Execute the run command.

    Per-volume failures are logged and don't change the exit code; only
    usage errors, an already running instance or an interruption do.

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
    if global_config.log_file:
        create_logger(get_log_level(args), log_file=global_config.log_file)
    set_transaction_log(global_config.transaction_log)

    logger.info(__util__.log_heading(f"Started at {time.ctime()}"))
    snapshots = ZfsSnapshots(use_sudo=global_config.use_sudo)

    try:
        with RunContext(global_config.lock_file, global_config.work_dir) as context:
            store.prepare()
            runner = BackupRunner(config, store, snapshots, context=context)
            runner.run(volumes)
    except __util__.AlreadyRunningError as e:
        logger.error("%s", e)
        return 1
    except (__util__.AbortError, __util__.TransportError) as e:
        logger.error("Cannot use destination %s: %s", store, e)
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted, uncommitted transfers were rolled back")
        return EXIT_INTERRUPTED
    finally:
        store.close()
        set_transaction_log(None)

    logger.info(__util__.log_heading(f"Finished at {time.ctime()}"))
    return 0
