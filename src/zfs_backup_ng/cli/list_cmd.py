"""List command: show the remote backup chain of each volume."""

import argparse
import json
import logging

from rich.console import Console
from rich.table import Table

from .. import __util__
from ..__logger__ import create_logger
from ..config import ConfigError
from ..core import list_remote_state
from ..core.artifact import ArtifactGrammar
from ..transaction import get_transaction_log, read_transaction_log, set_transaction_log
from .common import (
    get_log_level,
    load_effective_config,
    open_store,
    select_volumes,
)

logger = logging.getLogger(__name__)


def execute_list(args: argparse.Namespace) -> int:
    """Execute the list command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    create_logger(get_log_level(args))

    try:
        config = load_effective_config(args)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    if getattr(args, "transactions", None):
        return _list_transactions(config, args)

    volumes = select_volumes(config, getattr(args, "volumes", None))
    if not volumes:
        logger.error("No volumes given")
        return 1

    try:
        store = open_store(config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1

    global_config = config.global_config
    listing = {}
    errors = 0
    try:
        store.prepare()
        for volume in volumes:
            grammar = ArtifactGrammar(
                volume.name,
                snapshot_prefix=global_config.snapshot_prefix,
                timestamp_format=global_config.snapshot_timestamp_format,
                flatten_char=global_config.flatten_char,
            )
            try:
                listing[volume.name] = list_remote_state(store, grammar)
            except __util__.TransportError as e:
                logger.warning("Listing %s failed: %s", volume.name, e)
                errors += 1
    except (__util__.AbortError, __util__.TransportError) as e:
        logger.error("Cannot use destination %s: %s", store, e)
        return 1
    finally:
        store.close()

    if getattr(args, "json", False):
        print(json.dumps(_as_json(listing, global_config.flatten_char), indent=2))
    else:
        _print_tables(listing, global_config.flatten_char)

    return 1 if errors else 0


def _as_json(listing, flatten_char):
    result = {}
    for volume, state in listing.items():
        result[volume] = {
            "artifacts": [
                {
                    "name": artifact.remote_name(flatten_char),
                    "snapshot": artifact.snapshot,
                    "kind": artifact.kind.value,
                    "base": state.chain.base_of(i),
                }
                for i, artifact in enumerate(state.chain)
            ],
            "stale": state.stale,
            "malformed": state.malformed,
        }
    return result


def _print_tables(listing, flatten_char) -> None:
    console = Console()
    for volume, state in listing.items():
        table = Table(title=volume)
        table.add_column("#", justify="right")
        table.add_column("Artifact")
        table.add_column("Kind")
        table.add_column("Base")
        for i, artifact in enumerate(state.chain):
            table.add_row(
                str(i),
                artifact.remote_name(flatten_char),
                artifact.kind.name,
                state.chain.base_of(i) or "-",
            )
        console.print(table)
        for name in state.stale:
            console.print(f"  [yellow]stale temporary object:[/yellow] {name}")
        for name in state.malformed:
            console.print(f"  [red]malformed name:[/red] {name}")


def _list_transactions(config, args) -> int:
    set_transaction_log(config.global_config.transaction_log)
    try:
        if get_transaction_log() is None:
            print("No transaction log configured.")
            return 1
        records = read_transaction_log(limit=args.transactions)
    finally:
        set_transaction_log(None)

    if getattr(args, "json", False):
        print(json.dumps(records, indent=2))
        return 0

    table = Table(title="Transactions")
    for column in ("Time", "Action", "Status", "Volume", "Artifact", "Error"):
        table.add_column(column)
    for record in records:
        table.add_row(
            record.get("timestamp", ""),
            record.get("action", ""),
            record.get("status", ""),
            record.get("volume", ""),
            record.get("artifact", ""),
            record.get("error", ""),
        )
    Console().print(table)
    return 0
