"""CLI dispatcher: argument parsing and routing to command handlers."""

import argparse
import sys
from typing import Callable

from .common import add_verbosity_args, add_volume_args


def create_subcommand_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="zfs-backup-ng",
        description="Automated, encrypted full/incremental zfs backups to a remote store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    add_verbosity_args(parser)

    parser.add_argument(
        "-V",
        "--version",
        action="store_true",
        help="Show version and exit",
    )

    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to configuration file",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands (use 'command --help' for details)",
    )

    # run command
    run_parser = subparsers.add_parser(
        "run",
        help="Back up volumes",
        description="Decide, transfer and prune every given (or configured) volume",
    )
    run_parser.add_argument(
        "-d",
        "--destination",
        metavar="DEST",
        help="Remote store: local path or ssh://user@host[:port]/path (overrides config)",
    )
    run_parser.add_argument(
        "-i",
        "--identity",
        metavar="KEYFILE",
        help="SSH private key for the destination (overrides config)",
    )
    mode = run_parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--self-managed",
        dest="self_managed",
        action="store_true",
        default=None,
        help="Create and destroy snapshots as needed",
    )
    mode.add_argument(
        "--external",
        dest="self_managed",
        action="store_false",
        help="Only back up existing snapshots matching the prefix",
    )
    add_volume_args(run_parser)

    # prune command
    prune_parser = subparsers.add_parser(
        "prune",
        help="Apply retention policy",
        description="Delete remote artifacts older than the latest full backup",
    )
    prune_parser.add_argument(
        "-d",
        "--destination",
        metavar="DEST",
        help="Remote store (overrides config)",
    )
    prune_parser.add_argument(
        "-i",
        "--identity",
        metavar="KEYFILE",
        help="SSH private key for the destination (overrides config)",
    )
    prune_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without making changes",
    )
    add_volume_args(prune_parser)

    # list command
    list_parser = subparsers.add_parser(
        "list",
        help="Show remote backups",
        description="List the backup chain of each volume at the remote store",
    )
    list_parser.add_argument(
        "-d",
        "--destination",
        metavar="DEST",
        help="Remote store (overrides config)",
    )
    list_parser.add_argument(
        "-i",
        "--identity",
        metavar="KEYFILE",
        help="SSH private key for the destination (overrides config)",
    )
    list_parser.add_argument(
        "--json",
        action="store_true",
        help="Output in JSON format",
    )
    list_parser.add_argument(
        "-t",
        "--transactions",
        type=int,
        metavar="N",
        help="Show the last N transaction log records instead",
    )
    add_volume_args(list_parser)

    # config command with subcommands
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Validate or initialize configuration",
    )
    config_subs = config_parser.add_subparsers(dest="config_action")
    config_subs.add_parser(
        "validate",
        help="Validate configuration file",
    )
    init_parser = config_subs.add_parser(
        "init",
        help="Generate example configuration",
    )
    init_parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Output file (default: stdout)",
    )
    init_parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Overwrite an existing output file",
    )

    return parser


def run_subcommand(args: argparse.Namespace) -> int:
    """Run the specified subcommand.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    from .. import __version__

    if args.version:
        print(f"zfs-backup-ng {__version__}")
        return 0

    if not args.command:
        print("No command specified. Use --help for usage information.")
        return 1

    handlers: dict[str, Callable] = {
        "run": cmd_run,
        "prune": cmd_prune,
        "list": cmd_list,
        "config": cmd_config,
    }

    handler = handlers.get(args.command)
    if handler:
        return handler(args)
    else:
        print(f"Unknown command: {args.command}")
        return 1


def cmd_run(args: argparse.Namespace) -> int:
    """Execute run command."""
    from .run import execute_run

    return execute_run(args)


def cmd_prune(args: argparse.Namespace) -> int:
    """Execute prune command."""
    from .prune import execute_prune

    return execute_prune(args)


def cmd_list(args: argparse.Namespace) -> int:
    """Execute list command."""
    from .list_cmd import execute_list

    return execute_list(args)


def cmd_config(args: argparse.Namespace) -> int:
    """Execute config command."""
    from .config_cmd import execute_config

    return execute_config(args)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for zfs-backup-ng CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_subcommand_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse exits with 2 on usage errors
        return 0 if e.code == 0 else 1

    return run_subcommand(args)
