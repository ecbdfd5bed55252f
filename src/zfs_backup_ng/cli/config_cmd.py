"""Config command: check a configuration file or write an example one."""

import argparse
import logging
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..__logger__ import create_logger
from ..config import Config, ConfigError, find_config_file, load_config
from ..config import loader
from .common import get_log_level

logger = logging.getLogger(__name__)


def execute_config(args: argparse.Namespace) -> int:
    """Execute the config command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    create_logger(get_log_level(args))

    actions = {
        "validate": _validate_config,
        "init": _init_config,
    }
    action = actions.get(getattr(args, "config_action", None))
    if action is None:
        print("Usage: zfs-backup-ng config <validate|init>")
        return 1
    return action(args)


def _validate_config(args: argparse.Namespace) -> int:
    """Load the configuration and show how every volume will be handled."""
    console = Console()
    try:
        config_path = find_config_file(getattr(args, "config", None))
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return 1

    if config_path is None:
        console.print("No configuration file found. Searched:")
        for path in loader.CONFIG_PATHS:
            console.print(f"  {path}")
        return 1

    console.print(f"Validating: {config_path}")
    try:
        config, warnings = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        return 1

    for warning in warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")

    global_config = config.global_config
    console.print("Configuration is valid.")
    console.print(f"Destination: {global_config.destination or '(none)'}")
    console.print(
        f"Retention: {global_config.retention.policy}"
        f" (keep {global_config.retention.keep_chains} chain(s))"
    )
    if config.volumes:
        console.print(_volume_table(config))
    return 0


def _volume_table(config: Config) -> Table:
    table = Table(title="Volumes")
    table.add_column("Volume")
    table.add_column("Enabled")
    table.add_column("Full every", justify="right")
    table.add_column("Snapshots")
    for volume in config.volumes:
        table.add_row(
            volume.name,
            "yes" if volume.enabled else "no",
            str(config.get_full_backup_interval(volume)),
            "self-managed" if config.is_self_managed(volume) else "external",
        )
    return table


def _init_config(args: argparse.Namespace) -> int:
    """Print an example configuration, or write it to --output."""
    content = loader.generate_example_config()

    output = getattr(args, "output", None)
    if not output:
        print(content)
        return 0

    path = Path(output)
    if path.exists() and not getattr(args, "force", False):
        logger.error("%s already exists, use --force to overwrite it", path)
        return 1
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        logger.error("Cannot write %s: %s", path, e)
        return 1
    logger.info("Example configuration written to %s", path)
    return 0
