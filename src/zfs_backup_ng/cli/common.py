"""Shared CLI utilities and argument parsers."""

import argparse
import logging

from ..config import Config, ConfigError, VolumeConfig, find_config_file, load_config

logger = logging.getLogger(__name__)


def create_global_parser() -> argparse.ArgumentParser:
    """Create a parser with global options that can be used as a parent."""
    parser = argparse.ArgumentParser(add_help=False)
    add_verbosity_args(parser)
    return parser


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )


def add_volume_args(parser: argparse.ArgumentParser) -> None:
    """Add the positional volume list."""
    parser.add_argument(
        "volumes",
        nargs="*",
        metavar="VOLUME",
        help="Datasets to process (default: all enabled volumes in the config)",
    )


def get_log_level(args: argparse.Namespace) -> str:
    """Determine log level from parsed arguments.

    Args:
        args: Parsed command line arguments

    Returns:
        Log level string (DEBUG, INFO, WARNING, ERROR)
    """
    if getattr(args, "debug", False):
        return "DEBUG"
    elif getattr(args, "quiet", False):
        return "WARNING"
    elif getattr(args, "verbose", False):
        return "DEBUG"
    else:
        return "INFO"


def load_effective_config(args: argparse.Namespace) -> Config:
    """Load the config file (if any) and apply command line overrides.

    Without a config file the defaults are used, so a run can be fully
    described on the command line.

    Raises:
        ConfigError: If the config file can't be loaded
    """
    config_path = find_config_file(getattr(args, "config", None))
    if config_path is None:
        logger.debug("No configuration file found, using defaults")
        config = Config()
    else:
        logger.info("Loading configuration from: %s", config_path)
        config, warnings = load_config(config_path)
        for warning in warnings:
            logger.warning("Config: %s", warning)

    global_config = config.global_config
    if getattr(args, "destination", None):
        global_config.destination = args.destination
    if getattr(args, "identity", None):
        global_config.ssh_key = args.identity
    self_managed = getattr(args, "self_managed", None)
    if self_managed is not None:
        global_config.self_managed_snapshots = self_managed
        # The command line wins over per-volume settings too
        for volume in config.volumes:
            volume.self_managed_snapshots = None

    return config


def select_volumes(config: Config, names: list[str] | None) -> list[VolumeConfig]:
    """Volumes named on the command line, or all enabled configured ones."""
    if not names:
        return config.get_enabled_volumes()

    configured = {v.name: v for v in config.volumes}
    selected = []
    for name in names:
        name = name.strip("/")
        selected.append(configured.get(name) or VolumeConfig(name=name))
    return selected


def require(condition: bool, message: str) -> None:
    """Raise ConfigError with ``message`` unless ``condition`` holds."""
    if not condition:
        raise ConfigError(message)


def open_store(config: Config):
    """Create the remote store for the configured destination.

    Raises:
        ConfigError: If no usable destination is configured
    """
    from .. import endpoint

    global_config = config.global_config
    require(bool(global_config.destination), "No destination given")
    try:
        return endpoint.choose_endpoint(
            global_config.destination,
            {"ssh_identity_file": global_config.ssh_key},
        )
    except ValueError as e:
        raise ConfigError(str(e)) from e
