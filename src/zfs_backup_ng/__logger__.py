# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/__logger__.py
A common logger for displaying through rich.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler

# Initialize basic console and handler
cons = Console(stderr=True)
rich_handler = RichHandler(console=cons, show_path=False)
# Create a logger directly
logger = logging.Logger("zfs-backup-ng", logging.INFO)


def create_logger(level="INFO", log_file=None) -> None:
    """Helper function to setup logging on the console and an optional file."""
    # pylint: disable=global-statement
    global cons, rich_handler

    cons = Console(stderr=True)
    rich_handler = RichHandler(console=cons, show_path=False)
    handlers: list[logging.Handler] = [rich_handler]

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        handlers.append(file_handler)

    logger.handlers.clear()
    logger.propagate = False
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)

    logging.basicConfig(
        format="%(message)s",
        datefmt="%H:%M:%S",
        level=level,
        handlers=handlers,
        force=True,
    )
