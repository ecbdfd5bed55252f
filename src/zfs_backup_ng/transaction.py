"""Transaction log: JSON-lines audit trail of transfers and prunes.

Each record is a single JSON object on its own line so the log can be
appended to safely and tailed with standard tools.
"""

import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

_log_path: Optional[Path] = None
_log_lock = threading.Lock()


def set_transaction_log(path: Path | str | None) -> None:
    """Set (or clear, with None) the transaction log location."""
    global _log_path

    if path is None:
        _log_path = None
        return

    _log_path = Path(path)
    _log_path.parent.mkdir(parents=True, exist_ok=True)
    logger.debug("Transaction log: %s", _log_path)


def get_transaction_log() -> Optional[Path]:
    return _log_path


def log_transaction(
    action: str,
    status: str,
    volume: str | None = None,
    destination: str | None = None,
    snapshot: str | None = None,
    parent: str | None = None,
    artifact: str | None = None,
    duration_seconds: float | None = None,
    error: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Append one record to the transaction log, if enabled.

    None values are left out of the record. Write errors are logged and
    otherwise ignored, the audit trail must never break a backup.
    """
    if _log_path is None:
        return

    record: dict[str, Any] = {
        "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        "pid": os.getpid(),
        "action": action,
        "status": status,
    }
    optional = {
        "volume": volume,
        "destination": destination,
        "snapshot": snapshot,
        "parent": parent,
        "artifact": artifact,
        "duration_seconds": (
            round(duration_seconds, 3) if duration_seconds is not None else None
        ),
        "error": error,
        "details": details,
    }
    record.update({k: v for k, v in optional.items() if v is not None})

    with _log_lock:
        try:
            with open(_log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
        except OSError as e:
            logger.warning("Could not write transaction log %s: %s", _log_path, e)


def read_transaction_log(
    path: Path | str | None = None,
    limit: int | None = None,
    action_filter: str | None = None,
    status_filter: str | None = None,
) -> list[dict[str, Any]]:
    """Read records back, newest last.

    Args:
        path: Log file (defaults to the configured log)
        limit: Only return the last ``limit`` matching records
        action_filter: Only return records with this action
        status_filter: Only return records with this status

    Returns:
        List of record dicts
    """
    log_path = Path(path) if path is not None else _log_path
    if log_path is None or not log_path.exists():
        return []

    records = []
    with open(log_path, encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping invalid transaction record: %r", line)
                continue
            if action_filter and record.get("action") != action_filter:
                continue
            if status_filter and record.get("status") != status_filter:
                continue
            records.append(record)

    if limit is not None:
        records = records[-limit:]
    return records
