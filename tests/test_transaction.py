"""Tests for transaction logging."""

import json
from pathlib import Path
from unittest.mock import patch

import pytest

import zfs_backup_ng.transaction as txn_module
from zfs_backup_ng.transaction import (
    get_transaction_log,
    log_transaction,
    read_transaction_log,
    set_transaction_log,
)


@pytest.fixture
def log_path(tmp_path):
    path = tmp_path / "transactions.jsonl"
    set_transaction_log(path)
    yield path
    set_transaction_log(None)


class TestSetTransactionLog:
    """Tests for set_transaction_log function."""

    def test_set_path(self, log_path):
        """Test setting transaction log path."""
        log_transaction(action="test", status="completed")

        assert log_path.exists()
        assert get_transaction_log() == log_path

    def test_set_none_disables_logging(self, tmp_path):
        """Test setting None disables logging."""
        path = tmp_path / "transactions.jsonl"
        set_transaction_log(path)
        set_transaction_log(None)

        log_transaction(action="test", status="completed")

        assert not path.exists()
        assert get_transaction_log() is None

    def test_creates_parent_directories(self, tmp_path):
        """Test creates parent directories if needed."""
        path = tmp_path / "deep" / "nested" / "transactions.jsonl"
        set_transaction_log(str(path))

        try:
            assert path.parent.is_dir()
        finally:
            set_transaction_log(None)


class TestLogTransaction:
    """Tests for log_transaction function."""

    def test_logs_all_fields(self, log_path):
        log_transaction(
            action="transfer",
            status="completed",
            volume="tank/home",
            destination="/mnt/backup",
            snapshot="bak-20240102-0000",
            parent="bak-20240101-0000",
            artifact="tank_home-bak-20240102-0000.incr",
            duration_seconds=12.5,
            details={"returncodes": {"extract": 0}},
        )

        record = json.loads(log_path.read_text().strip())
        assert record["action"] == "transfer"
        assert record["volume"] == "tank/home"
        assert record["parent"] == "bak-20240101-0000"
        assert record["details"] == {"returncodes": {"extract": 0}}
        assert "timestamp" in record
        assert "pid" in record

    def test_omits_none_fields(self, log_path):
        log_transaction(action="prune", status="completed")

        record = json.loads(log_path.read_text().strip())
        assert "error" not in record
        assert "snapshot" not in record

    def test_appends_to_log(self, log_path):
        log_transaction(action="first", status="completed")
        log_transaction(action="second", status="failed", error="boom")

        lines = log_path.read_text().strip().split("\n")
        assert len(lines) == 2
        assert json.loads(lines[1])["error"] == "boom"

    def test_rounds_duration(self, log_path):
        log_transaction(action="transfer", status="completed", duration_seconds=1.23456)

        record = json.loads(log_path.read_text().strip())
        assert record["duration_seconds"] == 1.235

    def test_handles_write_error(self, log_path):
        """Write errors must not propagate."""
        with patch("builtins.open", side_effect=OSError("Disk full")):
            log_transaction(action="test", status="completed")

        assert txn_module.get_transaction_log() == log_path


class TestReadTransactionLog:
    """Tests for read_transaction_log function."""

    def test_reads_nonexistent_log(self, tmp_path):
        assert read_transaction_log(tmp_path / "missing.jsonl") == []

    def test_reads_entries_oldest_first(self, log_path):
        log_transaction(action="transfer", status="started")
        log_transaction(action="transfer", status="completed")

        result = read_transaction_log()

        assert [r["status"] for r in result] == ["started", "completed"]

    def test_limit_keeps_newest(self, log_path):
        for i in range(10):
            log_transaction(action=f"action-{i}", status="completed")

        result = read_transaction_log(log_path, limit=3)

        assert [r["action"] for r in result] == ["action-7", "action-8", "action-9"]

    def test_filters(self, log_path):
        log_transaction(action="transfer", status="started")
        log_transaction(action="transfer", status="failed")
        log_transaction(action="prune", status="completed")

        assert len(read_transaction_log(log_path, action_filter="transfer")) == 2
        failed = read_transaction_log(log_path, status_filter="failed")
        assert [r["action"] for r in failed] == ["transfer"]

    def test_skips_invalid_lines(self, tmp_path):
        path = Path(tmp_path / "transactions.jsonl")
        path.write_text(
            '{"action": "valid", "status": "completed"}\n'
            "not valid json\n"
            "\n"
            '{"action": "also_valid", "status": "completed"}\n'
        )

        assert len(read_transaction_log(path)) == 2
