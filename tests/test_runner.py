"""Tests for the run driver."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from zfs_backup_ng.__util__ import TransportError
from zfs_backup_ng.config import Config, GlobalConfig, VolumeConfig
from zfs_backup_ng.core.runner import BackupRunner, VolumeStatus

from conftest import FakeSnapshots, snapshot_names


def make_config(**kwargs):
    kwargs.setdefault("compress", ["cat"])
    kwargs.setdefault("encrypt", ["cat"])
    return Config(global_config=GlobalConfig(**kwargs))


class Clock:
    """Advances one day per call."""

    def __init__(self, start=datetime(2024, 1, 1, 2, 0)):
        self.current = start - timedelta(days=1)

    def __call__(self):
        self.current += timedelta(days=1)
        return self.current


class TestBackupRunner:
    """Tests for BackupRunner."""

    def test_skip_and_commit(self, local_store, remote_dir):
        done = snapshot_names(1)[0]
        (remote_dir / f"tank_a-{done}.full").write_text("x")
        snapshots = FakeSnapshots(
            {"tank/a": [done], "tank/b": snapshot_names(2)}
        )
        runner = BackupRunner(make_config(), local_store, snapshots)

        summary = runner.run([VolumeConfig("tank/a"), VolumeConfig("tank/b")])

        statuses = {o.volume: o.status for o in summary.outcomes}
        assert statuses == {
            "tank/a": VolumeStatus.SKIPPED,
            "tank/b": VolumeStatus.COMMITTED,
        }
        assert summary.count(VolumeStatus.COMMITTED) == 1
        assert summary.failed == []
        assert summary.completed_at >= summary.started_at
        assert (remote_dir / f"tank_b-{snapshot_names(2)[1]}.full").exists()

    def test_full_cycle(self, local_store, remote_dir):
        """Scenario: FULL, INCR, INCR, then FULL again and prune the old cycle."""
        config = make_config(full_backup_interval=3, self_managed_snapshots=True)
        snapshots = FakeSnapshots({"tank/home": []})
        runner = BackupRunner(config, local_store, snapshots, now=Clock())
        volume = VolumeConfig("tank/home")

        kinds = []
        for _ in range(4):
            outcome = runner.backup_volume(volume)
            assert outcome.status is VolumeStatus.COMMITTED
            kinds.append(outcome.plan.kind.value)

        assert kinds == ["full", "incr", "incr", "full"]
        assert outcome.pruned == 3
        assert [p.name for p in remote_dir.iterdir()] == [
            "tank_home-bak-20240104-0200.full"
        ]
        # stale snapshots were destroyed before the second full backup
        assert snapshots.list_snapshots("tank/home") == [
            "bak-20240103-0200",
            "bak-20240104-0200",
        ]

    def test_removes_stale_temporary_objects(self, local_store, remote_dir):
        names = snapshot_names(2)
        stale = f"tank_home-{names[0]}.full#"
        (remote_dir / stale).write_text("partial")
        snapshots = FakeSnapshots({"tank/home": names})
        runner = BackupRunner(make_config(), local_store, snapshots)

        outcome = runner.backup_volume(VolumeConfig("tank/home"))

        assert outcome.status is VolumeStatus.COMMITTED
        assert not (remote_dir / stale).exists()

    def test_listing_failure(self):
        store = MagicMock()
        store.list_names.side_effect = TransportError("host unreachable")
        snapshots = FakeSnapshots({"tank/home": snapshot_names(1)})
        runner = BackupRunner(make_config(), store, snapshots)

        summary = runner.run([VolumeConfig("tank/home")])

        assert summary.outcomes[0].status is VolumeStatus.FAILED
        assert "host unreachable" in summary.outcomes[0].message
        assert snapshots.extract_calls == []

    def test_transfer_failure_skips_prune(self, local_store, remote_dir):
        names = snapshot_names(3)
        for name in names[:2]:
            (remote_dir / f"tank_home-{name}.full").write_text("x")
        snapshots = FakeSnapshots({"tank/home": names}, extract_script="exit 1")
        runner = BackupRunner(make_config(), local_store, snapshots)

        outcome = runner.backup_volume(VolumeConfig("tank/home"))

        assert outcome.status is VolumeStatus.FAILED
        assert outcome.pruned == 0
        assert len(list(remote_dir.iterdir())) == 2

    def test_unexpected_error_does_not_stop_run(self, local_store):
        snapshots = FakeSnapshots({"tank/b": snapshot_names(1)})
        original = snapshots.list_snapshots

        def list_snapshots(volume):
            if volume == "tank/a":
                raise RuntimeError("zfs exploded")
            return original(volume)

        snapshots.list_snapshots = list_snapshots
        runner = BackupRunner(make_config(), local_store, snapshots)

        summary = runner.run([VolumeConfig("tank/a"), VolumeConfig("tank/b")])

        assert [o.status for o in summary.outcomes] == [
            VolumeStatus.FAILED,
            VolumeStatus.COMMITTED,
        ]

    def test_volume_overrides(self, local_store):
        config = make_config(full_backup_interval=14)
        config.volumes = [VolumeConfig("tank/home", full_backup_interval=2)]
        runner = BackupRunner(config, local_store, FakeSnapshots())

        planner = runner.planner_for(config.volumes[0])

        assert planner.full_backup_interval == 2
        assert planner.self_managed is False

    def test_prefixed_name_without_timestamp_is_not_backed_up(
        self, local_store, remote_dir
    ):
        snapshots = FakeSnapshots({"tank/home": ["bak-20240101-0000", "bak-manual"]})
        runner = BackupRunner(make_config(), local_store, snapshots)
        volume = VolumeConfig("tank/home")

        first = runner.backup_volume(volume)
        second = runner.backup_volume(volume)

        assert first.status is VolumeStatus.COMMITTED
        assert first.plan.target == "bak-20240101-0000"
        assert second.status is VolumeStatus.SKIPPED
        assert [p.name for p in remote_dir.iterdir()] == [
            "tank_home-bak-20240101-0000.full"
        ]

    def test_interrupt_before_transfer_destroys_created_snapshot(
        self, local_store, remote_dir, monkeypatch
    ):
        config = make_config(self_managed_snapshots=True)
        snapshots = FakeSnapshots({"tank/home": []})
        runner = BackupRunner(config, local_store, snapshots, now=Clock())

        def interrupted(plan, chain):
            raise KeyboardInterrupt

        monkeypatch.setattr(runner.pipeline, "run", interrupted)

        with pytest.raises(KeyboardInterrupt):
            runner.backup_volume(VolumeConfig("tank/home"))

        assert snapshots.created == [("tank/home", "bak-20240101-0200")]
        assert snapshots.destroyed == [("tank/home", "bak-20240101-0200")]
        assert list(remote_dir.iterdir()) == []
