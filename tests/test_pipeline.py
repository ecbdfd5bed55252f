"""Tests for the transfer pipeline."""

import pytest

from zfs_backup_ng.core.artifact import BackupChain, BackupKind
from zfs_backup_ng.core.pipeline import Stage, TransferPipeline
from zfs_backup_ng.core.planning import BackupPlan
from zfs_backup_ng.transaction import read_transaction_log, set_transaction_log

from conftest import FakeContext, FakeSnapshots, make_chain

VOLUME = "tank/home"
TARGET = "bak-20240110-0300"


def full_plan(created_snapshot=False):
    return BackupPlan(
        volume=VOLUME,
        kind=BackupKind.FULL,
        base=None,
        target=TARGET,
        remote_name=f"tank_home-{TARGET}.full",
        created_snapshot=created_snapshot,
    )


def make_pipeline(snapshots, store, compress=None, encrypt=None, **kwargs):
    return TransferPipeline(
        snapshots,
        store,
        compress=compress or ["cat"],
        encrypt=encrypt or ["cat"],
        **kwargs,
    )


@pytest.fixture
def transaction_log(tmp_path):
    log_path = tmp_path / "transactions.jsonl"
    set_transaction_log(log_path)
    yield log_path
    set_transaction_log(None)


class TestSuccessfulTransfer:
    """Tests for a transfer where every stage succeeds."""

    def test_commits_artifact(self, local_store, remote_dir):
        snapshots = FakeSnapshots({VOLUME: [TARGET]})
        chain = BackupChain(VOLUME)
        plan = full_plan()

        result = make_pipeline(snapshots, local_store).run(plan, chain)

        assert result.success
        assert result.error is None
        assert (remote_dir / plan.remote_name).read_text() == "stream-data"
        assert not (remote_dir / (plan.remote_name + "#")).exists()
        assert chain.last == plan.artifact
        assert result.returncodes() == {
            "extract": 0,
            "compress": 0,
            "encrypt": 0,
            "transport": 0,
        }

    def test_stages_transform_stream(self, local_store, remote_dir):
        snapshots = FakeSnapshots({VOLUME: [TARGET]})
        plan = full_plan()

        result = make_pipeline(
            snapshots,
            local_store,
            compress=["tr", "a-z", "A-Z"],
            encrypt=["sed", "s/^/x:/"],
        ).run(plan, BackupChain(VOLUME))

        assert result.success
        assert (remote_dir / plan.remote_name).read_text().strip() == "x:STREAM-DATA"

    def test_incremental_appends_to_chain(self, local_store):
        snapshots = FakeSnapshots({VOLUME: ["bak-20240109-0300", TARGET]})
        chain = make_chain(VOLUME, ["bak-20240109-0300"])
        plan = BackupPlan(
            volume=VOLUME,
            kind=BackupKind.INCREMENTAL,
            base="bak-20240109-0300",
            target=TARGET,
            remote_name=f"tank_home-{TARGET}.incr",
        )

        result = make_pipeline(snapshots, local_store).run(plan, chain)

        assert result.success
        assert snapshots.extract_calls == [(VOLUME, "bak-20240109-0300", TARGET)]
        assert len(chain) == 2
        assert chain.base_of(1) == "bak-20240109-0300"

    def test_tracks_and_untracks_processes(self, local_store, tmp_path):
        context = FakeContext(tmp_path)
        snapshots = FakeSnapshots({VOLUME: [TARGET]})

        result = make_pipeline(snapshots, local_store, context=context).run(
            full_plan(), BackupChain(VOLUME)
        )

        assert result.success
        assert len(context.ever_tracked) == 4
        assert context.tracked == []

    def test_logs_transactions(self, local_store, transaction_log):
        snapshots = FakeSnapshots({VOLUME: [TARGET]})

        make_pipeline(snapshots, local_store).run(full_plan(), BackupChain(VOLUME))

        records = read_transaction_log(transaction_log)
        assert [r["status"] for r in records] == ["started", "completed"]
        assert records[1]["artifact"] == f"tank_home-{TARGET}.full"
        assert records[1]["details"]["returncodes"]["transport"] == 0


class TestFailedTransfer:
    """Tests for rollback when a stage fails."""

    def test_extract_failure_rolls_back(self, local_store, remote_dir):
        """Scenario: the send stream breaks off halfway."""
        snapshots = FakeSnapshots(
            {VOLUME: [TARGET]}, extract_script="printf partial; exit 3"
        )
        chain = BackupChain(VOLUME)
        plan = full_plan(created_snapshot=True)

        result = make_pipeline(snapshots, local_store).run(plan, chain)

        assert not result.success
        assert result.returncodes()["extract"] == 3
        assert [s.stage for s in result.failed_stages()] == [Stage.EXTRACT]
        assert list(remote_dir.iterdir()) == []
        assert len(chain) == 0
        assert snapshots.destroyed == [(VOLUME, TARGET)]

    def test_encrypt_failure_rolls_back(self, local_store, remote_dir):
        snapshots = FakeSnapshots({VOLUME: [TARGET]})

        result = make_pipeline(
            snapshots, local_store, encrypt=["sh", "-c", "cat >/dev/null; exit 2"]
        ).run(full_plan(), BackupChain(VOLUME))

        assert not result.success
        assert result.returncodes()["encrypt"] == 2
        assert list(remote_dir.iterdir()) == []
        # the snapshot was not created for this attempt
        assert snapshots.destroyed == []

    def test_missing_command(self, local_store, remote_dir):
        snapshots = FakeSnapshots({VOLUME: [TARGET]})

        result = make_pipeline(
            snapshots, local_store, compress=["no-such-compressor-zbng"]
        ).run(full_plan(created_snapshot=True), BackupChain(VOLUME))

        assert not result.success
        assert "no-such-compressor-zbng" in result.error
        assert result.returncodes()["compress"] is None
        assert list(remote_dir.iterdir()) == []
        assert snapshots.destroyed == [(VOLUME, TARGET)]

    def test_timeout_kills_stages(self, local_store, remote_dir):
        snapshots = FakeSnapshots({VOLUME: [TARGET]}, extract_script="exec sleep 5")

        result = make_pipeline(snapshots, local_store, stage_timeout=0.2).run(
            full_plan(), BackupChain(VOLUME)
        )

        assert not result.success
        assert result.returncodes()["transport"] is None
        assert result.duration_seconds < 5
        assert list(remote_dir.iterdir()) == []

    def test_captures_stage_stderr(self, local_store, tmp_path):
        context = FakeContext(tmp_path)
        snapshots = FakeSnapshots(
            {VOLUME: [TARGET]}, extract_script="echo boom >&2; exit 1"
        )

        result = make_pipeline(snapshots, local_store, context=context).run(
            full_plan(), BackupChain(VOLUME)
        )

        assert not result.success
        assert result.stages[0].stage is Stage.EXTRACT
        assert result.stages[0].stderr == "boom"

    def test_failure_is_logged(self, local_store, transaction_log):
        snapshots = FakeSnapshots({VOLUME: [TARGET]}, extract_script="exit 1")

        make_pipeline(snapshots, local_store).run(full_plan(), BackupChain(VOLUME))

        records = read_transaction_log(transaction_log, status_filter="failed")
        assert len(records) == 1
        assert records[0]["details"]["returncodes"]["extract"] == 1

    def test_interrupt_rolls_back_and_propagates(
        self, local_store, remote_dir, monkeypatch
    ):
        snapshots = FakeSnapshots({VOLUME: [TARGET]})
        chain = BackupChain(VOLUME)

        def interrupted(self, processes):
            raise KeyboardInterrupt

        monkeypatch.setattr(TransferPipeline, "_wait", interrupted)

        with pytest.raises(KeyboardInterrupt):
            make_pipeline(snapshots, local_store).run(
                full_plan(created_snapshot=True), chain
            )

        assert list(remote_dir.iterdir()) == []
        assert len(chain) == 0
        assert snapshots.destroyed == [(VOLUME, TARGET)]

    def test_interrupt_during_commit_rolls_back(
        self, local_store, remote_dir, monkeypatch
    ):
        snapshots = FakeSnapshots({VOLUME: [TARGET]})
        chain = BackupChain(VOLUME)
        plan = full_plan(created_snapshot=True)

        def interrupted(source, destination):
            raise KeyboardInterrupt

        monkeypatch.setattr(local_store, "rename", interrupted)

        with pytest.raises(KeyboardInterrupt):
            make_pipeline(snapshots, local_store).run(plan, chain)

        assert list(remote_dir.iterdir()) == []
        assert len(chain) == 0
        assert snapshots.destroyed == [(VOLUME, TARGET)]
        assert plan.created_snapshot is False

    def test_interrupt_after_commit_keeps_artifact(
        self, local_store, remote_dir, monkeypatch
    ):
        snapshots = FakeSnapshots({VOLUME: [TARGET]})
        chain = BackupChain(VOLUME)
        plan = full_plan(created_snapshot=True)

        def interrupted(artifact, base=None):
            raise KeyboardInterrupt

        monkeypatch.setattr(chain, "append", interrupted)

        with pytest.raises(KeyboardInterrupt):
            make_pipeline(snapshots, local_store).run(plan, chain)

        assert [p.name for p in remote_dir.iterdir()] == [plan.remote_name]
        assert snapshots.destroyed == []
        assert plan.created_snapshot is False
