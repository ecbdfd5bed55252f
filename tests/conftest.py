"""Pytest configuration and shared fixtures."""

import subprocess
from datetime import datetime, timedelta

import pytest

from zfs_backup_ng.config import loader
from zfs_backup_ng.core.artifact import BackupArtifact, BackupChain, BackupKind
from zfs_backup_ng.endpoint.local import LocalRemoteStore


class FakeSnapshots:
    """In-memory snapshot subsystem whose send stream is a shell script."""

    def __init__(self, snapshots=None, extract_script="printf 'stream-data'"):
        self.snapshots = {k: list(v) for k, v in (snapshots or {}).items()}
        self.extract_script = extract_script
        self.created = []
        self.destroyed = []
        self.extract_calls = []

    def list_snapshots(self, volume):
        return sorted(self.snapshots.get(volume, []))

    def create_snapshot(self, volume, name):
        self.snapshots.setdefault(volume, []).append(name)
        self.created.append((volume, name))

    def destroy_snapshot(self, volume, name):
        self.snapshots[volume].remove(name)
        self.destroyed.append((volume, name))

    def extract_stream(self, volume, base, target, stderr=None):
        self.extract_calls.append((volume, base, target))
        return subprocess.Popen(
            ["sh", "-c", self.extract_script], stdout=subprocess.PIPE, stderr=stderr
        )


class FakeContext:
    """Stands in for RunContext inside the pipeline."""

    def __init__(self, work_dir):
        self.work_dir = work_dir
        self.tracked = []
        self.ever_tracked = []

    def track(self, proc):
        self.tracked.append(proc)
        self.ever_tracked.append(proc)

    def untrack(self, proc):
        self.tracked.remove(proc)


def snapshot_names(count, start=datetime(2023, 12, 20), prefix="bak-"):
    """``count`` daily snapshot names, oldest first."""
    return [
        (start + timedelta(days=i)).strftime(f"{prefix}%Y%m%d-%H%M")
        for i in range(count)
    ]


def make_chain(volume, snapshots, kinds=None):
    """Chain over ``snapshots``; FULL first, INCREMENTAL after, unless ``kinds``."""
    if kinds is None:
        kinds = [BackupKind.FULL] + [BackupKind.INCREMENTAL] * (len(snapshots) - 1)
    return BackupChain(
        volume,
        [BackupArtifact(volume, snap, kind) for snap, kind in zip(snapshots, kinds)],
    )


@pytest.fixture(autouse=True)
def no_system_config(monkeypatch):
    """Never pick up a config file of the machine running the tests."""
    monkeypatch.setattr(loader, "CONFIG_PATHS", [])


@pytest.fixture
def remote_dir(tmp_path):
    path = tmp_path / "remote"
    path.mkdir()
    return path


@pytest.fixture
def local_store(remote_dir):
    store = LocalRemoteStore(config={"path": remote_dir})
    store.prepare()
    return store


@pytest.fixture
def fake_snapshots():
    return FakeSnapshots()


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
[global]
destination = "ssh://backup@nas:2222/backups/zfs"
ssh_key = "/root/.ssh/backup"
full_backup_interval = 7
snapshot_prefix = "auto-"
snapshot_timestamp_format = "%Y-%m-%d_%H%M"
self_managed_snapshots = true
compress = ["zstd", "-c"]
encrypt = "age -r age1example"
transaction_log = "/var/log/zfs-backup-ng/transactions.jsonl"
stage_timeout = 3600

[global.retention]
policy = "latest-full"
keep_chains = 2

[[volumes]]
name = "tank/home"

[[volumes]]
name = "tank/var/log"
full_backup_interval = 30
self_managed_snapshots = false

[[volumes]]
name = "tank/scratch"
enabled = false
"""


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid TOML configuration string."""
    return """
[global]
destination = "/mnt/backup"

[[volumes]]
name = "tank/home"
"""


@pytest.fixture
def tmp_config_dir(tmp_path):
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def config_file(tmp_config_dir, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path


@pytest.fixture
def minimal_config_file(tmp_config_dir, minimal_config_toml):
    config_path = tmp_config_dir / "minimal.toml"
    config_path.write_text(minimal_config_toml)
    return config_path
