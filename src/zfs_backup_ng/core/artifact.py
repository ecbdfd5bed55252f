"""Backup artifacts, their remote names, and the per-volume backup chain.

Remote names follow ``<flatVolumeName>-<snapshotName>.<full|incr>``. While a
transfer is in flight the object is stored as ``<name>#`` and only renamed to
its final name once every pipeline stage succeeded.
"""

import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional

from .. import __util__, flatten_volume_name

TEMP_SUFFIX = "#"


class BackupKind(Enum):
    """Kind of backup artifact, valued by its file name suffix."""

    FULL = "full"
    INCREMENTAL = "incr"


@dataclass(frozen=True)
class BackupArtifact:
    """A committed backup of one snapshot of one volume."""

    volume: str
    snapshot: str
    kind: BackupKind

    def remote_name(self, flatten_char: str = "_") -> str:
        return artifact_name(self.volume, self.snapshot, self.kind, flatten_char)

    @property
    def is_full(self) -> bool:
        return self.kind is BackupKind.FULL

    def __str__(self) -> str:
        return f"{self.volume}@{self.snapshot} ({self.kind.value})"


def artifact_name(
    volume: str, snapshot: str, kind: BackupKind, flatten_char: str = "_"
) -> str:
    """Build the remote name of an artifact."""
    return f"{flatten_volume_name(volume, flatten_char)}-{snapshot}.{kind.value}"


def temp_name(name: str) -> str:
    """Name under which an artifact is written before it is committed."""
    return name + TEMP_SUFFIX


def is_temp_name(name: str) -> bool:
    return name.endswith(TEMP_SUFFIX)


def snapshot_timestamp_valid(timestamp: str, timestamp_format: str) -> bool:
    """Whether ``timestamp`` parses under ``timestamp_format``."""
    try:
        time.strptime(timestamp, timestamp_format)
    except ValueError:
        return False
    return True


class ArtifactGrammar:
    """Strict parser for the remote names of one volume.

    Args:
        volume: Volume the names belong to
        snapshot_prefix: Prefix every snapshot name starts with
        timestamp_format: strftime format of the part after the prefix
        flatten_char: Character replacing '/' in the volume name
    """

    def __init__(
        self,
        volume: str,
        snapshot_prefix: str,
        timestamp_format: str,
        flatten_char: str = "_",
    ) -> None:
        self.volume = volume
        self.snapshot_prefix = snapshot_prefix
        self.timestamp_format = timestamp_format
        self.flatten_char = flatten_char
        self.list_prefix = f"{flatten_volume_name(volume, flatten_char)}-"
        kinds = "|".join(kind.value for kind in BackupKind)
        self._pattern = re.compile(
            rf"^{re.escape(self.list_prefix)}"
            rf"(?P<snapshot>{re.escape(snapshot_prefix)}(?P<timestamp>[^/]+))"
            rf"\.(?P<kind>{kinds})$"
        )

    def owns(self, name: str) -> bool:
        """Whether a name looks like one of this volume's artifacts.

        Names of other volumes whose flat name merely shares our prefix
        ("tank_a" vs "tank_a-b") are not ours.
        """
        return name.startswith(self.list_prefix + self.snapshot_prefix)

    def parse(self, name: str) -> BackupArtifact:
        """Parse a remote name.

        Raises:
            MalformedArtifactName: If the name doesn't follow the grammar
        """
        match = self._pattern.match(name)
        if match is None:
            raise __util__.MalformedArtifactName(
                f"{name!r} is not a valid artifact name for {self.volume}"
            )
        if not snapshot_timestamp_valid(
            match.group("timestamp"), self.timestamp_format
        ):
            raise __util__.MalformedArtifactName(
                f"{name!r} has a timestamp not matching "
                f"'{self.timestamp_format}'"
            )
        return BackupArtifact(
            volume=self.volume,
            snapshot=match.group("snapshot"),
            kind=BackupKind(match.group("kind")),
        )


@dataclass
class BackupChain:
    """Ordered history of committed artifacts of one volume.

    A well-formed chain starts with a FULL artifact and every INCREMENTAL
    is based on the snapshot of the artifact before it. ``append`` enforces
    this; chains read back from the remote store are taken as they are and
    checked with ``problems``.
    """

    volume: str
    artifacts: list[BackupArtifact] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.artifacts)

    def __iter__(self) -> Iterator[BackupArtifact]:
        return iter(self.artifacts)

    def __getitem__(self, index):
        return self.artifacts[index]

    @property
    def last(self) -> Optional[BackupArtifact]:
        return self.artifacts[-1] if self.artifacts else None

    def base_of(self, index: int) -> Optional[str]:
        """Snapshot an artifact's increment was taken against."""
        artifact = self.artifacts[index]
        if artifact.is_full or index == 0:
            return None
        return self.artifacts[index - 1].snapshot

    def full_indices(self) -> list[int]:
        return [i for i, a in enumerate(self.artifacts) if a.is_full]

    def latest_full_index(self) -> Optional[int]:
        """The retention boundary: index of the most recent FULL artifact."""
        indices = self.full_indices()
        return indices[-1] if indices else None

    def append(self, artifact: BackupArtifact, base: Optional[str] = None) -> None:
        """Add a freshly committed artifact.

        Raises:
            ChainError: If the artifact doesn't continue the chain
        """
        if artifact.volume != self.volume:
            raise __util__.ChainError(
                f"Artifact of {artifact.volume} added to chain of {self.volume}"
            )
        if artifact.kind is BackupKind.INCREMENTAL:
            if self.last is None:
                raise __util__.ChainError(
                    f"Incremental {artifact} can't start a chain"
                )
            if base != self.last.snapshot:
                raise __util__.ChainError(
                    f"Incremental {artifact} is based on {base}, "
                    f"but the chain ends with {self.last.snapshot}"
                )
        if self.last is not None and artifact.snapshot <= self.last.snapshot:
            raise __util__.ChainError(
                f"{artifact} is not newer than {self.last}"
            )
        self.artifacts.append(artifact)

    def remove(self, artifacts) -> None:
        doomed = set(artifacts)
        self.artifacts = [a for a in self.artifacts if a not in doomed]

    def problems(self) -> list[str]:
        """Describe every violation of the chain invariant."""
        problems = []
        if self.artifacts and not self.artifacts[0].is_full:
            problems.append(
                f"chain of {self.volume} starts with incremental "
                f"{self.artifacts[0].snapshot}"
            )
        snapshots = [a.snapshot for a in self.artifacts]
        if len(snapshots) != len(set(snapshots)):
            problems.append(f"chain of {self.volume} has duplicate snapshots")
        return problems
