"""
sslib.state — Status enums and the migration context record.

Provider status strings are converted to enums at the boundary; anything the
toolkit does not recognise raises instead of falling through.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sslib.errors import UnexpectedStatusError


class SnapshotStatus(Enum):
    """ElastiCache snapshot states, plus the synthetic NOT_FOUND."""

    CREATING = "creating"
    AVAILABLE = "available"
    FAILED = "failed"
    NOT_FOUND = "not-found"
    COPYING = "copying"
    EXPORTING = "exporting"
    RESTORING = "restoring"
    DELETING = "deleting"

    @classmethod
    def from_provider(cls, status: Optional[str], snapshot_name: str = "snapshot") -> "SnapshotStatus":
        """Map a DescribeSnapshots status string; None means the snapshot is gone."""
        if status is None:
            return cls.NOT_FOUND
        try:
            return cls(status.strip().lower())
        except ValueError:
            raise UnexpectedStatusError(f"snapshot {snapshot_name}", status) from None

    @property
    def is_terminal_failure(self) -> bool:
        return self in (SnapshotStatus.FAILED, SnapshotStatus.NOT_FOUND, SnapshotStatus.DELETING)


class MigrationState(Enum):
    """Linear progression of the migration driver."""

    NOT_STARTED = "NotStarted"
    SNAPSHOT_READY = "SnapshotReady"
    EXPORTED = "Exported"
    COPIED_TO_TARGET = "CopiedToTarget"
    CLUSTER_CREATED = "ClusterCreated"
    REPORTED = "Reported"


_ORDER = list(MigrationState)


@dataclass
class SnapshotDescriptor:
    name: str
    status: SnapshotStatus = SnapshotStatus.CREATING


@dataclass
class ClusterDescriptor:
    cluster_id: str
    node_type: str = ""
    engine_version: str = ""
    endpoint_address: str = ""
    endpoint_port: Optional[int] = None


@dataclass
class MigrationContext:
    """
    Everything one migration run resolves, threaded through each pipeline step.

    Attributes are filled in step by step; ``advance()`` enforces that the
    state only moves forward one step at a time.
    """

    config: Any
    source: Any
    target: Any
    state: MigrationState = MigrationState.NOT_STARTED
    started_at: datetime = field(default_factory=datetime.now)
    cluster: Optional[ClusterDescriptor] = None
    snapshot_name: str = ""
    export_bucket: str = ""
    export_name: str = ""
    rdb_file: str = ""
    import_bucket: str = ""
    target_stack_created: bool = False
    report_path: str = ""
    history: List[str] = field(default_factory=list)
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def cluster_id(self) -> str:
        return self.cluster.cluster_id if self.cluster else ""

    def advance(self, new_state: MigrationState) -> None:
        current = _ORDER.index(self.state)
        if _ORDER.index(new_state) != current + 1:
            raise ValueError(f"Cannot move from {self.state.value} to {new_state.value}")
        self.state = new_state
        self.history.append(new_state.value)
