"""
sslib.snapshots — ElastiCache snapshot status lookup and bounded wait.

botocore has no snapshot waiter for ElastiCache, so waiting is done with
poll_until() over describe_snapshots.
"""

import logging
import time
from typing import Any, Callable, Optional

from botocore.exceptions import ClientError

from sslib.errors import ProviderFailureError
from sslib.polling import PollResult, poll_until
from sslib.state import SnapshotStatus

logger = logging.getLogger(__name__)


def get_snapshot_status(elasticache, snapshot_name: str) -> SnapshotStatus:
    """Current status of a snapshot; a missing snapshot maps to NOT_FOUND."""
    try:
        snapshots = elasticache.describe_snapshots(SnapshotName=snapshot_name).get("Snapshots", [])
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "SnapshotNotFoundFault":
            return SnapshotStatus.NOT_FOUND
        raise
    status = snapshots[0].get("SnapshotStatus") if snapshots else None
    return SnapshotStatus.from_provider(status, snapshot_name)


def snapshot_ready(snapshot_name: str) -> Callable[[SnapshotStatus], bool]:
    """is_done predicate: True on AVAILABLE, raises on a terminal failure state."""
    def check(status: SnapshotStatus) -> bool:
        if status is SnapshotStatus.AVAILABLE:
            return True
        if status.is_terminal_failure:
            raise ProviderFailureError(f"Snapshot {snapshot_name} entered state '{status.value}'")
        return False
    return check


def wait_for_snapshot(
    elasticache,
    snapshot_name: str,
    interval: float = 30,
    max_attempts: int = 60,
    sleep: Callable[[float], Any] = time.sleep,
    on_pending: Optional[Callable[[SnapshotStatus, int, int], None]] = None,
) -> PollResult:
    """
    Poll a snapshot until it is available.

    Raises:
        ProviderFailureError: snapshot failed, disappeared or is being deleted
        UnexpectedStatusError: provider returned an unknown status string
        PollTimeoutError: still pending after max_attempts
    """
    return poll_until(
        lambda: get_snapshot_status(elasticache, snapshot_name),
        snapshot_ready(snapshot_name),
        f"snapshot {snapshot_name}",
        interval=interval,
        max_attempts=max_attempts,
        sleep=sleep,
        on_pending=on_pending,
    )
