"""Snapshot history: merge policy, snapshot store, tracking registry, score service."""

from neynar_history.history.merge import (
    SUPPORTED_WINDOW_DAYS,
    SnapshotDelta,
    change_timeline,
    merge_snapshot,
    with_deltas,
)
from neynar_history.history.registry import TrackingRegistry, TrackResult
from neynar_history.history.store import AppendResult, SnapshotStore

__all__ = [
    "SUPPORTED_WINDOW_DAYS",
    "AppendResult",
    "SnapshotDelta",
    "SnapshotStore",
    "TrackResult",
    "TrackingRegistry",
    "change_timeline",
    "merge_snapshot",
    "with_deltas",
]
