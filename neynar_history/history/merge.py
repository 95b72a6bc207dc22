"""
Snapshot history merge policy: dedupe window, ordering, retention.

A fid's history is a list of Snapshots sorted ascending by captured_at with no
two entries at the same instant. Every write goes through merge_snapshot, which
decides whether the candidate is appended, replaces the most recent entry, or
is inserted in order, and then trims the oldest entries beyond the retention
bound. Everything here is a pure function over lists; persistence and
atomicity belong to the storage backends.

Two dedupe policies:
- sliding (default): a candidate within the window of the last entry replaces
  that entry, so a burst of polls collapses into its latest observation.
- fixed: every entry within the window before the candidate is dropped, then
  the candidate is inserted (at most one point per window ending at the
  candidate).

The derived views (change_timeline, with_deltas) feed the history charts.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from datetime import datetime, timedelta

from neynar_history.storage.models import Snapshot, ensure_utc

DEFAULT_DEDUPE_WINDOW = timedelta(minutes=30)
DEFAULT_MAX_SNAPSHOTS = 2000
CHANGE_EPSILON = 1e-9

POLICY_SLIDING = "sliding"
POLICY_FIXED = "fixed"
POLICIES = (POLICY_SLIDING, POLICY_FIXED)

ACTION_APPEND = "append"
ACTION_REPLACE = "replace"
ACTION_INSERT = "insert"

SUPPORTED_WINDOW_DAYS = (7, 30, 90)


@dataclass(frozen=True)
class MergeOutcome:
    """Result of merging one candidate into a history."""

    history: list[Snapshot]
    action: str
    """append | replace | insert"""
    evicted: int = 0
    """Entries trimmed from the front by the retention bound."""


@dataclass(frozen=True)
class SnapshotDelta:
    """A snapshot paired with its score change from the previous entry."""

    snapshot: Snapshot
    delta: float

    def to_dict(self) -> dict:
        out = self.snapshot.to_dict()
        out["delta"] = self.delta
        return out


def _insert_sorted(history: list[Snapshot], candidate: Snapshot) -> list[Snapshot]:
    """Insert candidate at its ordered position; an entry at the same instant is replaced."""
    times = [s.captured_at for s in history]
    i = bisect.bisect_left(times, candidate.captured_at)
    if i < len(history) and history[i].captured_at == candidate.captured_at:
        return history[:i] + [candidate] + history[i + 1 :]
    return history[:i] + [candidate] + history[i:]


def merge_sliding(
    history: list[Snapshot],
    candidate: Snapshot,
    window: timedelta,
) -> tuple[list[Snapshot], str]:
    """Sliding-window dedupe against the last entry. Returns (new history, action)."""
    if not history:
        return [candidate], ACTION_APPEND
    last = history[-1]
    if abs(candidate.captured_at - last.captured_at) <= window:
        return _insert_sorted(history[:-1], candidate), ACTION_REPLACE
    if candidate.captured_at > last.captured_at:
        return history + [candidate], ACTION_APPEND
    # Older than the last entry by more than the window: backfill in order.
    replaced = any(s.captured_at == candidate.captured_at for s in history)
    return _insert_sorted(history, candidate), ACTION_REPLACE if replaced else ACTION_INSERT


def merge_fixed(
    history: list[Snapshot],
    candidate: Snapshot,
    window: timedelta,
) -> tuple[list[Snapshot], str]:
    """Drop entries in (candidate - window, candidate], then insert. Returns (new history, action)."""
    start = candidate.captured_at - window
    kept = [s for s in history if not (start < s.captured_at <= candidate.captured_at)]
    dropped = len(kept) != len(history)
    merged = _insert_sorted(kept, candidate)
    if dropped:
        return merged, ACTION_REPLACE
    if merged[-1] is candidate:
        return merged, ACTION_APPEND
    return merged, ACTION_INSERT


def apply_retention(history: list[Snapshot], max_snapshots: int) -> tuple[list[Snapshot], int]:
    """Keep the max_snapshots most recent entries. Returns (history, evicted count)."""
    if max_snapshots < 1:
        raise ValueError("max_snapshots must be >= 1")
    overflow = len(history) - max_snapshots
    if overflow <= 0:
        return history, 0
    return history[overflow:], overflow


def merge_snapshot(
    history: list[Snapshot],
    candidate: Snapshot,
    *,
    window: timedelta = DEFAULT_DEDUPE_WINDOW,
    max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
    policy: str = POLICY_SLIDING,
) -> MergeOutcome:
    """
    Merge candidate into history (sorted ascending) and apply retention.

    history entries must belong to candidate.fid. The input list is not modified.
    """
    if window < timedelta(0):
        raise ValueError("dedupe window must be non-negative")
    ordered = sorted(history, key=lambda s: s.captured_at)
    if policy == POLICY_SLIDING:
        merged, action = merge_sliding(ordered, candidate, window)
    elif policy == POLICY_FIXED:
        merged, action = merge_fixed(ordered, candidate, window)
    else:
        raise ValueError(f"Unknown dedupe policy {policy!r}")
    retained, evicted = apply_retention(merged, max_snapshots)
    return MergeOutcome(history=retained, action=action, evicted=evicted)


# -----------------------------------------------------------------------------
# Read-side views
# -----------------------------------------------------------------------------


def filter_since(history: list[Snapshot], since: datetime | None) -> list[Snapshot]:
    """Entries with captured_at >= since (all when since is None), oldest first."""
    ordered = sorted(history, key=lambda s: s.captured_at)
    if since is None:
        return ordered
    cutoff = ensure_utc(since)
    return [s for s in ordered if s.captured_at >= cutoff]


def with_deltas(history: list[Snapshot]) -> list[SnapshotDelta]:
    """Pair each entry with its score change from the previous one (0 for the first)."""
    ordered = sorted(history, key=lambda s: s.captured_at)
    out: list[SnapshotDelta] = []
    for i, snap in enumerate(ordered):
        delta = snap.score - ordered[i - 1].score if i > 0 else 0.0
        out.append(SnapshotDelta(snapshot=snap, delta=delta))
    return out


def change_timeline(history: list[Snapshot], epsilon: float = CHANGE_EPSILON) -> list[SnapshotDelta]:
    """First entry plus every entry whose score moved by more than epsilon from its predecessor."""
    return [d for i, d in enumerate(with_deltas(history)) if i == 0 or abs(d.delta) > epsilon]


def history_begins_at(history: list[Snapshot]) -> datetime | None:
    if not history:
        return None
    return min(s.captured_at for s in history)
