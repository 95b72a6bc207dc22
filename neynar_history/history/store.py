"""
Snapshot store: per-fid score history with dedupe and bounded retention.

append() runs the merge policy (history.merge) inside the backend's atomic
read-modify-write, so the policy lives once regardless of the backend.
The store is best-effort for its callers: persistence errors are logged and
reported in AppendResult, reads degrade to an empty history. Only an invalid
fid raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from neynar_history.core.exceptions import InvalidIdentity, PersistenceFailure
from neynar_history.core.identity import validate_fid
from neynar_history.history.merge import (
    DEFAULT_DEDUPE_WINDOW,
    DEFAULT_MAX_SNAPSHOTS,
    POLICIES,
    POLICY_SLIDING,
    MergeOutcome,
    merge_snapshot,
)
from neynar_history.history_logging import get_logger
from neynar_history.storage.backend import StorageBackend
from neynar_history.storage.models import Snapshot, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class AppendResult:
    """Outcome of SnapshotStore.append. ok=False means the write did not persist."""

    ok: bool
    fid: int
    snapshot: Snapshot
    history: list[Snapshot] = field(default_factory=list)
    action: str | None = None
    evicted: int = 0
    error: str | None = None


class SnapshotStore:
    """Dedupe + retention policy over a StorageBackend."""

    def __init__(
        self,
        backend: StorageBackend,
        *,
        window: timedelta = DEFAULT_DEDUPE_WINDOW,
        max_snapshots: int = DEFAULT_MAX_SNAPSHOTS,
        policy: str = POLICY_SLIDING,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if policy not in POLICIES:
            raise ValueError(f"Unknown dedupe policy {policy!r}")
        if max_snapshots < 1:
            raise ValueError("max_snapshots must be >= 1")
        self._backend = backend
        self.window = window
        self.max_snapshots = max_snapshots
        self.policy = policy
        self._clock = clock

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    def append(self, fid: int, candidate: Snapshot) -> AppendResult:
        """
        Merge candidate into the fid's history and persist atomically.

        Returns the persisted history on success; on storage failure returns
        ok=False with the error message and leaves the stored history untouched.
        """
        fid = validate_fid(fid)
        if candidate.fid != fid:
            raise InvalidIdentity(f"Snapshot fid {candidate.fid} does not match fid {fid}")

        # mutate may be retried; the last call is the one that committed
        outcomes: list[MergeOutcome] = []

        def _mutate(current: list[Snapshot]) -> list[Snapshot]:
            outcome = merge_snapshot(
                current,
                candidate,
                window=self.window,
                max_snapshots=self.max_snapshots,
                policy=self.policy,
            )
            outcomes.append(outcome)
            return outcome.history

        try:
            history = self._backend.update_history(fid, _mutate)
        except PersistenceFailure as e:
            logger.warning("snapshot_append_failed", fid=fid, backend=self._backend.name, error=str(e))
            return AppendResult(ok=False, fid=fid, snapshot=candidate, error=str(e))
        except Exception as e:
            logger.exception("snapshot_append_error", fid=fid, backend=self._backend.name, error=str(e))
            return AppendResult(ok=False, fid=fid, snapshot=candidate, error=str(e))

        outcome = outcomes[-1]
        logger.debug(
            "snapshot_appended",
            fid=fid,
            score=candidate.score,
            action=outcome.action,
            evicted=outcome.evicted,
            length=len(history),
        )
        return AppendResult(
            ok=True,
            fid=fid,
            snapshot=candidate,
            history=history,
            action=outcome.action,
            evicted=outcome.evicted,
        )

    def list_snapshots(
        self,
        fid: int,
        window: timedelta | None = None,
        *,
        now: datetime | None = None,
    ) -> list[Snapshot]:
        """
        Snapshots captured within the trailing window (whole history when None),
        oldest first. Never synthesizes points; [] when the backend is unreadable.
        """
        fid = validate_fid(fid)
        since = None
        if window is not None:
            since = (now or self._clock()) - window
        try:
            return self._backend.load_history(fid, since=since)
        except PersistenceFailure as e:
            logger.warning("snapshot_list_failed", fid=fid, backend=self._backend.name, error=str(e))
            return []
        except Exception as e:
            logger.exception("snapshot_list_error", fid=fid, backend=self._backend.name, error=str(e))
            return []

    def latest(self, fid: int) -> Snapshot | None:
        """Most recent stored snapshot, or None (also when the backend is unreadable)."""
        history = self.list_snapshots(fid)
        return history[-1] if history else None
