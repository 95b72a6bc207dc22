"""
Tracking registry: bounded set of fids the periodic sweep refreshes.

Members carry a referenced_at time (set on track, refreshed on touch when the
fid's score is viewed). When the set is full, tracking a new fid evicts the
least recently referenced unpinned member; pinned members leave only through
untrack. With no views in between this is plain insertion order: the oldest
tracked fid goes first.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Callable

from neynar_history.config.settings import DEFAULT_TRACKED_MAX
from neynar_history.core.exceptions import RegistryFull
from neynar_history.core.identity import validate_fid
from neynar_history.history_logging import get_logger
from neynar_history.storage.backend import StorageBackend
from neynar_history.storage.models import TrackedEntry, ensure_utc, utc_now

logger = get_logger(__name__)

_TICK = timedelta(microseconds=1)


@dataclass(frozen=True)
class TrackResult:
    """Outcome of track / untrack."""

    fid: int
    tracked: bool
    pinned: bool = False
    created: bool = False
    evicted: list[int] = field(default_factory=list)


def order_entries(entries: list[TrackedEntry]) -> list[TrackedEntry]:
    """Pinned first, then most recently referenced first."""
    return sorted(entries, key=lambda e: (not e.pinned, -e.referenced_at.timestamp(), e.fid))


def _next_reference_time(entries: list[TrackedEntry], now: datetime) -> datetime:
    """now, nudged past every existing reference so recency stays a strict order."""
    now = ensure_utc(now)
    if entries:
        newest = max(e.referenced_at for e in entries)
        if now <= newest:
            return newest + _TICK
    return now


def add_tracked(
    entries: list[TrackedEntry],
    fid: int,
    *,
    now: datetime,
    max_size: int,
    pinned: bool = False,
) -> tuple[list[TrackedEntry], list[int], bool]:
    """
    Insert or refresh fid. Returns (entries, evicted fids, created).

    An existing member is re-referenced and stays pinned if it already was.
    A new member evicts least recently referenced unpinned entries until it
    fits; raises RegistryFull when only pinned members remain.
    """
    ref = _next_reference_time(entries, now)
    current = {e.fid: e for e in entries}
    existing = current.get(fid)
    if existing is not None:
        current[fid] = replace(existing, referenced_at=ref, pinned=existing.pinned or pinned)
        return list(current.values()), [], False

    evicted: list[int] = []
    while len(current) >= max_size:
        candidates = [e for e in current.values() if not e.pinned]
        if not candidates:
            raise RegistryFull(f"Tracked set is full ({max_size}) and every member is pinned")
        victim = min(candidates, key=lambda e: (e.referenced_at, e.tracked_at, e.fid))
        del current[victim.fid]
        evicted.append(victim.fid)
    current[fid] = TrackedEntry(fid=fid, tracked_at=ref, referenced_at=ref, pinned=pinned)
    return list(current.values()), evicted, True


class TrackingRegistry:
    """Bounded tracked set persisted through a StorageBackend."""

    def __init__(
        self,
        backend: StorageBackend,
        *,
        max_size: int = DEFAULT_TRACKED_MAX,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self._backend = backend
        self.max_size = max_size
        self._clock = clock

    def track(self, fid: int, *, pinned: bool = False) -> TrackResult:
        fid = validate_fid(fid)
        now = self._clock()
        evicted: list[int] = []
        created = False

        def _mutate(entries: list[TrackedEntry]) -> list[TrackedEntry]:
            nonlocal evicted, created
            updated, evicted, created = add_tracked(
                entries, fid, now=now, max_size=self.max_size, pinned=pinned
            )
            return updated

        updated = self._backend.update_tracked(_mutate)
        entry = next(e for e in updated if e.fid == fid)
        if evicted:
            logger.info("tracked_evicted", fid=fid, evicted=evicted, max_size=self.max_size)
        logger.info("tracked_added" if created else "tracked_refreshed", fid=fid, pinned=entry.pinned)
        return TrackResult(fid=fid, tracked=True, pinned=entry.pinned, created=created, evicted=evicted)

    def untrack(self, fid: int) -> TrackResult:
        fid = validate_fid(fid)
        removed = False

        def _mutate(entries: list[TrackedEntry]) -> list[TrackedEntry]:
            nonlocal removed
            kept = [e for e in entries if e.fid != fid]
            removed = len(kept) != len(entries)
            return kept

        self._backend.update_tracked(_mutate)
        if removed:
            logger.info("tracked_removed", fid=fid)
        return TrackResult(fid=fid, tracked=False)

    def set_tracked(self, fid: int, enabled: bool, *, pinned: bool = False) -> TrackResult:
        """track(fid, enabled): track when enabled, else untrack."""
        if enabled:
            return self.track(fid, pinned=pinned)
        return self.untrack(fid)

    def touch(self, fid: int) -> bool:
        """Refresh a member's referenced_at (a view). Returns False for non-members; never inserts."""
        fid = validate_fid(fid)
        now = self._clock()
        found = False

        def _mutate(entries: list[TrackedEntry]) -> list[TrackedEntry]:
            nonlocal found
            found = any(e.fid == fid for e in entries)
            if not found:
                return entries
            ref = _next_reference_time(entries, now)
            return [e.touched(ref) if e.fid == fid else e for e in entries]

        self._backend.update_tracked(_mutate)
        return found

    def list_entries(self) -> list[TrackedEntry]:
        """All members, pinned first, then most recently referenced first."""
        return order_entries(self._backend.load_tracked())

    def identities(self, limit: int | None = None, *, referenced_since: datetime | None = None) -> list[int]:
        """
        Sweep order of member fids. With referenced_since, unpinned members
        last referenced before it are left out.
        """
        entries = self.list_entries()
        if referenced_since is not None:
            cutoff = ensure_utc(referenced_since)
            entries = [e for e in entries if e.pinned or e.referenced_at >= cutoff]
        fids = [e.fid for e in entries]
        return fids[:limit] if limit is not None else fids

    def __contains__(self, fid: int) -> bool:
        return any(e.fid == fid for e in self._backend.load_tracked())
