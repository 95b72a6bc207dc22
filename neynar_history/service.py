"""
Score service: the operations the API server and the sweep call.

Composes the observer (network), the snapshot store (history) and the
tracking registry. Upstream hiccups degrade to the last stored snapshot
(stale=True) wherever one exists; storage trouble on the write path is
reported in the result rather than raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Union

import httpx

from neynar_history.config.settings import Settings, get_settings
from neynar_history.core.exceptions import (
    InvalidWindow,
    NeynarHistoryError,
    RateLimited,
    ScoreUnavailable,
    UpstreamUnavailable,
)
from neynar_history.core.identity import validate_fid
from neynar_history.history.merge import (
    SUPPORTED_WINDOW_DAYS,
    SnapshotDelta,
    change_timeline,
    filter_since,
    history_begins_at,
    with_deltas,
)
from neynar_history.history.registry import TrackingRegistry, TrackResult
from neynar_history.history.store import AppendResult, SnapshotStore
from neynar_history.history_logging import bind_identity, get_logger
from neynar_history.observer.cache import SingleFlight, TTLCache
from neynar_history.observer.neynar_client import NeynarClient
from neynar_history.observer.observer import OnchainScoreObserver, ScoreObserver
from neynar_history.observer.onchain_client import OnchainScoreClient
from neynar_history.storage.backend import StorageBackend, get_backend
from neynar_history.storage.models import Snapshot, TrackedEntry, format_timestamp, utc_now

logger = get_logger(__name__)

DEFAULT_HISTORY_DAYS = 90
MAX_HISTORY_DAYS = max(SUPPORTED_WINDOW_DAYS)

# Observer failures that may be served from the last stored snapshot.
_FALLBACK_ERRORS = (UpstreamUnavailable, RateLimited, ScoreUnavailable)

SweepObserver = Union[ScoreObserver, OnchainScoreObserver]


@dataclass(frozen=True)
class CurrentScore:
    fid: int
    score: float
    captured_at: datetime
    """When the served score was observed (older than fetched_at when stale)."""
    fetched_at: datetime
    """When this lookup happened."""
    source: str
    stale: bool = False
    persisted: bool = False
    warning: str | None = None
    error_code: str | None = None
    retry_after: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "fid": self.fid,
            "score": self.score,
            "captured_at": format_timestamp(self.captured_at),
            "fetched_at": format_timestamp(self.fetched_at),
            "source": self.source,
            "stale": self.stale,
            "persisted": self.persisted,
            "warning": self.warning,
            "error_code": self.error_code,
            "retry_after": self.retry_after,
        }


@dataclass(frozen=True)
class HistoryView:
    fid: int
    days: int
    snapshots: list[SnapshotDelta]
    changes: list[SnapshotDelta]
    history_begins_at: datetime | None


@dataclass(frozen=True)
class SweepItem:
    fid: int
    ok: bool
    score: float | None = None
    error: str | None = None
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"fid": self.fid, "ok": self.ok, "score": self.score, "error": self.error, "code": self.code}


@dataclass
class SweepSummary:
    started_at: datetime
    finished_at: datetime | None = None
    results: list[SweepItem] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": format_timestamp(self.started_at),
            "finished_at": format_timestamp(self.finished_at) if self.finished_at else None,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


class ScoreService:
    """Current score, history, tracking and sweep over one backend."""

    def __init__(
        self,
        observer: ScoreObserver,
        store: SnapshotStore,
        registry: TrackingRegistry,
        *,
        cache_ttl_sec: float = 0.0,
        sweep_max_identities: int = 200,
        sweep_recent_days: int = 30,
        sweep_observer: SweepObserver | None = None,
        auto_track_views: bool = True,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.observer = observer
        self.store = store
        self.registry = registry
        self.sweep_max_identities = sweep_max_identities
        self.sweep_recent_days = sweep_recent_days
        self.sweep_observer: SweepObserver = sweep_observer or observer
        self.auto_track_views = auto_track_views
        self._clock = clock
        self._cache: TTLCache[CurrentScore] = TTLCache(cache_ttl_sec)
        self._flight: SingleFlight[CurrentScore] = SingleFlight()

    # --- current score ---

    def get_current_score(self, fid: int) -> CurrentScore:
        """
        Observe fid now, persist the snapshot (best effort) and return it.

        On UpstreamUnavailable / RateLimited / ScoreUnavailable the last stored
        snapshot is served with stale=True; with nothing stored the observer
        error propagates. IdentityNotFound always propagates.
        """
        fid = validate_fid(fid)
        cached = self._cache.get(fid)
        if cached is not None:
            return cached
        return self._flight.do(fid, lambda: self._refresh(fid))

    def _refresh(self, fid: int) -> CurrentScore:
        fetched_at = self._clock()
        try:
            snap = self.observer.observe(fid)
        except _FALLBACK_ERRORS as e:
            return self._stale_or_raise(fid, e, fetched_at)

        result = self.store.append(fid, snap)
        self._note_view(fid)
        current = CurrentScore(
            fid=fid,
            score=snap.score,
            captured_at=snap.captured_at,
            fetched_at=fetched_at,
            source=snap.source,
            stale=False,
            persisted=result.ok,
            warning=None if result.ok else f"Snapshot not persisted: {result.error}",
        )
        self._cache.set(fid, current)
        return current

    def _stale_or_raise(self, fid: int, error: NeynarHistoryError, fetched_at: datetime) -> CurrentScore:
        log = bind_identity(fid)
        last = self.store.latest(fid)
        if last is None:
            log.warning("current_score_unavailable", code=error.code, error=error.message)
            raise error
        log.info("current_score_stale", code=error.code, captured_at=format_timestamp(last.captured_at))
        return CurrentScore(
            fid=fid,
            score=last.score,
            captured_at=last.captured_at,
            fetched_at=fetched_at,
            source=last.source,
            stale=True,
            persisted=True,
            warning=error.message,
            error_code=error.code,
            retry_after=getattr(error, "retry_after", None),
        )

    def _note_view(self, fid: int) -> None:
        try:
            if self.auto_track_views:
                self.registry.track(fid)
            else:
                self.registry.touch(fid)
        except NeynarHistoryError as e:
            logger.warning("tracked_view_failed", fid=fid, code=e.code, error=e.message)

    # --- history ---

    def get_history(self, fid: int, days: int = DEFAULT_HISTORY_DAYS) -> HistoryView:
        """Snapshots (with deltas) and change timeline over the trailing days window."""
        fid = validate_fid(fid)
        if days not in SUPPORTED_WINDOW_DAYS:
            raise InvalidWindow(f"days must be one of {list(SUPPORTED_WINDOW_DAYS)}, got {days}")
        now = self._clock()
        full = self.store.list_snapshots(fid, timedelta(days=MAX_HISTORY_DAYS), now=now)
        window = filter_since(full, now - timedelta(days=days))
        changes = change_timeline(window)
        return HistoryView(
            fid=fid,
            days=days,
            snapshots=with_deltas(window),
            changes=changes,
            history_begins_at=history_begins_at(full),
        )

    # --- client submissions ---

    def submit_snapshot(self, snapshot: Snapshot) -> AppendResult:
        """Append an externally observed snapshot (browser or on-chain reader)."""
        result = self.store.append(snapshot.fid, snapshot)
        if result.ok:
            self._cache.invalidate(snapshot.fid)
        return result

    # --- tracking ---

    def track(self, fid: int, enabled: bool = True, *, pinned: bool = False) -> TrackResult:
        return self.registry.set_tracked(fid, enabled, pinned=pinned)

    def tracked(self) -> list[TrackedEntry]:
        return self.registry.list_entries()

    # --- sweep ---

    def sweep(self, limit: int | None = None) -> SweepSummary:
        """
        Observe up to limit tracked fids and append each snapshot.

        Only pinned members and members referenced within sweep_recent_days
        are swept (0 sweeps every member).
        """
        summary = SweepSummary(started_at=self._clock())
        cap = limit if limit is not None else self.sweep_max_identities
        since = None
        if self.sweep_recent_days > 0:
            since = summary.started_at - timedelta(days=self.sweep_recent_days)
        try:
            fids = self.registry.identities(cap, referenced_since=since)
        except NeynarHistoryError as e:
            logger.warning("sweep_registry_unavailable", code=e.code, error=e.message)
            summary.finished_at = self._clock()
            return summary

        observed = self.sweep_observer.observe_many(fids)
        for fid in fids:
            outcome = observed.get(fid)
            if isinstance(outcome, Snapshot):
                result = self.store.append(fid, outcome)
                if result.ok:
                    self._cache.invalidate(fid)
                    summary.results.append(SweepItem(fid=fid, ok=True, score=outcome.score))
                else:
                    summary.results.append(
                        SweepItem(fid=fid, ok=False, error=result.error, code="persistence_failure")
                    )
            elif isinstance(outcome, NeynarHistoryError):
                summary.results.append(SweepItem(fid=fid, ok=False, error=outcome.message, code=outcome.code))
            else:
                summary.results.append(SweepItem(fid=fid, ok=False, error="not observed", code="error"))
        summary.finished_at = self._clock()
        logger.info("sweep_done", total=summary.total, succeeded=summary.succeeded, failed=summary.failed)
        return summary

    def close(self) -> None:
        self.observer.client.close()
        self.store.backend.close()


def build_service(
    settings: Settings | None = None,
    *,
    backend: StorageBackend | None = None,
    http_client: httpx.Client | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> ScoreService:
    """Wire observer, store and registry from Settings (backend and HTTP client injectable)."""
    settings = settings or get_settings()
    backend = backend or get_backend(settings)
    client = NeynarClient.from_settings(settings, client=http_client)
    observer = ScoreObserver(client, clock=clock)
    sweep_observer = None
    if settings.sweep_source == "onchain":
        sweep_observer = OnchainScoreObserver(OnchainScoreClient.from_settings(settings), clock=clock)
    store = SnapshotStore(
        backend,
        window=settings.dedupe_window,
        max_snapshots=settings.max_snapshots,
        policy=settings.dedupe_policy,
        clock=clock,
    )
    registry = TrackingRegistry(backend, max_size=settings.tracked_max, clock=clock)
    return ScoreService(
        observer,
        store,
        registry,
        cache_ttl_sec=settings.score_cache_ttl_sec,
        sweep_max_identities=settings.sweep_max_identities,
        sweep_recent_days=settings.sweep_recent_days,
        sweep_observer=sweep_observer,
        auto_track_views=settings.auto_track_views,
        clock=clock,
    )
