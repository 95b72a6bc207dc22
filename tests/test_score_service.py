"""
Tests for ScoreService: current score with stale fallback, history views,
tracking, snapshot submission and sweep.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from neynar_history.core.exceptions import (
    IdentityNotFound,
    InvalidWindow,
    RateLimited,
    UpstreamUnavailable,
)
from neynar_history.observer.observer import OnchainScoreObserver, ScoreObserver
from neynar_history.observer.onchain_client import OnchainScoreClient
from neynar_history.service import build_service
from neynar_history.storage.models import Snapshot


def test_current_score_fetches_and_persists(service, fake_neynar, clock):
    fake_neynar.set_score(3, 0.61)
    current = service.get_current_score(3)
    assert current.score == 0.61
    assert current.stale is False
    assert current.persisted is True
    assert current.captured_at == clock.now
    assert [s.score for s in service.store.list_snapshots(3)] == [0.61]


def test_current_score_tracks_viewed_fid(service, fake_neynar):
    fake_neynar.set_score(3, 0.61)
    service.get_current_score(3)
    assert service.registry.identities() == [3]


def test_view_only_touches_when_auto_track_off(settings, file_backend, http_client, clock, fake_neynar):
    service = build_service(
        replace(settings, auto_track_views=False), backend=file_backend, http_client=http_client, clock=clock
    )
    fake_neynar.set_score(3, 0.61)
    service.get_current_score(3)
    assert service.registry.identities() == []


def test_stale_fallback_when_upstream_down(service, fake_neynar, clock):
    """Upstream failure with a stored snapshot serves that snapshot, flagged stale."""
    fake_neynar.set_score(3, 0.5)
    first = service.get_current_score(3)
    clock.advance(hours=2)
    fake_neynar.status = 503

    current = service.get_current_score(3)
    assert current.stale is True
    assert current.score == 0.5
    assert current.captured_at == first.captured_at
    assert current.fetched_at == clock.now
    assert current.error_code == "upstream_unavailable"
    assert current.warning


def test_stale_fallback_when_rate_limited(service, fake_neynar, clock):
    fake_neynar.set_score(3, 0.5)
    service.get_current_score(3)
    fake_neynar.status = 429
    fake_neynar.headers = {"Retry-After": "30"}
    current = service.get_current_score(3)
    assert current.stale is True
    assert current.retry_after == 30.0


def test_upstream_down_without_history_raises(service, fake_neynar):
    fake_neynar.status = 500
    with pytest.raises(UpstreamUnavailable):
        service.get_current_score(3)


def test_rate_limited_without_history_raises(service, fake_neynar):
    fake_neynar.status = 429
    with pytest.raises(RateLimited):
        service.get_current_score(3)


def test_not_found_is_never_scored_zero(service, fake_neynar, clock):
    fake_neynar.set_score(3, 0.5)
    service.get_current_score(3)
    del fake_neynar.users[3]
    with pytest.raises(IdentityNotFound):
        service.get_current_score(3)


def test_persistence_failure_still_returns_score(settings, broken_backend, http_client, clock, fake_neynar):
    service = build_service(settings, backend=broken_backend, http_client=http_client, clock=clock)
    fake_neynar.set_score(3, 0.7)
    current = service.get_current_score(3)
    assert current.score == 0.7
    assert current.persisted is False
    assert "not persisted" in current.warning


def test_cache_serves_repeat_lookups(settings, file_backend, http_client, clock, fake_neynar):
    service = build_service(
        replace(settings, score_cache_ttl_sec=60.0), backend=file_backend, http_client=http_client, clock=clock
    )
    fake_neynar.set_score(3, 0.7)
    service.get_current_score(3)
    service.get_current_score(3)
    assert len(fake_neynar.requests) == 1


def test_history_window_and_changes(service, clock):
    now = clock.now
    for days_ago, score in ((100, 0.1), (60, 0.2), (20, 0.2), (5, 0.4), (1, 0.4)):
        service.store.append(3, Snapshot(fid=3, score=score, captured_at=now - timedelta(days=days_ago)))

    view = service.get_history(3, 30)
    assert [d.snapshot.score for d in view.snapshots] == [0.2, 0.4, 0.4]
    assert [d.snapshot.score for d in view.changes] == [0.2, 0.4]
    assert view.history_begins_at == now - timedelta(days=60)

    week = service.get_history(3, 7)
    assert len(week.snapshots) == 2
    assert week.snapshots[0].delta == 0.0


def test_history_rejects_unsupported_window(service):
    with pytest.raises(InvalidWindow):
        service.get_history(3, 14)


def test_empty_history(service):
    view = service.get_history(3)
    assert view.days == 90
    assert view.snapshots == []
    assert view.history_begins_at is None


def test_submit_snapshot(service, clock):
    result = service.submit_snapshot(Snapshot(fid=9, score=0.3, captured_at=clock.now, source="onchain"))
    assert result.ok
    assert service.store.latest(9).source == "onchain"


def test_track_and_untrack(service):
    assert service.track(4, True, pinned=True).pinned is True
    assert [e.fid for e in service.tracked()] == [4]
    assert service.track(4, False).tracked is False
    assert service.tracked() == []


def test_sweep_refreshes_tracked(service, fake_neynar, clock):
    for fid in (1, 2, 3):
        service.track(fid)
    fake_neynar.set_score(1, 0.1)
    fake_neynar.set_score(2, 0.2)

    summary = service.sweep()
    assert summary.total == 3
    assert summary.succeeded == 2
    assert summary.failed == 1
    failed = [r for r in summary.results if not r.ok]
    assert failed[0].fid == 3
    assert failed[0].code == "not_found"
    assert len(fake_neynar.requests) == 1
    assert service.store.latest(2).score == 0.2
    assert summary.to_dict()["succeeded"] == 2


def test_sweep_respects_limit(service, fake_neynar):
    for fid in (1, 2, 3):
        service.track(fid)
        fake_neynar.set_score(fid, 0.5)
    assert service.sweep(limit=2).total == 2


def test_sweep_with_upstream_down_records_failures(service, fake_neynar):
    service.track(1)
    fake_neynar.status = 502
    summary = service.sweep()
    assert summary.failed == 1
    assert summary.results[0].code == "upstream_unavailable"


def test_sweep_skips_members_not_viewed_recently(service, fake_neynar, clock):
    service.track(1)
    service.track(2, pinned=True)
    clock.advance(days=31)
    service.track(3)
    for fid in (1, 2, 3):
        fake_neynar.set_score(fid, 0.5)
    summary = service.sweep()
    assert sorted(r.fid for r in summary.results) == [2, 3]
    assert fake_neynar.requested_fids() == [[2, 3]]


def test_sweep_recency_off_sweeps_every_member(service, fake_neynar, clock):
    service.sweep_recent_days = 0
    service.track(1)
    clock.advance(days=365)
    fake_neynar.set_score(1, 0.5)
    assert service.sweep().succeeded == 1


def test_sweep_reads_onchain_scores(service, score_contract, fake_neynar, clock):
    service.sweep_observer = OnchainScoreObserver(OnchainScoreClient(contract=score_contract), clock=clock)
    service.track(4)
    score_contract.scores[4] = 250_000
    summary = service.sweep()
    assert summary.succeeded == 1
    latest = service.store.latest(4)
    assert latest.score == 0.25
    assert latest.source == "onchain"
    assert fake_neynar.requests == []


def test_build_service_selects_sweep_source(settings, file_backend, http_client, clock):
    api = build_service(settings, backend=file_backend, http_client=http_client, clock=clock)
    assert isinstance(api.sweep_observer, ScoreObserver)
    onchain = build_service(
        replace(settings, sweep_source="onchain"), backend=file_backend, http_client=http_client, clock=clock
    )
    assert isinstance(onchain.sweep_observer, OnchainScoreObserver)
