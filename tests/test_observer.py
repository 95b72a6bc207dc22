"""
Tests for NeynarClient and ScoreObserver against a mocked Neynar
(httpx.MockTransport): normalization, error classification, batching.
"""

from __future__ import annotations

import httpx
import pytest

from neynar_history.core.exceptions import (
    IdentityNotFound,
    InvalidIdentity,
    RateLimited,
    ScoreUnavailable,
    UpstreamUnavailable,
)
from neynar_history.observer.neynar_client import NeynarClient
from neynar_history.observer.observer import ScoreObserver
from neynar_history.storage.models import Snapshot


@pytest.fixture
def observer(http_client, clock):
    return ScoreObserver(NeynarClient("test-key", client=http_client), clock=clock)


def test_observe_returns_normalized_snapshot(observer, fake_neynar, clock):
    fake_neynar.set_score(3, 870_000)
    snap = observer.observe(3)
    assert snap == Snapshot(fid=3, score=0.87, captured_at=clock.now, source="api")


def test_request_shape(observer, fake_neynar):
    fake_neynar.set_score(3, 0.5)
    observer.observe(3)
    request = fake_neynar.requests[0]
    assert request.url.path == "/v2/farcaster/user/bulk"
    assert request.url.params["fids"] == "3"
    assert request.headers["x-api-key"] == "test-key"


def test_observe_falls_back_to_top_level_score(observer, fake_neynar):
    fake_neynar.users[5] = {"fid": 5, "score": 0.25}
    assert observer.observe(5).score == 0.25


def test_unknown_user_is_not_found(observer, fake_neynar):
    with pytest.raises(IdentityNotFound):
        observer.observe(404)


def test_http_404_is_not_found(observer, fake_neynar):
    fake_neynar.status = 404
    fake_neynar.body = '{"message": "User not found"}'
    with pytest.raises(IdentityNotFound):
        observer.observe(1)


def test_missing_score_is_unavailable(observer, fake_neynar):
    fake_neynar.users[6] = {"fid": 6, "username": "noscore"}
    with pytest.raises(ScoreUnavailable):
        observer.observe(6)


def test_http_429_is_rate_limited(observer, fake_neynar):
    fake_neynar.status = 429
    fake_neynar.headers = {"Retry-After": "12"}
    with pytest.raises(RateLimited) as exc_info:
        observer.observe(1)
    assert exc_info.value.retry_after == 12.0
    assert exc_info.value.retryable is True


def test_rate_limit_phrase_in_body_is_rate_limited(observer, fake_neynar):
    fake_neynar.status = 400
    fake_neynar.body = '{"message": "Rate limit exceeded for this API key"}'
    with pytest.raises(RateLimited) as exc_info:
        observer.observe(1)
    assert exc_info.value.retry_after is None


def test_server_error_is_upstream_unavailable(observer, fake_neynar):
    fake_neynar.status = 503
    with pytest.raises(UpstreamUnavailable):
        observer.observe(1)


def test_transport_error_is_upstream_unavailable(observer, fake_neynar):
    fake_neynar.error = lambda request: httpx.ConnectError("connection refused", request=request)
    with pytest.raises(UpstreamUnavailable):
        observer.observe(1)


def test_timeout_is_upstream_unavailable(observer, fake_neynar):
    fake_neynar.error = lambda request: httpx.ReadTimeout("timed out", request=request)
    with pytest.raises(UpstreamUnavailable, match="timed out"):
        observer.observe(1)


def test_invalid_json_is_upstream_unavailable(observer, fake_neynar):
    fake_neynar.status = 200
    fake_neynar.body = "<html>oops</html>"
    with pytest.raises(UpstreamUnavailable):
        observer.observe(1)


def test_missing_api_key_makes_no_request(http_client, fake_neynar):
    observer = ScoreObserver(NeynarClient("", client=http_client))
    with pytest.raises(UpstreamUnavailable):
        observer.observe(1)
    assert fake_neynar.requests == []


@pytest.mark.parametrize("fid", [0, -3, "abc", "\u00b2", "\u0663", True, 1.5, None])
def test_invalid_fid_rejected_before_network(observer, fake_neynar, fid):
    with pytest.raises(InvalidIdentity):
        observer.observe(fid)
    assert fake_neynar.requests == []


def test_observe_many_chunks_by_100(observer, fake_neynar):
    fids = list(range(1, 251))
    for fid in fids:
        fake_neynar.set_score(fid, fid / 1000)
    results = observer.observe_many(fids)
    assert [len(c) for c in fake_neynar.requested_fids()] == [100, 100, 50]
    assert len(results) == 250
    assert all(isinstance(r, Snapshot) for r in results.values())
    assert results[250].score == 0.25


def test_observe_many_reports_per_fid_errors(observer, fake_neynar):
    fake_neynar.set_score(1, 0.5)
    fake_neynar.users[2] = {"fid": 2}
    results = observer.observe_many([1, 2, 3, 1, 0])
    assert fake_neynar.requested_fids() == [[1, 2, 3]]
    assert isinstance(results[1], Snapshot)
    assert isinstance(results[2], ScoreUnavailable)
    assert isinstance(results[3], IdentityNotFound)
    assert 0 not in results


def test_observe_many_stops_after_rate_limit(observer, fake_neynar):
    fake_neynar.status = 429
    results = observer.observe_many(range(1, 151))
    assert len(fake_neynar.requests) == 1
    assert len(results) == 150
    assert all(isinstance(r, RateLimited) for r in results.values())


def test_client_rejects_oversized_batch(http_client):
    client = NeynarClient("k", client=http_client)
    with pytest.raises(ValueError):
        client.fetch_users(list(range(1, 102)))
