"""
Tests for the on-chain score reader (web3 contract faked) and its observer.
"""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from web3.exceptions import ContractLogicError

from neynar_history.core.exceptions import (
    InvalidIdentity,
    RateLimited,
    ScoreUnavailable,
    UpstreamUnavailable,
)
from neynar_history.observer.observer import OnchainScoreObserver
from neynar_history.observer.onchain_client import OnchainScoreClient
from neynar_history.storage.models import SOURCE_ONCHAIN

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class RpcHTTPError(OSError):
    """Transport error carrying an HTTP response, as the RPC provider raises."""

    def __init__(self, status: int, headers: dict[str, str] | None = None) -> None:
        super().__init__(f"{status} error from RPC endpoint")
        self.response = SimpleNamespace(status_code=status, headers=headers or {})


@pytest.fixture
def onchain(score_contract, clock):
    return OnchainScoreObserver(OnchainScoreClient(contract=score_contract), clock=clock)


def test_observe_reads_micro_units(onchain, score_contract):
    score_contract.scores[7] = 870_000
    snap = onchain.observe(7)
    assert snap.fid == 7
    assert snap.score == pytest.approx(0.87)
    assert snap.source == SOURCE_ONCHAIN
    assert snap.captured_at == T0
    assert score_contract.calls == [7]


def test_small_raw_values_are_not_rescaled(onchain, score_contract):
    score_contract.scores[7] = 1
    assert onchain.observe(7).score == pytest.approx(0.000001)


def test_unpublished_score_is_unavailable(onchain, score_contract):
    with pytest.raises(ScoreUnavailable):
        onchain.observe(7)


def test_revert_is_unavailable(onchain, score_contract):
    score_contract.error = ContractLogicError("execution reverted")
    with pytest.raises(ScoreUnavailable):
        onchain.observe(7)


def test_rpc_429_is_rate_limited(onchain, score_contract):
    score_contract.error = RpcHTTPError(429, {"Retry-After": "12"})
    with pytest.raises(RateLimited) as exc:
        onchain.observe(7)
    assert exc.value.retry_after == 12.0


def test_rpc_failure_is_upstream_unavailable(onchain, score_contract):
    score_contract.error = RpcHTTPError(503)
    with pytest.raises(UpstreamUnavailable):
        onchain.observe(7)
    score_contract.error = ConnectionError("connection refused")
    with pytest.raises(UpstreamUnavailable):
        onchain.observe(7)


def test_invalid_fid_makes_no_call(onchain, score_contract):
    with pytest.raises(InvalidIdentity):
        onchain.observe(0)
    assert score_contract.calls == []


def test_observe_many_maps_each_fid(onchain, score_contract):
    score_contract.scores[1] = 500_000
    results = onchain.observe_many([1, 2, 1, 0])
    assert set(results) == {1, 2}
    assert results[1].score == 0.5
    assert isinstance(results[2], ScoreUnavailable)
    assert score_contract.calls == [1, 2]


def test_observe_many_stops_after_rate_limit(onchain, score_contract):
    score_contract.error = RpcHTTPError(429)
    results = onchain.observe_many([1, 2, 3])
    assert all(isinstance(r, RateLimited) for r in results.values())
    assert score_contract.calls == [1]
