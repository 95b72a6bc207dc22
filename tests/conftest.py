"""
Pytest fixtures for Neynar History tests.

Storage runs against a JSON file, a SQLite file (both in tmp_path) and
fakeredis. Neynar is faked with httpx.MockTransport, the on-chain score
contract with FakeScoreContract; time comes from FakeClock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx
import pytest

from neynar_history.config.settings import Settings
from neynar_history.core.exceptions import PersistenceFailure
from neynar_history.storage.backend import StorageBackend
from neynar_history.storage.file_backend import FileBackend

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock returning a settable aware UTC datetime."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeNeynar:
    """
    In-memory stand-in for GET /v2/farcaster/user/bulk.

    Set status (plus body / headers) to force an HTTP error, or error to a
    factory taking the request and returning an exception to raise.
    """

    def __init__(self) -> None:
        self.users: dict[int, dict[str, Any]] = {}
        self.status: int | None = None
        self.body: str = ""
        self.headers: dict[str, str] = {}
        self.error: Callable[[httpx.Request], Exception] | None = None
        self.requests: list[httpx.Request] = []

    def set_score(self, fid: int, score: Any) -> None:
        self.users[fid] = {
            "fid": fid,
            "username": f"user{fid}",
            "experimental": {"neynar_user_score": score},
        }

    def requested_fids(self) -> list[list[int]]:
        return [[int(f) for f in r.url.params["fids"].split(",")] for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error(request)
        if self.status is not None:
            return httpx.Response(self.status, text=self.body, headers=self.headers)
        fids = [int(f) for f in request.url.params.get("fids", "").split(",") if f]
        users = [self.users[f] for f in fids if f in self.users]
        return httpx.Response(200, json={"users": users})


class FakeScoreContract:
    """
    Stand-in for the web3 score contract: contract.functions.getScore(fid).call().

    Set error to an exception instance to make every call raise it.
    """

    def __init__(self) -> None:
        self.scores: dict[int, int] = {}
        self.error: Exception | None = None
        self.calls: list[int] = []

    @property
    def functions(self) -> "FakeScoreContract":
        return self

    def getScore(self, fid: int) -> "_ScoreCall":
        return _ScoreCall(self, fid)


class _ScoreCall:
    def __init__(self, contract: FakeScoreContract, fid: int) -> None:
        self._contract = contract
        self._fid = fid

    def call(self) -> int:
        self._contract.calls.append(self._fid)
        if self._contract.error is not None:
            raise self._contract.error
        return self._contract.scores.get(self._fid, 0)


class BrokenBackend(StorageBackend):
    """Backend whose every operation fails like an unreachable database."""

    name = "broken"

    def ensure_schema(self):
        raise PersistenceFailure("down")

    def load_history(self, fid, *, since=None):
        raise PersistenceFailure("read failed")

    def update_history(self, fid, mutate):
        raise PersistenceFailure("write failed")

    def load_tracked(self):
        raise PersistenceFailure("read failed")

    def update_tracked(self, mutate):
        raise PersistenceFailure("write failed")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_neynar():
    return FakeNeynar()


@pytest.fixture
def score_contract():
    return FakeScoreContract()


@pytest.fixture
def http_client(fake_neynar):
    client = httpx.Client(transport=httpx.MockTransport(fake_neynar.handler))
    yield client
    client.close()


@pytest.fixture
def settings(tmp_path):
    """Settings for a file-backed service with caching off."""
    return Settings(
        neynar_api_key="test-key",
        store_backend="file",
        snapshot_file_path=str(tmp_path / "history.json"),
        score_cache_ttl_sec=0.0,
    )


@pytest.fixture
def broken_backend():
    return BrokenBackend()


@pytest.fixture
def file_backend(tmp_path):
    return FileBackend(tmp_path / "history.json")


@pytest.fixture
def sql_backend(tmp_path):
    from neynar_history.storage.sql_backend import SqlBackend

    backend = SqlBackend(f"sqlite:///{tmp_path / 'history.db'}")
    backend.ensure_schema()
    yield backend
    backend.close()


@pytest.fixture
def redis_backend():
    import fakeredis

    from neynar_history.storage.kv_backend import RedisBackend

    backend = RedisBackend(fakeredis.FakeRedis(decode_responses=True))
    yield backend
    backend.close()


@pytest.fixture(params=["file", "sql", "redis"])
def backend(request):
    """Every storage backend in turn."""
    return request.getfixturevalue(f"{request.param}_backend")


@pytest.fixture
def service(settings, file_backend, http_client, clock):
    from neynar_history.service import build_service

    return build_service(settings, backend=file_backend, http_client=http_client, clock=clock)


@pytest.fixture
def client(service):
    """FastAPI TestClient over an app holding the test service."""
    from fastapi.testclient import TestClient

    from neynar_history.api_server.server import create_app

    return TestClient(create_app(service, cron_secret=""))
