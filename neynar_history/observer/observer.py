"""
Score observer: current score for one fid, or for a batch.

ScoreObserver reads Neynar bulk user lookups; OnchainScoreObserver reads the
score contract. observe() raises the typed ObserverError subclasses;
observe_many() never raises for per-fid problems and instead maps each fid to
a Snapshot or the error that prevented one.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable, Iterator, Sequence, Union

from neynar_history.core.exceptions import (
    IdentityNotFound,
    NeynarHistoryError,
    RateLimited,
)
from neynar_history.core.identity import validate_fid
from neynar_history.history_logging import get_logger
from neynar_history.observer.neynar_client import MAX_BULK_FIDS, NeynarClient
from neynar_history.observer.normalize import extract_raw_score, normalize_micro_score, normalize_score
from neynar_history.observer.onchain_client import OnchainScoreClient
from neynar_history.storage.models import SOURCE_API, SOURCE_ONCHAIN, Snapshot, utc_now

logger = get_logger(__name__)

BATCH_SIZE = MAX_BULK_FIDS

ObserveResult = Union[Snapshot, NeynarHistoryError]


def chunked(items: Sequence[int], size: int) -> Iterator[list[int]]:
    for i in range(0, len(items), size):
        yield list(items[i : i + size])


def unique_valid_fids(fids: Iterable[int]) -> list[int]:
    """Valid fids in first-seen order, duplicates dropped; invalid ones are logged and skipped."""
    valid: list[int] = []
    for raw in fids:
        try:
            fid = validate_fid(raw)
        except NeynarHistoryError as e:
            logger.warning("observe_invalid_identity", fid=raw, error=e.message)
            continue
        if fid not in valid:
            valid.append(fid)
    return valid


class ScoreObserver:
    """Fetch and normalize Neynar scores into Snapshots stamped with clock()."""

    def __init__(
        self,
        client: NeynarClient,
        *,
        clock: Callable[[], datetime] = utc_now,
        source: str = SOURCE_API,
        batch_size: int = BATCH_SIZE,
    ) -> None:
        self._client = client
        self._clock = clock
        self._source = source
        self._batch_size = max(1, min(batch_size, MAX_BULK_FIDS))

    @property
    def client(self) -> NeynarClient:
        return self._client

    def _snapshot(self, fid: int, user: dict | None, captured_at: datetime) -> Snapshot:
        if user is None:
            raise IdentityNotFound(f"Neynar has no user with fid {fid}")
        score = normalize_score(extract_raw_score(user))
        return Snapshot(fid=fid, score=score, captured_at=captured_at, source=self._source)

    def observe(self, fid: int) -> Snapshot:
        """Current score of one fid. Raises InvalidIdentity or an ObserverError subclass."""
        fid = validate_fid(fid)
        users = self._client.fetch_users([fid])
        snap = self._snapshot(fid, users.get(fid), self._clock())
        logger.debug("score_observed", fid=fid, score=snap.score)
        return snap

    def observe_many(self, fids: Iterable[int]) -> dict[int, ObserveResult]:
        """
        Observe each fid in bulk requests of up to batch_size.

        Duplicates are fetched once. A failed request marks every fid of its
        chunk with that error; after a RateLimited, the remaining chunks are
        not requested and carry the same error.
        """
        results: dict[int, ObserveResult] = {}
        valid = unique_valid_fids(fids)
        rate_limited: RateLimited | None = None
        for chunk in chunked(valid, self._batch_size):
            if rate_limited is not None:
                for fid in chunk:
                    results[fid] = rate_limited
                continue
            try:
                users = self._client.fetch_users(chunk)
            except RateLimited as e:
                rate_limited = e
                for fid in chunk:
                    results[fid] = e
                continue
            except NeynarHistoryError as e:
                logger.warning("observe_chunk_failed", size=len(chunk), code=e.code, error=e.message)
                for fid in chunk:
                    results[fid] = e
                continue

            captured_at = self._clock()
            for fid in chunk:
                try:
                    results[fid] = self._snapshot(fid, users.get(fid), captured_at)
                except NeynarHistoryError as e:
                    results[fid] = e
        return results


class OnchainScoreObserver:
    """Scores read from the on-chain score contract, one call per fid."""

    def __init__(self, client: OnchainScoreClient, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._client = client
        self._clock = clock

    @property
    def client(self) -> OnchainScoreClient:
        return self._client

    def observe(self, fid: int) -> Snapshot:
        fid = validate_fid(fid)
        score = normalize_micro_score(self._client.read_score(fid))
        return Snapshot(fid=fid, score=score, captured_at=self._clock(), source=SOURCE_ONCHAIN)

    def observe_many(self, fids: Iterable[int]) -> dict[int, ObserveResult]:
        """Same contract as ScoreObserver.observe_many; stops calling after a RateLimited."""
        results: dict[int, ObserveResult] = {}
        rate_limited: RateLimited | None = None
        for fid in unique_valid_fids(fids):
            if rate_limited is not None:
                results[fid] = rate_limited
                continue
            try:
                results[fid] = self.observe(fid)
            except RateLimited as e:
                rate_limited = e
                results[fid] = e
            except NeynarHistoryError as e:
                results[fid] = e
        return results
