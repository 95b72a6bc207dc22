"""
Redis-backed snapshot history and tracked set.

Layout (JSON values, same shape as the browser-local store):
- nh:snapshots:v1:{fid} → [{"fid", "score", "captured_at", "source"}, ...] oldest first
- nh:tracked:v1         → [{"fid", "tracked_at", "referenced_at", "pinned"}, ...]

Writes use WATCH/MULTI/EXEC (redis-py Redis.transaction), so a concurrent write
to the same key aborts and retries the read-modify-write instead of silently
dropping a candidate.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

import redis

from neynar_history.core.exceptions import PersistenceFailure
from neynar_history.history_logging import get_logger
from neynar_history.storage.backend import HistoryMutation, StorageBackend, TrackedMutation
from neynar_history.storage.models import Snapshot, TrackedEntry, ensure_utc

logger = get_logger(__name__)

SNAPSHOT_KEY_PREFIX = "nh:snapshots:v1:"
TRACKED_KEY = "nh:tracked:v1"


def snapshot_key(fid: int) -> str:
    return f"{SNAPSHOT_KEY_PREFIX}{fid}"


def _decode_list(raw: Any, key: str) -> list[dict[str, Any]]:
    if raw is None:
        return []
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise PersistenceFailure(f"Corrupt JSON at {key}: {e}") from e
    if not isinstance(data, list):
        raise PersistenceFailure(f"Expected JSON array at {key}")
    return data


def _decode_snapshots(raw: Any, key: str) -> list[Snapshot]:
    try:
        snaps = [Snapshot.from_dict(d) for d in _decode_list(raw, key)]
    except (KeyError, TypeError, ValueError) as e:
        raise PersistenceFailure(f"Invalid snapshot at {key}: {e}") from e
    return sorted(snaps, key=lambda s: s.captured_at)


def _decode_tracked(raw: Any, key: str) -> list[TrackedEntry]:
    try:
        return [TrackedEntry.from_dict(d) for d in _decode_list(raw, key)]
    except (KeyError, TypeError, ValueError) as e:
        raise PersistenceFailure(f"Invalid tracked entry at {key}: {e}") from e


class RedisBackend(StorageBackend):
    """Redis implementation over a redis-py client (sync)."""

    name = "redis"

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBackend":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_keepalive=True,
            socket_connect_timeout=2,
            retry_on_timeout=True,
        )
        logger.info("redis_backend_client", url=url.split("@")[-1])
        return cls(client)

    def ensure_schema(self) -> None:
        """Nothing to create; keys appear on first write."""

    def load_history(self, fid: int, *, since: datetime | None = None) -> list[Snapshot]:
        key = snapshot_key(fid)
        try:
            raw = self._client.get(key)
        except redis.RedisError as e:
            raise PersistenceFailure(f"Redis GET {key} failed: {e}") from e
        snaps = _decode_snapshots(raw, key)
        if since is not None:
            cutoff = ensure_utc(since)
            snaps = [s for s in snaps if s.captured_at >= cutoff]
        return snaps

    def update_history(self, fid: int, mutate: HistoryMutation) -> list[Snapshot]:
        key = snapshot_key(fid)

        def _txn(pipe: Any) -> list[Snapshot]:
            current = _decode_snapshots(pipe.get(key), key)
            updated = mutate(current)
            pipe.multi()
            pipe.set(key, json.dumps([s.to_dict() for s in updated]))
            return updated

        try:
            return self._client.transaction(_txn, key, value_from_callable=True)
        except redis.RedisError as e:
            raise PersistenceFailure(f"Redis transaction on {key} failed: {e}") from e

    def load_tracked(self) -> list[TrackedEntry]:
        try:
            raw = self._client.get(TRACKED_KEY)
        except redis.RedisError as e:
            raise PersistenceFailure(f"Redis GET {TRACKED_KEY} failed: {e}") from e
        return _decode_tracked(raw, TRACKED_KEY)

    def update_tracked(self, mutate: TrackedMutation) -> list[TrackedEntry]:
        def _txn(pipe: Any) -> list[TrackedEntry]:
            current = _decode_tracked(pipe.get(TRACKED_KEY), TRACKED_KEY)
            updated = mutate(current)
            pipe.multi()
            pipe.set(TRACKED_KEY, json.dumps([e.to_dict() for e in updated]))
            return updated

        try:
            return self._client.transaction(_txn, TRACKED_KEY, value_from_callable=True)
        except redis.RedisError as e:
            raise PersistenceFailure(f"Redis transaction on {TRACKED_KEY} failed: {e}") from e

    def close(self) -> None:
        self._client.close()
