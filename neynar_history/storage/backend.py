"""
Storage abstraction for snapshot histories and the tracked set.

Three interchangeable backends implement StorageBackend: SQL (SQLAlchemy,
SQLite or PostgreSQL), Redis (one JSON array per fid key), and a local JSON
file. Backends only persist; the dedupe/retention policy is applied above this
interface by SnapshotStore and TrackingRegistry.

Writes go through update_history / update_tracked, which run the caller's
mutate function inside the backend's atomic read-modify-write (transaction with
row locks, WATCH/MULTI, or lock + atomic file replace). mutate must be pure: a
backend may call it more than once when it retries after a conflicting write.
Exceptions raised by mutate propagate unchanged; storage errors are raised as
PersistenceFailure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable

from neynar_history.config.settings import Settings
from neynar_history.history_logging import get_logger
from neynar_history.storage.models import Snapshot, TrackedEntry

logger = get_logger(__name__)

HistoryMutation = Callable[[list[Snapshot]], list[Snapshot]]
TrackedMutation = Callable[[list[TrackedEntry]], list[TrackedEntry]]


class StorageBackend(ABC):
    """Abstract interface for persistence; implement for SQL, Redis or a local file."""

    name = "abstract"

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables / documents if they do not exist. Safe to call on every startup."""
        ...

    @abstractmethod
    def load_history(self, fid: int, *, since: datetime | None = None) -> list[Snapshot]:
        """Return the fid's snapshots with captured_at >= since (all when None), oldest first."""
        ...

    @abstractmethod
    def update_history(self, fid: int, mutate: HistoryMutation) -> list[Snapshot]:
        """
        Atomically replace the fid's history with mutate(current history).
        Returns the persisted history, oldest first.
        """
        ...

    @abstractmethod
    def load_tracked(self) -> list[TrackedEntry]:
        """Return all tracked-set entries (unordered)."""
        ...

    @abstractmethod
    def update_tracked(self, mutate: TrackedMutation) -> list[TrackedEntry]:
        """Atomically replace the tracked set with mutate(current entries). Returns the persisted set."""
        ...

    def close(self) -> None:
        """Release connections. Default: nothing to release."""


def get_backend(settings: Settings) -> StorageBackend:
    """
    Build the backend selected by settings.store_backend and ensure its schema.

    sql   → SqlBackend(settings.database_url)
    redis → RedisBackend(settings.redis_url)
    file  → FileBackend(settings.snapshot_file_path)
    """
    kind = settings.store_backend
    if kind == "sql":
        from neynar_history.storage.sql_backend import SqlBackend

        backend: StorageBackend = SqlBackend(settings.database_url)
    elif kind == "redis":
        from neynar_history.storage.kv_backend import RedisBackend

        backend = RedisBackend.from_url(settings.redis_url)
    elif kind == "file":
        from neynar_history.storage.file_backend import FileBackend

        backend = FileBackend(settings.snapshot_file_path)
    else:
        raise ValueError(f"Unknown store backend {kind!r}")
    backend.ensure_schema()
    logger.info("storage_backend_ready", backend=backend.name)
    return backend
