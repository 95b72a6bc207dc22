"""
Storage layer: snapshot histories and the tracked set.

Backends are swappable (SQL via SQLAlchemy, Redis, local JSON file) behind the
StorageBackend interface; get_backend() builds the one selected in Settings.
"""

from neynar_history.storage.backend import StorageBackend, get_backend
from neynar_history.storage.models import (
    SOURCE_API,
    SOURCE_ONCHAIN,
    Snapshot,
    TrackedEntry,
    format_timestamp,
    parse_timestamp,
    utc_now,
)

__all__ = [
    "SOURCE_API",
    "SOURCE_ONCHAIN",
    "Snapshot",
    "StorageBackend",
    "TrackedEntry",
    "format_timestamp",
    "get_backend",
    "parse_timestamp",
    "utc_now",
]
