"""
Domain models for stored entities.

Score snapshots and tracked-set entries. Used by every storage backend; no ORM
coupling so backends stay swappable.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

SOURCE_API = "api"
SOURCE_ONCHAIN = "onchain"
SNAPSHOT_SOURCES = frozenset({SOURCE_API, SOURCE_ONCHAIN})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(ts: datetime) -> datetime:
    """Return ts as an aware UTC datetime; naive values are taken to be UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO 8601 string (``Z`` suffix allowed), datetime, or Unix seconds into aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(raw))
    raise ValueError(f"Unparsable timestamp: {value!r}")


def format_timestamp(ts: datetime) -> str:
    """Aware datetime to ISO 8601 UTC string with microsecond precision and Z suffix."""
    return ensure_utc(ts).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Snapshot:
    """One immutable observation of a fid's score at one instant."""

    fid: int
    score: float
    """Normalized score in [0, 1]."""
    captured_at: datetime
    """Aware UTC datetime when the score was observed."""
    source: str = SOURCE_API
    """Provenance tag: "api" or "onchain". Never affects scoring."""

    def __post_init__(self) -> None:
        if isinstance(self.fid, bool) or not isinstance(self.fid, int) or self.fid <= 0:
            raise ValueError(f"Snapshot fid must be a positive int, got {self.fid!r}")
        score = float(self.score)
        if not math.isfinite(score) or score < 0.0 or score > 1.0:
            raise ValueError(f"Snapshot score must be within [0, 1], got {self.score!r}")
        if self.source not in SNAPSHOT_SOURCES:
            raise ValueError(f"Unknown snapshot source {self.source!r}")
        object.__setattr__(self, "score", score)
        object.__setattr__(self, "captured_at", ensure_utc(self.captured_at))

    def to_dict(self) -> dict[str, Any]:
        return {
            "fid": self.fid,
            "score": self.score,
            "captured_at": format_timestamp(self.captured_at),
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Snapshot":
        return cls(
            fid=int(data["fid"]),
            score=float(data["score"]),
            captured_at=parse_timestamp(data["captured_at"]),
            source=str(data.get("source") or SOURCE_API),
        )


@dataclass(frozen=True)
class TrackedEntry:
    """Member of the tracked set: a fid flagged for periodic refresh."""

    fid: int
    tracked_at: datetime
    """When the fid was first tracked."""
    referenced_at: datetime
    """Last track or view; the least recent unpinned entry is evicted first."""
    pinned: bool = False

    def touched(self, now: datetime) -> "TrackedEntry":
        return replace(self, referenced_at=ensure_utc(now))

    def to_dict(self) -> dict[str, Any]:
        return {
            "fid": self.fid,
            "tracked_at": format_timestamp(self.tracked_at),
            "referenced_at": format_timestamp(self.referenced_at),
            "pinned": self.pinned,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrackedEntry":
        tracked_at = parse_timestamp(data["tracked_at"])
        return cls(
            fid=int(data["fid"]),
            tracked_at=tracked_at,
            referenced_at=parse_timestamp(data.get("referenced_at") or tracked_at),
            pinned=bool(data.get("pinned", False)),
        )
