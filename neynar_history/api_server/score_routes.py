"""
FastAPI router: current score, history, snapshot submission, tracked set, sweep.

All routes go through the ScoreService held on app.state (see get_service).
Domain errors propagate as NeynarHistoryError and are mapped to HTTP status
codes by the exception handler in server.py.
"""

from __future__ import annotations

import hmac
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field, field_validator

from neynar_history.core.exceptions import Forbidden, InvalidWindow
from neynar_history.core.identity import validate_fid
from neynar_history.history.merge import SnapshotDelta
from neynar_history.history_logging import get_logger
from neynar_history.service import DEFAULT_HISTORY_DAYS, ScoreService, build_service
from neynar_history.storage.models import Snapshot, format_timestamp, parse_timestamp, utc_now

logger = get_logger(__name__)

router = APIRouter()


def get_service(request: Request) -> ScoreService:
    """Dependency: app-scoped ScoreService (built on first use when the lifespan did not run)."""
    service = getattr(request.app.state, "service", None)
    if service is None:
        service = build_service()
        request.app.state.service = service
    return service


def require_cron_secret(request: Request) -> None:
    """
    Dependency: when a cron secret is configured, require it as ?secret=,
    an x-cron-secret header or an Authorization: Bearer token.
    """
    expected = getattr(request.app.state, "cron_secret", "") or ""
    if not expected:
        return
    auth = request.headers.get("authorization", "")
    presented = (
        request.query_params.get("secret")
        or request.headers.get("x-cron-secret")
        or (auth[7:] if auth.lower().startswith("bearer ") else "")
    )
    if not presented or not hmac.compare_digest(presented.encode(), expected.encode()):
        raise Forbidden("Missing or wrong cron secret")


def parse_window_days(raw: str) -> int:
    try:
        return int(raw.strip())
    except ValueError:
        raise InvalidWindow(f"days must be an integer, got {raw!r}") from None


# -----------------------------------------------------------------------------
# Request / response models
# -----------------------------------------------------------------------------


class ScoreResponse(BaseModel):
    """GET /api/score/{fid} response."""

    fid: int
    score: float = Field(..., ge=0, le=1, description="Normalized Neynar user score (0–1)")
    captured_at: str = Field(..., description="When the served score was observed (ISO 8601)")
    fetched_at: str = Field(..., description="When this lookup ran (ISO 8601)")
    source: str
    stale: bool = Field(False, description="True when served from history because the live fetch failed")
    persisted: bool = Field(False, description="True when the snapshot is stored")
    warning: str | None = None
    error_code: str | None = None
    retry_after: float | None = None


class SnapshotPoint(BaseModel):
    score: float
    captured_at: str
    source: str
    delta: float = 0.0

    @classmethod
    def from_delta(cls, d: SnapshotDelta) -> "SnapshotPoint":
        return cls(
            score=d.snapshot.score,
            captured_at=format_timestamp(d.snapshot.captured_at),
            source=d.snapshot.source,
            delta=d.delta,
        )


class HistoryResponse(BaseModel):
    """GET /api/history/{fid} response."""

    fid: int
    days: int
    snapshots: list[SnapshotPoint] = Field(default_factory=list)
    changes: list[SnapshotPoint] = Field(default_factory=list, description="First point plus every score change")
    history_begins_at: str | None = None


class SnapshotSubmitRequest(BaseModel):
    """POST /api/snapshots body: a snapshot observed by a client."""

    fid: int = Field(..., gt=0)
    score: float = Field(..., ge=0, le=1)
    captured_at: str | None = Field(None, description="ISO 8601; defaults to now")
    source: Literal["api", "onchain"] = "api"

    @field_validator("captured_at")
    @classmethod
    def _check_captured_at(cls, v: str | None) -> str | None:
        if v is not None:
            parse_timestamp(v)
        return v


class SnapshotSubmitResponse(BaseModel):
    ok: bool
    fid: int
    action: str | None = None
    evicted: int = 0
    length: int = 0


class TrackRequest(BaseModel):
    """POST /api/track body."""

    fid: int = Field(..., gt=0)
    track: bool = True
    pinned: bool = False


class TrackResponse(BaseModel):
    fid: int
    tracked: bool
    pinned: bool = False
    evicted: list[int] = Field(default_factory=list)


class TrackedEntryResponse(BaseModel):
    fid: int
    tracked_at: str
    referenced_at: str
    pinned: bool


# -----------------------------------------------------------------------------
# Routes
# -----------------------------------------------------------------------------


@router.get("/score/{fid}", response_model=ScoreResponse)
def get_score(fid: str, service: ScoreService = Depends(get_service)) -> ScoreResponse:
    """
    Current score for fid. Fetches from Neynar, stores a snapshot and returns it;
    serves the last stored snapshot (stale=true) when Neynar is unavailable.
    """
    current = service.get_current_score(validate_fid(fid))
    return ScoreResponse(**current.to_dict())


@router.get("/history/{fid}", response_model=HistoryResponse)
def get_history(
    fid: str,
    days: str = Query(str(DEFAULT_HISTORY_DAYS), description="Window: 7, 30 or 90 days"),
    service: ScoreService = Depends(get_service),
) -> HistoryResponse:
    view = service.get_history(validate_fid(fid), parse_window_days(days))
    return HistoryResponse(
        fid=view.fid,
        days=view.days,
        snapshots=[SnapshotPoint.from_delta(d) for d in view.snapshots],
        changes=[SnapshotPoint.from_delta(d) for d in view.changes],
        history_begins_at=format_timestamp(view.history_begins_at) if view.history_begins_at else None,
    )


@router.post("/snapshots", response_model=SnapshotSubmitResponse)
def submit_snapshot(body: SnapshotSubmitRequest, service: ScoreService = Depends(get_service)) -> SnapshotSubmitResponse:
    captured_at = parse_timestamp(body.captured_at) if body.captured_at else utc_now()
    snap = Snapshot(fid=body.fid, score=body.score, captured_at=captured_at, source=body.source)
    result = service.submit_snapshot(snap)
    if not result.ok:
        raise HTTPException(status_code=503, detail=f"Snapshot not persisted: {result.error}")
    return SnapshotSubmitResponse(
        ok=True,
        fid=result.fid,
        action=result.action,
        evicted=result.evicted,
        length=len(result.history),
    )


@router.post("/track", response_model=TrackResponse)
def track(body: TrackRequest, service: ScoreService = Depends(get_service)) -> TrackResponse:
    """Add (track=true) or remove (track=false) a fid from the tracked set."""
    result = service.track(body.fid, body.track, pinned=body.pinned)
    return TrackResponse(fid=result.fid, tracked=result.tracked, pinned=result.pinned, evicted=result.evicted)


@router.get("/tracked", response_model=list[TrackedEntryResponse])
def list_tracked(service: ScoreService = Depends(get_service)) -> list[TrackedEntryResponse]:
    """Tracked fids, pinned first, then most recently referenced."""
    return [
        TrackedEntryResponse(
            fid=e.fid,
            tracked_at=format_timestamp(e.tracked_at),
            referenced_at=format_timestamp(e.referenced_at),
            pinned=e.pinned,
        )
        for e in service.tracked()
    ]


@router.post("/cron/sweep", dependencies=[Depends(require_cron_secret)])
def cron_sweep(
    limit: int | None = Query(None, ge=1, description="Max fids to refresh"),
    service: ScoreService = Depends(get_service),
) -> dict[str, Any]:
    """Refresh tracked fids once. Called by an external cron; guarded by CRON_SECRET when set."""
    summary = service.sweep(limit)
    return summary.to_dict()
