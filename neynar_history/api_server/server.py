"""
FastAPI server: score, history and tracking API over the configured store.

The ScoreService is app-scoped (app.state.service). When SWEEP_INTERVAL_SEC > 0
the lifespan also runs the sweep loop in a background thread.
"""

from __future__ import annotations

import threading
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse

from neynar_history import __version__
from neynar_history.api_server.score_routes import router as score_router
from neynar_history.config import get_settings
from neynar_history.core.exceptions import NeynarHistoryError, RateLimited
from neynar_history.history_logging import get_logger
from neynar_history.service import ScoreService, build_service

logger = get_logger(__name__)

SWEEP_SHUTDOWN_JOIN_SEC = 15.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the service if none was injected; start the sweep thread when configured."""
    from neynar_history.scheduler.sweep import run_sweep_loop

    owns_service = getattr(app.state, "service", None) is None
    if owns_service:
        app.state.service = build_service()
    service: ScoreService = app.state.service

    interval = get_settings().sweep_interval_sec
    sweep_stop = threading.Event()
    sweep_thread: threading.Thread | None = None
    if interval > 0:
        sweep_thread = threading.Thread(
            target=run_sweep_loop,
            args=(sweep_stop, service, interval),
            name="score-sweep",
            daemon=True,
        )
        sweep_thread.start()
        logger.info("sweep_thread_started", interval_sec=interval)

    yield

    sweep_stop.set()
    if sweep_thread is not None:
        sweep_thread.join(timeout=SWEEP_SHUTDOWN_JOIN_SEC)
        if sweep_thread.is_alive():
            logger.warning("sweep_thread_shutdown_timeout", timeout_sec=SWEEP_SHUTDOWN_JOIN_SEC)
        else:
            logger.info("sweep_thread_stopped")
    if owns_service:
        service.close()
        app.state.service = None


def create_app(service: ScoreService | None = None, *, cron_secret: str | None = None) -> FastAPI:
    """
    Build the FastAPI app. Pass service to skip building one from Settings
    (tests); cron_secret defaults to CRON_SECRET.
    """
    app = FastAPI(
        title="Neynar History API",
        description="Neynar user score history for Farcaster fids.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.cron_secret = get_settings().cron_secret if cron_secret is None else cron_secret
    app.include_router(score_router, prefix="/api", tags=["Score"])

    @app.get("/health")
    def health() -> dict[str, str]:
        """Liveness check: API is up."""
        return {"status": "ok"}

    @app.exception_handler(NeynarHistoryError)
    def domain_exception_handler(request: Any, exc: NeynarHistoryError) -> JSONResponse:
        """Typed domain errors -> their HTTP status with a JSON detail."""
        headers: dict[str, str] = {}
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            headers["Retry-After"] = str(int(exc.retry_after))
        logger.info("api_domain_error", path=str(request.url.path), code=exc.code, status=exc.http_status)
        return JSONResponse(
            status_code=exc.http_status,
            content={"detail": exc.message, "code": exc.code},
            headers=headers or None,
        )

    @app.exception_handler(HTTPException)
    def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
        """Consistent JSON error response for HTTPException."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail},
        )

    return app


app = create_app()
