"""
Main entrypoint: FastAPI server for Neynar score history.

The sweep loop runs inside the API process only when SWEEP_INTERVAL_SEC > 0;
otherwise an external cron calls POST /api/cron/sweep or runs
python -m neynar_history.scheduler.sweep.

Env: NEYNAR_API_KEY, STORE_BACKEND, DATABASE_URL / REDIS_URL / SNAPSHOT_FILE_PATH, API_HOST, API_PORT, etc.

Equivalent: uvicorn neynar_history.api_server.app:app --host 0.0.0.0 --port 8000
"""

import os

# Configure structured JSON logging before other imports that may log
from neynar_history.history_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Run the FastAPI server in the main thread."""
    from neynar_history.config import get_settings

    settings = get_settings()
    api_host = os.getenv("API_HOST", "0.0.0.0").strip()
    api_port = int(os.getenv("API_PORT", "8000").strip() or "8000")
    if not settings.neynar_api_key:
        logger.warning("main_config_warning", message="NEYNAR_API_KEY not set: live lookups will serve stored history only")

    from neynar_history.api_server.app import app
    import uvicorn

    logger.info("main_server_starting", host=api_host, port=api_port, store_backend=settings.store_backend)
    uvicorn.run(app, host=api_host, port=api_port, log_level=os.getenv("LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    main()
