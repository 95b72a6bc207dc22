"""
Sweep: refresh the score history of every tracked fid.

Invoked by an external scheduler (cron hitting POST /api/cron/sweep, or this
module as a CLI), or by the API process itself when SWEEP_INTERVAL_SEC > 0.

How to run:
    python -m neynar_history.scheduler.sweep            # one sweep, JSON summary on stdout
    python -m neynar_history.scheduler.sweep --limit 50
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any

from neynar_history.history_logging import get_logger
from neynar_history.service import ScoreService, SweepSummary, build_service

logger = get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SEC = 3600.0


def run_sweep_once(service: ScoreService, limit: int | None = None) -> SweepSummary:
    """One pass over the tracked set (capped at limit or SWEEP_MAX_IDENTITIES)."""
    logger.info("sweep_started", limit=limit if limit is not None else service.sweep_max_identities)
    return service.sweep(limit)


def run_sweep_loop(
    stop_event: Any,
    service: ScoreService,
    interval_sec: float = DEFAULT_SWEEP_INTERVAL_SEC,
) -> None:
    """Loop: every interval_sec run one sweep, until stop_event is set."""
    logger.info("sweep_worker_started", interval_sec=interval_sec)
    while not stop_event.wait(timeout=interval_sec):
        try:
            summary = run_sweep_once(service)
            if summary.failed:
                logger.warning("sweep_partial", succeeded=summary.succeeded, failed=summary.failed)
        except Exception as e:
            logger.exception("sweep_error", error=str(e))
    logger.info("sweep_worker_stopped")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Refresh score history for tracked fids.")
    parser.add_argument("--limit", type=int, default=None, help="Max fids to refresh (default SWEEP_MAX_IDENTITIES)")
    args = parser.parse_args(argv)

    service = build_service()
    try:
        summary = run_sweep_once(service, args.limit)
    finally:
        service.close()
    print(json.dumps(summary.to_dict(), indent=2))
    return 0 if summary.failed == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
