# Periodic refresh of tracked fids: one-shot sweep and interval loop.

from neynar_history.scheduler.sweep import run_sweep_loop, run_sweep_once

__all__ = [
    "run_sweep_loop",
    "run_sweep_once",
]
