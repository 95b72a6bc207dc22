"""
structlog configuration: one JSON object per line on stdout.

Every record carries timestamp (ISO 8601, UTC), level, logger and event_type;
fid is added by bind_identity() or passed as keyword context. LOG_FORMAT=console
switches to the human-readable renderer for local runs.

Reads LOG_LEVEL / LOG_FORMAT straight from the environment: config imports
this package, so it cannot import config.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import structlog


def rename_event(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog's 'event' key is emitted as event_type."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    fmt = (fmt or os.getenv("LOG_FORMAT") or "json").strip().lower()
    renderer: Any
    if fmt == "console":
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    else:
        renderer = structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            rename_event,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_logging()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Logger bound to the module name:

        logger = get_logger(__name__)
        logger.info("snapshot_appended", fid=3, score=0.91, action="replace")
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_identity(fid: int) -> structlog.BoundLogger:
    return get_logger("neynar_history").bind(fid=fid)
