"""
Environment variable loading and parsing for Neynar History.

- Loads .env from project root when available.
- Typed getters fall back to the default (and log a warning) on unparsable values.
"""

from __future__ import annotations

import os
from pathlib import Path

from neynar_history.history_logging import get_logger

logger = get_logger(__name__)

# Project root: config is neynar_history/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"


def load_project_env() -> None:
    """Load .env from project root. Safe to call multiple times; never overrides real env."""
    from dotenv import load_dotenv

    load_dotenv(_ENV_PATH, override=False)


def env_str(name: str, default: str = "", *aliases: str) -> str:
    """Return the first non-empty value among name and aliases, stripped; else default."""
    for key in (name, *aliases):
        raw = (os.getenv(key) or "").strip()
        if raw:
            return raw
    return default


def env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("config_invalid_int", name=name, value=raw, default=default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("config_below_minimum", name=name, value=value, minimum=minimum, default=default)
        return default
    return value


def env_float(name: str, default: float, *, minimum: float | None = None) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("config_invalid_float", name=name, value=raw, default=default)
        return default
    if minimum is not None and value < minimum:
        logger.warning("config_below_minimum", name=name, value=value, minimum=minimum, default=default)
        return default
    return value


def env_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw not in choices:
        logger.warning("config_invalid_choice", name=name, value=raw, choices=list(choices), default=default)
        return default
    return raw


def env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    logger.warning("config_invalid_bool", name=name, value=raw, default=default)
    return default
