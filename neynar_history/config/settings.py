"""
Application settings.

Settings are read once from the environment (after loading .env) into a frozen
dataclass. Tests call reset_settings_cache() after monkeypatching env vars.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from datetime import timedelta

from neynar_history.config.env import (
    env_bool,
    env_choice,
    env_float,
    env_int,
    env_str,
    load_project_env,
)

DEFAULT_NEYNAR_BASE_URL = "https://api.neynar.com"
DEFAULT_DATABASE_URL = "sqlite:///neynar_history.db"
DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_SNAPSHOT_FILE_PATH = "neynar_history.json"

DEFAULT_DEDUPE_WINDOW_MINUTES = 30
DEFAULT_MAX_SNAPSHOTS = 2000  # plenty for 90d at typical polling cadence
DEFAULT_TRACKED_MAX = 200
DEFAULT_SWEEP_MAX_IDENTITIES = 200
DEFAULT_SCORE_CACHE_TTL_SEC = 30.0
DEFAULT_REQUEST_TIMEOUT_SEC = 8.0
DEFAULT_SWEEP_RECENT_DAYS = 30

DEFAULT_BASE_RPC_URL = "https://mainnet.base.org"
DEFAULT_SCORE_CONTRACT_ADDRESS = "0xd3C43A38D1D3E47E9c420a733e439B03FAAdebA8"

STORE_BACKENDS = ("sql", "redis", "file")
DEDUPE_POLICIES = ("sliding", "fixed")
SWEEP_SOURCES = ("api", "onchain")


@dataclass(frozen=True)
class Settings:
    """Typed service configuration."""

    neynar_api_key: str = ""
    neynar_base_url: str = DEFAULT_NEYNAR_BASE_URL
    request_timeout_sec: float = DEFAULT_REQUEST_TIMEOUT_SEC

    store_backend: str = "sql"
    database_url: str = DEFAULT_DATABASE_URL
    redis_url: str = DEFAULT_REDIS_URL
    snapshot_file_path: str = DEFAULT_SNAPSHOT_FILE_PATH

    dedupe_window_minutes: int = DEFAULT_DEDUPE_WINDOW_MINUTES
    dedupe_policy: str = "sliding"
    max_snapshots: int = DEFAULT_MAX_SNAPSHOTS
    tracked_max: int = DEFAULT_TRACKED_MAX
    auto_track_views: bool = True

    sweep_max_identities: int = DEFAULT_SWEEP_MAX_IDENTITIES
    sweep_interval_sec: float = 0.0
    sweep_recent_days: int = DEFAULT_SWEEP_RECENT_DAYS
    sweep_source: str = "api"
    score_cache_ttl_sec: float = DEFAULT_SCORE_CACHE_TTL_SEC
    cron_secret: str = ""

    base_rpc_url: str = DEFAULT_BASE_RPC_URL
    score_contract_address: str = DEFAULT_SCORE_CONTRACT_ADDRESS

    @property
    def dedupe_window(self) -> timedelta:
        return timedelta(minutes=self.dedupe_window_minutes)


def load_settings() -> Settings:
    """Build Settings from the current environment (no caching)."""
    load_project_env()
    return Settings(
        neynar_api_key=env_str("NEYNAR_API_KEY"),
        neynar_base_url=env_str("NEYNAR_BASE_URL", DEFAULT_NEYNAR_BASE_URL).rstrip("/"),
        request_timeout_sec=env_float("REQUEST_TIMEOUT_SEC", DEFAULT_REQUEST_TIMEOUT_SEC, minimum=0.1),
        store_backend=env_choice("STORE_BACKEND", "sql", STORE_BACKENDS),
        database_url=env_str("DATABASE_URL", DEFAULT_DATABASE_URL, "POSTGRES_URL"),
        redis_url=env_str("REDIS_URL", DEFAULT_REDIS_URL),
        snapshot_file_path=env_str("SNAPSHOT_FILE_PATH", DEFAULT_SNAPSHOT_FILE_PATH),
        dedupe_window_minutes=env_int("DEDUPE_WINDOW_MINUTES", DEFAULT_DEDUPE_WINDOW_MINUTES, minimum=0),
        dedupe_policy=env_choice("DEDUPE_POLICY", "sliding", DEDUPE_POLICIES),
        max_snapshots=env_int("MAX_SNAPSHOTS", DEFAULT_MAX_SNAPSHOTS, minimum=1),
        tracked_max=env_int("TRACKED_MAX", DEFAULT_TRACKED_MAX, minimum=1),
        auto_track_views=env_bool("AUTO_TRACK_VIEWS", True),
        sweep_max_identities=env_int("SWEEP_MAX_IDENTITIES", DEFAULT_SWEEP_MAX_IDENTITIES, minimum=1),
        sweep_interval_sec=env_float("SWEEP_INTERVAL_SEC", 0.0, minimum=0.0),
        sweep_recent_days=env_int("SWEEP_RECENT_DAYS", DEFAULT_SWEEP_RECENT_DAYS, minimum=0),
        sweep_source=env_choice("SWEEP_SOURCE", "api", SWEEP_SOURCES),
        score_cache_ttl_sec=env_float("SCORE_CACHE_TTL_SEC", DEFAULT_SCORE_CACHE_TTL_SEC, minimum=0.0),
        cron_secret=env_str("CRON_SECRET"),
        base_rpc_url=env_str("BASE_RPC_URL", DEFAULT_BASE_RPC_URL),
        score_contract_address=env_str("SCORE_CONTRACT_ADDRESS", DEFAULT_SCORE_CONTRACT_ADDRESS),
    )


@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide Settings (read once)."""
    return load_settings()


def reset_settings_cache() -> None:
    """Forget cached settings. For tests after changing env vars."""
    get_settings.cache_clear()
