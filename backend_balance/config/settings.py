"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and .env files.
- Provide defaults for every optional setting.
- Expose typed settings (database URL, retry bound, scheduler cadence, API
  host/port) for use across the engine, scheduler and API server.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from backend_balance.config.env import (
    get_database_url,
    get_env_bool,
    get_env_float,
    get_env_int,
    get_env_str,
    load_balance_env,
)

DEFAULT_MAX_WRITE_RETRIES = 3
DEFAULT_REBALANCE_INTERVAL_SEC = 3600.0  # hourly
DEFAULT_METRICS_INTERVAL_SEC = 1800.0  # 30 minutes
DEFAULT_HEALTH_CHECK_INTERVAL_SEC = 900.0  # 15 minutes
DEFAULT_RULE_SWEEP_HOUR = 2  # daily at 02:00 local time
DEFAULT_API_HOST = "0.0.0.0"
DEFAULT_API_PORT = 8000


@dataclass(frozen=True)
class Settings:
    """Typed settings; build with get_settings() or directly in tests."""

    database_url: str
    max_write_retries: int = DEFAULT_MAX_WRITE_RETRIES
    """Attempts for one read-modify-write sequence before ConcurrentModificationError surfaces."""
    rebalance_interval_sec: float = DEFAULT_REBALANCE_INTERVAL_SEC
    metrics_interval_sec: float = DEFAULT_METRICS_INTERVAL_SEC
    health_check_interval_sec: float = DEFAULT_HEALTH_CHECK_INTERVAL_SEC
    rule_sweep_hour: int = DEFAULT_RULE_SWEEP_HOUR
    scheduler_timezone: str | None = None
    """IANA name for the daily cron (e.g. "Asia/Jakarta"); None means local time."""
    scheduler_enabled: bool = True
    api_host: str = DEFAULT_API_HOST
    api_port: int = DEFAULT_API_PORT


def load_settings() -> Settings:
    """Build Settings from the environment (and .env) without caching."""
    load_balance_env()
    return Settings(
        database_url=get_database_url(),
        max_write_retries=max(1, get_env_int("MAX_WRITE_RETRIES", DEFAULT_MAX_WRITE_RETRIES)),
        rebalance_interval_sec=get_env_float("REBALANCE_INTERVAL_SEC", DEFAULT_REBALANCE_INTERVAL_SEC),
        metrics_interval_sec=get_env_float("METRICS_INTERVAL_SEC", DEFAULT_METRICS_INTERVAL_SEC),
        health_check_interval_sec=get_env_float(
            "HEALTH_CHECK_INTERVAL_SEC", DEFAULT_HEALTH_CHECK_INTERVAL_SEC
        ),
        rule_sweep_hour=get_env_int("RULE_SWEEP_HOUR", DEFAULT_RULE_SWEEP_HOUR) % 24,
        scheduler_timezone=get_env_str("SCHEDULER_TIMEZONE") or None,
        scheduler_enabled=get_env_bool("SCHEDULER_ENABLED", True),
        api_host=(get_env_str("API_HOST") or DEFAULT_API_HOST),
        api_port=get_env_int("API_PORT", DEFAULT_API_PORT),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return the current application settings (cached for the process).

    Call get_settings.cache_clear() after changing the environment in tests.
    """
    return load_settings()
