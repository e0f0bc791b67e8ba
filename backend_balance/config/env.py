"""
Environment variable loading for Backend Balance.

- BALANCE_DB_URL / DATABASE_URL: SQLAlchemy URL (default: SQLite balance.db in cwd)
- BALANCE_DB_PATH: SQLite file path used when no URL is set
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is backend_balance/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_SQLITE_PATH = "balance.db"

_TRUTHY = ("1", "true", "yes", "on")


def load_balance_env() -> None:
    """Load .env from project root. Safe to call multiple times; existing env wins."""
    load_dotenv(_ENV_PATH, override=False)


def get_database_url() -> str:
    """
    Resolve the database URL.
    Order: BALANCE_DB_URL > DATABASE_URL > sqlite:///BALANCE_DB_PATH (default balance.db).
    """
    load_balance_env()
    url = (os.getenv("BALANCE_DB_URL") or os.getenv("DATABASE_URL") or "").strip()
    if url:
        return url
    path = (os.getenv("BALANCE_DB_PATH") or "").strip() or DEFAULT_SQLITE_PATH
    return f"sqlite:///{path}"


def get_env_int(name: str, default: int) -> int:
    """Return int env var; blank or missing falls back to default."""
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def get_env_str(name: str) -> str:
    return (os.getenv(name) or "").strip()


def get_env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


def get_env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in _TRUTHY


def mask_database_url(url: str) -> str:
    """Drop credentials and query string for logging."""
    return url.split("?")[0].split("@")[-1].split("//")[-1]
