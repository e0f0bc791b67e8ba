"""
Tests for environment-driven configuration.
"""

from __future__ import annotations

from backend_balance.config.env import get_database_url, mask_database_url
from backend_balance.config.settings import load_settings


def _clear(monkeypatch):
    for name in (
        "BALANCE_DB_URL",
        "DATABASE_URL",
        "BALANCE_DB_PATH",
        "MAX_WRITE_RETRIES",
        "REBALANCE_INTERVAL_SEC",
        "RULE_SWEEP_HOUR",
        "SCHEDULER_ENABLED",
        "SCHEDULER_TIMEZONE",
        "API_PORT",
    ):
        monkeypatch.delenv(name, raising=False)


def test_database_url_precedence(monkeypatch):
    _clear(monkeypatch)
    assert get_database_url() == "sqlite:///balance.db"
    monkeypatch.setenv("BALANCE_DB_PATH", "/tmp/x.db")
    assert get_database_url() == "sqlite:////tmp/x.db"
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/app")
    assert get_database_url() == "postgresql://u:p@db:5432/app"
    monkeypatch.setenv("BALANCE_DB_URL", "sqlite:///other.db")
    assert get_database_url() == "sqlite:///other.db"


def test_settings_defaults(monkeypatch):
    _clear(monkeypatch)
    settings = load_settings()
    assert settings.max_write_retries == 3
    assert settings.rebalance_interval_sec == 3600.0
    assert settings.metrics_interval_sec == 1800.0
    assert settings.health_check_interval_sec == 900.0
    assert settings.rule_sweep_hour == 2
    assert settings.scheduler_enabled is True
    assert settings.scheduler_timezone is None


def test_settings_from_env(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("MAX_WRITE_RETRIES", "0")
    monkeypatch.setenv("REBALANCE_INTERVAL_SEC", "60")
    monkeypatch.setenv("SCHEDULER_ENABLED", "false")
    monkeypatch.setenv("API_PORT", "9001")
    monkeypatch.setenv("SCHEDULER_TIMEZONE", "Asia/Jakarta")
    settings = load_settings()
    assert settings.max_write_retries == 1
    assert settings.rebalance_interval_sec == 60.0
    assert settings.scheduler_enabled is False
    assert settings.api_port == 9001
    assert settings.scheduler_timezone == "Asia/Jakarta"


def test_mask_database_url_hides_credentials():
    assert mask_database_url("postgresql://user:secret@db:5432/app?sslmode=require") == "db:5432/app"
