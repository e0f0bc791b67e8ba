"""
Test that balance_logging can be imported without circular import and logger works.
"""

from __future__ import annotations

import structlog


def test_logging_import():
    """Import get_logger from balance_logging and use the logger."""
    from backend_balance.balance_logging import get_logger

    logger = get_logger("test")
    assert logger is not None
    assert hasattr(logger, "info")
    assert hasattr(logger, "debug")
    assert hasattr(logger, "warning")
    assert hasattr(logger, "error")
    # Smoke test: call info (should not raise)
    logger.info("test_message", user_id=1, rule_id=2)


def test_user_log_context_binds_and_clears_user_id():
    from backend_balance.balance_logging import get_logger, user_log_context

    with user_log_context(42):
        assert structlog.contextvars.get_contextvars()["user_id"] == 42
        get_logger("test").info("test_bound_message", freedom=55)
    assert "user_id" not in structlog.contextvars.get_contextvars()


def test_adjustment_logs_carry_user_id(service, make_user, monkeypatch):
    from backend_balance.balance_engine import rebalancing

    user = make_user()
    seen = []

    class RecordingLogger:
        def info(self, event, **kw):
            seen.append((event, structlog.contextvars.get_contextvars().get("user_id")))

    monkeypatch.setattr(rebalancing, "logger", RecordingLogger())
    service.adjust_balance(user.id, 1, 1, "audit")
    assert ("user_balance_adjusted", user.id) in seen
