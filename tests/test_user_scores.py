"""
Tests for per-user score recomputation (activity, account age, reputation).
"""

from __future__ import annotations

import pytest

from backend_balance.balance_engine.user_scores import (
    SECONDS_PER_DAY,
    days_since_creation,
    recompute_user_scores,
)
from backend_balance.core.exceptions import InvalidStateError
from backend_balance.database.models import User

NOW = 1_700_000_000


def _user(**kwargs) -> User:
    defaults = dict(id=1, username="alice", created_at=NOW - 30 * SECONDS_PER_DAY, reputation_score=25)
    defaults.update(kwargs)
    return User(**defaults)


def test_moderate_activity():
    scores = recompute_user_scores(_user(), 4, now_ts=NOW)
    # freedom: 50 + min(8, 30) + 25 // 10
    assert scores.freedom == 60
    # security: 50 + min(30 // 7, 20) + 10
    assert scores.security == 64
    assert scores.reputation == 35


def test_no_messages_gets_no_activity_bonus():
    scores = recompute_user_scores(_user(reputation_score=0), 0, now_ts=NOW)
    assert scores.freedom == 50
    assert scores.security == 54
    assert scores.reputation == 10


def test_heavy_activity_caps_bonus_and_drops_moderation_bonus():
    scores = recompute_user_scores(_user(reputation_score=0), 100, now_ts=NOW)
    assert scores.freedom == 80
    assert scores.security == 54


def test_scores_are_clamped():
    user = _user(freedom_score=95, security_score=99, created_at=NOW - 400 * SECONDS_PER_DAY)
    scores = recompute_user_scores(user, 50, now_ts=NOW)
    assert scores.freedom == 100
    assert scores.security == 100


def test_inactive_user_keeps_reputation():
    scores = recompute_user_scores(_user(is_active=False), 1, now_ts=NOW)
    assert scores.reputation == 25


def test_negative_message_count_rejected():
    with pytest.raises(InvalidStateError):
        recompute_user_scores(_user(), -1, now_ts=NOW)


def test_days_since_creation_edges():
    assert days_since_creation(_user(created_at=None), NOW) == 0
    assert days_since_creation(_user(created_at=NOW + 5 * SECONDS_PER_DAY), NOW) == 0
    assert days_since_creation(_user(created_at=NOW - 7 * SECONDS_PER_DAY - 1), NOW) == 7
