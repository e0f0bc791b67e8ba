"""
User score engine: recompute one user's freedom, security and reputation from activity.

Rules (integer arithmetic, deterministic):
- freedom += min(messages * 2, 30) + reputation // 10
- security += min(account_age_days // 7, 20) + (10 if 0 < messages < 100 else 0)
- reputation += 10 while the account is active, never below 0
Freedom and security are clamped to [0, 100]. Pure; the caller persists.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from backend_balance.balance_engine.score_clamp import clamp
from backend_balance.core.exceptions import InvalidStateError
from backend_balance.database.models import User

SECONDS_PER_DAY = 86400

ACTIVITY_BONUS_PER_MESSAGE = 2
ACTIVITY_BONUS_CAP = 30
REPUTATION_DIVISOR = 10
STABILITY_DAYS_PER_POINT = 7
STABILITY_BONUS_CAP = 20
MODERATE_ACTIVITY_MAX_MESSAGES = 100
MODERATE_ACTIVITY_BONUS = 10
ACTIVE_STATUS_BONUS = 10


@dataclass(frozen=True)
class UserScores:
    freedom: int
    security: int
    reputation: int


def days_since_creation(user: User, now_ts: int) -> int:
    """Whole days between created_at and now; 0 when created_at is unknown or in the future."""
    if user.created_at is None:
        return 0
    return max(0, (now_ts - user.created_at) // SECONDS_PER_DAY)


def recompute_user_scores(
    user: User,
    message_count: int,
    *,
    now_ts: int | None = None,
) -> UserScores:
    """Return the user's new scores. Raises InvalidStateError for a negative message_count."""
    if message_count < 0:
        raise InvalidStateError(f"message_count must be >= 0, got {message_count}")
    now_ts = now_ts if now_ts is not None else int(time.time())

    activity_bonus = min(message_count * ACTIVITY_BONUS_PER_MESSAGE, ACTIVITY_BONUS_CAP)
    reputation_modifier = user.reputation_score // REPUTATION_DIVISOR
    new_freedom = clamp(user.freedom_score + activity_bonus + reputation_modifier)

    stability_bonus = min(days_since_creation(user, now_ts) // STABILITY_DAYS_PER_POINT, STABILITY_BONUS_CAP)
    activity_modifier = (
        MODERATE_ACTIVITY_BONUS if 0 < message_count < MODERATE_ACTIVITY_MAX_MESSAGES else 0
    )
    new_security = clamp(user.security_score + stability_bonus + activity_modifier)

    status_bonus = ACTIVE_STATUS_BONUS if user.is_active else 0
    new_reputation = max(0, user.reputation_score + status_bonus)

    return UserScores(freedom=new_freedom, security=new_security, reputation=new_reputation)
