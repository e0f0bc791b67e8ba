"""
Score bounds shared by every write path: scores live in [0, 100].
"""

from __future__ import annotations

SCORE_MIN = 0
SCORE_MAX = 100

# Largest freedom/security ratio two in-range scores can produce (100 / 1);
# reported when security is 0 and freedom is not.
RATIO_MAX = float(SCORE_MAX)


def clamp(value: int) -> int:
    return max(SCORE_MIN, min(SCORE_MAX, int(value)))


def apply_delta(base: int, delta: int) -> int:
    return clamp(base + delta)


def ratio(freedom: int, security: int) -> float:
    """Freedom / security, with RATIO_MAX for a zero denominator and 1.0 when both are zero."""
    if security == 0:
        return RATIO_MAX if freedom > 0 else 1.0
    return freedom / security
