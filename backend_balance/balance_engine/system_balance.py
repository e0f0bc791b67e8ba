"""
System balance calculator: aggregate active users into system freedom/security levels,
a balance score and a trend.

- Levels: arithmetic mean of active users' scores, reported as int(mean). This truncates
  toward zero rather than rounding; trend and rebalancing thresholds are tuned against it.
- Balance score (from the float means): 1.0 at parity, 1 / (1 + |f/s - 1|) otherwise;
  0.1 when exactly one axis is 0; 1.0 when both are 0.
- Trend: freedom mean vs the latest recorded system_freedom_level sample only.
  |delta| < 2 is stable. Security movement on its own never registers a trend.

Every non-empty calculation records three BALANCE / REAL_TIME samples, which is what
the next call's trend lookback reads. Metric access is injected (MetricStore), so the
calculator is deterministic under test.
"""

from __future__ import annotations

import statistics
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from backend_balance.balance_logging import get_logger
from backend_balance.database.models import CalculationPeriod, MetricType, SystemMetric, User

logger = get_logger(__name__)

METRIC_FREEDOM_LEVEL = "system_freedom_level"
METRIC_SECURITY_LEVEL = "system_security_level"
METRIC_BALANCE_SCORE = "system_balance_score"

DEFAULT_LEVEL = 50
DEFAULT_BALANCE_SCORE = 1.0
HEAVY_BIAS_SCORE = 0.1
TREND_DELTA_THRESHOLD = 2.0


class Trend(str, Enum):
    STABLE = "STABLE"
    FREEDOM_INCREASING = "FREEDOM_INCREASING"
    SECURITY_INCREASING = "SECURITY_INCREASING"


class MetricStore(Protocol):
    def latest_metric_by_name(self, name: str) -> SystemMetric | None: ...

    def append_metric_sample(
        self,
        name: str,
        value: float,
        metric_type: MetricType,
        period: CalculationPeriod,
        metadata: dict[str, Any] | None = None,
    ) -> SystemMetric: ...


@dataclass(frozen=True)
class SystemBalance:
    freedom_level: int
    security_level: int
    balance_score: float
    trend: Trend
    last_updated: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "freedom_level": self.freedom_level,
            "security_level": self.security_level,
            "balance_score": self.balance_score,
            "trend": self.trend.value,
            "last_updated": self.last_updated,
        }


def balance_score(freedom: float, security: float) -> float:
    if freedom == 0 and security == 0:
        return DEFAULT_BALANCE_SCORE
    if freedom == 0 or security == 0:
        return HEAVY_BIAS_SCORE
    return 1.0 / (1.0 + abs(freedom / security - 1.0))


def classify_trend(current_freedom: float, previous_freedom: float | None) -> Trend:
    if previous_freedom is None:
        return Trend.STABLE
    delta = current_freedom - previous_freedom
    if abs(delta) < TREND_DELTA_THRESHOLD:
        return Trend.STABLE
    if delta > 0:
        return Trend.FREEDOM_INCREASING
    return Trend.SECURITY_INCREASING


def default_balance(now_ts: int | None = None) -> SystemBalance:
    return SystemBalance(
        freedom_level=DEFAULT_LEVEL,
        security_level=DEFAULT_LEVEL,
        balance_score=DEFAULT_BALANCE_SCORE,
        trend=Trend.STABLE,
        last_updated=now_ts if now_ts is not None else int(time.time()),
    )


class SystemBalanceCalculator:
    def __init__(self, metrics: MetricStore) -> None:
        self._metrics = metrics

    def calculate_system_balance(
        self,
        active_users: list[User],
        *,
        now_ts: int | None = None,
    ) -> SystemBalance:
        now_ts = now_ts if now_ts is not None else int(time.time())
        if not active_users:
            return default_balance(now_ts)

        avg_freedom = statistics.fmean(u.freedom_score for u in active_users)
        avg_security = statistics.fmean(u.security_score for u in active_users)
        score = balance_score(avg_freedom, avg_security)

        previous = self._metrics.latest_metric_by_name(METRIC_FREEDOM_LEVEL)
        trend = classify_trend(avg_freedom, previous.metric_value if previous else None)

        for name, value in (
            (METRIC_FREEDOM_LEVEL, avg_freedom),
            (METRIC_SECURITY_LEVEL, avg_security),
            (METRIC_BALANCE_SCORE, score),
        ):
            self._metrics.append_metric_sample(
                name, value, MetricType.BALANCE, CalculationPeriod.REAL_TIME
            )

        balance = SystemBalance(
            freedom_level=int(avg_freedom),
            security_level=int(avg_security),
            balance_score=score,
            trend=trend,
            last_updated=now_ts,
        )
        logger.info(
            "system_balance_calculated",
            active_users=len(active_users),
            freedom_level=balance.freedom_level,
            security_level=balance.security_level,
            balance_score=round(score, 4),
            trend=trend.value,
        )
        return balance
