"""
Community metrics: population and content totals plus a 0-100 community health score.

Health = activity + content + engagement, capped at 100 (0 when there are no users):
- activity:   active_users / total_users * 40
- content:    (1 - flagged_messages / total_messages) * 40, or 40 with no messages
- engagement: min(rule_count / 10, 1) * 20

Each run records total_users, active_users, community_health, avg_freedom_score and
avg_security_score as ACTIVITY / REAL_TIME samples.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from backend_balance.balance_engine.transactions import run_atomic
from backend_balance.balance_logging import get_logger
from backend_balance.database.database import Database, UnitOfWork
from backend_balance.database.models import CalculationPeriod, MetricType

logger = get_logger(__name__)

ACTIVITY_WEIGHT = 40.0
CONTENT_WEIGHT = 40.0
ENGAGEMENT_WEIGHT = 20.0
ENGAGEMENT_RULES_FOR_FULL_SCORE = 10
HEALTH_MAX = 100.0


@dataclass(frozen=True)
class CommunityMetrics:
    total_users: int
    active_users: int
    total_messages: int
    flagged_messages: int
    total_rules: int
    avg_freedom_score: float
    avg_security_score: float
    avg_reputation_score: float
    community_health: float
    calculated_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_users": self.total_users,
            "active_users": self.active_users,
            "total_messages": self.total_messages,
            "flagged_messages": self.flagged_messages,
            "total_rules": self.total_rules,
            "avg_freedom_score": self.avg_freedom_score,
            "avg_security_score": self.avg_security_score,
            "avg_reputation_score": self.avg_reputation_score,
            "community_health": self.community_health,
            "calculated_at": self.calculated_at,
        }


def community_health(
    total_users: int,
    active_users: int,
    total_messages: int,
    flagged_messages: int,
    total_rules: int,
) -> float:
    if total_users <= 0:
        return 0.0
    activity = active_users / total_users * ACTIVITY_WEIGHT
    if total_messages > 0:
        content = (1.0 - flagged_messages / total_messages) * CONTENT_WEIGHT
    else:
        content = CONTENT_WEIGHT
    engagement = min(total_rules / ENGAGEMENT_RULES_FOR_FULL_SCORE, 1.0) * ENGAGEMENT_WEIGHT
    return min(HEALTH_MAX, activity + content + engagement)


class CommunityMetricsAnalyzer:
    def __init__(
        self,
        db: Database,
        *,
        max_write_retries: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._max_write_retries = max_write_retries
        self._clock = clock

    def analyze(self) -> CommunityMetrics:
        """Compute the current metrics and record their samples in one transaction."""

        def _analyze(uow: UnitOfWork) -> CommunityMetrics:
            total_users = uow.count_users()
            active_users = uow.count_active_users()
            total_messages = uow.count_messages()
            flagged_messages = uow.count_flagged_messages()
            total_rules = uow.count_rules()
            metrics = CommunityMetrics(
                total_users=total_users,
                active_users=active_users,
                total_messages=total_messages,
                flagged_messages=flagged_messages,
                total_rules=total_rules,
                avg_freedom_score=uow.average_freedom_score() or 0.0,
                avg_security_score=uow.average_security_score() or 0.0,
                avg_reputation_score=uow.average_reputation_score() or 0.0,
                community_health=community_health(
                    total_users, active_users, total_messages, flagged_messages, total_rules
                ),
                calculated_at=int(self._clock()),
            )
            for name, value in (
                ("total_users", metrics.total_users),
                ("active_users", metrics.active_users),
                ("community_health", metrics.community_health),
                ("avg_freedom_score", metrics.avg_freedom_score),
                ("avg_security_score", metrics.avg_security_score),
            ):
                uow.append_metric_sample(name, value, MetricType.ACTIVITY, CalculationPeriod.REAL_TIME)
            return metrics

        metrics = run_atomic(self._db, "analyze_community_metrics", _analyze, max_attempts=self._max_write_retries)
        logger.info(
            "community_metrics_analyzed",
            total_users=metrics.total_users,
            active_users=metrics.active_users,
            community_health=round(metrics.community_health, 2),
        )
        return metrics
