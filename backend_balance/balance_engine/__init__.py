"""
Balance engine package: user and system balance scores, rebalancing, community rules.

Consumes users, messages and rules from the database layer, applies deterministic
scoring and rebalancing rules, and records every balance change in the ledger.
"""

from backend_balance.balance_engine.score_clamp import (
    RATIO_MAX,
    SCORE_MAX,
    SCORE_MIN,
    apply_delta,
    clamp,
    ratio,
)
from backend_balance.balance_engine.ledger import BalanceEventLedger, EventSequence
from backend_balance.balance_engine.user_scores import UserScores, recompute_user_scores
from backend_balance.balance_engine.system_balance import (
    MetricStore,
    SystemBalance,
    SystemBalanceCalculator,
    Trend,
    balance_score,
    classify_trend,
)
from backend_balance.balance_engine.locks import LockRegistry
from backend_balance.balance_engine.rebalancing import (
    BalanceAdjustment,
    ImpactResult,
    RebalancingController,
    UserBalance,
    apply_global_adjustment,
    compute_global_adjustment,
    needs_rebalancing,
)
from backend_balance.balance_engine.community_rules import (
    CommunityRuleEngine,
    VoteResult,
    activation_threshold,
)
from backend_balance.balance_engine.community_metrics import (
    CommunityMetrics,
    CommunityMetricsAnalyzer,
    community_health,
)
from backend_balance.balance_engine.moderation import FlagResult, ModerationHooks, RecordedMessage
from backend_balance.balance_engine.admin_actions import (
    AdminActions,
    EmergencyResult,
    StatusChange,
    is_suspicious,
)

__all__ = [
    "RATIO_MAX",
    "SCORE_MAX",
    "SCORE_MIN",
    "apply_delta",
    "clamp",
    "ratio",
    "BalanceEventLedger",
    "EventSequence",
    "UserScores",
    "recompute_user_scores",
    "MetricStore",
    "SystemBalance",
    "SystemBalanceCalculator",
    "Trend",
    "balance_score",
    "classify_trend",
    "LockRegistry",
    "BalanceAdjustment",
    "ImpactResult",
    "RebalancingController",
    "UserBalance",
    "apply_global_adjustment",
    "compute_global_adjustment",
    "needs_rebalancing",
    "CommunityRuleEngine",
    "VoteResult",
    "activation_threshold",
    "CommunityMetrics",
    "CommunityMetricsAnalyzer",
    "community_health",
    "FlagResult",
    "ModerationHooks",
    "RecordedMessage",
    "AdminActions",
    "EmergencyResult",
    "StatusChange",
    "is_suspicious",
]
