"""
BalanceService: one object wiring the database, locks and engine components together.

The HTTP adapter, the scheduler and moderation callers all go through this facade so
every writer in the process shares the same LockRegistry and retry bound.
"""

from __future__ import annotations

import time
from typing import Any, Callable

from backend_balance.balance_engine.admin_actions import AdminActions, EmergencyResult, StatusChange
from backend_balance.balance_engine.community_metrics import CommunityMetrics, CommunityMetricsAnalyzer
from backend_balance.balance_engine.community_rules import CommunityRuleEngine, VoteResult
from backend_balance.balance_engine.ledger import BalanceEventLedger, EventSequence
from backend_balance.balance_engine.locks import LockRegistry
from backend_balance.balance_engine.moderation import FlagResult, ModerationHooks, RecordedMessage
from backend_balance.balance_engine.rebalancing import (
    BalanceAdjustment,
    ImpactResult,
    RebalancingController,
    UserBalance,
)
from backend_balance.balance_engine.system_balance import SystemBalance
from backend_balance.balance_logging import get_logger
from backend_balance.config.settings import Settings, get_settings
from backend_balance.core.exceptions import RuleNotFoundError
from backend_balance.database import Database, get_database
from backend_balance.database.models import (
    BalanceEvent,
    CommunityRule,
    EmergencyAction,
    RuleDraft,
    RuleType,
    TriggerType,
    User,
    UserStatus,
    parse_trigger_type,
)

logger = get_logger(__name__)


class BalanceService:
    def __init__(
        self,
        db: Database,
        *,
        max_write_retries: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.locks = LockRegistry()
        self.rebalancing = RebalancingController(
            db, locks=self.locks, max_write_retries=max_write_retries, clock=clock
        )
        self.rules = CommunityRuleEngine(db, locks=self.locks, max_write_retries=max_write_retries)
        self.metrics = CommunityMetricsAnalyzer(db, max_write_retries=max_write_retries, clock=clock)
        self.moderation = ModerationHooks(
            db, self.rebalancing, self.rules, locks=self.locks, max_write_retries=max_write_retries
        )
        self.admin = AdminActions(
            db, self.rebalancing, locks=self.locks, max_write_retries=max_write_retries, clock=clock
        )
        self.ledger = BalanceEventLedger(db)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "BalanceService":
        settings = settings or get_settings()
        return cls(get_database(settings.database_url), max_write_retries=settings.max_write_retries)

    def close(self) -> None:
        self.db.dispose()

    # --- Users (identity collaborator path) ---

    def register_user(self, username: str, **scores: Any) -> User:
        user = self.db.add_user(User(id=None, username=username, **scores))
        logger.info("user_registered", user_id=user.id, username=username)
        return user

    # --- Balance ---

    def calculate_system_balance(self) -> SystemBalance:
        return self.rebalancing.calculate_system_balance()

    def perform_automatic_rebalancing(self) -> BalanceEvent | None:
        return self.rebalancing.perform_automatic_rebalancing()

    def trigger_balance_event(
        self,
        user_id: int | None,
        event_type: TriggerType | str,
        description: str,
        adjustment: BalanceAdjustment | None = None,
    ) -> BalanceEvent:
        return self.rebalancing.trigger_balance_event(user_id, event_type, description, adjustment)

    def adjust_balance(
        self,
        user_id: int,
        freedom_delta: int,
        security_delta: int,
        reason: str,
        *,
        trigger_type: TriggerType | str = TriggerType.ADMIN_MANUAL,
        actor_id: int | None = None,
    ) -> BalanceEvent:
        return self.rebalancing.adjust_balance(
            user_id,
            freedom_delta,
            security_delta,
            reason,
            trigger_type=trigger_type,
            actor_id=actor_id,
        )

    def analyze_impact(
        self,
        user: User | int,
        freedom_impact: int,
        security_impact: int,
        description: str | None = None,
    ) -> ImpactResult:
        return self.rebalancing.analyze_impact(user, freedom_impact, security_impact, description)

    def recompute_user_scores(self, user_id: int) -> UserBalance:
        return self.rebalancing.recompute_user_scores(user_id)

    def get_user_balance(self, user_id: int) -> UserBalance:
        return self.rebalancing.get_user_balance(user_id)

    def balance_history(self, limit: int = 50) -> EventSequence:
        return self.rebalancing.balance_history(limit)

    def balance_trends(self, hours: int = 24) -> list[BalanceEvent]:
        return self.rebalancing.balance_trends(hours)

    def balance_events_since(self, since_ts: int) -> list[BalanceEvent]:
        return self.ledger.since(since_ts)

    def balance_events_by_trigger_type(self, trigger_type: TriggerType | str) -> list[BalanceEvent]:
        return self.ledger.by_trigger_type(parse_trigger_type(trigger_type))

    def balance_events_by_user(self, user_id: int) -> list[BalanceEvent]:
        return self.ledger.by_user(user_id)

    # --- Community rules ---

    def create_rule(
        self,
        creator_id: int,
        title: str,
        description: str,
        rule_type: RuleType | str,
        priority: int,
        threshold: int,
        action: Any,
    ) -> CommunityRule:
        draft = RuleDraft.from_raw(title, description, rule_type, priority, threshold, action)
        return self.rules.create_rule(creator_id, draft)

    def vote(self, rule_id: int, voter_id: int, positive: bool) -> VoteResult:
        return self.rules.vote(rule_id, voter_id, positive)

    def evaluate_rule_effectiveness(self) -> list[int]:
        return self.rules.evaluate_effectiveness()

    def active_flag_threshold(self) -> int:
        return self.rules.active_flag_threshold()

    def get_rule(self, rule_id: int) -> CommunityRule:
        rule = self.rules.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def active_rules(self) -> list[CommunityRule]:
        return self.rules.active_rules()

    def active_rules_by_type(self, rule_type: RuleType | str) -> list[CommunityRule]:
        return self.rules.active_rules_by_type(rule_type)

    def rules_created_by(self, user_id: int) -> list[CommunityRule]:
        return self.rules.rules_created_by(user_id)

    def top_voted_rules(self, limit: int = 10) -> list[CommunityRule]:
        return self.rules.top_voted_rules(limit)

    def recent_rules(self, limit: int = 10) -> list[CommunityRule]:
        return self.rules.recent_rules(limit)

    # --- Metrics / moderation ---

    def analyze_community_metrics(self) -> CommunityMetrics:
        return self.metrics.analyze()

    def record_message(self, user_id: int, freedom_impact: int, security_impact: int) -> RecordedMessage:
        return self.moderation.record_message(user_id, freedom_impact, security_impact)

    def flag_message(self, message_id: int, flagger_id: int) -> FlagResult:
        return self.moderation.flag_message(message_id, flagger_id)

    # --- Admin ---

    def update_user_status(
        self,
        user_id: int,
        status: UserStatus | str,
        reason: str,
        *,
        actor_id: int | None = None,
    ) -> StatusChange:
        return self.admin.update_user_status(user_id, status, reason, actor_id=actor_id)

    def emergency_action(
        self,
        action: EmergencyAction | str,
        reason: str,
        *,
        actor_id: int | None = None,
    ) -> EmergencyResult:
        return self.admin.emergency_action(action, reason, actor_id=actor_id)

    def suspicious_users(self) -> list[User]:
        return self.admin.suspicious_users()
