"""
Community rule engine: rule creation, voting, activation and the effectiveness sweep.

Lifecycle per rule: created INACTIVE with the creator's implicit vote (votes = 1).
- INACTIVE -> ACTIVE when votes >= activation threshold (on a vote)
- ACTIVE -> INACTIVE when votes < 0 (on a vote) or votes < -10 (on the sweep)
The sweep never reactivates. Activation threshold = max(3, int(active_users * 0.1)),
recomputed from the live active-user count on every vote.

Reputation side effects: creator +5 on create, voter +1 on every vote.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from backend_balance.balance_engine.locks import LockRegistry
from backend_balance.balance_engine.transactions import run_atomic
from backend_balance.balance_logging import get_logger
from backend_balance.database.database import Database, UnitOfWork
from backend_balance.database.models import CommunityRule, RuleDraft, RuleType, parse_rule_type

logger = get_logger(__name__)

CREATOR_REPUTATION_BONUS = 5
VOTER_REPUTATION_BONUS = 1
MIN_ACTIVATION_VOTES = 3
ACTIVATION_POPULATION_SHARE = 0.1
INEFFECTIVE_VOTES_BELOW = -10
DEFAULT_FLAG_THRESHOLD = 5


@dataclass(frozen=True)
class VoteResult:
    rule_id: int
    total_votes: int
    positive_votes: int
    negative_votes: int
    user_vote: bool
    is_active: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "total_votes": self.total_votes,
            "positive_votes": self.positive_votes,
            "negative_votes": self.negative_votes,
            "user_vote": self.user_vote,
            "is_active": self.is_active,
        }


def activation_threshold(active_user_count: int) -> int:
    return max(MIN_ACTIVATION_VOTES, int(active_user_count * ACTIVATION_POPULATION_SHARE))


def apply_vote(rule: CommunityRule, positive: bool, threshold: int) -> CommunityRule:
    """Mutate rule for one vote and return it. Activation and deactivation are checked in that order."""
    rule.votes += 1 if positive else -1
    if rule.votes >= threshold and not rule.is_active:
        rule.is_active = True
    elif rule.votes < 0 and rule.is_active:
        rule.is_active = False
    return rule


def flag_threshold_from_rules(security_rules: list[CommunityRule]) -> int:
    thresholds = [r.threshold for r in security_rules if r.rule_type is RuleType.SECURITY]
    return min(thresholds) if thresholds else DEFAULT_FLAG_THRESHOLD


class CommunityRuleEngine:
    def __init__(
        self,
        db: Database,
        *,
        locks: LockRegistry | None = None,
        max_write_retries: int = 3,
    ) -> None:
        self._db = db
        self._locks = locks or LockRegistry()
        self._max_write_retries = max_write_retries

    def _atomic(self, operation: str, fn: Callable[[UnitOfWork], Any]) -> Any:
        return run_atomic(self._db, operation, fn, max_attempts=self._max_write_retries)

    @staticmethod
    def _bump_reputation(uow: UnitOfWork, user_id: int, amount: int) -> None:
        user = uow.require_user(user_id)
        user.reputation_score += amount
        uow.save_user(user)

    def create_rule(self, creator_id: int, draft: RuleDraft) -> CommunityRule:
        """Store a new inactive rule with one vote and credit the creator."""

        def _create(uow: UnitOfWork) -> CommunityRule:
            uow.require_user(creator_id)
            rule = uow.add_rule(
                CommunityRule(
                    id=None,
                    title=draft.title,
                    description=draft.description,
                    rule_type=draft.rule_type,
                    priority=draft.priority,
                    threshold=draft.threshold,
                    action=draft.action,
                    created_by=creator_id,
                )
            )
            self._bump_reputation(uow, creator_id, CREATOR_REPUTATION_BONUS)
            return rule

        with self._locks.user(creator_id):
            rule = self._atomic("create_rule", _create)
        logger.info(
            "community_rule_created",
            rule_id=rule.id,
            user_id=creator_id,
            rule_type=rule.rule_type.value,
            priority=rule.priority,
        )
        return rule

    def vote(self, rule_id: int, voter_id: int, positive: bool) -> VoteResult:
        """Record one vote; the rule may activate or deactivate. Voter reputation +1 either way."""

        def _vote(uow: UnitOfWork) -> VoteResult:
            rule = uow.require_rule(rule_id)
            uow.require_user(voter_id)
            was_active = rule.is_active
            threshold = activation_threshold(uow.count_active_users())
            apply_vote(rule, positive, threshold)
            uow.save_rule(rule)
            self._bump_reputation(uow, voter_id, VOTER_REPUTATION_BONUS)
            if rule.is_active != was_active:
                logger.info(
                    "community_rule_activated" if rule.is_active else "community_rule_deactivated",
                    rule_id=rule.id,
                    votes=rule.votes,
                    threshold=threshold,
                )
            return VoteResult(
                rule_id=rule.id,
                total_votes=abs(rule.votes),
                positive_votes=max(0, rule.votes),
                negative_votes=max(0, -rule.votes),
                user_vote=positive,
                is_active=rule.is_active,
            )

        with self._locks.rule(rule_id), self._locks.user(voter_id):
            result = self._atomic("vote", _vote)
        logger.info("community_rule_voted", rule_id=rule_id, user_id=voter_id, positive=positive)
        return result

    def evaluate_effectiveness(self) -> list[int]:
        """Deactivate every active rule whose votes fell below -10. Returns their ids."""

        def _sweep(uow: UnitOfWork) -> list[int]:
            ineffective = [r for r in uow.list_active_rules() if r.votes < INEFFECTIVE_VOTES_BELOW]
            for rule in ineffective:
                rule.is_active = False
            uow.save_rules(ineffective)
            return [r.id for r in ineffective]

        deactivated = self._atomic("evaluate_effectiveness", _sweep)
        logger.info("community_rule_sweep_done", deactivated=len(deactivated), rule_ids=deactivated)
        return deactivated

    def active_flag_threshold(self) -> int:
        """Smallest threshold among active SECURITY rules; 5 when there are none."""
        return flag_threshold_from_rules(self._db.list_active_rules_by_type(RuleType.SECURITY))

    # --- Reads ---

    def get_rule(self, rule_id: int) -> CommunityRule | None:
        return self._db.get_rule(rule_id)

    def active_rules(self) -> list[CommunityRule]:
        return self._db.list_active_rules()

    def active_rules_by_type(self, rule_type: RuleType | str) -> list[CommunityRule]:
        return self._db.list_active_rules_by_type(parse_rule_type(rule_type))

    def rules_created_by(self, user_id: int) -> list[CommunityRule]:
        return self._db.list_rules_by_creator(user_id)

    def top_voted_rules(self, limit: int = 10) -> list[CommunityRule]:
        return self._db.list_top_voted_rules(limit)

    def recent_rules(self, limit: int = 10) -> list[CommunityRule]:
        return self._db.list_recent_rules(limit)
