"""
Rebalancing controller: decides when the system needs corrective action and applies
bounded score deltas, to every active user or to one user, recording each change
in the balance ledger.

State over the system balance is BALANCED / NEEDS_REBALANCING, recomputed on each
evaluation and never persisted:
- needs rebalancing when balance_score < 0.7 or |freedom - security| > 30
- global delta: freedom leads by more than 10 -> (-2, +1); security leads by more
  than 10 -> (+1, -2); otherwise nothing (dead band against oscillation)

Every path runs "read -> compute -> persist -> append event" in one transaction,
under the advisory locks of the users it touches, and retries only on write conflicts.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable

from backend_balance.balance_engine.ledger import BalanceEventLedger, EventSequence
from backend_balance.balance_engine.locks import LockRegistry
from backend_balance.balance_engine.score_clamp import apply_delta, ratio
from backend_balance.balance_engine.system_balance import SystemBalance, SystemBalanceCalculator
from backend_balance.balance_engine.transactions import run_atomic
from backend_balance.balance_engine.user_scores import recompute_user_scores
from backend_balance.balance_logging import get_logger, user_log_context
from backend_balance.core.exceptions import InvalidStateError, UserNotFoundError
from backend_balance.database.database import Database, UnitOfWork
from backend_balance.database.models import (
    AffectedScope,
    BalanceEvent,
    TriggerType,
    User,
    parse_trigger_type,
)

logger = get_logger(__name__)

REBALANCE_BALANCE_SCORE_BELOW = 0.7
REBALANCE_MAX_LEVEL_GAP = 30
ADJUSTMENT_DEAD_BAND = 10
HIGH_IMPACT_THRESHOLD = 20
SECONDS_PER_HOUR = 3600

AUTO_REBALANCE_DESCRIPTION = "Automatic system rebalancing"
IMPACT_DESCRIPTION = "Message impact analysis"


@dataclass(frozen=True)
class BalanceAdjustment:
    freedom: int = 0
    security: int = 0

    @property
    def is_zero(self) -> bool:
        return self.freedom == 0 and self.security == 0


NO_ADJUSTMENT = BalanceAdjustment()

# Fixed system-wide delta per trigger type; ADMIN_MANUAL takes an explicit adjustment instead.
TRIGGER_ADJUSTMENTS: dict[TriggerType, BalanceAdjustment] = {
    TriggerType.USER_ACTION: BalanceAdjustment(freedom=2, security=-1),
    TriggerType.SYSTEM_AUTO: BalanceAdjustment(freedom=0, security=1),
    TriggerType.ADMIN_MANUAL: NO_ADJUSTMENT,
}


@dataclass(frozen=True)
class UserBalance:
    user_id: int
    username: str
    freedom_score: int
    security_score: int
    reputation_score: int
    balance_ratio: float
    last_updated: int

    @classmethod
    def from_user(cls, user: User, now_ts: int) -> "UserBalance":
        return cls(
            user_id=user.id,
            username=user.username,
            freedom_score=user.freedom_score,
            security_score=user.security_score,
            reputation_score=user.reputation_score,
            balance_ratio=ratio(user.freedom_score, user.security_score),
            last_updated=now_ts,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "username": self.username,
            "freedom_score": self.freedom_score,
            "security_score": self.security_score,
            "reputation_score": self.reputation_score,
            "balance_ratio": self.balance_ratio,
            "last_updated": self.last_updated,
        }


@dataclass(frozen=True)
class ImpactResult:
    """Outcome of one message impact: the user's event and, for high-impact messages, the cascade."""

    event: BalanceEvent
    rebalancing_evaluated: bool
    rebalance_event: BalanceEvent | None = None


def needs_rebalancing(balance: SystemBalance) -> bool:
    return (
        balance.balance_score < REBALANCE_BALANCE_SCORE_BELOW
        or abs(balance.freedom_level - balance.security_level) > REBALANCE_MAX_LEVEL_GAP
    )


def compute_global_adjustment(balance: SystemBalance) -> BalanceAdjustment:
    if balance.freedom_level > balance.security_level + ADJUSTMENT_DEAD_BAND:
        return BalanceAdjustment(freedom=-2, security=1)
    if balance.security_level > balance.freedom_level + ADJUSTMENT_DEAD_BAND:
        return BalanceAdjustment(freedom=1, security=-2)
    return NO_ADJUSTMENT


def adjustment_for_trigger(
    trigger_type: TriggerType,
    explicit: BalanceAdjustment | None = None,
) -> BalanceAdjustment:
    if trigger_type is TriggerType.ADMIN_MANUAL and explicit is not None:
        return explicit
    return TRIGGER_ADJUSTMENTS[trigger_type]


def apply_global_adjustment(delta: BalanceAdjustment, active_users: list[User], store: Any) -> list[User]:
    """Clamp-apply delta to every user in the snapshot and batch-persist them."""
    if delta.is_zero:
        return active_users
    for user in active_users:
        user.freedom_score = apply_delta(user.freedom_score, delta.freedom)
        user.security_score = apply_delta(user.security_score, delta.security)
    store.save_users(active_users)
    return active_users


def is_high_impact(freedom_impact: int, security_impact: int) -> bool:
    return abs(freedom_impact) > HIGH_IMPACT_THRESHOLD or abs(security_impact) > HIGH_IMPACT_THRESHOLD


class RebalancingController:
    def __init__(
        self,
        db: Database,
        *,
        locks: LockRegistry | None = None,
        max_write_retries: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._locks = locks or LockRegistry()
        self._max_write_retries = max_write_retries
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def _atomic(self, operation: str, fn: Callable[[UnitOfWork], Any]) -> Any:
        return run_atomic(self._db, operation, fn, max_attempts=self._max_write_retries)

    def _atomic_global(self, operation: str, fn: Callable[[UnitOfWork], Any]) -> Any:
        # Snapshot ids, then lock them all; users activated after the snapshot are not locked.
        user_ids = [u.id for u in self._db.list_active_users()]
        with self._locks.users(user_ids):
            return self._atomic(operation, fn)

    # --- System-wide ---

    def calculate_system_balance(self) -> SystemBalance:
        """Current aggregate (also records metric samples). Used by the health check."""
        return self._atomic(
            "calculate_system_balance",
            lambda uow: SystemBalanceCalculator(uow).calculate_system_balance(
                uow.list_active_users(), now_ts=self._now()
            ),
        )

    def perform_automatic_rebalancing(self) -> BalanceEvent | None:
        """Evaluate and, if needed, adjust every active user. Returns the SYSTEM_AUTO event or None."""

        def _rebalance(uow: UnitOfWork) -> BalanceEvent | None:
            now_ts = self._now()
            calculator = SystemBalanceCalculator(uow)
            users = uow.list_active_users()
            before = calculator.calculate_system_balance(users, now_ts=now_ts)
            if not needs_rebalancing(before):
                logger.info(
                    "rebalancing_not_needed",
                    balance_score=round(before.balance_score, 4),
                    freedom_level=before.freedom_level,
                    security_level=before.security_level,
                )
                return None
            delta = compute_global_adjustment(before)
            apply_global_adjustment(delta, users, uow)
            after = calculator.calculate_system_balance(users, now_ts=now_ts)
            event = BalanceEventLedger(uow).append(
                BalanceEvent(
                    trigger_type=TriggerType.SYSTEM_AUTO,
                    event_description=AUTO_REBALANCE_DESCRIPTION,
                    previous_freedom_level=before.freedom_level,
                    new_freedom_level=after.freedom_level,
                    previous_security_level=before.security_level,
                    new_security_level=after.security_level,
                    affected_users=AffectedScope.all_active(),
                )
            )
            logger.info(
                "automatic_rebalancing_applied",
                users=len(users),
                freedom_delta=delta.freedom,
                security_delta=delta.security,
                event_id=event.id,
            )
            return event

        return self._atomic_global("perform_automatic_rebalancing", _rebalance)

    def trigger_balance_event(
        self,
        user_id: int | None,
        event_type: TriggerType | str,
        description: str,
        adjustment: BalanceAdjustment | None = None,
    ) -> BalanceEvent:
        """
        Apply the fixed delta for event_type to every active user and record the
        before/after system levels. Unknown event_type fails before anything is read.
        """
        trigger_type = parse_trigger_type(event_type)
        if adjustment is not None and trigger_type is not TriggerType.ADMIN_MANUAL:
            raise InvalidStateError(
                f"An explicit adjustment is only accepted for ADMIN_MANUAL, not {trigger_type.value}"
            )
        delta = adjustment_for_trigger(trigger_type, adjustment)

        def _trigger(uow: UnitOfWork) -> BalanceEvent:
            if user_id is not None and uow.get_user(user_id) is None:
                raise UserNotFoundError(user_id)
            now_ts = self._now()
            calculator = SystemBalanceCalculator(uow)
            users = uow.list_active_users()
            before = calculator.calculate_system_balance(users, now_ts=now_ts)
            apply_global_adjustment(delta, users, uow)
            after = calculator.calculate_system_balance(users, now_ts=now_ts)
            return BalanceEventLedger(uow).append(
                BalanceEvent(
                    trigger_type=trigger_type,
                    event_description=description,
                    previous_freedom_level=before.freedom_level,
                    new_freedom_level=after.freedom_level,
                    previous_security_level=before.security_level,
                    new_security_level=after.security_level,
                    affected_users=AffectedScope.all_active(),
                    triggered_by=user_id,
                )
            )

        logger.info("balance_event_triggered", user_id=user_id, trigger_type=trigger_type.value)
        return self._atomic_global("trigger_balance_event", _trigger)

    # --- Single user ---

    def apply_user_adjustment(
        self,
        uow: UnitOfWork,
        user: User,
        freedom_delta: int,
        security_delta: int,
        description: str,
        trigger_type: TriggerType,
        triggered_by: int | None = None,
    ) -> BalanceEvent:
        """
        Clamp-apply deltas to `user` and append its scoped event inside the caller's
        transaction. The caller holds the user's lock. Also persists any other field
        the caller changed on `user` (e.g. is_active).
        """
        previous_freedom = user.freedom_score
        previous_security = user.security_score
        user.freedom_score = apply_delta(previous_freedom, freedom_delta)
        user.security_score = apply_delta(previous_security, security_delta)
        uow.save_user(user)
        event = BalanceEventLedger(uow).append(
            BalanceEvent(
                trigger_type=trigger_type,
                event_description=description,
                previous_freedom_level=previous_freedom,
                new_freedom_level=user.freedom_score,
                previous_security_level=previous_security,
                new_security_level=user.security_score,
                affected_users=AffectedScope.single(user.id),
                triggered_by=triggered_by if triggered_by is not None else user.id,
            )
        )
        logger.info(
            "user_balance_adjusted",
            trigger_type=trigger_type.value,
            freedom=user.freedom_score,
            security=user.security_score,
            event_id=event.id,
        )
        return event

    def _adjust_user(
        self,
        operation: str,
        user_id: int,
        freedom_delta: int,
        security_delta: int,
        description: str,
        trigger_type: TriggerType,
        actor_id: int | None,
    ) -> BalanceEvent:
        def _adjust(uow: UnitOfWork) -> BalanceEvent:
            user = uow.require_user(user_id)
            return self.apply_user_adjustment(
                uow, user, freedom_delta, security_delta, description, trigger_type, actor_id
            )

        with user_log_context(user_id), self._locks.user(user_id):
            return self._atomic(operation, _adjust)

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
        """Apply clamped deltas to one user; the event is scoped to that user."""
        trigger = parse_trigger_type(trigger_type)
        logger.info(
            "balance_adjust_requested",
            user_id=user_id,
            freedom_delta=freedom_delta,
            security_delta=security_delta,
            trigger_type=trigger.value,
        )
        return self._adjust_user(
            "adjust_balance", user_id, freedom_delta, security_delta, reason, trigger, actor_id
        )

    def analyze_impact(
        self,
        user: User | int,
        freedom_impact: int,
        security_impact: int,
        description: str | None = None,
    ) -> ImpactResult:
        """
        Apply a message's impacts to its author. A high-impact message (either impact
        beyond +/-20) then runs the global rebalancing evaluation in its own transaction.
        """
        user_id = user.id if isinstance(user, User) else int(user)
        event = self._adjust_user(
            "analyze_impact",
            user_id,
            freedom_impact,
            security_impact,
            description or IMPACT_DESCRIPTION,
            TriggerType.USER_ACTION,
            None,
        )
        return self.cascade_after_impact(user_id, event, freedom_impact, security_impact)

    def cascade_after_impact(
        self,
        user_id: int,
        event: BalanceEvent,
        freedom_impact: int,
        security_impact: int,
    ) -> ImpactResult:
        """Run the global evaluation for a committed high-impact change. Call without holding user locks."""
        if not is_high_impact(freedom_impact, security_impact):
            return ImpactResult(event=event, rebalancing_evaluated=False)
        logger.info(
            "high_impact_rebalancing",
            user_id=user_id,
            freedom_impact=freedom_impact,
            security_impact=security_impact,
        )
        rebalance_event = self.perform_automatic_rebalancing()
        return ImpactResult(event=event, rebalancing_evaluated=True, rebalance_event=rebalance_event)

    def recompute_user_scores(self, user_id: int) -> UserBalance:
        """Recompute freedom/security/reputation from activity and account age; persist."""

        def _recompute(uow: UnitOfWork) -> UserBalance:
            now_ts = self._now()
            user = uow.require_user(user_id)
            message_count = uow.count_messages_by_user(user_id)
            scores = recompute_user_scores(user, message_count, now_ts=now_ts)
            user.freedom_score = scores.freedom
            user.security_score = scores.security
            user.reputation_score = scores.reputation
            uow.save_user(user)
            logger.info(
                "user_scores_recomputed",
                user_id=user_id,
                message_count=message_count,
                freedom=scores.freedom,
                security=scores.security,
                reputation=scores.reputation,
            )
            return UserBalance.from_user(user, now_ts)

        with user_log_context(user_id), self._locks.user(user_id):
            return self._atomic("recompute_user_scores", _recompute)

    # --- Reads ---

    def get_user_balance(self, user_id: int) -> UserBalance:
        user = self._db.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return UserBalance.from_user(user, self._now())

    def balance_history(self, limit: int) -> EventSequence:
        return BalanceEventLedger(self._db).most_recent(limit)

    def balance_trends(self, hours: int = 24) -> list[BalanceEvent]:
        """Ledger events from the last `hours` hours, newest first."""
        if hours <= 0:
            raise InvalidStateError(f"hours must be positive, got {hours}")
        return BalanceEventLedger(self._db).since(self._now() - hours * SECONDS_PER_HOUR)
