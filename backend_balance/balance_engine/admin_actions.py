"""
Admin actions that change balance outside the message and vote flows.

- update_user_status: ACTIVE / INACTIVE toggle is_active; SUSPENDED deactivates the
  user and applies (-50, +50) with an ADMIN_MANUAL event, in one transaction
- emergency_action: EMERGENCY_REBALANCE resets active users to 50/50 and then runs the
  automatic evaluation; RESET_SYSTEM_BALANCE resets every user to 50/50, reputation 0
- suspicious_users: high flag rate or extreme scores among active users

Admin privilege checks happen upstream; every caller here is already trusted.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable

from backend_balance.balance_engine.ledger import BalanceEventLedger
from backend_balance.balance_engine.locks import LockRegistry
from backend_balance.balance_engine.rebalancing import RebalancingController
from backend_balance.balance_engine.system_balance import SystemBalanceCalculator
from backend_balance.balance_engine.transactions import run_atomic
from backend_balance.balance_logging import get_logger, user_log_context
from backend_balance.database.database import Database, UnitOfWork
from backend_balance.database.models import (
    AffectedScope,
    BalanceEvent,
    EmergencyAction,
    TriggerType,
    User,
    UserStatus,
    parse_emergency_action,
    parse_user_status,
)

logger = get_logger(__name__)

SUSPENSION_FREEDOM_PENALTY = -50
SUSPENSION_SECURITY_BONUS = 50
RESET_SCORE = 50
RESET_REPUTATION = 0

SUSPICIOUS_FLAG_RATE = 0.5
SUSPICIOUS_SCORE_BELOW = 10
SUSPICIOUS_REPUTATION_BELOW = -50


@dataclass(frozen=True)
class StatusChange:
    user: User
    status: UserStatus
    balance_event: BalanceEvent | None = None


@dataclass(frozen=True)
class EmergencyResult:
    action: EmergencyAction
    users_reset: int
    reset_event: BalanceEvent
    rebalance_event: BalanceEvent | None = None


def is_suspicious(user: User, message_count: int, total_flags: int) -> bool:
    if not user.is_active:
        return False
    return (
        (message_count > 0 and total_flags > message_count * SUSPICIOUS_FLAG_RATE)
        or user.freedom_score < SUSPICIOUS_SCORE_BELOW
        or user.security_score < SUSPICIOUS_SCORE_BELOW
        or user.reputation_score < SUSPICIOUS_REPUTATION_BELOW
    )


class AdminActions:
    def __init__(
        self,
        db: Database,
        rebalancing: RebalancingController,
        *,
        locks: LockRegistry | None = None,
        max_write_retries: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._rebalancing = rebalancing
        self._locks = locks if locks is not None else LockRegistry()
        self._max_write_retries = max_write_retries
        self._clock = clock

    def update_user_status(
        self,
        user_id: int,
        status: UserStatus | str,
        reason: str,
        *,
        actor_id: int | None = None,
    ) -> StatusChange:
        """Unknown status -> InvalidStateError, missing user -> UserNotFoundError; nothing written."""
        new_status = parse_user_status(status)

        def _update(uow: UnitOfWork) -> StatusChange:
            user = uow.require_user(user_id)
            if new_status is UserStatus.SUSPENDED:
                user.is_active = False
                event = self._rebalancing.apply_user_adjustment(
                    uow,
                    user,
                    SUSPENSION_FREEDOM_PENALTY,
                    SUSPENSION_SECURITY_BONUS,
                    f"User suspended by admin: {reason}",
                    TriggerType.ADMIN_MANUAL,
                    actor_id,
                )
                return StatusChange(user=user, status=new_status, balance_event=event)
            user.is_active = new_status is UserStatus.ACTIVE
            uow.save_user(user)
            return StatusChange(user=user, status=new_status)

        with user_log_context(user_id), self._locks.user(user_id):
            change = run_atomic(
                self._db, "update_user_status", _update, max_attempts=self._max_write_retries
            )
            logger.info("user_status_updated", status=new_status.value, actor_id=actor_id, reason=reason)
        return change

    def emergency_action(
        self,
        action: EmergencyAction | str,
        reason: str,
        *,
        actor_id: int | None = None,
    ) -> EmergencyResult:
        emergency = parse_emergency_action(action)
        logger.warning("emergency_action_started", action=emergency.value, actor_id=actor_id, reason=reason)
        if emergency is EmergencyAction.EMERGENCY_REBALANCE:
            users_reset, event = self._reset_scores(
                "emergency_rebalance",
                f"EMERGENCY: rebalance - {reason}",
                include_inactive=False,
                actor_id=actor_id,
            )
            rebalance_event = self._rebalancing.perform_automatic_rebalancing()
            result = EmergencyResult(emergency, users_reset, event, rebalance_event)
        else:
            users_reset, event = self._reset_scores(
                "reset_system_balance",
                f"EMERGENCY: system balance reset - {reason}",
                include_inactive=True,
                actor_id=actor_id,
            )
            result = EmergencyResult(emergency, users_reset, event)
        logger.warning(
            "emergency_action_completed",
            action=emergency.value,
            users_reset=users_reset,
            event_id=event.id,
        )
        return result

    def _reset_scores(
        self,
        operation: str,
        description: str,
        *,
        include_inactive: bool,
        actor_id: int | None,
    ) -> tuple[int, BalanceEvent]:
        """Reset scores to 50/50 (and reputation to 0 when inactive users are included) with one event."""

        def _reset(uow: UnitOfWork) -> tuple[int, BalanceEvent]:
            now_ts = int(self._clock())
            calculator = SystemBalanceCalculator(uow)
            targets = uow.list_users() if include_inactive else uow.list_active_users()
            active = [u for u in targets if u.is_active]
            before = calculator.calculate_system_balance(active, now_ts=now_ts)
            for user in targets:
                user.freedom_score = RESET_SCORE
                user.security_score = RESET_SCORE
                if include_inactive:
                    user.reputation_score = RESET_REPUTATION
            uow.save_users(targets)
            after = calculator.calculate_system_balance(active, now_ts=now_ts)
            event = BalanceEventLedger(uow).append(
                BalanceEvent(
                    trigger_type=TriggerType.ADMIN_MANUAL,
                    event_description=description,
                    previous_freedom_level=before.freedom_level,
                    new_freedom_level=after.freedom_level,
                    previous_security_level=before.security_level,
                    new_security_level=after.security_level,
                    affected_users=AffectedScope.all_active(),
                    triggered_by=actor_id,
                )
            )
            return len(targets), event

        snapshot = self._db.list_users() if include_inactive else self._db.list_active_users()
        with self._locks.users(u.id for u in snapshot):
            return run_atomic(self._db, operation, _reset, max_attempts=self._max_write_retries)

    def suspicious_users(self) -> list[User]:
        with self._db.unit_of_work() as uow:
            users = uow.list_users()
            stats = uow.message_stats_by_user()
        return [u for u in users if is_suspicious(u, *stats.get(u.id, (0, 0)))]
