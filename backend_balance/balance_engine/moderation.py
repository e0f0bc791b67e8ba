"""
Moderation hooks: the message-side entry points into the balance engine.

- record_message: store a message with its precomputed impacts and apply them to the
  author, in one transaction; high-impact messages then trigger the global evaluation
- flag_message: count a flag, hide the message once flags reach the active flag
  threshold and penalize the author (-5 freedom, +5 security), in one transaction

Both hold the author's lock for the whole transaction, so the message row, the
author's scores and the ledger entry are committed together or not at all.
"""

from __future__ import annotations

from dataclasses import dataclass

from backend_balance.balance_engine.community_rules import CommunityRuleEngine
from backend_balance.balance_engine.locks import LockRegistry
from backend_balance.balance_engine.rebalancing import (
    IMPACT_DESCRIPTION,
    ImpactResult,
    RebalancingController,
)
from backend_balance.balance_engine.transactions import run_atomic
from backend_balance.balance_logging import get_logger, user_log_context
from backend_balance.core.exceptions import InvalidStateError, MessageNotFoundError
from backend_balance.database.database import Database, UnitOfWork
from backend_balance.database.models import BalanceEvent, Message, TriggerType

logger = get_logger(__name__)

FLAG_FREEDOM_PENALTY = -5
FLAG_SECURITY_BONUS = 5
FLAG_REASON = "Message flagged by community"


@dataclass(frozen=True)
class RecordedMessage:
    message: Message
    impact: ImpactResult


@dataclass(frozen=True)
class FlagResult:
    message: Message
    flag_threshold: int
    balance_event: BalanceEvent

    @property
    def hidden(self) -> bool:
        return not self.message.is_visible


class ModerationHooks:
    def __init__(
        self,
        db: Database,
        rebalancing: RebalancingController,
        rules: CommunityRuleEngine,
        *,
        locks: LockRegistry | None = None,
        max_write_retries: int = 3,
    ) -> None:
        self._db = db
        self._rebalancing = rebalancing
        self._rules = rules
        self._locks = locks if locks is not None else LockRegistry()
        self._max_write_retries = max_write_retries

    def record_message(self, user_id: int, freedom_impact: int, security_impact: int) -> RecordedMessage:
        """Raises UserNotFoundError, or InvalidStateError for an inactive author, before any write."""

        def _store(uow: UnitOfWork) -> tuple[Message, BalanceEvent]:
            author = uow.require_user(user_id)
            if not author.is_active:
                raise InvalidStateError(f"User {user_id} is not active and cannot post messages")
            message = uow.add_message(
                Message(
                    id=None,
                    user_id=user_id,
                    freedom_impact=freedom_impact,
                    security_impact=security_impact,
                )
            )
            event = self._rebalancing.apply_user_adjustment(
                uow,
                author,
                freedom_impact,
                security_impact,
                IMPACT_DESCRIPTION,
                TriggerType.USER_ACTION,
            )
            return message, event

        with user_log_context(user_id), self._locks.user(user_id):
            message, event = run_atomic(
                self._db, "record_message", _store, max_attempts=self._max_write_retries
            )
            logger.info(
                "message_recorded",
                message_id=message.id,
                freedom_impact=freedom_impact,
                security_impact=security_impact,
            )
        impact = self._rebalancing.cascade_after_impact(user_id, event, freedom_impact, security_impact)
        return RecordedMessage(message=message, impact=impact)

    def flag_message(self, message_id: int, flagger_id: int) -> FlagResult:
        """Raises MessageNotFoundError / UserNotFoundError before any write."""
        threshold = self._rules.active_flag_threshold()
        found = self._db.get_message(message_id)
        if found is None:
            raise MessageNotFoundError(message_id)
        author_id = found.user_id

        def _flag(uow: UnitOfWork) -> tuple[Message, BalanceEvent]:
            message = uow.require_message(message_id)
            uow.require_user(flagger_id)
            author = uow.require_user(author_id)
            message.flag_count += 1
            if message.flag_count >= threshold:
                message.is_visible = False
            uow.save_message(message)
            event = self._rebalancing.apply_user_adjustment(
                uow,
                author,
                FLAG_FREEDOM_PENALTY,
                FLAG_SECURITY_BONUS,
                FLAG_REASON,
                TriggerType.ADMIN_MANUAL,
            )
            return message, event

        with user_log_context(author_id), self._locks.user(author_id):
            message, event = run_atomic(
                self._db, "flag_message", _flag, max_attempts=self._max_write_retries
            )
        logger.info(
            "message_flagged",
            message_id=message_id,
            flagger_id=flagger_id,
            author_id=author_id,
            flag_count=message.flag_count,
            flag_threshold=threshold,
            hidden=not message.is_visible,
        )
        return FlagResult(message=message, flag_threshold=threshold, balance_event=event)
