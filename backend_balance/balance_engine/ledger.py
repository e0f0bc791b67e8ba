"""
Balance event ledger: append-only history of balance-affecting operations.

The ledger is the audit trail and the only source for history queries. There is
no update or delete path; events are frozen dataclasses and the store only inserts.
Reads are newest first (created_at, then id, descending).
"""

from __future__ import annotations

from typing import Any, Callable, Iterator

from backend_balance.balance_logging import get_logger
from backend_balance.database.models import BalanceEvent, TriggerType

logger = get_logger(__name__)


class EventSequence:
    """
    Lazy, finite, restartable page of events.

    The query runs on first iteration; iterating again replays the same page.
    """

    def __init__(self, fetch: Callable[[], list[BalanceEvent]]) -> None:
        self._fetch = fetch
        self._events: list[BalanceEvent] | None = None

    def _load(self) -> list[BalanceEvent]:
        if self._events is None:
            self._events = list(self._fetch())
        return self._events

    def __iter__(self) -> Iterator[BalanceEvent]:
        return iter(self._load())

    def __len__(self) -> int:
        return len(self._load())

    def __getitem__(self, index: int) -> BalanceEvent:
        return self._load()[index]


class BalanceEventLedger:
    """
    Ledger over an event store: a UnitOfWork inside a transaction, or the Database
    facade for standalone reads.
    """

    def __init__(self, store: Any) -> None:
        self._store = store

    def append(self, event: BalanceEvent) -> BalanceEvent:
        """Store the event; returns it with id and created_at assigned. Store errors propagate."""
        stored = self._store.append_balance_event(event)
        logger.info(
            "balance_event_recorded",
            event_id=stored.id,
            trigger_type=stored.trigger_type.value,
            triggered_by=stored.triggered_by,
            affected_users=stored.affected_users.encode(),
            freedom=f"{stored.previous_freedom_level}->{stored.new_freedom_level}",
            security=f"{stored.previous_security_level}->{stored.new_security_level}",
        )
        return stored

    def most_recent(self, limit: int) -> EventSequence:
        if limit <= 0:
            return EventSequence(lambda: [])
        return EventSequence(lambda: self._store.recent_balance_events(limit))

    def since(self, since_ts: int) -> list[BalanceEvent]:
        return self._store.balance_events_since(since_ts)

    def by_trigger_type(self, trigger_type: TriggerType) -> list[BalanceEvent]:
        return self._store.balance_events_by_trigger_type(trigger_type)

    def by_user(self, user_id: int) -> list[BalanceEvent]:
        return self._store.balance_events_by_user(user_id)
