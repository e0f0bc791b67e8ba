"""
Run one read-modify-write sequence atomically, retrying on optimistic write conflicts.

Only ConcurrentModificationError is retried, and only up to max_attempts; every
other error (not found, invalid state, store failure) propagates on the first try.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from backend_balance.balance_logging import get_logger
from backend_balance.core.exceptions import ConcurrentModificationError
from backend_balance.database.database import Database, UnitOfWork

logger = get_logger(__name__)

T = TypeVar("T")


def run_atomic(
    db: Database,
    operation: str,
    fn: Callable[[UnitOfWork], T],
    *,
    max_attempts: int = 3,
) -> T:
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            with db.unit_of_work() as uow:
                return fn(uow)
        except ConcurrentModificationError as e:
            if attempt >= attempts:
                logger.warning(
                    "write_conflict_retries_exhausted",
                    operation=operation,
                    attempts=attempt,
                    error=str(e),
                )
                raise
            logger.info("write_conflict_retry", operation=operation, attempt=attempt, error=str(e))
    raise AssertionError("unreachable")
