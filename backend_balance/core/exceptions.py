"""
Application-level exceptions.

Every engine error derives from BalanceEngineError and carries a stable `code`
for API and scheduler error handling:

- NotFoundError: referenced user / rule / message id absent. Terminal, never retried.
- InvalidStateError: unknown enum text or invalid input, raised before any mutation.
- ConcurrentModificationError: optimistic write conflict on a user's scores;
  the engine retries the whole read-modify-write a bounded number of times.

Persistence failures are not wrapped: sqlalchemy.exc.SQLAlchemyError reaches the
caller unchanged after the transaction is rolled back.
"""

from __future__ import annotations


class BalanceEngineError(Exception):
    """Base class for all engine errors."""

    code = "balance_engine_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(BalanceEngineError):
    code = "not_found"


class UserNotFoundError(NotFoundError):
    code = "user_not_found"

    def __init__(self, user_id: int) -> None:
        super().__init__(f"User not found with ID: {user_id}")
        self.user_id = user_id


class RuleNotFoundError(NotFoundError):
    code = "rule_not_found"

    def __init__(self, rule_id: int) -> None:
        super().__init__(f"Rule not found with ID: {rule_id}")
        self.rule_id = rule_id


class MessageNotFoundError(NotFoundError):
    code = "message_not_found"

    def __init__(self, message_id: int) -> None:
        super().__init__(f"Message not found with ID: {message_id}")
        self.message_id = message_id


class InvalidStateError(BalanceEngineError):
    code = "invalid_state"


class ConcurrentModificationError(BalanceEngineError):
    """Another writer changed the row between our read and our write."""

    code = "concurrent_modification"
