"""
Structured logging for Backend Balance.

JSON logs with timestamp, event_type, user_id / rule_id context.
Use get_logger() in all engine modules.
"""

from backend_balance.balance_logging.logger import get_logger, user_log_context

__all__ = ["get_logger", "user_log_context"]
