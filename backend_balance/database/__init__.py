"""
Database abstraction layer: users, balance ledger, community rules, metric samples, messages.

SQLite via SQLAlchemy by default; PostgreSQL when BALANCE_DB_URL / DATABASE_URL is set.
"""

from backend_balance.database.database import (
    Database,
    UnitOfWork,
    get_database,
)
from backend_balance.database.models import (
    AffectedScope,
    BalanceEvent,
    CalculationPeriod,
    CommunityRule,
    EmergencyAction,
    Message,
    MetricType,
    RuleAction,
    RuleDraft,
    RuleType,
    SystemMetric,
    TriggerType,
    User,
    UserStatus,
    parse_emergency_action,
    parse_rule_action,
    parse_rule_type,
    parse_trigger_type,
    parse_user_status,
)

__all__ = [
    "Database",
    "UnitOfWork",
    "get_database",
    "AffectedScope",
    "BalanceEvent",
    "CalculationPeriod",
    "CommunityRule",
    "EmergencyAction",
    "Message",
    "MetricType",
    "RuleAction",
    "RuleDraft",
    "RuleType",
    "SystemMetric",
    "TriggerType",
    "User",
    "UserStatus",
    "parse_emergency_action",
    "parse_rule_action",
    "parse_rule_type",
    "parse_trigger_type",
    "parse_user_status",
]
