"""
Domain models for database entities.

Users, balance events, community rules, system metric samples and messages.
Used by the engine and the store layer; the SQLAlchemy rows in orm.py are
converted to these at the store boundary so engine code never holds a session object.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from backend_balance.core.exceptions import InvalidStateError


class TriggerType(str, Enum):
    """What caused a balance event."""

    USER_ACTION = "USER_ACTION"
    SYSTEM_AUTO = "SYSTEM_AUTO"
    ADMIN_MANUAL = "ADMIN_MANUAL"


class RuleType(str, Enum):
    FREEDOM = "FREEDOM"
    SECURITY = "SECURITY"
    BALANCE = "BALANCE"


class RuleAction(str, Enum):
    WARN = "WARN"
    RESTRICT = "RESTRICT"
    SUSPEND = "SUSPEND"


class UserStatus(str, Enum):
    """Admin-set account status; SUSPENDED also penalizes the user's balance."""

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class EmergencyAction(str, Enum):
    EMERGENCY_REBALANCE = "EMERGENCY_REBALANCE"
    RESET_SYSTEM_BALANCE = "RESET_SYSTEM_BALANCE"


class MetricType(str, Enum):
    BALANCE = "BALANCE"
    ACTIVITY = "ACTIVITY"
    HEALTH = "HEALTH"


class CalculationPeriod(str, Enum):
    REAL_TIME = "REAL_TIME"
    HOURLY = "HOURLY"
    DAILY = "DAILY"


def _parse_enum(enum_cls: type[Enum], value: Any, label: str) -> Any:
    """Decode free text (case-insensitive) into enum_cls; InvalidStateError on unknown values."""
    if isinstance(value, enum_cls):
        return value
    raw = str(value or "").strip().upper()
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidStateError(f"Unknown {label} '{value}' (expected one of: {allowed})") from None


def parse_trigger_type(value: Any) -> TriggerType:
    return _parse_enum(TriggerType, value, "trigger type")


def parse_rule_type(value: Any) -> RuleType:
    return _parse_enum(RuleType, value, "rule type")


def parse_rule_action(value: Any) -> RuleAction:
    return _parse_enum(RuleAction, value, "rule action")


def parse_user_status(value: Any) -> UserStatus:
    return _parse_enum(UserStatus, value, "user status")


def parse_emergency_action(value: Any) -> EmergencyAction:
    return _parse_enum(EmergencyAction, value, "emergency action")


ALL_ACTIVE_SENTINEL = "all"


@dataclass(frozen=True)
class AffectedScope:
    """
    Users touched by a balance event: one user, or every active user.

    Stored as "all" or a JSON list like "[42]".
    """

    user_id: int | None = None

    @classmethod
    def single(cls, user_id: int) -> "AffectedScope":
        return cls(user_id=user_id)

    @classmethod
    def all_active(cls) -> "AffectedScope":
        return cls(user_id=None)

    @property
    def is_all_active(self) -> bool:
        return self.user_id is None

    def encode(self) -> str:
        if self.user_id is None:
            return ALL_ACTIVE_SENTINEL
        return json.dumps([self.user_id])

    @classmethod
    def decode(cls, raw: str | None) -> "AffectedScope":
        if raw is None or raw.strip() in ("", ALL_ACTIVE_SENTINEL, "[]"):
            return cls.all_active()
        ids = json.loads(raw)
        if isinstance(ids, list) and len(ids) == 1:
            return cls.single(int(ids[0]))
        raise InvalidStateError(f"Unsupported affected_users value: {raw!r}")

    def to_dict(self) -> dict[str, Any]:
        if self.user_id is None:
            return {"scope": "all_active"}
        return {"scope": "single", "user_id": self.user_id}


@dataclass
class User:
    """Platform user as seen by the engine (identity fields are owned elsewhere)."""

    id: int | None
    username: str
    freedom_score: int = 50
    security_score: int = 50
    reputation_score: int = 0
    is_active: bool = True
    created_at: int | None = None
    """Unix timestamp (seconds); read-only for the engine."""
    version: int = 0
    """Optimistic-lock counter; bumped by the store on every write."""


@dataclass(frozen=True)
class BalanceEvent:
    """One ledger entry. Frozen: never mutated after it is built."""

    trigger_type: TriggerType
    event_description: str
    previous_freedom_level: int
    new_freedom_level: int
    previous_security_level: int
    new_security_level: int
    affected_users: AffectedScope
    triggered_by: int | None = None
    id: int | None = None
    created_at: int | None = None
    """Unix timestamp (seconds); assigned once by the store on append."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "trigger_type": self.trigger_type.value,
            "event_description": self.event_description,
            "previous_freedom_level": self.previous_freedom_level,
            "new_freedom_level": self.new_freedom_level,
            "previous_security_level": self.previous_security_level,
            "new_security_level": self.new_security_level,
            "triggered_by": self.triggered_by,
            "affected_users": self.affected_users.to_dict(),
            "created_at": self.created_at,
        }


@dataclass
class CommunityRule:
    """User-submitted rule; created inactive with the creator's implicit vote."""

    id: int | None
    title: str
    description: str
    rule_type: RuleType
    priority: int
    threshold: int
    action: RuleAction
    created_by: int
    is_active: bool = False
    votes: int = 1
    created_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "rule_type": self.rule_type.value,
            "priority": self.priority,
            "threshold": self.threshold,
            "action": self.action.value,
            "is_active": self.is_active,
            "votes": self.votes,
            "created_by": self.created_by,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class SystemMetric:
    """Append-only scalar sample."""

    metric_name: str
    metric_value: float
    metric_type: MetricType
    calculation_period: CalculationPeriod
    id: int | None = None
    recorded_at: int | None = None


@dataclass
class Message:
    """Only the message fields the engine needs: impacts and flag state."""

    id: int | None
    user_id: int
    freedom_impact: int = 0
    security_impact: int = 0
    flag_count: int = 0
    is_visible: bool = True
    created_at: int | None = None


@dataclass(frozen=True)
class RuleDraft:
    """Fields supplied by a rule creator; enums already decoded."""

    title: str
    description: str
    rule_type: RuleType
    priority: int
    threshold: int
    action: RuleAction

    @classmethod
    def from_raw(
        cls,
        title: str,
        description: str,
        rule_type: Any,
        priority: int,
        threshold: int,
        action: Any,
    ) -> "RuleDraft":
        """Decode free-text enum fields; InvalidStateError before anything is written."""
        if priority is None or int(priority) <= 0:
            raise InvalidStateError(f"Rule priority must be positive, got {priority}")
        return cls(
            title=(title or "").strip(),
            description=(description or "").strip(),
            rule_type=parse_rule_type(rule_type),
            priority=int(priority),
            threshold=int(threshold),
            action=parse_rule_action(action),
        )

