"""
SQLAlchemy models for the balance engine tables.

users, balance_events (append-only), community_rules, system_metrics (append-only), messages.
Timestamps are Unix seconds. Rows convert to/from the dataclasses in models.py.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base

from backend_balance.database.models import (
    AffectedScope,
    BalanceEvent,
    CalculationPeriod,
    CommunityRule,
    Message,
    MetricType,
    RuleAction,
    RuleType,
    SystemMetric,
    TriggerType,
    User,
)

Base = declarative_base()


class UserRow(Base):
    """
    User scores. `version` is SQLAlchemy's version counter: every UPDATE checks it,
    so two writers starting from the same read cannot both commit.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(64), unique=True, nullable=False)
    freedom_score = Column(Integer, nullable=False, default=50)
    security_score = Column(Integer, nullable=False, default=50)
    reputation_score = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(Integer, nullable=False)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def to_model(self) -> User:
        return User(
            id=self.id,
            username=self.username,
            freedom_score=self.freedom_score,
            security_score=self.security_score,
            reputation_score=self.reputation_score,
            is_active=self.is_active,
            created_at=self.created_at,
            version=self.version,
        )


class BalanceEventRow(Base):
    """Append-only ledger of balance-affecting operations."""

    __tablename__ = "balance_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trigger_type = Column(String(32), nullable=False, index=True)
    event_description = Column(Text, nullable=True)
    previous_freedom_level = Column(Integer, nullable=False)
    new_freedom_level = Column(Integer, nullable=False)
    previous_security_level = Column(Integer, nullable=False)
    new_security_level = Column(Integer, nullable=False)
    triggered_by = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    affected_users = Column(Text, nullable=False)  # "all" or JSON list of one user id
    created_at = Column(Integer, nullable=False, index=True)

    @classmethod
    def from_model(cls, event: BalanceEvent, created_at: int) -> "BalanceEventRow":
        return cls(
            trigger_type=event.trigger_type.value,
            event_description=event.event_description,
            previous_freedom_level=event.previous_freedom_level,
            new_freedom_level=event.new_freedom_level,
            previous_security_level=event.previous_security_level,
            new_security_level=event.new_security_level,
            triggered_by=event.triggered_by,
            affected_users=event.affected_users.encode(),
            created_at=created_at,
        )

    def to_model(self) -> BalanceEvent:
        return BalanceEvent(
            id=self.id,
            trigger_type=TriggerType(self.trigger_type),
            event_description=self.event_description or "",
            previous_freedom_level=self.previous_freedom_level,
            new_freedom_level=self.new_freedom_level,
            previous_security_level=self.previous_security_level,
            new_security_level=self.new_security_level,
            triggered_by=self.triggered_by,
            affected_users=AffectedScope.decode(self.affected_users),
            created_at=self.created_at,
        )


class CommunityRuleRow(Base):
    __tablename__ = "community_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(256), nullable=False)
    description = Column(Text, nullable=True)
    rule_type = Column(String(32), nullable=False, index=True)
    priority = Column(Integer, nullable=False)
    threshold = Column(Integer, nullable=False)
    action = Column(String(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=False, index=True)
    votes = Column(Integer, nullable=False, default=1)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(Integer, nullable=False)

    def to_model(self) -> CommunityRule:
        return CommunityRule(
            id=self.id,
            title=self.title,
            description=self.description or "",
            rule_type=RuleType(self.rule_type),
            priority=self.priority,
            threshold=self.threshold,
            action=RuleAction(self.action),
            is_active=self.is_active,
            votes=self.votes,
            created_by=self.created_by,
            created_at=self.created_at,
        )

    def apply(self, rule: CommunityRule) -> None:
        """Copy mutable fields from the domain rule (title/type/creator are fixed)."""
        self.is_active = rule.is_active
        self.votes = rule.votes
        self.priority = rule.priority
        self.threshold = rule.threshold


class SystemMetricRow(Base):
    """Append-only metric sample."""

    __tablename__ = "system_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    metric_name = Column(String(128), nullable=False, index=True)
    metric_value = Column(Float, nullable=False)
    metric_type = Column(String(32), nullable=False)
    calculation_period = Column(String(32), nullable=False)
    metadata_json = Column(Text, nullable=True)
    recorded_at = Column(Integer, nullable=False, index=True)

    def to_model(self) -> SystemMetric:
        return SystemMetric(
            id=self.id,
            metric_name=self.metric_name,
            metric_value=self.metric_value,
            metric_type=MetricType(self.metric_type),
            calculation_period=CalculationPeriod(self.calculation_period),
            recorded_at=self.recorded_at,
        )


class MessageRow(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    freedom_impact = Column(Integer, nullable=False, default=0)
    security_impact = Column(Integer, nullable=False, default=0)
    flag_count = Column(Integer, nullable=False, default=0)
    is_visible = Column(Boolean, nullable=False, default=True)
    created_at = Column(Integer, nullable=False, index=True)

    def to_model(self) -> Message:
        return Message(
            id=self.id,
            user_id=self.user_id,
            freedom_impact=self.freedom_impact,
            security_impact=self.security_impact,
            flag_count=self.flag_count,
            is_visible=self.is_visible,
            created_at=self.created_at,
        )
