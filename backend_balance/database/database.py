"""
Database layer for users, balance events, community rules, metric samples and messages.

SQLAlchemy-backed: SQLite by default, PostgreSQL when BALANCE_DB_URL / DATABASE_URL
points at it. Engine code works against a UnitOfWork: one session, one transaction,
committed on success and rolled back on any error, so a balance change and its
ledger entry are written together or not at all.

SQLite connections start every transaction with BEGIN IMMEDIATE, which serializes
writers at the database instead of failing late with "database is locked".
"""

from __future__ import annotations

import json
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, TypeVar

from sqlalchemy import create_engine, event, func, or_
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from backend_balance.balance_logging import get_logger
from backend_balance.config.env import get_database_url, mask_database_url
from backend_balance.core.exceptions import (
    ConcurrentModificationError,
    MessageNotFoundError,
    RuleNotFoundError,
    UserNotFoundError,
)
from backend_balance.database.models import (
    AffectedScope,
    BalanceEvent,
    CalculationPeriod,
    CommunityRule,
    Message,
    MetricType,
    RuleType,
    SystemMetric,
    TriggerType,
    User,
)
from backend_balance.database.orm import (
    Base,
    BalanceEventRow,
    CommunityRuleRow,
    MessageRow,
    SystemMetricRow,
    UserRow,
)

logger = get_logger(__name__)

T = TypeVar("T")

SQLITE_BUSY_TIMEOUT_SEC = 30.0


class UnitOfWork:
    """
    Store operations bound to one session / transaction.

    Implements the user, ledger, metric, rule and message collaborator interfaces
    the engine consumes. Never commits by itself; Database.unit_of_work() does.
    """

    def __init__(self, session: Session, clock: Callable[[], float]) -> None:
        self._session = session
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    # --- Users ---

    def get_user(self, user_id: int) -> User | None:
        row = self._session.get(UserRow, user_id)
        return row.to_model() if row else None

    def require_user(self, user_id: int) -> User:
        user = self.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    def add_user(self, user: User) -> User:
        """Insert a new user (identity collaborator path). created_at defaults to now."""
        row = UserRow(
            username=user.username,
            freedom_score=user.freedom_score,
            security_score=user.security_score,
            reputation_score=user.reputation_score,
            is_active=user.is_active,
            created_at=user.created_at if user.created_at is not None else self._now(),
        )
        self._session.add(row)
        self._session.flush()
        return row.to_model()

    def list_users(self) -> list[User]:
        return [r.to_model() for r in self._session.query(UserRow).order_by(UserRow.id).all()]

    def list_active_users(self) -> list[User]:
        rows = (
            self._session.query(UserRow)
            .filter(UserRow.is_active.is_(True))
            .order_by(UserRow.id)
            .all()
        )
        return [r.to_model() for r in rows]

    def save_user(self, user: User) -> User:
        """
        Write scores back. Raises ConcurrentModificationError when the row moved on
        since `user` was read; updates user.version on success.
        """
        row = self._session.get(UserRow, user.id)
        if row is None:
            raise UserNotFoundError(user.id)
        if row.version != user.version:
            raise ConcurrentModificationError(
                f"User {user.id} changed (version {user.version} -> {row.version})"
            )
        row.freedom_score = user.freedom_score
        row.security_score = user.security_score
        row.reputation_score = user.reputation_score
        row.is_active = user.is_active
        try:
            self._session.flush()
        except StaleDataError as e:
            raise ConcurrentModificationError(f"User {user.id} changed concurrently") from e
        user.version = row.version
        return user

    def save_users(self, users: list[User]) -> None:
        for user in users:
            self.save_user(user)

    def count_users(self) -> int:
        return self._session.query(func.count(UserRow.id)).scalar() or 0

    def count_active_users(self) -> int:
        return (
            self._session.query(func.count(UserRow.id))
            .filter(UserRow.is_active.is_(True))
            .scalar()
            or 0
        )

    def _active_average(self, column: Any) -> float | None:
        value = (
            self._session.query(func.avg(column))
            .filter(UserRow.is_active.is_(True))
            .scalar()
        )
        return float(value) if value is not None else None

    def average_freedom_score(self) -> float | None:
        return self._active_average(UserRow.freedom_score)

    def average_security_score(self) -> float | None:
        return self._active_average(UserRow.security_score)

    def average_reputation_score(self) -> float | None:
        return self._active_average(UserRow.reputation_score)

    # --- Balance events (append-only) ---

    def append_balance_event(self, balance_event: BalanceEvent) -> BalanceEvent:
        row = BalanceEventRow.from_model(balance_event, created_at=self._now())
        self._session.add(row)
        self._session.flush()
        return row.to_model()

    def _events(self, *criteria: Any, limit: int | None = None) -> list[BalanceEvent]:
        query = self._session.query(BalanceEventRow)
        for criterion in criteria:
            query = query.filter(criterion)
        query = query.order_by(BalanceEventRow.created_at.desc(), BalanceEventRow.id.desc())
        if limit is not None:
            query = query.limit(limit)
        return [r.to_model() for r in query.all()]

    def recent_balance_events(self, limit: int) -> list[BalanceEvent]:
        if limit <= 0:
            return []
        return self._events(limit=limit)

    def balance_events_since(self, since_ts: int) -> list[BalanceEvent]:
        return self._events(BalanceEventRow.created_at >= since_ts)

    def balance_events_by_trigger_type(self, trigger_type: TriggerType) -> list[BalanceEvent]:
        return self._events(BalanceEventRow.trigger_type == trigger_type.value)

    def balance_events_by_user(self, user_id: int) -> list[BalanceEvent]:
        """Events the user triggered, plus events scoped to that user alone."""
        return self._events(
            or_(
                BalanceEventRow.triggered_by == user_id,
                BalanceEventRow.affected_users == AffectedScope.single(user_id).encode(),
            )
        )

    # --- Metric samples (append-only) ---

    def append_metric_sample(
        self,
        name: str,
        value: float,
        metric_type: MetricType,
        period: CalculationPeriod,
        metadata: dict[str, Any] | None = None,
    ) -> SystemMetric:
        row = SystemMetricRow(
            metric_name=name,
            metric_value=float(value),
            metric_type=metric_type.value,
            calculation_period=period.value,
            metadata_json=json.dumps(metadata or {}),
            recorded_at=self._now(),
        )
        self._session.add(row)
        self._session.flush()
        return row.to_model()

    def latest_metric_by_name(self, name: str) -> SystemMetric | None:
        row = (
            self._session.query(SystemMetricRow)
            .filter(SystemMetricRow.metric_name == name)
            .order_by(SystemMetricRow.recorded_at.desc(), SystemMetricRow.id.desc())
            .first()
        )
        return row.to_model() if row else None

    # --- Community rules ---

    def add_rule(self, rule: CommunityRule) -> CommunityRule:
        row = CommunityRuleRow(
            title=rule.title,
            description=rule.description,
            rule_type=rule.rule_type.value,
            priority=rule.priority,
            threshold=rule.threshold,
            action=rule.action.value,
            is_active=rule.is_active,
            votes=rule.votes,
            created_by=rule.created_by,
            created_at=self._now(),
        )
        self._session.add(row)
        self._session.flush()
        return row.to_model()

    def get_rule(self, rule_id: int) -> CommunityRule | None:
        row = self._session.get(CommunityRuleRow, rule_id)
        return row.to_model() if row else None

    def require_rule(self, rule_id: int) -> CommunityRule:
        rule = self.get_rule(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        return rule

    def save_rule(self, rule: CommunityRule) -> CommunityRule:
        row = self._session.get(CommunityRuleRow, rule.id)
        if row is None:
            raise RuleNotFoundError(rule.id)
        row.apply(rule)
        self._session.flush()
        return rule

    def save_rules(self, rules: list[CommunityRule]) -> None:
        for rule in rules:
            self.save_rule(rule)

    def _rules(self, *criteria: Any) -> Any:
        query = self._session.query(CommunityRuleRow)
        for criterion in criteria:
            query = query.filter(criterion)
        return query

    def list_active_rules(self) -> list[CommunityRule]:
        """Active rules, highest priority first."""
        rows = (
            self._rules(CommunityRuleRow.is_active.is_(True))
            .order_by(CommunityRuleRow.priority.desc(), CommunityRuleRow.id)
            .all()
        )
        return [r.to_model() for r in rows]

    def list_active_rules_by_type(self, rule_type: RuleType) -> list[CommunityRule]:
        rows = (
            self._rules(
                CommunityRuleRow.is_active.is_(True),
                CommunityRuleRow.rule_type == rule_type.value,
            )
            .order_by(CommunityRuleRow.priority.desc(), CommunityRuleRow.id)
            .all()
        )
        return [r.to_model() for r in rows]

    def list_rules_by_creator(self, user_id: int) -> list[CommunityRule]:
        rows = (
            self._rules(CommunityRuleRow.created_by == user_id)
            .order_by(CommunityRuleRow.created_at.desc(), CommunityRuleRow.id.desc())
            .all()
        )
        return [r.to_model() for r in rows]

    def list_top_voted_rules(self, limit: int) -> list[CommunityRule]:
        if limit <= 0:
            return []
        rows = (
            self._rules()
            .order_by(CommunityRuleRow.votes.desc(), CommunityRuleRow.id)
            .limit(limit)
            .all()
        )
        return [r.to_model() for r in rows]

    def list_recent_rules(self, limit: int) -> list[CommunityRule]:
        if limit <= 0:
            return []
        rows = (
            self._rules()
            .order_by(CommunityRuleRow.created_at.desc(), CommunityRuleRow.id.desc())
            .limit(limit)
            .all()
        )
        return [r.to_model() for r in rows]

    def count_rules(self) -> int:
        return self._session.query(func.count(CommunityRuleRow.id)).scalar() or 0

    # --- Messages ---

    def add_message(self, message: Message) -> Message:
        row = MessageRow(
            user_id=message.user_id,
            freedom_impact=message.freedom_impact,
            security_impact=message.security_impact,
            flag_count=message.flag_count,
            is_visible=message.is_visible,
            created_at=self._now(),
        )
        self._session.add(row)
        self._session.flush()
        return row.to_model()

    def get_message(self, message_id: int) -> Message | None:
        row = self._session.get(MessageRow, message_id)
        return row.to_model() if row else None

    def require_message(self, message_id: int) -> Message:
        message = self.get_message(message_id)
        if message is None:
            raise MessageNotFoundError(message_id)
        return message

    def save_message(self, message: Message) -> Message:
        row = self._session.get(MessageRow, message.id)
        if row is None:
            raise MessageNotFoundError(message.id)
        row.flag_count = message.flag_count
        row.is_visible = message.is_visible
        self._session.flush()
        return message

    def count_messages(self) -> int:
        return self._session.query(func.count(MessageRow.id)).scalar() or 0

    def count_messages_by_user(self, user_id: int) -> int:
        return (
            self._session.query(func.count(MessageRow.id))
            .filter(MessageRow.user_id == user_id)
            .scalar()
            or 0
        )

    def message_stats_by_user(self) -> dict[int, tuple[int, int]]:
        """user_id -> (message count, total flags) for every user with at least one message."""
        rows = (
            self._session.query(
                MessageRow.user_id,
                func.count(MessageRow.id),
                func.coalesce(func.sum(MessageRow.flag_count), 0),
            )
            .group_by(MessageRow.user_id)
            .all()
        )
        return {int(user_id): (int(count), int(flags)) for user_id, count, flags in rows}

    def count_flagged_messages(self) -> int:
        return (
            self._session.query(func.count(MessageRow.id))
            .filter(MessageRow.flag_count > 0)
            .scalar()
            or 0
        )


def _install_sqlite_immediate_begin(engine: Engine) -> None:
    """Let SQLAlchemy own transaction boundaries on pysqlite and begin with BEGIN IMMEDIATE."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """
    Database facade: owns the engine and session factory.

    Write paths use unit_of_work(); the read helpers below each run in their own
    short transaction and return plain dataclasses.
    """

    def __init__(self, url: str, *, clock: Callable[[], float] = time.time) -> None:
        self.url = url
        self._clock = clock
        connect_args: dict[str, Any] = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = SQLITE_BUSY_TIMEOUT_SEC
        self._engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        if url.startswith("sqlite"):
            _install_sqlite_immediate_begin(self._engine)
        self._session_factory = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self._engine
        )

    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        Base.metadata.create_all(bind=self._engine)
        logger.info("balance_db_schema_ready", url=mask_database_url(self.url))

    def dispose(self) -> None:
        self._engine.dispose()

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        """One transaction. Commits on success, rolls back on error; StaleDataError -> ConcurrentModificationError."""
        session = self._session_factory()
        try:
            yield UnitOfWork(session, self._clock)
            session.commit()
        except StaleDataError as e:
            session.rollback()
            raise ConcurrentModificationError("Concurrent update detected on commit") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _read(self, fn: Callable[[UnitOfWork], T]) -> T:
        with self.unit_of_work() as uow:
            return fn(uow)

    # --- Users ---

    def add_user(self, user: User) -> User:
        return self._read(lambda uow: uow.add_user(user))

    def get_user(self, user_id: int) -> User | None:
        return self._read(lambda uow: uow.get_user(user_id))

    def list_users(self) -> list[User]:
        return self._read(lambda uow: uow.list_users())

    def list_active_users(self) -> list[User]:
        return self._read(lambda uow: uow.list_active_users())

    def count_active_users(self) -> int:
        return self._read(lambda uow: uow.count_active_users())

    # --- Ledger / metrics ---

    def recent_balance_events(self, limit: int) -> list[BalanceEvent]:
        return self._read(lambda uow: uow.recent_balance_events(limit))

    def balance_events_since(self, since_ts: int) -> list[BalanceEvent]:
        return self._read(lambda uow: uow.balance_events_since(since_ts))

    def balance_events_by_trigger_type(self, trigger_type: TriggerType) -> list[BalanceEvent]:
        return self._read(lambda uow: uow.balance_events_by_trigger_type(trigger_type))

    def balance_events_by_user(self, user_id: int) -> list[BalanceEvent]:
        return self._read(lambda uow: uow.balance_events_by_user(user_id))

    def append_balance_event(self, balance_event: BalanceEvent) -> BalanceEvent:
        return self._read(lambda uow: uow.append_balance_event(balance_event))

    def latest_metric_by_name(self, name: str) -> SystemMetric | None:
        return self._read(lambda uow: uow.latest_metric_by_name(name))

    # --- Rules ---

    def get_rule(self, rule_id: int) -> CommunityRule | None:
        return self._read(lambda uow: uow.get_rule(rule_id))

    def list_active_rules(self) -> list[CommunityRule]:
        return self._read(lambda uow: uow.list_active_rules())

    def list_active_rules_by_type(self, rule_type: RuleType) -> list[CommunityRule]:
        return self._read(lambda uow: uow.list_active_rules_by_type(rule_type))

    def list_rules_by_creator(self, user_id: int) -> list[CommunityRule]:
        return self._read(lambda uow: uow.list_rules_by_creator(user_id))

    def list_top_voted_rules(self, limit: int) -> list[CommunityRule]:
        return self._read(lambda uow: uow.list_top_voted_rules(limit))

    def list_recent_rules(self, limit: int) -> list[CommunityRule]:
        return self._read(lambda uow: uow.list_recent_rules(limit))

    # --- Messages ---

    def get_message(self, message_id: int) -> Message | None:
        return self._read(lambda uow: uow.get_message(message_id))


def get_database(url: str | None = None, *, clock: Callable[[], float] = time.time) -> Database:
    """
    Return a Database with the schema created.

    url: SQLAlchemy URL (e.g. "sqlite:///data/balance.db"). Default: from env (BALANCE_DB_URL,
    DATABASE_URL, else sqlite:///balance.db).
    """
    db = Database(url or get_database_url(), clock=clock)
    db.ensure_schema()
    return db
