"""
Tests for the rebalancing controller: thresholds, global and per-user adjustments,
impact analysis, recomputation and concurrent writers.
"""

from __future__ import annotations

import threading

import pytest

from backend_balance.balance_engine.rebalancing import (
    NO_ADJUSTMENT,
    BalanceAdjustment,
    apply_global_adjustment,
    compute_global_adjustment,
    needs_rebalancing,
)
from backend_balance.balance_engine.system_balance import SystemBalance, Trend
from backend_balance.balance_engine.transactions import run_atomic
from backend_balance.balance_engine.user_scores import SECONDS_PER_DAY
from backend_balance.core.exceptions import ConcurrentModificationError, InvalidStateError, UserNotFoundError
from backend_balance.database.models import Message, TriggerType, User


def _balance(freedom: int, security: int, score: float = 1.0) -> SystemBalance:
    return SystemBalance(freedom, security, score, Trend.STABLE, 0)


# --- Pure decisions ---


def test_needs_rebalancing_thresholds():
    assert needs_rebalancing(_balance(70, 45, 0.642))
    assert needs_rebalancing(_balance(81, 50, 0.72))
    assert not needs_rebalancing(_balance(60, 50, 0.83))
    assert not needs_rebalancing(_balance(80, 50, 0.7))


def test_compute_global_adjustment_dead_band():
    assert compute_global_adjustment(_balance(70, 45)) == BalanceAdjustment(freedom=-2, security=1)
    assert compute_global_adjustment(_balance(40, 60)) == BalanceAdjustment(freedom=1, security=-2)
    assert compute_global_adjustment(_balance(60, 50)) == NO_ADJUSTMENT
    assert compute_global_adjustment(_balance(50, 60)) == NO_ADJUSTMENT


def test_zero_delta_leaves_users_unchanged():
    class Store:
        saved = None

        def save_users(self, users):
            self.saved = users

    store = Store()
    users = [User(id=1, username="a", freedom_score=33, security_score=77)]
    apply_global_adjustment(NO_ADJUSTMENT, users, store)
    assert (users[0].freedom_score, users[0].security_score) == (33, 77)
    assert store.saved is None


# --- Automatic rebalancing ---


def test_scenario_a_automatic_rebalancing(service, db, make_user):
    a = make_user(freedom=80, security=40)
    b = make_user(freedom=60, security=50)
    event = service.perform_automatic_rebalancing()
    assert event is not None
    assert event.trigger_type is TriggerType.SYSTEM_AUTO
    assert event.affected_users.is_all_active
    assert (event.previous_freedom_level, event.previous_security_level) == (70, 45)
    assert (event.new_freedom_level, event.new_security_level) == (68, 46)
    assert (db.get_user(a.id).freedom_score, db.get_user(a.id).security_score) == (78, 41)
    assert (db.get_user(b.id).freedom_score, db.get_user(b.id).security_score) == (58, 51)
    assert service.balance_history(1)[0] == event


def test_balanced_system_records_nothing(service, db, make_user):
    user = make_user(freedom=55, security=50)
    assert service.perform_automatic_rebalancing() is None
    assert list(service.balance_history(10)) == []
    assert db.get_user(user.id).freedom_score == 55


def test_rebalancing_needed_inside_dead_band_records_unchanged_levels(service, db, make_user):
    user = make_user(freedom=20, security=10)
    event = service.perform_automatic_rebalancing()
    assert event is not None
    assert event.previous_freedom_level == event.new_freedom_level == 20
    assert event.previous_security_level == event.new_security_level == 10
    assert db.get_user(user.id).freedom_score == 20


def test_inactive_users_are_not_adjusted(service, db, make_user):
    make_user(freedom=90, security=20)
    idle = make_user(freedom=90, security=20, is_active=False)
    service.perform_automatic_rebalancing()
    assert db.get_user(idle.id).freedom_score == 90


def test_rebalancing_with_no_users(service):
    assert service.perform_automatic_rebalancing() is None


# --- Trigger events ---


def test_trigger_user_action_applies_fixed_delta_to_everyone(service, db, make_user):
    actor = make_user(freedom=50, security=50)
    other = make_user(freedom=60, security=40)
    event = service.trigger_balance_event(actor.id, "user_action", "Community event")
    assert event.trigger_type is TriggerType.USER_ACTION
    assert event.triggered_by == actor.id
    assert event.affected_users.is_all_active
    assert (event.previous_freedom_level, event.new_freedom_level) == (55, 57)
    assert (event.previous_security_level, event.new_security_level) == (45, 44)
    assert db.get_user(actor.id).freedom_score == 52
    assert db.get_user(other.id).security_score == 39


def test_trigger_admin_manual_uses_explicit_adjustment(service, db, make_user):
    user = make_user(freedom=50, security=50)
    service.trigger_balance_event(
        user.id, TriggerType.ADMIN_MANUAL, "Manual correction", BalanceAdjustment(freedom=5, security=-5)
    )
    stored = db.get_user(user.id)
    assert (stored.freedom_score, stored.security_score) == (55, 45)


def test_trigger_unknown_type_writes_nothing(service, db, make_user):
    user = make_user()
    with pytest.raises(InvalidStateError):
        service.trigger_balance_event(user.id, "EVERYTHING", "bad")
    assert list(service.balance_history(10)) == []
    assert db.get_user(user.id).freedom_score == 50


def test_trigger_unknown_user(service, make_user):
    make_user()
    with pytest.raises(UserNotFoundError):
        service.trigger_balance_event(999, "SYSTEM_AUTO", "nobody")
    assert list(service.balance_history(10)) == []


# --- Per-user paths ---


def test_adjust_balance_clamps_and_scopes_event(service, db, make_user):
    user = make_user(freedom=98, security=3)
    event = service.adjust_balance(user.id, 5, -10, "Moderator correction")
    assert event.trigger_type is TriggerType.ADMIN_MANUAL
    assert event.affected_users.user_id == user.id
    assert (event.previous_freedom_level, event.new_freedom_level) == (98, 100)
    assert (event.previous_security_level, event.new_security_level) == (3, 0)
    stored = db.get_user(user.id)
    assert (stored.freedom_score, stored.security_score) == (100, 0)


def test_adjust_balance_missing_user(service):
    with pytest.raises(UserNotFoundError):
        service.adjust_balance(404, 1, 1, "ghost")
    assert list(service.balance_history(5)) == []


def test_scenario_b_high_impact_cascades(service, db, make_user):
    user = make_user(freedom=50, security=50)
    result = service.analyze_impact(user, 25, 0)
    assert result.event.trigger_type is TriggerType.USER_ACTION
    assert result.event.affected_users.user_id == user.id
    assert (result.event.new_freedom_level, result.event.new_security_level) == (75, 50)
    assert result.rebalancing_evaluated
    # 75 / 50 scores 0.667 < 0.7 and freedom leads by 25, so the cascade applies (-2, +1).
    assert result.rebalance_event is not None
    assert result.rebalance_event.trigger_type is TriggerType.SYSTEM_AUTO
    stored = db.get_user(user.id)
    assert (stored.freedom_score, stored.security_score) == (73, 51)
    assert [e.trigger_type for e in service.balance_history(5)] == [
        TriggerType.SYSTEM_AUTO,
        TriggerType.USER_ACTION,
    ]


def test_low_impact_does_not_cascade(service, make_user):
    user = make_user(freedom=50, security=50)
    result = service.analyze_impact(user.id, 20, -20)
    assert not result.rebalancing_evaluated
    assert result.rebalance_event is None
    assert len(service.balance_history(5)) == 1


def test_recompute_user_scores(service, db, clock, make_user):
    user = make_user(freedom=50, security=50, created_at=int(clock()) - 14 * SECONDS_PER_DAY)
    with db.unit_of_work() as uow:
        for _ in range(3):
            uow.add_message(Message(id=None, user_id=user.id))
    balance = service.recompute_user_scores(user.id)
    assert (balance.freedom_score, balance.security_score, balance.reputation_score) == (56, 62, 10)
    assert balance.balance_ratio == pytest.approx(56 / 62)
    stored = db.get_user(user.id)
    assert (stored.freedom_score, stored.security_score, stored.reputation_score) == (56, 62, 10)


def test_get_user_balance(service, make_user):
    user = make_user(freedom=40, security=0)
    balance = service.get_user_balance(user.id)
    assert balance.username == user.username
    assert balance.balance_ratio == 100.0
    with pytest.raises(UserNotFoundError):
        service.get_user_balance(12345)


# --- Concurrency ---


def test_concurrent_adjustments_lose_no_updates(service, db, make_user):
    user = make_user(freedom=0, security=0)
    errors: list[Exception] = []

    def worker() -> None:
        try:
            for _ in range(5):
                service.adjust_balance(user.id, 1, 0, "tick")
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert errors == []
    assert db.get_user(user.id).freedom_score == 20
    assert len(service.balance_history(100)) == 20


def test_global_and_per_user_paths_serialize(service, db, make_user):
    a = make_user(freedom=10, security=10)
    b = make_user(freedom=10, security=10)
    errors: list[Exception] = []

    def adjuster(user_id: int) -> None:
        try:
            for _ in range(4):
                service.adjust_balance(user_id, 1, 0, "per-user")
        except Exception as e:
            errors.append(e)

    def global_trigger() -> None:
        try:
            for _ in range(3):
                service.trigger_balance_event(None, TriggerType.SYSTEM_AUTO, "global")
        except Exception as e:
            errors.append(e)

    threads = [
        threading.Thread(target=adjuster, args=(a.id,)),
        threading.Thread(target=adjuster, args=(b.id,)),
        threading.Thread(target=global_trigger),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert errors == []
    for user_id in (a.id, b.id):
        stored = db.get_user(user_id)
        assert (stored.freedom_score, stored.security_score) == (14, 13)


def test_admin_adjustment_appears_in_target_history(service, make_user):
    admin, target = make_user(), make_user()
    event = service.adjust_balance(target.id, -10, 10, "review", actor_id=admin.id)
    assert event.triggered_by == admin.id
    assert [e.id for e in service.balance_events_by_user(target.id)] == [event.id]


def test_trigger_rejects_adjustment_for_fixed_delta_types(service, db, make_user):
    user = make_user(freedom=50, security=50)
    with pytest.raises(InvalidStateError):
        service.trigger_balance_event(
            user.id, TriggerType.SYSTEM_AUTO, "nightly", BalanceAdjustment(freedom=5, security=-5)
        )
    assert list(service.balance_history(10)) == []
    assert db.get_user(user.id).freedom_score == 50


def test_balance_trends_window(service, clock, make_user):
    user = make_user()
    old = service.adjust_balance(user.id, 1, 0, "old")
    clock.advance(3 * 3600)
    recent = service.adjust_balance(user.id, 1, 0, "recent")
    assert [e.id for e in service.balance_trends(2)] == [recent.id]
    assert [e.id for e in service.balance_trends(24)] == [recent.id, old.id]
    with pytest.raises(InvalidStateError):
        service.balance_trends(0)


# --- Bounded retry on write conflicts ---


def test_write_conflict_is_retried_then_succeeds(db, make_user):
    user = make_user(freedom=50)
    attempts = []

    def bump(uow):
        attempts.append(len(attempts) + 1)
        current = uow.require_user(user.id)
        if len(attempts) == 1:
            # Read an old version: another writer got there first.
            current.version -= 1
        current.freedom_score += 1
        uow.save_user(current)
        return current.freedom_score

    assert run_atomic(db, "bump", bump, max_attempts=3) == 51
    assert attempts == [1, 2]
    assert db.get_user(user.id).freedom_score == 51


def test_write_conflict_retries_are_bounded(db, make_user):
    user = make_user(freedom=50)
    attempts = []

    def always_stale(uow):
        attempts.append(1)
        current = uow.require_user(user.id)
        current.version -= 1
        current.freedom_score = 99
        uow.save_user(current)

    with pytest.raises(ConcurrentModificationError):
        run_atomic(db, "always_stale", always_stale, max_attempts=3)
    assert len(attempts) == 3
    assert db.get_user(user.id).freedom_score == 50


def test_other_errors_are_not_retried(db):
    attempts = []

    def missing(uow):
        attempts.append(1)
        uow.require_user(404)

    with pytest.raises(UserNotFoundError):
        run_atomic(db, "missing", missing, max_attempts=3)
    assert len(attempts) == 1
