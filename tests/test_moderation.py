"""
Tests for the moderation hooks: recording messages and community flagging.
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from backend_balance.balance_engine.moderation import FLAG_REASON
from backend_balance.core.exceptions import InvalidStateError, MessageNotFoundError, UserNotFoundError
from backend_balance.database.database import UnitOfWork
from backend_balance.database.models import TriggerType


def test_record_message_applies_impact_to_author(service, db, make_user):
    author = make_user(freedom=50, security=50)
    recorded = service.record_message(author.id, 10, -5)
    assert recorded.message.id is not None
    assert recorded.message.user_id == author.id
    assert recorded.impact.event.trigger_type is TriggerType.USER_ACTION
    assert not recorded.impact.rebalancing_evaluated
    stored = db.get_user(author.id)
    assert (stored.freedom_score, stored.security_score) == (60, 45)


def test_record_message_for_unknown_author(service):
    with pytest.raises(UserNotFoundError):
        service.record_message(31337, 1, 1)


def test_flag_penalizes_author_and_keeps_message_visible_below_threshold(service, db, make_user):
    author, flagger = make_user(freedom=50, security=50), make_user()
    message = service.record_message(author.id, 0, 0).message

    result = service.flag_message(message.id, flagger.id)
    assert result.message.flag_count == 1
    assert result.flag_threshold == 5
    assert not result.hidden
    event = result.balance_event
    assert event.event_description == FLAG_REASON
    assert event.affected_users.user_id == author.id
    stored = db.get_user(author.id)
    assert (stored.freedom_score, stored.security_score) == (45, 55)


def test_message_hidden_once_flags_reach_threshold(service, db, make_user):
    author, flagger = make_user(), make_user()
    rule = service.create_rule(flagger.id, "Two strikes", "", "SECURITY", 1, 2, "RESTRICT")
    rule.is_active = True
    with db.unit_of_work() as uow:
        uow.save_rule(rule)
    message = service.record_message(author.id, 0, 0).message

    assert not service.flag_message(message.id, flagger.id).hidden
    second = service.flag_message(message.id, flagger.id)
    assert second.hidden
    assert db.get_message(message.id).is_visible is False
    assert db.get_message(message.id).flag_count == 2


def test_flag_unknown_message_or_flagger(service, db, make_user):
    author = make_user()
    message = service.record_message(author.id, 0, 0).message
    with pytest.raises(MessageNotFoundError):
        service.flag_message(999, author.id)
    with pytest.raises(UserNotFoundError):
        service.flag_message(message.id, 999)
    assert db.get_message(message.id).flag_count == 0
    assert db.get_user(author.id).freedom_score == 50


def test_inactive_author_cannot_record_message(service, db, make_user):
    author = make_user(freedom=50, security=50, is_active=False)
    with pytest.raises(InvalidStateError):
        service.record_message(author.id, 25, 0)
    with db.unit_of_work() as uow:
        assert uow.count_messages_by_user(author.id) == 0
    assert db.get_user(author.id).freedom_score == 50
    assert list(service.balance_history(10)) == []


def test_failed_impact_write_keeps_no_message(service, db, make_user, monkeypatch):
    author = make_user(freedom=50, security=50)

    def down(self, event):
        raise OperationalError("INSERT INTO balance_events", {}, Exception("disk I/O error"))

    monkeypatch.setattr(UnitOfWork, "append_balance_event", down)
    with pytest.raises(OperationalError):
        service.record_message(author.id, 10, 0)
    monkeypatch.undo()

    with db.unit_of_work() as uow:
        assert uow.count_messages() == 0
    assert db.get_user(author.id).freedom_score == 50


def test_failed_penalty_rolls_back_flag(service, db, make_user, monkeypatch):
    author, flagger = make_user(freedom=51, security=51), make_user()
    message = service.record_message(author.id, 0, 0).message
    before = db.get_user(author.id)

    def down(self, event):
        raise OperationalError("INSERT INTO balance_events", {}, Exception("disk I/O error"))

    monkeypatch.setattr(UnitOfWork, "append_balance_event", down)
    with pytest.raises(OperationalError):
        service.flag_message(message.id, flagger.id)
    monkeypatch.undo()

    assert db.get_message(message.id).flag_count == 0
    after = db.get_user(author.id)
    assert (after.freedom_score, after.security_score) == (before.freedom_score, before.security_score)


def test_flag_event_is_in_author_history(service, make_user):
    author, flagger = make_user(), make_user()
    message = service.record_message(author.id, 0, 0).message
    flagged = service.flag_message(message.id, flagger.id)
    assert flagged.balance_event.id in [e.id for e in service.balance_events_by_user(author.id)]
