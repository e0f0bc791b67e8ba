"""
Tests for community rules: creation, vote-driven activation, the effectiveness sweep
and the flag threshold.
"""

from __future__ import annotations

import pytest

from backend_balance.balance_engine.community_rules import activation_threshold
from backend_balance.core.exceptions import InvalidStateError, RuleNotFoundError, UserNotFoundError
from backend_balance.database.models import CommunityRule, RuleAction, RuleType


def _create(service, creator_id, rule_type="BALANCE", threshold=5, priority=1, title="Be kind"):
    return service.create_rule(creator_id, title, "desc", rule_type, priority, threshold, "WARN")


def _force(db, rule: CommunityRule, *, is_active: bool, votes: int | None = None) -> CommunityRule:
    rule.is_active = is_active
    if votes is not None:
        rule.votes = votes
    with db.unit_of_work() as uow:
        uow.save_rule(rule)
    return rule


def test_create_rule_starts_inactive_and_credits_creator(service, db, make_user):
    creator = make_user(reputation=7)
    rule = _create(service, creator.id, rule_type="security")
    assert rule.id is not None
    assert rule.is_active is False
    assert rule.votes == 1
    assert rule.rule_type is RuleType.SECURITY
    assert rule.action is RuleAction.WARN
    assert rule.created_by == creator.id
    assert db.get_user(creator.id).reputation_score == 12


def test_create_rule_rejects_bad_input_before_writing(service, db, make_user):
    creator = make_user()
    with pytest.raises(InvalidStateError):
        _create(service, creator.id, rule_type="CHAOS")
    with pytest.raises(InvalidStateError):
        _create(service, creator.id, priority=0)
    with pytest.raises(UserNotFoundError):
        _create(service, 999)
    assert service.recent_rules(10) == []
    assert db.get_user(creator.id).reputation_score == 0


@pytest.mark.parametrize("count,expected", [(0, 3), (29, 3), (39, 3), (40, 4), (100, 10), (1000, 100)])
def test_activation_threshold(count, expected):
    assert activation_threshold(count) == expected


def test_scenario_c_activates_at_threshold(service, make_user):
    creator, *voters = [make_user() for _ in range(4)]
    rule = _create(service, creator.id)

    first = service.vote(rule.id, voters[0].id, True)
    assert (first.total_votes, first.is_active) == (2, False)
    second = service.vote(rule.id, voters[1].id, True)
    assert (second.total_votes, second.is_active) == (3, True)
    third = service.vote(rule.id, voters[2].id, True)
    assert (third.total_votes, third.is_active) == (4, True)
    assert [r.id for r in service.active_rules()] == [rule.id]


def test_active_rule_deactivates_when_votes_go_negative(service, db, make_user):
    creator, voter = make_user(), make_user()
    rule = _force(db, _create(service, creator.id), is_active=True)
    service.vote(rule.id, voter.id, False)  # 0, still active
    assert service.get_rule(rule.id).is_active
    result = service.vote(rule.id, voter.id, False)
    assert result.is_active is False
    assert (result.total_votes, result.positive_votes, result.negative_votes) == (1, 0, 1)
    assert result.user_vote is False


def test_negative_votes_on_inactive_rule_keep_it_inactive(service, make_user):
    creator, voter = make_user(), make_user()
    rule = _create(service, creator.id)
    service.vote(rule.id, voter.id, False)
    result = service.vote(rule.id, voter.id, False)
    assert result.is_active is False
    assert service.get_rule(rule.id).votes == -1


def test_voter_reputation_increases_on_every_vote(service, db, make_user):
    creator, voter = make_user(), make_user()
    rule = _create(service, creator.id)
    service.vote(rule.id, voter.id, True)
    service.vote(rule.id, voter.id, False)
    assert db.get_user(voter.id).reputation_score == 2


def test_vote_on_missing_rule_or_voter(service, make_user):
    creator = make_user()
    rule = _create(service, creator.id)
    with pytest.raises(RuleNotFoundError):
        service.vote(777, creator.id, True)
    with pytest.raises(UserNotFoundError):
        service.vote(rule.id, 777, True)
    assert service.get_rule(rule.id).votes == 1


def test_effectiveness_sweep_deactivates_and_never_reactivates(service, db, make_user):
    creator = make_user()
    failing = _force(db, _create(service, creator.id, title="a"), is_active=True, votes=-11)
    borderline = _force(db, _create(service, creator.id, title="b"), is_active=True, votes=-10)
    dormant = _force(db, _create(service, creator.id, title="c"), is_active=False, votes=-20)

    assert service.evaluate_rule_effectiveness() == [failing.id]
    assert service.get_rule(failing.id).is_active is False
    assert service.get_rule(borderline.id).is_active is True
    assert service.get_rule(dormant.id).is_active is False
    assert service.evaluate_rule_effectiveness() == []


def test_flag_threshold_default_and_minimum(service, db, make_user):
    creator = make_user()
    assert service.active_flag_threshold() == 5
    _force(db, _create(service, creator.id, rule_type="SECURITY", threshold=7), is_active=True)
    _force(db, _create(service, creator.id, rule_type="SECURITY", threshold=3), is_active=True)
    _create(service, creator.id, rule_type="SECURITY", threshold=1)  # inactive
    _force(db, _create(service, creator.id, rule_type="FREEDOM", threshold=1), is_active=True)
    assert service.active_flag_threshold() == 3


def test_rule_reads(service, db, make_user):
    creator, other = make_user(), make_user()
    low = _force(db, _create(service, creator.id, priority=1, title="low"), is_active=True)
    high = _force(db, _create(service, creator.id, priority=9, title="high"), is_active=True, votes=4)
    theirs = _create(service, other.id, rule_type="FREEDOM", title="theirs")

    assert [r.id for r in service.active_rules()] == [high.id, low.id]
    assert [r.id for r in service.active_rules_by_type("balance")] == [high.id, low.id]
    assert service.active_rules_by_type(RuleType.FREEDOM) == []
    assert {r.id for r in service.rules_created_by(creator.id)} == {low.id, high.id}
    assert service.top_voted_rules(1)[0].id == high.id
    assert theirs.id in [r.id for r in service.recent_rules(10)]
    with pytest.raises(RuleNotFoundError):
        service.get_rule(4040)
