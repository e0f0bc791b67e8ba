"""
Tests for boundary decoding: enum parsing, affected-user scope, rule drafts.
"""

from __future__ import annotations

import pytest

from backend_balance.core.exceptions import InvalidStateError
from backend_balance.database.models import (
    AffectedScope,
    RuleAction,
    RuleDraft,
    RuleType,
    TriggerType,
    parse_rule_action,
    parse_rule_type,
    parse_trigger_type,
)


def test_parse_enums_case_insensitive():
    assert parse_trigger_type("user_action") is TriggerType.USER_ACTION
    assert parse_trigger_type(TriggerType.ADMIN_MANUAL) is TriggerType.ADMIN_MANUAL
    assert parse_rule_type(" Security ") is RuleType.SECURITY
    assert parse_rule_action("suspend") is RuleAction.SUSPEND


@pytest.mark.parametrize("raw", ["", None, "DELETE_ALL", "user action"])
def test_parse_trigger_type_rejects_unknown(raw):
    with pytest.raises(InvalidStateError):
        parse_trigger_type(raw)


def test_affected_scope_encoding():
    assert AffectedScope.all_active().encode() == "all"
    assert AffectedScope.single(42).encode() == "[42]"
    assert AffectedScope.decode("[42]") == AffectedScope.single(42)
    assert AffectedScope.decode("all").is_all_active
    assert AffectedScope.decode(None).is_all_active
    with pytest.raises(InvalidStateError):
        AffectedScope.decode("[1, 2]")


def test_rule_draft_validation():
    draft = RuleDraft.from_raw(" No spam ", "desc", "balance", 3, 5, "warn")
    assert draft.title == "No spam"
    assert draft.rule_type is RuleType.BALANCE
    assert draft.action is RuleAction.WARN
    with pytest.raises(InvalidStateError):
        RuleDraft.from_raw("t", "d", "BALANCE", 0, 5, "WARN")
    with pytest.raises(InvalidStateError):
        RuleDraft.from_raw("t", "d", "BALANCE", 1, 5, "BAN_FOREVER")
