"""Tests for trigger matching."""

from __future__ import annotations

import pytest

from board_automation.automation.models import AutomationEvent
from board_automation.automation.triggers import TriggerMatcher, strict_equals


def _event(**overrides) -> AutomationEvent:
    data = {
        "type": "status_changed",
        "scope_id": "b1",
        "entity_id": "t1",
        "field": "status",
        "previous_value": "not-started",
        "new_value": "stuck",
    }
    data.update(overrides)
    return AutomationEvent(**data)


class TestStrictEquals:
    """Tests for strict_equals."""

    @pytest.mark.parametrize(
        ("expected", "actual", "outcome"),
        [
            ("stuck", "stuck", True),
            ("1", 1, False),
            (1, 1.0, True),
            (True, 1, False),
            (True, True, True),
            (None, None, True),
            (["a"], ["a"], True),
        ],
    )
    def test_no_coercion(self, expected, actual, outcome) -> None:
        """Test equality without cross-type coercion."""
        assert strict_equals(expected, actual) is outcome


class TestTriggerMatcher:
    """Tests for TriggerMatcher."""

    def test_type_must_match(self, make_rule) -> None:
        """Test that the trigger type must equal the event type."""
        matcher = TriggerMatcher()
        assert matcher.matches(make_rule(), _event())
        assert not matcher.matches(make_rule(trigger_type="item_created"), _event())

    def test_field_narrowing(self, make_rule) -> None:
        """Test that a set trigger field must equal the event field."""
        matcher = TriggerMatcher()
        assert matcher.matches(make_rule(trigger_field="status"), _event())
        assert not matcher.matches(make_rule(trigger_field="priority"), _event())
        assert not matcher.matches(make_rule(trigger_field="status"), _event(field=None))

    def test_value_narrowing(self, make_rule) -> None:
        """Test that a set trigger value must strictly equal the new value."""
        matcher = TriggerMatcher()
        assert matcher.matches(make_rule(trigger_value="stuck"), _event())
        assert not matcher.matches(make_rule(trigger_value="done"), _event())
        assert not matcher.matches(make_rule(trigger_value="stuck"), _event(new_value=None))

    def test_value_is_not_coerced(self, make_rule) -> None:
        """Test that "1" does not match 1."""
        matcher = TriggerMatcher()
        rule = make_rule(trigger_type="field_changed", trigger_value="1")
        assert not matcher.matches(rule, _event(type="field_changed", new_value=1))

    def test_inactive_rule_never_matches(self, make_rule) -> None:
        """Test that inactive rules are ignored by matches but not by the projection."""
        matcher = TriggerMatcher()
        rule = make_rule(active=False)
        assert not matcher.matches(rule, _event())
        assert matcher.matches_ignoring_active(rule, _event())

    def test_select_keeps_store_order(self, make_rule) -> None:
        """Test that select returns matching rules in input order."""
        matcher = TriggerMatcher()
        rules = [
            make_rule(id="a"),
            make_rule(id="b", trigger_value="done"),
            make_rule(id="c", trigger_field="status"),
        ]
        assert [r.id for r in matcher.select(rules, _event())] == ["a", "c"]
