"""Tests for the cascade guard."""

from __future__ import annotations

import pytest

from board_automation.automation.cascade import CascadeDecision, CascadeGuard
from board_automation.automation.models import AutomationEvent


def _event(depth: int = 0, rule_ids: tuple[str, ...] = ()) -> AutomationEvent:
    return AutomationEvent(
        type="status_changed",
        scope_id="b1",
        entity_id="t1",
        cascade_depth=depth,
        cascade_rule_ids=rule_ids,
    )


class TestCascadeGuard:
    """Tests for CascadeGuard."""

    def test_negative_depth_rejected(self) -> None:
        """Test that max_depth cannot be negative."""
        with pytest.raises(ValueError):
            CascadeGuard(max_depth=-1)

    def test_depth_limit(self) -> None:
        """Test that events deeper than max_depth are stopped and counted."""
        guard = CascadeGuard(max_depth=2)
        assert guard.exceeds_limit(_event(2)) is False
        assert guard.exceeds_limit(_event(3)) is True
        assert guard.stats() == {"depth_stops": 1, "reentry_stops": 0}

    def test_reentry_blocked(self, make_rule) -> None:
        """Test that a rule cannot fire again on its own chain."""
        guard = CascadeGuard()
        rule = make_rule(id="r1")
        assert guard.check(rule, _event(1, ("r1",))) == CascadeDecision.REENTRY
        assert guard.check(rule, _event(1, ("r2",))) == CascadeDecision.ALLOW
        assert guard.stats()["reentry_stops"] == 1

    def test_reentry_allowed_when_disabled(self, make_rule) -> None:
        """Test that re-entry blocking can be switched off."""
        guard = CascadeGuard(block_reentry=False)
        assert guard.check(make_rule(id="r1"), _event(1, ("r1",))) == CascadeDecision.ALLOW

    def test_check_reports_depth(self, make_rule) -> None:
        """Test that check also refuses events beyond the limit."""
        guard = CascadeGuard(max_depth=0)
        assert guard.check(make_rule(), _event(1)) == CascadeDecision.DEPTH_EXCEEDED

    def test_child_event_threads_state(self, make_rule) -> None:
        """Test that child events carry depth and the firing rule."""
        guard = CascadeGuard()
        parent = _event(1, ("r0",))
        emitted = AutomationEvent(type="priority_changed", scope_id="b1", entity_id="t1")
        child = guard.child_event(parent, make_rule(id="r1"), emitted)
        assert child.cascade_depth == 2
        assert child.cascade_rule_ids == ("r0", "r1")
        assert parent.cascade_depth == 1

    def test_reset_stats(self) -> None:
        """Test that counters can be reset."""
        guard = CascadeGuard(max_depth=0)
        guard.exceeds_limit(_event(1))
        guard.reset_stats()
        assert guard.stats() == {"depth_stops": 0, "reentry_stops": 0}
