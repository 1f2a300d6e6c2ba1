"""Trigger matching for automation rules.

A rule matches an event when it is active, listens for the event's type and,
where the rule narrows the trigger further, the event's ``field`` and
``new_value`` agree with it.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from ..core.logger import get_logger
from .models import AutomationEvent, AutomationRule

logger = get_logger("automation.triggers")


def strict_equals(expected: Any, actual: Any) -> bool:
    """Equality without cross-type coercion.

    ``"1"`` does not equal ``1`` and ``True`` does not equal ``1``; ints and
    floats still compare numerically.
    """
    if isinstance(expected, bool) or isinstance(actual, bool):
        return type(expected) is type(actual) and expected == actual
    numbers = (int, float)
    if isinstance(expected, numbers) and isinstance(actual, numbers):
        return expected == actual
    if type(expected) is not type(actual):
        # str-valued enums compare by value
        if isinstance(expected, str) and isinstance(actual, str):
            return str.__eq__(expected, actual)
        return False
    return bool(expected == actual)


class TriggerMatcher:
    """Decides which rules an event triggers."""

    def matches(self, rule: AutomationRule, event: AutomationEvent) -> bool:
        if not rule.active:
            return False
        return self.matches_ignoring_active(rule, event)

    def matches_ignoring_active(self, rule: AutomationRule, event: AutomationEvent) -> bool:
        """Match on trigger type, field and value only.

        Used to project candidate rules that have not been activated yet.
        """
        if rule.trigger_type != event.type:
            return False

        if rule.trigger_field is not None:
            if event.field is None or rule.trigger_field != event.field:
                return False

        if rule.trigger_value is not None:
            if event.new_value is None or not strict_equals(rule.trigger_value, event.new_value):
                return False

        return True

    def select(
        self, rules: Iterable[AutomationRule], event: AutomationEvent
    ) -> list[AutomationRule]:
        """Return the matching rules in store order."""
        matched = [rule for rule in rules if self.matches(rule, event)]
        logger.debug(
            "Event %s in scope %s matched %d rule(s)",
            event.type.value,
            event.scope_id,
            len(matched),
        )
        return matched
