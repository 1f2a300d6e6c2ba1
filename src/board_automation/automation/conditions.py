"""Condition evaluation for matched rules.

Conditions are a conjunction: a rule fires only when every condition holds.
Evaluation never raises; a condition that cannot be evaluated (missing
entity, absent field, incomparable types) is simply false.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING, Any

from ..core.logger import get_logger
from .models import AutomationEvent, Condition, ConditionKind, ConditionOperator, utc_now
from .triggers import strict_equals

if TYPE_CHECKING:
    from ..providers.store import Entity

logger = get_logger("automation.conditions")

METADATA_KINDS = frozenset({ConditionKind.SIGNAL_CONFIDENCE, ConditionKind.PERMISSION})

_MISSING = object()


def reads_metadata(condition: Condition) -> bool:
    """Whether the condition inspects event metadata rather than the entity."""
    return condition.kind in METADATA_KINDS


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, set, frozenset, dict)):
        return len(value) == 0
    return False


def _as_moment(value: Any) -> date | datetime | None:
    """Parse ISO strings into ``date``/``datetime``; naive datetimes are UTC."""
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            if len(text) == 10:
                value = date.fromisoformat(text)
            else:
                value = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return value
    return None


def _ordered(actual: Any, expected: Any) -> tuple[Any, Any] | None:
    """Bring two operands into a comparable pair, or ``None``."""
    if _is_number(actual) and _is_number(expected):
        return actual, expected
    if isinstance(actual, str) and isinstance(expected, str):
        moment_a, moment_b = _as_moment(actual), _as_moment(expected)
        if moment_a is not None and moment_b is not None:
            return _align(moment_a, moment_b)
        return actual, expected
    if isinstance(actual, date):
        moment = _as_moment(expected)
        if moment is not None:
            return _align(_as_moment(actual), moment)
    return None


def _align(left: Any, right: Any) -> tuple[Any, Any]:
    # date vs datetime: compare on calendar dates
    if isinstance(left, datetime) != isinstance(right, datetime):
        left = left.date() if isinstance(left, datetime) else left
        right = right.date() if isinstance(right, datetime) else right
    return left, right


def compare(actual: Any, operator: ConditionOperator, expected: Any) -> bool:
    """Apply ``operator`` to a value read from the entity or event."""
    if operator == ConditionOperator.IS_EMPTY:
        return _is_empty(actual)
    if operator == ConditionOperator.IS_NOT_EMPTY:
        return not _is_empty(actual)
    if operator == ConditionOperator.EQUALS:
        return strict_equals(expected, actual)
    if operator == ConditionOperator.NOT_EQUALS:
        return not strict_equals(expected, actual)
    if operator in (ConditionOperator.CONTAINS, ConditionOperator.NOT_CONTAINS):
        if actual is None:
            found = False
        elif isinstance(actual, str):
            if not isinstance(expected, str):
                return False
            found = expected in actual
        elif isinstance(actual, (list, tuple, set, frozenset, dict)):
            found = any(strict_equals(expected, item) for item in actual)
        else:
            return False
        return found if operator == ConditionOperator.CONTAINS else not found
    if operator in (ConditionOperator.IN, ConditionOperator.NOT_IN):
        if not isinstance(expected, (list, tuple, set, frozenset)):
            return False
        found = any(strict_equals(option, actual) for option in expected)
        return found if operator == ConditionOperator.IN else not found
    if operator in (
        ConditionOperator.GREATER_THAN,
        ConditionOperator.LESS_THAN,
        ConditionOperator.GREATER_OR_EQUAL,
        ConditionOperator.LESS_OR_EQUAL,
    ):
        pair = _ordered(actual, expected)
        if pair is None:
            return False
        left, right = pair
        if operator == ConditionOperator.GREATER_THAN:
            return left > right
        if operator == ConditionOperator.LESS_THAN:
            return left < right
        if operator == ConditionOperator.GREATER_OR_EQUAL:
            return left >= right
        return left <= right
    return False


class ConditionEvaluator:
    """Evaluates rule conditions against an event and an entity snapshot.

    Args:
        clock: Returns the current aware datetime; injectable for tests.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or utc_now

    def now(self) -> datetime:
        current = self._clock()
        return current if current.tzinfo else current.replace(tzinfo=UTC)

    def evaluate(
        self,
        conditions: Sequence[Condition],
        event: AutomationEvent,
        entity: Entity | None,
    ) -> bool:
        """True when every condition holds; an empty list is vacuously true."""
        return all(self.evaluate_condition(c, event, entity) for c in conditions)

    def failed_conditions(
        self,
        conditions: Sequence[Condition],
        event: AutomationEvent,
        entity: Entity | None,
    ) -> list[int]:
        """Indexes of the conditions that do not hold."""
        return [
            index
            for index, condition in enumerate(conditions)
            if not self.evaluate_condition(condition, event, entity)
        ]

    def evaluate_condition(
        self,
        condition: Condition,
        event: AutomationEvent,
        entity: Entity | None,
    ) -> bool:
        try:
            return self._evaluate(condition, event, entity)
        except Exception as exc:
            logger.debug("Condition %s evaluated as false: %s", condition.describe(), exc)
            return False

    # ------------------------------------------------------------------
    # Per-kind evaluation
    # ------------------------------------------------------------------
    def _evaluate(self, condition: Condition, event: AutomationEvent, entity: Entity | None) -> bool:
        if condition.kind == ConditionKind.SIGNAL_CONFIDENCE:
            return self._signal_confidence(condition, event)
        if condition.kind == ConditionKind.PERMISSION:
            return self._permission(condition, event)

        if entity is None:
            return False
        found, actual = entity.lookup(condition.target)
        if not found:
            return False

        if condition.kind == ConditionKind.ASSIGNEE:
            return self._assignee(condition, actual)
        if condition.kind == ConditionKind.TAG:
            return self._tag(condition, actual)
        if condition.operator == ConditionOperator.WITHIN_DAYS:
            return self._within_days(actual, condition.value)
        if condition.operator == ConditionOperator.OVERDUE:
            return self._overdue(actual)
        return compare(actual, condition.operator, condition.value)

    def _assignee(self, condition: Condition, assignees: Any) -> bool:
        people = list(assignees or [])
        op = condition.operator
        if op in (ConditionOperator.IS_EMPTY, ConditionOperator.IS_NOT_EMPTY):
            return compare(people, op, None)

        keys: set[str] = set()
        for person in people:
            for attr in ("id", "name"):
                value = person.get(attr) if isinstance(person, dict) else getattr(person, attr, None)
                if value:
                    keys.add(str(value))

        if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            options = condition.value if isinstance(condition.value, (list, tuple, set)) else None
            if options is None:
                return False
            found = any(str(option) in keys for option in options)
            return found if op == ConditionOperator.IN else not found
        if op in (ConditionOperator.EQUALS, ConditionOperator.CONTAINS):
            return condition.value is not None and str(condition.value) in keys
        if op in (ConditionOperator.NOT_EQUALS, ConditionOperator.NOT_CONTAINS):
            return condition.value is not None and str(condition.value) not in keys
        return False

    def _tag(self, condition: Condition, tags: Any) -> bool:
        values = list(tags or [])
        op = condition.operator
        if op in (ConditionOperator.IS_EMPTY, ConditionOperator.IS_NOT_EMPTY):
            return compare(values, op, None)
        if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            if not isinstance(condition.value, (list, tuple, set)):
                return False
            found = any(option in values for option in condition.value)
            return found if op == ConditionOperator.IN else not found
        if op in (ConditionOperator.EQUALS, ConditionOperator.CONTAINS):
            return condition.value in values
        if op in (ConditionOperator.NOT_EQUALS, ConditionOperator.NOT_CONTAINS):
            return condition.value not in values
        return False

    def _within_days(self, actual: Any, days: Any) -> bool:
        if not _is_number(days) or days < 0:
            return False
        due = _as_moment(actual)
        if due is None:
            return False
        now = self.now()
        if isinstance(due, datetime):
            return now <= due <= now + timedelta(days=days)
        today = now.date()
        return today <= due <= today + timedelta(days=days)

    def _overdue(self, actual: Any) -> bool:
        due = _as_moment(actual)
        if due is None:
            return False
        now = self.now()
        if isinstance(due, datetime):
            return due < now
        return due < now.date()

    def _signal_confidence(self, condition: Condition, event: AutomationEvent) -> bool:
        value = event.metadata.get(condition.field or "confidence", _MISSING)
        if value is _MISSING or not _is_number(value):
            return False
        return compare(value, condition.operator, condition.value)

    def _permission(self, condition: Condition, event: AutomationEvent) -> bool:
        permissions = event.metadata.get(condition.field or "permissions")
        if not isinstance(permissions, (list, tuple, set, frozenset)):
            return False
        op = condition.operator
        if op in (ConditionOperator.IS_EMPTY, ConditionOperator.IS_NOT_EMPTY):
            return compare(list(permissions), op, None)
        if op in (ConditionOperator.IN, ConditionOperator.NOT_IN):
            if not isinstance(condition.value, (list, tuple, set)):
                return False
            found = any(option in permissions for option in condition.value)
            return found if op == ConditionOperator.IN else not found
        if op in (ConditionOperator.NOT_EQUALS, ConditionOperator.NOT_CONTAINS):
            return condition.value not in permissions
        return condition.value in permissions
