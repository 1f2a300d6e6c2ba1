"""Guard against runaway chains of automation-caused events.

Depth travels on the event itself (``AutomationEvent.cascade_depth``), never
in module or engine state, so concurrent chains cannot interfere.
"""

from __future__ import annotations

from enum import Enum

from ..core.logger import get_logger
from .models import AutomationEvent, AutomationRule

logger = get_logger("automation.cascade")

DEFAULT_MAX_DEPTH = 5


class CascadeDecision(str, Enum):
    """Whether a matched rule may fire on an event."""

    ALLOW = "allow"
    DEPTH_EXCEEDED = "depth_exceeded"
    REENTRY = "reentry"


class CascadeGuard:
    """Bounds cascade depth and blocks a rule from re-firing on its own chain."""

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, block_reentry: bool = True) -> None:
        """Initialize the guard.

        Args:
            max_depth: Deepest cascade level whose events are still processed
            block_reentry: Skip rules that already fired earlier in the chain
        """
        if max_depth < 0:
            raise ValueError("max_depth must be non-negative")
        self.max_depth = max_depth
        self.block_reentry = block_reentry
        self._stats = {"depth_stops": 0, "reentry_stops": 0}

    def exceeds_limit(self, event: AutomationEvent) -> bool:
        """True when the event is too deep to be matched against any rule."""
        if event.cascade_depth > self.max_depth:
            self._stats["depth_stops"] += 1
            logger.warning(
                "cascade limit reached: %s event for %s at depth %d (max %d)",
                event.type.value,
                event.entity_id or event.scope_id,
                event.cascade_depth,
                self.max_depth,
            )
            return True
        return False

    def check(self, rule: AutomationRule, event: AutomationEvent) -> CascadeDecision:
        if event.cascade_depth > self.max_depth:
            return CascadeDecision.DEPTH_EXCEEDED
        if self.block_reentry and rule.id in event.cascade_rule_ids:
            self._stats["reentry_stops"] += 1
            logger.info(
                "Rule '%s' skipped: already fired in this cascade (depth %d)",
                rule.name,
                event.cascade_depth,
            )
            return CascadeDecision.REENTRY
        return CascadeDecision.ALLOW

    def child_event(
        self, parent: AutomationEvent, rule: AutomationRule, emitted: AutomationEvent
    ) -> AutomationEvent:
        """Carry the parent's cascade state onto an event emitted by ``rule``."""
        return emitted.model_copy(
            update={
                "cascade_depth": parent.cascade_depth + 1,
                "cascade_rule_ids": (*parent.cascade_rule_ids, rule.id),
            }
        )

    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def reset_stats(self) -> None:
        self._stats = {"depth_stops": 0, "reentry_stops": 0}
