"""Automation engine facade.

This module provides the AutomationEngine class that coordinates:
- Rule loading per scope and trigger matching
- Condition evaluation against a single entity snapshot per event
- Action dispatch (parallel or sequential) with per-rule failure isolation
- Cascade handling of events emitted by actions
- Execution ledger, run counters and the recent-activity ring
- Dry-run simulation of candidate rules
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from ..core.config import EngineConfig
from ..core.logger import get_logger, log_exception
from ..providers.bundle import ActionProviders
from .actions import ActionOutcome, ActionRegistry, create_default_registry
from .cascade import CascadeDecision, CascadeGuard
from .conditions import ConditionEvaluator, reads_metadata
from .exceptions import InvalidEventError, InvalidRuleError, truncate_error
from .ledger import ExecutionLedger, InMemoryLedgerStore, RecentExecutions, SQLLedgerStore, record_run
from .models import AutomationEvent, AutomationRule, DryRunResult, ExecutionResult
from .simulator import DryRunSimulator
from .triggers import TriggerMatcher

if TYPE_CHECKING:
    from ..providers.store import Entity, EntityStore

logger = get_logger("automation")


class AutomationEngine:
    """Matches events against rules and runs their actions.

    Example:
        ```python
        engine = AutomationEngine(store, providers=ActionProviders(notifications=outbox))
        results = await engine.process_event(
            {"type": "status_changed", "boardId": "b1", "taskId": "t1",
             "field": "status", "newValue": "stuck"}
        )
        ```
    """

    def __init__(
        self,
        store: EntityStore,
        providers: ActionProviders | None = None,
        config: EngineConfig | None = None,
        *,
        registry: ActionRegistry | None = None,
        matcher: TriggerMatcher | None = None,
        evaluator: ConditionEvaluator | None = None,
        guard: CascadeGuard | None = None,
        ledger: ExecutionLedger | None = None,
        recent: RecentExecutions | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store
        self.providers = providers or ActionProviders(http_timeout=self.config.http.timeout)
        self.registry = registry or create_default_registry()
        self.matcher = matcher or TriggerMatcher()
        self.evaluator = evaluator or ConditionEvaluator(clock)
        self.guard = guard or CascadeGuard(
            self.config.cascade.max_depth, self.config.cascade.block_reentry
        )
        self.ledger = ledger or self._default_ledger()
        self.recent = recent or RecentExecutions(self.config.ledger.recent_capacity)
        self.simulator = DryRunSimulator(
            store, self.registry, self.matcher, self.evaluator, self.config.dry_run
        )
        self._stats = {
            "events_processed": 0,
            "rules_fired": 0,
            "failures": 0,
            "skipped": 0,
        }

    def _default_ledger(self) -> ExecutionLedger:
        if not self.config.ledger.enabled:
            return ExecutionLedger(None)
        if self.config.ledger.database_url:
            return ExecutionLedger(SQLLedgerStore(self.config.ledger.database_url))
        return ExecutionLedger(InMemoryLedgerStore())

    # ------------------------------------------------------------------
    # Event processing
    # ------------------------------------------------------------------
    @staticmethod
    def _coerce_event(event: AutomationEvent | Mapping[str, Any]) -> AutomationEvent:
        if isinstance(event, AutomationEvent):
            return event
        try:
            return AutomationEvent.model_validate(event)
        except ValidationError as exc:
            raise InvalidEventError(f"Invalid automation event: {exc}") from exc

    async def process_event(
        self, event: AutomationEvent | Mapping[str, Any]
    ) -> list[ExecutionResult]:
        """Run every rule the event triggers, then any cascades they cause.

        Args:
            event: Event model or a mapping using snake_case or camelCase keys

        Returns:
            One result per fired rule; results of follow-up events come after
            those of the event that caused them

        Raises:
            InvalidEventError: If the event is malformed
        """
        event = self._coerce_event(event)
        self._stats["events_processed"] += 1
        return await self._process(event)

    async def _process(self, event: AutomationEvent) -> list[ExecutionResult]:
        if self.guard.exceeds_limit(event):
            return []

        try:
            rules = await self.store.get_automation_rules_for_scope(event.scope_id)
        except Exception as exc:
            log_exception(logger, exc, f"Failed to load rules for scope {event.scope_id}")
            return []

        matched = self.matcher.select(rules, event)
        if not matched:
            return []

        entity = await self._snapshot(event, matched)
        ready: list[AutomationRule] = []
        for rule in matched:
            if self.guard.check(rule, event) != CascadeDecision.ALLOW:
                continue
            if not self.evaluator.evaluate(rule.conditions, event, entity):
                logger.debug("Rule '%s' conditions not met for %s", rule.name, event.entity_id)
                continue
            ready.append(rule)

        if self.config.dispatch.mode == "sequential":
            runs = [await self._run_rule(rule, event) for rule in ready]
        else:
            runs = list(await asyncio.gather(*(self._run_rule(rule, event) for rule in ready)))

        results = [result for result, _ in runs]
        for _, children in runs:
            for child in children:
                results.extend(await self._process(child))
        return results

    async def _snapshot(
        self, event: AutomationEvent, rules: list[AutomationRule]
    ) -> Entity | None:
        """Fetch the entity once per event, only when a condition needs it."""
        if not event.entity_id:
            return None
        needs_entity = any(
            not reads_metadata(condition) for rule in rules for condition in rule.conditions
        )
        if not needs_entity:
            return None
        try:
            return await self.store.get_entity(event.entity_id)
        except Exception as exc:
            logger.error("Failed to load entity %s: %s", event.entity_id, exc)
            return None

    async def _run_rule(
        self, rule: AutomationRule, event: AutomationEvent
    ) -> tuple[ExecutionResult, list[AutomationEvent]]:
        record = await self.ledger.begin(rule, event)
        try:
            outcome = await self.registry.dispatch(rule, event, self.store, self.providers)
        except Exception as exc:
            log_exception(logger, exc, f"Dispatch of rule '{rule.name}' failed")
            outcome = ActionOutcome(truncate_error(str(exc) or type(exc).__name__), success=False)

        if outcome.success:
            await self.ledger.complete(record, outcome)
        else:
            await self.ledger.fail(record, outcome.message, outcome)
        await record_run(self.store, rule)

        result = ExecutionResult(
            rule_id=rule.id,
            rule_name=rule.name,
            success=outcome.success,
            action=rule.action_type,
            message=outcome.message,
            skipped=outcome.skipped,
            cascade_depth=event.cascade_depth,
        )
        self.recent.add(result)
        self._stats["rules_fired"] += 1
        if not outcome.success:
            self._stats["failures"] += 1
        if outcome.skipped:
            self._stats["skipped"] += 1
        logger.info(
            "Rule '%s' ran %s: %s (%s)",
            rule.name,
            rule.action_type,
            "ok" if outcome.success else "failed",
            outcome.message,
        )

        if not outcome.success:
            return result, []
        children = [self.guard.child_event(event, rule, e) for e in outcome.emitted_events]
        return result, children

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------
    async def dry_run_rule(
        self,
        candidate: AutomationRule | Mapping[str, Any],
        scope_id: str,
        sample_size: int | None = None,
        event_metadata: Mapping[str, Any] | None = None,
    ) -> DryRunResult:
        """Project what a rule would do without executing or recording anything."""
        if not isinstance(candidate, AutomationRule):
            data = dict(candidate)
            if not any(key in data for key in ("scope_id", "boardId", "board_id")):
                data["scope_id"] = scope_id
            try:
                candidate = AutomationRule.model_validate(data)
            except ValidationError as exc:
                raise InvalidRuleError(f"Invalid automation rule: {exc}") from exc
        return await self.simulator.simulate(
            candidate, scope_id, sample_size=sample_size, event_metadata=event_metadata
        )

    # ------------------------------------------------------------------
    # Recent activity and statistics
    # ------------------------------------------------------------------
    def get_recent_executions(self, limit: int = 50) -> list[ExecutionResult]:
        """Most recent execution results, newest first."""
        return self.recent.list(limit)

    def clear_recent_executions(self) -> None:
        self.recent.clear()

    def stats(self) -> dict[str, Any]:
        guard_stats = self.guard.stats()
        return {
            **self._stats,
            "cascade_depth_stops": guard_stats["depth_stops"],
            "cascade_reentry_stops": guard_stats["reentry_stops"],
            "recent_executions": len(self.recent),
            "registered_actions": len(self.registry),
        }
