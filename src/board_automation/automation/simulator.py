"""Dry-run projection of a candidate rule over a sample of real entities.

The simulator reuses the trigger matcher and the condition evaluator but
never the dispatcher: it reads entities, synthesises the event each entity
would produce, and describes the action statically. Nothing is written.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from ..core.config import DryRunConfig
from ..core.logger import get_logger
from ..providers.store import Person
from .actions import ActionRegistry
from .conditions import ConditionEvaluator, reads_metadata
from .models import (
    AutomationEvent,
    AutomationRule,
    DryRunPrediction,
    DryRunResult,
    TriggerType,
)
from .triggers import TriggerMatcher, strict_equals

if TYPE_CHECKING:
    from ..providers.store import Entity, EntityStore

logger = get_logger("automation.simulator")

# Field an event of each trigger type refers to when the rule does not name one
DEFAULT_TRIGGER_FIELDS: dict[TriggerType, str] = {
    TriggerType.STATUS_CHANGED: "status",
    TriggerType.PRIORITY_CHANGED: "priority",
    TriggerType.ASSIGNED: "assignees",
    TriggerType.UNASSIGNED: "assignees",
    TriggerType.MOVED_TO_GROUP: "group_id",
    TriggerType.DUE_DATE_APPROACHING: "due_date",
    TriggerType.DUE_DATE_PASSED: "due_date",
}


class DryRunSimulator:
    """Projects which sampled entities a candidate rule would fire on."""

    def __init__(
        self,
        store: EntityStore,
        registry: ActionRegistry,
        matcher: TriggerMatcher | None = None,
        evaluator: ConditionEvaluator | None = None,
        config: DryRunConfig | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.matcher = matcher or TriggerMatcher()
        self.evaluator = evaluator or ConditionEvaluator()
        self.config = config or DryRunConfig()

    def synthesize_event(
        self,
        rule: AutomationRule,
        scope_id: str,
        entity: Entity,
        metadata: Mapping[str, Any] | None = None,
    ) -> AutomationEvent:
        """Build the event ``entity`` would produce for the rule's trigger."""
        field = rule.trigger_field or DEFAULT_TRIGGER_FIELDS.get(rule.trigger_type)
        current: Any = None
        if field:
            _, current = entity.lookup(field)
            if field == "assignees":
                current = entity.assignees[0].id if entity.assignees else None
        new_value = rule.trigger_value if rule.trigger_value is not None else current
        return AutomationEvent(
            type=rule.trigger_type,
            scope_id=scope_id,
            entity_id=entity.id,
            field=field,
            previous_value=current,
            new_value=new_value,
            metadata={**(metadata or {}), "dry_run": True},
        )

    @staticmethod
    def project_entity(entity: Entity, event: AutomationEvent) -> Entity:
        """Copy of ``entity`` as it looks once the synthesised change has landed.

        Real events are published after the write, so conditions see the new value.
        """
        field, value = event.field, event.new_value
        if not field or strict_equals(event.previous_value, value):
            return entity
        if field == "assignees":
            kept = [p for p in entity.assignees if p.id != value]
            if event.type == TriggerType.ASSIGNED and value is not None:
                kept.append(Person(id=str(value)))
            return entity.model_copy(update={"assignees": kept})
        if entity.is_attribute(field):
            return entity.model_copy(update={field: value})
        return entity.model_copy(update={"custom_fields": {**entity.custom_fields, field: value}})

    async def simulate(
        self,
        rule: AutomationRule,
        scope_id: str,
        *,
        sample_size: int | None = None,
        event_metadata: Mapping[str, Any] | None = None,
    ) -> DryRunResult:
        """Project the rule over up to ``sample_size`` entities of ``scope_id``.

        Args:
            rule: Candidate rule; it does not need to be active or stored
            scope_id: Board whose entities are sampled
            sample_size: Number of entities, capped at ``max_sample_size``
            event_metadata: Metadata attached to every synthesised event

        Returns:
            Predictions per sampled entity plus warnings about the rule
        """
        size = sample_size if sample_size is not None else self.config.sample_size
        size = max(1, min(size, self.config.max_sample_size))
        warnings: list[str] = []

        if not rule.active:
            warnings.append("Rule is inactive and will not fire until it is activated")

        handler = self.registry.get(rule.action_type)
        if handler is None:
            warnings.append(
                f'Action type "{rule.action_type}" is not supported; '
                "executions would only record a stub result"
            )
        elif self._is_self_loop(rule, handler.effect(rule.action_config)):
            warnings.append(
                "Action emits an event matching this rule's own trigger; "
                "cascade protection stops it after the first firing"
            )

        if event_metadata is None and any(reads_metadata(c) for c in rule.conditions):
            warnings.append(
                "Conditions read event metadata but none was supplied; they evaluate as false"
            )

        entities = await self.store.list_entities_for_scope(scope_id, size)
        if not entities:
            warnings.append(f"No entities found in scope {scope_id} to sample")

        predictions: list[DryRunPrediction] = []
        projected: list[Entity] = []
        for stored in entities:
            event = self.synthesize_event(rule, scope_id, stored, event_metadata)
            entity = self.project_entity(stored, event)
            projected.append(entity)
            trigger_matched = self.matcher.matches_ignoring_active(rule, event)
            failed = self.evaluator.failed_conditions(rule.conditions, event, entity)
            would_fire = trigger_matched and not failed
            description = None
            if would_fire:
                description = (
                    handler.describe(rule.action_config, entity)
                    if handler is not None
                    else f'Action type "{rule.action_type}" would run as a stub'
                )
            predictions.append(
                DryRunPrediction(
                    entity_id=entity.id,
                    entity_title=entity.title,
                    trigger_matched=trigger_matched,
                    would_fire=would_fire,
                    failed_conditions=failed,
                    action_description=description,
                )
            )

        if entities:
            warnings.extend(self._condition_warnings(rule, projected, predictions))

        would_fire_count = sum(1 for p in predictions if p.would_fire)
        logger.debug(
            "Dry run of rule '%s' over %d entities: %d would fire",
            rule.name,
            len(entities),
            would_fire_count,
        )
        return DryRunResult(
            rule_id=rule.id,
            rule_name=rule.name,
            scope_id=scope_id,
            action_type=rule.action_type,
            sampled=len(entities),
            would_fire_count=would_fire_count,
            predictions=predictions,
            warnings=warnings,
        )

    @staticmethod
    def _is_self_loop(rule: AutomationRule, effect: Any) -> bool:
        if effect is None or effect.event_type != rule.trigger_type:
            return False
        if rule.trigger_field is not None and effect.field is not None:
            if rule.trigger_field != effect.field:
                return False
        if rule.trigger_value is not None and effect.value is not None:
            if not strict_equals(rule.trigger_value, effect.value):
                return False
        return True

    @staticmethod
    def _condition_warnings(
        rule: AutomationRule,
        entities: list[Entity],
        predictions: list[DryRunPrediction],
    ) -> list[str]:
        warnings: list[str] = []
        for index, condition in enumerate(rule.conditions):
            if not reads_metadata(condition) and not any(
                entity.lookup(condition.target)[0] for entity in entities
            ):
                warnings.append(
                    f'Condition {index + 1} reads "{condition.target}", '
                    "which is absent on every sampled entity"
                )
            elif all(index in p.failed_conditions for p in predictions):
                warnings.append(
                    f"Condition {index + 1} ({condition.describe()}) "
                    "is not satisfied by any sampled entity"
                )
        return warnings
