"""Entity Store contract and an in-memory reference implementation.

The engine never talks to a database directly. Everything it reads or writes
about boards, groups, tasks and rules goes through :class:`EntityStore`. The
store is the source of truth; it is expected to provide last-write-wins
semantics, and the engine adds no locking of its own.
"""

from __future__ import annotations

import copy
import uuid
from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, Protocol, runtime_checkable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..automation.models import AutomationRule, utc_now
from ..core.logger import get_logger

logger = get_logger("providers.store")


class Person(BaseModel):
    """Someone who can be assigned to an entity."""

    id: str
    name: str = ""
    color: str = "#6366f1"


class TimeLog(BaseModel):
    """A time-tracking session recorded on an entity."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: f"tl-{uuid.uuid4().hex[:12]}")
    person_id: str = Field(default="automation", validation_alias=AliasChoices("person_id", "personId"))
    person_name: str = Field(
        default="Automation", validation_alias=AliasChoices("person_name", "personName")
    )
    hours: float = 0.0
    date: str = ""
    started_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("started_at", "startedAt")
    )
    note: str = ""

    @property
    def is_open(self) -> bool:
        return self.hours == 0


class Group(BaseModel):
    """A group (section) of a board."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    scope_id: str = Field(..., validation_alias=AliasChoices("scope_id", "boardId", "board_id"))
    title: str = ""
    position: int = 0


class Entity(BaseModel):
    """Snapshot of a board item (task) as returned by the store.

    Unknown attributes are preserved so conditions and ``update_field`` can
    address columns the engine does not model explicitly.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    scope_id: str = Field(..., validation_alias=AliasChoices("scope_id", "boardId", "board_id"))
    group_id: str | None = Field(
        default=None, validation_alias=AliasChoices("group_id", "groupId")
    )
    parent_id: str | None = Field(
        default=None, validation_alias=AliasChoices("parent_id", "parentId")
    )
    title: str = ""
    description: str = ""
    status: str | None = None
    priority: str | None = None
    assignees: list[Person] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    # date for date-only values, datetime otherwise
    due_date: Any = Field(default=None, validation_alias=AliasChoices("due_date", "dueDate"))
    time_logs: list[TimeLog] = Field(
        default_factory=list, validation_alias=AliasChoices("time_logs", "timeLogs")
    )
    time_tracked: int = Field(
        default=0, validation_alias=AliasChoices("time_tracked", "timeTracked")
    )
    custom_fields: dict[str, Any] = Field(
        default_factory=dict, validation_alias=AliasChoices("custom_fields", "customFields")
    )
    created_at: datetime = Field(
        default_factory=utc_now, validation_alias=AliasChoices("created_at", "createdAt")
    )
    updated_at: datetime = Field(
        default_factory=utc_now, validation_alias=AliasChoices("updated_at", "updatedAt")
    )

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        if isinstance(value, (date, datetime)):
            return value
        if isinstance(value, str):
            text = value.strip()
            if len(text) == 10:
                return date.fromisoformat(text)
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        raise ValueError(f"Unsupported due date: {value!r}")

    def lookup(self, name: str) -> tuple[bool, Any]:
        """Resolve an attribute, extra column or custom field by name.

        Returns:
            ``(found, value)``; ``found`` is False when the entity has no such
            attribute at all.
        """
        if name in type(self).model_fields:
            return True, getattr(self, name)
        extra = self.model_extra or {}
        if name in extra:
            return True, extra[name]
        if name in self.custom_fields:
            return True, self.custom_fields[name]
        return False, None

    def is_attribute(self, name: str) -> bool:
        return name in type(self).model_fields or name in (self.model_extra or {})


@runtime_checkable
class EntityStore(Protocol):
    """Async contract the engine uses to read and mutate domain state."""

    async def get_automation_rules_for_scope(self, scope_id: str) -> list[AutomationRule]: ...

    async def update_automation_rule(
        self, rule_id: str, partial: Mapping[str, Any]
    ) -> AutomationRule | None: ...

    async def get_entity(self, entity_id: str) -> Entity | None: ...

    async def update_entity(self, entity_id: str, partial: Mapping[str, Any]) -> Entity | None: ...

    async def create_entity(self, fields: Mapping[str, Any]) -> Entity: ...

    async def list_groups_for_scope(self, scope_id: str) -> list[Group]: ...

    async def list_entities_for_scope(self, scope_id: str, limit: int) -> list[Entity]: ...


class InMemoryEntityStore:
    """Dictionary-backed :class:`EntityStore`.

    Every read returns a copy, so callers can never mutate stored state
    without going through ``update_*``.

    Example:
        ```python
        store = InMemoryEntityStore.from_mapping(yaml.safe_load(fixtures))
        engine = AutomationEngine(store)
        ```
    """

    def __init__(self) -> None:
        self._rules: dict[str, AutomationRule] = {}
        self._entities: dict[str, Entity] = {}
        self._groups: dict[str, Group] = {}

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> InMemoryEntityStore:
        """Build a store from ``{rules: [...], groups: [...], entities: [...]}``.

        ``tasks`` is accepted as an alias of ``entities``.
        """
        store = cls()
        for group in data.get("groups") or []:
            store.add_group(Group.model_validate(group))
        for entity in data.get("entities") or data.get("tasks") or []:
            store.add_entity(Entity.model_validate(entity))
        for rule in data.get("rules") or []:
            store.add_rule(AutomationRule.model_validate(rule))
        return store

    def to_mapping(self) -> dict[str, Any]:
        """Dump the store contents in the shape accepted by :meth:`from_mapping`."""
        return {
            "rules": [rule.model_dump(mode="json") for rule in self._rules.values()],
            "groups": [group.model_dump(mode="json") for group in self._groups.values()],
            "entities": [entity.model_dump(mode="json") for entity in self._entities.values()],
        }

    # ------------------------------------------------------------------
    # Synchronous helpers for seeding
    # ------------------------------------------------------------------
    def add_rule(self, rule: AutomationRule) -> AutomationRule:
        self._rules[rule.id] = rule
        return rule

    def add_entity(self, entity: Entity) -> Entity:
        self._entities[entity.id] = entity
        return entity

    def add_group(self, group: Group) -> Group:
        self._groups[group.id] = group
        return group

    def entity_count(self) -> int:
        return len(self._entities)

    # ------------------------------------------------------------------
    # EntityStore contract
    # ------------------------------------------------------------------
    async def get_automation_rules_for_scope(self, scope_id: str) -> list[AutomationRule]:
        return [
            rule.model_copy(deep=True) for rule in self._rules.values() if rule.scope_id == scope_id
        ]

    async def get_automation_rule(self, rule_id: str) -> AutomationRule | None:
        rule = self._rules.get(rule_id)
        return rule.model_copy(deep=True) if rule else None

    async def update_automation_rule(
        self, rule_id: str, partial: Mapping[str, Any]
    ) -> AutomationRule | None:
        rule = self._rules.get(rule_id)
        if rule is None:
            logger.debug("Rule %s not found for update", rule_id)
            return None
        data = rule.model_dump()
        data.update(copy.deepcopy(dict(partial)))
        data["updated_at"] = utc_now()
        updated = AutomationRule.model_validate(data)
        self._rules[rule_id] = updated
        return updated.model_copy(deep=True)

    async def get_entity(self, entity_id: str) -> Entity | None:
        entity = self._entities.get(entity_id)
        return entity.model_copy(deep=True) if entity else None

    async def update_entity(self, entity_id: str, partial: Mapping[str, Any]) -> Entity | None:
        entity = self._entities.get(entity_id)
        if entity is None:
            return None
        data = entity.model_dump()
        data.update(copy.deepcopy(dict(partial)))
        data["updated_at"] = utc_now()
        updated = Entity.model_validate(data)
        self._entities[entity_id] = updated
        return updated.model_copy(deep=True)

    async def create_entity(self, fields: Mapping[str, Any]) -> Entity:
        data = copy.deepcopy(dict(fields))
        data.setdefault("id", str(uuid.uuid4()))
        entity = Entity.model_validate(data)
        self._entities[entity.id] = entity
        logger.debug("Created entity %s in scope %s", entity.id, entity.scope_id)
        return entity.model_copy(deep=True)

    async def list_groups_for_scope(self, scope_id: str) -> list[Group]:
        groups = [g for g in self._groups.values() if g.scope_id == scope_id]
        return [g.model_copy() for g in sorted(groups, key=lambda g: g.position)]

    async def list_entities_for_scope(self, scope_id: str, limit: int) -> list[Entity]:
        entities = [e for e in self._entities.values() if e.scope_id == scope_id]
        return [e.model_copy(deep=True) for e in entities[: max(limit, 0)]]
