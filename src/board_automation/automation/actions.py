"""Action handlers and the registry that dispatches them.

Every action type maps to one :class:`ActionHandler`. A handler receives the
triggering event, the rule's action config, the entity store and the
provider bundle, and returns an :class:`ActionOutcome`. Writes that change an
observable value report a follow-up event in ``emitted_events``; the engine
feeds those back through the cascade guard.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from string import Template
from typing import TYPE_CHECKING, Any

import httpx

from ..core.logger import get_logger, log_exception
from ..providers.completion import CompletionMessage, CompletionOptions
from ..providers.notifications import Notification
from .exceptions import (
    ActionError,
    EntityNotFoundError,
    ExternalServiceError,
    ServiceNotConnectedError,
    truncate_error,
)
from .models import ActionType, AutomationEvent, AutomationRule, TriggerType, utc_now

if TYPE_CHECKING:
    from ..providers.bundle import ActionProviders
    from ..providers.document_intelligence import (
        DocumentIntelligenceResponse,
        DocumentIntelligenceService,
    )
    from ..providers.store import Entity, EntityStore

logger = get_logger("automation.actions")

AI_SERVICE = "AI provider"
DOCUMENT_SERVICE = "Document intelligence"

# Entity attributes that actions must never overwrite
PROTECTED_FIELDS = frozenset({"id", "scope_id", "created_at", "updated_at"})

FIELD_EVENTS = {
    "status": TriggerType.STATUS_CHANGED,
    "priority": TriggerType.PRIORITY_CHANGED,
    "group_id": TriggerType.MOVED_TO_GROUP,
}


@dataclass(frozen=True)
class ActionEffect:
    """Static description of the event an action would emit."""

    event_type: TriggerType
    field: str | None = None
    value: Any = None


class ActionOutcome:
    """Result of one action execution."""

    def __init__(
        self,
        message: str,
        success: bool = True,
        skipped: bool = False,
        data: Any = None,
        emitted_events: list[AutomationEvent] | None = None,
    ) -> None:
        self.message = message
        self.success = success
        self.skipped = skipped
        self.data = data
        self.emitted_events = list(emitted_events or [])

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        return {
            "success": self.success,
            "message": self.message,
            "skipped": self.skipped,
            "data": _json_safe(self.data),
            "emitted_events": [e.snapshot() for e in self.emitted_events],
        }

    def __repr__(self) -> str:
        return f"<ActionOutcome success={self.success} skipped={self.skipped} message={self.message!r}>"


def _json_safe(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return json.loads(json.dumps(value, default=str))


def config_value(config: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """First non-empty value among ``keys`` (snake and camel spellings)."""
    for key in keys:
        value = config.get(key)
        if value is not None and value != "":
            return value
    return default


def build_context(event: AutomationEvent, entity: Entity | None) -> dict[str, Any]:
    """Variables available to ``$name`` placeholders in action configs."""
    context: dict[str, Any] = {}
    if entity is not None:
        context.update({k: v for k, v in entity.custom_fields.items() if str(k).isidentifier()})
        context.update(
            {
                "title": entity.title,
                "description": entity.description,
                "status": entity.status or "",
                "priority": entity.priority or "",
                "group_id": entity.group_id or "",
                "due_date": entity.due_date or "",
                "tags": ", ".join(entity.tags),
                "assignees": ", ".join(p.name or p.id for p in entity.assignees),
            }
        )
    context.update(
        {
            "scope_id": event.scope_id,
            "board_id": event.scope_id,
            "entity_id": event.entity_id or "",
            "task_id": event.entity_id or "",
            "event_type": event.type.value,
            "field": event.field or "",
            "previous_value": "" if event.previous_value is None else event.previous_value,
            "new_value": "" if event.new_value is None else event.new_value,
        }
    )
    return context


def interpolate(value: Any, context: Mapping[str, Any]) -> Any:
    """Substitute ``$name`` placeholders in strings, recursively."""
    if isinstance(value, str):
        return Template(value).safe_substitute(**context)
    if isinstance(value, dict):
        return {k: interpolate(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [interpolate(v, context) for v in value]
    return value


class ActionHandler(ABC):
    """Base class for action handlers."""

    action_type: ActionType
    label: str = "Run action"

    @abstractmethod
    async def execute(
        self,
        event: AutomationEvent,
        config: Mapping[str, Any],
        store: EntityStore,
        providers: ActionProviders,
    ) -> ActionOutcome:
        """Execute the action.

        Args:
            event: Event that triggered the rule
            config: The rule's action configuration
            store: Entity store for reads and writes
            providers: External providers

        Returns:
            ActionOutcome describing what happened

        Raises:
            ActionError: When the action cannot be completed
        """

    def describe(self, config: Mapping[str, Any], entity: Entity | None) -> str:
        """Describe what the action would do, without doing it."""
        if entity is None:
            return self.label
        return f'{self.label} for "{entity.title or entity.id}"'

    def effect(self, config: Mapping[str, Any]) -> ActionEffect | None:
        """Event this action would emit, when it emits one."""
        return None

    def follow_up(
        self,
        event: AutomationEvent,
        event_type: TriggerType,
        entity_id: str | None,
        field: str | None,
        previous: Any,
        new: Any,
        scope_id: str | None = None,
    ) -> AutomationEvent:
        return AutomationEvent(
            type=event_type,
            scope_id=scope_id or event.scope_id,
            entity_id=entity_id,
            field=field,
            previous_value=previous,
            new_value=new,
            metadata={"source": "automation", "action": self.action_type.value},
        )

    @staticmethod
    async def load_entity(event: AutomationEvent, store: EntityStore) -> Entity | None:
        if not event.entity_id:
            return None
        return await store.get_entity(event.entity_id)


# ----------------------------------------------------------------------
# Local mutations
# ----------------------------------------------------------------------
async def save_entity(store: EntityStore, entity_id: str, partial: Mapping[str, Any]) -> Entity:
    """Apply a partial update, raising :class:`EntityNotFoundError` if the entity is gone."""
    updated = await store.update_entity(entity_id, partial)
    if updated is None:
        raise EntityNotFoundError(entity_id)
    return updated


async def write_field(
    store: EntityStore, entity: Entity, field: str, value: Any
) -> tuple[bool, Any]:
    """Write one attribute or custom field; returns ``(changed, previous)``.

    Fields the entity does not model are written into ``custom_fields``.
    """
    if field in PROTECTED_FIELDS:
        raise ActionError(f'Field "{field}" cannot be updated')

    if entity.is_attribute(field):
        _, previous = entity.lookup(field)
        if previous == value:
            return False, previous
        await save_entity(store, entity.id, {field: value})
        return True, previous

    exists = field in entity.custom_fields
    previous = entity.custom_fields.get(field)
    if exists and previous == value:
        return False, previous
    custom_fields = dict(entity.custom_fields)
    custom_fields[field] = value
    await save_entity(store, entity.id, {"custom_fields": custom_fields})
    return True, previous


class _SetAttributeHandler(ActionHandler):
    """Set a single attribute (status, priority) to a configured value."""

    attribute: str
    default_value: str
    event_type: TriggerType
    noun: str

    def target_value(self, config: Mapping[str, Any]) -> Any:
        return config_value(config, self.attribute, default=self.default_value)

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        entity = await self.load_entity(event, store)
        if entity is None:
            return ActionOutcome(f"{self.noun} change skipped - no task found", skipped=True)

        new_value = interpolate(self.target_value(config), build_context(event, entity))
        previous = getattr(entity, self.attribute)
        if previous == new_value:
            return ActionOutcome(
                f'{self.noun} already "{new_value}"',
                data={"entity_id": entity.id, self.attribute: new_value, "changed": False},
            )

        await save_entity(store, entity.id, {self.attribute: new_value})
        return ActionOutcome(
            f'{self.noun} changed to "{new_value}"',
            data={"entity_id": entity.id, self.attribute: new_value, "changed": True},
            emitted_events=[
                self.follow_up(event, self.event_type, entity.id, self.attribute, previous, new_value)
            ],
        )

    def describe(self, config, entity) -> str:
        new_value = self.target_value(config)
        if entity is None:
            return f'Change {self.attribute} to "{new_value}"'
        current = getattr(entity, self.attribute)
        return f'Change {self.attribute} of "{entity.title or entity.id}" from "{current}" to "{new_value}"'

    def effect(self, config) -> ActionEffect:
        return ActionEffect(self.event_type, self.attribute, self.target_value(config))


class ChangeStatusHandler(_SetAttributeHandler):
    action_type = ActionType.CHANGE_STATUS
    attribute = "status"
    default_value = "completed"
    event_type = TriggerType.STATUS_CHANGED
    noun = "Status"


class ChangePriorityHandler(_SetAttributeHandler):
    action_type = ActionType.CHANGE_PRIORITY
    attribute = "priority"
    default_value = "high"
    event_type = TriggerType.PRIORITY_CHANGED
    noun = "Priority"


class AssignPersonHandler(ActionHandler):
    """Add a person to the entity's assignees."""

    action_type = ActionType.ASSIGN_PERSON

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        person_id = config_value(config, "person_id", "personId")
        entity = await self.load_entity(event, store) if person_id else None
        if entity is None:
            return ActionOutcome("Assignment skipped - missing task or person", skipped=True)

        person_name = config_value(config, "person_name", "personName", default=person_id)
        if any(p.id == person_id for p in entity.assignees):
            return ActionOutcome(
                f"{person_name} is already assigned",
                data={"entity_id": entity.id, "person_id": person_id, "changed": False},
            )

        person = {
            "id": person_id,
            "name": person_name,
            "color": config_value(config, "color", default="#6366f1"),
        }
        assignees = [p.model_dump() for p in entity.assignees] + [person]
        await save_entity(store, entity.id, {"assignees": assignees})
        return ActionOutcome(
            f"Assigned to {person_name}",
            data={"entity_id": entity.id, "person_id": person_id, "changed": True},
            emitted_events=[
                self.follow_up(event, TriggerType.ASSIGNED, entity.id, "assignees", None, person_id)
            ],
        )

    def describe(self, config, entity) -> str:
        person = config_value(config, "person_name", "personName", "person_id", "personId")
        target = f' "{entity.title or entity.id}"' if entity is not None else ""
        return f"Assign {person or '(no person configured)'} to{target or ' the item'}"

    def effect(self, config) -> ActionEffect:
        return ActionEffect(
            TriggerType.ASSIGNED, "assignees", config_value(config, "person_id", "personId")
        )


class UnassignPersonHandler(ActionHandler):
    """Remove a person from the entity's assignees."""

    action_type = ActionType.UNASSIGN_PERSON

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        person_id = config_value(config, "person_id", "personId")
        entity = await self.load_entity(event, store) if person_id else None
        if entity is None:
            return ActionOutcome("Unassignment skipped - missing task or person", skipped=True)

        remaining = [p for p in entity.assignees if p.id != person_id]
        if len(remaining) == len(entity.assignees):
            return ActionOutcome(
                f"{person_id} is not assigned",
                data={"entity_id": entity.id, "person_id": person_id, "changed": False},
            )

        await save_entity(store, entity.id, {"assignees": [p.model_dump() for p in remaining]})
        return ActionOutcome(
            f"Unassigned {person_id}",
            data={"entity_id": entity.id, "person_id": person_id, "changed": True},
            emitted_events=[
                self.follow_up(event, TriggerType.UNASSIGNED, entity.id, "assignees", person_id, None)
            ],
        )

    def describe(self, config, entity) -> str:
        person = config_value(config, "person_id", "personId") or "(no person configured)"
        return f"Unassign {person}"

    def effect(self, config) -> ActionEffect:
        return ActionEffect(TriggerType.UNASSIGNED, "assignees", None)


class MoveToGroupHandler(ActionHandler):
    """Move the entity to another group of its board."""

    action_type = ActionType.MOVE_TO_GROUP

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        group_id = config_value(config, "group_id", "groupId")
        entity = await self.load_entity(event, store) if group_id else None
        if entity is None:
            return ActionOutcome("Move skipped - missing task or group", skipped=True)

        groups = await store.list_groups_for_scope(entity.scope_id)
        group = next((g for g in groups if g.id == group_id), None)
        if group is None:
            return ActionOutcome(
                f"Move skipped - group {group_id} not found in board {entity.scope_id}",
                skipped=True,
            )
        if entity.group_id == group_id:
            return ActionOutcome(
                f'Already in group "{group.title or group.id}"',
                data={"entity_id": entity.id, "group_id": group_id, "changed": False},
            )

        previous = entity.group_id
        await save_entity(store, entity.id, {"group_id": group_id})
        return ActionOutcome(
            f'Moved to group "{group.title or group.id}"',
            data={"entity_id": entity.id, "group_id": group_id, "changed": True},
            emitted_events=[
                self.follow_up(
                    event, TriggerType.MOVED_TO_GROUP, entity.id, "group_id", previous, group_id
                )
            ],
        )

    def describe(self, config, entity) -> str:
        return f"Move to group {config_value(config, 'group_id', 'groupId') or '(none configured)'}"

    def effect(self, config) -> ActionEffect:
        return ActionEffect(
            TriggerType.MOVED_TO_GROUP, "group_id", config_value(config, "group_id", "groupId")
        )


class UpdateFieldHandler(ActionHandler):
    """Write a value into an attribute or custom field."""

    action_type = ActionType.UPDATE_FIELD

    @staticmethod
    def column(config: Mapping[str, Any]) -> str | None:
        return config_value(config, "column", "field")

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        column = self.column(config)
        if not column or "value" not in config or not event.entity_id:
            return ActionOutcome("Column update skipped - missing configuration", skipped=True)
        entity = await self.load_entity(event, store)
        if entity is None:
            return ActionOutcome("Column update skipped - no task found", skipped=True)

        value = interpolate(config["value"], build_context(event, entity))
        changed, previous = await write_field(store, entity, column, value)
        if not changed:
            return ActionOutcome(
                f'Column "{column}" already "{value}"',
                data={"entity_id": entity.id, "column": column, "changed": False},
            )
        event_type = FIELD_EVENTS.get(column, TriggerType.FIELD_CHANGED)
        return ActionOutcome(
            f'Column "{column}" updated to "{value}"',
            data={"entity_id": entity.id, "column": column, "changed": True},
            emitted_events=[self.follow_up(event, event_type, entity.id, column, previous, value)],
        )

    def describe(self, config, entity) -> str:
        return f'Set "{self.column(config)}" to "{config.get("value")}"'

    def effect(self, config) -> ActionEffect | None:
        column = self.column(config)
        if not column:
            return None
        return ActionEffect(FIELD_EVENTS.get(column, TriggerType.FIELD_CHANGED), column, config.get("value"))


class CreateItemHandler(ActionHandler):
    """Create a new item in a group of the target board."""

    action_type = ActionType.CREATE_ITEM

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        scope_id = config_value(config, "board_id", "boardId", "scope_id", default=event.scope_id)
        groups = await store.list_groups_for_scope(scope_id)
        if not groups:
            return ActionOutcome(
                f"Item creation skipped - no groups in board {scope_id}", skipped=True
            )

        requested = config_value(config, "group_id", "groupId")
        group = next((g for g in groups if g.id == requested), groups[0])
        source = await self.load_entity(event, store)
        context = build_context(event, source)
        title = interpolate(config_value(config, "title", "name", default="New item"), context)

        entity = await store.create_entity(
            {
                "scope_id": scope_id,
                "group_id": group.id,
                "title": title,
                "description": interpolate(config_value(config, "description", default=""), context),
                "status": config_value(config, "status", default="not-started"),
                "priority": config_value(config, "priority", default="medium"),
            }
        )
        return ActionOutcome(
            f'Item "{title}" created in group "{group.title or group.id}"',
            data={"entity_id": entity.id, "group_id": group.id, "scope_id": scope_id},
            emitted_events=[
                self.follow_up(
                    event, TriggerType.ITEM_CREATED, entity.id, None, None, None, scope_id=scope_id
                )
            ],
        )

    def describe(self, config, entity) -> str:
        title = config_value(config, "title", "name", default="New item")
        board = config_value(config, "board_id", "boardId", "scope_id")
        return f'Create item "{title}"' + (f" in board {board}" if board else "")

    def effect(self, config) -> ActionEffect:
        return ActionEffect(TriggerType.ITEM_CREATED)


class CreateSubtaskHandler(ActionHandler):
    """Create a child item under the triggering entity."""

    action_type = ActionType.CREATE_SUBTASK

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        parent = await self.load_entity(event, store)
        if parent is None:
            return ActionOutcome("Subtask creation skipped - no task found", skipped=True)

        context = build_context(event, parent)
        title = interpolate(config_value(config, "title", default="Subtask of $title"), context)
        entity = await store.create_entity(
            {
                "scope_id": parent.scope_id,
                "group_id": parent.group_id,
                "parent_id": parent.id,
                "title": title,
                "status": config_value(config, "status", default="not-started"),
                "priority": config_value(config, "priority", default=parent.priority or "medium"),
            }
        )
        return ActionOutcome(
            f'Subtask "{title}" created',
            data={"entity_id": entity.id, "parent_id": parent.id},
            emitted_events=[
                self.follow_up(
                    event, TriggerType.ITEM_CREATED, entity.id, None, None, None, scope_id=parent.scope_id
                )
            ],
        )

    def describe(self, config, entity) -> str:
        return f'Create subtask "{config_value(config, "title", default="Subtask of $title")}"'

    def effect(self, config) -> ActionEffect:
        return ActionEffect(TriggerType.ITEM_CREATED)


class CreateApprovalRecordHandler(ActionHandler):
    """Append a pending approval record to the entity's ``approvals`` field."""

    action_type = ActionType.CREATE_APPROVAL_RECORD
    label = "Create approval record"

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        entity = await self.load_entity(event, store)
        if entity is None:
            return ActionOutcome("Approval record skipped - no task found", skipped=True)

        approvals = list(entity.custom_fields.get("approvals") or [])
        record = {
            "status": "pending",
            "approver": config_value(config, "approver", default="approver"),
            "note": interpolate(config_value(config, "note", default=""), build_context(event, entity)),
            "requested_at": utc_now().isoformat(),
        }
        approvals.append(record)
        _, previous = await write_field(store, entity, "approvals", approvals)
        return ActionOutcome(
            "Approval record created",
            data={"entity_id": entity.id, "approval": record},
            emitted_events=[
                self.follow_up(
                    event, TriggerType.FIELD_CHANGED, entity.id, "approvals", len(previous or []), len(approvals)
                )
            ],
        )

    def effect(self, config) -> ActionEffect:
        return ActionEffect(TriggerType.FIELD_CHANGED, "approvals")


class StartTimeTrackingHandler(ActionHandler):
    """Open a time-tracking session on the entity."""

    action_type = ActionType.START_TIME_TRACKING
    label = "Start time tracking"

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        entity = await self.load_entity(event, store)
        if entity is None:
            return ActionOutcome("Time tracking start skipped - no task found", skipped=True)
        if entity.time_logs and entity.time_logs[-1].is_open:
            return ActionOutcome(
                "Time tracking already running", data={"entity_id": entity.id, "changed": False}
            )

        now = utc_now()
        log = {
            "id": f"tl-{int(now.timestamp() * 1000)}",
            "person_id": config_value(config, "person_id", "personId", default="automation"),
            "person_name": config_value(config, "person_name", "personName", default="Automation"),
            "hours": 0,
            "date": now.date().isoformat(),
            "started_at": now,
            "note": "Auto-started by automation",
        }
        time_logs = [entry.model_dump() for entry in entity.time_logs] + [log]
        await save_entity(store, entity.id, {"time_logs": time_logs})
        return ActionOutcome(
            "Time tracking started",
            data={"entity_id": entity.id, "time_log_id": log["id"], "changed": True},
            emitted_events=[
                self.follow_up(
                    event, TriggerType.FIELD_CHANGED, entity.id, "time_logs",
                    len(entity.time_logs), len(time_logs),
                )
            ],
        )

    def effect(self, config) -> ActionEffect:
        return ActionEffect(TriggerType.FIELD_CHANGED, "time_logs")


class StopTimeTrackingHandler(ActionHandler):
    """Close the open time-tracking session and add it to ``time_tracked``."""

    action_type = ActionType.STOP_TIME_TRACKING
    label = "Stop time tracking"
    default_hours = 0.5

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        entity = await self.load_entity(event, store)
        if entity is None or not entity.time_logs or not entity.time_logs[-1].is_open:
            return ActionOutcome("Time tracking stop skipped - no active session", skipped=True)

        last = entity.time_logs[-1]
        hours = self._elapsed_hours(last.started_at, config)
        time_logs = [entry.model_dump() for entry in entity.time_logs]
        time_logs[-1]["hours"] = hours
        time_tracked = entity.time_tracked + round(hours * 3600)
        await save_entity(store, entity.id, {"time_logs": time_logs, "time_tracked": time_tracked})
        return ActionOutcome(
            f"Time tracking stopped ({hours}h recorded)",
            data={"entity_id": entity.id, "hours": hours, "time_tracked": time_tracked},
            emitted_events=[
                self.follow_up(
                    event, TriggerType.FIELD_CHANGED, entity.id, "time_tracked",
                    entity.time_tracked, time_tracked,
                )
            ],
        )

    def _elapsed_hours(self, started_at: datetime | None, config: Mapping[str, Any]) -> float:
        fallback = float(config_value(config, "default_hours", "defaultHours", default=self.default_hours))
        if started_at is None:
            return fallback
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=UTC)
        elapsed = (utc_now() - started_at).total_seconds() / 3600
        # sessions shorter than 36 seconds still record something
        return max(round(elapsed, 2), 0.01)

    def effect(self, config) -> ActionEffect:
        return ActionEffect(TriggerType.FIELD_CHANGED, "time_tracked")


# ----------------------------------------------------------------------
# Notifications
# ----------------------------------------------------------------------
class NotificationHandler(ActionHandler):
    """Queue a notification and confirm queuing. Delivery happens elsewhere."""

    channel: str
    recipient_keys: tuple[str, ...] = ("recipient",)
    default_recipient: str = "board"
    default_message: str = "Task updated"

    def recipient(self, config: Mapping[str, Any]) -> str:
        return str(config_value(config, *self.recipient_keys, default=self.default_recipient))

    def confirmation(self, recipient: str, message: str) -> str:
        return f"Notification queued: {message}"

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        entity = await self.load_entity(event, store)
        context = build_context(event, entity)
        recipient = interpolate(self.recipient(config), context)
        message = interpolate(config_value(config, "message", default=self.default_message), context)
        notification = Notification(
            channel=self.channel,
            recipient=recipient,
            message=message,
            subject=interpolate(config_value(config, "subject", default=""), context),
            scope_id=event.scope_id,
            entity_id=event.entity_id,
            metadata={"action": self.action_type.value, "event_type": event.type.value},
        )
        if providers.notifications is not None:
            await providers.notifications.enqueue(notification)
        else:
            logger.info(
                "[%s] %s -> %s: %s", self.action_type.value, self.channel, recipient, message
            )
        return ActionOutcome(
            self.confirmation(recipient, message),
            data={"notification_id": notification.id, "channel": self.channel, "recipient": recipient},
        )

    def describe(self, config, entity) -> str:
        return f"Queue {self.channel} notification to {self.recipient(config)}"


class SendNotificationHandler(NotificationHandler):
    action_type = ActionType.SEND_NOTIFICATION
    channel = "in_app"


class SendEmailHandler(NotificationHandler):
    action_type = ActionType.SEND_EMAIL
    channel = "email"
    recipient_keys = ("to",)
    default_recipient = "team"

    def confirmation(self, recipient: str, message: str) -> str:
        return f"Email queued to {recipient}"


class SendSlackHandler(NotificationHandler):
    action_type = ActionType.SEND_SLACK
    channel = "slack"
    recipient_keys = ("channel",)
    default_recipient = "#general"

    def confirmation(self, recipient: str, message: str) -> str:
        return f"Slack message queued for {recipient}"


class RequestApprovalHandler(NotificationHandler):
    action_type = ActionType.REQUEST_APPROVAL
    channel = "approval"
    recipient_keys = ("approver", "to")
    default_recipient = "approver"
    default_message = "Approval requested for $title"

    def confirmation(self, recipient: str, message: str) -> str:
        return f"Approval request queued for {recipient}"


class EscalateReviewHandler(NotificationHandler):
    action_type = ActionType.ESCALATE_REVIEW
    channel = "escalation"
    recipient_keys = ("escalate_to", "escalateTo")
    default_recipient = "senior attorney"
    default_message = "Review escalated for $title"

    def confirmation(self, recipient: str, message: str) -> str:
        return f"Review escalated to {recipient}"


class LogComplianceHandler(NotificationHandler):
    action_type = ActionType.LOG_COMPLIANCE
    channel = "compliance"
    default_recipient = "compliance-log"
    default_message = "$event_type on $title"

    def confirmation(self, recipient: str, message: str) -> str:
        return "Compliance event queued"


class TriggerWebhookHandler(ActionHandler):
    """POST the event to a configured URL."""

    action_type = ActionType.TRIGGER_WEBHOOK

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        url = config_value(config, "url")
        if not url:
            raise ActionError("Webhook URL is required", self.action_type.value)

        entity = await self.load_entity(event, store)
        context = build_context(event, entity)
        url = interpolate(url, context)
        payload = {
            "event": event.snapshot(),
            "data": interpolate(config.get("payload") or {}, context),
        }
        headers = interpolate(dict(config.get("headers") or {}), context)
        timeout = float(config_value(config, "timeout", default=providers.http_timeout))

        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, json=_json_safe(payload), headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExternalServiceError(
                f"HTTP {exc.response.status_code}", "Webhook", self.action_type.value,
                exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                str(exc) or type(exc).__name__, "Webhook", self.action_type.value
            ) from exc

        return ActionOutcome(
            f"Webhook delivered to {url} ({response.status_code})",
            data={"status_code": response.status_code},
        )

    def describe(self, config, entity) -> str:
        return f"POST event to {config_value(config, 'url') or '(no URL configured)'}"


# ----------------------------------------------------------------------
# AI completion
# ----------------------------------------------------------------------
def entity_prompt(entity: Entity) -> str:
    """Render an entity snapshot as prompt text."""
    lines = [f"Title: {entity.title}"]
    if entity.description:
        lines.append(f"Description: {entity.description}")
    if entity.status:
        lines.append(f"Status: {entity.status}")
    if entity.priority:
        lines.append(f"Priority: {entity.priority}")
    if entity.tags:
        lines.append(f"Tags: {', '.join(entity.tags)}")
    if entity.due_date:
        lines.append(f"Due date: {entity.due_date}")
    for key, value in entity.custom_fields.items():
        if value not in (None, "", [], {}):
            lines.append(f"{key}: {value}")
    return "\n".join(lines)


_CODE_FENCE = re.compile(r"^```[a-zA-Z]*\s*|\s*```$")


def parse_json_object(text: str) -> dict[str, Any]:
    """Extract the first JSON object from a model reply."""
    cleaned = _CODE_FENCE.sub("", text.strip())
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end < start:
        raise ActionError("AI response did not contain a JSON object")
    try:
        data = json.loads(cleaned[start : end + 1])
    except json.JSONDecodeError as exc:
        raise ActionError(f"AI response was not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ActionError("AI response was not a JSON object")
    return data


class AICompletionHandler(ActionHandler):
    """Ask the completion provider about the entity and store the answer."""

    noun: str = "AI content"
    target_field: str = "ai_output"
    instruction: str = ""
    system_prompt: str = (
        "You assist a legal team managing matters on a work board. Be precise and concise."
    )

    def build_instruction(self, config: Mapping[str, Any]) -> str:
        return str(config_value(config, "prompt", "instruction", default=self.instruction))

    def target(self, config: Mapping[str, Any]) -> str:
        return str(config_value(config, "target_field", "targetField", default=self.target_field))

    def postprocess(self, text: str) -> Any:
        return text.strip()

    async def complete(
        self,
        providers: ActionProviders,
        config: Mapping[str, Any],
        prompt: str,
    ) -> str:
        if providers.completion is None:
            raise ServiceNotConnectedError(AI_SERVICE, self.action_type.value)
        messages = [
            CompletionMessage(
                role="system",
                content=str(config_value(config, "system_prompt", default=self.system_prompt)),
            ),
            CompletionMessage(role="user", content=prompt),
        ]
        options = CompletionOptions(
            temperature=config.get("temperature"), max_tokens=config.get("max_tokens")
        )
        try:
            return await providers.completion.complete(messages, options)
        except ActionError:
            raise
        except Exception as exc:
            raise ExternalServiceError(
                str(exc) or type(exc).__name__, AI_SERVICE, self.action_type.value
            ) from exc

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        if providers.completion is None:
            raise ServiceNotConnectedError(AI_SERVICE, self.action_type.value)
        entity = await self.load_entity(event, store)
        if entity is None:
            return ActionOutcome(f"{self.noun} skipped - no task found", skipped=True)

        instruction = interpolate(self.build_instruction(config), build_context(event, entity))
        reply = await self.complete(providers, config, f"{instruction}\n\n{entity_prompt(entity)}")
        value = self.postprocess(reply)

        field = self.target(config)
        changed, previous = await write_field(store, entity, field, value)
        emitted = []
        if changed:
            event_type = FIELD_EVENTS.get(field, TriggerType.FIELD_CHANGED)
            emitted.append(self.follow_up(event, event_type, entity.id, field, previous, value))
        return ActionOutcome(
            f'{self.noun} written to "{field}"',
            data={"entity_id": entity.id, "field": field, "value": value, "changed": changed},
            emitted_events=emitted,
        )

    def describe(self, config, entity) -> str:
        return f'Generate {self.noun.lower()} into "{self.target(config)}"'

    def effect(self, config) -> ActionEffect:
        field = self.target(config)
        return ActionEffect(FIELD_EVENTS.get(field, TriggerType.FIELD_CHANGED), field)


class AISummarizeHandler(AICompletionHandler):
    action_type = ActionType.AI_SUMMARIZE
    noun = "AI summary"
    target_field = "summary"
    instruction = "Summarize this item in two or three sentences."


class AIExtractHandler(AICompletionHandler):
    action_type = ActionType.AI_EXTRACT
    noun = "AI extraction"
    target_field = "extracted_data"
    instruction = (
        "Extract the key facts (parties, dates, amounts, obligations) from this item "
        "as a concise bullet list."
    )


class AISentimentHandler(AICompletionHandler):
    action_type = ActionType.AI_SENTIMENT
    noun = "AI sentiment"
    target_field = "sentiment"
    instruction = (
        "Classify the overall sentiment of this item as positive, neutral or negative. "
        "Reply with that single word."
    )

    def postprocess(self, text: str) -> Any:
        word = text.strip().strip(".").lower()
        return word if word in {"positive", "neutral", "negative"} else text.strip()


class AITranslateHandler(AICompletionHandler):
    action_type = ActionType.AI_TRANSLATE
    noun = "AI translation"
    target_field = "translation"

    def build_instruction(self, config: Mapping[str, Any]) -> str:
        language = config_value(config, "target_language", "targetLanguage", default="Spanish")
        return str(
            config_value(
                config,
                "prompt",
                default=f"Translate the title and description of this item into {language}.",
            )
        )


class AIWriteHandler(AICompletionHandler):
    action_type = ActionType.AI_WRITE
    noun = "AI content"
    target_field = "description"
    instruction = "Write a short, professional description for this item."


class AIFillColumnHandler(AICompletionHandler):
    action_type = ActionType.AI_FILL_COLUMN
    noun = "AI column value"

    def target(self, config: Mapping[str, Any]) -> str:
        column = config_value(config, "column", "target_field", "targetField")
        if not column:
            raise ActionError("column is required", self.action_type.value)
        return str(column)

    def build_instruction(self, config: Mapping[str, Any]) -> str:
        return str(
            config_value(
                config,
                "prompt",
                default=(
                    f'Provide a value for the "{self.target(config)}" column of this item. '
                    "Reply with the value only."
                ),
            )
        )

    def describe(self, config, entity) -> str:
        column = config_value(config, "column", "target_field", "targetField") or "(no column)"
        return f'Fill column "{column}" with AI'

    def effect(self, config) -> ActionEffect | None:
        column = config_value(config, "column", "target_field", "targetField")
        if not column:
            return None
        return ActionEffect(FIELD_EVENTS.get(column, TriggerType.FIELD_CHANGED), column)


class GenerateConfirmationHandler(AICompletionHandler):
    action_type = ActionType.GENERATE_CONFIRMATION
    noun = "Confirmation letter"
    target_field = "confirmation"
    instruction = "Draft a brief, formal confirmation letter for this item."


class AICategorizeHandler(AICompletionHandler):
    """Ask for tags and merge them into the entity's tag set.

    Repeated runs with the same model answer leave the tags unchanged.
    """

    action_type = ActionType.AI_CATEGORIZE
    noun = "AI categorization"
    target_field = "tags"

    def build_instruction(self, config: Mapping[str, Any]) -> str:
        categories = config.get("categories") or []
        instruction = (
            'Categorize this item. Reply with a JSON object of the form {"tags": ["..."]} '
            "and nothing else."
        )
        if categories:
            instruction += " Choose only from these tags: " + ", ".join(map(str, categories)) + "."
        return str(config_value(config, "prompt", default=instruction))

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        if providers.completion is None:
            raise ServiceNotConnectedError(AI_SERVICE, self.action_type.value)
        entity = await self.load_entity(event, store)
        if entity is None:
            return ActionOutcome("AI categorization skipped - no task found", skipped=True)

        instruction = interpolate(self.build_instruction(config), build_context(event, entity))
        reply = await self.complete(providers, config, f"{instruction}\n\n{entity_prompt(entity)}")
        raw_tags = parse_json_object(reply).get("tags") or []
        if not isinstance(raw_tags, list):
            raise ActionError("AI response 'tags' must be a list", self.action_type.value)

        suggested = [str(tag).strip() for tag in raw_tags if str(tag).strip()]
        allowed = config.get("categories") or []
        if allowed:
            suggested = [tag for tag in suggested if tag in allowed]

        existing = set(entity.tags)
        added = [tag for tag in dict.fromkeys(suggested) if tag not in existing]
        merged = list(dict.fromkeys([*entity.tags, *added]))
        if not added and merged == entity.tags:
            return ActionOutcome(
                "AI categorization found no new tags",
                data={"entity_id": entity.id, "tags": merged, "added": [], "changed": False},
            )

        await save_entity(store, entity.id, {"tags": merged})
        message = (
            f"AI categorization added tags: {', '.join(added)}"
            if added
            else "AI categorization found no new tags (duplicates removed)"
        )
        return ActionOutcome(
            message,
            data={"entity_id": entity.id, "tags": merged, "added": added, "changed": True},
            emitted_events=[
                self.follow_up(event, TriggerType.FIELD_CHANGED, entity.id, "tags", entity.tags, merged)
            ],
        )

    def describe(self, config, entity) -> str:
        return "Categorize with AI and merge suggested tags"

    def effect(self, config) -> ActionEffect:
        return ActionEffect(TriggerType.FIELD_CHANGED, "tags")


# ----------------------------------------------------------------------
# Remote document intelligence
# ----------------------------------------------------------------------
class DocumentIntelligenceHandler(ActionHandler):
    """Call one capability of the remote document-intelligence service."""

    noun: str = "Document intelligence request"

    @abstractmethod
    async def call(
        self,
        service: DocumentIntelligenceService,
        event: AutomationEvent,
        config: Mapping[str, Any],
        context: Mapping[str, Any],
        entity: Entity | None,
    ) -> DocumentIntelligenceResponse:
        """Invoke the capability."""

    @staticmethod
    def case_id(event: AutomationEvent, config: Mapping[str, Any], entity: Entity | None) -> str:
        value = config_value(config, "case_id", "caseId") or config_value(
            event.metadata, "case_id", "caseId"
        )
        if value is None and entity is not None:
            value = config_value(entity.custom_fields, "case_id", "caseId")
        return str(value or event.scope_id)

    def document_id(self, event: AutomationEvent, config: Mapping[str, Any]) -> str:
        value = config_value(config, "document_id", "documentId") or config_value(
            event.metadata, "document_id", "documentId", "file_id", "fileId"
        )
        if not value:
            raise ActionError("document_id is required", self.action_type.value)
        return str(value)

    def required(self, config: Mapping[str, Any], context: Mapping[str, Any], *keys: str) -> str:
        value = config_value(config, *keys)
        if not value:
            raise ActionError(f"{keys[0]} is required", self.action_type.value)
        return str(interpolate(value, context))

    async def execute(self, event, config, store, providers) -> ActionOutcome:
        service = providers.document_intelligence
        if service is None or not service.is_enabled():
            raise ServiceNotConnectedError(DOCUMENT_SERVICE, self.action_type.value)

        entity = await self.load_entity(event, store)
        context = build_context(event, entity)
        response = await self.call(service, event, config, context, entity)
        if not response.success:
            raise ExternalServiceError(
                response.error or "request failed",
                DOCUMENT_SERVICE,
                self.action_type.value,
                response.status_code,
            )

        emitted = []
        field = config_value(config, "target_field", "targetField")
        if field and entity is not None:
            changed, previous = await write_field(store, entity, str(field), response.data)
            if changed:
                emitted.append(
                    self.follow_up(
                        event, TriggerType.FIELD_CHANGED, entity.id, str(field), previous, response.data
                    )
                )
        return ActionOutcome(
            f"{self.noun} completed",
            data={"status_code": response.status_code, "result": response.data},
            emitted_events=emitted,
        )

    def describe(self, config, entity) -> str:
        return f"{self.noun} via document intelligence"

    def effect(self, config) -> ActionEffect | None:
        field = config_value(config, "target_field", "targetField")
        return ActionEffect(TriggerType.FIELD_CHANGED, str(field)) if field else None


class AnalyzeDocumentHandler(DocumentIntelligenceHandler):
    action_type = ActionType.SYNSEEKR_ANALYZE_DOCUMENT
    noun = "Document analysis"

    async def call(self, service, event, config, context, entity):
        return await service.analyze_document(self.document_id(event, config))


class ExtractEntitiesHandler(DocumentIntelligenceHandler):
    action_type = ActionType.SYNSEEKR_EXTRACT_ENTITIES
    noun = "Entity extraction"

    async def call(self, service, event, config, context, entity):
        return await service.extract_entities(self.case_id(event, config, entity))


class RagQueryHandler(DocumentIntelligenceHandler):
    action_type = ActionType.SYNSEEKR_RAG_QUERY
    noun = "Case query"

    async def call(self, service, event, config, context, entity):
        query = self.required(config, context, "query")
        return await service.rag_query(query, self.case_id(event, config, entity))


class RunInvestigationHandler(DocumentIntelligenceHandler):
    action_type = ActionType.SYNSEEKR_RUN_INVESTIGATION
    noun = "Investigation"

    async def call(self, service, event, config, context, entity):
        return await service.run_investigation(self.case_id(event, config, entity))


class DetectContradictionsHandler(DocumentIntelligenceHandler):
    action_type = ActionType.SYNSEEKR_DETECT_CONTRADICTIONS
    noun = "Contradiction detection"

    async def call(self, service, event, config, context, entity):
        return await service.detect_contradictions(self.case_id(event, config, entity))


class ClassifyDocumentHandler(DocumentIntelligenceHandler):
    action_type = ActionType.SYNSEEKR_CLASSIFY_DOCUMENT
    noun = "Document classification"

    async def call(self, service, event, config, context, entity):
        return await service.classify_document(self.document_id(event, config))


class RunAgentHandler(DocumentIntelligenceHandler):
    action_type = ActionType.SYNSEEKR_RUN_AGENT
    noun = "Agent run"

    async def call(self, service, event, config, context, entity):
        agent = self.required(config, context, "agent", "agent_name", "agentName")
        return await service.run_agent(agent, self.case_id(event, config, entity))


class SearchDocumentsHandler(DocumentIntelligenceHandler):
    action_type = ActionType.SYNSEEKR_SEARCH_DOCUMENTS
    noun = "Document search"

    async def call(self, service, event, config, context, entity):
        return await service.search_documents(self.required(config, context, "query"))


class TimelineEventsHandler(DocumentIntelligenceHandler):
    action_type = ActionType.SYNSEEKR_TIMELINE_EVENTS
    noun = "Timeline retrieval"

    async def call(self, service, event, config, context, entity):
        return await service.get_timeline_events(self.case_id(event, config, entity))


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------
class ActionRegistry:
    """Maps action-type strings to handler instances."""

    def __init__(self) -> None:
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, handler: ActionHandler, action_type: str | ActionType | None = None) -> None:
        key = action_type or handler.action_type
        key = key.value if isinstance(key, ActionType) else str(key)
        if key in self._handlers:
            logger.debug("Replacing handler for action type %s", key)
        self._handlers[key] = handler

    def get(self, action_type: str | ActionType) -> ActionHandler | None:
        key = action_type.value if isinstance(action_type, ActionType) else str(action_type)
        return self._handlers.get(key)

    def supported_types(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, action_type: object) -> bool:
        if isinstance(action_type, ActionType):
            action_type = action_type.value
        return action_type in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    async def dispatch(
        self,
        rule: AutomationRule,
        event: AutomationEvent,
        store: EntityStore,
        providers: ActionProviders,
    ) -> ActionOutcome:
        """Run the rule's action. Never raises.

        Unknown action types yield a successful stub outcome. Handler errors
        become ``success=False`` outcomes with truncated error text.
        """
        handler = self.get(rule.action_type)
        if handler is None:
            logger.warning("No handler for action type %s (rule %s)", rule.action_type, rule.id)
            return ActionOutcome(
                f'Action type "{rule.action_type}" is not supported (stub)',
                data={"supported": False},
            )

        try:
            return await handler.execute(event, rule.action_config, store, providers)
        except EntityNotFoundError as exc:
            logger.info("Rule '%s' action %s skipped: %s", rule.name, rule.action_type, exc)
            return ActionOutcome(
                f"Action {rule.action_type} skipped - task {exc.entity_id} no longer exists",
                skipped=True,
            )
        except ActionError as exc:
            logger.warning("Rule '%s' action %s failed: %s", rule.name, rule.action_type, exc)
            return ActionOutcome(truncate_error(str(exc)), success=False)
        except Exception as exc:
            log_exception(logger, exc, f"Rule '{rule.name}' action {rule.action_type}")
            return ActionOutcome(truncate_error(str(exc) or type(exc).__name__), success=False)


DEFAULT_HANDLERS: tuple[type[ActionHandler], ...] = (
    ChangeStatusHandler,
    ChangePriorityHandler,
    AssignPersonHandler,
    UnassignPersonHandler,
    MoveToGroupHandler,
    UpdateFieldHandler,
    CreateItemHandler,
    CreateSubtaskHandler,
    CreateApprovalRecordHandler,
    StartTimeTrackingHandler,
    StopTimeTrackingHandler,
    SendNotificationHandler,
    SendEmailHandler,
    SendSlackHandler,
    RequestApprovalHandler,
    EscalateReviewHandler,
    LogComplianceHandler,
    TriggerWebhookHandler,
    AICategorizeHandler,
    AISummarizeHandler,
    AIExtractHandler,
    AISentimentHandler,
    AITranslateHandler,
    AIWriteHandler,
    AIFillColumnHandler,
    GenerateConfirmationHandler,
    AnalyzeDocumentHandler,
    ExtractEntitiesHandler,
    RagQueryHandler,
    RunInvestigationHandler,
    DetectContradictionsHandler,
    ClassifyDocumentHandler,
    RunAgentHandler,
    SearchDocumentsHandler,
    TimelineEventsHandler,
)


def create_default_registry() -> ActionRegistry:
    """Registry with a handler for every action type except ``custom``."""
    registry = ActionRegistry()
    for handler_class in DEFAULT_HANDLERS:
        registry.register(handler_class())
    return registry


__all__ = [
    "ActionEffect",
    "ActionHandler",
    "ActionOutcome",
    "ActionRegistry",
    "DEFAULT_HANDLERS",
    "build_context",
    "config_value",
    "create_default_registry",
    "interpolate",
    "parse_json_object",
    "save_entity",
    "write_field",
]
