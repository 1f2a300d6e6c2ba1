"""Data model for automation rules, events and execution history.

Models that mirror stored rows accept both snake_case field names and the
camelCase names used by the wrapping board application (``boardId``,
``triggerType``, ``actionConfig``...). Serialisation always uses the
snake_case names.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic_core import to_jsonable_python


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class TriggerType(str, Enum):
    """Event types a rule can listen for."""

    ITEM_CREATED = "item_created"
    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    DUE_DATE_APPROACHING = "due_date_approaching"
    DUE_DATE_PASSED = "due_date_passed"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    MOVED_TO_GROUP = "moved_to_group"
    FIELD_CHANGED = "field_changed"
    FILE_UPLOADED = "file_uploaded"
    SIGNAL_DETECTED = "signal_detected"
    CUSTOM = "custom"


class ActionType(str, Enum):
    """Action types known to the dispatcher."""

    # Local mutations
    CHANGE_STATUS = "change_status"
    CHANGE_PRIORITY = "change_priority"
    ASSIGN_PERSON = "assign_person"
    UNASSIGN_PERSON = "unassign_person"
    MOVE_TO_GROUP = "move_to_group"
    UPDATE_FIELD = "update_field"
    CREATE_ITEM = "create_item"
    CREATE_SUBTASK = "create_subtask"
    CREATE_APPROVAL_RECORD = "create_approval_record"
    START_TIME_TRACKING = "start_time_tracking"
    STOP_TIME_TRACKING = "stop_time_tracking"
    # Notifications
    SEND_NOTIFICATION = "send_notification"
    SEND_EMAIL = "send_email"
    SEND_SLACK = "send_slack"
    REQUEST_APPROVAL = "request_approval"
    ESCALATE_REVIEW = "escalate_review"
    LOG_COMPLIANCE = "log_compliance"
    TRIGGER_WEBHOOK = "trigger_webhook"
    # AI completion
    AI_CATEGORIZE = "ai_categorize"
    AI_SUMMARIZE = "ai_summarize"
    AI_EXTRACT = "ai_extract"
    AI_SENTIMENT = "ai_sentiment"
    AI_TRANSLATE = "ai_translate"
    AI_WRITE = "ai_write"
    AI_FILL_COLUMN = "ai_fill_column"
    GENERATE_CONFIRMATION = "generate_confirmation"
    # Remote document intelligence
    SYNSEEKR_ANALYZE_DOCUMENT = "synseekr_analyze_document"
    SYNSEEKR_EXTRACT_ENTITIES = "synseekr_extract_entities"
    SYNSEEKR_RAG_QUERY = "synseekr_rag_query"
    SYNSEEKR_RUN_INVESTIGATION = "synseekr_run_investigation"
    SYNSEEKR_DETECT_CONTRADICTIONS = "synseekr_detect_contradictions"
    SYNSEEKR_CLASSIFY_DOCUMENT = "synseekr_classify_document"
    SYNSEEKR_RUN_AGENT = "synseekr_run_agent"
    SYNSEEKR_SEARCH_DOCUMENTS = "synseekr_search_documents"
    SYNSEEKR_TIMELINE_EVENTS = "synseekr_timeline_events"
    # No registered handler
    CUSTOM = "custom"


class ConditionKind(str, Enum):
    """What a condition inspects."""

    STATUS = "status"
    PRIORITY = "priority"
    ASSIGNEE = "assignee"
    TAG = "tag"
    DUE_DATE = "due_date"
    FIELD = "field"
    SIGNAL_CONFIDENCE = "signal_confidence"
    PERMISSION = "permission"


class ConditionOperator(str, Enum):
    """Comparison applied by a condition."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    IN = "in"
    NOT_IN = "not_in"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    WITHIN_DAYS = "within_days"
    OVERDUE = "overdue"


class ExecutionStatus(str, Enum):
    """Lifecycle of a ledger entry."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Condition(BaseModel):
    """Typed predicate narrowing when a matched trigger fires its action.

    Rows written in the legacy ``{field, operator, value}`` shape carry no
    ``kind`` and are read as plain field comparisons.
    """

    kind: ConditionKind = Field(default=ConditionKind.FIELD, description="What is inspected")
    field: str | None = Field(default=None, description="Entity attribute or metadata key")
    operator: ConditionOperator = Field(
        default=ConditionOperator.EQUALS, description="Comparison operator"
    )
    value: Any = Field(default=None, description="Operand compared against")

    @model_validator(mode="after")
    def validate_field(self) -> Condition:
        if self.kind == ConditionKind.FIELD and not self.field:
            raise ValueError("Field conditions require 'field'")
        return self

    @property
    def target(self) -> str:
        """Attribute or metadata key the condition reads."""
        defaults = {
            ConditionKind.STATUS: "status",
            ConditionKind.PRIORITY: "priority",
            ConditionKind.ASSIGNEE: "assignees",
            ConditionKind.TAG: "tags",
            ConditionKind.DUE_DATE: "due_date",
            ConditionKind.SIGNAL_CONFIDENCE: "confidence",
            ConditionKind.PERMISSION: "permissions",
        }
        return self.field or defaults.get(self.kind, "")

    def describe(self) -> str:
        if self.operator in (ConditionOperator.IS_EMPTY, ConditionOperator.IS_NOT_EMPTY):
            return f"{self.kind.value}:{self.target} {self.operator.value}"
        return f"{self.kind.value}:{self.target} {self.operator.value} {self.value!r}"


class AutomationRule(BaseModel):
    """User-defined rule: trigger, conditions and a single action."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Rule identifier")
    scope_id: str = Field(
        ...,
        validation_alias=_alias("scope_id", "boardId", "board_id"),
        description="Board or context the rule belongs to",
    )
    name: str = Field(..., description="Rule name")
    description: str = Field(default="", description="Human-readable description")
    active: bool = Field(
        default=True,
        validation_alias=_alias("active", "isActive", "is_active"),
        description="Inactive rules never fire",
    )
    trigger_type: TriggerType = Field(
        ..., validation_alias=_alias("trigger_type", "triggerType"), description="Event type"
    )
    trigger_field: str | None = Field(
        default=None,
        validation_alias=_alias("trigger_field", "triggerField"),
        description="Event field that must match when set",
    )
    trigger_value: Any = Field(
        default=None,
        validation_alias=_alias("trigger_value", "triggerValue"),
        description="Event new value that must match (strictly) when set",
    )
    conditions: list[Condition] = Field(default_factory=list, description="Conjunctive conditions")
    action_type: str = Field(
        ..., validation_alias=_alias("action_type", "actionType"), description="Action to run"
    )
    action_config: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=_alias("action_config", "actionConfig"),
        description="Opaque configuration interpreted by the action handler",
    )
    run_count: int = Field(
        default=0, ge=0, validation_alias=_alias("run_count", "runCount"), description="Attempts"
    )
    last_run: datetime | None = Field(
        default=None, validation_alias=_alias("last_run", "lastRun"), description="Last attempt"
    )
    created_at: datetime = Field(
        default_factory=utc_now, validation_alias=_alias("created_at", "createdAt")
    )
    updated_at: datetime = Field(
        default_factory=utc_now, validation_alias=_alias("updated_at", "updatedAt")
    )

    @field_validator("trigger_field", "trigger_value", mode="before")
    @classmethod
    def blank_is_unset(cls, value: Any) -> Any:
        if value == "" and isinstance(value, str):
            return None
        return value

    @field_validator("active", mode="before")
    @classmethod
    def null_is_active(cls, value: Any) -> Any:
        return True if value is None else value

    @field_validator("run_count", mode="before")
    @classmethod
    def null_is_zero(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("action_type", mode="before")
    @classmethod
    def action_type_value(cls, value: Any) -> Any:
        if isinstance(value, ActionType):
            return value.value
        return value

    @field_validator("conditions", "action_config", mode="before")
    @classmethod
    def null_is_empty(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return [] if info.field_name == "conditions" else {}
        return value


class AutomationEvent(BaseModel):
    """Trigger payload describing one entity-lifecycle change.

    ``cascade_depth`` and ``cascade_rule_ids`` are internal: they are threaded
    through every re-entry caused by an action and are excluded from the
    serialised payload.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: TriggerType = Field(..., description="Event type")
    scope_id: str = Field(
        ...,
        min_length=1,
        validation_alias=_alias("scope_id", "boardId", "board_id"),
        description="Board or context the event happened in",
    )
    entity_id: str | None = Field(
        default=None,
        validation_alias=_alias("entity_id", "taskId", "task_id"),
        description="Entity the event refers to",
    )
    field: str | None = Field(default=None, description="Changed field name")
    previous_value: Any = Field(
        default=None, validation_alias=_alias("previous_value", "previousValue")
    )
    new_value: Any = Field(default=None, validation_alias=_alias("new_value", "newValue"))
    metadata: dict[str, Any] = Field(default_factory=dict, description="Free-form metadata")
    cascade_depth: int = Field(default=0, ge=0, exclude=True)
    cascade_rule_ids: tuple[str, ...] = Field(default=(), exclude=True)

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe copy of the public payload.

        Metadata values that have no JSON form are stored as their ``str()``.
        """
        return to_jsonable_python(self.model_dump(), fallback=str)


class ExecutionResult(BaseModel):
    """Outcome of dispatching one rule against one event."""

    rule_id: str
    rule_name: str
    success: bool
    action: str
    message: str
    timestamp: str = Field(default_factory=lambda: utc_now().isoformat())
    skipped: bool = False
    cascade_depth: int = 0


class ExecutionRecord(BaseModel):
    """Durable ledger entry for one rule execution attempt."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    rule_id: str
    rule_name: str
    scope_id: str
    entity_id: str | None = None
    action: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    success: bool | None = None
    message: str = ""
    error: str | None = None
    trigger_data: dict[str, Any] = Field(default_factory=dict)
    action_result: dict[str, Any] = Field(default_factory=dict)
    cascade_depth: int = 0
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None

    @property
    def is_final(self) -> bool:
        return self.status != ExecutionStatus.PENDING

    def to_result(self) -> ExecutionResult:
        return ExecutionResult(
            rule_id=self.rule_id,
            rule_name=self.rule_name,
            success=bool(self.success),
            action=self.action,
            message=self.message,
            timestamp=(self.completed_at or self.started_at).isoformat(),
            skipped=bool(self.action_result.get("skipped", False)),
            cascade_depth=self.cascade_depth,
        )


class DryRunPrediction(BaseModel):
    """Predicted behaviour of a candidate rule for one sampled entity."""

    entity_id: str
    entity_title: str = ""
    trigger_matched: bool
    would_fire: bool
    failed_conditions: list[int] = Field(default_factory=list)
    action_description: str | None = None


class DryRunResult(BaseModel):
    """Non-persisted projection of what a candidate rule would do."""

    rule_id: str
    rule_name: str
    scope_id: str
    action_type: str
    sampled: int = 0
    would_fire_count: int = 0
    predictions: list[DryRunPrediction] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
