"""Automation engine for board events.

This module provides:
- AutomationEngine: facade that processes events and runs dry runs
- TriggerMatcher and ConditionEvaluator deciding which rules fire
- ActionRegistry with a handler per action type
- CascadeGuard bounding automation-caused event chains
- ExecutionLedger, ledger stores and the recent-activity ring
- DryRunSimulator projecting candidate rules over sampled entities
"""

from .actions import (
    ActionEffect,
    ActionHandler,
    ActionOutcome,
    ActionRegistry,
    create_default_registry,
)
from .cascade import CascadeDecision, CascadeGuard
from .conditions import ConditionEvaluator
from .engine import AutomationEngine
from .exceptions import (
    ActionError,
    AutomationError,
    EntityNotFoundError,
    ExternalServiceError,
    InvalidEventError,
    InvalidRuleError,
    LedgerError,
    ServiceNotConnectedError,
)
from .ledger import (
    ExecutionLedger,
    InMemoryLedgerStore,
    LedgerStore,
    RecentExecutions,
    SQLLedgerStore,
)
from .models import (
    ActionType,
    AutomationEvent,
    AutomationRule,
    Condition,
    ConditionKind,
    ConditionOperator,
    DryRunPrediction,
    DryRunResult,
    ExecutionRecord,
    ExecutionResult,
    ExecutionStatus,
    TriggerType,
)
from .simulator import DryRunSimulator
from .triggers import TriggerMatcher

__all__ = [
    # Engine
    "AutomationEngine",
    # Models
    "ActionType",
    "AutomationEvent",
    "AutomationRule",
    "Condition",
    "ConditionKind",
    "ConditionOperator",
    "DryRunPrediction",
    "DryRunResult",
    "ExecutionRecord",
    "ExecutionResult",
    "ExecutionStatus",
    "TriggerType",
    # Matching
    "TriggerMatcher",
    "ConditionEvaluator",
    # Actions
    "ActionEffect",
    "ActionHandler",
    "ActionOutcome",
    "ActionRegistry",
    "create_default_registry",
    # Cascade
    "CascadeDecision",
    "CascadeGuard",
    # Ledger
    "ExecutionLedger",
    "InMemoryLedgerStore",
    "LedgerStore",
    "RecentExecutions",
    "SQLLedgerStore",
    # Simulation
    "DryRunSimulator",
    # Errors
    "ActionError",
    "AutomationError",
    "EntityNotFoundError",
    "ExternalServiceError",
    "InvalidEventError",
    "InvalidRuleError",
    "LedgerError",
    "ServiceNotConnectedError",
]
