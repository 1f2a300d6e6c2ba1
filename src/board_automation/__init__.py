"""Board Automation Engine.

An event-driven rule engine for work boards:
- Trigger matching and typed condition evaluation
- Local mutation, notification, AI and document-intelligence actions
- Cascade protection for automation-caused events
- Auditable execution ledger and dry-run simulation

Example:
    ```python
    from board_automation import AutomationEngine, InMemoryEntityStore

    store = InMemoryEntityStore.from_mapping(fixtures)
    engine = AutomationEngine(store)
    results = await engine.process_event(
        {"type": "status_changed", "boardId": "b1", "taskId": "t1",
         "field": "status", "newValue": "stuck"}
    )
    ```
"""

from importlib.metadata import PackageNotFoundError, version

from .automation import (
    AutomationEngine,
    AutomationEvent,
    AutomationRule,
    DryRunResult,
    ExecutionResult,
)
from .core import EngineConfig, get_logger, setup_logging
from .providers import ActionProviders, EntityStore, InMemoryEntityStore

__all__ = [
    "__version__",
    "ActionProviders",
    "AutomationEngine",
    "AutomationEvent",
    "AutomationRule",
    "DryRunResult",
    "EngineConfig",
    "EntityStore",
    "ExecutionResult",
    "InMemoryEntityStore",
    "get_logger",
    "setup_logging",
]

try:  # pragma: no cover - best-effort during development
    __version__ = version("board-automation")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"
