"""Execution history: durable ledger, ledger stores and the recent-activity ring.

Each rule execution produces one :class:`ExecutionRecord`. The record is
written as ``pending`` before the action runs (when the store supports
partial writes) and finalised exactly once as ``completed`` or ``failed``.
Ledger storage problems never fail an action: they are logged and swallowed.
"""

from __future__ import annotations

import asyncio
import itertools
from collections import deque
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Session
from sqlalchemy.pool import StaticPool

from ..core.logger import get_logger
from .exceptions import LedgerError, truncate_error
from .models import (
    AutomationEvent,
    AutomationRule,
    ExecutionRecord,
    ExecutionResult,
    ExecutionStatus,
    utc_now,
)

if TYPE_CHECKING:
    from ..providers.store import EntityStore
    from .actions import ActionOutcome

logger = get_logger("automation.ledger")

DEFAULT_RECENT_CAPACITY = 1000


@runtime_checkable
class LedgerStore(Protocol):
    """Persistence for execution records."""

    supports_partial_writes: bool

    async def insert(self, record: ExecutionRecord) -> None: ...

    async def update(self, record: ExecutionRecord) -> None: ...

    async def get(self, record_id: str) -> ExecutionRecord | None: ...

    async def list_for_rule(self, rule_id: str, limit: int = 50) -> list[ExecutionRecord]: ...

    async def list_for_entity(self, entity_id: str, limit: int = 50) -> list[ExecutionRecord]: ...

    async def list_for_scope(self, scope_id: str, limit: int = 50) -> list[ExecutionRecord]: ...


class InMemoryLedgerStore:
    """Dictionary-backed ledger store.

    Args:
        supports_partial_writes: When False the ledger buffers pending records
            and writes each record once, already finalised.
    """

    def __init__(self, supports_partial_writes: bool = True) -> None:
        self.supports_partial_writes = supports_partial_writes
        self._records: dict[str, ExecutionRecord] = {}

    async def insert(self, record: ExecutionRecord) -> None:
        if record.id in self._records:
            raise LedgerError(f"Execution record {record.id} already exists")
        self._records[record.id] = record.model_copy(deep=True)

    async def update(self, record: ExecutionRecord) -> None:
        current = self._records.get(record.id)
        if current is None:
            raise LedgerError(f"Execution record {record.id} not found")
        if current.is_final:
            raise LedgerError(f"Execution record {record.id} is already {current.status.value}")
        self._records[record.id] = record.model_copy(deep=True)

    async def get(self, record_id: str) -> ExecutionRecord | None:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record else None

    def _newest_first(self, predicate: Any, limit: int) -> list[ExecutionRecord]:
        matching = [r for r in reversed(list(self._records.values())) if predicate(r)]
        return [r.model_copy(deep=True) for r in matching[: max(limit, 0)]]

    async def list_for_rule(self, rule_id: str, limit: int = 50) -> list[ExecutionRecord]:
        return self._newest_first(lambda r: r.rule_id == rule_id, limit)

    async def list_for_entity(self, entity_id: str, limit: int = 50) -> list[ExecutionRecord]:
        return self._newest_first(lambda r: r.entity_id == entity_id, limit)

    async def list_for_scope(self, scope_id: str, limit: int = 50) -> list[ExecutionRecord]:
        return self._newest_first(lambda r: r.scope_id == scope_id, limit)

    def __len__(self) -> int:
        return len(self._records)


# ----------------------------------------------------------------------
# SQL ledger
# ----------------------------------------------------------------------
class Base(DeclarativeBase):
    """SQLAlchemy declarative base for ledger tables."""

    pass


class ExecutionRow(Base):
    """Row of the ``automation_executions`` table."""

    __tablename__ = "automation_executions"

    id = Column(String(64), primary_key=True)
    rule_id = Column(String(255), index=True, nullable=False)
    rule_name = Column(String(255), nullable=False)
    scope_id = Column(String(255), index=True, nullable=False)
    entity_id = Column(String(255), index=True, nullable=True)
    action = Column(String(100), nullable=False)
    status = Column(String(20), nullable=False, default=ExecutionStatus.PENDING.value)
    success = Column(Boolean, nullable=True)
    message = Column(Text, nullable=False, default="")
    error = Column(Text, nullable=True)
    trigger_data = Column(JSON, nullable=False, default=dict)
    action_result = Column(JSON, nullable=False, default=dict)
    cascade_depth = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime(timezone=True), index=True, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    def apply(self, record: ExecutionRecord) -> None:
        self.rule_id = record.rule_id
        self.rule_name = record.rule_name
        self.scope_id = record.scope_id
        self.entity_id = record.entity_id
        self.action = record.action
        self.status = record.status.value
        self.success = record.success
        self.message = record.message
        self.error = record.error
        self.trigger_data = record.trigger_data
        self.action_result = record.action_result
        self.cascade_depth = record.cascade_depth
        self.started_at = record.started_at
        self.completed_at = record.completed_at

    def to_record(self) -> ExecutionRecord:
        return ExecutionRecord(
            id=self.id,
            rule_id=self.rule_id,
            rule_name=self.rule_name,
            scope_id=self.scope_id,
            entity_id=self.entity_id,
            action=self.action,
            status=ExecutionStatus(self.status),
            success=self.success,
            message=self.message or "",
            error=self.error,
            trigger_data=self.trigger_data or {},
            action_result=self.action_result or {},
            cascade_depth=self.cascade_depth or 0,
            started_at=_aware(self.started_at),
            completed_at=_aware(self.completed_at) if self.completed_at else None,
        )


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class SQLLedgerStore:
    """SQLAlchemy ledger store. Blocking session work runs in a worker thread.

    Example:
        ```python
        store = SQLLedgerStore("sqlite:///data/automation.db")
        ledger = ExecutionLedger(store)
        history = await store.list_for_rule(rule.id, limit=20)
        ```
    """

    supports_partial_writes = True

    def __init__(self, db_url: str = "sqlite://", echo: bool = False) -> None:
        """Initialize the store and create the table if needed.

        Args:
            db_url: SQLAlchemy database URL; ``sqlite://`` keeps it in memory
            echo: Enable SQL logging

        Raises:
            ValueError: If the database cannot be initialized
        """
        kwargs: dict[str, Any] = {"echo": echo}
        if db_url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if db_url in ("sqlite://", "sqlite:///:memory:"):
                kwargs["poolclass"] = StaticPool
        try:
            self.engine = create_engine(db_url, **kwargs)
            Base.metadata.create_all(self.engine)
            logger.info("Initialized execution ledger with database: %s", db_url)
        except Exception as exc:
            logger.error("Failed to initialize execution ledger: %s", exc, exc_info=True)
            raise ValueError(f"Failed to initialize ledger database: {exc}") from exc

    def get_session(self) -> Session:
        return Session(self.engine)

    def _insert(self, record: ExecutionRecord) -> None:
        with self.get_session() as session:
            if session.get(ExecutionRow, record.id) is not None:
                raise LedgerError(f"Execution record {record.id} already exists")
            row = ExecutionRow(id=record.id)
            row.apply(record)
            session.add(row)
            session.commit()

    def _update(self, record: ExecutionRecord) -> None:
        with self.get_session() as session:
            row = session.get(ExecutionRow, record.id)
            if row is None:
                raise LedgerError(f"Execution record {record.id} not found")
            if row.status != ExecutionStatus.PENDING.value:
                raise LedgerError(f"Execution record {record.id} is already {row.status}")
            row.apply(record)
            session.commit()

    def _get(self, record_id: str) -> ExecutionRecord | None:
        with self.get_session() as session:
            row = session.get(ExecutionRow, record_id)
            return row.to_record() if row else None

    def _list(self, column: Any, value: str, limit: int) -> list[ExecutionRecord]:
        with self.get_session() as session:
            stmt = (
                select(ExecutionRow)
                .where(column == value)
                .order_by(ExecutionRow.started_at.desc())
                .limit(max(limit, 0))
            )
            return [row.to_record() for row in session.scalars(stmt)]

    async def insert(self, record: ExecutionRecord) -> None:
        await asyncio.to_thread(self._insert, record)

    async def update(self, record: ExecutionRecord) -> None:
        await asyncio.to_thread(self._update, record)

    async def get(self, record_id: str) -> ExecutionRecord | None:
        return await asyncio.to_thread(self._get, record_id)

    async def list_for_rule(self, rule_id: str, limit: int = 50) -> list[ExecutionRecord]:
        return await asyncio.to_thread(self._list, ExecutionRow.rule_id, rule_id, limit)

    async def list_for_entity(self, entity_id: str, limit: int = 50) -> list[ExecutionRecord]:
        return await asyncio.to_thread(self._list, ExecutionRow.entity_id, entity_id, limit)

    async def list_for_scope(self, scope_id: str, limit: int = 50) -> list[ExecutionRecord]:
        return await asyncio.to_thread(self._list, ExecutionRow.scope_id, scope_id, limit)

    def dispose(self) -> None:
        self.engine.dispose()


# ----------------------------------------------------------------------
# Ledger facade
# ----------------------------------------------------------------------
class ExecutionLedger:
    """Writes one record per rule execution and finalises it exactly once."""

    def __init__(self, store: LedgerStore | None = None) -> None:
        self.store = store
        self._buffer: dict[str, ExecutionRecord] = {}

    @property
    def buffered(self) -> int:
        """Pending records held back because the store cannot update rows."""
        return len(self._buffer)

    async def begin(self, rule: AutomationRule, event: AutomationEvent) -> ExecutionRecord:
        record = ExecutionRecord(
            rule_id=rule.id,
            rule_name=rule.name,
            scope_id=event.scope_id,
            entity_id=event.entity_id,
            action=rule.action_type,
            trigger_data=event.snapshot(),
            cascade_depth=event.cascade_depth,
        )
        if self.store is None:
            return record
        if self.store.supports_partial_writes:
            await self._write(self.store.insert, record, "insert")
        else:
            self._buffer[record.id] = record
        return record

    async def complete(self, record: ExecutionRecord, outcome: ActionOutcome) -> ExecutionRecord:
        self._finalise(record, ExecutionStatus.COMPLETED, outcome.message, None, outcome)
        await self._persist(record)
        return record

    async def fail(
        self,
        record: ExecutionRecord,
        error: str,
        outcome: ActionOutcome | None = None,
    ) -> ExecutionRecord:
        error = truncate_error(error)
        self._finalise(record, ExecutionStatus.FAILED, error, error, outcome)
        await self._persist(record)
        return record

    def _finalise(
        self,
        record: ExecutionRecord,
        status: ExecutionStatus,
        message: str,
        error: str | None,
        outcome: ActionOutcome | None,
    ) -> None:
        if record.is_final:
            raise LedgerError(f"Execution record {record.id} is already {record.status.value}")
        record.status = status
        record.success = status == ExecutionStatus.COMPLETED
        record.message = message
        record.error = error
        record.action_result = outcome.to_dict() if outcome is not None else {}
        record.completed_at = utc_now()

    async def _persist(self, record: ExecutionRecord) -> None:
        if self.store is None:
            return
        if record.id in self._buffer:
            self._buffer.pop(record.id)
            await self._write(self.store.insert, record, "insert")
        elif self.store.supports_partial_writes:
            await self._write(self.store.update, record, "update")
        else:
            await self._write(self.store.insert, record, "insert")

    async def _write(self, operation: Any, record: ExecutionRecord, verb: str) -> None:
        try:
            await operation(record)
        except Exception as exc:
            logger.error(
                "Ledger %s failed for execution %s (rule %s): %s",
                verb,
                record.id,
                record.rule_id,
                exc,
            )


async def record_run(store: EntityStore, rule: AutomationRule) -> None:
    """Bump the rule's ``run_count`` and ``last_run``; failures are logged only."""
    try:
        await store.update_automation_rule(
            rule.id, {"run_count": rule.run_count + 1, "last_run": utc_now()}
        )
    except Exception as exc:
        logger.error("Failed to update run counters for rule %s: %s", rule.id, exc)


class RecentExecutions:
    """Bounded ring of recent execution results, newest first."""

    def __init__(self, capacity: int = DEFAULT_RECENT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._items: deque[ExecutionResult] = deque(maxlen=capacity)

    def add(self, result: ExecutionResult) -> None:
        self._items.appendleft(result)

    def list(self, limit: int = 50) -> list[ExecutionResult]:
        return list(itertools.islice(self._items, max(limit, 0)))

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)
