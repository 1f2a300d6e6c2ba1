"""Tests for the execution ledger, ledger stores and the recent ring."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from board_automation.automation.actions import ActionOutcome
from board_automation.automation.exceptions import LedgerError
from board_automation.automation.ledger import (
    ExecutionLedger,
    InMemoryLedgerStore,
    RecentExecutions,
    SQLLedgerStore,
    record_run,
)
from board_automation.automation.models import (
    AutomationEvent,
    ExecutionRecord,
    ExecutionResult,
    ExecutionStatus,
)


@pytest.fixture
def event() -> AutomationEvent:
    """Triggering event."""
    return AutomationEvent(type="status_changed", scope_id="b1", entity_id="t1", new_value="stuck")


@pytest.fixture
def sql_store():
    """In-memory SQLite ledger store."""
    store = SQLLedgerStore("sqlite://")
    yield store
    store.dispose()


def _record(**overrides) -> ExecutionRecord:
    data = {"rule_id": "r1", "rule_name": "rule", "scope_id": "b1", "action": "custom"}
    data.update(overrides)
    return ExecutionRecord(**data)


class TestExecutionLedger:
    """Tests for ExecutionLedger."""

    @pytest.mark.anyio
    async def test_pending_then_completed(self, make_rule, event) -> None:
        """Test that the record is written pending and finalised once."""
        store = InMemoryLedgerStore()
        ledger = ExecutionLedger(store)
        record = await ledger.begin(make_rule(id="r1"), event)
        assert (await store.get(record.id)).status == ExecutionStatus.PENDING

        await ledger.complete(record, ActionOutcome("done", data={"x": 1}))
        stored = await store.get(record.id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.success is True
        assert stored.message == "done"
        assert stored.action_result["data"] == {"x": 1}
        assert stored.trigger_data["new_value"] == "stuck"
        assert stored.completed_at is not None

    @pytest.mark.anyio
    async def test_finalised_only_once(self, make_rule, event) -> None:
        """Test that a second finalisation raises LedgerError."""
        ledger = ExecutionLedger(InMemoryLedgerStore())
        record = await ledger.begin(make_rule(), event)
        await ledger.fail(record, "boom")
        with pytest.raises(LedgerError):
            await ledger.complete(record, ActionOutcome("late"))

    @pytest.mark.anyio
    async def test_failure_text_truncated(self, make_rule, event) -> None:
        """Test that error text is clipped to 500 characters."""
        ledger = ExecutionLedger(InMemoryLedgerStore())
        record = await ledger.begin(make_rule(), event)
        await ledger.fail(record, "e" * 2000)
        assert record.status == ExecutionStatus.FAILED
        assert len(record.error) == 500

    @pytest.mark.anyio
    async def test_buffered_without_partial_writes(self, make_rule, event) -> None:
        """Test that stores without updates receive one final insert."""
        store = InMemoryLedgerStore(supports_partial_writes=False)
        ledger = ExecutionLedger(store)
        record = await ledger.begin(make_rule(), event)
        assert ledger.buffered == 1
        assert await store.get(record.id) is None

        await ledger.complete(record, ActionOutcome("done"))
        assert ledger.buffered == 0
        assert (await store.get(record.id)).status == ExecutionStatus.COMPLETED

    @pytest.mark.anyio
    async def test_store_errors_swallowed(self, make_rule, event) -> None:
        """Test that ledger write failures never propagate."""
        store = InMemoryLedgerStore()
        store.insert = AsyncMock(side_effect=RuntimeError("disk full"))
        store.update = AsyncMock(side_effect=RuntimeError("disk full"))
        ledger = ExecutionLedger(store)
        record = await ledger.begin(make_rule(), event)
        await ledger.complete(record, ActionOutcome("done"))
        assert record.status == ExecutionStatus.COMPLETED

    @pytest.mark.anyio
    async def test_without_store(self, make_rule, event) -> None:
        """Test that a disabled ledger still tracks the record in memory."""
        ledger = ExecutionLedger(None)
        record = await ledger.begin(make_rule(), event)
        await ledger.complete(record, ActionOutcome("done"))
        assert record.is_final


class TestInMemoryLedgerStore:
    """Tests for InMemoryLedgerStore."""

    @pytest.mark.anyio
    async def test_append_only(self) -> None:
        """Test that records cannot be re-inserted or updated after finalisation."""
        store = InMemoryLedgerStore()
        record = _record()
        await store.insert(record)
        with pytest.raises(LedgerError):
            await store.insert(record)

        record.status = ExecutionStatus.COMPLETED
        await store.update(record)
        with pytest.raises(LedgerError):
            await store.update(record)

    @pytest.mark.anyio
    async def test_update_unknown(self) -> None:
        """Test that updating a missing record fails."""
        with pytest.raises(LedgerError):
            await InMemoryLedgerStore().update(_record())

    @pytest.mark.anyio
    async def test_queries_newest_first(self) -> None:
        """Test rule, entity and scope queries."""
        store = InMemoryLedgerStore()
        first = _record(entity_id="t1")
        second = _record(entity_id="t2")
        other = _record(rule_id="r2", scope_id="b2", entity_id="t1")
        for record in (first, second, other):
            await store.insert(record)

        assert [r.id for r in await store.list_for_rule("r1")] == [second.id, first.id]
        assert [r.id for r in await store.list_for_entity("t1")] == [other.id, first.id]
        assert [r.id for r in await store.list_for_scope("b1", limit=1)] == [second.id]
        assert len(store) == 3


class TestSQLLedgerStore:
    """Tests for SQLLedgerStore."""

    @pytest.mark.anyio
    async def test_round_trip_through_ledger(self, sql_store, make_rule, event) -> None:
        """Test that a ledger backed by SQL records completed executions."""
        ledger = ExecutionLedger(sql_store)
        record = await ledger.begin(make_rule(id="r1"), event)
        await ledger.complete(record, ActionOutcome("Priority changed", data={"changed": True}))

        [stored] = await sql_store.list_for_rule("r1")
        assert stored.id == record.id
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.success is True
        assert stored.action_result["data"] == {"changed": True}
        assert stored.started_at.tzinfo is not None

    @pytest.mark.anyio
    async def test_append_only(self, sql_store) -> None:
        """Test that the SQL store enforces the same contract."""
        record = _record()
        await sql_store.insert(record)
        with pytest.raises(LedgerError):
            await sql_store.insert(record)

        record.status = ExecutionStatus.FAILED
        record.error = "boom"
        await sql_store.update(record)
        with pytest.raises(LedgerError):
            await sql_store.update(record)
        assert (await sql_store.get(record.id)).error == "boom"

    @pytest.mark.anyio
    async def test_queries(self, sql_store) -> None:
        """Test entity and scope queries with limits."""
        for entity_id in ("t1", "t1", "t2"):
            await sql_store.insert(_record(entity_id=entity_id))
        assert len(await sql_store.list_for_entity("t1")) == 2
        assert len(await sql_store.list_for_scope("b1", limit=2)) == 2
        assert await sql_store.get("missing") is None

    def test_invalid_url(self) -> None:
        """Test that an unusable database URL raises ValueError."""
        with pytest.raises(ValueError):
            SQLLedgerStore("notadialect://nowhere")


class TestRecordRun:
    """Tests for record_run."""

    @pytest.mark.anyio
    async def test_bumps_counters(self, store, make_rule) -> None:
        """Test that run_count and last_run are updated."""
        rule = store.add_rule(make_rule(id="r1", run_count=2))
        await record_run(store, rule)
        updated = await store.get_automation_rule("r1")
        assert updated.run_count == 3
        assert updated.last_run is not None

    @pytest.mark.anyio
    async def test_store_failure_swallowed(self, make_rule) -> None:
        """Test that counter update failures are only logged."""
        store = AsyncMock()
        store.update_automation_rule.side_effect = RuntimeError("db down")
        await record_run(store, make_rule())


class TestRecentExecutions:
    """Tests for RecentExecutions."""

    def _result(self, index: int) -> ExecutionResult:
        return ExecutionResult(
            rule_id=f"r{index}", rule_name="rule", success=True, action="custom", message=""
        )

    def test_bounded_newest_first(self) -> None:
        """Test that the ring keeps only the newest entries."""
        recent = RecentExecutions(capacity=3)
        for index in range(5):
            recent.add(self._result(index))
        assert len(recent) == 3
        assert [r.rule_id for r in recent.list()] == ["r4", "r3", "r2"]
        assert [r.rule_id for r in recent.list(limit=1)] == ["r4"]

    def test_clear(self) -> None:
        """Test clearing the ring."""
        recent = RecentExecutions()
        recent.add(self._result(1))
        recent.clear()
        assert recent.list() == []

    def test_capacity_must_be_positive(self) -> None:
        """Test that a zero capacity is rejected."""
        with pytest.raises(ValueError):
            RecentExecutions(capacity=0)
