"""Tests for the dry-run simulator."""

from __future__ import annotations

import pytest

from board_automation.automation.actions import create_default_registry
from board_automation.automation.models import Condition
from board_automation.automation.simulator import DryRunSimulator
from board_automation.core.config import DryRunConfig
from board_automation.providers import InMemoryEntityStore


@pytest.fixture
def simulator(store) -> DryRunSimulator:
    """Simulator over the shared board fixtures."""
    return DryRunSimulator(store, create_default_registry())


class TestSynthesizeEvent:
    """Tests for event synthesis."""

    def test_uses_trigger_value(self, simulator, store, make_rule) -> None:
        """Test that the synthesised new value is the rule's trigger value."""
        entity = store._entities["t1"]
        rule = make_rule(trigger_field="status", trigger_value="stuck")
        event = simulator.synthesize_event(rule, "b1", entity, {"actor": "u1"})
        assert event.field == "status"
        assert event.previous_value == "not-started"
        assert event.new_value == "stuck"
        assert event.metadata == {"actor": "u1", "dry_run": True}

    def test_defaults_to_current_value(self, simulator, store, make_rule) -> None:
        """Test the current value is used when the rule has no trigger value."""
        entity = store._entities["t1"]
        event = simulator.synthesize_event(make_rule(trigger_type="assigned"), "b1", entity)
        assert event.field == "assignees"
        assert event.new_value == "p1"

    def test_projects_new_value_onto_entity(self, simulator, store, make_rule) -> None:
        """Test that the projected entity carries the synthesised value."""
        entity = store._entities["t1"]
        event = simulator.synthesize_event(make_rule(trigger_value="stuck"), "b1", entity)
        assert simulator.project_entity(entity, event).status == "stuck"
        assert entity.status == "not-started"

        rule = make_rule(trigger_type="field_changed", trigger_field="case_id", trigger_value="case-10")
        event = simulator.synthesize_event(rule, "b1", entity)
        assert simulator.project_entity(entity, event).custom_fields["case_id"] == "case-10"


class TestSimulate:
    """Tests for DryRunSimulator.simulate."""

    @pytest.mark.anyio
    async def test_predictions(self, simulator, make_rule) -> None:
        """Test per-entity predictions with a condition."""
        rule = make_rule(
            trigger_value="stuck",
            conditions=[Condition(kind="priority", value="medium")],
        )
        result = await simulator.simulate(rule, "b1")
        assert result.sampled == 2
        assert result.would_fire_count == 1
        fired = {p.entity_id: p for p in result.predictions}
        assert fired["t1"].would_fire is True
        assert fired["t1"].action_description.startswith('Change priority of "Draft lease"')
        assert fired["t2"].failed_conditions == [0]
        assert fired["t2"].action_description is None

    @pytest.mark.anyio
    async def test_does_not_mutate_and_is_repeatable(self, simulator, store, make_rule) -> None:
        """Test that dry runs leave the store untouched and give stable results."""
        before = store.to_mapping()
        rule = make_rule(trigger_value="stuck")
        first = await simulator.simulate(rule, "b1")
        second = await simulator.simulate(rule, "b1")
        assert first == second
        assert store.to_mapping() == before

    @pytest.mark.anyio
    async def test_sample_size_clamped(self, store, make_rule) -> None:
        """Test that the sample size is bounded by the configuration."""
        simulator = DryRunSimulator(
            store, create_default_registry(), config=DryRunConfig(sample_size=5, max_sample_size=1)
        )
        result = await simulator.simulate(make_rule(), "b1", sample_size=50)
        assert result.sampled == 1

    @pytest.mark.anyio
    async def test_inactive_rule_warns(self, simulator, make_rule) -> None:
        """Test that inactive candidates are projected but flagged."""
        result = await simulator.simulate(make_rule(active=False), "b1")
        assert result.would_fire_count == 2
        assert any("inactive" in w for w in result.warnings)

    @pytest.mark.anyio
    async def test_unsupported_action_warns(self, simulator, make_rule) -> None:
        """Test the stub warning and description for unknown actions."""
        result = await simulator.simulate(make_rule(action_type="fax_someone"), "b1")
        assert any("not supported" in w for w in result.warnings)
        assert result.predictions[0].action_description == 'Action type "fax_someone" would run as a stub'

    @pytest.mark.anyio
    async def test_self_loop_warns(self, simulator, make_rule) -> None:
        """Test that a rule re-triggering itself is flagged."""
        rule = make_rule(
            trigger_type="priority_changed",
            action_type="change_priority",
            action_config={"priority": "high"},
        )
        result = await simulator.simulate(rule, "b1")
        assert any("own trigger" in w for w in result.warnings)

    @pytest.mark.anyio
    async def test_condition_warnings(self, simulator, make_rule) -> None:
        """Test warnings for absent fields and unsatisfiable conditions."""
        rule = make_rule(
            conditions=[
                Condition(field="billing_code", value="X1"),
                Condition(kind="status", value="archived"),
            ]
        )
        result = await simulator.simulate(rule, "b1")
        assert result.would_fire_count == 0
        assert any('reads "billing_code"' in w for w in result.warnings)
        assert any("Condition 2" in w and "not satisfied" in w for w in result.warnings)

    @pytest.mark.anyio
    async def test_metadata_conditions_without_metadata(self, simulator, make_rule) -> None:
        """Test the warning when metadata conditions get no metadata."""
        rule = make_rule(conditions=[Condition(kind="permission", value="board:write")])
        result = await simulator.simulate(rule, "b1")
        assert any("metadata" in w for w in result.warnings)

        with_metadata = await simulator.simulate(
            rule, "b1", event_metadata={"permissions": ["board:write"]}
        )
        assert with_metadata.would_fire_count == 2

    @pytest.mark.anyio
    async def test_empty_scope(self, make_rule) -> None:
        """Test the warning for a board without entities."""
        simulator = DryRunSimulator(InMemoryEntityStore(), create_default_registry())
        result = await simulator.simulate(make_rule(), "b1")
        assert result.sampled == 0
        assert any("No entities" in w for w in result.warnings)
