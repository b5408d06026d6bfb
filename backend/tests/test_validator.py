"""Tests for supervisor/validator.py -- plan validation against the registry."""

import pytest

from supervisor.errors import UnknownAgentError
from supervisor.models import Plan, PlanStep
from supervisor.registry import AgentRegistry
from supervisor.validator import PlanValidator
from tests.conftest import FakeAgent


def _plan(*names: str) -> Plan:
    return Plan(steps=[PlanStep(agent_name=n, reason=f"use {n}") for n in names])


class TestPlanValidator:
    """Every step must name a registered agent."""

    def test_all_known(self) -> None:
        a, b = FakeAgent("A"), FakeAgent("B")
        validated = PlanValidator(AgentRegistry([a, b])).validate(_plan("B", "A"))
        assert validated.workers == (b, a)

    def test_workers_are_unique_in_first_seen_order(self) -> None:
        a, b = FakeAgent("A"), FakeAgent("B")
        validated = PlanValidator(AgentRegistry([a, b])).validate(_plan("A", "B", "A", "A"))
        assert [w.name for w in validated.workers] == ["A", "B"]
        assert len(validated.plan.steps) == 4

    def test_unregistered_agents_not_in_workers(self) -> None:
        registry = AgentRegistry([FakeAgent("A"), FakeAgent("Unused")])
        validated = PlanValidator(registry).validate(_plan("A"))
        assert [w.name for w in validated.workers] == ["A"]

    def test_unknown_agent_rejected(self) -> None:
        validator = PlanValidator(AgentRegistry([FakeAgent("A")]))
        with pytest.raises(UnknownAgentError) as exc_info:
            validator.validate(_plan("A", "Ghost", "Phantom"))
        assert exc_info.value.name == "Ghost"
        assert str(exc_info.value) == "Plan references unknown agent: Ghost"

    def test_worker_lookup(self) -> None:
        a = FakeAgent("A")
        validated = PlanValidator(AgentRegistry([a])).validate(_plan("A"))
        assert validated.worker("A") is a
        with pytest.raises(KeyError):
            validated.worker("B")
