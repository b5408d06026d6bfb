"""Data model of one query's trip through the orchestration pipeline.

Wire-facing models serialize with camelCase aliases (``agentName``,
``mergeDirective``, ``aggregatedAgentsData``) and accept either spelling on
input.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from supervisor.contract import AgentDescriptor


class AgentResult(BaseModel):
    """The uniform envelope every agent invocation returns."""

    model_config = ConfigDict(populate_by_name=True)

    agent_name: str = Field(alias="agentName", min_length=1)
    message: str
    data: Any = None


class PlanStep(BaseModel):
    """One planned agent invocation.

    ``depends_on`` lists indices of earlier steps whose results this step
    needs; it is empty for independent steps.
    """

    model_config = ConfigDict(populate_by_name=True)

    agent_name: str = Field(alias="agentName")
    reason: str
    depends_on: list[int] = Field(default_factory=list, alias="dependsOn")

    @field_validator("agent_name", "reason")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class Plan(BaseModel):
    """Ordered steps plus the directive used to merge their results.

    When ``sequential`` is true every step depends on all earlier steps,
    regardless of ``depends_on``.
    """

    model_config = ConfigDict(populate_by_name=True)

    steps: list[PlanStep] = Field(min_length=1)
    merge_directive: str = Field(default="", alias="mergeDirective")
    sequential: bool = False

    @field_validator("steps")
    @classmethod
    def _dependencies_point_backwards(cls, steps: list[PlanStep]) -> list[PlanStep]:
        for index, step in enumerate(steps):
            for dep in step.depends_on:
                if not 0 <= dep < index:
                    raise ValueError(
                        f"step {index} depends on step {dep}, which is not an earlier step"
                    )
        return steps

    def dependencies_of(self, index: int) -> list[int]:
        """Indices of the steps that must finish before step ``index`` runs."""
        if self.sequential:
            return list(range(index))
        return sorted(set(self.steps[index].depends_on))


@dataclass(frozen=True)
class ValidatedPlan:
    """A plan whose every agent name resolved, plus the minimal worker set.

    Attributes:
        plan: The plan as produced by the Planner.
        workers: Unique descriptors in first-seen step order.
    """

    plan: Plan
    workers: tuple["AgentDescriptor", ...]

    def worker(self, name: str) -> "AgentDescriptor":
        for descriptor in self.workers:
            if descriptor.name == name:
                return descriptor
        raise KeyError(name)


class StepStatus(StrEnum):
    """Outcome of one plan step."""

    COMPLETE = "complete"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepOutcome:
    """What happened to one plan step.

    Attributes:
        step_index: Position of the step in the plan.
        agent_name: Agent the step named.
        status: complete, failed or skipped.
        result: The agent's envelope when complete.
        error: Failure description when failed or skipped.
        error_kind: Taxonomy name of the failure, for telemetry.
    """

    step_index: int
    agent_name: str
    status: StepStatus
    result: AgentResult | None = None
    error: str | None = None
    error_kind: str | None = None


@dataclass
class ExecutionReport:
    """All step outcomes of one plan run, in plan order."""

    outcomes: list[StepOutcome]

    @property
    def results(self) -> list[AgentResult]:
        return [o.result for o in self.outcomes if o.result is not None]

    @property
    def incomplete(self) -> list[StepOutcome]:
        return [o for o in self.outcomes if o.status != StepStatus.COMPLETE]


@dataclass
class ExecutionContext:
    """Per-query state created by ``process_query`` and discarded after it.

    Attributes:
        user_input: The original query text.
        query_id: Unique id of this query (log and event correlation).
        session_id: Optional caller-supplied correlation id.
        actor_id: Authenticated user id, when a credential was supplied.
        actor_wallet: Wallet address of the authenticated actor, if known.
        log: Results recorded so far, in completion order.
    """

    user_input: str
    query_id: str
    session_id: str | None = None
    actor_id: str | None = None
    actor_wallet: str | None = None
    log: list[AgentResult] = field(default_factory=list)

    def record(self, result: AgentResult) -> None:
        self.log.append(result)


class AggregatedResponse(BaseModel):
    """Terminal output of one query."""

    model_config = ConfigDict(populate_by_name=True)

    message: str
    aggregated_agents_data: list[AgentResult] = Field(
        default_factory=list, alias="aggregatedAgentsData"
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
