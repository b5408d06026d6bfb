"""Executor: runs a validated plan against its workers.

Every step runs in its own task and starts as soon as the steps it
depends on have settled, so a slow step only delays its own dependents.
A step whose dependency did not complete is skipped, while independent
siblings of a failed step carry on. Outcomes are reported in plan order
regardless of completion order.

For a plan whose step 2 depends on step 0::

    step 0, step 1   start together
    step 2           starts when step 0 settles (receives a copy of its result)
"""

import asyncio

import structlog

from config import settings
from events.bus import EventBus
from events.types import EventType, QueryEvent
from metrics import MetricsCollector
from supervisor.contract import AgentDescriptor
from supervisor.errors import (
    AgentInvocationError,
    AgentResponseFormatError,
    QueryFailedError,
)
from supervisor.models import (
    AgentResult,
    ExecutionContext,
    ExecutionReport,
    StepOutcome,
    StepStatus,
    ValidatedPlan,
)

logger = structlog.get_logger(__name__)


class PlanExecutor:
    """Carries out a validated plan, one agent invocation per step.

    Attributes:
        step_timeout: Seconds allowed for a single step (None disables).
        event_bus: Optional bus for step progress events.
        metrics_collector: Optional per-query metrics sink.
    """

    def __init__(
        self,
        step_timeout: float | None = None,
        event_bus: EventBus | None = None,
        metrics_collector: MetricsCollector | None = None,
    ) -> None:
        self.step_timeout = (
            step_timeout if step_timeout is not None
            else settings.agent_step_timeout_seconds
        )
        self.event_bus = event_bus
        self.metrics_collector = metrics_collector

    async def execute(
        self,
        validated: ValidatedPlan,
        context: ExecutionContext,
    ) -> ExecutionReport:
        """Run every step of the plan.

        Args:
            validated: Output of the PlanValidator.
            context: Per-query state; completed results are appended to its log.

        Returns:
            One outcome per step, in plan order.

        Raises:
            QueryFailedError: If no step completed.
        """
        plan = validated.plan
        tasks: list[asyncio.Task[StepOutcome]] = []

        # Dependencies always point at earlier steps, so their tasks exist.
        for index in range(len(plan.steps)):
            dependencies = {d: tasks[d] for d in plan.dependencies_of(index)}
            tasks.append(
                asyncio.create_task(
                    self._run_step(index, dependencies, validated, context),
                    name=f"plan_step_{index}",
                )
            )

        try:
            outcomes = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        report = ExecutionReport(outcomes=list(outcomes))

        if not report.results:
            failures = [
                {"step_index": o.step_index, "agent_name": o.agent_name, "error": o.error}
                for o in report.outcomes
            ]
            logger.error("all_steps_failed", steps=len(failures))
            raise QueryFailedError(failures)

        logger.info(
            "plan_executed",
            completed=len(report.results),
            incomplete=len(report.incomplete),
        )
        return report

    async def _run_step(
        self,
        index: int,
        dependencies: dict[int, asyncio.Task[StepOutcome]],
        validated: ValidatedPlan,
        context: ExecutionContext,
    ) -> StepOutcome:
        """Wait for this step's dependencies, then run it.

        Every failure of the step itself becomes a StepOutcome; only
        cancellation propagates.
        """
        step = validated.plan.steps[index]
        settled = {d: await task for d, task in dependencies.items()}
        deps = list(dependencies)

        blocked = [d for d in deps if settled[d].status != StepStatus.COMPLETE]
        if blocked:
            reason = ", ".join(f"step {d} ({settled[d].agent_name})" for d in blocked)
            outcome = StepOutcome(
                step_index=index,
                agent_name=step.agent_name,
                status=StepStatus.SKIPPED,
                error=f"depends on incomplete {reason}",
            )
            logger.warning(
                "step_skipped",
                step_index=index,
                agent_name=step.agent_name,
                blocked_by=blocked,
            )
            await self._report(context, outcome)
            return outcome

        # Context travels by value so no step can mutate another's result.
        prior = [settled[d].result.model_copy(deep=True) for d in deps]
        agent = validated.worker(step.agent_name)

        await self._publish(
            context,
            EventType.STEP_STARTED,
            step.agent_name,
            {"step_index": index, "reason": step.reason},
        )
        logger.info("step_started", step_index=index, agent_name=step.agent_name)

        try:
            result = await self._invoke(agent, context.user_input, prior)
        except Exception as e:
            error = AgentInvocationError(step.agent_name, e)
            logger.warning(
                "step_failed",
                step_index=index,
                agent_name=step.agent_name,
                error_kind=type(error).__name__,
                cause_type=type(e).__name__,
                error=str(error),
            )
            outcome = StepOutcome(
                step_index=index,
                agent_name=step.agent_name,
                status=StepStatus.FAILED,
                error=str(error),
                error_kind=type(error).__name__,
            )
            if self.metrics_collector:
                self.metrics_collector.record_absorbed_error(
                    context.query_id, outcome.error_kind
                )
            await self._report(context, outcome)
            return outcome

        context.record(result)
        outcome = StepOutcome(
            step_index=index,
            agent_name=step.agent_name,
            status=StepStatus.COMPLETE,
            result=result,
        )
        logger.info("step_complete", step_index=index, agent_name=step.agent_name)
        await self._report(context, outcome)
        return outcome

    async def _invoke(
        self,
        agent: AgentDescriptor,
        user_input: str,
        prior: list[AgentResult],
    ) -> AgentResult:
        """Invoke an agent under the step timeout and check its envelope."""
        call = agent.invoke(user_input, prior or None)
        if self.step_timeout:
            result = await asyncio.wait_for(call, timeout=self.step_timeout)
        else:
            result = await call

        if not isinstance(result, AgentResult):
            raise AgentResponseFormatError(
                f"expected AgentResult, got {type(result).__name__}"
            )
        if result.agent_name != agent.name:
            raise AgentResponseFormatError(
                f"envelope names {result.agent_name!r} instead of {agent.name!r}"
            )
        return result

    async def _report(self, context: ExecutionContext, outcome: StepOutcome) -> None:
        if self.metrics_collector:
            self.metrics_collector.record_step(context.query_id, outcome.status.value)

        event_type = {
            StepStatus.COMPLETE: EventType.STEP_COMPLETE,
            StepStatus.FAILED: EventType.STEP_FAILED,
            StepStatus.SKIPPED: EventType.STEP_SKIPPED,
        }[outcome.status]
        data: dict = {"step_index": outcome.step_index}
        if outcome.result is not None:
            data["message"] = outcome.result.message
        if outcome.error is not None:
            data["error"] = outcome.error
        await self._publish(context, event_type, outcome.agent_name, data)

    async def _publish(
        self,
        context: ExecutionContext,
        event_type: EventType,
        agent_name: str,
        data: dict,
    ) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            QueryEvent(
                type=event_type,
                query_id=context.query_id,
                session_id=context.session_id,
                agent_name=agent_name,
                data=data,
            )
        )
