"""Plan validation against the agent registry."""

import structlog

from supervisor.errors import AgentNotFoundError, UnknownAgentError
from supervisor.models import Plan, ValidatedPlan
from supervisor.registry import AgentRegistry

logger = structlog.get_logger(__name__)


class PlanValidator:
    """Resolves every agent a plan names, or rejects the whole plan."""

    def __init__(self, registry: AgentRegistry) -> None:
        self.registry = registry

    def validate(self, plan: Plan) -> ValidatedPlan:
        """Check every step's agent name and collect the unique workers.

        Args:
            plan: Plan produced by the Planner.

        Returns:
            The plan plus its unique workers in first-seen order.

        Raises:
            UnknownAgentError: Naming the first agent that does not resolve.
        """
        names_used = list(dict.fromkeys(step.agent_name for step in plan.steps))

        workers = []
        for name in names_used:
            try:
                workers.append(self.registry.resolve(name))
            except AgentNotFoundError:
                logger.warning(
                    "plan_unknown_agent",
                    agent_name=name,
                    known_agents=self.registry.names,
                )
                raise UnknownAgentError(name) from None

        return ValidatedPlan(plan=plan, workers=tuple(workers))
