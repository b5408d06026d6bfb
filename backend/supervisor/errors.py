"""Error taxonomy for the orchestration layer.

Planning and validation errors abort a query. Agent invocation and
aggregation errors are absorbed by the Executor and Aggregator, but their
class names are kept in logs and metrics so they stay distinguishable.
"""

from typing import Any


class SupervisorError(Exception):
    """Base class for all orchestration errors."""


class PlanningError(SupervisorError):
    """The planning model call failed or produced no usable plan."""


class AgentNotFoundError(SupervisorError, LookupError):
    """A name could not be resolved in the agent registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Agent {name} not found")
        self.name = name


class DuplicateAgentError(SupervisorError, ValueError):
    """An agent with the same name is already registered."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Agent {name} is already registered")
        self.name = name


class UnknownAgentError(SupervisorError):
    """A plan referenced an agent that is not in the registry."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Plan references unknown agent: {name}")
        self.name = name


class AgentResponseFormatError(SupervisorError):
    """An agent's output did not match its declared response envelope."""


class AgentInvocationError(SupervisorError):
    """One plan step failed.

    Attributes:
        agent_name: Agent that was invoked.
        cause: Underlying exception (timeout, envelope violation, tool error...).
    """

    def __init__(self, agent_name: str, cause: BaseException | str) -> None:
        detail = cause if isinstance(cause, str) else f"{type(cause).__name__}: {cause}"
        super().__init__(f"{agent_name} failed: {detail}")
        self.agent_name = agent_name
        self.cause = cause


class AggregationError(SupervisorError):
    """The synthesis model call failed or produced unparsable output."""


class QueryFailedError(SupervisorError):
    """Every step of the plan failed, so there is nothing to aggregate.

    Attributes:
        failures: One entry per failed or skipped step.
    """

    def __init__(self, failures: list[dict[str, Any]]) -> None:
        names = ", ".join(f["agent_name"] for f in failures) or "none"
        super().__init__(f"All plan steps failed ({names})")
        self.failures = failures


class UnauthenticatedError(SupervisorError):
    """The caller's bearer credential could not be verified."""
