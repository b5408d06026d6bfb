"""The capability contract every agent implements."""

from abc import ABC, abstractmethod
from enum import StrEnum

from supervisor.models import AgentResult


class Cardinality(StrEnum):
    """How many inputs an agent can handle in one invocation."""

    SINGLE = "single"
    BATCH = "batch"


class AgentDescriptor(ABC):
    """A capability-typed worker the Supervisor can plan over and invoke.

    Subclasses set ``name``, ``capability_summary`` and ``cardinality`` and
    implement ``invoke``. Instances are treated as immutable once registered.

    Attributes:
        name: Unique, stable identifier used in plans.
        capability_summary: Free text embedded verbatim in planning prompts.
        cardinality: SINGLE agents need one invocation per input.
    """

    name: str
    capability_summary: str
    cardinality: Cardinality = Cardinality.SINGLE

    @abstractmethod
    async def invoke(
        self,
        user_input: str,
        prior_context: list[AgentResult] | None = None,
    ) -> AgentResult:
        """Run the agent.

        Args:
            user_input: The user's query.
            prior_context: Results of earlier steps this invocation depends on.

        Returns:
            The agent's envelope. Implementations raise when they cannot
            produce a valid one.
        """

    def describe(self) -> dict[str, str]:
        return {
            "name": self.name,
            "capabilitySummary": self.capability_summary,
            "cardinality": self.cardinality.value,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
