"""Agent registry: the roster the Planner sees and the Executor invokes."""

from collections.abc import Iterable

import structlog

from supervisor.contract import AgentDescriptor
from supervisor.errors import AgentNotFoundError, DuplicateAgentError

logger = structlog.get_logger(__name__)


class AgentRegistry:
    """Name-keyed mapping of agent descriptors in registration order.

    The process-wide registry is filled at startup and only read afterwards.
    Request-specific agents go into a ``scoped`` overlay that shares the
    base entries without modifying them.

    Usage:
        >>> registry = AgentRegistry([ens_agent, token_agent])
        >>> registry.describe_all()
        [{'name': 'ENSWalletIdentifierAgent', ...}, ...]
        >>> request_registry = registry.scoped([onchain_agent])
    """

    def __init__(self, agents: Iterable[AgentDescriptor] = ()) -> None:
        self._agents: dict[str, AgentDescriptor] = {}
        for agent in agents:
            self.register(agent)

    def register(self, descriptor: AgentDescriptor) -> None:
        """Add an agent.

        Raises:
            DuplicateAgentError: If the name is already registered.
        """
        if descriptor.name in self._agents:
            raise DuplicateAgentError(descriptor.name)
        self._agents[descriptor.name] = descriptor
        logger.debug("agent_registered", agent_name=descriptor.name)

    def describe_all(self) -> list[dict[str, str]]:
        """Name, capability summary and cardinality of every agent, in registration order."""
        return [agent.describe() for agent in self._agents.values()]

    def resolve(self, name: str) -> AgentDescriptor:
        """Look up an agent by name.

        Raises:
            AgentNotFoundError: If no agent has that name.
        """
        try:
            return self._agents[name]
        except KeyError:
            raise AgentNotFoundError(name) from None

    def scoped(self, extra_agents: Iterable[AgentDescriptor] = ()) -> "AgentRegistry":
        """Return a request-local registry with ``extra_agents`` appended.

        The receiver is left untouched, so concurrent queries never see
        each other's request-specific agents.
        """
        overlay = AgentRegistry()
        overlay._agents = dict(self._agents)
        for agent in extra_agents:
            overlay.register(agent)
        return overlay

    def __contains__(self, name: object) -> bool:
        return name in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    @property
    def names(self) -> list[str]:
        return list(self._agents)
