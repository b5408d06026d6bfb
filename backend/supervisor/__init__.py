"""Orchestration core: registry, planner, validator, executor, aggregator.

``Supervisor.process_query`` is the single entry point; everything else in
this package is one stage of it.

Only the stages that do not talk to a model are re-exported here. The
Planner, Aggregator and Supervisor build on ``agents`` (prompts and the LLM
client), which in turn imports the contract from this package, so import
them from their modules::

    from supervisor.planner import Planner
    from supervisor.aggregator import Aggregator
    from supervisor.supervisor import Supervisor, create_supervisor
"""

from supervisor.contract import AgentDescriptor, Cardinality
from supervisor.errors import (
    AgentInvocationError,
    AgentNotFoundError,
    AgentResponseFormatError,
    AggregationError,
    DuplicateAgentError,
    PlanningError,
    QueryFailedError,
    SupervisorError,
    UnauthenticatedError,
    UnknownAgentError,
)
from supervisor.executor import PlanExecutor
from supervisor.identity import (
    HttpIdentityProvider,
    Identity,
    IdentityProvider,
    StaticIdentityProvider,
)
from supervisor.models import AggregatedResponse, AgentResult, Plan, PlanStep
from supervisor.registry import AgentRegistry
from supervisor.validator import PlanValidator

__all__ = [
    "AgentDescriptor",
    "AgentRegistry",
    "AgentResult",
    "AggregatedResponse",
    "Cardinality",
    "Plan",
    "PlanExecutor",
    "PlanStep",
    "PlanValidator",
    # Identity
    "HttpIdentityProvider",
    "Identity",
    "IdentityProvider",
    "StaticIdentityProvider",
    # Errors
    "AgentInvocationError",
    "AgentNotFoundError",
    "AgentResponseFormatError",
    "AggregationError",
    "DuplicateAgentError",
    "PlanningError",
    "QueryFailedError",
    "SupervisorError",
    "UnauthenticatedError",
    "UnknownAgentError",
]
