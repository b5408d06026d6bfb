"""Supervisor: the composition root behind ``process_query``.

One query flows through::

    authenticate -> scope registry -> plan -> validate -> execute -> aggregate

Planning, validation and authentication failures abort the query. Step and
synthesis failures are absorbed further down, so a query that produced at
least one result always returns an AggregatedResponse.

The query id and session id are bound into structlog's context variables
for the duration of the call. Every log line, LLM metric and tool event
emitted on the query's behalf picks them up from there.
"""

import time
import uuid
from collections.abc import Callable, Sequence

import structlog

from events.bus import EventBus
from events.types import EventType, QueryEvent
from metrics import MetricsCollector
from supervisor.aggregator import Aggregator
from supervisor.contract import AgentDescriptor
from supervisor.errors import PlanningError, UnauthenticatedError
from supervisor.executor import PlanExecutor
from supervisor.identity import Identity, IdentityProvider
from supervisor.models import AggregatedResponse, ExecutionContext, Plan
from supervisor.planner import Planner
from supervisor.registry import AgentRegistry
from supervisor.validator import PlanValidator

logger = structlog.get_logger(__name__)

RequestAgentFactory = Callable[[Identity], AgentDescriptor]


def new_query_id() -> str:
    return f"q_{uuid.uuid4().hex[:12]}"


class Supervisor:
    """Runs queries end to end against a fixed roster of agents.

    Attributes:
        registry: Process-wide agents, read-only after startup.
        planner: Builds the plan for each query.
        executor: Runs validated plans.
        aggregator: Merges step results into the response.
        identity_provider: Verifies bearer credentials, if configured.
        request_agent_factories: Build agents bound to a verified actor;
            they are only visible to that actor's query.
        event_bus: Optional bus for query progress events.
        metrics_collector: Optional per-query metrics sink.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        planner: Planner,
        executor: PlanExecutor,
        aggregator: Aggregator,
        identity_provider: IdentityProvider | None = None,
        request_agent_factories: Sequence[RequestAgentFactory] = (),
        event_bus: EventBus | None = None,
        metrics_collector: MetricsCollector | None = None,
    ) -> None:
        self.registry = registry
        self.planner = planner
        self.executor = executor
        self.aggregator = aggregator
        self.identity_provider = identity_provider
        self.request_agent_factories = tuple(request_agent_factories)
        self.event_bus = event_bus
        self.metrics_collector = metrics_collector

    async def process_query(
        self,
        user_input: str,
        auth_token: str | None = None,
        session_id: str | None = None,
        query_id: str | None = None,
    ) -> AggregatedResponse:
        """Answer one user query.

        Args:
            user_input: The user's message.
            auth_token: Optional bearer credential of the caller.
            session_id: Optional caller-chosen correlation id.
            query_id: Id to run under (generated when omitted). Streaming
                callers pass one so they can subscribe before the query starts.

        Returns:
            The aggregated response envelope.

        Raises:
            UnauthenticatedError: If a credential was supplied and rejected.
            PlanningError: If no usable plan could be produced.
            UnknownAgentError: If the plan names an unregistered agent.
            QueryFailedError: If every plan step failed.
        """
        query_id = query_id or new_query_id()
        structlog.contextvars.bind_contextvars(query_id=query_id, session_id=session_id)
        if self.metrics_collector:
            self.metrics_collector.start(query_id)
        start_time = time.time()

        try:
            await self._publish(query_id, session_id, EventType.QUERY_STARTED, {
                "message": user_input,
            })

            if not user_input or not user_input.strip():
                raise PlanningError("user input must not be empty")

            identity = await self._authenticate(auth_token)
            registry = self._registry_for(identity)

            plan = await self.planner.plan(user_input, registry.describe_all())
            await self._publish(
                query_id, session_id, EventType.PLAN_CREATED, _plan_payload(plan)
            )

            validated = PlanValidator(registry).validate(plan)

            context = ExecutionContext(
                user_input=user_input,
                query_id=query_id,
                session_id=session_id,
                actor_id=identity.user_id if identity else None,
                actor_wallet=identity.wallet_address if identity else None,
            )
            report = await self.executor.execute(validated, context)

            await self._publish(query_id, session_id, EventType.AGGREGATION_STARTED, {
                "results": len(report.results),
                "incomplete": len(report.incomplete),
            })
            response = await self.aggregator.aggregate(plan, report, context)
            await self._publish(query_id, session_id, EventType.AGGREGATION_COMPLETE, {
                "agents": [r.agent_name for r in response.aggregated_agents_data],
            })

            duration_ms = int((time.time() - start_time) * 1000)
            await self._publish(query_id, session_id, EventType.QUERY_COMPLETE, {
                "result": response.to_wire(),
                "duration_ms": duration_ms,
            })
            logger.info(
                "query_complete",
                steps=len(plan.steps),
                results=len(response.aggregated_agents_data),
                duration_ms=duration_ms,
            )
            return response

        except Exception as e:
            logger.error(
                "query_failed",
                error_kind=type(e).__name__,
                error=str(e),
            )
            await self._publish(query_id, session_id, EventType.QUERY_ERROR, {
                "error_kind": type(e).__name__,
                "error": str(e),
            })
            raise

        finally:
            if self.metrics_collector:
                self.metrics_collector.finish(query_id)
            if self.event_bus:
                await self.event_bus.close_stream(query_id)
            structlog.contextvars.unbind_contextvars("query_id", "session_id")

    async def _authenticate(self, auth_token: str | None) -> Identity | None:
        if not auth_token:
            return None
        if self.identity_provider is None:
            raise UnauthenticatedError("credential supplied but no identity provider is configured")
        identity = await self.identity_provider.verify(auth_token)
        logger.info("actor_authenticated", actor_id=identity.user_id)
        return identity

    def _registry_for(self, identity: Identity | None) -> AgentRegistry:
        """Process-wide registry, plus request agents for a verified actor."""
        if identity is None or not self.request_agent_factories:
            return self.registry
        return self.registry.scoped(factory(identity) for factory in self.request_agent_factories)

    async def _publish(
        self,
        query_id: str,
        session_id: str | None,
        event_type: EventType,
        data: dict,
    ) -> None:
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            QueryEvent(
                type=event_type,
                query_id=query_id,
                session_id=session_id,
                data=data,
            )
        )


def _plan_payload(plan: Plan) -> dict:
    return {
        "steps": [
            {
                "agent_name": step.agent_name,
                "reason": step.reason,
                "depends_on": plan.dependencies_of(index),
            }
            for index, step in enumerate(plan.steps)
        ],
        "merge_directive": plan.merge_directive,
        "sequential": plan.sequential,
    }


def create_supervisor(
    agents: Sequence[AgentDescriptor],
    planner: Planner,
    aggregator: Aggregator,
    executor: PlanExecutor | None = None,
    identity_provider: IdentityProvider | None = None,
    request_agent_factories: Sequence[RequestAgentFactory] = (),
    event_bus: EventBus | None = None,
    metrics_collector: MetricsCollector | None = None,
) -> Supervisor:
    """Factory function to create a Supervisor over ``agents``.

    Example:
        >>> supervisor = create_supervisor(
        ...     build_default_agents(llm_client, tool_executor),
        ...     planner=Planner(llm_client),
        ...     aggregator=Aggregator(llm_client),
        ... )
        >>> response = await supervisor.process_query("resolve vitalik.eth")
    """
    return Supervisor(
        registry=AgentRegistry(agents),
        planner=planner,
        executor=executor or PlanExecutor(
            event_bus=event_bus, metrics_collector=metrics_collector
        ),
        aggregator=aggregator,
        identity_provider=identity_provider,
        request_agent_factories=request_agent_factories,
        event_bus=event_bus,
        metrics_collector=metrics_collector,
    )
