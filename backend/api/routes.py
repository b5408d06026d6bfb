"""HTTP API routes for the forensics assistant.

This module defines the query endpoints (plain and Server-Sent Events), the
agent roster listing and the health check. Every query is delegated to the
Supervisor configured at startup.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import APIRouter, status
from fastapi.responses import JSONResponse, StreamingResponse

from events.types import EventType, QueryEvent
from models.schemas import (
    AgentInfo,
    AgentListResponse,
    ErrorResponse,
    HealthResponse,
    QueryRequest,
    QueryResponse,
    StreamEvent,
)
from supervisor.errors import UnauthenticatedError
from supervisor.supervisor import new_query_id

if TYPE_CHECKING:
    from supervisor.supervisor import Supervisor

logger = structlog.get_logger(__name__)

router = APIRouter()

PROCESSING_FAILED = "Failed to process request"
STREAM_FAILED = "An error occurred during processing"
UNAUTHENTICATED = "Unauthenticated"

# Events that never become status frames; the terminal frame covers them.
_SILENT_EVENTS = {
    EventType.QUERY_COMPLETE,
    EventType.QUERY_ERROR,
    EventType.LLM_CALL_COMPLETE,
    EventType.STREAM_CLOSED,
}

# -----------------------------------------------------------------------------
# Supervisor dependency (set during application startup)
# -----------------------------------------------------------------------------

_supervisor: Supervisor | None = None


def set_supervisor(supervisor: Supervisor | None) -> None:
    """Set the Supervisor instance used by all routes.

    Args:
        supervisor: The configured Supervisor, or None to clear it.
    """
    global _supervisor
    _supervisor = supervisor
    logger.info("supervisor_configured", configured=supervisor is not None)


def get_supervisor() -> Supervisor:
    """Get the Supervisor instance.

    Raises:
        RuntimeError: If the Supervisor has not been configured.
    """
    if _supervisor is None:
        logger.error("supervisor_not_configured")
        raise RuntimeError(
            "Supervisor not configured. Call set_supervisor() during startup."
        )
    return _supervisor


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
    )


# -----------------------------------------------------------------------------
# Query
# -----------------------------------------------------------------------------


@router.post(
    "/api/query",
    response_model=QueryResponse,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    },
    summary="Run a query",
    description="Plan, execute and aggregate the agents needed to answer a message.",
)
async def run_query(request: QueryRequest) -> Any:
    """Answer one message with the aggregated agent results.

    Failures are not detailed to the caller: a rejected credential is a 401,
    anything else a 500 with a generic message. Details go to the logs.
    """
    try:
        supervisor = get_supervisor()
        response = await supervisor.process_query(
            request.message,
            auth_token=request.auth_token,
            session_id=request.session_id,
        )
    except UnauthenticatedError:
        return _error_response(status.HTTP_401_UNAUTHORIZED, UNAUTHENTICATED)
    except Exception as e:
        logger.error(
            "query_request_failed",
            error_kind=type(e).__name__,
            error=str(e),
        )
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, PROCESSING_FAILED)

    return response.to_wire()


class _AgentStatusTracker:
    """Follows step events to report which agents are running or done."""

    def __init__(self) -> None:
        self.active: list[str] = []
        self.completed: list[str] = []
        self.failed: list[str] = []

    def update(self, event: QueryEvent) -> None:
        name = event.agent_name
        if name is None:
            return
        if event.type == EventType.STEP_STARTED:
            self.active.append(name)
            return
        if event.type in (EventType.STEP_COMPLETE, EventType.STEP_FAILED):
            if name in self.active:
                self.active.remove(name)
        if event.type == EventType.STEP_COMPLETE:
            self.completed.append(name)
        elif event.type in (EventType.STEP_FAILED, EventType.STEP_SKIPPED):
            self.failed.append(name)

    def snapshot(self) -> dict[str, list[str]]:
        return {
            "activeAgents": list(self.active),
            "completedAgents": list(self.completed),
            "failedAgents": list(self.failed),
        }


def _sse(frame: StreamEvent) -> str:
    payload = frame.model_dump(by_alias=True, mode="json", exclude_none=True)
    return f"data: {json.dumps(payload)}\n\n"


async def _stream_query(supervisor: Supervisor, request: QueryRequest) -> AsyncIterator[str]:
    event_bus = supervisor.event_bus
    query_id = new_query_id()
    # Subscribe before the query starts so no event is missed.
    queue = event_bus.subscribe(query_id)
    task = asyncio.create_task(
        supervisor.process_query(
            request.message,
            auth_token=request.auth_token,
            session_id=request.session_id,
            query_id=query_id,
        )
    )
    tracker = _AgentStatusTracker()

    try:
        while True:
            event = await queue.get()
            if event.type == EventType.STREAM_CLOSED:
                break
            if event.type in _SILENT_EVENTS:
                continue
            tracker.update(event)
            yield _sse(StreamEvent(
                type="status",
                query_id=query_id,
                event=event.type.value,
                agent_status=tracker.snapshot(),
                data={"agentName": event.agent_name, **event.data},
            ))

        try:
            response = await task
        except UnauthenticatedError:
            yield _sse(StreamEvent(type="error", query_id=query_id, error=UNAUTHENTICATED))
        except Exception as e:
            logger.error(
                "stream_query_failed",
                query_id=query_id,
                error_kind=type(e).__name__,
                error=str(e),
            )
            yield _sse(StreamEvent(type="error", query_id=query_id, error=STREAM_FAILED))
        else:
            yield _sse(StreamEvent(type="result", query_id=query_id, data=response.to_wire()))
    finally:
        event_bus.unsubscribe(query_id, queue)
        if not task.done():
            task.cancel()
            logger.info("stream_client_disconnected", query_id=query_id)


@router.post(
    "/api/query/stream",
    summary="Run a query with progress events",
    description=(
        "Same as /api/query, streamed as Server-Sent Events: status frames "
        "while agents run, then one result or error frame."
    ),
)
async def stream_query(request: QueryRequest) -> Any:
    try:
        supervisor = get_supervisor()
    except RuntimeError:
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, PROCESSING_FAILED)
    if supervisor.event_bus is None:
        logger.error("stream_without_event_bus")
        return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, PROCESSING_FAILED)

    return StreamingResponse(
        _stream_query(supervisor, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# -----------------------------------------------------------------------------
# Roster and health
# -----------------------------------------------------------------------------


@router.get(
    "/api/agents",
    response_model=AgentListResponse,
    summary="List agents",
    description="Process-wide agents with their capability summary and cardinality.",
)
async def list_agents() -> AgentListResponse:
    supervisor = get_supervisor()
    return AgentListResponse(
        agents=[AgentInfo.model_validate(d) for d in supervisor.registry.describe_all()]
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Health check endpoint with agent roster size.",
)
async def health_check() -> HealthResponse:
    """Health check endpoint.

    Healthy once the Supervisor is configured with at least one agent.
    """
    agents = 0
    try:
        agents = len(get_supervisor().registry)
    except RuntimeError:
        # Supervisor not configured yet (e.g., during startup)
        pass

    return HealthResponse(
        status="healthy" if agents else "unhealthy",
        timestamp=time.time(),
        agents=agents,
    )
