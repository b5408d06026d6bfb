"""Pydantic schemas for API request/response models.

This module defines the data models used by the HTTP API. The query
endpoints speak camelCase on the wire (``authToken``, ``sessionId``,
``aggregatedAgentsData``) and accept snake_case as well.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from supervisor.models import AgentResult


class QueryRequest(BaseModel):
    """Request body for running a query."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(
        min_length=1,
        max_length=10000,
        description="The user's question",
        examples=["Find the side wallets of vitalik.eth"],
    )
    auth_token: str | None = Field(
        default=None,
        alias="authToken",
        description="Bearer credential of the caller; enables actor-bound agents",
    )
    session_id: str | None = Field(
        default=None,
        alias="sessionId",
        max_length=128,
        description="Caller-chosen correlation id for logs and events",
    )


class QueryResponse(BaseModel):
    """Aggregated answer to a query."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(description="Narrative answer")
    aggregated_agents_data: list[AgentResult] = Field(
        default_factory=list,
        alias="aggregatedAgentsData",
        description="Every agent result the answer was built from",
    )


class ErrorResponse(BaseModel):
    """Generic failure body."""

    error: str = Field(examples=["Failed to process request"])


class AgentInfo(BaseModel):
    """One registered agent as shown to API clients."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    capability_summary: str = Field(alias="capabilitySummary")
    cardinality: Literal["single", "batch"]


class AgentListResponse(BaseModel):
    """Process-wide agent roster."""

    agents: list[AgentInfo]


class StreamEvent(BaseModel):
    """One Server-Sent Event frame of ``/api/query/stream``.

    ``type`` is ``status`` for progress frames, then exactly one terminal
    frame: ``result`` carrying the response envelope, or ``error``.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["status", "result", "error"]
    query_id: str = Field(alias="queryId")
    event: str | None = None
    agent_status: dict[str, list[str]] | None = Field(default=None, alias="agentStatus")
    data: dict[str, Any] | None = None
    error: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "unhealthy"] = Field(
        description="Overall health status",
    )
    timestamp: float = Field(
        description="Current server timestamp",
    )
    version: str = Field(
        default="0.1.0",
        description="API version",
    )
    agents: int = Field(
        default=0,
        description="Number of registered agents",
    )
