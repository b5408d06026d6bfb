"""Event type definitions for query progress reporting.

Every meaningful state change while a query moves through planning,
execution and aggregation produces an event. The streaming endpoint
forwards these to the client.
"""

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class EventType(StrEnum):
    """All event types emitted while processing a query.

    Events are categorized by:
    - Query lifecycle: start, completion, error and stream close
    - Planning: the validated plan
    - Steps: one agent invocation per plan step
    - Aggregation: synthesis of the final answer
    - Observability: LLM and tool call telemetry
    """

    # Query lifecycle
    QUERY_STARTED = "query_started"
    QUERY_COMPLETE = "query_complete"
    QUERY_ERROR = "query_error"
    STREAM_CLOSED = "stream_closed"

    # Planning
    PLAN_CREATED = "plan_created"

    # Steps
    STEP_STARTED = "step_started"
    STEP_COMPLETE = "step_complete"
    STEP_FAILED = "step_failed"
    STEP_SKIPPED = "step_skipped"

    # Aggregation
    AGGREGATION_STARTED = "aggregation_started"
    AGGREGATION_COMPLETE = "aggregation_complete"

    # Observability
    AGENT_TOOL_CALL = "agent_tool_call"
    AGENT_TOOL_RESULT = "agent_tool_result"
    LLM_CALL_COMPLETE = "llm_call_complete"


class QueryEvent(BaseModel):
    """An event emitted while a query is processed.

    Payload schemas by event type:

    QUERY_STARTED:
        - message: str - The user query

    PLAN_CREATED:
        - steps: list - ``{agent_name, reason, depends_on}`` per step
        - merge_directive: str
        - sequential: bool

    STEP_STARTED / STEP_COMPLETE / STEP_FAILED / STEP_SKIPPED:
        - step_index: int
        - reason: str - Planner's reason (STEP_STARTED only)
        - message: str - Agent message (STEP_COMPLETE only)
        - error: str - Failure description (STEP_FAILED / STEP_SKIPPED)

    AGGREGATION_STARTED:
        - results: int - Completed steps
        - incomplete: int - Failed or skipped steps

    AGGREGATION_COMPLETE:
        - agents: list[str] - Agents whose data made it into the response

    QUERY_COMPLETE:
        - result: dict - The response envelope in wire form
        - duration_ms: int

    QUERY_ERROR:
        - error_kind: str - Error class name
        - error: str

    AGENT_TOOL_CALL / AGENT_TOOL_RESULT:
        - tool: str
        - args: dict (call) / success: bool (result)

    LLM_CALL_COMPLETE:
        - model: str
        - input_tokens: int
        - output_tokens: int
        - latency_ms: int
    """

    type: EventType
    timestamp: float = Field(default_factory=time.time)
    query_id: str
    session_id: str | None = None
    agent_name: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class LLMMetrics(BaseModel):
    """Token and latency metrics for a single LLM call.

    Attributes:
        model: The model identifier (e.g., "gpt-4o")
        input_tokens: Number of tokens in the prompt
        output_tokens: Number of tokens in the response
        latency_ms: Time taken for the LLM call in milliseconds
    """

    model: str
    input_tokens: int
    output_tokens: int
    latency_ms: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used in this call."""
        return self.input_tokens + self.output_tokens
