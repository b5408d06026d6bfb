"""Shared test fixtures for backend tests.

Provides scripted agents, mock LLM clients, a fresh EventBus and
response factories so tests never touch a real model provider or a
blockchain data API.
"""

import asyncio
import json
import sys
from collections import defaultdict
from typing import Any

import pytest

# Ensure the backend package root is on sys.path so that absolute imports
# like ``from supervisor.planner import ...`` resolve correctly when running
# pytest from the repository root.
_backend_root = str(
    __import__("pathlib").Path(__file__).resolve().parent.parent
)
if _backend_root not in sys.path:
    sys.path.insert(0, _backend_root)

from agents.utils import (  # noqa: E402
    LLMResponse,
    MockLLMClient,
    ToolCallData,
    _convert_messages_to_dicts,
)
from events.bus import EventBus, reset_event_bus  # noqa: E402
from events.types import EventType, LLMMetrics, QueryEvent  # noqa: E402
from metrics import MetricsCollector  # noqa: E402
from supervisor.contract import AgentDescriptor, Cardinality  # noqa: E402
from supervisor.models import AgentResult  # noqa: E402

VITALIK_ADDRESS = "0xd8dA6BF26964aF9D7eEd9e03E53415D37aA96045"

# ---------------------------------------------------------------------------
# Event Bus and metrics
# ---------------------------------------------------------------------------


@pytest.fixture()
def event_bus() -> EventBus:
    """Return a fresh EventBus instance for each test."""
    reset_event_bus()
    bus = EventBus()
    return bus


@pytest.fixture()
def metrics_collector() -> MetricsCollector:
    return MetricsCollector()


# ---------------------------------------------------------------------------
# Response Factories
# ---------------------------------------------------------------------------


def make_llm_response(
    content: str = "",
    tool_calls: list[ToolCallData] | None = None,
    finish_reason: str = "stop",
) -> LLMResponse:
    """Create an LLMResponse with sensible defaults."""
    return LLMResponse(
        content=content,
        tool_calls=tool_calls or [],
        finish_reason="tool_calls" if tool_calls else finish_reason,
        metrics=LLMMetrics(model="mock", input_tokens=10, output_tokens=20, latency_ms=100),
    )


def make_tool_call(name: str, args: dict[str, Any], call_id: str = "tc_1") -> ToolCallData:
    """Create a ToolCallData."""
    return ToolCallData(id=call_id, name=name, args=args)


def fenced(payload: dict[str, Any]) -> str:
    """Wrap a payload the way models usually answer: prose plus a json fence."""
    return f"Here you go:\n```json\n{json.dumps(payload)}\n```"


def plan_text(
    *steps: tuple[str, str] | tuple[str, str, list[int]],
    merge_directive: str = "Combine the findings",
    sequential: bool = False,
) -> str:
    """Planner reply for steps given as (agentName, reason[, dependsOn])."""
    return fenced({
        "steps": [
            {
                "agentName": step[0],
                "reason": step[1],
                "dependsOn": step[2] if len(step) > 2 else [],
            }
            for step in steps
        ],
        "mergeDirective": merge_directive,
        "sequential": sequential,
    })


# ---------------------------------------------------------------------------
# Event Collection Helpers
# ---------------------------------------------------------------------------


def drain(queue: asyncio.Queue[QueryEvent]) -> list[QueryEvent]:
    """Return every event already delivered to ``queue``.

    Closing a stream discards its buffer, so tests subscribe before the
    query runs and drain afterwards.
    """
    events: list[QueryEvent] = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


def event_types(events: list[QueryEvent]) -> list[EventType]:
    """Event types in order, without LLM telemetry."""
    return [e.type for e in events if e.type != EventType.LLM_CALL_COMPLETE]


# ---------------------------------------------------------------------------
# Scripted agents
# ---------------------------------------------------------------------------


class FakeAgent(AgentDescriptor):
    """Agent double with call counting.

    Args:
        name: Agent name.
        message: Message of the returned envelope (formatted with the
            invocation count as ``{n}``).
        data: ``data`` of the returned envelope, or a callable building it
            from ``(user_input, prior_context)``.
        error: Exception raised instead of returning.
        delay: Seconds to sleep before answering.
        cardinality: Declared cardinality.
    """

    def __init__(
        self,
        name: str,
        message: str = "done",
        data: Any = None,
        error: Exception | None = None,
        delay: float = 0.0,
        cardinality: Cardinality = Cardinality.SINGLE,
        summary: str | None = None,
    ) -> None:
        self.name = name
        self.capability_summary = summary or f"{name} capability"
        self.cardinality = cardinality
        self._message = message
        self._data = data
        self._error = error
        self._delay = delay
        self.call_count = 0
        self.calls: list[tuple[str, list[AgentResult] | None]] = []

    async def invoke(
        self,
        user_input: str,
        prior_context: list[AgentResult] | None = None,
    ) -> AgentResult:
        self.call_count += 1
        self.calls.append((user_input, prior_context))
        if self._delay:
            await asyncio.sleep(self._delay)
        if self._error is not None:
            raise self._error
        data = self._data(user_input, prior_context) if callable(self._data) else self._data
        return AgentResult(
            agent_name=self.name,
            message=self._message.format(n=self.call_count),
            data=data,
        )


# ---------------------------------------------------------------------------
# RoutingMockLLMClient
# ---------------------------------------------------------------------------


class RoutingMockLLMClient(MockLLMClient):
    """Mock LLM that routes responses by agent_name for concurrent tests.

    Concurrent plan steps share one client, and asyncio interleaving makes
    response ordering non-deterministic, so responses are routed by the
    ``agent_name`` each caller passes.

    Args:
        response_map: Dict mapping agent_name -> list of LLMResponses.
                      Use ``"default"`` for calls without a matching name.
    """

    def __init__(
        self,
        response_map: dict[str, list[LLMResponse | Exception]],
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._response_map: dict[str, list[LLMResponse | Exception]] = {
            k: list(v) for k, v in response_map.items()
        }
        self._indexes: dict[str, int] = defaultdict(int)

    async def call(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        agent_name: str | None = None,
    ) -> LLMResponse:
        self.call_history.append({
            "agent_name": agent_name,
            "messages": _convert_messages_to_dicts(messages),
            "tools": tools,
        })
        key = agent_name if agent_name in self._response_map else "default"
        idx = self._indexes[key]
        self._indexes[key] = idx + 1
        response = self._response_map[key][idx]
        if isinstance(response, Exception):
            raise response
        await self._record_call(response.metrics, agent_name)
        return response
