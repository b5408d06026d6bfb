"""In-memory metrics collection for in-flight queries.

This module provides the MetricsCollector class that accumulates token usage,
step outcomes and absorbed error counts while a query is processed. When the
query finishes, the final metrics are logged and returned to the caller.

Usage:
    >>> from metrics import MetricsCollector
    >>> collector = MetricsCollector()
    >>> collector.start("q_abc123")
    >>> collector.record_llm_call("q_abc123", prompt_tokens=100, completion_tokens=50)
    >>> collector.record_step("q_abc123", "complete")
    >>> collector.record_absorbed_error("q_abc123", "AggregationError")
    >>> final = collector.finish("q_abc123")
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


@dataclass
class QueryMetricsData:
    """Accumulated metrics for a single query.

    Attributes:
        prompt_tokens: Total input tokens across all LLM calls.
        completion_tokens: Total output tokens across all LLM calls.
        llm_calls: Number of LLM invocations.
        tool_calls: Number of data tool executions.
        steps: Step outcome counts keyed by status (complete/failed/skipped).
        absorbed_errors: Errors recovered from, keyed by error class name.
        duration_ms: Total execution time in milliseconds (set by finish()).
        started_at: Unix timestamp when tracking began.
    """

    prompt_tokens: int = 0
    completion_tokens: int = 0
    llm_calls: int = 0
    tool_calls: int = 0
    steps: Counter[str] = field(default_factory=Counter)
    absorbed_errors: Counter[str] = field(default_factory=Counter)
    duration_ms: int = 0
    started_at: float = field(default_factory=time.time)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dict suitable for logging or JSON output."""
        return {
            "total_tokens": self.total_tokens,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "llm_calls": self.llm_calls,
            "tool_calls": self.tool_calls,
            "steps": dict(self.steps),
            "absorbed_errors": dict(self.absorbed_errors),
            "duration_ms": self.duration_ms,
        }


class MetricsCollector:
    """In-memory collector that tracks per-query metrics.

    Recording against a query that is not being tracked is a no-op, so
    components can record unconditionally.

    Attributes:
        _queries: Mapping from query_id to its metrics data.
    """

    def __init__(self) -> None:
        """Initialize an empty metrics collector."""
        self._queries: dict[str, QueryMetricsData] = {}

    def start(self, query_id: str) -> None:
        """Begin tracking metrics for a query.

        If the query is already being tracked, this is a no-op.

        Args:
            query_id: The query to start tracking.
        """
        if query_id in self._queries:
            return
        self._queries[query_id] = QueryMetricsData()

    def record_llm_call(
        self,
        query_id: str,
        prompt_tokens: int,
        completion_tokens: int,
    ) -> None:
        """Record token usage from a single LLM call.

        Args:
            query_id: The query the LLM call belongs to.
            prompt_tokens: Number of input tokens used.
            completion_tokens: Number of output tokens used.
        """
        data = self._queries.get(query_id)
        if data is None:
            return
        data.prompt_tokens += prompt_tokens
        data.completion_tokens += completion_tokens
        data.llm_calls += 1

    def record_tool_call(self, query_id: str) -> None:
        """Increment the tool call counter for a query."""
        data = self._queries.get(query_id)
        if data is not None:
            data.tool_calls += 1

    def record_step(self, query_id: str, status: str) -> None:
        """Count one plan step outcome.

        Args:
            query_id: The query the step belongs to.
            status: Step status (complete, failed or skipped).
        """
        data = self._queries.get(query_id)
        if data is not None:
            data.steps[status] += 1

    def record_absorbed_error(self, query_id: str, error_kind: str) -> None:
        """Count an error that was recovered from instead of surfaced.

        Args:
            query_id: The query the error belongs to.
            error_kind: Error class name, e.g. ``AgentInvocationError``.
        """
        data = self._queries.get(query_id)
        if data is not None:
            data.absorbed_errors[error_kind] += 1

    def finish(self, query_id: str) -> QueryMetricsData | None:
        """Finalize metrics for a query, calculating duration.

        The query's metrics data is removed from the collector after
        this call.

        Args:
            query_id: The query to finalize.

        Returns:
            The final QueryMetricsData, or None if not tracked.
        """
        data = self._queries.pop(query_id, None)
        if data is None:
            logger.warning("metrics_finish_no_query", query_id=query_id)
            return None

        data.duration_ms = int((time.time() - data.started_at) * 1000)

        logger.info("metrics_query_finished", query_id=query_id, **data.to_dict())

        return data

    def get(self, query_id: str) -> QueryMetricsData | None:
        """Get current (in-progress) metrics for a query."""
        return self._queries.get(query_id)
