"""Aggregator: merges step results into the final response envelope.

The synthesis model only contributes the narrative ``message``. The
``aggregatedAgentsData`` array is always the Executor's own results, so
whatever the model echoes back is never trusted as data. If synthesis
fails, a deterministic message is built from the agents' own messages.
"""

import structlog

from agents.prompts import build_aggregator_prompt
from agents.utils import LLMClient, extract_json_block
from config import settings
from metrics import MetricsCollector
from supervisor.errors import AggregationError
from supervisor.models import (
    AggregatedResponse,
    AgentResult,
    ExecutionContext,
    ExecutionReport,
    Plan,
    StepOutcome,
)

logger = structlog.get_logger(__name__)


def describe_incomplete(outcome: StepOutcome) -> str:
    return f"{outcome.agent_name} (step {outcome.step_index + 1}): {outcome.status.value}"


def fallback_message(results: list[AgentResult], incomplete: list[StepOutcome]) -> str:
    """Deterministic synthesis: each result's message with attribution."""
    parts = [f"{r.agent_name}: {r.message}" for r in results]
    if incomplete:
        names = ", ".join(describe_incomplete(o) for o in incomplete)
        parts.append(f"The following analyses could not be completed: {names}")
    return "\n\n".join(parts)


class Aggregator:
    """Produces the AggregatedResponse for one query.

    Attributes:
        llm_client: Client used for the synthesis call.
        model: Model override (defaults to settings.aggregator_model).
        temperature: Sampling temperature for synthesis.
        metrics_collector: Optional sink for absorbed-error counts.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        model: str | None = None,
        temperature: float | None = None,
        metrics_collector: MetricsCollector | None = None,
    ) -> None:
        self.llm_client = llm_client
        self.model = model or settings.aggregator_model
        self.temperature = (
            temperature if temperature is not None else settings.aggregator_temperature
        )
        self.metrics_collector = metrics_collector

    async def aggregate(
        self,
        plan: Plan,
        report: ExecutionReport,
        context: ExecutionContext,
    ) -> AggregatedResponse:
        """Merge the report into one response.

        Never raises for synthesis problems: those are logged as an
        AggregationError and replaced with the deterministic message.

        Args:
            plan: The executed plan (for its merge directive).
            report: Outcomes from the Executor.
            context: The query's execution context.

        Returns:
            The final envelope, carrying a copy of the Executor's results.
        """
        results = report.results
        incomplete = report.incomplete

        try:
            message = await self._synthesize(plan, results, incomplete, context)
            fallback = False
        except AggregationError as e:
            logger.warning(
                "aggregation_fallback_used",
                error_kind=type(e).__name__,
                error=str(e),
            )
            if self.metrics_collector:
                self.metrics_collector.record_absorbed_error(
                    context.query_id, type(e).__name__
                )
            message = fallback_message(results, incomplete)
            fallback = True

        if incomplete and not fallback:
            # Gaps are listed whatever the model wrote.
            message = (
                f"{message}\n\nNote: the following analyses could not be completed: "
                + ", ".join(describe_incomplete(o) for o in incomplete)
            )

        logger.info(
            "aggregation_complete",
            results=len(results),
            incomplete=len(incomplete),
            fallback=fallback,
        )
        return AggregatedResponse(
            message=message,
            aggregated_agents_data=[r.model_copy(deep=True) for r in results],
        )

    async def _synthesize(
        self,
        plan: Plan,
        results: list[AgentResult],
        incomplete: list[StepOutcome],
        context: ExecutionContext,
    ) -> str:
        """Ask the model for the narrative message.

        Raises:
            AggregationError: On a model error or unusable output.
        """
        prompt = build_aggregator_prompt(
            context.user_input,
            plan.merge_directive,
            results,
            [describe_incomplete(o) for o in incomplete],
        )

        try:
            raw = await self.llm_client.generate(
                prompt,
                model=self.model,
                temperature=self.temperature,
                agent_name="Aggregator",
            )
        except Exception as e:
            raise AggregationError(f"synthesis model call failed: {e}") from e

        parsed = extract_json_block(raw)
        if parsed is None:
            raise AggregationError("no valid JSON found in synthesis output")

        message = parsed.get("message")
        if not isinstance(message, str) or not message.strip():
            raise AggregationError("synthesis output has no message")
        return message.strip()
