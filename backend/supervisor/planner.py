"""Planner: turns a user query and the agent roster into a Plan.

The planning model is an untrusted oracle. Its reply goes through
``extract_json_block`` and pydantic validation before anything downstream
sees it, and any failure along the way becomes a PlanningError. There are
no retries at this layer.
"""

from collections.abc import Sequence

import structlog
from pydantic import ValidationError

from agents.prompts import build_planner_prompt
from agents.utils import LLMClient, extract_json_block
from config import settings
from supervisor.errors import PlanningError
from supervisor.models import Plan

logger = structlog.get_logger(__name__)


class Planner:
    """Builds a Plan with a single language-model call.

    Attributes:
        llm_client: Client used for the planning call.
        model: Model override for planning (defaults to settings.planner_model).
        temperature: Sampling temperature for planning.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        model: str | None = None,
        temperature: float | None = None,
    ) -> None:
        self.llm_client = llm_client
        self.model = model or settings.planner_model
        self.temperature = (
            temperature if temperature is not None else settings.planner_temperature
        )

    async def plan(
        self,
        user_input: str,
        capabilities: Sequence[dict[str, str]],
    ) -> Plan:
        """Produce a plan for ``user_input``.

        Agent names in the returned plan are NOT checked against the
        registry; that is the PlanValidator's job.

        Args:
            user_input: The user's query.
            capabilities: ``AgentRegistry.describe_all()`` output.

        Returns:
            A plan with at least one step, each with a non-blank agent name
            and reason.

        Raises:
            PlanningError: On empty input, a model error, or a reply with no
                valid JSON plan.
        """
        if not user_input or not user_input.strip():
            raise PlanningError("user input must not be empty")
        if not capabilities:
            raise PlanningError("no agents available for planning")

        prompt = build_planner_prompt(user_input, capabilities)

        try:
            raw = await self.llm_client.generate(
                prompt,
                model=self.model,
                temperature=self.temperature,
                agent_name="Planner",
            )
        except Exception as e:
            logger.error(
                "planning_llm_failed",
                error_type=type(e).__name__,
                error=str(e),
            )
            raise PlanningError(f"planning model call failed: {e}") from e

        parsed = extract_json_block(raw)
        if parsed is None:
            logger.warning("planning_no_json", response_preview=raw[:200])
            raise PlanningError("no valid JSON found")

        try:
            plan = Plan.model_validate(parsed)
        except ValidationError as e:
            logger.warning(
                "planning_invalid_plan",
                errors=e.error_count(),
                response_preview=raw[:200],
            )
            raise PlanningError(f"invalid plan: {e}") from e

        logger.info(
            "plan_created",
            steps=[s.agent_name for s in plan.steps],
            sequential=plan.sequential,
        )
        return plan
