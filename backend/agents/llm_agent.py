"""Tool-calling LangGraph agent behind every forensics capability.

Each domain agent is an LLMAgent configured with a prompt, a tool subset
and a pydantic model for its ``data`` payload. The graph is::

    START -> reason -> [tool calls -> act | no tool calls -> respond]
    act -> [iterations left -> reason | budget spent -> finalize]
    finalize -> respond -> END

``finalize`` asks for the answer without offering tools, so the loop ends
even when the model keeps requesting data. ``respond`` accepts only a reply
that parses into the agent's envelope; anything else raises
AgentResponseFormatError.
"""

from typing import Annotated, Any, TypedDict

import structlog
from langgraph.graph import END, START, StateGraph
from langgraph.graph.message import add_messages
from pydantic import BaseModel, ValidationError

from agents.prompts import (
    RESPOND_PROMPT,
    compose_prompt_sections,
    format_prior_context,
    get_agent_system_prompt,
)
from agents.tools import ToolCall, ToolExecutor, get_tool_definitions_for_llm
from agents.utils import (
    LLMClient,
    _convert_message_to_dict,
    extract_json_block,
    format_assistant_message_with_tools,
    format_tool_result_for_llm,
    normalize_tool_args,
)
from config import settings
from supervisor.contract import AgentDescriptor, Cardinality
from supervisor.errors import AgentResponseFormatError
from supervisor.models import AgentResult

logger = structlog.get_logger()


class AgentState(TypedDict):
    """State for one agent invocation.

    Attributes:
        messages: Conversation history with add_messages reducer
        iteration: Completed reason steps
        max_iterations: Reason steps allowed before finalize
        final_content: Text of the reply the envelope is parsed from
        result: The validated envelope, set by respond
    """

    messages: Annotated[list[dict[str, Any]], add_messages]
    iteration: int
    max_iterations: int
    final_content: str
    result: dict[str, Any] | None


class LLMAgent(AgentDescriptor):
    """An AgentDescriptor driven by a LangGraph tool-calling loop.

    Attributes:
        name: Registered agent name.
        capability_summary: Text shown to the planner.
        cardinality: SINGLE or BATCH.
        tool_names: Tools offered to the model (may be empty).
        data_model: Pydantic model the ``data`` payload must satisfy.
    """

    def __init__(
        self,
        name: str,
        capability_summary: str,
        data_model: type[BaseModel],
        llm_client: LLMClient,
        tool_executor: ToolExecutor | None = None,
        tool_names: list[str] | None = None,
        cardinality: Cardinality = Cardinality.SINGLE,
        data_example: dict[str, Any] | None = None,
        prompt_fields: dict[str, str] | None = None,
        model: str | None = None,
        max_iterations: int | None = None,
    ) -> None:
        self.name = name
        self.capability_summary = capability_summary
        self.cardinality = cardinality
        self.data_model = data_model
        self.llm_client = llm_client
        self.tool_executor = tool_executor
        self.tool_names = list(tool_names or [])
        self.data_example = data_example or {}
        self.prompt_fields = dict(prompt_fields or {})
        self.model = model
        self.max_iterations = max_iterations or settings.max_agent_iterations

        if self.tool_names and tool_executor is None:
            raise ValueError(f"{name} declares tools but has no tool executor")

        self._tools = get_tool_definitions_for_llm(self.tool_names) if self.tool_names else None
        self._compiled_graph = self._build_graph()

    def _build_graph(self) -> StateGraph:
        """Build and compile the LangGraph StateGraph.

        Returns:
            Compiled StateGraph ready for execution
        """
        graph = StateGraph(AgentState)

        graph.add_node("reason", self._reason)
        graph.add_node("act", self._act)
        graph.add_node("finalize", self._finalize)
        graph.add_node("respond", self._respond)

        graph.add_edge(START, "reason")
        graph.add_conditional_edges(
            "reason",
            self._route_after_reason,
            {"act": "act", "respond": "respond"},
        )
        graph.add_conditional_edges(
            "act",
            self._route_after_act,
            {"reason": "reason", "finalize": "finalize"},
        )
        graph.add_edge("finalize", "respond")
        graph.add_edge("respond", END)

        return graph.compile()

    def create_initial_state(
        self,
        user_input: str,
        prior_context: list[AgentResult] | None = None,
    ) -> AgentState:
        system_prompt = get_agent_system_prompt(
            self.name, self.data_example, **self.prompt_fields
        )
        user_prompt = compose_prompt_sections(
            f"USER QUERY: {user_input}",
            format_prior_context(prior_context),
        )
        return AgentState(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            iteration=0,
            max_iterations=self.max_iterations,
            final_content="",
            result=None,
        )

    async def invoke(
        self,
        user_input: str,
        prior_context: list[AgentResult] | None = None,
    ) -> AgentResult:
        """Run the loop and return the validated envelope.

        Raises:
            AgentResponseFormatError: If the final reply is not a valid envelope.
            Exception: Model call failures propagate unchanged.
        """
        logger.info(
            "agent_invoked",
            agent_name=self.name,
            prior_results=len(prior_context or []),
        )
        final_state = await self._compiled_graph.ainvoke(
            self.create_initial_state(user_input, prior_context)
        )
        return AgentResult.model_validate(final_state["result"])

    # -----------------------------------------------------------------------
    # Nodes
    # -----------------------------------------------------------------------

    async def _reason(self, state: AgentState) -> dict[str, Any]:
        response = await self.llm_client.call(
            messages=list(state["messages"]),
            tools=self._tools,
            model=self.model,
            agent_name=self.name,
        )

        logger.debug(
            "agent_reason_complete",
            agent_name=self.name,
            iteration=state["iteration"] + 1,
            tool_calls=len(response.tool_calls),
        )

        return {
            "messages": [
                format_assistant_message_with_tools(response.content, response.tool_calls)
            ],
            "iteration": state["iteration"] + 1,
            "final_content": response.content,
        }

    async def _act(self, state: AgentState) -> dict[str, Any]:
        last_message = _convert_message_to_dict(state["messages"][-1])

        tool_messages: list[dict[str, Any]] = []
        for tc_raw in last_message.get("tool_calls", []):
            function_data = tc_raw.get("function", {})
            tool_call = ToolCall(
                id=tc_raw.get("id", ""),
                name=function_data.get("name", ""),
                args=normalize_tool_args(function_data.get("arguments", {})),
            )
            result = await self.tool_executor.execute(tool_call, agent_name=self.name)
            tool_messages.append(format_tool_result_for_llm(tool_call.id, result.content))

        return {"messages": tool_messages}

    async def _finalize(self, state: AgentState) -> dict[str, Any]:
        logger.warning(
            "agent_iteration_budget_spent",
            agent_name=self.name,
            iterations=state["iteration"],
        )
        prompt = {"role": "user", "content": RESPOND_PROMPT}
        response = await self.llm_client.call(
            messages=[*state["messages"], prompt],
            model=self.model,
            agent_name=self.name,
        )
        return {
            "messages": [prompt, {"role": "assistant", "content": response.content}],
            "final_content": response.content,
        }

    async def _respond(self, state: AgentState) -> dict[str, Any]:
        envelope = self.parse_envelope(state["final_content"])
        logger.info("agent_envelope_accepted", agent_name=self.name)
        return {"result": envelope.model_dump(by_alias=True, mode="json")}

    # -----------------------------------------------------------------------
    # Routing
    # -----------------------------------------------------------------------

    def _route_after_reason(self, state: AgentState) -> str:
        last_message = _convert_message_to_dict(state["messages"][-1])
        return "act" if last_message.get("tool_calls") else "respond"

    def _route_after_act(self, state: AgentState) -> str:
        if state["iteration"] >= state["max_iterations"]:
            return "finalize"
        return "reason"

    # -----------------------------------------------------------------------
    # Envelope
    # -----------------------------------------------------------------------

    def parse_envelope(self, content: str) -> AgentResult:
        """Parse and validate the model's final reply.

        Raises:
            AgentResponseFormatError: On missing JSON, a malformed envelope,
                a foreign agent name, or data failing the data model.
        """
        parsed = extract_json_block(content)
        if parsed is None:
            logger.warning(
                "agent_envelope_missing",
                agent_name=self.name,
                response_preview=content[:200],
            )
            raise AgentResponseFormatError(f"{self.name} reply contains no JSON object")

        try:
            envelope = AgentResult.model_validate(parsed)
        except ValidationError as e:
            raise AgentResponseFormatError(f"{self.name} envelope is malformed: {e}") from e

        if envelope.agent_name != self.name:
            raise AgentResponseFormatError(
                f"{self.name} envelope names {envelope.agent_name!r}"
            )

        try:
            data = self.data_model.model_validate(self.prepare_data(envelope.data))
        except ValidationError as e:
            logger.warning(
                "agent_data_invalid",
                agent_name=self.name,
                errors=e.error_count(),
            )
            raise AgentResponseFormatError(f"{self.name} data is invalid: {e}") from e

        return AgentResult(
            agent_name=self.name,
            message=envelope.message,
            data=data.model_dump(mode="json"),
        )

    def prepare_data(self, data: Any) -> Any:
        """Hook for subclasses to complete ``data`` before validation."""
        return data


def create_llm_agent(
    name: str,
    capability_summary: str,
    data_model: type[BaseModel],
    llm_client: LLMClient,
    tool_executor: ToolExecutor | None = None,
    **kwargs: Any,
) -> LLMAgent:
    """Factory function to create an LLMAgent.

    Example:
        >>> agent = create_llm_agent(
        ...     "ENSWalletIdentifierAgent",
        ...     "Resolves ENS domains...",
        ...     EnsWalletData,
        ...     llm_client,
        ...     tool_executor,
        ...     tool_names=["ens_lookup"],
        ... )
        >>> result = await agent.invoke("Who is vitalik.eth?")
    """
    return LLMAgent(
        name=name,
        capability_summary=capability_summary,
        data_model=data_model,
        llm_client=llm_client,
        tool_executor=tool_executor,
        **kwargs,
    )
