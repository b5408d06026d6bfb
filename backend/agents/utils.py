"""LLM client utilities and helper functions for agent execution.

This module provides:
- LLMClient: Wrapper around LiteLLM with retry logic, fallback model support,
  and metrics tracking
- MockLLMClient: Scripted client for tests and offline development
- extract_json_block: Recover a JSON object from free-form model output
- Message formatting helpers for tool-calling loops
"""

import asyncio
import json
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

import structlog
from litellm import ModelResponse, acompletion
from litellm.exceptions import (
    AuthenticationError,
    BadRequestError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)

from config import settings
from events.bus import EventBus
from events.types import EventType, LLMMetrics, QueryEvent

if TYPE_CHECKING:
    from metrics import MetricsCollector

logger = structlog.get_logger()


def current_query_context() -> tuple[str | None, str | None]:
    """Return the ``(query_id, session_id)`` bound for the running query.

    The Supervisor binds both into structlog's context variables, which
    asyncio copies into every task spawned for the query.
    """
    bound = structlog.contextvars.get_contextvars()
    return bound.get("query_id"), bound.get("session_id")


def _convert_message_to_dict(message: Any) -> dict[str, Any]:
    """Convert a LangChain message object to a plain dict.

    LangGraph's add_messages reducer converts plain dicts to LangChain
    message objects. LiteLLM expects plain dicts, so we convert them back.

    Args:
        message: Either a dict or a LangChain message object

    Returns:
        A plain dict with 'role' and 'content' keys
    """
    if isinstance(message, dict):
        return message

    msg_dict: dict[str, Any] = {}

    if hasattr(message, "type"):
        role_map = {"human": "user", "ai": "assistant", "system": "system", "tool": "tool"}
        msg_dict["role"] = role_map.get(message.type, message.type)
    elif hasattr(message, "role"):
        msg_dict["role"] = message.role
    else:
        msg_dict["role"] = "user"

    msg_dict["content"] = message.content if hasattr(message, "content") else str(message)

    if getattr(message, "tool_calls", None):
        msg_dict["tool_calls"] = [
            {
                "id": tc.get("id", tc.get("name", "")),
                "type": "function",
                "function": {
                    "name": tc.get("name", ""),
                    "arguments": (
                        json.dumps(tc.get("args", {}))
                        if isinstance(tc.get("args"), dict)
                        else tc.get("args", "{}")
                    ),
                },
            }
            for tc in message.tool_calls
        ]

    if hasattr(message, "tool_call_id"):
        msg_dict["tool_call_id"] = message.tool_call_id

    return msg_dict


def _convert_messages_to_dicts(messages: list[Any]) -> list[dict[str, Any]]:
    return [_convert_message_to_dict(msg) for msg in messages]


def normalize_tool_args(raw_args: Any) -> dict[str, Any]:
    """Normalize raw tool-call arguments into a dictionary.

    Models occasionally emit malformed tool arguments (JSON arrays, primitives,
    or partially valid strings). This helper guarantees downstream tool
    execution always receives a dict-like payload.
    """
    if isinstance(raw_args, dict):
        return raw_args

    if isinstance(raw_args, str):
        try:
            parsed = json.loads(raw_args)
        except json.JSONDecodeError:
            return {"raw": raw_args}
        return parsed if isinstance(parsed, dict) else {"value": parsed}

    if raw_args is None:
        return {}

    return {"value": raw_args}


@dataclass
class ToolCallData:
    """Parsed tool call from an LLM response.

    Attributes:
        id: Unique identifier for this tool call
        name: Name of the tool to call
        args: Arguments to pass to the tool
    """

    id: str
    name: str
    args: dict[str, Any]


@dataclass
class LLMResponse:
    """Structured response from an LLM call.

    Attributes:
        content: The text content of the response
        tool_calls: List of tool calls if the model requested tools
        finish_reason: Why the model stopped (stop, tool_calls, length, etc.)
        metrics: Token usage and latency metrics
        raw_response: The original ModelResponse from LiteLLM
    """

    content: str
    tool_calls: list[ToolCallData]
    finish_reason: str
    metrics: LLMMetrics
    raw_response: ModelResponse | None = field(default=None, repr=False)


class LLMClient:
    """Wrapper around LiteLLM with retry logic, fallback, and metrics.

    The LLMClient provides:
    - Multi-provider support via LiteLLM
    - Automatic retry on transient failures with exponential backoff
    - Fallback model support when the primary model fails after retries
    - Token counting and latency tracking per query

    Clients are constructed by the composition root and injected into the
    Planner, Aggregator and agents; there is no module-level instance.

    Attributes:
        event_bus: Optional EventBus for emitting LLM call metrics
        default_model: Default model to use if not specified
        fallback_model: Optional fallback model if primary fails after retries
        retry_attempts: Number of retry attempts for transient failures
        retry_delay: Base delay between retry attempts in seconds
        metrics_collector: Optional per-query metrics sink
    """

    def __init__(
        self,
        event_bus: EventBus | None = None,
        default_model: str | None = None,
        fallback_model: str | None = None,
        retry_attempts: int | None = None,
        retry_delay: float = 1.0,
        metrics_collector: Optional["MetricsCollector"] = None,
    ) -> None:
        """Initialize the LLM client.

        Args:
            event_bus: Optional EventBus for metric emission
            default_model: Model to use if not specified in calls
            fallback_model: Model to try if primary fails (defaults to config)
            retry_attempts: Number of retries (defaults to config llm_max_retries)
            retry_delay: Base seconds between retries (exponential backoff applied)
            metrics_collector: Optional MetricsCollector for per-query token tracking
        """
        self.event_bus = event_bus
        self.default_model = default_model or settings.agent_model
        self.fallback_model = fallback_model or settings.llm_fallback_model
        self.retry_attempts = (
            retry_attempts if retry_attempts is not None
            else settings.llm_max_retries
        )
        self.retry_delay = retry_delay
        self.metrics_collector = metrics_collector

    async def call(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        agent_name: str | None = None,
    ) -> LLMResponse:
        """Make an LLM call with retry logic, fallback, and metrics.

        Retries on: RateLimitError (429), ServiceUnavailableError (500/502/503),
        Timeout errors.
        Does NOT retry on: AuthenticationError (401/403), BadRequestError (400).

        Args:
            messages: List of message dicts with 'role' and 'content'
            tools: Optional list of tool definitions
            model: Model to use (defaults to self.default_model)
            temperature: Sampling temperature (0.0-2.0)
            max_tokens: Maximum tokens in response
            agent_name: Optional agent name for event emission

        Returns:
            LLMResponse with content, tool calls, and metrics

        Raises:
            AuthenticationError: If API key is invalid
            BadRequestError: If request is malformed
            Exception: After all retries and fallback exhausted
        """
        model = model or self.default_model
        start_time = time.time()
        messages = _convert_messages_to_dicts(messages)

        last_exception: Exception | None = None
        retry_count = 0

        for attempt in range(self.retry_attempts + 1):
            try:
                response = await self._make_request(
                    messages=messages,
                    tools=tools,
                    model=model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                latency_ms = int((time.time() - start_time) * 1000)
                llm_response = self._parse_response(response, model, latency_ms)
                await self._record_call(llm_response.metrics, agent_name)

                logger.info(
                    "llm_call_complete",
                    model=model,
                    agent_name=agent_name,
                    input_tokens=llm_response.metrics.input_tokens,
                    output_tokens=llm_response.metrics.output_tokens,
                    latency_ms=latency_ms,
                    tool_calls=len(llm_response.tool_calls),
                    attempt=attempt + 1,
                )
                return llm_response

            except (RateLimitError, ServiceUnavailableError, Timeout) as e:
                last_exception = e
                retry_count = attempt + 1
                if attempt < self.retry_attempts:
                    delay = min(self.retry_delay * (2 ** attempt), 4.0)  # Cap backoff at 4s
                    logger.warning(
                        "llm_call_retry",
                        model=model,
                        attempt=attempt + 1,
                        max_retries=self.retry_attempts,
                        error_type=type(e).__name__,
                        error=str(e),
                        retry_delay=delay,
                    )
                    await self._async_sleep(delay)
                else:
                    logger.error(
                        "llm_call_failed_all_retries",
                        model=model,
                        attempts=self.retry_attempts + 1,
                        error_type=type(e).__name__,
                        error=str(e),
                    )

            except (AuthenticationError, BadRequestError) as e:
                logger.error(
                    "llm_call_failed_no_retry",
                    model=model,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                raise

        if self.fallback_model and self.fallback_model != model:
            logger.warning(
                "llm_fallback_attempt",
                primary_model=model,
                fallback_model=self.fallback_model,
                primary_retries=retry_count,
                primary_error=str(last_exception),
            )
            try:
                response = await self._make_request(
                    messages=messages,
                    tools=tools,
                    model=self.fallback_model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
                latency_ms = int((time.time() - start_time) * 1000)
                llm_response = self._parse_response(
                    response, self.fallback_model, latency_ms
                )
                await self._record_call(llm_response.metrics, agent_name)
                logger.info(
                    "llm_fallback_success",
                    fallback_model=self.fallback_model,
                    latency_ms=latency_ms,
                )
                return llm_response
            except Exception as fallback_error:
                logger.error(
                    "llm_fallback_failed",
                    fallback_model=self.fallback_model,
                    error_type=type(fallback_error).__name__,
                    error=str(fallback_error),
                )
                last_exception = last_exception or fallback_error

        raise last_exception or RuntimeError("LLM call failed after all retries")

    async def generate(
        self,
        prompt: str | dict[str, str],
        model: str | None = None,
        temperature: float = 0.0,
        agent_name: str | None = None,
    ) -> str:
        """Generate text for a prompt without tools.

        This is the narrow interface consumed by the Planner and Aggregator.

        Args:
            prompt: Either a user prompt string, or a dict with ``system``
                and ``user`` keys
            model: Model to use (defaults to self.default_model)
            temperature: Sampling temperature
            agent_name: Optional component name for telemetry

        Returns:
            The text content of the model's reply
        """
        if isinstance(prompt, str):
            messages = [{"role": "user", "content": prompt}]
        else:
            messages = []
            if prompt.get("system"):
                messages.append({"role": "system", "content": prompt["system"]})
            messages.append({"role": "user", "content": prompt.get("user", "")})

        response = await self.call(
            messages=messages,
            model=model,
            temperature=temperature,
            agent_name=agent_name,
        )
        return response.content

    async def _make_request(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        model: str,
        temperature: float,
        max_tokens: int | None,
    ) -> ModelResponse:
        """Make the actual LiteLLM request."""
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }

        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        kwargs["timeout"] = settings.llm_request_timeout_seconds

        return await acompletion(**kwargs)

    def _parse_response(
        self,
        response: ModelResponse,
        model: str,
        latency_ms: int,
    ) -> LLMResponse:
        """Parse the LiteLLM response into our structured format.

        Args:
            response: Raw ModelResponse
            model: Model that was used
            latency_ms: Request latency

        Returns:
            Structured LLMResponse
        """
        choice = response.choices[0]
        message = choice.message

        tool_calls: list[ToolCallData] = []
        for tc in message.tool_calls or []:
            tool_calls.append(
                ToolCallData(
                    id=tc.id,
                    name=tc.function.name,
                    args=normalize_tool_args(tc.function.arguments),
                )
            )

        usage = getattr(response, "usage", None)
        metrics = LLMMetrics(
            model=model,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms,
        )

        return LLMResponse(
            content=message.content or "",
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "unknown",
            metrics=metrics,
            raw_response=response,
        )

    async def _record_call(self, metrics: LLMMetrics, agent_name: str | None) -> None:
        """Record token usage and emit an LLM_CALL_COMPLETE event."""
        query_id, session_id = current_query_context()
        if query_id is None:
            return

        if self.metrics_collector:
            self.metrics_collector.record_llm_call(
                query_id,
                prompt_tokens=metrics.input_tokens,
                completion_tokens=metrics.output_tokens,
            )

        if self.event_bus:
            await self.event_bus.publish(
                QueryEvent(
                    type=EventType.LLM_CALL_COMPLETE,
                    query_id=query_id,
                    session_id=session_id,
                    agent_name=agent_name,
                    data={
                        "model": metrics.model,
                        "input_tokens": metrics.input_tokens,
                        "output_tokens": metrics.output_tokens,
                        "latency_ms": metrics.latency_ms,
                    },
                )
            )

    async def _async_sleep(self, seconds: float) -> None:
        """Async sleep for retry delay.

        Extracted to a method for easier testing/mocking.
        """
        await asyncio.sleep(seconds)


def format_tool_result_for_llm(
    tool_call_id: str,
    result: str,
) -> dict[str, Any]:
    """Format a tool result as a message for the LLM.

    Args:
        tool_call_id: The ID of the tool call this result corresponds to
        result: The string result from tool execution

    Returns:
        A message dict in the format expected by LLMs
    """
    return {
        "role": "tool",
        "tool_call_id": tool_call_id,
        "content": result,
    }


def format_assistant_message_with_tools(
    content: str,
    tool_calls: list[ToolCallData],
) -> dict[str, Any]:
    """Format an assistant message that includes tool calls.

    Args:
        content: The assistant's text response
        tool_calls: List of ToolCallData the assistant made

    Returns:
        A message dict in the format expected by LLMs
    """
    message: dict[str, Any] = {
        "role": "assistant",
        "content": content,
    }

    if tool_calls:
        message["tool_calls"] = [
            {
                "id": tc.id,
                "type": "function",
                "function": {
                    "name": tc.name,
                    "arguments": json.dumps(tc.args),
                },
            }
            for tc in tool_calls
        ]

    return message


_JSON_FENCE_RE = re.compile(r"```json[ \t]*\r?\n([\s\S]*?)\r?\n?[ \t]*```", re.IGNORECASE)


def _first_balanced_object(text: str) -> str | None:
    """Return the first balanced ``{...}`` span in text, or None.

    Braces inside JSON string literals (including escaped quotes) do not
    count towards the depth. Single pass over the text: open brace
    positions are kept on a stack, and when an opener never closes, the
    earliest-starting span that did close wins.
    """
    open_positions: list[int] = []
    best: tuple[int, int] | None = None
    in_string = False
    escaped = False

    for pos, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == "{":
            open_positions.append(pos)
        elif ch == "}" and open_positions:
            start = open_positions.pop()
            if not open_positions:
                # Nothing opened before this span is still pending.
                return text[start : pos + 1]
            if best is None or start < best[0]:
                best = (start, pos)
        elif ch == '"' and open_positions:
            # Quotes in prose outside any object are not string delimiters.
            in_string = True

    if best is None:
        return None
    return text[best[0] : best[1] + 1]


def extract_json_block(text: str) -> dict[str, Any] | None:
    """Extract a JSON object from free-form model output.

    A fenced block explicitly tagged ``json`` wins. Without one, the first
    balanced ``{...}`` span in the text is used. Only that single candidate
    is parsed; there is no searching for a later candidate that happens to
    parse.

    Feeding the function ``json.dumps`` of its own result yields the same
    object again.

    Args:
        text: The full LLM response text

    Returns:
        The parsed JSON object, or None when no candidate exists, the
        candidate does not parse, or it is not a JSON object
    """
    if not text:
        return None

    match = _JSON_FENCE_RE.search(text)
    candidate = match.group(1).strip() if match else _first_balanced_object(text)
    if candidate is None:
        return None

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None

    return parsed if isinstance(parsed, dict) else None


class MockLLMClient(LLMClient):
    """Mock LLM client for testing without API calls.

    Responses are returned in order. A response may also be an exception
    instance, in which case it is raised from the call that consumes it.

    Usage:
        >>> client = MockLLMClient(responses=[
        ...     LLMResponse(content='{"steps": []}', tool_calls=[], ...),
        ...     RuntimeError("provider down"),
        ... ])
        >>> response = await client.call(messages=[...])
    """

    def __init__(
        self,
        responses: list[LLMResponse | Exception] | None = None,
        **kwargs: Any,
    ) -> None:
        """Initialize with predefined responses.

        Args:
            responses: List of responses (or exceptions) to return in order
            **kwargs: Additional args passed to parent
        """
        super().__init__(**kwargs)
        self.responses = list(responses) if responses else []
        self.call_history: list[dict[str, Any]] = []
        self._response_index = 0

    async def call(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        agent_name: str | None = None,
    ) -> LLMResponse:
        """Return the next predefined response.

        Raises:
            IndexError: If no more responses are available
        """
        self.call_history.append({
            "messages": _convert_messages_to_dicts(messages),
            "tools": tools,
            "model": model or self.default_model,
            "temperature": temperature,
            "agent_name": agent_name,
        })

        if self._response_index >= len(self.responses):
            raise IndexError("No more mock responses available")

        response = self.responses[self._response_index]
        self._response_index += 1

        if isinstance(response, Exception):
            raise response

        await self._record_call(response.metrics, agent_name)
        return response

    def reset(self) -> None:
        """Reset the mock to start returning responses from the beginning."""
        self._response_index = 0
        self.call_history.clear()
