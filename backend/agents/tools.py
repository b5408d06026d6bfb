"""Tool definitions and data-source dispatch for the forensics agents.

This module defines the tools the agents may call and provides the
ToolExecutor class that routes tool calls to the Dune, DexScreener and ENS
clients in ``agents.data_sources``.
"""

import json
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

import structlog

from agents.data_sources import SUPPORTED_CHAINS, DataSources
from agents.utils import current_query_context
from events.bus import EventBus
from events.types import EventType, QueryEvent

if TYPE_CHECKING:
    from metrics import MetricsCollector

logger = structlog.get_logger()


# Saved Dune queries backing the data tools.
DUNE_QUERY_IDS: dict[str, int] = {
    "wallet_swaps_retriever": 4772832,
    "token_swaps_retriever": 4772807,
    "bidirectional_transfers_retriever": 4777210,
    "funding_source_retriever": 4777803,
    "early_token_buyers_fetcher": 4788297,
    "historical_ens_domains_fetcher": 4783251,
}

_DATE_HINT = "Date as 'YYYY-MM-DD HH:MM' (a space, not 'T', between date and time)"

_WALLET_PARAM = {
    "wallet_address": {
        "type": "string",
        "description": "Wallet address (0x...)",
    },
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [
    {
        "name": "ens_lookup",
        "description": "Resolve an ENS domain (e.g. 'vitalik.eth') to its Ethereum address.",
        "parameters": {
            "type": "object",
            "properties": {
                "ens_domain": {
                    "type": "string",
                    "description": "ENS domain; '.eth' is appended when missing",
                },
            },
            "required": ["ens_domain"],
        },
    },
    {
        "name": "historical_ens_domains_fetcher",
        "description": "Retrieve all historical ENS domains associated with a wallet address.",
        "parameters": {
            "type": "object",
            "properties": dict(_WALLET_PARAM),
            "required": ["wallet_address"],
        },
    },
    {
        "name": "dexscreener_token_resolver",
        "description": (
            "Resolve a token ticker to the contract address of its most liquid "
            "pair on a chain."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "ticker": {
                    "type": "string",
                    "description": "Token ticker/symbol, e.g. 'DEGEN'",
                },
                "chain": {
                    "type": "string",
                    "enum": list(SUPPORTED_CHAINS),
                    "description": "Chain to search on, default 'base'",
                },
            },
            "required": ["ticker"],
        },
    },
    {
        "name": "early_token_buyers_fetcher",
        "description": "Retrieve the first N buyers of a token contract address.",
        "parameters": {
            "type": "object",
            "properties": {
                "token_address": {
                    "type": "string",
                    "description": "Token contract address (0x...)",
                },
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of early buyers, default 50",
                },
            },
            "required": ["token_address"],
        },
    },
    {
        "name": "wallet_swaps_retriever",
        "description": "Retrieve swap activity for a wallet address within a date range.",
        "parameters": {
            "type": "object",
            "properties": {
                **_WALLET_PARAM,
                "start_date": {"type": "string", "description": _DATE_HINT},
                "end_date": {"type": "string", "description": _DATE_HINT},
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of swaps, default 10",
                },
            },
            "required": ["wallet_address", "start_date", "end_date"],
        },
    },
    {
        "name": "token_swaps_retriever",
        "description": "Retrieve BUY or SELL swaps of a token within a date range.",
        "parameters": {
            "type": "object",
            "properties": {
                "token_address": {
                    "type": "string",
                    "description": "Token contract address (0x...)",
                },
                "side": {"type": "string", "enum": ["BUY", "SELL"]},
                "start_date": {"type": "string", "description": _DATE_HINT},
                "end_date": {"type": "string", "description": _DATE_HINT},
                "limit": {
                    "type": "integer",
                    "description": "Maximum number of swaps, default 50",
                },
            },
            "required": ["token_address", "side", "start_date", "end_date"],
        },
    },
    {
        "name": "bidirectional_transfers_retriever",
        "description": (
            "Retrieve wallets that have both sent funds to and received funds "
            "from a wallet address."
        ),
        "parameters": {
            "type": "object",
            "properties": dict(_WALLET_PARAM),
            "required": ["wallet_address"],
        },
    },
    {
        "name": "funding_source_retriever",
        "description": (
            "Retrieve the wallet that first transferred native tokens to a wallet "
            "address. Returns at most one address."
        ),
        "parameters": {
            "type": "object",
            "properties": dict(_WALLET_PARAM),
            "required": ["wallet_address"],
        },
    },
]

_TOOL_DEFINITION_MAP: dict[str, dict[str, Any]] = {
    tool["name"]: tool for tool in TOOL_DEFINITIONS
}

DEFAULT_LIMITS: dict[str, int] = {
    "wallet_swaps_retriever": 10,
    "token_swaps_retriever": 50,
    "early_token_buyers_fetcher": 50,
}

# Keep tool payloads bounded so a single call cannot flood model context.
MAX_TOOL_OUTPUT_CHARS = 20_000
MAX_EVENT_RESULT_CHARS = 2_000


class ToolArgumentError(ValueError):
    """Raised when a tool call has invalid or unsupported arguments."""


def get_tool_definitions_for_llm(names: list[str] | None = None) -> list[dict[str, Any]]:
    """Get tool definitions formatted for LLM function calling.

    Args:
        names: Restrict to these tools, in this order. All tools when None.

    Returns:
        List of tool definitions in the format expected by LiteLLM.

    Raises:
        KeyError: If a name is not a known tool.
    """
    selected = (
        TOOL_DEFINITIONS if names is None
        else [_TOOL_DEFINITION_MAP[name] for name in names]
    )
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool["description"],
                "parameters": tool["parameters"],
            },
        }
        for tool in selected
    ]


@dataclass
class ToolCall:
    """Represents a parsed tool call from an LLM response.

    Attributes:
        id: Unique identifier for this tool call (from LLM)
        name: Name of the tool to execute
        args: Arguments to pass to the tool
    """

    id: str
    name: str
    args: dict[str, Any]


@dataclass
class ToolResult:
    """Result of executing a tool.

    Attributes:
        tool_call_id: ID of the tool call this result corresponds to
        content: The result content as a string
        success: Whether the tool execution succeeded
        error: Error message if execution failed
    """

    tool_call_id: str
    content: str
    success: bool
    error: str | None = None


def _normalize_date(value: str) -> str:
    """Dune date parameters use a space between date and time."""
    return value.strip().replace("T", " ").rstrip("Z")


class ToolExecutor:
    """Executes tool calls against the data sources and emits events.

    Tool failures never propagate: they come back as a ToolResult whose
    content starts with ``Error:`` so the model can react to them.

    Attributes:
        data_sources: Clients for Dune, DexScreener and ENS.
        event_bus: Optional EventBus for tool call/result events.
        metrics_collector: Optional collector for tool-call counts.
    """

    def __init__(
        self,
        data_sources: DataSources,
        event_bus: EventBus | None = None,
        metrics_collector: Optional["MetricsCollector"] = None,
    ) -> None:
        self.data_sources = data_sources
        self.event_bus = event_bus
        self.metrics_collector = metrics_collector

    def _truncate_text(self, text: str, *, max_chars: int) -> str:
        """Trim large text payloads while preserving a clear truncation marker."""
        if len(text) <= max_chars:
            return text
        omitted = len(text) - max_chars
        return (
            f"{text[:max_chars]}\n"
            f"... [truncated {omitted} characters to protect context window]"
        )

    def _normalize_tool_args(
        self,
        tool_name: str,
        args: Any,
    ) -> dict[str, Any]:
        """Validate and normalize tool arguments against schema metadata."""
        tool_def = _TOOL_DEFINITION_MAP.get(tool_name)
        if tool_def is None:
            raise ToolArgumentError(f"Unknown tool: {tool_name}")

        if not isinstance(args, dict):
            raise ToolArgumentError(
                f"Invalid arguments for {tool_name}: expected an object"
            )

        params = tool_def.get("parameters", {})
        properties = params.get("properties", {})
        required = params.get("required", [])

        normalized: dict[str, Any] = {}
        for key, value in args.items():
            if key not in properties:
                # Ignore unknown fields to keep calls resilient to model drift.
                continue

            expected = properties[key].get("type")
            if expected == "string":
                if not isinstance(value, str):
                    raise ToolArgumentError(
                        f"Invalid type for '{key}': expected string"
                    )
                normalized[key] = value.strip()
            elif expected == "integer":
                try:
                    normalized[key] = int(value)
                except (TypeError, ValueError):
                    raise ToolArgumentError(
                        f"Invalid type for '{key}': expected integer"
                    ) from None
                if normalized[key] <= 0:
                    raise ToolArgumentError(f"'{key}' must be positive")
            else:
                normalized[key] = value

        missing = [
            req for req in required
            if normalized.get(req) is None or normalized.get(req) == ""
        ]
        if missing:
            joined = ", ".join(sorted(missing))
            raise ToolArgumentError(f"Missing required arguments: {joined}")

        for key, spec in properties.items():
            allowed = spec.get("enum")
            if allowed and key in normalized:
                value = normalized[key]
                match = next((a for a in allowed if a.lower() == value.lower()), None)
                if match is None:
                    raise ToolArgumentError(
                        f"Invalid value for '{key}': expected one of {', '.join(allowed)}"
                    )
                normalized[key] = match

        if tool_name in DEFAULT_LIMITS:
            normalized.setdefault("limit", DEFAULT_LIMITS[tool_name])

        return normalized

    async def execute(
        self,
        tool_call: ToolCall,
        agent_name: str | None = None,
    ) -> ToolResult:
        """Execute one tool call.

        Args:
            tool_call: The call requested by the model.
            agent_name: Calling agent, for event emission.

        Returns:
            ToolResult with the execution outcome.
        """
        start_time = time.time()
        query_id, session_id = current_query_context()

        await self._publish(
            EventType.AGENT_TOOL_CALL,
            query_id,
            session_id,
            agent_name,
            {
                "tool": tool_call.name,
                "args": tool_call.args,
                "tool_call_id": tool_call.id,
            },
        )

        if self.metrics_collector is not None and query_id:
            self.metrics_collector.record_tool_call(query_id)

        try:
            normalized_args = self._normalize_tool_args(tool_call.name, tool_call.args)
            payload = await self._dispatch_tool(tool_call.name, normalized_args)
            result = self._truncate_text(
                json.dumps(payload, default=str),
                max_chars=MAX_TOOL_OUTPUT_CHARS,
            )
            success = True
            error = None
        except Exception as e:
            logger.error(
                "tool_execution_failed",
                tool_name=tool_call.name,
                agent_name=agent_name,
                error=str(e),
            )
            result = f"Error: {e}"
            success = False
            error = str(e)

        duration_ms = int((time.time() - start_time) * 1000)

        await self._publish(
            EventType.AGENT_TOOL_RESULT,
            query_id,
            session_id,
            agent_name,
            {
                "tool": tool_call.name,
                "result": result[:MAX_EVENT_RESULT_CHARS],
                "success": success,
                "tool_call_id": tool_call.id,
                "duration_ms": duration_ms,
            },
        )

        logger.debug(
            "tool_executed",
            tool_name=tool_call.name,
            agent_name=agent_name,
            success=success,
            duration_ms=duration_ms,
        )

        return ToolResult(
            tool_call_id=tool_call.id,
            content=result,
            success=success,
            error=error,
        )

    async def _dispatch_tool(self, tool_name: str, args: dict[str, Any]) -> Any:
        """Route a tool call to the matching data source.

        Returns:
            A JSON-serializable payload.

        Raises:
            ToolArgumentError: If tool_name is unknown.
            DataSourceError: If the data source request fails.
        """
        if tool_name == "ens_lookup":
            return await self.data_sources.ens.resolve(args["ens_domain"])
        elif tool_name == "dexscreener_token_resolver":
            return await self.data_sources.dexscreener.resolve_token(
                args["ticker"], args.get("chain", "base")
            )
        elif tool_name in DUNE_QUERY_IDS:
            return await self._run_dune_tool(tool_name, args)
        raise ToolArgumentError(f"Unknown tool: {tool_name}")

    async def _run_dune_tool(self, tool_name: str, args: dict[str, Any]) -> list[dict[str, Any]]:
        parameters = dict(args)
        for key in ("start_date", "end_date"):
            if key in parameters:
                parameters[key] = _normalize_date(parameters[key])

        rows = await self.data_sources.dune.run_query(DUNE_QUERY_IDS[tool_name], parameters)

        if tool_name == "funding_source_retriever":
            return rows[:1]
        return rows

    async def _publish(
        self,
        event_type: EventType,
        query_id: str | None,
        session_id: str | None,
        agent_name: str | None,
        data: dict[str, Any],
    ) -> None:
        if self.event_bus is None or query_id is None:
            return
        await self.event_bus.publish(
            QueryEvent(
                type=event_type,
                query_id=query_id,
                session_id=session_id,
                agent_name=agent_name,
                data=data,
            )
        )


