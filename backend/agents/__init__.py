"""Forensics agents, their tools, prompts and LLM integration.

This module exports the key components needed for agent execution:
- Agent catalog and the LangGraph tool-calling agent
- Tool definitions and executor for the blockchain data sources
- LLM client utilities with retry logic and metrics tracking
"""

from agents.catalog import (
    AGENT_SPECS,
    AgentSpec,
    OnchainKitAgent,
    build_default_agents,
    build_onchain_kit_agent,
)
from agents.data_sources import DataSourceError, DataSources
from agents.llm_agent import LLMAgent, create_llm_agent
from agents.tools import (
    TOOL_DEFINITIONS,
    ToolCall,
    ToolExecutor,
    ToolResult,
    get_tool_definitions_for_llm,
)
from agents.utils import (
    LLMClient,
    LLMResponse,
    MockLLMClient,
    ToolCallData,
    extract_json_block,
)

__all__ = [
    # Catalog
    "AGENT_SPECS",
    "AgentSpec",
    "OnchainKitAgent",
    "build_default_agents",
    "build_onchain_kit_agent",
    "LLMAgent",
    "create_llm_agent",
    # Data sources and tools
    "DataSourceError",
    "DataSources",
    "TOOL_DEFINITIONS",
    "ToolCall",
    "ToolExecutor",
    "ToolResult",
    "get_tool_definitions_for_llm",
    # Utils
    "LLMClient",
    "LLMResponse",
    "MockLLMClient",
    "ToolCallData",
    "extract_json_block",
]
