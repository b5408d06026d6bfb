"""The forensics agent roster.

``AGENT_SPECS`` lists every process-wide agent with its capability summary,
cardinality, tools and data model. ``build_default_agents`` turns them into
LLMAgents at startup. OnchainKitAgent acts on behalf of the caller, so it
is built per request from the verified identity instead.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel

from agents.llm_agent import LLMAgent
from agents.schemas import DATA_EXAMPLES, DATA_MODELS
from agents.tools import ToolExecutor
from agents.utils import LLMClient
from supervisor.contract import Cardinality
from supervisor.identity import Identity


@dataclass(frozen=True)
class AgentSpec:
    """Static description of one domain agent."""

    name: str
    capability_summary: str
    tool_names: tuple[str, ...] = ()
    cardinality: Cardinality = Cardinality.SINGLE
    data_model: type[BaseModel] = field(default=BaseModel)


def _spec(name: str, summary: str, tools: tuple[str, ...], **kwargs: Any) -> AgentSpec:
    return AgentSpec(
        name=name,
        capability_summary=summary,
        tool_names=tools,
        data_model=DATA_MODELS[name],
        **kwargs,
    )


AGENT_SPECS: tuple[AgentSpec, ...] = (
    _spec(
        "ENSWalletIdentifierAgent",
        "Resolves ENS domains to their corresponding Ethereum addresses using "
        "the ENS protocol.",
        ("ens_lookup",),
    ),
    _spec(
        "CopyTraderDetectorAgent",
        "Analyzes potential copy trading behavior by identifying wallets that "
        "consistently trade the same tokens shortly after a target address "
        "(minimum 2 correlated swaps).",
        ("wallet_swaps_retriever", "token_swaps_retriever"),
    ),
    _spec(
        "SideWalletsFinderAgent",
        "Identifies potential side wallets associated with a target wallet by "
        "analyzing bidirectional transfer patterns. Accepts several target "
        "wallets in one step.",
        ("bidirectional_transfers_retriever", "funding_source_retriever"),
        cardinality=Cardinality.BATCH,
    ),
    _spec(
        "RecursiveFundingAddressesAgent",
        "Recursively traces funding addresses for a target wallet to identify "
        "potential side wallets.",
        ("funding_source_retriever",),
    ),
    _spec(
        "TokenResolverAgent",
        "Resolves token tickers to their contract addresses on specific chains, "
        "using various data sources to find the most liquid token matching the "
        "query. This agent should always be used first when working with token "
        "tickers/symbols to get their actual contract addresses before passing "
        "to other agents.",
        ("dexscreener_token_resolver",),
    ),
    _spec(
        "EarlyTokenBuyersFinderAgent",
        "Identifies the earliest buyers of a token so common early buyers across "
        "several tokens can be compared. Only accepts token contract addresses - "
        "token tickers/symbols are not supported and must be resolved to "
        "addresses first.",
        ("early_token_buyers_fetcher",),
    ),
    _spec(
        "HistoricalEnsDomainFinderAgent",
        "Identifies all historical ENS domains that have been associated with a "
        "given Ethereum wallet address.",
        ("historical_ens_domains_fetcher",),
    ),
)

ONCHAIN_KIT_SPEC = AgentSpec(
    name="OnchainKitAgent",
    capability_summary=(
        "Required agent for handling onchain token swaps using OnchainKit "
        "components. Must be used for any swap-related operations to ensure "
        "proper execution and transaction handling."
    ),
    data_model=DATA_MODELS["OnchainKitAgent"],
)


def build_agent(
    spec: AgentSpec,
    llm_client: LLMClient,
    tool_executor: ToolExecutor | None,
    **kwargs: Any,
) -> LLMAgent:
    return LLMAgent(
        name=spec.name,
        capability_summary=spec.capability_summary,
        data_model=spec.data_model,
        llm_client=llm_client,
        tool_executor=tool_executor,
        tool_names=list(spec.tool_names),
        cardinality=spec.cardinality,
        data_example=DATA_EXAMPLES.get(spec.name),
        **kwargs,
    )


def build_default_agents(
    llm_client: LLMClient,
    tool_executor: ToolExecutor,
    model: str | None = None,
) -> list[LLMAgent]:
    """Instantiate every process-wide agent, in catalog order."""
    return [build_agent(spec, llm_client, tool_executor, model=model) for spec in AGENT_SPECS]


class OnchainKitAgent(LLMAgent):
    """Chooses the OnchainKit component for the connected user's request.

    Bound to one verified identity; the actor's wallet is stamped onto the
    returned ``data`` regardless of what the model wrote there.
    """

    def __init__(self, identity: Identity, llm_client: LLMClient, **kwargs: Any) -> None:
        self.identity = identity
        super().__init__(
            name=ONCHAIN_KIT_SPEC.name,
            capability_summary=ONCHAIN_KIT_SPEC.capability_summary,
            data_model=ONCHAIN_KIT_SPEC.data_model,
            llm_client=llm_client,
            data_example=DATA_EXAMPLES[ONCHAIN_KIT_SPEC.name],
            prompt_fields={"wallet": identity.wallet_address or "not connected"},
            **kwargs,
        )

    def prepare_data(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {**data, "actor_wallet": self.identity.wallet_address}
        return data


def build_onchain_kit_agent(
    identity: Identity,
    llm_client: LLMClient,
    model: str | None = None,
) -> OnchainKitAgent:
    """Request agent factory registered with the Supervisor."""
    return OnchainKitAgent(identity, llm_client, model=model)
