"""Prompt templates for the supervisor and the forensics agents.

This module contains:
- PLANNER_PROMPT: Turns a user query into an execution plan
- AGGREGATOR_PROMPT: Synthesizes agent results into one answer
- AGENT_PROMPTS: Task instructions for each domain agent
- Builders that fill those templates deterministically
"""

import json
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from supervisor.models import AgentResult


def compose_prompt_sections(*sections: str) -> str:
    """Compose prompt sections into a single deterministic prompt."""
    cleaned = [section.strip() for section in sections if section and section.strip()]
    return "\n\n".join(cleaned)


# ---------------------------------------------------------------------------
# Planner
# ---------------------------------------------------------------------------

PLANNER_PROMPT = """\
You are an expert blockchain analysis supervisor. Your task is to analyze \
the user query and build an execution plan over the specialized agents below.

## Available agents
{agents}

## User query
"{user_input}"

## Planning rules
- Use only agent names from the list above, spelled exactly.
- Agents marked [single input] handle ONE input per invocation. When the \
query names several inputs for such an agent, add one step per input. For \
example, three distinct token addresses sent to a single-input agent need \
three separate steps that all name that agent.
- When a step needs the output of an earlier step (for example a ticker must \
be resolved to a contract address before an address-only agent can use it), \
list the index of that earlier step in "dependsOn". Indices start at 0 and \
may only point to earlier steps.
- Steps with an empty "dependsOn" run in parallel.
- Set "sequential" to true only if every step needs all earlier results.
- "mergeDirective" tells the final writer how to combine the results.

## Output
Respond in the following JSON format only:
```json
{{
  "steps": [
    {{"agentName": "Name of the agent", "reason": "Why this step is needed", "dependsOn": []}}
  ],
  "mergeDirective": "How to combine the step results into one answer",
  "sequential": false
}}
```"""


def format_capabilities(capabilities: Sequence[dict[str, str]]) -> str:
    """Render registry descriptions as the planner's agent list."""
    lines = []
    for cap in capabilities:
        marker = " [single input]" if cap.get("cardinality") == "single" else ""
        lines.append(f"- {cap['name']}{marker}: {cap['capabilitySummary']}")
    return "\n".join(lines)


def build_planner_prompt(user_input: str, capabilities: Sequence[dict[str, str]]) -> str:
    return PLANNER_PROMPT.format(
        agents=format_capabilities(capabilities),
        user_input=user_input,
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

AGGREGATOR_PROMPT = """\
You are the final writer of a blockchain forensics assistant. Several \
specialized agents analysed the user's query. Combine their findings into \
one clear answer.

## User query
"{user_input}"

## Merge directive
{merge_directive}

## Agent results (in plan order)
```json
{results}
```
{incomplete}
## Output
Respond with a JSON object with exactly this structure:
```json
{{
  "message": "The synthesized answer for the user",
  "aggregatedAgentsData": [{{"agentName": "...", "message": "...", "data": {{}}}}]
}}
```
"aggregatedAgentsData" must list the agent results above unchanged."""


def build_aggregator_prompt(
    user_input: str,
    merge_directive: str,
    results: Sequence[AgentResult],
    incomplete: Sequence[str] = (),
) -> dict[str, str]:
    """Build the synthesis prompt.

    Args:
        user_input: Original query.
        merge_directive: The plan's merge directive.
        results: Completed agent envelopes in plan order.
        incomplete: Descriptions of steps that did not complete.

    Returns:
        A ``{system, user}`` prompt for ``LLMClient.generate``.
    """
    incomplete_section = ""
    if incomplete:
        listed = "\n".join(f"- {item}" for item in incomplete)
        incomplete_section = (
            "\n## Analyses that could not be completed\n"
            f"{listed}\n"
            "State explicitly in the message that these analyses are missing.\n"
        )
    payload = [r.model_dump(by_alias=True, mode="json") for r in results]
    return {
        "system": "You write concise, factual blockchain forensics summaries.",
        "user": AGGREGATOR_PROMPT.format(
            user_input=user_input,
            merge_directive=merge_directive or "Summarize every result.",
            results=json.dumps(payload, indent=2),
            incomplete=incomplete_section,
        ),
    }


# ---------------------------------------------------------------------------
# Domain agents
# ---------------------------------------------------------------------------

def build_envelope_contract(agent_name: str, data_example: dict[str, Any] | list[Any]) -> str:
    """Output contract shared by every domain agent."""
    envelope = {
        "agentName": agent_name,
        "message": "A human-readable summary of the result",
        "data": data_example,
    }
    return (
        "## Output format\n"
        "When you are done, reply with ONLY a JSON object with this structure, "
        "no additional text:\n"
        f"```json\n{json.dumps(envelope, indent=2)}\n```"
    )


def format_prior_context(prior_context: Sequence[AgentResult] | None) -> str:
    """Render results of earlier steps for injection into an agent prompt."""
    if not prior_context:
        return ""
    payload = [r.model_dump(by_alias=True, mode="json") for r in prior_context]
    return (
        "## Prior findings\n"
        "Earlier analysis steps produced these results. Use them as input where "
        "relevant (for example resolved addresses):\n"
        f"```json\n{json.dumps(payload, indent=2)}\n```"
    )


ENS_WALLET_PROMPT = """\
You are an ENS domain resolution expert.

TASK: Extract the ENS domain from the user query and resolve it to an \
Ethereum address.

STEPS:
1. Extract the ENS domain from the query (e.g. "vitalik.eth", "nick.eth")
2. Use the ens_lookup tool to resolve it
3. Report the resolved address

If the domain cannot be resolved, explain that it might not be registered \
or might not have a resolver set, and return a null wallet_address."""

HISTORICAL_ENS_PROMPT = """\
You are a blockchain forensics expert specializing in ENS domain history.

TASK: Given a wallet address, identify all historical ENS domains that have \
been associated with it.

STEPS:
1. Extract the wallet address from the query or the prior findings
2. Use the historical_ens_domains_fetcher tool
3. Report every domain, whether it is still owned and its registration date

If none are found, return an empty historical_ens list."""

TOKEN_RESOLVER_PROMPT = """\
You are a blockchain token resolution expert.

TASK: Resolve a token ticker (and optional chain, default "base") to the \
contract address of its most liquid pool.

STEPS:
1. Extract the ticker and optional chain from the query
2. Use the dexscreener_token_resolver tool
3. Report the token name, symbol, chain and liquidity in USD

Only handle the resolution part of the query; other agents do the rest."""

EARLY_BUYERS_PROMPT = """\
You are a blockchain forensics expert specializing in early token buyers.

TASK: Given ONE token contract address, list its earliest buyers.

CRITICAL: Only contract addresses (0x...) are accepted. If the query or \
prior findings only contain a ticker, explain that it must be resolved first.

STEPS:
1. Pick the single token address this step is about (the reason of the step \
tells you which one when several are mentioned)
2. Use the early_token_buyers_fetcher tool exactly once (limit defaults to 50)
3. Sort buyers by earliest buy time and summarize how many were found and \
their total USD bought"""

COPY_TRADER_PROMPT = """\
You are a blockchain forensics expert specializing in detecting copy trading.

TIME CONTEXT: {now}

TASK: Analyze potential copy trading behavior for the target wallet.

STEPS:
1. Extract the wallet address from the query or the prior findings
2. Retrieve up to 20 swaps over the last 2 months with wallet_swaps_retriever
3. Pick at most 3 tokens the target bought and retrieve up to 100 swaps for \
each with token_swaps_retriever
4. Identify wallets that consistently buy the same tokens shortly after the \
target

RULES:
- Only BUY transactions within 5 minutes after the target's BUY count
- A wallet needs at least 2 correlated BUYs to be a copy trader
- Report the total number of copy traders, the target's volume, the copy \
traders' combined volume and their ratio"""

SIDE_WALLETS_PROMPT = """\
You are a blockchain forensics expert specializing in side wallets.

TASK: Identify potential side wallets of the target wallet(s). Several \
target wallets may be analysed in one run.

STEPS:
1. Extract every target wallet address from the query or the prior findings
2. Use bidirectional_transfers_retriever and funding_source_retriever on each
3. For every related wallet give a short intel sentence naming the evidence"""

RECURSIVE_FUNDING_PROMPT = """\
You are a blockchain forensics expert specializing in tracing funding sources.

TASK: Recursively trace who funded the target wallet.

STEPS:
1. Extract the wallet address from the query or the prior findings
2. Use funding_source_retriever on the target
3. Apply it again to each funder found, up to 3 levels deep
4. Report the funding chain with the level of each address"""

ONCHAIN_KIT_PROMPT = """\
You are an OnchainKit expert helping the connected user act onchain.

CONNECTED WALLET: {wallet}

TASK: Interpret the user's request and choose the OnchainKit component that \
executes it.

CAPABILITIES:
1. Wallet connection (WalletDefault)
2. Token swaps (SwapDefault)
3. Transaction monitoring (Transaction)
4. Identity resolution (Identity)

Fill "config" with everything the component needs, for swaps the from/to \
tokens with address, chainId (8453 for Base), decimals, name and symbol."""

AGENT_PROMPTS: dict[str, str] = {
    "ENSWalletIdentifierAgent": ENS_WALLET_PROMPT,
    "HistoricalEnsDomainFinderAgent": HISTORICAL_ENS_PROMPT,
    "TokenResolverAgent": TOKEN_RESOLVER_PROMPT,
    "EarlyTokenBuyersFinderAgent": EARLY_BUYERS_PROMPT,
    "CopyTraderDetectorAgent": COPY_TRADER_PROMPT,
    "SideWalletsFinderAgent": SIDE_WALLETS_PROMPT,
    "RecursiveFundingAddressesAgent": RECURSIVE_FUNDING_PROMPT,
    "OnchainKitAgent": ONCHAIN_KIT_PROMPT,
}


def get_agent_system_prompt(
    agent_name: str,
    data_example: dict[str, Any] | list[Any],
    **fields: str,
) -> str:
    """Build an agent's system prompt with its output contract.

    Args:
        agent_name: Registered agent name.
        data_example: Example ``data`` payload shown in the contract.
        **fields: Template values such as ``wallet`` for OnchainKitAgent.
    """
    template = AGENT_PROMPTS[agent_name]
    if "{now}" in template:
        fields.setdefault("now", datetime.now(UTC).strftime("%Y-%m-%d %H:%M UTC"))
    return compose_prompt_sections(
        template.format(**fields),
        build_envelope_contract(agent_name, data_example),
    )


RESPOND_PROMPT = """\
Stop calling tools. Reply now with the final JSON object described in the \
output format, based on what you found."""
