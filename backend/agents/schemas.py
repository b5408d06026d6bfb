"""Pydantic models for the ``data`` payload each forensics agent returns.

An agent's final reply is only accepted if its ``data`` validates against
the model registered for that agent. Extra keys the model adds are kept.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

WALLET_PATTERN = r"^0x[a-fA-F0-9]{40}$"


class _AgentData(BaseModel):
    model_config = ConfigDict(extra="allow")


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

class EnsWalletData(_AgentData):
    ens_domain: str
    wallet_address: str | None = Field(default=None, pattern=WALLET_PATTERN)


class HistoricalEnsDomain(_AgentData):
    ens_domain: str
    still_owned: bool | None = None
    registration_date: str | None = None


class HistoricalEnsData(_AgentData):
    wallet_address: str
    historical_ens: list[HistoricalEnsDomain] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------

class TokenResolutionData(_AgentData):
    address: str
    name: str | None = None
    symbol: str
    chain: str = "base"
    liquidity_usd: float | None = None


class EarlyBuyer(_AgentData):
    trader_wallet_address: str
    tx_hash: str | None = None
    bought_time: str | None = None
    amount_bought_usd: float | None = None


class EarlyBuyersData(_AgentData):
    token_address: str
    buyers: list[EarlyBuyer] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Wallet relationships
# ---------------------------------------------------------------------------

class CopyTrader(_AgentData):
    wallet_address: str
    correlated_swaps: int = Field(ge=0)
    volume_usd: float | None = None


class CopyTraderData(_AgentData):
    target_wallet: str
    copy_traders: list[CopyTrader] = Field(default_factory=list)
    total_copy_traders_found: int = Field(default=0, ge=0)


class SideWallet(_AgentData):
    wallet_address: str
    related_to: str | None = None
    intel: str


class SideWalletsData(_AgentData):
    target_wallets: list[str] = Field(min_length=1)
    side_wallets: list[SideWallet] = Field(default_factory=list)


class FundingLink(_AgentData):
    level: int = Field(ge=1)
    funded_wallet: str
    funder_address: str


class RecursiveFundingData(_AgentData):
    target_wallet: str
    funding_chain: list[FundingLink] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Onchain actions
# ---------------------------------------------------------------------------

class OnchainKitData(_AgentData):
    intent: str
    component: str
    config: dict[str, Any] = Field(default_factory=dict)
    action: str
    actor_wallet: str | None = None


DATA_MODELS: dict[str, type[BaseModel]] = {
    "ENSWalletIdentifierAgent": EnsWalletData,
    "HistoricalEnsDomainFinderAgent": HistoricalEnsData,
    "TokenResolverAgent": TokenResolutionData,
    "EarlyTokenBuyersFinderAgent": EarlyBuyersData,
    "CopyTraderDetectorAgent": CopyTraderData,
    "SideWalletsFinderAgent": SideWalletsData,
    "RecursiveFundingAddressesAgent": RecursiveFundingData,
    "OnchainKitAgent": OnchainKitData,
}

# Example payloads rendered into each agent's output contract.
DATA_EXAMPLES: dict[str, dict[str, Any]] = {
    "ENSWalletIdentifierAgent": {
        "ens_domain": "vitalik.eth",
        "wallet_address": "0x... or null when unresolved",
    },
    "HistoricalEnsDomainFinderAgent": {
        "wallet_address": "0x...",
        "historical_ens": [
            {"ens_domain": "name.eth", "still_owned": True, "registration_date": "2021-05-04"}
        ],
    },
    "TokenResolverAgent": {
        "address": "0x...",
        "name": "Token name",
        "symbol": "TICKER",
        "chain": "base",
        "liquidity_usd": 1250000.0,
    },
    "EarlyTokenBuyersFinderAgent": {
        "token_address": "0x...",
        "buyers": [
            {
                "trader_wallet_address": "0x...",
                "tx_hash": "0x...",
                "bought_time": "2024-01-01 00:00",
                "amount_bought_usd": 150.0,
            }
        ],
    },
    "CopyTraderDetectorAgent": {
        "target_wallet": "0x...",
        "copy_traders": [
            {"wallet_address": "0x...", "correlated_swaps": 3, "volume_usd": 1200.0}
        ],
        "total_copy_traders_found": 1,
    },
    "SideWalletsFinderAgent": {
        "target_wallets": ["0x..."],
        "side_wallets": [
            {
                "wallet_address": "0x...",
                "related_to": "0x...",
                "intel": "Bidirectional transfers with the target",
            }
        ],
    },
    "RecursiveFundingAddressesAgent": {
        "target_wallet": "0x...",
        "funding_chain": [
            {"level": 1, "funded_wallet": "0x...", "funder_address": "0x..."}
        ],
    },
    "OnchainKitAgent": {
        "intent": "swap",
        "component": "SwapDefault",
        "config": {"from": [], "to": []},
        "action": "Swap 0.1 ETH for USDC",
        "actor_wallet": "0x...",
    },
}
