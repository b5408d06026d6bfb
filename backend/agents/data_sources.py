"""Async HTTP clients for the blockchain data sources the tools query.

- DuneClient: runs saved Dune Analytics queries (execute, poll, fetch rows)
- DexScreenerClient: searches trading pairs and picks the most liquid one
- EnsResolver: resolves ENS names through an HTTP resolution API

All clients share one ``httpx.AsyncClient`` owned by ``DataSources``.
"""

import asyncio
import copy
import json
import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from config import settings

logger = structlog.get_logger(__name__)


class DataSourceError(Exception):
    """A data source request failed or returned an unusable payload."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


async def _get_json(
    client: httpx.AsyncClient,
    url: str,
    **kwargs: Any,
) -> Any:
    try:
        response = await client.get(url, **kwargs)
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise DataSourceError(
            f"{url} returned HTTP {e.response.status_code}",
            status_code=e.response.status_code,
        ) from e
    except httpx.HTTPError as e:
        raise DataSourceError(f"request to {url} failed: {e}") from e
    return response.json()


# ---------------------------------------------------------------------------
# Dune Analytics
# ---------------------------------------------------------------------------

class DuneClient:
    """Runs saved Dune queries through the v1 REST API.

    Attributes:
        api_key: Dune API key sent as ``X-Dune-API-Key``.
        base_url: API root, e.g. ``https://api.dune.com/api/v1``.
        poll_interval: Seconds between execution status polls.
        max_polls: Polls before giving up on an execution.
        cache_ttl: Seconds a completed result is reused for the same query
            and parameters. 0 disables the cache.
    """

    TERMINAL_FAILURE_STATES = frozenset({
        "QUERY_STATE_FAILED",
        "QUERY_STATE_CANCELLED",
        "QUERY_STATE_EXPIRED",
    })

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        base_url: str,
        poll_interval: float = 2.0,
        max_polls: int = 60,
        cache_ttl: float = 0.0,
    ) -> None:
        self._client = client
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.cache_ttl = cache_ttl
        self._cache: dict[str, tuple[float, list[dict[str, Any]]]] = {}

    @property
    def _headers(self) -> dict[str, str]:
        return {"X-Dune-API-Key": self.api_key}

    async def run_query(
        self,
        query_id: int,
        parameters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Execute a saved query and return its result rows.

        Args:
            query_id: Dune query id.
            parameters: Query parameters by name.

        Returns:
            The rows of the completed execution.

        Raises:
            DataSourceError: If the API key is missing, a request fails, the
                execution fails, or it does not finish within ``max_polls``.
        """
        if not self.api_key:
            raise DataSourceError("DUNE_API_KEY is not configured")

        cache_key = f"dune:{query_id}:{json.dumps(parameters or {}, sort_keys=True)}"
        cached = self._cached_rows(cache_key)
        if cached is not None:
            logger.info("dune_cache_hit", query_id=query_id, rows=len(cached))
            return cached

        logger.info("dune_query_started", query_id=query_id, parameters=parameters)

        try:
            response = await self._client.post(
                f"{self.base_url}/query/{query_id}/execute",
                json={"query_parameters": parameters or {}},
                headers=self._headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DataSourceError(f"Dune execute for query {query_id} failed: {e}") from e

        execution_id = response.json().get("execution_id")
        if not execution_id:
            raise DataSourceError(f"Dune returned no execution id for query {query_id}")

        await self._wait_for_completion(query_id, execution_id)

        payload = await _get_json(
            self._client,
            f"{self.base_url}/execution/{execution_id}/results",
            headers=self._headers,
        )
        rows = (payload.get("result") or {}).get("rows") or []

        logger.info(
            "dune_query_complete",
            query_id=query_id,
            execution_id=execution_id,
            rows=len(rows),
        )
        self._store_rows(cache_key, rows)
        return rows

    def _cached_rows(self, key: str) -> list[dict[str, Any]] | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        expires_at, rows = entry
        if time.monotonic() >= expires_at:
            del self._cache[key]
            return None
        # Callers may mutate what they get back.
        return copy.deepcopy(rows)

    def _store_rows(self, key: str, rows: list[dict[str, Any]]) -> None:
        if self.cache_ttl <= 0:
            return
        now = time.monotonic()
        for stale in [k for k, (expires_at, _) in self._cache.items() if expires_at <= now]:
            del self._cache[stale]
        self._cache[key] = (now + self.cache_ttl, copy.deepcopy(rows))

    async def _wait_for_completion(self, query_id: int, execution_id: str) -> None:
        for _ in range(self.max_polls):
            status = await _get_json(
                self._client,
                f"{self.base_url}/execution/{execution_id}/status",
                headers=self._headers,
            )
            state = status.get("state", "")
            if state == "QUERY_STATE_COMPLETED":
                return
            if state in self.TERMINAL_FAILURE_STATES:
                raise DataSourceError(
                    f"Dune execution {execution_id} for query {query_id} ended in {state}"
                )
            await asyncio.sleep(self.poll_interval)

        raise DataSourceError(
            f"Dune execution {execution_id} for query {query_id} did not finish "
            f"after {self.max_polls} polls"
        )


# ---------------------------------------------------------------------------
# DexScreener
# ---------------------------------------------------------------------------

SUPPORTED_CHAINS = ("base", "ethereum", "arbitrum", "optimism")


class DexScreenerClient:
    """Resolves token tickers to contract addresses via DexScreener search."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self.base_url = base_url.rstrip("/")

    async def resolve_token(self, ticker: str, chain: str = "base") -> dict[str, Any]:
        """Find the most liquid pair for ``ticker`` on ``chain``.

        Args:
            ticker: Token symbol to search for.
            chain: Chain id (base, ethereum, arbitrum or optimism).

        Returns:
            ``{address, name, symbol, chain, liquidity_usd}`` of the pair's
            base token.

        Raises:
            DataSourceError: For an unsupported chain, a failed request, or
                when no pair exists on that chain.
        """
        chain = (chain or "base").lower()
        if chain not in SUPPORTED_CHAINS:
            raise DataSourceError(f"Unsupported chain: {chain}")

        payload = await _get_json(
            self._client,
            f"{self.base_url}/latest/dex/search",
            params={"q": ticker},
        )
        pairs = [
            pair for pair in payload.get("pairs") or []
            if str(pair.get("chainId", "")).lower() == chain
        ]
        if not pairs:
            raise DataSourceError(f"No pairs found for token {ticker} on chain {chain}")

        best = max(pairs, key=lambda p: (p.get("liquidity") or {}).get("usd") or 0)
        base_token = best.get("baseToken") or {}
        return {
            "address": base_token.get("address"),
            "name": base_token.get("name"),
            "symbol": base_token.get("symbol"),
            "chain": chain,
            "liquidity_usd": (best.get("liquidity") or {}).get("usd"),
        }


# ---------------------------------------------------------------------------
# ENS
# ---------------------------------------------------------------------------

def normalize_ens_name(name: str) -> str:
    """Lowercase the name and append ``.eth`` when it has no TLD."""
    name = name.strip().lower()
    return name if "." in name else f"{name}.eth"


class EnsResolver:
    """Resolves ENS names through an HTTP resolution API."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self.base_url = base_url.rstrip("/")

    async def resolve(self, name: str) -> dict[str, Any]:
        """Resolve an ENS name.

        Returns:
            ``{ens_domain, address}``.

        Raises:
            DataSourceError: If the request fails or no address is set.
        """
        ens_name = normalize_ens_name(name)
        payload = await _get_json(self._client, f"{self.base_url}/ens/resolve/{ens_name}")
        address = payload.get("address")
        if not address:
            raise DataSourceError(f"No address found for ENS domain: {ens_name}")
        return {"ens_domain": ens_name, "address": address}


# ---------------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------------

@dataclass
class DataSources:
    """The data-source clients the tools need, sharing one HTTP client."""

    http: httpx.AsyncClient
    dune: DuneClient
    dexscreener: DexScreenerClient
    ens: EnsResolver

    @classmethod
    def from_settings(cls, http: httpx.AsyncClient | None = None) -> "DataSources":
        http = http or httpx.AsyncClient(timeout=settings.http_timeout_seconds)
        return cls(
            http=http,
            dune=DuneClient(
                http,
                api_key=settings.dune_api_key,
                base_url=settings.dune_api_base,
                poll_interval=settings.dune_poll_interval_seconds,
                max_polls=settings.dune_max_polls,
                cache_ttl=settings.dune_cache_ttl_seconds,
            ),
            dexscreener=DexScreenerClient(http, settings.dexscreener_api_base),
            ens=EnsResolver(http, settings.ens_api_base),
        )

    async def aclose(self) -> None:
        await self.http.aclose()
