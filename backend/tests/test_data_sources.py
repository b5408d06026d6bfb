"""Tests for agents/data_sources.py -- Dune, DexScreener and ENS clients.

HTTP traffic is served by ``httpx.MockTransport`` handlers.
"""

import json
from collections.abc import Callable
from types import SimpleNamespace

import httpx
import pytest

from agents.data_sources import (
    DataSourceError,
    DataSources,
    DexScreenerClient,
    DuneClient,
    EnsResolver,
    normalize_ens_name,
)
from config import settings
from tests.conftest import VITALIK_ADDRESS

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

DUNE_BASE = "https://dune.test/api/v1"


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class _DuneServer:
    """Scripted Dune API: execute, N status polls, results."""

    def __init__(self, states: list[str], rows: list[dict] | None = None) -> None:
        self.states = list(states)
        self.rows = rows or []
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/execute"):
            return httpx.Response(200, json={"execution_id": "01HEXEC", "state": "QUERY_STATE_PENDING"})
        if path.endswith("/status"):
            return httpx.Response(200, json={"state": self.states.pop(0)})
        if path.endswith("/results"):
            return httpx.Response(200, json={"result": {"rows": self.rows}})
        return httpx.Response(404)


# =========================================================================
# DuneClient
# =========================================================================


class TestDuneClient:
    """Execute, poll and fetch."""

    async def test_run_query_polls_until_complete(self) -> None:
        server = _DuneServer(
            ["QUERY_STATE_PENDING", "QUERY_STATE_EXECUTING", "QUERY_STATE_COMPLETED"],
            rows=[{"wallet": "0xabc"}],
        )
        dune = DuneClient(_client(server), "key-123", DUNE_BASE, poll_interval=0)

        rows = await dune.run_query(4777210, {"wallet_address": VITALIK_ADDRESS})

        assert rows == [{"wallet": "0xabc"}]
        execute = server.requests[0]
        assert execute.method == "POST"
        assert execute.url.path == "/api/v1/query/4777210/execute"
        assert execute.headers["X-Dune-API-Key"] == "key-123"
        assert json.loads(execute.content) == {
            "query_parameters": {"wallet_address": VITALIK_ADDRESS}
        }
        paths = [r.url.path for r in server.requests]
        assert paths.count("/api/v1/execution/01HEXEC/status") == 3
        assert paths[-1] == "/api/v1/execution/01HEXEC/results"

    async def test_failed_execution(self) -> None:
        server = _DuneServer(["QUERY_STATE_FAILED"])
        dune = DuneClient(_client(server), "key", DUNE_BASE, poll_interval=0)
        with pytest.raises(DataSourceError, match="QUERY_STATE_FAILED"):
            await dune.run_query(1)

    async def test_gives_up_after_max_polls(self) -> None:
        server = _DuneServer(["QUERY_STATE_EXECUTING"] * 3)
        dune = DuneClient(_client(server), "key", DUNE_BASE, poll_interval=0, max_polls=3)
        with pytest.raises(DataSourceError, match="did not finish after 3 polls"):
            await dune.run_query(1)

    async def test_missing_api_key(self) -> None:
        server = _DuneServer([])
        dune = DuneClient(_client(server), "", DUNE_BASE)
        with pytest.raises(DataSourceError, match="DUNE_API_KEY"):
            await dune.run_query(1)
        assert server.requests == []

    async def test_execute_http_error(self) -> None:
        dune = DuneClient(
            _client(lambda request: httpx.Response(401, json={"error": "bad key"})),
            "key",
            DUNE_BASE,
        )
        with pytest.raises(DataSourceError, match="Dune execute for query 7 failed"):
            await dune.run_query(7)

    async def test_empty_result(self) -> None:
        server = _DuneServer(["QUERY_STATE_COMPLETED"], rows=[])
        dune = DuneClient(_client(server), "key", DUNE_BASE, poll_interval=0)
        assert await dune.run_query(1) == []


def _executes(server: _DuneServer) -> int:
    return sum(1 for r in server.requests if r.url.path.endswith("/execute"))


class TestDuneCache:
    """Completed results are reused for the same query and parameters."""

    async def test_same_query_and_parameters_hit_the_api_once(self) -> None:
        server = _DuneServer(["QUERY_STATE_COMPLETED"] * 2, rows=[{"wallet": "0xabc"}])
        dune = DuneClient(_client(server), "key", DUNE_BASE, poll_interval=0, cache_ttl=60)

        first = await dune.run_query(4777210, {"wallet_address": VITALIK_ADDRESS, "limit": 10})
        requests_after_first = len(server.requests)
        second = await dune.run_query(4777210, {"limit": 10, "wallet_address": VITALIK_ADDRESS})

        assert first == second == [{"wallet": "0xabc"}]
        assert _executes(server) == 1
        assert len(server.requests) == requests_after_first

    async def test_different_parameters_are_separate_entries(self) -> None:
        server = _DuneServer(["QUERY_STATE_COMPLETED"] * 2, rows=[{"wallet": "0xabc"}])
        dune = DuneClient(_client(server), "key", DUNE_BASE, poll_interval=0, cache_ttl=60)

        await dune.run_query(1, {"wallet_address": "0x1"})
        await dune.run_query(1, {"wallet_address": "0x2"})
        await dune.run_query(2, {"wallet_address": "0x1"})

        assert _executes(server) == 3

    async def test_zero_ttl_disables_cache(self) -> None:
        server = _DuneServer(["QUERY_STATE_COMPLETED"] * 2)
        dune = DuneClient(_client(server), "key", DUNE_BASE, poll_interval=0, cache_ttl=0)

        await dune.run_query(1)
        await dune.run_query(1)

        assert _executes(server) == 2

    async def test_entry_expires_after_ttl(self, monkeypatch: pytest.MonkeyPatch) -> None:
        clock = [1000.0]
        monkeypatch.setattr(
            "agents.data_sources.time", SimpleNamespace(monotonic=lambda: clock[0])
        )
        server = _DuneServer(["QUERY_STATE_COMPLETED"] * 2)
        dune = DuneClient(_client(server), "key", DUNE_BASE, poll_interval=0, cache_ttl=30)

        await dune.run_query(1)
        clock[0] += 29
        await dune.run_query(1)
        assert _executes(server) == 1

        clock[0] += 2
        await dune.run_query(1)
        assert _executes(server) == 2

    async def test_failed_execution_is_not_cached(self) -> None:
        server = _DuneServer(["QUERY_STATE_FAILED", "QUERY_STATE_COMPLETED"], rows=[{"n": 1}])
        dune = DuneClient(_client(server), "key", DUNE_BASE, poll_interval=0, cache_ttl=60)

        with pytest.raises(DataSourceError):
            await dune.run_query(1)
        assert await dune.run_query(1) == [{"n": 1}]
        assert _executes(server) == 2

    async def test_cached_rows_are_copies(self) -> None:
        server = _DuneServer(["QUERY_STATE_COMPLETED"], rows=[{"wallet": "0xabc"}])
        dune = DuneClient(_client(server), "key", DUNE_BASE, poll_interval=0, cache_ttl=60)

        rows = await dune.run_query(1)
        rows[0]["wallet"] = "0x0"

        assert await dune.run_query(1) == [{"wallet": "0xabc"}]


# =========================================================================
# DexScreenerClient
# =========================================================================


def _pair(chain: str, address: str, liquidity: float | None, symbol: str = "DEGEN") -> dict:
    return {
        "chainId": chain,
        "baseToken": {"address": address, "name": "Degen", "symbol": symbol},
        "liquidity": {"usd": liquidity} if liquidity is not None else None,
    }


class TestDexScreenerClient:
    """Most liquid pair selection."""

    async def test_picks_most_liquid_pair_on_chain(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"pairs": [
                _pair("base", "0xsmall", 1_000),
                _pair("ethereum", "0xeth", 9_000_000),
                _pair("base", "0xbig", 2_500_000),
                _pair("base", "0xnoliq", None),
            ]})

        client = DexScreenerClient(_client(handler), "https://dex.test/")
        token = await client.resolve_token("DEGEN")

        assert token == {
            "address": "0xbig",
            "name": "Degen",
            "symbol": "DEGEN",
            "chain": "base",
            "liquidity_usd": 2_500_000,
        }
        assert seen[0].url.path == "/latest/dex/search"
        assert seen[0].url.params["q"] == "DEGEN"

    async def test_chain_is_case_insensitive(self) -> None:
        handler = lambda request: httpx.Response(  # noqa: E731
            200, json={"pairs": [_pair("ethereum", "0xeth", 10)]}
        )
        client = DexScreenerClient(_client(handler), "https://dex.test")
        token = await client.resolve_token("PEPE", "Ethereum")
        assert token["chain"] == "ethereum"

    async def test_no_pairs_on_chain(self) -> None:
        handler = lambda request: httpx.Response(  # noqa: E731
            200, json={"pairs": [_pair("ethereum", "0xeth", 10)]}
        )
        client = DexScreenerClient(_client(handler), "https://dex.test")
        with pytest.raises(DataSourceError, match="No pairs found for token DEGEN on chain base"):
            await client.resolve_token("DEGEN", "base")

    async def test_null_pairs(self) -> None:
        handler = lambda request: httpx.Response(200, json={"pairs": None})  # noqa: E731
        client = DexScreenerClient(_client(handler), "https://dex.test")
        with pytest.raises(DataSourceError, match="No pairs found"):
            await client.resolve_token("NOPE")

    async def test_unsupported_chain(self) -> None:
        client = DexScreenerClient(_client(lambda request: httpx.Response(500)), "https://dex.test")
        with pytest.raises(DataSourceError, match="Unsupported chain: solana"):
            await client.resolve_token("BONK", "solana")

    async def test_http_error_has_status(self) -> None:
        client = DexScreenerClient(_client(lambda request: httpx.Response(503)), "https://dex.test")
        with pytest.raises(DataSourceError) as exc_info:
            await client.resolve_token("DEGEN")
        assert exc_info.value.status_code == 503


# =========================================================================
# EnsResolver
# =========================================================================


class TestEnsResolver:
    """ENS name resolution."""

    def test_normalize_ens_name(self) -> None:
        assert normalize_ens_name(" Vitalik ") == "vitalik.eth"
        assert normalize_ens_name("vitalik.eth") == "vitalik.eth"
        assert normalize_ens_name("jesse.base.eth") == "jesse.base.eth"

    async def test_resolve_appends_eth(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json={"address": VITALIK_ADDRESS})

        resolver = EnsResolver(_client(handler), "https://ens.test")
        result = await resolver.resolve("vitalik")

        assert result == {"ens_domain": "vitalik.eth", "address": VITALIK_ADDRESS}
        assert seen == ["/ens/resolve/vitalik.eth"]

    async def test_unresolved_name(self) -> None:
        handler = lambda request: httpx.Response(200, json={"address": None})  # noqa: E731
        resolver = EnsResolver(_client(handler), "https://ens.test")
        with pytest.raises(DataSourceError, match="No address found for ENS domain: nobody.eth"):
            await resolver.resolve("nobody")

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        resolver = EnsResolver(_client(handler), "https://ens.test")
        with pytest.raises(DataSourceError, match="failed"):
            await resolver.resolve("vitalik.eth")


# =========================================================================
# DataSources
# =========================================================================


class TestDataSources:
    """Container wiring."""

    async def test_from_settings_shares_one_client(self) -> None:
        http = _client(lambda request: httpx.Response(200, json={}))
        sources = DataSources.from_settings(http=http)
        assert sources.http is http
        assert sources.dune._client is http
        assert sources.ens._client is http
        assert sources.dune.cache_ttl == settings.dune_cache_ttl_seconds
        await sources.aclose()
        assert http.is_closed
