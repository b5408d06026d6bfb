"""Tests for supervisor/identity.py -- credential verification."""

import httpx
import pytest

from supervisor.errors import UnauthenticatedError
from supervisor.identity import HttpIdentityProvider, Identity, StaticIdentityProvider

VERIFY_URL = "https://auth.test/verify"
WALLET = "0x1111111111111111111111111111111111111111"


def _provider(handler) -> HttpIdentityProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpIdentityProvider(VERIFY_URL, client=client)


class TestHttpIdentityProvider:
    """Remote verification endpoint."""

    async def test_user_payload(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"user": {"id": "u_1", "wallet": WALLET}})

        identity = await _provider(handler).verify("tok-1")

        assert identity == Identity(user_id="u_1", wallet_address=WALLET)
        assert seen[0].headers["Authorization"] == "Bearer tok-1"
        assert str(seen[0].url) == VERIFY_URL

    async def test_wallet_object(self) -> None:
        handler = lambda request: httpx.Response(  # noqa: E731
            200, json={"user": {"id": 7, "wallet": {"address": WALLET}}}
        )
        identity = await _provider(handler).verify("tok")
        assert identity.user_id == "7"
        assert identity.wallet_address == WALLET

    async def test_user_id_payload_without_wallet(self) -> None:
        handler = lambda request: httpx.Response(200, json={"userId": "u_2"})  # noqa: E731
        identity = await _provider(handler).verify("tok")
        assert identity == Identity(user_id="u_2")

    @pytest.mark.parametrize("payload", [{}, {"user": {"wallet": WALLET}}, ["u_1"]])
    async def test_payload_without_user_id(self, payload) -> None:
        handler = lambda request: httpx.Response(200, json=payload)  # noqa: E731
        with pytest.raises(UnauthenticatedError):
            await _provider(handler).verify("tok")

    async def test_rejected_token(self) -> None:
        handler = lambda request: httpx.Response(401, json={"error": "expired"})  # noqa: E731
        with pytest.raises(UnauthenticatedError, match="invalid credential"):
            await _provider(handler).verify("tok")

    async def test_unreadable_body(self) -> None:
        handler = lambda request: httpx.Response(200, content=b"<html>")  # noqa: E731
        with pytest.raises(UnauthenticatedError, match="unreadable"):
            await _provider(handler).verify("tok")

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(UnauthenticatedError, match="verification failed"):
            await _provider(handler).verify("tok")

    async def test_empty_token_not_sent(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"userId": "u"})

        with pytest.raises(UnauthenticatedError, match="missing credential"):
            await _provider(handler).verify("")
        assert seen == []


class TestStaticIdentityProvider:
    """Token table lookup."""

    async def test_user_only(self) -> None:
        identity = await StaticIdentityProvider({"tok": "u_1"}).verify("tok")
        assert identity == Identity(user_id="u_1")

    async def test_user_and_wallet(self) -> None:
        identity = await StaticIdentityProvider({"tok": f"u_1:{WALLET}"}).verify("tok")
        assert identity.wallet_address == WALLET

    async def test_unknown_token(self) -> None:
        with pytest.raises(UnauthenticatedError):
            await StaticIdentityProvider({"tok": "u_1"}).verify("other")
