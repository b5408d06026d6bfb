"""Verification of the caller's bearer credential.

The Supervisor only needs to know *who* the actor is (and, when the
identity service knows it, the actor's connected wallet). Credentials are
verified once per query, before any planning happens.
"""

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import structlog

from supervisor.errors import UnauthenticatedError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """A verified actor.

    Attributes:
        user_id: Stable user id issued by the identity service.
        wallet_address: The actor's connected wallet, when known.
    """

    user_id: str
    wallet_address: str | None = None


class IdentityProvider(Protocol):
    async def verify(self, token: str) -> Identity:
        """Verify ``token`` or raise UnauthenticatedError."""
        ...


class HttpIdentityProvider:
    """Verifies tokens against a remote verification endpoint.

    The endpoint is called with ``Authorization: Bearer <token>`` and must
    answer 200 with either ``{"user": {"id": ..., "wallet": ...}}`` or
    ``{"userId": ...}``. Anything else is treated as unauthenticated.
    """

    def __init__(
        self,
        verify_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.verify_url = verify_url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def verify(self, token: str) -> Identity:
        if not token:
            raise UnauthenticatedError("missing credential")

        try:
            response = await self._client.get(
                self.verify_url,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            logger.warning("identity_verify_request_failed", error=str(e))
            raise UnauthenticatedError("credential verification failed") from e

        if response.status_code != 200:
            logger.info("identity_rejected", status_code=response.status_code)
            raise UnauthenticatedError("invalid credential")

        try:
            payload = response.json()
        except ValueError as e:
            raise UnauthenticatedError("unreadable verification response") from e

        identity = _identity_from_payload(payload)
        if identity is None:
            raise UnauthenticatedError("verification response has no user id")
        return identity

    async def aclose(self) -> None:
        await self._client.aclose()


def _identity_from_payload(payload: Any) -> Identity | None:
    if not isinstance(payload, dict):
        return None
    user = payload.get("user")
    if isinstance(user, dict) and user.get("id"):
        wallet = user.get("wallet")
        if isinstance(wallet, dict):
            wallet = wallet.get("address")
        return Identity(user_id=str(user["id"]), wallet_address=wallet or None)
    if payload.get("userId"):
        return Identity(user_id=str(payload["userId"]), wallet_address=payload.get("wallet"))
    return None


class StaticIdentityProvider:
    """Token table lookup, for local development and tests.

    Args:
        tokens: Maps token to user id, or to ``"user_id:0xwallet"``.
    """

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = dict(tokens)

    async def verify(self, token: str) -> Identity:
        entry = self._tokens.get(token)
        if not entry:
            raise UnauthenticatedError("invalid credential")
        user_id, _, wallet = entry.partition(":")
        return Identity(user_id=user_id, wallet_address=wallet or None)
