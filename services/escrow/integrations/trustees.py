"""
Trustee Channels
================

Private, authenticated request/response channels to escrow trustees.

A share travels only between the sealer and its own trustee: `send` on
seal/redistribute, `receive` during reconstruction.

Version: 0.1.0
"""

import asyncio
from abc import ABC, abstractmethod

import httpx

from services.escrow.core import KeyShare
from services.escrow.errors import TrusteeUnavailable
from shared.config import settings
from shared.logging import get_logger


logger = get_logger(__name__)


class TrusteeChannel(ABC):
    """Abstract trustee transport."""

    @abstractmethod
    async def send(self, trustee_id: str, share: KeyShare) -> None:
        """
        Deliver a share to its trustee.

        Raises:
            TrusteeUnavailable: If the trustee did not acknowledge
        """
        ...

    @abstractmethod
    async def receive(self, trustee_id: str, escrow_id: str) -> KeyShare:
        """
        Ask a trustee to release its share.

        Raises:
            TrusteeUnavailable: If the trustee is unreachable or holds no share
        """
        ...

    async def close(self) -> None:
        return None


class InMemoryTrusteeChannel(TrusteeChannel):
    """
    In-process trustees for development and tests.

    Each trustee's vault holds the encoded share only; reachability can be
    toggled per trustee to simulate outages.
    """

    def __init__(self) -> None:
        self._vaults: dict[str, dict[str, str]] = {}
        self._unreachable: set[str] = set()

    def set_reachable(self, trustee_id: str, reachable: bool) -> None:
        if reachable:
            self._unreachable.discard(trustee_id)
        else:
            self._unreachable.add(trustee_id)

    def _check(self, trustee_id: str) -> None:
        if trustee_id in self._unreachable:
            raise TrusteeUnavailable(f"Trustee {trustee_id} unreachable")

    async def send(self, trustee_id: str, share: KeyShare) -> None:
        self._check(trustee_id)
        self._vaults.setdefault(trustee_id, {})[share.escrow_id] = share.encode()

    async def receive(self, trustee_id: str, escrow_id: str) -> KeyShare:
        self._check(trustee_id)
        encoded = self._vaults.get(trustee_id, {}).get(escrow_id)
        if encoded is None:
            raise TrusteeUnavailable(f"Trustee {trustee_id} holds no share for {escrow_id}")
        return KeyShare.decode(escrow_id, trustee_id, encoded)

    def holds(self, trustee_id: str, escrow_id: str) -> bool:
        return escrow_id in self._vaults.get(trustee_id, {})

    def overwrite(self, trustee_id: str, escrow_id: str, encoded: str) -> None:
        """Replace a stored share (tamper simulation in tests)."""
        self._vaults.setdefault(trustee_id, {})[escrow_id] = encoded


class HttpTrusteeChannel(TrusteeChannel):
    """
    Trustee custodians reached over HTTPS.

    Endpoints per trustee base URL:
        POST /api/receive-share  {"escrow_id", "share"}
        POST /api/request-share  {"escrow_id"} -> {"share"}
    """

    def __init__(
        self,
        endpoints: dict[str, str] | None = None,
        timeout: float | None = None,
        auth_token: str | None = None,
    ) -> None:
        self._endpoints = endpoints if endpoints is not None else settings.trustees.endpoint_map
        self._timeout = timeout or settings.trustees.timeout_seconds
        token = auth_token if auth_token is not None else settings.trustees.auth_token.get_secret_value()
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout), headers=headers)

    def _url(self, trustee_id: str, path: str) -> str:
        base = self._endpoints.get(trustee_id)
        if base is None:
            raise TrusteeUnavailable(f"No endpoint configured for trustee {trustee_id}")
        return f"{base}{path}"

    async def send(self, trustee_id: str, share: KeyShare) -> None:
        url = self._url(trustee_id, "/api/receive-share")
        try:
            async with asyncio.timeout(self._timeout):
                response = await self._client.post(
                    url,
                    json={"escrow_id": share.escrow_id, "share": share.encode()},
                )
            response.raise_for_status()
        except (httpx.HTTPError, TimeoutError) as e:
            logger.warning("trustee_send_failed", trustee_id=trustee_id, error=type(e).__name__)
            raise TrusteeUnavailable(f"Trustee {trustee_id} did not acknowledge") from e

    async def receive(self, trustee_id: str, escrow_id: str) -> KeyShare:
        url = self._url(trustee_id, "/api/request-share")
        try:
            async with asyncio.timeout(self._timeout):
                response = await self._client.post(url, json={"escrow_id": escrow_id})
            response.raise_for_status()
            encoded = response.json()["share"]
        except (httpx.HTTPError, TimeoutError, KeyError, ValueError) as e:
            logger.warning("trustee_receive_failed", trustee_id=trustee_id, error=type(e).__name__)
            raise TrusteeUnavailable(f"Trustee {trustee_id} did not release its share") from e
        return KeyShare.decode(escrow_id, trustee_id, encoded)

    async def close(self) -> None:
        await self._client.aclose()


def create_trustee_channel() -> TrusteeChannel:
    """HTTP channel when `TRUSTEE_ENDPOINTS` is set, otherwise in-memory."""
    if settings.trustees.endpoint_map:
        return HttpTrusteeChannel()
    return InMemoryTrusteeChannel()
