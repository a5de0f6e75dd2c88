"""
Payload Store
=============

Content-addressed storage for sealed identity envelopes.

- InMemoryPayloadStore: sha256 locators, for development and tests
- IpfsPayloadStore: IPFS HTTP API (`/api/v0/add`, `/api/v0/cat`)

Version: 0.1.0
"""

import asyncio
import hashlib
from abc import ABC, abstractmethod
from typing import Any

import httpx

from services.escrow.errors import PayloadStoreError
from shared.config import PayloadStoreMode, settings
from shared.logging import get_logger


logger = get_logger(__name__)


class PayloadStore(ABC):
    """Abstract content-addressed store: `put(bytes) -> locator`, `get(locator) -> bytes`."""

    @property
    @abstractmethod
    def mode(self) -> PayloadStoreMode:
        ...

    @abstractmethod
    async def put(self, data: bytes) -> str:
        """Store bytes and return their locator."""
        ...

    @abstractmethod
    async def get(self, locator: str) -> bytes:
        """
        Fetch bytes by locator.

        Raises:
            PayloadStoreError: If missing, unreachable, or content does not match
        """
        ...

    async def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", "mode": self.mode.value}

    async def close(self) -> None:
        return None


class InMemoryPayloadStore(PayloadStore):
    """In-memory store keyed by `sha256:<hex>`; lost on restart."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}

    @property
    def mode(self) -> PayloadStoreMode:
        return PayloadStoreMode.MEMORY

    @staticmethod
    def locator_for(data: bytes) -> str:
        return f"sha256:{hashlib.sha256(data).hexdigest()}"

    async def put(self, data: bytes) -> str:
        locator = self.locator_for(data)
        self._blobs[locator] = bytes(data)
        logger.debug("payload_stored", locator=locator, size=len(data))
        return locator

    async def get(self, locator: str) -> bytes:
        data = self._blobs.get(locator)
        if data is None:
            raise PayloadStoreError(f"Payload not found: {locator}")
        if self.locator_for(data) != locator:
            raise PayloadStoreError("Payload content does not match its locator")
        return data

    def __len__(self) -> int:
        return len(self._blobs)


class IpfsPayloadStore(PayloadStore):
    """IPFS node HTTP API adapter."""

    def __init__(
        self,
        api_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._api_url = (api_url or settings.payload_store.api_url).rstrip("/")
        self._timeout = timeout or settings.payload_store.timeout_seconds
        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            timeout=httpx.Timeout(self._timeout),
        )
        logger.debug("ipfs_payload_store_initialized", api_url=self._api_url)

    @property
    def mode(self) -> PayloadStoreMode:
        return PayloadStoreMode.IPFS

    async def put(self, data: bytes) -> str:
        try:
            async with asyncio.timeout(self._timeout):
                response = await self._client.post(
                    "/api/v0/add",
                    params={"pin": "true", "cid-version": "1"},
                    files={"file": ("payload.bin", data, "application/octet-stream")},
                )
            response.raise_for_status()
            cid = response.json()["Hash"]
        except (httpx.HTTPError, TimeoutError, KeyError, ValueError) as e:
            logger.error("ipfs_put_failed", error=str(e))
            raise PayloadStoreError("Failed to store payload") from e

        logger.info("payload_pinned", cid=cid, size=len(data))
        return f"ipfs:{cid}"

    async def get(self, locator: str) -> bytes:
        if not locator.startswith("ipfs:"):
            raise PayloadStoreError(f"Not an IPFS locator: {locator}")
        cid = locator.removeprefix("ipfs:")
        try:
            async with asyncio.timeout(self._timeout):
                response = await self._client.post("/api/v0/cat", params={"arg": cid})
            response.raise_for_status()
        except (httpx.HTTPError, TimeoutError) as e:
            logger.error("ipfs_get_failed", cid=cid, error=str(e))
            raise PayloadStoreError("Failed to fetch payload") from e
        return response.content

    async def health_check(self) -> dict[str, Any]:
        try:
            response = await self._client.post("/api/v0/version")
            response.raise_for_status()
            return {"status": "healthy", "mode": self.mode.value, "version": response.json().get("Version")}
        except (httpx.HTTPError, ValueError) as e:
            return {"status": "unhealthy", "mode": self.mode.value, "error": str(e)}

    async def close(self) -> None:
        await self._client.aclose()


def create_payload_store() -> PayloadStore:
    """Build the payload store selected by `PAYLOAD_STORE_MODE`."""
    if settings.payload_store.mode == PayloadStoreMode.IPFS:
        return IpfsPayloadStore()
    return InMemoryPayloadStore()
