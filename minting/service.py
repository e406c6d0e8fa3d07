"""
AssetMintingService: the external backend that stores media, stores metadata
and mints the token. Signing and broadcasting live behind this boundary.
"""

from __future__ import annotations

import logging
import mimetypes
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from common.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class AssetMintingService(ABC):
    """Upload asset -> upload metadata -> mint token. Calls are never retried here."""

    @abstractmethod
    async def upload_asset(self, data: bytes, filename: str) -> str:
        """Store the media bytes and return their URI."""

    @abstractmethod
    async def upload_metadata(self, metadata: Dict[str, Any]) -> str:
        """Store the rendered metadata JSON and return its URI."""

    @abstractmethod
    async def mint_token(self, name: str, symbol: str, uri: str) -> str:
        """Mint one token pointing at ``uri``; returns the token (mint) address."""

    async def aclose(self) -> None:
        return None


class HttpAssetMintingService(AssetMintingService):
    """
    AssetMintingService backed by an HTTP minting gateway.

    Endpoints:
        POST /assets    multipart file          -> {"uri": ...}
        POST /metadata  JSON metadata           -> {"uri": ...}
        POST /tokens    {name, symbol, uri, owner} -> {"token_id": ...}
    """

    def __init__(
        self,
        base_url: str,
        owner: str,
        api_token: str = "",
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
        self.owner = owner
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
        )

    async def _post(self, path: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = await self._client.post(path, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                f"Minting backend {path} returned {e.response.status_code}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalServiceError(f"Minting backend {path} failed: {e}") from e

    @staticmethod
    def _field(payload: Dict[str, Any], key: str, path: str) -> str:
        value = payload.get(key)
        if not value:
            raise ExternalServiceError(f"Minting backend {path} response missing {key!r}")
        return str(value)

    async def upload_asset(self, data: bytes, filename: str) -> str:
        content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        payload = await self._post("/assets", files={"file": (filename, data, content_type)})
        return self._field(payload, "uri", "/assets")

    async def upload_metadata(self, metadata: Dict[str, Any]) -> str:
        payload = await self._post("/metadata", json=metadata)
        return self._field(payload, "uri", "/metadata")

    async def mint_token(self, name: str, symbol: str, uri: str) -> str:
        payload = await self._post(
            "/tokens",
            json={"name": name, "symbol": symbol, "uri": uri, "owner": self.owner},
        )
        return self._field(payload, "token_id", "/tokens")

    async def aclose(self) -> None:
        await self._client.aclose()
