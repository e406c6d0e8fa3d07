"""
NetworkGuard: make sure the RPC endpoint is the cluster the operator declared.

The cluster is identified by its genesis hash, fetched once per guard.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import httpx

from common.errors import ConfigurationError, ExternalServiceError, NetworkMismatchError

logger = logging.getLogger(__name__)

GENESIS_HASHES: Dict[str, str] = {
    "5eykt4UsFv8P8NJdTREpY1vzqKqZKvdpKuc147dw2N9d": "mainnet",
    "EtWTRABZaYq6iMfeYKouRu166VU2xqa1wcaWoxPkrZBG": "devnet",
    "4uhcVJyU9pJkvQyS88uRDiswHXSCkY3zQawwpjk2NsNY": "testnet",
}


def network_for_genesis_hash(genesis_hash: str) -> str:
    """Cluster name for a genesis hash; unknown clusters map to the hash itself."""
    return GENESIS_HASHES.get(genesis_hash, genesis_hash)


class NetworkGuard:
    def __init__(
        self,
        rpc_endpoint: str,
        expected_network: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not rpc_endpoint:
            raise ConfigurationError("NetworkGuard requires an RPC endpoint")
        self.rpc_endpoint = rpc_endpoint
        self.expected_network = expected_network.lower().strip()
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._genesis_hash: Optional[str] = None
        self._lock = asyncio.Lock()

    async def fetch_genesis_hash(self) -> str:
        payload = {"jsonrpc": "2.0", "id": 1, "method": "getGenesisHash"}
        try:
            resp = await self._client.post(self.rpc_endpoint, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalServiceError(f"getGenesisHash against {self.rpc_endpoint} failed: {e}") from e

        if "error" in body or not body.get("result"):
            raise ExternalServiceError(f"getGenesisHash returned {body.get('error') or 'no result'}")
        return str(body["result"])

    async def actual_network(self) -> str:
        async with self._lock:
            if self._genesis_hash is None:
                self._genesis_hash = await self.fetch_genesis_hash()
                logger.info(f"[network_guard] Genesis hash: {self._genesis_hash}")
        return network_for_genesis_hash(self._genesis_hash)

    async def check(self) -> str:
        """Raise NetworkMismatchError unless connected to the expected cluster."""
        actual = await self.actual_network()
        if actual != self.expected_network:
            logger.error(
                f"[network_guard] MISMATCH: configured {self.expected_network} but connected to {actual}"
            )
            raise NetworkMismatchError(self.expected_network, actual)
        return actual

    async def aclose(self) -> None:
        await self._client.aclose()
