"""
Minting pipeline.

- AssetMintingService: external backend contract (+ HTTP gateway client)
- NetworkGuard: genesis-hash check against the declared cluster
- MintOrchestrator: supply caps, metadata rendering, mint delegation
"""

from .network_guard import NetworkGuard, network_for_genesis_hash
from .orchestrator import MintOrchestrator, MintResult, SupplyExhausted, render_metadata
from .service import AssetMintingService, HttpAssetMintingService

__all__ = [
    "AssetMintingService",
    "HttpAssetMintingService",
    "NetworkGuard",
    "network_for_genesis_hash",
    "MintOrchestrator",
    "MintResult",
    "SupplyExhausted",
    "render_metadata",
]
