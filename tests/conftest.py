import asyncio
import os
from typing import Any, Dict, List, Optional

import pytest

pytest_plugins = ["pytest_asyncio"]

# Keep test runs from writing log files or reading a developer .env
os.environ.setdefault("ENABLE_FILE_LOGGING", "false")
os.environ.setdefault("VERIFY_NETWORK", "false")

from common.errors import ExternalServiceError  # noqa: E402
from minting.orchestrator import MintOrchestrator  # noqa: E402
from minting.service import AssetMintingService  # noqa: E402
from triggers.models import TriggerDefinition  # noqa: E402


class FakeMintingService(AssetMintingService):
    """In-memory backend recording every call."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls: List[str] = []
        self.minted: List[Dict[str, Any]] = []
        self.metadata: List[Dict[str, Any]] = []
        self.fail_uploads = 0  # number of upcoming upload_asset calls that fail
        self.fail_mints = 0

    async def upload_asset(self, data: bytes, filename: str) -> str:
        self.calls.append("upload_asset")
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_uploads:
            self.fail_uploads -= 1
            raise ExternalServiceError("simulated upload failure")
        return f"https://arweave.test/{filename}"

    async def upload_metadata(self, metadata: Dict[str, Any]) -> str:
        self.calls.append("upload_metadata")
        self.metadata.append(metadata)
        return f"https://arweave.test/meta-{len(self.metadata)}.json"

    async def mint_token(self, name: str, symbol: str, uri: str) -> str:
        self.calls.append("mint_token")
        if self.fail_mints:
            self.fail_mints -= 1
            raise ExternalServiceError("simulated mint failure")
        self.minted.append({"name": name, "symbol": symbol, "uri": uri})
        return f"Mint{len(self.minted)}"


def make_definition(
    trigger_id: str = "snare",
    kind: str = "footpedal",
    config: Optional[Dict[str, Any]] = None,
    name: str = "Drum #{count}",
    media_file: str = "./assets/footpedal/snare.png",
    max_supply: Optional[int] = None,
    **metadata: Any,
) -> TriggerDefinition:
    data: Dict[str, Any] = {
        "id": trigger_id,
        "type": kind,
        "config": config if config is not None else {"usbDevice": "pedal-1"},
        "nftMetadata": {
            "name": name,
            "symbol": metadata.pop("symbol", "DRUM"),
            "description": metadata.pop("description", "Hit at {timestamp}"),
            "mediaFile": media_file,
            "attributes": metadata.pop("attributes", {"instrument": "snare"}),
        },
    }
    if max_supply is not None:
        data["maxSupply"] = max_supply
    return TriggerDefinition.from_dict(data)


@pytest.fixture
def media_root(tmp_path):
    media_dir = tmp_path / "assets" / "footpedal"
    media_dir.mkdir(parents=True)
    (media_dir / "snare.png").write_bytes(b"\x89PNG fake image")
    return tmp_path


@pytest.fixture
def minting_service():
    return FakeMintingService()


@pytest.fixture
def orchestrator(minting_service, media_root):
    return MintOrchestrator(minting_service, media_root=media_root)
