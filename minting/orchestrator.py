"""
Mint Orchestrator - per-trigger supply accounting and the mint pipeline.

For one activation: check the supply cap, render the metadata template,
load the media file, optionally verify the network, then upload the asset,
upload the metadata and mint the token. The trigger's counter moves only
after the backend confirmed the mint, so a failed attempt leaves the next
activation on the same ordinal.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Deque, Dict, List, Optional, Union

from common.errors import ConfigurationError, MediaNotFoundError
from common.metrics import mint_attempts_total
from triggers.models import MetadataTemplate, MintExecution, TriggerDefinition

from .network_guard import NetworkGuard
from .service import AssetMintingService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SupplyExhausted:
    """Returned instead of minting once a trigger reached its cap."""
    trigger_id: str
    max_supply: int
    minted: int


@dataclass
class MintResult:
    trigger_id: str
    ordinal: int
    name: str
    token_id: str
    metadata_uri: str
    asset_uri: str
    minted_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trigger_id": self.trigger_id,
            "ordinal": self.ordinal,
            "name": self.name,
            "token_id": self.token_id,
            "metadata_uri": self.metadata_uri,
            "asset_uri": self.asset_uri,
            "minted_at": self.minted_at.isoformat(),
        }


MintOutcome = Union[MintResult, SupplyExhausted]


def render_metadata(template: MetadataTemplate, count: int, timestamp: datetime) -> Dict[str, Any]:
    """Render the per-activation metadata (without the image URI)."""
    attributes = []
    for trait, value in template.attributes.items():
        if isinstance(value, str):
            value = template.render_text(value, count, timestamp)
        attributes.append({"trait_type": trait, "value": value})

    return {
        "name": template.render_text(template.name, count, timestamp),
        "symbol": template.symbol,
        "description": template.render_text(template.description, count, timestamp),
        "attributes": attributes,
    }


class MintOrchestrator:
    """
    Owns the per-trigger counters and runs the mint pipeline.

    With ``serialize=True`` activations of the same trigger run one at a
    time behind a per-trigger lock, which keeps the supply cap exact. With
    ``serialize=False`` concurrent mints of one trigger may overshoot the cap
    and share an ordinal. Different triggers never wait on each other.
    """

    def __init__(
        self,
        service: AssetMintingService,
        media_root: Union[str, Path] = ".",
        default_max_supply: Optional[int] = None,
        network_guard: Optional[NetworkGuard] = None,
        serialize: bool = True,
        history_limit: int = 100,
    ):
        self.service = service
        self.media_root = Path(media_root)
        self.default_max_supply = default_max_supply
        self.network_guard = network_guard
        self.serialize = serialize

        self._definitions: Dict[str, TriggerDefinition] = {}
        self._counters: Dict[str, int] = {}
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._history: Deque[MintExecution] = deque(maxlen=history_limit)

    # Definitions / counters

    def register(self, definition: TriggerDefinition) -> None:
        """Register or replace the definition used for ``definition.id``. Counters survive."""
        self._definitions[definition.id] = definition
        self._counters.setdefault(definition.id, 0)

    def unregister(self, trigger_id: str) -> None:
        self._definitions.pop(trigger_id, None)

    def get_definition(self, trigger_id: str) -> Optional[TriggerDefinition]:
        return self._definitions.get(trigger_id)

    def supply_cap(self, trigger_id: str) -> Optional[int]:
        definition = self._definitions.get(trigger_id)
        if definition is not None and definition.max_supply is not None:
            return definition.max_supply
        return self.default_max_supply

    def counter(self, trigger_id: str) -> int:
        return self._counters.get(trigger_id, 0)

    def counters(self) -> Dict[str, int]:
        return dict(self._counters)

    def get_executions(self, trigger_id: Optional[str] = None, limit: int = 50) -> List[MintExecution]:
        executions = [e for e in self._history if trigger_id is None or e.trigger_id == trigger_id]
        executions.sort(key=lambda e: e.started_at, reverse=True)
        return executions[:limit]

    # Pipeline

    async def mint(self, trigger_id: str, timestamp: Optional[datetime] = None) -> MintOutcome:
        """
        Mint one token for an activation of ``trigger_id``.

        Returns SupplyExhausted when the cap is reached. Media, network and
        backend failures propagate with the counter unchanged.
        """
        timestamp = timestamp or datetime.now()
        if trigger_id not in self._definitions:
            raise ConfigurationError(f"Unknown trigger: {trigger_id}")

        execution = MintExecution(trigger_id=trigger_id, activated_at=timestamp)
        self._history.append(execution)

        try:
            if self.serialize:
                async with self._locks[trigger_id]:
                    outcome = await self._mint_once(trigger_id, timestamp)
            else:
                outcome = await self._mint_once(trigger_id, timestamp)
        except Exception as e:
            execution.mark_failed(str(e))
            mint_attempts_total.labels(trigger_id, "failed").inc()
            raise

        if isinstance(outcome, SupplyExhausted):
            execution.mark_exhausted()
            mint_attempts_total.labels(trigger_id, "exhausted").inc()
        else:
            execution.mark_success(outcome.ordinal, outcome.name, outcome.token_id)
            mint_attempts_total.labels(trigger_id, "success").inc()
        return outcome

    async def _mint_once(self, trigger_id: str, timestamp: datetime) -> MintOutcome:
        # Read at lock time so a hot-reloaded definition applies to the next mint
        definition = self._definitions.get(trigger_id)
        if definition is None:
            raise ConfigurationError(f"Unknown trigger: {trigger_id}")

        minted = self._counters.get(trigger_id, 0)
        cap = self.supply_cap(trigger_id)
        if cap is not None and minted >= cap:
            logger.info(f"[mint] Supply exhausted for {trigger_id} ({minted}/{cap})")
            return SupplyExhausted(trigger_id=trigger_id, max_supply=cap, minted=minted)

        ordinal = minted + 1
        template = definition.metadata
        metadata = render_metadata(template, ordinal, timestamp)

        media_path = self.resolve_media(template.media_file)
        data = await asyncio.to_thread(media_path.read_bytes)

        if self.network_guard is not None:
            await self.network_guard.check()

        logger.info(f"[mint] Minting {metadata['name']!r} for trigger {trigger_id}")
        asset_uri = await self.service.upload_asset(data, media_path.name)
        logger.info(f"[mint] Asset uploaded: {asset_uri}")

        metadata["image"] = asset_uri
        metadata["properties"] = {"files": [{"uri": asset_uri, "type": _media_type(media_path)}]}
        metadata_uri = await self.service.upload_metadata(metadata)
        logger.info(f"[mint] Metadata uploaded: {metadata_uri}")

        token_id = await self.service.mint_token(metadata["name"], template.symbol, metadata_uri)

        self._counters[trigger_id] = self._counters.get(trigger_id, 0) + 1
        logger.info(
            f"[mint] Minted {metadata['name']!r} ({token_id}) for {trigger_id}, "
            f"count={self._counters[trigger_id]}"
            + (f"/{cap}" if cap is not None else "")
        )
        return MintResult(
            trigger_id=trigger_id,
            ordinal=ordinal,
            name=metadata["name"],
            token_id=token_id,
            metadata_uri=metadata_uri,
            asset_uri=asset_uri,
        )

    def resolve_media(self, media_file: str) -> Path:
        """Locate a media file referenced as ``./assets/<type>/<file>`` or absolute."""
        if not media_file:
            raise MediaNotFoundError(media_file)
        path = Path(media_file)
        if not path.is_absolute():
            path = self.media_root / path
        if not path.is_file():
            raise MediaNotFoundError(media_file)
        return path


def _media_type(path: Path) -> str:
    suffix = path.suffix.lower().lstrip(".")
    if suffix == "jpg":
        suffix = "jpeg"
    return f"image/{suffix}" if suffix else "application/octet-stream"
