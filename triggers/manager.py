"""
Trigger Manager - Central Management for All Trigger Sources.

Builds sources from trigger definitions, starts/stops/hot-reloads them and
forwards every activation to the mint orchestrator on its own task, so a
failing mint never reaches the source or any other trigger.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, Set

from common.errors import ConfigurationError, MinterError
from common.metrics import active_triggers

from .base import TriggerSource
from .footpedal import FootPedalTriggerSource
from .keyboard import KeyboardTriggerSource
from .midi import MidiTriggerSource
from .models import MintExecution, TriggerDefinition, TriggerKind
from .webhook import WebhookHandler, WebhookTriggerSource, get_webhook_handler

if TYPE_CHECKING:
    from minting.orchestrator import MintOrchestrator, MintOutcome

logger = logging.getLogger(__name__)

SourceFactory = Callable[[TriggerDefinition, WebhookHandler], TriggerSource]


def create_trigger_source(definition: TriggerDefinition, webhook_handler: WebhookHandler) -> TriggerSource:
    """Build the source variant for ``definition.kind``."""
    kind = definition.kind
    if kind == TriggerKind.MIDI:
        return MidiTriggerSource(definition.id, definition.config)
    if kind == TriggerKind.KEYBOARD:
        return KeyboardTriggerSource(definition.id, definition.config)
    if kind == TriggerKind.FOOTPEDAL:
        return FootPedalTriggerSource(definition.id, definition.config)
    if kind == TriggerKind.WEBHOOK:
        return WebhookTriggerSource(definition.id, definition.config, webhook_handler)
    raise ConfigurationError(f"Unknown trigger type: {kind}")


class TriggerManager:
    """
    Central manager for running trigger sources.

    Provides:
    - Partial startup (one broken device does not block the rest)
    - Per-trigger hot reload
    - Isolated mint execution per activation
    """

    def __init__(
        self,
        orchestrator: "MintOrchestrator",
        webhook_handler: Optional[WebhookHandler] = None,
        source_factory: Optional[SourceFactory] = None,
    ):
        self.orchestrator = orchestrator
        self.webhook_handler = webhook_handler or get_webhook_handler()
        self._source_factory = source_factory or create_trigger_source

        self.sources: Dict[str, TriggerSource] = {}
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    async def initialize_all(self, definitions: Iterable[TriggerDefinition]) -> List[str]:
        """Start a source per definition. Returns the ids that started."""
        started: List[str] = []
        async with self._lock:
            for definition in definitions:
                if definition.id in self.sources:
                    await self._stop_source(definition.id, self.sources.pop(definition.id))
                if await self._start_definition(definition):
                    started.append(definition.id)
        logger.info(f"[trigger_manager] {len(started)} trigger(s) listening: {started}")
        return started

    async def stop_all(self) -> None:
        """Stop every running source and clear the registry."""
        async with self._lock:
            sources, self.sources = self.sources, {}
            for trigger_id, source in sources.items():
                await self._stop_source(trigger_id, source)
            active_triggers.set(0)

    async def reinitialize(self, trigger_id: str, definition: TriggerDefinition) -> Optional[TriggerSource]:
        """
        Replace the source for ``trigger_id`` with one built from ``definition``.

        Other sources keep running. Returns the new source, or None when it
        failed to start.
        """
        if definition.id != trigger_id:
            raise ConfigurationError(f"Definition id {definition.id!r} does not match {trigger_id!r}")

        async with self._lock:
            old = self.sources.pop(trigger_id, None)
            if old is not None:
                await self._stop_source(trigger_id, old)
            source = await self._start_definition(definition)
        logger.info(f"[trigger_manager] Reinitialized trigger {trigger_id}: {'ok' if source else 'failed'}")
        return source

    async def remove(self, trigger_id: str) -> bool:
        """Stop and forget a trigger. Its mint counter is kept."""
        async with self._lock:
            source = self.sources.pop(trigger_id, None)
            self.orchestrator.unregister(trigger_id)
            if source is None:
                return False
            await self._stop_source(trigger_id, source)
            return True

    def get(self, trigger_id: str) -> Optional[TriggerSource]:
        """Get the running source for ``trigger_id``."""
        return self.sources.get(trigger_id)

    def status(self) -> List[Dict[str, Any]]:
        result = []
        for trigger_id, source in list(self.sources.items()):
            info = source.describe()
            info["minted"] = self.orchestrator.counter(trigger_id)
            info["max_supply"] = self.orchestrator.supply_cap(trigger_id)
            result.append(info)
        return result

    def get_executions(self, trigger_id: Optional[str] = None, limit: int = 50) -> List[MintExecution]:
        return self.orchestrator.get_executions(trigger_id=trigger_id, limit=limit)

    async def wait_idle(self) -> None:
        """Wait for every in-flight mint task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _start_definition(self, definition: TriggerDefinition) -> Optional[TriggerSource]:
        try:
            source = self._source_factory(definition, self.webhook_handler)
        except Exception as e:
            logger.error(f"[trigger_manager] Could not build trigger {definition.id}: {e}")
            return None

        self.orchestrator.register(definition)
        source.on_trigger(self._make_callback(definition.id))
        try:
            await source.start()
        except Exception as e:
            logger.error(
                f"[trigger_manager] Trigger {definition.id} ({definition.kind.value}) failed to start: {e}",
                exc_info=not isinstance(e, MinterError),
            )
            return None

        self.sources[definition.id] = source
        active_triggers.set(len(self.sources))
        logger.info(f"[trigger_manager] Trigger {definition.id} ({definition.kind.value}) started")
        return source

    async def _stop_source(self, trigger_id: str, source: TriggerSource) -> None:
        try:
            await source.stop()
            logger.info(f"[trigger_manager] Trigger {trigger_id} stopped")
        except Exception as e:
            logger.error(f"[trigger_manager] Error stopping trigger {trigger_id}: {e}", exc_info=True)
        active_triggers.set(len(self.sources))

    def _make_callback(self, trigger_id: str) -> Callable[[datetime], None]:
        # Captures only the id so in-flight mints never hold on to a removed source
        def on_activation(timestamp: datetime) -> None:
            logger.info(f"[trigger_manager] Trigger {trigger_id} activated at {timestamp.isoformat()}")
            task = asyncio.get_running_loop().create_task(
                self._run_mint(trigger_id, timestamp),
                name=f"mint-{trigger_id}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return on_activation

    async def _run_mint(self, trigger_id: str, timestamp: datetime) -> Optional["MintOutcome"]:
        try:
            return await self.orchestrator.mint(trigger_id, timestamp)
        except Exception as e:
            logger.error(f"[trigger_manager] Mint for trigger {trigger_id} failed: {e}", exc_info=True)
            return None


# Global trigger manager instance
_trigger_manager: Optional[TriggerManager] = None


def get_trigger_manager() -> Optional[TriggerManager]:
    """Get the global trigger manager, if initialized."""
    return _trigger_manager


async def init_trigger_manager(
    orchestrator: "MintOrchestrator",
    definitions: Iterable[TriggerDefinition],
    webhook_handler: Optional[WebhookHandler] = None,
) -> TriggerManager:
    """Create the global trigger manager and start all triggers."""
    global _trigger_manager
    if _trigger_manager is not None:
        await _trigger_manager.stop_all()
    _trigger_manager = TriggerManager(orchestrator, webhook_handler=webhook_handler)
    await _trigger_manager.initialize_all(definitions)
    return _trigger_manager


async def shutdown_trigger_manager() -> None:
    """Stop all triggers and wait for in-flight mints."""
    global _trigger_manager
    if _trigger_manager:
        await _trigger_manager.stop_all()
        await _trigger_manager.wait_idle()
        _trigger_manager = None
