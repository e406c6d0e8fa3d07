"""
Base class shared by every trigger source.

A source listens to one input (MIDI port, console, pedal, webhook route) and
calls the registered callback with the activation time whenever its match
condition fires. Device libraries deliver events on their own threads, so
activations are marshalled onto the event loop captured in ``start()``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .models import TriggerKind

logger = logging.getLogger(__name__)

ActivationCallback = Callable[[datetime], Any]


class TriggerSource(ABC):
    """Abstract trigger source with idempotent start/stop."""

    kind: TriggerKind

    def __init__(self, trigger_id: str):
        self.trigger_id = trigger_id
        self._callback: Optional[ActivationCallback] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[int] = None
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    def on_trigger(self, callback: ActivationCallback) -> None:
        """Register the activation callback."""
        self._callback = callback

    async def start(self) -> None:
        """Acquire the underlying resource and begin listening."""
        if self._active:
            return
        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        try:
            await self._open()
        except BaseException:
            # Release whatever was acquired before the failure
            await self._close()
            raise
        self._active = True

    async def stop(self) -> None:
        """Release the underlying resource. Safe to call at any time."""
        self._active = False
        await self._close()

    @abstractmethod
    async def _open(self) -> None:
        """Acquire the device or route."""

    @abstractmethod
    async def _close(self) -> None:
        """Release the device or route. Must tolerate partial or missing _open()."""

    def describe(self) -> Dict[str, Any]:
        return {"id": self.trigger_id, "kind": self.kind.value, "active": self._active}

    def _emit(self, timestamp: Optional[datetime] = None) -> None:
        """Report an activation. Callable from any thread."""
        timestamp = timestamp or datetime.now()
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning(f"[{self.kind.value}] Activation for {self.trigger_id} dropped: source not started")
            return
        if threading.get_ident() == self._loop_thread:
            self._deliver(timestamp)
        else:
            loop.call_soon_threadsafe(self._deliver, timestamp)

    def _deliver(self, timestamp: datetime) -> None:
        if not self._active or self._callback is None:
            return
        try:
            self._callback(timestamp)
        except Exception as e:
            logger.error(
                f"[{self.kind.value}] Activation callback for {self.trigger_id} failed: {e}",
                exc_info=True,
            )
