"""Foot pedal trigger source. Hardware bridges report presses through press()."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from .base import TriggerSource
from .models import FootPedalConfig, TriggerKind

logger = logging.getLogger(__name__)


class FootPedalTriggerSource(TriggerSource):
    kind = TriggerKind.FOOTPEDAL

    def __init__(self, trigger_id: str, config: FootPedalConfig):
        super().__init__(trigger_id)
        self.config = config

    async def _open(self) -> None:
        logger.info(f"[footpedal] Trigger {self.trigger_id} ready for device {self.config.usb_device!r}")

    async def _close(self) -> None:
        return None

    def press(self, timestamp: Optional[datetime] = None) -> None:
        """Report a pedal press. Ignored while the source is stopped."""
        if not self.is_active:
            return
        logger.info(f"[footpedal] Trigger {self.trigger_id} activated")
        self._emit(timestamp)

    def describe(self) -> Dict[str, Any]:
        data = super().describe()
        data["usb_device"] = self.config.usb_device
        return data
