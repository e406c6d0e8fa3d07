"""
MIDI trigger source.

Opens a MIDI input port through mido (python-rtmidi backend) and fires on
note-on messages matching the configured note and, optionally, channel.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import mido

from common.errors import DeviceUnavailableError

from .base import TriggerSource
from .models import MidiTriggerConfig, TriggerKind

logger = logging.getLogger(__name__)

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]


def note_name(note_number: int) -> str:
    """Convert a MIDI note number to its name, e.g. 60 -> "C4"."""
    octave = note_number // 12 - 1
    return f"{NOTE_NAMES[note_number % 12]}{octave}"


def list_midi_input_names(backend: Any = None) -> List[str]:
    """Enumerate the currently available MIDI input ports."""
    backend = backend or mido
    return list(backend.get_input_names())


class MidiTriggerSource(TriggerSource):
    """Fires on a matching MIDI note-on."""

    kind = TriggerKind.MIDI

    def __init__(self, trigger_id: str, config: MidiTriggerConfig, backend: Any = None):
        super().__init__(trigger_id)
        self.config = config
        self._backend = backend or mido
        self._port = None
        self.port_name: Optional[str] = None

    async def _open(self) -> None:
        try:
            inputs = list_midi_input_names(self._backend)
        except Exception as e:
            raise DeviceUnavailableError(f"Could not enumerate MIDI inputs: {e}") from e
        logger.info(f"[midi] Available MIDI input ports: {inputs}")

        if not inputs:
            raise DeviceUnavailableError("No MIDI input ports available")

        wanted = self.config.device_name or inputs[0]
        if wanted not in inputs:
            logger.warning(
                f"[midi] MIDI device {wanted!r} not found for trigger {self.trigger_id}, "
                f"falling back to first available device {inputs[0]!r}"
            )
            wanted = inputs[0]

        try:
            self._port = self._backend.open_input(wanted, callback=self._on_message)
        except Exception as e:
            raise DeviceUnavailableError(f"Could not open MIDI port {wanted!r}: {e}") from e
        self.port_name = wanted

        logger.info(
            f"[midi] Trigger {self.trigger_id} listening on {wanted!r} for note "
            f"{self.config.note_number} ({note_name(self.config.note_number)})"
            + (f" on channel {self.config.channel}" if self.config.channel else "")
        )

    async def _close(self) -> None:
        port, self._port = self._port, None
        if port is not None:
            port.close()
            logger.info(f"[midi] Closed MIDI port {self.port_name!r} for trigger {self.trigger_id}")

    def matches(self, message: Any) -> bool:
        """True iff ``message`` is a note-on for the configured note/channel."""
        if getattr(message, "type", None) != "note_on":
            return False
        # note_on with velocity 0 is a note-off
        if getattr(message, "velocity", 0) == 0:
            return False
        if message.note != self.config.note_number:
            return False
        if self.config.channel is not None and message.channel != self.config.channel - 1:
            return False
        return True

    def _on_message(self, message: Any) -> None:
        if getattr(message, "type", None) == "note_on":
            logger.debug(
                f"[midi] Note {message.note} ({note_name(message.note)}), "
                f"velocity {message.velocity}, channel {message.channel + 1}"
            )
        if self.matches(message):
            logger.info(f"[midi] Trigger {self.trigger_id} activated by note {message.note}")
            self._emit()

    def describe(self) -> Dict[str, Any]:
        data = super().describe()
        data.update({
            "port": self.port_name,
            "note": self.config.note_number,
            "channel": self.config.channel,
        })
        return data
