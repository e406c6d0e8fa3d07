"""
Trigger Models and Data Types.

Defines the data structures for the persisted trigger document:
- Trigger kinds (midi, keyboard, footpedal, webhook)
- Kind-specific configuration
- NFT metadata templates
- Mint execution records
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from common.errors import ConfigurationError

COUNT_PLACEHOLDER = "{count}"
TIMESTAMP_PLACEHOLDER = "{timestamp}"


class TriggerKind(str, Enum):
    """Kinds of trigger sources."""
    MIDI = "midi"            # MIDI note-on
    KEYBOARD = "keyboard"    # Console key press
    FOOTPEDAL = "footpedal"  # USB foot pedal
    WEBHOOK = "webhook"      # Authenticated HTTP call

    @classmethod
    def parse(cls, value: str) -> "TriggerKind":
        value = (value or "").strip().lower()
        if value == "ifttt":
            return cls.WEBHOOK
        try:
            return cls(value)
        except ValueError:
            raise ConfigurationError(f"Unknown trigger type: {value!r}") from None


@dataclass
class MidiTriggerConfig:
    note_number: int
    device_name: Optional[str] = None
    channel: Optional[int] = None  # 1-16, None matches any channel

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"noteNumber": self.note_number}
        if self.device_name:
            data["deviceName"] = self.device_name
        if self.channel is not None:
            data["channel"] = self.channel
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MidiTriggerConfig":
        if "noteNumber" not in data:
            raise ConfigurationError("midi trigger requires noteNumber")
        note = int(data["noteNumber"])
        if not 0 <= note <= 127:
            raise ConfigurationError(f"noteNumber out of range: {note}")
        channel = data.get("channel")
        if channel is not None:
            channel = int(channel)
            if not 1 <= channel <= 16:
                raise ConfigurationError(f"channel out of range: {channel}")
        return cls(note_number=note, device_name=data.get("deviceName") or None, channel=channel)


@dataclass
class KeyModifiers:
    shift: bool = False
    ctrl: bool = False
    alt: bool = False

    def to_dict(self) -> Dict[str, bool]:
        return {"shift": self.shift, "ctrl": self.ctrl, "alt": self.alt}


@dataclass
class KeyboardTriggerConfig:
    key: str
    modifiers: KeyModifiers = field(default_factory=KeyModifiers)

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "modifiers": self.modifiers.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyboardTriggerConfig":
        key = str(data.get("key") or "").strip()
        if not key:
            raise ConfigurationError("keyboard trigger requires key")
        mods = data.get("modifiers") or {}
        return cls(
            key=key.lower(),
            modifiers=KeyModifiers(
                shift=bool(mods.get("shift")),
                ctrl=bool(mods.get("ctrl")),
                alt=bool(mods.get("alt")),
            ),
        )


@dataclass
class FootPedalConfig:
    usb_device: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"usbDevice": self.usb_device}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FootPedalConfig":
        return cls(usb_device=str(data.get("usbDevice") or ""))


@dataclass
class WebhookTriggerConfig:
    event_name: str
    secret_key: Optional[str] = None
    rate_limit: Optional[int] = None  # Max requests per window
    rate_limit_window: int = 60       # Window in seconds

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"eventName": self.event_name}
        if self.secret_key:
            data["secretKey"] = self.secret_key
        if self.rate_limit:
            data["rateLimit"] = self.rate_limit
            data["rateLimitWindow"] = self.rate_limit_window
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WebhookTriggerConfig":
        event_name = str(data.get("eventName") or "").strip()
        if not event_name or "/" in event_name:
            raise ConfigurationError(f"webhook trigger requires a path-safe eventName, got {event_name!r}")
        rate_limit = data.get("rateLimit")
        return cls(
            event_name=event_name,
            secret_key=data.get("secretKey") or None,
            rate_limit=int(rate_limit) if rate_limit else None,
            rate_limit_window=int(data.get("rateLimitWindow") or 60),
        )


TriggerConfig = Union[MidiTriggerConfig, KeyboardTriggerConfig, FootPedalConfig, WebhookTriggerConfig]

_CONFIG_TYPES = {
    TriggerKind.MIDI: MidiTriggerConfig,
    TriggerKind.KEYBOARD: KeyboardTriggerConfig,
    TriggerKind.FOOTPEDAL: FootPedalConfig,
    TriggerKind.WEBHOOK: WebhookTriggerConfig,
}


@dataclass(frozen=True)
class MetadataTemplate:
    """
    NFT metadata pattern rendered once per activation.

    ``{count}`` and ``{timestamp}`` are substituted in the name, the
    description and string attribute values.
    """
    name: str
    symbol: str = ""
    description: str = ""
    media_file: str = ""
    attributes: Dict[str, Union[str, int, float, bool]] = field(default_factory=dict)

    def render_text(self, text: str, count: int, timestamp: datetime) -> str:
        return (
            text.replace(COUNT_PLACEHOLDER, str(count))
            .replace(TIMESTAMP_PLACEHOLDER, timestamp.isoformat())
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "symbol": self.symbol,
            "description": self.description,
            "mediaFile": self.media_file,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetadataTemplate":
        if not data.get("name"):
            raise ConfigurationError("nftMetadata requires name")
        attributes = data.get("attributes") or {}
        if not isinstance(attributes, dict):
            raise ConfigurationError("nftMetadata.attributes must be an object")
        return cls(
            name=str(data["name"]),
            symbol=str(data.get("symbol") or ""),
            description=str(data.get("description") or ""),
            media_file=str(data.get("mediaFile") or ""),
            attributes=dict(attributes),
        )


@dataclass
class TriggerDefinition:
    """One entry of the persisted trigger document."""
    id: str
    kind: TriggerKind
    config: TriggerConfig
    metadata: MetadataTemplate
    max_supply: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "config": self.config.to_dict(),
            "nftMetadata": self.metadata.to_dict(),
        }
        if self.max_supply is not None:
            data["maxSupply"] = self.max_supply
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriggerDefinition":
        trigger_id = str(data.get("id") or "").strip()
        if not trigger_id:
            raise ConfigurationError("trigger requires an id")
        kind = TriggerKind.parse(data.get("type", ""))
        config = _CONFIG_TYPES[kind].from_dict(data.get("config") or {})
        max_supply = data.get("maxSupply")
        if max_supply is not None:
            max_supply = int(max_supply)
            if max_supply < 0:
                raise ConfigurationError(f"maxSupply must be >= 0 for trigger {trigger_id}")
        return cls(
            id=trigger_id,
            kind=kind,
            config=config,
            metadata=MetadataTemplate.from_dict(data.get("nftMetadata") or {}),
            max_supply=max_supply,
        )


def parse_trigger_document(data: Dict[str, Any]) -> List[TriggerDefinition]:
    """Parse ``{"triggers": [...]}`` keeping document order; ids must be unique."""
    if not isinstance(data, dict) or not isinstance(data.get("triggers", []), list):
        raise ConfigurationError("trigger document must be an object with a 'triggers' list")

    definitions: List[TriggerDefinition] = []
    seen = set()
    for entry in data.get("triggers", []):
        definition = TriggerDefinition.from_dict(entry)
        if definition.id in seen:
            raise ConfigurationError(f"duplicate trigger id: {definition.id}")
        seen.add(definition.id)
        definitions.append(definition)
    return definitions


def load_trigger_document(path: Union[str, Path]) -> Dict[str, Any]:
    """Read the raw trigger document. A missing file is an empty document."""
    path = Path(path)
    if not path.exists():
        return {"triggers": []}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to read trigger document {path}: {e}") from e


def load_trigger_definitions(path: Union[str, Path]) -> List[TriggerDefinition]:
    return parse_trigger_document(load_trigger_document(path))


def find_trigger_definition(path: Union[str, Path], trigger_id: str) -> Optional[TriggerDefinition]:
    for definition in load_trigger_definitions(path):
        if definition.id == trigger_id:
            return definition
    return None


def save_trigger_document(path: Union[str, Path], data: Dict[str, Any]) -> None:
    """Validate and write the whole document."""
    parse_trigger_document(data)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    tmp_path.replace(path)


@dataclass
class MintExecution:
    """Record of one activation flowing through the mint pipeline."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trigger_id: str = ""
    activated_at: datetime = field(default_factory=datetime.now)

    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None

    status: str = "running"  # running, success, exhausted, failed
    error_message: Optional[str] = None

    ordinal: Optional[int] = None
    name: Optional[str] = None
    token_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "trigger_id": self.trigger_id,
            "activated_at": self.activated_at.isoformat(),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "status": self.status,
            "error_message": self.error_message,
            "ordinal": self.ordinal,
            "name": self.name,
            "token_id": self.token_id,
        }

    def _finish(self, status: str):
        self.status = status
        self.completed_at = datetime.now()
        self.duration_ms = (self.completed_at - self.started_at).total_seconds() * 1000

    def mark_success(self, ordinal: int, name: str, token_id: str):
        """Mark execution as minted."""
        self.ordinal = ordinal
        self.name = name
        self.token_id = token_id
        self._finish("success")

    def mark_exhausted(self):
        """Mark execution as refused by the supply cap."""
        self._finish("exhausted")

    def mark_failed(self, error: str):
        """Mark execution as failed."""
        self._finish("failed")
        self.error_message = error
