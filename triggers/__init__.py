"""
Trigger System for the performance minter.

Each trigger turns a real-world or network event into a mint request:
- MIDI triggers (note-on from a controller)
- Keyboard triggers (key combination on the console)
- Foot pedal triggers (USB pedal presses)
- Webhook triggers (authenticated HTTP calls)

Usage:
    from triggers import TriggerManager, load_trigger_definitions

    manager = TriggerManager(orchestrator)
    await manager.initialize_all(load_trigger_definitions("triggers.json"))
"""

from .base import TriggerSource
from .footpedal import FootPedalTriggerSource
from .keyboard import KeyboardTriggerSource, KeyPress, parse_keypress
from .manager import (
    TriggerManager,
    create_trigger_source,
    get_trigger_manager,
    init_trigger_manager,
    shutdown_trigger_manager,
)
from .midi import MidiTriggerSource, list_midi_input_names, note_name
from .models import (
    TriggerKind,
    TriggerDefinition,
    MetadataTemplate,
    MidiTriggerConfig,
    KeyboardTriggerConfig,
    KeyModifiers,
    FootPedalConfig,
    WebhookTriggerConfig,
    MintExecution,
    find_trigger_definition,
    load_trigger_definitions,
    load_trigger_document,
    parse_trigger_document,
    save_trigger_document,
)
from .webhook import WebhookHandler, WebhookTriggerSource, get_webhook_handler

__all__ = [
    "TriggerManager",
    "create_trigger_source",
    "get_trigger_manager",
    "init_trigger_manager",
    "shutdown_trigger_manager",
    "TriggerSource",
    "MidiTriggerSource",
    "KeyboardTriggerSource",
    "FootPedalTriggerSource",
    "WebhookTriggerSource",
    "WebhookHandler",
    "get_webhook_handler",
    "KeyPress",
    "parse_keypress",
    "list_midi_input_names",
    "note_name",
    "TriggerKind",
    "TriggerDefinition",
    "MetadataTemplate",
    "MidiTriggerConfig",
    "KeyboardTriggerConfig",
    "KeyModifiers",
    "FootPedalConfig",
    "WebhookTriggerConfig",
    "MintExecution",
    "find_trigger_definition",
    "load_trigger_definitions",
    "load_trigger_document",
    "parse_trigger_document",
    "save_trigger_document",
]
