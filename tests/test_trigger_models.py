import json

import pytest

from common.errors import ConfigurationError
from triggers.models import (
    KeyboardTriggerConfig,
    MidiTriggerConfig,
    TriggerKind,
    WebhookTriggerConfig,
    find_trigger_definition,
    load_trigger_definitions,
    parse_trigger_document,
    save_trigger_document,
)

DOCUMENT = {
    "triggers": [
        {
            "id": "snare",
            "type": "midi",
            "config": {"noteNumber": 38, "deviceName": "Pads", "channel": 10},
            "nftMetadata": {
                "name": "Drum #{count}",
                "symbol": "DRUM",
                "description": "Hit at {timestamp}",
                "mediaFile": "./assets/midi/snare.png",
                "attributes": {"instrument": "snare", "velocity": 127},
            },
            "maxSupply": 2,
        },
        {
            "id": "space",
            "type": "keyboard",
            "config": {"key": "Space", "modifiers": {"shift": True}},
            "nftMetadata": {"name": "Key #{count}", "symbol": "KEY", "mediaFile": "./assets/keyboard/k.png"},
        },
        {
            "id": "crowd",
            "type": "ifttt",
            "config": {"eventName": "crowd_cheer", "secretKey": "abc"},
            "nftMetadata": {"name": "Cheer", "symbol": "CHR", "mediaFile": "./assets/webhook/c.png"},
        },
    ]
}


def test_parse_document_keeps_order_and_kinds():
    definitions = parse_trigger_document(DOCUMENT)

    assert [d.id for d in definitions] == ["snare", "space", "crowd"]
    assert definitions[0].config == MidiTriggerConfig(note_number=38, device_name="Pads", channel=10)
    assert definitions[0].max_supply == 2
    assert isinstance(definitions[1].config, KeyboardTriggerConfig)
    assert definitions[1].config.key == "space"
    assert definitions[1].config.modifiers.shift and not definitions[1].config.modifiers.ctrl
    assert definitions[2].kind == TriggerKind.WEBHOOK
    assert definitions[2].config == WebhookTriggerConfig(event_name="crowd_cheer", secret_key="abc")
    assert definitions[1].max_supply is None


def test_to_dict_matches_document_shape():
    snare = parse_trigger_document(DOCUMENT)[0]
    assert snare.to_dict() == DOCUMENT["triggers"][0]


@pytest.mark.parametrize(
    "entry",
    [
        {"id": "", "type": "midi", "config": {"noteNumber": 1}, "nftMetadata": {"name": "x"}},
        {"id": "a", "type": "theremin", "config": {}, "nftMetadata": {"name": "x"}},
        {"id": "a", "type": "midi", "config": {}, "nftMetadata": {"name": "x"}},
        {"id": "a", "type": "midi", "config": {"noteNumber": 200}, "nftMetadata": {"name": "x"}},
        {"id": "a", "type": "midi", "config": {"noteNumber": 1, "channel": 17}, "nftMetadata": {"name": "x"}},
        {"id": "a", "type": "keyboard", "config": {}, "nftMetadata": {"name": "x"}},
        {"id": "a", "type": "webhook", "config": {"eventName": "a/b"}, "nftMetadata": {"name": "x"}},
        {"id": "a", "type": "footpedal", "config": {}, "nftMetadata": {}},
        {"id": "a", "type": "footpedal", "config": {}, "nftMetadata": {"name": "x"}, "maxSupply": -1},
    ],
)
def test_invalid_entries_raise_configuration_error(entry):
    with pytest.raises(ConfigurationError):
        parse_trigger_document({"triggers": [entry]})


def test_duplicate_ids_are_rejected():
    entry = DOCUMENT["triggers"][0]
    with pytest.raises(ConfigurationError, match="duplicate"):
        parse_trigger_document({"triggers": [entry, entry]})


def test_missing_file_is_an_empty_document(tmp_path):
    assert load_trigger_definitions(tmp_path / "none.json") == []


def test_save_validates_and_find_reads_back(tmp_path):
    path = tmp_path / "triggers.json"
    save_trigger_document(path, DOCUMENT)

    assert json.loads(path.read_text(encoding="utf-8")) == DOCUMENT
    assert find_trigger_definition(path, "space").config.key == "space"
    assert find_trigger_definition(path, "ghost") is None

    with pytest.raises(ConfigurationError):
        save_trigger_document(path, {"triggers": "nope"})
    assert json.loads(path.read_text(encoding="utf-8")) == DOCUMENT


def test_corrupt_document_raises(tmp_path):
    path = tmp_path / "triggers.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_trigger_definitions(path)
