import asyncio
import logging

import pytest

from triggers.manager import TriggerManager, create_trigger_source
from triggers.midi import MidiTriggerSource
from triggers.models import TriggerKind
from triggers.webhook import WebhookHandler

from conftest import FakeMintingService, make_definition


class NoPortsBackend:
    def get_input_names(self):
        return []


def _factory(definition, webhook_handler):
    if definition.kind == TriggerKind.MIDI:
        return MidiTriggerSource(definition.id, definition.config, backend=NoPortsBackend())
    return create_trigger_source(definition, webhook_handler)


@pytest.fixture
def manager(orchestrator):
    return TriggerManager(orchestrator, webhook_handler=WebhookHandler(), source_factory=_factory)


@pytest.mark.asyncio
async def test_one_failing_source_does_not_block_the_rest(manager):
    started = await manager.initialize_all([
        make_definition("snare"),
        make_definition("pad", kind="midi", config={"noteNumber": 38}),
        make_definition("kick"),
    ])

    assert started == ["snare", "kick"]
    assert manager.get("pad") is None
    assert manager.get("kick").is_active


@pytest.mark.asyncio
async def test_activation_mints_through_orchestrator(manager, orchestrator, minting_service):
    await manager.initialize_all([make_definition("snare")])

    manager.get("snare").press()
    await manager.wait_idle()

    assert orchestrator.counter("snare") == 1
    assert minting_service.minted[0]["name"] == "Drum #1"


@pytest.mark.asyncio
async def test_mint_failure_is_isolated(manager, orchestrator, minting_service, caplog):
    caplog.set_level(logging.ERROR)
    await manager.initialize_all([make_definition("snare"), make_definition("kick")])
    minting_service.fail_uploads = 1

    manager.get("snare").press()
    await manager.wait_idle()
    manager.get("kick").press()
    manager.get("snare").press()
    await manager.wait_idle()

    assert any("Mint for trigger snare failed" in r.getMessage() for r in caplog.records)
    assert manager.get("snare").is_active
    assert orchestrator.counters() == {"snare": 1, "kick": 1}


@pytest.mark.asyncio
async def test_reinitialize_leaves_other_triggers_untouched(manager, orchestrator):
    await manager.initialize_all([make_definition("snare"), make_definition("kick")])
    kick_source = manager.get("kick")
    kick_source.press()
    await manager.wait_idle()
    old_snare = manager.get("snare")

    new_snare = await manager.reinitialize("snare", make_definition("snare", name="Snare II #{count}"))

    assert new_snare is not old_snare
    assert not old_snare.is_active
    assert manager.get("kick") is kick_source and kick_source.is_active
    assert orchestrator.counter("kick") == 1

    new_snare.press()
    await manager.wait_idle()
    assert orchestrator.get_executions("snare")[0].name == "Snare II #1"


@pytest.mark.asyncio
async def test_stopped_source_activation_during_inflight_mint(media_root):
    from minting.orchestrator import MintOrchestrator

    service = FakeMintingService(delay=0.05)
    orchestrator = MintOrchestrator(service, media_root=media_root)
    manager = TriggerManager(orchestrator, webhook_handler=WebhookHandler())
    await manager.initialize_all([make_definition("snare")])

    manager.get("snare").press()
    await asyncio.sleep(0)
    await manager.stop_all()
    await manager.wait_idle()

    assert manager.get("snare") is None
    assert orchestrator.counter("snare") == 1


@pytest.mark.asyncio
async def test_stop_all_is_idempotent_and_sources_can_restart(manager):
    definitions = [make_definition("snare"), make_definition("hook", kind="webhook", config={"eventName": "drop"})]
    await manager.initialize_all(definitions)

    await manager.stop_all()
    await manager.stop_all()
    assert manager.sources == {}
    assert manager.webhook_handler.get_source("drop") is None

    assert await manager.initialize_all(definitions) == ["snare", "hook"]


@pytest.mark.asyncio
async def test_remove_stops_source_and_keeps_others(manager):
    await manager.initialize_all([make_definition("snare"), make_definition("kick")])

    assert await manager.remove("snare") is True
    assert await manager.remove("snare") is False
    assert manager.get("kick").is_active
    assert [s["id"] for s in manager.status()] == ["kick"]
