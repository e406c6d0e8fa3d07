import asyncio
import json
import re
import time
from contextlib import asynccontextmanager

import pytest
from httpx import ASGITransport, AsyncClient

import main
from common.config import settings
from common.media_store import MediaStore
from minting.orchestrator import MintOrchestrator
from triggers import init_trigger_manager, save_trigger_document, shutdown_trigger_manager

from conftest import FakeMintingService, make_definition


@pytest.fixture
def workspace(tmp_path, media_root, monkeypatch):
    triggers_file = tmp_path / "triggers.json"
    definitions = [
        make_definition("snare"),
        make_definition("crowd", kind="webhook", config={"eventName": "crowd_cheer", "secretKey": "s3cret"}),
    ]
    save_trigger_document(triggers_file, {"triggers": [d.to_dict() for d in definitions]})

    monkeypatch.setattr(settings, "triggers_file", str(triggers_file))
    monkeypatch.setattr(main, "media_store", MediaStore(media_root))
    return triggers_file, definitions


@asynccontextmanager
async def running_app(definitions, media_root, delay=0.0):
    service = FakeMintingService(delay=delay)
    orchestrator = MintOrchestrator(service, media_root=media_root)
    manager = await init_trigger_manager(orchestrator, definitions, webhook_handler=main.webhook_handler)
    transport = ASGITransport(app=main.app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac, manager, service
    finally:
        await shutdown_trigger_manager()


@pytest.mark.asyncio
async def test_health_reports_running_triggers(workspace, media_root):
    _, definitions = workspace
    async with running_app(definitions, media_root) as (ac, _, _):
        resp = await ac.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert resp.json()["triggers"] == 2
    assert re.fullmatch(r"[0-9a-f]{8}", resp.headers["x-request-id"])


@pytest.mark.asyncio
async def test_webhook_without_secret_is_rejected(workspace, media_root):
    _, definitions = workspace
    async with running_app(definitions, media_root) as (ac, manager, service):
        missing = await ac.post("/api/webhook/crowd_cheer")
        wrong = await ac.post("/api/webhook/crowd_cheer?key=nope")
        unknown = await ac.post("/api/webhook/nothing?key=s3cret")
        await manager.wait_idle()

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert unknown.status_code == 404
    assert service.calls == []


@pytest.mark.asyncio
async def test_webhook_is_acknowledged_before_the_mint_finishes(workspace, media_root):
    _, definitions = workspace
    async with running_app(definitions, media_root, delay=0.5) as (ac, manager, service):
        started = time.monotonic()
        resp = await ac.post("/api/webhook/crowd_cheer", headers={"X-Webhook-Key": "s3cret"})
        elapsed = time.monotonic() - started

        assert resp.status_code == 200
        assert resp.json()["trigger_id"] == "crowd"
        assert elapsed < 0.4
        assert service.minted == []

        await manager.wait_idle()
        assert [m["name"] for m in service.minted] == ["Drum #1"]

        status = await ac.get("/api/triggers/status")
        crowd = next(t for t in status.json()["triggers"] if t["id"] == "crowd")
        assert crowd["minted"] == 1

        history = await ac.get("/api/triggers/crowd/executions")
        assert history.json()["executions"][0]["status"] == "success"


@pytest.mark.asyncio
async def test_restart_trigger_reloads_one_definition(workspace, media_root):
    triggers_file, definitions = workspace
    async with running_app(definitions, media_root) as (ac, manager, service):
        crowd_source = manager.get("crowd")

        document = json.loads(triggers_file.read_text(encoding="utf-8"))
        document["triggers"][0]["nftMetadata"]["name"] = "Snare II #{count}"
        save_trigger_document(triggers_file, document)

        resp = await ac.post("/api/restart-trigger", json={"triggerId": "snare"})
        assert resp.status_code == 200
        assert resp.json()["trigger"]["id"] == "snare"
        assert manager.get("crowd") is crowd_source

        manager.get("snare").press()
        await manager.wait_idle()
        assert service.minted[-1]["name"] == "Snare II #1"

        hook = await ac.post("/api/restart-trigger", json={"triggerId": "crowd"})
        assert hook.json()["webhook_url"].endswith("/api/webhook/crowd_cheer?key=s3cret")

        missing = await ac.post("/api/restart-trigger", json={"triggerId": "ghost"})
        assert missing.status_code == 404


@pytest.mark.asyncio
async def test_restart_of_deleted_trigger_stops_it(workspace, media_root):
    triggers_file, definitions = workspace
    async with running_app(definitions, media_root) as (ac, manager, _):
        save_trigger_document(triggers_file, {"triggers": [definitions[1].to_dict()]})

        resp = await ac.post("/api/restart-trigger", json={"triggerId": "snare"})

        assert resp.status_code == 404
        assert manager.get("snare") is None
        assert manager.get("crowd").is_active


@pytest.mark.asyncio
async def test_trigger_document_round_trip(workspace, media_root):
    _, definitions = workspace
    async with running_app(definitions, media_root) as (ac, _, _):
        current = (await ac.get("/api/triggers")).json()
        assert [t["id"] for t in current["triggers"]] == ["snare", "crowd"]

        current["triggers"].pop()
        saved = await ac.post("/api/triggers", json=current)
        assert saved.status_code == 200
        assert [t["id"] for t in (await ac.get("/api/triggers")).json()["triggers"]] == ["snare"]

        bad = await ac.post("/api/triggers", json={"triggers": [{"id": "x", "type": "theremin"}]})
        assert bad.status_code == 400


@pytest.mark.asyncio
async def test_media_upload_list_and_rename(workspace, media_root):
    triggers_file, definitions = workspace
    async with running_app(definitions, media_root) as (ac, _, _):
        upload = await ac.post(
            "/api/upload",
            files={"file": ("Crowd.PNG", b"\x89PNG crowd", "image/png")},
            data={"triggerId": "crowd", "triggerType": "webhook"},
        )
        assert upload.status_code == 200
        path = upload.json()["path"]
        assert re.fullmatch(r"\./assets/webhook/crowd-\d+\.png", path)

        document = json.loads(triggers_file.read_text(encoding="utf-8"))
        assert document["triggers"][1]["nftMetadata"]["mediaFile"] == path

        listing = (await ac.get("/api/media-files/webhook")).json()["files"]
        assert [f["fullPath"] for f in listing] == [path]

        renamed = await ac.post(
            "/api/rename-file",
            json={"oldPath": path, "newName": "cheer", "triggerType": "webhook"},
        )
        assert renamed.json()["newPath"] == "./assets/webhook/cheer.png"
        assert (media_root / "assets" / "webhook" / "cheer.png").read_bytes() == b"\x89PNG crowd"

        gone = await ac.post(
            "/api/rename-file",
            json={"oldPath": path, "newName": "again", "triggerType": "webhook"},
        )
        assert gone.status_code == 404

        orphan = await ac.post(
            "/api/upload",
            files={"file": ("x.png", b"x", "image/png")},
            data={"triggerId": "ghost", "triggerType": "webhook"},
        )
        assert orphan.status_code == 404


@pytest.mark.asyncio
async def test_midi_devices_lists_backend_ports(workspace, media_root, monkeypatch):
    monkeypatch.setattr(main, "list_midi_input_names", lambda: ["Pads MIDI 1"])
    _, definitions = workspace
    async with running_app(definitions, media_root) as (ac, _, _):
        resp = await ac.get("/api/midi-devices")

    assert resp.json() == {"devices": ["Pads MIDI 1"]}


@pytest.mark.asyncio
async def test_status_requires_a_running_manager():
    transport = ASGITransport(app=main.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.get("/api/triggers/status")

    assert resp.status_code == 503


@pytest.mark.asyncio
async def test_concurrent_webhooks_respect_serialized_counter(workspace, media_root):
    _, definitions = workspace
    async with running_app(definitions, media_root, delay=0.01) as (ac, manager, service):
        responses = await asyncio.gather(
            *[ac.post("/api/webhook/crowd_cheer?key=s3cret") for _ in range(4)]
        )
        await manager.wait_idle()

    assert [r.status_code for r in responses] == [200] * 4
    assert sorted(m["name"] for m in service.minted) == ["Drum #1", "Drum #2", "Drum #3", "Drum #4"]
