from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
import time
import uuid
from datetime import datetime
from contextlib import asynccontextmanager

from common.config import settings, validate_minting_settings
from common.errors import ConfigurationError, MediaNotFoundError
from common.logger import setup_logging, get_logger
from common.media_store import MediaStore
from common.metrics import http_inprogress, http_requests_total
from minting import HttpAssetMintingService, MintOrchestrator, NetworkGuard
from triggers import (
    WebhookTriggerSource,
    find_trigger_definition,
    get_trigger_manager,
    get_webhook_handler,
    init_trigger_manager,
    list_midi_input_names,
    load_trigger_definitions,
    load_trigger_document,
    save_trigger_document,
    shutdown_trigger_manager,
)
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest


# Initialize logging
setup_logging()
logger = get_logger(__name__)

media_store = MediaStore(media_root=settings.media_root, assets_dir=settings.assets_dir)
webhook_handler = get_webhook_handler(base_url=settings.public_base_url)
_closables: List[Any] = []


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await startup_event()
    try:
        yield
    finally:
        # Shutdown
        await shutdown_event()


app = FastAPI(
    title="Performance Minter API",
    description="Turns MIDI, keyboard, foot pedal and webhook triggers into NFT mints",
    version="0.1.0",
    lifespan=lifespan,
)


# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all HTTP requests with timing information."""
    request_id = str(uuid.uuid4())[:8]
    start_time = time.time()

    if settings.enable_prometheus:
        http_inprogress.inc()

    logger.info(
        f"Request started | {request.method} {request.url.path} | "
        f"ID: {request_id} | Client: {request.client.host if request.client else 'unknown'}"
    )

    try:
        response = await call_next(request)
        duration = time.time() - start_time

        logger.info(
            f"Request completed | {request.method} {request.url.path} | "
            f"ID: {request_id} | Status: {response.status_code} | "
            f"Duration: {duration:.3f}s"
        )
        if settings.enable_prometheus:
            http_requests_total.labels(request.method, request.url.path, response.status_code).inc()

        response.headers["X-Request-ID"] = request_id
        return response
    except Exception as e:
        duration = time.time() - start_time
        logger.error(
            f"Request failed | {request.method} {request.url.path} | "
            f"ID: {request_id} | Duration: {duration:.3f}s | Error: {str(e)}",
            exc_info=True
        )
        if settings.enable_prometheus:
            http_requests_total.labels(request.method, request.url.path, 500).inc()
        raise
    finally:
        if settings.enable_prometheus:
            http_inprogress.dec()

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def startup_event():
    """Validate configuration and start every configured trigger."""
    logger.info("=" * 80)
    logger.info("Performance Minter Starting...")
    logger.info("=" * 80)

    logger.info(f"Environment: {'DEBUG' if settings.debug else 'PRODUCTION'}")
    logger.info(f"Network: {settings.network} ({settings.resolved_rpc_endpoint})")
    logger.info(f"Max supply: {settings.max_supply if settings.max_supply is not None else 'unlimited'}")
    logger.info(f"Serialized mints: {settings.serialize_mints}")

    # Missing wallet / RPC / backend is fatal
    validate_minting_settings(settings)

    service = HttpAssetMintingService(
        base_url=settings.minting_service_url,
        owner=settings.artist_wallet,
        api_token=settings.minting_service_token,
        timeout=settings.minting_timeout,
    )
    _closables.append(service)

    guard = None
    if settings.verify_network:
        guard = NetworkGuard(settings.resolved_rpc_endpoint, settings.network)
        _closables.append(guard)

    orchestrator = MintOrchestrator(
        service,
        media_root=settings.media_root,
        default_max_supply=settings.max_supply,
        network_guard=guard,
        serialize=settings.serialize_mints,
        history_limit=settings.execution_history_limit,
    )

    definitions = load_trigger_definitions(settings.triggers_file)
    logger.info(f"Loaded {len(definitions)} trigger(s) from {settings.triggers_file}")

    manager = await init_trigger_manager(orchestrator, definitions, webhook_handler=webhook_handler)
    for trigger_id, source in manager.sources.items():
        if isinstance(source, WebhookTriggerSource):
            logger.info(f"Webhook URL for {trigger_id}: {source.get_webhook_url()}")

    logger.info("=" * 80)
    logger.info("Performance Minter Ready. Waiting for triggers...")
    logger.info("=" * 80)


async def shutdown_event():
    """Stop all triggers and let in-flight mints finish."""
    logger.info("=" * 80)
    logger.info("Performance Minter Shutting Down...")
    logger.info("=" * 80)

    try:
        await shutdown_trigger_manager()
        logger.info("Trigger system shutdown successfully")
    except Exception as e:
        logger.error(f"Error shutting down trigger system: {e}", exc_info=True)

    while _closables:
        closable = _closables.pop()
        try:
            await closable.aclose()
        except Exception as e:
            logger.warning(f"Error closing {type(closable).__name__}: {e}")


def _require_manager():
    manager = get_trigger_manager()
    if manager is None:
        raise HTTPException(status_code=503, detail="Trigger system is not running")
    return manager


# Request models
class RenameFileRequest(BaseModel):
    oldPath: str
    newName: str
    triggerType: str


class RestartTriggerRequest(BaseModel):
    triggerId: str


@app.get("/health")
async def health():
    """Health check with trigger summary."""
    manager = get_trigger_manager()
    return {
        "status": "healthy",
        "triggers": len(manager.sources) if manager else 0,
        "timestamp": datetime.now().isoformat(),
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint (enable with ENABLE_PROMETHEUS=true)."""
    if not settings.enable_prometheus:
        raise HTTPException(status_code=404, detail="Prometheus not enabled")
    data = generate_latest()
    return StreamingResponse(iter([data]), media_type=CONTENT_TYPE_LATEST)


# ==================== Trigger Document Endpoints ====================

@app.get("/api/triggers")
async def get_triggers():
    """Return the persisted trigger document."""
    try:
        return load_trigger_document(settings.triggers_file)
    except ConfigurationError as e:
        logger.error(f"Failed to load triggers: {e}")
        raise HTTPException(status_code=500, detail="Failed to load triggers")


@app.post("/api/triggers")
async def save_triggers(document: Dict[str, Any]):
    """Replace the whole trigger document. Running triggers pick it up on restart."""
    try:
        save_trigger_document(settings.triggers_file, document)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except OSError as e:
        logger.error(f"Failed to save triggers: {e}")
        raise HTTPException(status_code=500, detail="Failed to save triggers")
    return {"success": True}


@app.get("/api/triggers/status")
async def trigger_status():
    """Running sources with their mint counters."""
    manager = _require_manager()
    return {"triggers": manager.status()}


@app.get("/api/triggers/{trigger_id}/executions")
async def get_trigger_executions(trigger_id: str, limit: int = 50):
    """Get mint history for a trigger."""
    manager = _require_manager()
    executions = manager.get_executions(trigger_id=trigger_id, limit=limit)
    return {
        "executions": [e.to_dict() for e in executions],
        "total": len(executions),
    }


@app.post("/api/restart-trigger")
async def restart_trigger(request: RestartTriggerRequest):
    """Reload one trigger from the document, leaving the others running."""
    manager = _require_manager()
    trigger_id = request.triggerId

    try:
        definition = find_trigger_definition(settings.triggers_file, trigger_id)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if definition is None:
        await manager.remove(trigger_id)
        raise HTTPException(status_code=404, detail="Trigger not found")

    source = await manager.reinitialize(trigger_id, definition)
    if source is None:
        raise HTTPException(status_code=500, detail=f"Trigger {trigger_id} failed to start")

    response: Dict[str, Any] = {"success": True, "trigger": source.describe()}
    if isinstance(source, WebhookTriggerSource):
        response["webhook_url"] = source.get_webhook_url()
    return response


# ==================== Media Endpoints ====================

@app.post("/api/upload")
async def upload_media(
    file: UploadFile = File(...),
    triggerId: str = Form(...),
    triggerType: str = Form(...),
):
    """Store an uploaded asset and point the trigger's mediaFile at it."""
    try:
        document = load_trigger_document(settings.triggers_file)
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))

    entry: Optional[Dict[str, Any]] = next(
        (t for t in document.get("triggers", []) if t.get("id") == triggerId), None
    )
    if entry is None:
        raise HTTPException(status_code=404, detail="Trigger not found")

    data = await file.read()
    try:
        path = media_store.save_upload(triggerId, triggerType, file.filename or "upload", data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    entry.setdefault("nftMetadata", {})["mediaFile"] = path
    try:
        save_trigger_document(settings.triggers_file, document)
    except (ConfigurationError, OSError) as e:
        logger.error(f"Error updating trigger {triggerId}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update trigger")

    return {"success": True, "path": path}


@app.get("/api/media-files/{trigger_type}")
async def list_media_files(trigger_type: str):
    """Image assets available for a trigger type."""
    try:
        return {"files": media_store.list_images(trigger_type)}
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/rename-file")
async def rename_media_file(request: RenameFileRequest):
    """Rename an asset. Callers must remap references to the old path."""
    try:
        result = media_store.rename(request.oldPath, request.newName, request.triggerType)
    except MediaNotFoundError:
        raise HTTPException(status_code=404, detail="Original file not found")
    except FileExistsError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, **result}


@app.get("/api/midi-devices")
async def midi_devices():
    """Currently available MIDI input devices."""
    try:
        return {"devices": list_midi_input_names()}
    except Exception as e:
        logger.error(f"Failed to get MIDI devices: {e}")
        raise HTTPException(status_code=500, detail="Failed to get MIDI devices")


# ==================== Webhook Ingress ====================

@app.post("/api/webhook/{event_name}")
async def handle_webhook(event_name: str, request: Request):
    """Authenticate and acknowledge a webhook; the mint runs afterwards."""
    result = webhook_handler.handle_request(
        event_name,
        query_params=dict(request.query_params),
        headers=dict(request.headers),
    )
    status_code = result.pop("status_code", 200)

    if not result.get("success"):
        raise HTTPException(status_code=status_code, detail=result.get("error"))

    return result


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="info"
    )
