from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from crm_voice.config import load_settings
from crm_voice.errors import SessionBusyError
from crm_voice.runtime import VoiceRuntime, build_runtime
from crm_voice.telemetry.logging import configure_logging, get_logger
from crm_voice.telemetry.tracing import configure_tracing, shutdown_tracing
from crm_voice.ui.websocket import SessionStateBridge

settings = load_settings()
configure_logging(settings.telemetry.log_level, json_logs=settings.telemetry.json_logs)
configure_tracing("crm-voice-assistant", settings.telemetry.otlp_endpoint)
logger = get_logger(__name__)

app = FastAPI(title="CRM Voice Assistant")
ui_bridge = SessionStateBridge()

origins = {settings.ui.allowed_origin}
if "localhost" in settings.ui.allowed_origin:
    origins.add(settings.ui.allowed_origin.replace("localhost", "127.0.0.1"))
app.include_router(ui_bridge.router)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(origins),
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


class TextRequest(BaseModel):
    text: str


@app.on_event("startup")
async def startup_event() -> None:
    runtime = build_runtime(settings, bridge=ui_bridge)
    await runtime.startup()
    app.state.runtime = runtime


@app.on_event("shutdown")
async def shutdown_event() -> None:
    runtime = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.shutdown()
    shutdown_tracing()


def _runtime() -> VoiceRuntime:
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="runtime unavailable")
    return runtime


@app.post("/voice/interact")
async def voice_interact() -> dict[str, Any]:
    runtime = _runtime()
    try:
        result = await runtime.orchestrator.handle_voice_interaction()
    except SessionBusyError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    return result.to_dict()


@app.post("/voice/text")
async def voice_text(req: TextRequest) -> dict[str, Any]:
    runtime = _runtime()
    try:
        result = await runtime.orchestrator.handle_text_interaction(req.text)
    except SessionBusyError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    return result.to_dict()


@app.get("/voice/manual")
async def voice_manual_state() -> dict[str, Any]:
    pending = _runtime().pending_manual_input
    if pending is None:
        return {"waiting": False, "prompt": None}
    return {"waiting": pending.waiting, "prompt": pending.prompt}


@app.post("/voice/manual")
async def voice_manual_submit(req: TextRequest) -> dict[str, str]:
    pending = _runtime().pending_manual_input
    if pending is None or not pending.submit(req.text):
        raise HTTPException(status_code=409, detail="no manual input requested")
    logger.info("manual.endpoint.submit", chars=len(req.text))
    return {"status": "ok"}


@app.post("/voice/manual/cancel")
async def voice_manual_cancel() -> dict[str, str]:
    pending = _runtime().pending_manual_input
    if pending is None or not pending.decline():
        raise HTTPException(status_code=409, detail="no manual input requested")
    logger.info("manual.endpoint.cancel")
    return {"status": "ok"}


@app.post("/voice/stop")
async def voice_stop() -> dict[str, str]:
    await _runtime().orchestrator.stop_audio_processing()
    logger.info("voice.endpoint.stop")
    return {"status": "stopped"}


@app.get("/voice/status")
async def voice_status() -> dict[str, Any]:
    status = _runtime().orchestrator.get_system_status()
    status["ui_clients"] = ui_bridge.client_count
    return status


@app.get("/voice/self-test")
async def voice_self_test() -> dict[str, bool]:
    return await _runtime().orchestrator.test_system()


@app.post("/voice/test-voice")
async def voice_test_voice() -> dict[str, bool]:
    runtime = _runtime()
    try:
        spoken = await runtime.orchestrator.test_voice()
    except SessionBusyError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    return {"success": spoken}


@app.post("/voice/voices/reload")
async def voice_reload_voices() -> dict[str, Any]:
    voice_info = _runtime().reload_voices()
    if voice_info is None:
        raise HTTPException(status_code=409, detail="voice catalog is not reloadable")
    return voice_info
