"""Reader control surface: manual connect, playback, selection intake, and settings."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Request, WebSocket, WebSocketDisconnect

from ..orchestrator import ReaderOrchestrator
from ..schemas.reader_control import (
    ActionResponse,
    ConnectRequest,
    ConnectResponse,
    PlayRequest,
    SelectedTextResponse,
    StatusResponse,
    TextSelectedRequest,
)
from ..schemas.reader_settings import ReaderSettings, ReaderSettingsUpdate
from ..services.reader_settings import ReaderSettingsService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/reader", tags=["Reader"])


def get_reader_orchestrator(request: Request) -> ReaderOrchestrator:
    orchestrator = getattr(request.app.state, "reader_orchestrator", None)
    if orchestrator is None:  # pragma: no cover
        raise RuntimeError("Reader orchestrator is not configured")
    return orchestrator


def get_reader_settings_service(request: Request) -> ReaderSettingsService:
    service = getattr(request.app.state, "reader_settings_service", None)
    if service is None:  # pragma: no cover
        raise RuntimeError("Reader settings service is not configured")
    return service


# ============== Connection ==============

@router.post("/connect", response_model=ConnectResponse)
async def connect(
    payload: ConnectRequest,
    orchestrator: ReaderOrchestrator = Depends(get_reader_orchestrator),
) -> ConnectResponse:
    """Store the port and (re)connect the channel to it."""
    port = await orchestrator.connect(payload.port)
    logger.info(f"Manual connect requested on port {port}")
    return ConnectResponse(port=port)


@router.post("/disconnect", response_model=ActionResponse)
async def disconnect(
    orchestrator: ReaderOrchestrator = Depends(get_reader_orchestrator),
) -> ActionResponse:
    await orchestrator.disconnect()
    logger.info("Manual disconnect requested")
    return ActionResponse(success=True)


@router.get("/status", response_model=StatusResponse)
async def get_status(
    orchestrator: ReaderOrchestrator = Depends(get_reader_orchestrator),
) -> StatusResponse:
    return StatusResponse(**await orchestrator.get_status())


# ============== Playback ==============

@router.post("/stop", response_model=ActionResponse)
async def stop(
    orchestrator: ReaderOrchestrator = Depends(get_reader_orchestrator),
) -> ActionResponse:
    return ActionResponse(success=await orchestrator.on_stop())


@router.post("/play", response_model=ActionResponse, response_model_exclude_none=True)
async def play(
    payload: PlayRequest | None = None,
    orchestrator: ReaderOrchestrator = Depends(get_reader_orchestrator),
) -> ActionResponse:
    """Speak the given text, or the last selected text when none is given."""
    text = payload.text if payload is not None else None
    result = await orchestrator.play_selected_text(text)
    return ActionResponse(**result.asdict())


# ============== Selection ==============

@router.get("/selected-text", response_model=SelectedTextResponse)
async def get_selected_text(
    orchestrator: ReaderOrchestrator = Depends(get_reader_orchestrator),
) -> SelectedTextResponse:
    return SelectedTextResponse(text=orchestrator.selected_text)


@router.post("/selected-text", response_model=ActionResponse)
async def text_selected(
    payload: TextSelectedRequest,
    orchestrator: ReaderOrchestrator = Depends(get_reader_orchestrator),
) -> ActionResponse:
    """Accept a selection reported by the page sensor."""
    accepted = orchestrator.text_selected(payload.text)
    if accepted:
        logger.debug(f"Selection updated ({len(payload.text.strip())} chars)")
    return ActionResponse(success=accepted)


# ============== Settings ==============

@router.get("/settings", response_model=ReaderSettings)
async def get_settings(
    service: ReaderSettingsService = Depends(get_reader_settings_service),
) -> ReaderSettings:
    settings = service.get_settings(refresh=True)
    logger.debug(f"Returning reader settings: {settings}")
    return settings


@router.put("/settings", response_model=ReaderSettings)
async def update_settings(
    update: ReaderSettingsUpdate,
    service: ReaderSettingsService = Depends(get_reader_settings_service),
) -> ReaderSettings:
    settings = service.update_settings(update)
    logger.info(f"Updated reader settings: {settings}")
    return settings


@router.post("/settings/reset", response_model=ReaderSettings)
async def reset_settings(
    service: ReaderSettingsService = Depends(get_reader_settings_service),
) -> ReaderSettings:
    settings = service.reset_to_defaults()
    logger.info("Reset reader settings to defaults")
    return settings


# ============== Events ==============

@router.websocket("/events")
async def events(websocket: WebSocket) -> None:
    """Stream connection status and selection changes to an observer."""
    orchestrator = getattr(websocket.app.state, "reader_orchestrator", None)
    if orchestrator is None:
        logger.error("Reader orchestrator not initialized")
        await websocket.close(code=1011, reason="Server not ready")
        return

    await websocket.accept()
    broadcaster = orchestrator.broadcaster
    queue = broadcaster.subscribe()
    await websocket.send_json(
        {"action": "connectionStatusChanged", "status": orchestrator.channel.state.value}
    )

    receiver = asyncio.create_task(websocket.receive_text())
    sender = asyncio.create_task(queue.get())
    try:
        while True:
            done, _ = await asyncio.wait(
                {sender, receiver}, return_when=asyncio.FIRST_COMPLETED
            )
            if sender in done:
                await websocket.send_json(sender.result())
                sender = asyncio.create_task(queue.get())
            if receiver in done:
                # Observers only listen; inbound frames are drained and ignored
                receiver.result()
                receiver = asyncio.create_task(websocket.receive_text())
    except WebSocketDisconnect:
        logger.debug("Event observer disconnected")
    finally:
        sender.cancel()
        receiver.cancel()
        broadcaster.unsubscribe(queue)
