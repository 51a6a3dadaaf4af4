from __future__ import annotations

import asyncio
import contextlib

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..devices.events import DeviceEvent, event_to_dict

logger = structlog.get_logger(__name__)

router = APIRouter()


async def _forward(queue: "asyncio.Queue[DeviceEvent]", websocket: WebSocket) -> None:
    while True:
        event = await queue.get()
        await websocket.send_json(event_to_dict(event))


@router.websocket("/events")
async def stream_events(websocket: WebSocket) -> None:
    """Push every device event to the client as a JSON message."""
    controller = websocket.app.state.controller
    settings = websocket.app.state.settings
    async with controller.events.stream(maxsize=settings.event_queue_size) as queue:
        await websocket.accept()
        logger.info("api.events.connected", client=str(websocket.client))
        sender = asyncio.create_task(_forward(queue, websocket))
        try:
            # Inbound messages are ignored; receiving only detects the disconnect.
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("api.events.disconnected", client=str(websocket.client))
        finally:
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
                await sender
