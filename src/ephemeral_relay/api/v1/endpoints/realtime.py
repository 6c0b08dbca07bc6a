"""Realtime WebSocket endpoint.

Every frame a client sends is a JSON object ``{"event": name, "data": payload}``.
Frames are handed to the relay engine one at a time, in arrival order.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError
from starlette.websockets import WebSocketState

from ephemeral_relay.core.settings import settings
from ephemeral_relay.schemas.events import EVENT_HEARTBEAT, EventFrame
from ephemeral_relay.services.connections import ConnectionManager
from ephemeral_relay.services.engine import RelayEngine

# Configure logger for this module
logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


@router.websocket("/ws")
async def relay_socket(websocket: WebSocket) -> None:
    """WebSocket endpoint carrying the relay's event protocol.

    Client events: ``join``, ``send``, ``upload_progress``.
    Server events: ``connected``, ``presence_update``, ``deliver``,
    ``deleted``, ``upload_progress``, ``heartbeat``.
    """
    connections: ConnectionManager = websocket.app.state.connections
    engine: RelayEngine | None = getattr(websocket.app.state, "engine", None)
    if engine is None:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Relay not running")
        return

    connection_id = await connections.connect(websocket)
    if connection_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Connection limit reached")
        return

    await engine.push_presence(connection_id)
    timeout = max(1.0, float(settings.ws_receive_timeout_seconds))

    try:
        while websocket.client_state == WebSocketState.CONNECTED:
            try:
                raw = await asyncio.wait_for(websocket.receive_json(), timeout=timeout)
            except asyncio.TimeoutError:
                await connections.emit(connection_id, EVENT_HEARTBEAT, {})
                continue
            except (ValueError, KeyError):
                logger.debug("Ignoring non-JSON frame from %s", connection_id[:8])
                continue

            try:
                frame = EventFrame.model_validate(raw)
            except ValidationError:
                logger.debug("Ignoring malformed frame from %s", connection_id[:8])
                continue

            await engine.dispatch(connection_id, frame.event, frame.data)
    except WebSocketDisconnect:
        pass
    finally:
        await connections.disconnect(connection_id)
        await engine.leave(connection_id)
