"""WebSocket connection management.

Owns the mapping from transport-assigned connection handles to live
WebSockets and provides the emission primitive used by the relay engine.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from ephemeral_relay.schemas.events import EVENT_CONNECTED
from ephemeral_relay.utils.time import utcnow

# Configure logger for this module
logger = logging.getLogger(__name__)


class Emitter(Protocol):
    """Emission primitive the engine delivers through."""

    async def emit(self, connection: str, event: str, payload: Any) -> bool: ...

    async def broadcast(self, event: str, payload: Any) -> int: ...


@dataclass
class WSConnection:
    """Represents an active WebSocket connection."""

    websocket: WebSocket
    connected_at: datetime = field(default_factory=utcnow)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class ConnectionManager:
    """Tracks live WebSockets and sends event frames to them.

    Frames are JSON objects ``{"event": name, "data": payload}``. Sends to a
    single connection are serialized so frames keep their emission order,
    and each send is bounded by ``send_timeout_seconds``.
    """

    def __init__(self, max_connections: int, send_timeout_seconds: float = 5.0) -> None:
        self.max_connections = max_connections
        self.send_timeout_seconds = send_timeout_seconds
        self._connections: dict[str, WSConnection] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket) -> str | None:
        """Accept ``websocket`` and return its new handle.

        Returns:
            The connection handle, or None if the connection limit is reached
        """
        async with self._lock:
            if len(self._connections) >= self.max_connections:
                logger.warning(
                    "WebSocket connection rejected: limit of %d reached", self.max_connections
                )
                return None

            await websocket.accept()
            connection_id = str(uuid.uuid4())
            self._connections[connection_id] = WSConnection(websocket=websocket)
            logger.info(
                "New connection %s (total %d)", connection_id[:8], len(self._connections)
            )

        await self.emit(connection_id, EVENT_CONNECTED, {"connectionId": connection_id})
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        """Forget a connection. Unknown handles are ignored."""
        async with self._lock:
            if self._connections.pop(connection_id, None) is None:
                return
            logger.info(
                "Connection %s closed (total %d)", connection_id[:8], len(self._connections)
            )

    async def emit(self, connection: str, event: str, payload: Any) -> bool:
        """Send one frame to ``connection``.

        Emission to an unknown or closed connection is a no-op.

        Returns:
            True if the frame was handed to the transport
        """
        conn = self._connections.get(connection)
        if conn is None:
            return False

        async with conn.send_lock:
            if conn.websocket.client_state != WebSocketState.CONNECTED:
                return False
            try:
                await asyncio.wait_for(
                    conn.websocket.send_json({"event": event, "data": payload}),
                    timeout=self.send_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Emit of %s to %s timed out after %.1fs",
                    event,
                    connection[:8],
                    self.send_timeout_seconds,
                )
                return False
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.debug("Emit of %s to %s failed: %s", event, connection[:8], e)
                return False
        return True

    async def broadcast(self, event: str, payload: Any) -> int:
        """Send one frame to every live connection.

        Returns:
            Number of connections the frame reached
        """
        targets = list(self._connections)
        results = await asyncio.gather(*(self.emit(cid, event, payload) for cid in targets))
        return sum(1 for sent in results if sent)

    def __contains__(self, connection: object) -> bool:
        return connection in self._connections

    def __len__(self) -> int:
        return len(self._connections)
