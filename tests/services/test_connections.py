"""Tests for the WebSocket connection manager."""

import asyncio
from typing import Any

import pytest
from starlette.websockets import WebSocketState

from ephemeral_relay.services.connections import ConnectionManager
from ephemeral_relay.services.engine import RelayEngine
from ephemeral_relay.services.scanner import NullScanner


class StubWebSocket:
    def __init__(self, *, stalled: bool = False) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.stalled = stalled
        self.sent: list[dict[str, Any]] = []

    async def accept(self) -> None:
        return None

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.stalled:
            await asyncio.Event().wait()
        self.sent.append(data)


@pytest.mark.asyncio
async def test_connect_assigns_handle_and_greets() -> None:
    manager = ConnectionManager(max_connections=1)
    socket = StubWebSocket()

    handle = await manager.connect(socket)

    assert handle in manager
    assert socket.sent == [{"event": "connected", "data": {"connectionId": handle}}]
    assert await manager.connect(StubWebSocket()) is None


@pytest.mark.asyncio
async def test_emit_to_unknown_or_closed_connection_is_noop() -> None:
    manager = ConnectionManager(max_connections=5)
    socket = StubWebSocket()
    handle = await manager.connect(socket)
    socket.client_state = WebSocketState.DISCONNECTED

    assert await manager.emit("missing", "deliver", {}) is False
    assert await manager.emit(handle, "deliver", {}) is False


@pytest.mark.asyncio
async def test_stalled_client_does_not_hold_up_broadcast() -> None:
    manager = ConnectionManager(max_connections=5, send_timeout_seconds=0.05)
    healthy = StubWebSocket()
    await manager.connect(healthy)
    stalled = StubWebSocket()
    await manager.connect(stalled)
    stalled.stalled = True

    reached = await asyncio.wait_for(manager.broadcast("presence_update", ["alice"]), 1.0)

    assert reached == 1
    assert healthy.sent[-1] == {"event": "presence_update", "data": ["alice"]}


@pytest.mark.asyncio
async def test_stalled_client_does_not_block_presence_changes(test_settings) -> None:
    manager = ConnectionManager(max_connections=5, send_timeout_seconds=0.05)
    engine = RelayEngine(manager, config=test_settings, scanner=NullScanner())
    stalled = StubWebSocket()
    slow = await manager.connect(stalled)
    stalled.stalled = True
    healthy = StubWebSocket()
    fast = await manager.connect(healthy)

    await asyncio.wait_for(engine.join(slow, "alice"), 1.0)
    await asyncio.wait_for(engine.join(fast, "bob"), 1.0)

    assert healthy.sent[-1] == {"event": "presence_update", "data": ["alice", "bob"]}
    await engine.stop()
