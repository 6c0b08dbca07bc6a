# tests/conftest.py
from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable, Iterator
from typing import Any

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

os.environ["VIRUSTOTAL_API_KEY"] = ""

from ephemeral_relay.core.settings import Settings
from ephemeral_relay.main import app as fastapi_app
from ephemeral_relay.models import ScanVerdict, VerdictSource
from ephemeral_relay.services.engine import RelayEngine
from ephemeral_relay.services.scanner import NullScanner

TEST_TTL_SECONDS = 0.3
TEST_SWEEP_SECONDS = 0.1


class RecordingEmitter:
    """Emitter double that records every frame per connection."""

    def __init__(self) -> None:
        self.connected: set[str] = set()
        self.frames: list[tuple[str, str, Any]] = []

    def open(self, *connections: str) -> None:
        self.connected.update(connections)

    def close(self, connection: str) -> None:
        self.connected.discard(connection)

    async def emit(self, connection: str, event: str, payload: Any) -> bool:
        if connection not in self.connected:
            return False
        self.frames.append((connection, event, payload))
        return True

    async def broadcast(self, event: str, payload: Any) -> int:
        for connection in sorted(self.connected):
            await self.emit(connection, event, payload)
        return len(self.connected)

    def events(self, connection: str, event: str | None = None) -> list[Any]:
        return [
            payload
            for conn, name, payload in self.frames
            if conn == connection and (event is None or name == event)
        ]


class FakeScanner:
    """Configured scan provider returning canned verdicts."""

    name = "fake"

    def __init__(
        self,
        verdict: ScanVerdict | None = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
        on_scan: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.verdict = verdict
        self.error = error
        self.delay = delay
        self.on_scan = on_scan
        self.file_calls: list[tuple[bytes, str]] = []
        self.url_calls: list[str] = []
        self.closed = False

    @property
    def configured(self) -> bool:
        return True

    async def _respond(self, source: VerdictSource) -> ScanVerdict | None:
        if self.on_scan is not None:
            await self.on_scan()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.verdict is None:
            return ScanVerdict(harmless=60, undetected=10, source=source)
        return self.verdict

    async def scan_file(self, data: bytes, filename: str) -> ScanVerdict | None:
        self.file_calls.append((data, filename))
        return await self._respond(VerdictSource.FILE_SCAN)

    async def check_url(self, url: str) -> ScanVerdict | None:
        self.url_calls.append(url)
        return await self._respond(VerdictSource.URL_REPUTATION)

    def get_status(self) -> dict[str, Any]:
        return {"provider": self.name, "configured": True}

    async def close(self) -> None:
        self.closed = True


@pytest.fixture()
def test_settings() -> Settings:
    """Settings with short lifetimes so expiry can be observed in tests."""
    return Settings(
        MESSAGE_TTL_SECONDS=TEST_TTL_SECONDS,
        SWEEP_INTERVAL_SECONDS=TEST_SWEEP_SECONDS,
        VIRUSTOTAL_API_KEY=None,
        SCAN_TIMEOUT_SECONDS=0.5,
    )


@pytest.fixture()
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture()
def make_engine(
    emitter: RecordingEmitter, test_settings: Settings
) -> Callable[..., RelayEngine]:
    def _make(scanner: Any = None, **overrides: Any) -> RelayEngine:
        config = test_settings.model_copy(update=overrides) if overrides else test_settings
        return RelayEngine(emitter, config=config, scanner=scanner or NullScanner())

    return _make


@pytest.fixture()
def engine(make_engine: Callable[..., RelayEngine]) -> RelayEngine:
    return make_engine()


@pytest.fixture()
def join_pair(
    emitter: RecordingEmitter,
) -> Callable[[RelayEngine], Awaitable[None]]:
    """Register ``conn-a`` as alice and ``conn-b`` as bob."""

    async def _join(engine: RelayEngine) -> None:
        emitter.open("conn-a", "conn-b")
        await engine.join("conn-a", "alice")
        await engine.join("conn-b", "bob")

    return _join


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client
