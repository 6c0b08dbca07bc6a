"""Relay engine.

The single coordinating component of the relay. It owns the presence
registry, the message lifecycle store, the delivery router and the content
safety pipeline, guards their shared state with one lock, and maps inbound
event names to handlers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from ephemeral_relay.core.settings import Settings, settings
from ephemeral_relay.models import MessageIdGenerator
from ephemeral_relay.schemas.events import (
    EVENT_JOIN,
    EVENT_PRESENCE_UPDATE,
    EVENT_SEND,
    EVENT_UPLOAD_PROGRESS,
    JoinRequest,
    SendRequest,
    UploadProgressRequest,
)
from ephemeral_relay.services.connections import Emitter
from ephemeral_relay.services.delivery import DeliveryOutcome, DeliveryRouter
from ephemeral_relay.services.lifecycle import Clock, MessageLifecycleStore
from ephemeral_relay.services.presence import PresenceRegistry
from ephemeral_relay.services.safety import ContentSafetyPipeline
from ephemeral_relay.services.scanner import ScanProvider, build_scanner

# Configure logger for this module
logger = logging.getLogger(__name__)

Handler = Callable[[str, Any], Awaitable[None]]


class RelayEngine:
    """Coordinates presence, delivery, safety scanning and message expiry."""

    def __init__(
        self,
        emitter: Emitter,
        *,
        config: Settings | None = None,
        scanner: ScanProvider | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        """Initialize the engine.

        Args:
            emitter: Transport used for every outbound event
            config: Settings to read; the global settings if None
            scanner: Remote scanning provider; selected from settings if None
            clock: Monotonic time source for message ages
        """
        self.config = config or settings
        self.emitter = emitter
        self._lock = asyncio.Lock()
        self.presence = PresenceRegistry()
        self.ids = MessageIdGenerator()
        self.scanner = scanner or build_scanner(self.config)
        self.pipeline = ContentSafetyPipeline(
            self.scanner,
            self.config.normalized_patterns,
            timeout_seconds=self.config.scan_timeout_seconds,
            malicious_threshold=self.config.scan_malicious_threshold,
        )
        self.router = DeliveryRouter(self.presence, self.pipeline, emitter, self.ids, self._lock)
        self.store = MessageLifecycleStore(
            self.config.message_ttl_seconds,
            self.config.sweep_interval_seconds,
            self.router.notify_expired,
            lock=self._lock,
            clock=clock,
        )
        self.router.bind_store(self.store)
        self._handlers: dict[str, Handler] = {
            EVENT_JOIN: self._on_join,
            EVENT_SEND: self._on_send,
            EVENT_UPLOAD_PROGRESS: self._on_upload_progress,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Start the background sweep."""
        await self.store.start()
        logger.info(
            "Relay engine started: ttl=%.0fs sweep=%.0fs scanner=%s",
            self.store.ttl_seconds,
            self.store.sweep_interval_seconds,
            self.scanner.name,
        )

    async def stop(self) -> None:
        """Stop the sweep, drop pending timers and release the scanner."""
        await self.store.stop()
        await self.scanner.close()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    async def dispatch(self, connection: str, event: str, data: Any) -> None:
        """Run the handler registered for ``event``.

        Unknown events and payloads that fail validation are ignored. Any
        other handler failure is logged so the connection keeps being served.
        """
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("Ignoring unknown event %r from %s", event, connection[:8])
            return
        try:
            await handler(connection, data)
        except ValidationError as e:
            logger.debug(
                "Ignoring malformed %s from %s: %d error(s)", event, connection[:8], e.error_count()
            )
        except Exception as e:
            logger.error(
                "Handler for %s from %s failed: %s", event, connection[:8], e, exc_info=True
            )

    async def _on_join(self, connection: str, data: Any) -> None:
        if isinstance(data, str):
            data = {"username": data}
        request = JoinRequest.model_validate(data)
        await self.join(connection, request.username)

    async def _on_send(self, connection: str, data: Any) -> None:
        await self.send(connection, SendRequest.model_validate(data))

    async def _on_upload_progress(self, connection: str, data: Any) -> None:
        await self.router.relay_progress(connection, UploadProgressRequest.model_validate(data))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    async def join(self, connection: str, name: str) -> bool:
        """Register ``connection`` as ``name`` and broadcast presence.

        Returns:
            False if the name was blank and nothing changed
        """
        async with self._lock:
            if not self.presence.join(connection, name):
                return False
            await self._broadcast_presence()
        return True

    async def leave(self, connection: str) -> bool:
        """Forget ``connection``; broadcasts presence only if it was registered."""
        async with self._lock:
            if self.presence.leave(connection) is None:
                return False
            await self._broadcast_presence()
        return True

    async def send(self, connection: str, draft: SendRequest) -> DeliveryOutcome:
        return await self.router.send(connection, draft)

    async def expire(self, message_id: str) -> bool:
        return await self.store.expire(message_id)

    async def push_presence(self, connection: str) -> None:
        """Send the current presence snapshot to one connection."""
        await self.emitter.emit(connection, EVENT_PRESENCE_UPDATE, self.presence.snapshot())

    async def _broadcast_presence(self) -> None:
        snapshot = self.presence.snapshot()
        logger.info("Broadcasting user list: %d user(s)", len(snapshot))
        await self.emitter.broadcast(EVENT_PRESENCE_UPDATE, snapshot)

    def stats(self) -> dict[str, int]:
        """Counters for operational visibility."""
        return {
            "online_users": len(self.presence),
            "live_messages": len(self.store),
            "delivered": self.router.counters[DeliveryOutcome.DELIVERED.value],
            "blocked": self.router.counters[DeliveryOutcome.BLOCKED.value],
            "unavailable": self.router.counters[DeliveryOutcome.UNAVAILABLE.value],
            "expired": self.store.expired_count,
        }
