"""Delivery router.

Resolves both parties through the presence registry, runs drafts through the
content safety pipeline and emits the resulting views. Safe messages are
committed to the lifecycle store; blocked ones are projected once and
discarded.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from enum import Enum

from ephemeral_relay.models import ContentKind, Message, MessageIdGenerator
from ephemeral_relay.schemas.events import (
    EVENT_DELETED,
    EVENT_DELIVER,
    EVENT_UPLOAD_PROGRESS,
    SYSTEM_SENDER,
    DeletedEvent,
    DeliverEvent,
    SendRequest,
    UploadProgressEvent,
    UploadProgressRequest,
)
from ephemeral_relay.services.connections import Emitter
from ephemeral_relay.services.lifecycle import MessageLifecycleStore
from ephemeral_relay.services.presence import PresenceRegistry
from ephemeral_relay.services.safety import (
    ContentSafetyPipeline,
    render_blocked_views,
    render_safe_views,
    render_scan_notice,
)
from ephemeral_relay.utils.time import utcnow

# Configure logger for this module
logger = logging.getLogger(__name__)


class DeliveryOutcome(str, Enum):
    """Result of one send request."""

    DROPPED = "dropped"
    UNAVAILABLE = "unavailable"
    DELIVERED = "delivered"
    BLOCKED = "blocked"


class DeliveryRouter:
    """Routes drafts from a sender connection to the named recipient."""

    def __init__(
        self,
        presence: PresenceRegistry,
        pipeline: ContentSafetyPipeline,
        emitter: Emitter,
        ids: MessageIdGenerator,
        lock: asyncio.Lock,
    ) -> None:
        self.presence = presence
        self.pipeline = pipeline
        self.emitter = emitter
        self.ids = ids
        self._lock = lock
        self.store: MessageLifecycleStore | None = None
        self.counters: Counter[str] = Counter()

    def bind_store(self, store: MessageLifecycleStore) -> None:
        self.store = store

    async def send(self, sender_connection: str, draft: SendRequest) -> DeliveryOutcome:
        """Deliver ``draft`` from ``sender_connection`` to ``draft.to``.

        Args:
            sender_connection: Handle of the connection that sent the draft
            draft: Validated send request

        Returns:
            What happened to the draft
        """
        sender = self.presence.name_of(sender_connection)
        if sender is None:
            logger.debug("Dropping send from unregistered connection %s", sender_connection[:8])
            self.counters[DeliveryOutcome.DROPPED.value] += 1
            return DeliveryOutcome.DROPPED

        if self.presence.resolve(draft.to) is None:
            return await self._unavailable(sender_connection, draft.to)

        # Scanning may take seconds; it runs without holding the lock.
        decision = await self.pipeline.evaluate(draft)

        async with self._lock:
            recipient_connection = self.presence.resolve(draft.to)
            if recipient_connection is None:
                message = None
            else:
                message = Message(
                    id=self.ids.next_id(),
                    sender=sender,
                    recipient=draft.to,
                    kind=draft.kind,
                    content=draft.content,
                    sender_connection=sender_connection,
                    recipient_connection=recipient_connection,
                    filename=draft.filename,
                    mime_type=draft.mime_type,
                    size_bytes=draft.size_bytes,
                    verdict=None if decision.blocked else decision.pattern_verdict,
                )
                if not decision.blocked:
                    self._require_store().store(message)

        if message is None:
            logger.info("Recipient %s vanished during scan", draft.to)
            return await self._unavailable(sender_connection, draft.to)

        if decision.blocked:
            sender_view, receiver_view = render_blocked_views(message, decision)
            await self._emit_pair(message, sender_view, receiver_view)
            logger.info(
                "Blocked %s %s from %s to %s: %s",
                message.kind.value,
                message.id,
                sender,
                draft.to,
                decision.reason,
            )
            self.counters[DeliveryOutcome.BLOCKED.value] += 1
            return DeliveryOutcome.BLOCKED

        sender_view, receiver_view = render_safe_views(message)
        await self._emit_pair(message, sender_view, receiver_view)
        if not message.kind.is_textual and decision.remote_scan_executed:
            notice_id = self.ids.next_id()
            await self._emit_pair(
                message,
                render_scan_notice(notice_id, message, decision, own=True),
                render_scan_notice(notice_id, message, decision, own=False),
            )
        logger.info(
            "Delivered %s %s (fp=%s) from %s to %s",
            message.kind.value,
            message.id,
            message.short_fingerprint,
            sender,
            draft.to,
        )
        self.counters[DeliveryOutcome.DELIVERED.value] += 1
        return DeliveryOutcome.DELIVERED

    async def relay_progress(
        self, sender_connection: str, record: UploadProgressRequest
    ) -> bool:
        """Forward advisory upload progress to the recipient, best effort."""
        sender = self.presence.name_of(sender_connection)
        if sender is None:
            return False
        recipient_connection = self.presence.resolve(record.to)
        if recipient_connection is None:
            return False

        event = UploadProgressEvent(**record.model_dump(), sender=sender)
        return await self.emitter.emit(
            recipient_connection, EVENT_UPLOAD_PROGRESS, event.to_payload()
        )

    async def notify_expired(self, message: Message) -> None:
        """Announce an evicted message to the parties it was shown to."""
        payload = DeletedEvent(id=message.id, timestamp=utcnow().isoformat()).to_payload()
        await self.emitter.emit(message.sender_connection, EVENT_DELETED, payload)
        if self.presence.contains(message.recipient_connection):
            await self.emitter.emit(message.recipient_connection, EVENT_DELETED, payload)

    async def _emit_pair(
        self, message: Message, sender_view: DeliverEvent, receiver_view: DeliverEvent
    ) -> None:
        await self.emitter.emit(
            message.recipient_connection, EVENT_DELIVER, receiver_view.to_payload()
        )
        await self.emitter.emit(message.sender_connection, EVENT_DELIVER, sender_view.to_payload())

    async def _unavailable(self, sender_connection: str, recipient: str) -> DeliveryOutcome:
        logger.info("Recipient not found: %s", recipient)
        notice = DeliverEvent(
            id=self.ids.next_id(),
            sender=SYSTEM_SENDER,
            to=self.presence.name_of(sender_connection) or "",
            kind=ContentKind.TEXT,
            content=f"User {recipient} is not available",
            created_at=utcnow().isoformat(),
            is_system=True,
        )
        await self.emitter.emit(sender_connection, EVENT_DELIVER, notice.to_payload())
        self.counters[DeliveryOutcome.UNAVAILABLE.value] += 1
        return DeliveryOutcome.UNAVAILABLE

    def _require_store(self) -> MessageLifecycleStore:
        if self.store is None:
            raise RuntimeError("DeliveryRouter used before a lifecycle store was bound")
        return self.store
