"""Time-bounded storage of delivered messages.

Every stored message gets its own expiry task. A periodic sweep runs beside
the timers and evicts anything past its TTL in case a timer was lost. Both
paths funnel into the same eviction step, so a message is announced as
deleted at most once.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from ephemeral_relay.models import Message

# Configure logger for this module
logger = logging.getLogger(__name__)

ExpiryCallback = Callable[[Message], Awaitable[None]]
Clock = Callable[[], float]


@dataclass
class StoredMessage:
    """A live message together with its scheduled expiry."""

    message: Message
    stored_at: float
    timer: asyncio.Task[None] | None = None


class MessageLifecycleStore:
    """Holds safe, delivered messages for ``ttl_seconds`` and announces eviction.

    Mutations are synchronous so they never interleave inside the event loop;
    the optional ``lock`` is shared with the relay engine so that eviction and
    delivery commits are serialized with each other as well.
    """

    def __init__(
        self,
        ttl_seconds: float,
        sweep_interval_seconds: float,
        on_expire: ExpiryCallback,
        *,
        lock: asyncio.Lock | None = None,
        clock: Clock = time.monotonic,
    ) -> None:
        """Initialize the store.

        Args:
            ttl_seconds: Lifetime of each stored message
            sweep_interval_seconds: Period of the backstop sweep
            on_expire: Awaited once per evicted message, outside the lock
            lock: Lock guarding store/evict; a private one is created if None
            clock: Monotonic time source, injectable for tests
        """
        self.ttl_seconds = float(ttl_seconds)
        self.sweep_interval_seconds = float(sweep_interval_seconds)
        self._on_expire = on_expire
        self._lock = lock or asyncio.Lock()
        self._clock = clock
        self._entries: dict[str, StoredMessage] = {}
        self._high_water = 0
        self._sweep_task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self.expired_count = 0

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    def store(self, message: Message) -> str:
        """Store ``message`` and schedule its expiry.

        Storing an id that is already live is a no-op. Ids are issued in
        increasing order, so an id at or below the highest one ever stored
        has already been evicted and is never stored again.

        Returns:
            The message id, which is the handle for :meth:`expire`
        """
        if message.id in self._entries:
            return message.id
        sequence = int(message.id)
        if sequence <= self._high_water:
            logger.warning("Refusing to re-store evicted message %s", message.id)
            return message.id

        self._high_water = sequence

        entry = StoredMessage(message=message, stored_at=self._clock())
        entry.timer = asyncio.get_running_loop().create_task(
            self._expire_later(message.id),
            name=f"expire-{message.id}",
        )
        self._entries[message.id] = entry
        logger.debug(
            "Stored message %s (fp=%s) for %.1fs",
            message.id,
            message.short_fingerprint,
            self.ttl_seconds,
        )
        return message.id

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def was_evicted(self, message_id: str) -> bool:
        if message_id in self._entries or not message_id.isdigit():
            return False
        return int(message_id) <= self._high_water

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------
    def _evict(self, message_id: str) -> Message | None:
        entry = self._entries.pop(message_id, None)
        if entry is None:
            return None

        self.expired_count += 1
        timer = entry.timer
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()
        return entry.message

    async def expire(self, message_id: str) -> bool:
        """Evict ``message_id`` and announce it if it was still live.

        Safe to call any number of times for the same id, and for ids that
        were never stored.

        Returns:
            True if this call performed the eviction
        """
        async with self._lock:
            message = self._evict(message_id)
        if message is None:
            return False

        logger.info("Expired message %s (fp=%s)", message.id, message.short_fingerprint)
        await self._on_expire(message)
        return True

    async def _expire_later(self, message_id: str) -> None:
        await asyncio.sleep(self.ttl_seconds)
        try:
            await self.expire(message_id)
        except Exception as e:
            logger.error("Expiry of message %s failed: %s", message_id, e, exc_info=True)

    async def sweep(self) -> int:
        """Evict every entry whose age has reached the TTL.

        Returns:
            Number of messages evicted by this sweep
        """
        now = self._clock()
        async with self._lock:
            due = [
                message_id
                for message_id, entry in self._entries.items()
                if now - entry.stored_at >= self.ttl_seconds
            ]
            stale = [message for message in map(self._evict, due) if message is not None]

        for message in stale:
            logger.info("Swept message %s (fp=%s)", message.id, message.short_fingerprint)
            await self._on_expire(message)

        if stale:
            logger.info("Cleaned up %d old message(s)", len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Background sweep worker
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Start the periodic sweep loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._stopping.clear()
            self._sweep_task = asyncio.create_task(self._run(), name="message-sweep")

    async def stop(self) -> None:
        """Stop the sweep loop and drop every pending expiry timer."""
        if self._sweep_task is not None:
            self._stopping.set()
            await self._sweep_task
            self._sweep_task = None

        timers = [entry.timer for entry in self._entries.values() if entry.timer]
        for timer in timers:
            timer.cancel()
        await asyncio.gather(*timers, return_exceptions=True)

    async def _run(self) -> None:
        interval = max(0.01, self.sweep_interval_seconds)

        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            else:
                return

            try:
                await self.sweep()
            except Exception as e:
                logger.error("Message sweep failed: %s", e, exc_info=True)
