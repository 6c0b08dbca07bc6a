"""Tests for the message lifecycle store."""

import asyncio

import pytest

from ephemeral_relay.models import ContentKind, Message
from ephemeral_relay.services.lifecycle import MessageLifecycleStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _message(message_id: str = "1") -> Message:
    return Message(
        id=message_id,
        sender="alice",
        recipient="bob",
        kind=ContentKind.TEXT,
        content="hello",
        sender_connection="conn-a",
        recipient_connection="conn-b",
    )


def _recorder() -> tuple[list[str], object]:
    expired: list[str] = []

    async def on_expire(message: Message) -> None:
        expired.append(message.id)

    return expired, on_expire


@pytest.mark.asyncio
async def test_store_expires_after_ttl() -> None:
    expired, on_expire = _recorder()
    store = MessageLifecycleStore(0.05, 10.0, on_expire)

    store.store(_message("1"))
    assert "1" in store

    await asyncio.sleep(0.01)
    assert expired == []

    await asyncio.sleep(0.15)
    assert expired == ["1"]
    assert "1" not in store
    assert store.was_evicted("1")


@pytest.mark.asyncio
async def test_store_is_idempotent_per_id() -> None:
    expired, on_expire = _recorder()
    store = MessageLifecycleStore(60.0, 10.0, on_expire)

    assert store.store(_message("1")) == "1"
    assert store.store(_message("1")) == "1"
    assert len(store) == 1

    await store.stop()


@pytest.mark.asyncio
async def test_expire_is_idempotent() -> None:
    expired, on_expire = _recorder()
    store = MessageLifecycleStore(60.0, 10.0, on_expire)
    store.store(_message("1"))

    assert await store.expire("1") is True
    assert await store.expire("1") is False
    assert await store.expire("never-stored") is False
    assert expired == ["1"]


@pytest.mark.asyncio
async def test_evicted_id_is_never_restored() -> None:
    expired, on_expire = _recorder()
    store = MessageLifecycleStore(60.0, 10.0, on_expire)
    store.store(_message("1"))
    await store.expire("1")

    store.store(_message("1"))

    assert "1" not in store
    assert len(store) == 0


@pytest.mark.asyncio
async def test_sweep_evicts_only_aged_entries() -> None:
    clock = FakeClock()
    expired, on_expire = _recorder()
    store = MessageLifecycleStore(120.0, 30.0, on_expire, clock=clock)

    store.store(_message("1"))
    clock.now += 60
    store.store(_message("2"))
    clock.now += 61

    assert await store.sweep() == 1
    assert expired == ["1"]
    assert "2" in store

    await store.stop()


@pytest.mark.asyncio
async def test_sweep_and_timer_do_not_double_notify() -> None:
    clock = FakeClock()
    expired, on_expire = _recorder()
    store = MessageLifecycleStore(0.05, 30.0, on_expire, clock=clock)
    store.store(_message("1"))

    clock.now += 1
    await store.sweep()
    await asyncio.sleep(0.1)
    await store.expire("1")

    assert expired == ["1"]
    assert store.expired_count == 1


@pytest.mark.asyncio
async def test_background_sweep_recovers_lost_timer() -> None:
    expired, on_expire = _recorder()
    store = MessageLifecycleStore(0.05, 0.02, on_expire)
    await store.start()
    try:
        store.store(_message("1"))
        entry_timer = store._entries["1"].timer
        assert entry_timer is not None
        entry_timer.cancel()

        await asyncio.sleep(0.2)
        assert expired == ["1"]
    finally:
        await store.stop()


@pytest.mark.asyncio
async def test_stop_cancels_pending_timers() -> None:
    expired, on_expire = _recorder()
    store = MessageLifecycleStore(0.05, 10.0, on_expire)
    await store.start()
    store.store(_message("1"))

    await store.stop()
    await asyncio.sleep(0.1)

    assert expired == []


@pytest.mark.asyncio
async def test_failing_callback_does_not_break_later_expiries() -> None:
    calls: list[str] = []

    async def on_expire(message: Message) -> None:
        calls.append(message.id)
        if message.id == "1":
            raise RuntimeError("transport gone")

    store = MessageLifecycleStore(0.02, 10.0, on_expire)
    store.store(_message("1"))
    store.store(_message("2"))

    await asyncio.sleep(0.1)

    assert sorted(calls) == ["1", "2"]
    assert len(store) == 0


@pytest.mark.asyncio
async def test_ids_below_the_highest_stored_are_refused() -> None:
    expired, on_expire = _recorder()
    store = MessageLifecycleStore(60.0, 10.0, on_expire)
    store.store(_message("5"))

    store.store(_message("3"))

    assert "3" not in store
    assert store.was_evicted("3")
    assert not store.was_evicted("5")
    assert not store.was_evicted("6")

    await store.expire("5")
    store.store(_message("6"))
    assert "6" in store
    assert store.was_evicted("5")

    await store.stop()
