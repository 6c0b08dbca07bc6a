"""Tests for the presence registry."""

from ephemeral_relay.services.presence import PresenceRegistry


def test_join_registers_name() -> None:
    registry = PresenceRegistry()

    assert registry.join("c1", "alice") is True
    assert registry.snapshot() == ["alice"]
    assert registry.name_of("c1") == "alice"
    assert registry.resolve("alice") == "c1"


def test_blank_name_is_rejected() -> None:
    registry = PresenceRegistry()

    assert registry.join("c1", "") is False
    assert registry.join("c1", "   ") is False
    assert len(registry) == 0
    assert registry.snapshot() == []


def test_join_strips_whitespace() -> None:
    registry = PresenceRegistry()
    registry.join("c1", "  alice ")

    assert registry.resolve("alice") == "c1"


def test_connection_appears_once() -> None:
    registry = PresenceRegistry()
    registry.join("c1", "alice")
    registry.join("c1", "alicia")

    assert registry.snapshot() == ["alicia"]
    assert registry.resolve("alice") is None


def test_leave_known_and_unknown() -> None:
    registry = PresenceRegistry()
    registry.join("c1", "alice")

    assert registry.leave("c2") is None
    assert registry.leave("c1") == "alice"
    assert registry.leave("c1") is None
    assert not registry.contains("c1")


def test_duplicate_names_resolve_to_latest_registration() -> None:
    registry = PresenceRegistry()
    registry.join("c1", "bob")
    registry.join("c2", "bob")

    assert registry.resolve("bob") == "c2"
    assert registry.snapshot() == ["bob", "bob"]

    registry.leave("c2")
    assert registry.resolve("bob") == "c1"


def test_resolve_unknown_name() -> None:
    registry = PresenceRegistry()
    registry.join("c1", "alice")

    assert registry.resolve("carol") is None
