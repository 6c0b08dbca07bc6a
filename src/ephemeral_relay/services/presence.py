"""Presence registry mapping live connections to display names."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Bidirectional view over connection handle -> display name.

    The registry performs no locking and no I/O; callers serialize mutations
    (the relay engine holds its lock around every change). Each join returns
    whether a presence broadcast is due, and the caller emits it.

    Names are not unique. When two live connections share a name,
    :meth:`resolve` returns the most recently registered one.
    """

    def __init__(self) -> None:
        self._names: dict[str, str] = {}

    def join(self, connection: str, requested_name: str) -> bool:
        """Register ``connection`` under ``requested_name``.

        Args:
            connection: Transport-assigned connection handle
            requested_name: Display name chosen by the client

        Returns:
            True if the registry changed and a broadcast is due, False for a
            blank name
        """
        name = (requested_name or "").strip()
        if not name:
            logger.debug("Ignoring join with blank name from %s", connection)
            return False

        # Re-insert so the newest registration sorts last for resolution.
        previous = self._names.pop(connection, None)
        self._names[connection] = name
        if previous is not None and previous != name:
            logger.info("Connection %s renamed %s -> %s", connection[:8], previous, name)
        else:
            logger.info("User %s joined on %s", name, connection[:8])
        return True

    def leave(self, connection: str) -> str | None:
        """Remove ``connection`` and return its name, or None if unknown."""
        name = self._names.pop(connection, None)
        if name is not None:
            logger.info("User %s left (%s)", name, connection[:8])
        return name

    def resolve(self, name: str) -> str | None:
        """Return the live connection registered under ``name``."""
        for connection in reversed(self._names):
            if self._names[connection] == name:
                return connection
        return None

    def name_of(self, connection: str) -> str | None:
        return self._names.get(connection)

    def contains(self, connection: str) -> bool:
        return connection in self._names

    def snapshot(self) -> list[str]:
        """Return connected names; ordering is not part of the contract."""
        return list(self._names.values())

    def __len__(self) -> int:
        return len(self._names)
