"""Models describing relayed messages."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from ephemeral_relay.models.verdict import ScanVerdict
from ephemeral_relay.utils.hash import fingerprint
from ephemeral_relay.utils.time import utcnow


class ContentKind(str, Enum):
    """Kinds of payload a client may send."""

    TEXT = "text"
    LINK = "link"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    PDF = "pdf"
    ARCHIVE = "archive"
    TEXTFILE = "textfile"
    FILE = "file"

    @property
    def is_textual(self) -> bool:
        """Return True for payloads carried inline as text."""
        return self in (ContentKind.TEXT, ContentKind.LINK)


class MessageIdGenerator:
    """Process-wide, strictly increasing message identifiers."""

    def __init__(self, start: int = 1) -> None:
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            return str(next(self._counter))


@dataclass
class Message:
    """A message accepted for delivery between exactly two parties.

    Only messages that passed the safety pipeline are ever built with a
    verdict attached and handed to the lifecycle store.
    """

    id: str
    sender: str
    recipient: str
    kind: ContentKind
    content: str
    sender_connection: str
    recipient_connection: str
    filename: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None
    verdict: ScanVerdict | None = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def fingerprint(self) -> str:
        """BLAKE3 fingerprint used in logs in place of the content."""
        return fingerprint(self.sender, self.recipient, self.kind.value, self.content)

    @property
    def short_fingerprint(self) -> str:
        return self.fingerprint[:12]
